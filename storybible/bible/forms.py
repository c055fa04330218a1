from wtforms import IntegerField, StringField, TextAreaField
from wtforms.validators import AnyOf, InputRequired, Length, NumberRange

from ..forms import JSONForm
from ..models import CHARACTER_ROLES, RELATIONSHIP_TYPES


class CharacterCreateForm(JSONForm):
    name = StringField(
        "Name",
        validators=[InputRequired(message="Character name is required"), Length(max=200)],
    )
    role = StringField(
        "Role",
        validators=[
            InputRequired(message="Character role is required"),
            AnyOf(CHARACTER_ROLES, message="Invalid character role"),
        ],
    )


class RelationshipCreateForm(JSONForm):
    source_id = StringField(
        "Source", validators=[InputRequired(message="Source and target character IDs are required")]
    )
    target_id = StringField(
        "Target", validators=[InputRequired(message="Source and target character IDs are required")]
    )
    type = StringField(
        "Type",
        validators=[
            InputRequired(message="Relationship type is required"),
            AnyOf(RELATIONSHIP_TYPES, message="Invalid relationship type"),
        ],
    )


class ForeshadowingHintForm(JSONForm):
    chapter = IntegerField(
        "Chapter",
        validators=[InputRequired(message="chapter is required"), NumberRange(min=1, message="chapter must be positive")],
    )
    text = TextAreaField("Hint", validators=[InputRequired(message="Hint text is required")])


class ForeshadowingResolveForm(JSONForm):
    resolved_chapter = IntegerField(
        "Resolved chapter",
        validators=[
            InputRequired(message="resolved_chapter is required"),
            NumberRange(min=1, message="resolved_chapter must be positive"),
        ],
    )
