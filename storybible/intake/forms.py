from wtforms import IntegerField, StringField, TextAreaField
from wtforms.validators import AnyOf, InputRequired, Length, NumberRange, Optional

from ..config import Config
from ..forms import JSONForm
from ..services.intake import INTAKE_HINTS

MAX_TEXT_LENGTH = Config.INTAKE_MAX_TEXT_LENGTH


class DecomposeForm(JSONForm):
    text = TextAreaField(
        "Text",
        validators=[
            InputRequired(message="Text is required"),
            Length(max=MAX_TEXT_LENGTH, message=f"Text must be at most {MAX_TEXT_LENGTH} characters"),
        ],
    )
    hint = StringField("Hint", validators=[Optional(), AnyOf(INTAKE_HINTS, message="Invalid intake hint")])


class SplitChaptersForm(JSONForm):
    text = TextAreaField(
        "Text",
        validators=[
            InputRequired(message="Text is required"),
            Length(max=MAX_TEXT_LENGTH, message=f"Text must be at most {MAX_TEXT_LENGTH} characters"),
        ],
    )
    min_words = IntegerField(
        "Minimum words",
        validators=[Optional(), NumberRange(min=0, message="min_words must be a non-negative integer")],
    )
