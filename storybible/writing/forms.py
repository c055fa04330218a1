from wtforms import IntegerField, StringField, TextAreaField
from wtforms.validators import AnyOf, InputRequired, Length, NumberRange, Optional

from ..forms import JSONForm
from ..models import CHAPTER_STATUSES, VOLUME_STATUSES


class VolumeForm(JSONForm):
    name = StringField("Name", validators=[Optional(), Length(max=200)])
    status = StringField(
        "Status",
        validators=[Optional(), AnyOf(VOLUME_STATUSES, message="Invalid volume status")],
    )


class ChapterCreateForm(JSONForm):
    title = StringField("Title", validators=[Optional(), Length(max=300)])
    status = StringField(
        "Status",
        validators=[Optional(), AnyOf(CHAPTER_STATUSES, message="Invalid chapter status")],
    )
    sort_order = IntegerField(
        "Sort order",
        validators=[Optional(), NumberRange(min=0, message="sort_order must be a non-negative integer")],
    )


class VersionCreateForm(JSONForm):
    summary = TextAreaField("Summary", validators=[Optional(), Length(max=500)])


class RollbackForm(JSONForm):
    version_id = IntegerField("Version", validators=[InputRequired(message="version_id is required")])


class VersionCleanupForm(JSONForm):
    older_than_days = IntegerField(
        "Older than (days)",
        validators=[Optional(), NumberRange(min=0, message="older_than_days must be a non-negative integer")],
    )
