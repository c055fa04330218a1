from wtforms import StringField
from wtforms.validators import AnyOf, InputRequired

from ..forms import JSONForm
from ..seed import SEED_LANGUAGES


class SeedLoadForm(JSONForm):
    lang = StringField(
        "Language",
        validators=[
            InputRequired(message="lang is required"),
            AnyOf(SEED_LANGUAGES, message="lang must be one of: en, zh"),
        ],
    )
