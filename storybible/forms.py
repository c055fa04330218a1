from flask_wtf import FlaskForm


class JSONForm(FlaskForm):
    """Form bound to the JSON request body; the API is token-less, so no CSRF field."""

    class Meta:
        csrf = False
