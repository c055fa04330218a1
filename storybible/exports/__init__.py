from flask import Blueprint

bp = Blueprint("exports", __name__, url_prefix="/api/export")

from . import routes  # noqa: E402,F401
