from flask import Blueprint

bp = Blueprint("intake", __name__, url_prefix="/api/intake")

from . import routes  # noqa: E402,F401
