from __future__ import annotations

from datetime import datetime

from flask import current_app, request

from .. import __version__
from ..errors import ValidationError
from ..responses import success, validate_form
from ..seed import clear_all_data, is_database_empty, run_seed
from ..services import get_search_service
from ..services.graph import relationship_graph, timeline_view
from ..services.search import ENTITY_TYPES
from . import bp
from .forms import SeedLoadForm


@bp.route("/health", methods=["GET"])
def health():
    return success(
        {
            "status": "ok",
            "version": __version__,
            "timestamp": datetime.utcnow().isoformat() + "Z",
        }
    )


@bp.route("/search", methods=["GET"])
def search():
    query = (request.args.get("q") or "").strip()
    if not query:
        raise ValidationError('Query parameter "q" is required', "q")

    types_raw = request.args.get("types") or ""
    entity_types = [t.strip() for t in types_raw.split(",") if t.strip() in ENTITY_TYPES] or None

    default_limit = current_app.config.get("SEARCH_DEFAULT_LIMIT", 20)
    max_limit = current_app.config.get("SEARCH_MAX_LIMIT", 100)
    try:
        limit = int(request.args.get("limit", default_limit))
    except (TypeError, ValueError):
        limit = default_limit
    limit = max(1, min(limit, max_limit))

    results = get_search_service().search(query, entity_types=entity_types, limit=limit)
    return success([result.to_dict() for result in results])


@bp.route("/graph/relationships", methods=["GET"])
def graph_relationships():
    return success(relationship_graph())


@bp.route("/graph/timeline", methods=["GET"])
def graph_timeline():
    return success(timeline_view())


@bp.route("/seed/status", methods=["GET"])
def seed_status():
    return success({"is_empty": is_database_empty()})


@bp.route("/seed/load", methods=["POST"])
def seed_load():
    form = validate_form(SeedLoadForm)
    counts = run_seed(form.lang.data)
    return success({"loaded": True, "lang": form.lang.data, "counts": counts})


@bp.route("/seed/clear", methods=["POST"])
def seed_clear():
    clear_all_data()
    return success({"cleared": True})
