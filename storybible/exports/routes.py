from __future__ import annotations

from flask import Response, request

from ..errors import ValidationError
from ..exporters import ExportResult
from ..services import get_export_service
from ..services.export import build_export_options
from . import bp


def _payload() -> dict:
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _attachment(result: ExportResult) -> Response:
    return Response(
        result.as_bytes(),
        mimetype=result.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{result.filename}"'},
    )


@bp.route("/chapters", methods=["POST"])
def export_chapters():
    options = build_export_options(_payload())
    return _attachment(get_export_service().export_chapters(options))


@bp.route("/story-bible", methods=["POST"])
def export_story_bible():
    sections = _payload().get("sections")
    if sections is not None and (
        not isinstance(sections, list) or not all(isinstance(section, str) for section in sections)
    ):
        raise ValidationError("sections must be a list of section names", "sections")
    return _attachment(get_export_service().export_story_bible(sections))
