from __future__ import annotations

from flask import current_app, request

from ..errors import ValidationError
from ..responses import created, event_stream, success, validate_form
from ..services import get_intake_service
from ..services.chapter_splitter import detect_chapter_boundaries, merge_short_chapters
from ..services.docx_reader import read_docx_text
from ..services.intake_schemas import validate_chapter_import, validate_decompose_result
from . import bp
from .forms import DecomposeForm, SplitChaptersForm


def _payload() -> dict:
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


@bp.route("/decompose", methods=["POST"])
def decompose():
    form = validate_form(DecomposeForm)
    result = get_intake_service().decompose(form.text.data, form.hint.data or "auto")
    return success(result.to_dict())


@bp.route("/detect-duplicates", methods=["POST"])
def detect_duplicates():
    result = validate_decompose_result(_payload())
    candidates = get_intake_service().detect_duplicates(result)
    return success([candidate.to_dict() for candidate in candidates])


@bp.route("/commit", methods=["POST"])
def commit():
    entities = _payload().get("entities")
    if not isinstance(entities, list) or not entities:
        raise ValidationError("At least one entity is required", "entities")
    if not all(isinstance(entity, dict) for entity in entities):
        raise ValidationError("Each entity must be an object", "entities")
    result = get_intake_service().commit_entities(entities)
    return created(result.to_dict())


@bp.route("/import-chapters", methods=["POST"])
def import_chapters():
    try:
        chapters = validate_chapter_import(_payload())
    except ValueError as exc:
        raise ValidationError(str(exc), "chapters") from exc

    current_app.logger.info("Importing %d chapter(s) through AI extraction", len(chapters))

    events = get_intake_service().extract_from_chapters(chapters)
    return event_stream(events, "Chapter import stream failed")


@bp.route("/split-chapters", methods=["POST"])
def split_chapters():
    form = validate_form(SplitChaptersForm)
    chapters = detect_chapter_boundaries(form.text.data)
    if form.min_words.data is not None:
        chapters = merge_short_chapters(chapters, form.min_words.data)
    return success([chapter.to_dict() for chapter in chapters])


@bp.route("/read-docx", methods=["POST"])
def read_docx():
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("A .docx file is required", "file")
    if not upload.filename.lower().endswith(".docx"):
        raise ValidationError("Only .docx files are supported", "file")
    text = read_docx_text(upload.stream)
    return success({"filename": upload.filename, "text": text})
