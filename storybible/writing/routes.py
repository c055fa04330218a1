from __future__ import annotations

from flask import request

from ..errors import ValidationError
from ..responses import created, success, validate_form
from ..services import get_setup_assist, get_writing_service
from . import bp
from .forms import ChapterCreateForm, RollbackForm, VersionCleanupForm, VersionCreateForm, VolumeForm


def _payload() -> dict:
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _dicts(items) -> list:
    return [item.to_dict() for item in items]


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


# ---------------------------------------------------------------------------
# Volumes
# ---------------------------------------------------------------------------
@bp.route("/volumes", methods=["GET"])
def list_volumes():
    return success(_dicts(get_writing_service().get_all_volumes()))


@bp.route("/volumes", methods=["POST"])
def create_volume():
    validate_form(VolumeForm)
    return created(get_writing_service().create_volume(_payload()).to_dict())


@bp.route("/volumes/<int:volume_id>", methods=["GET"])
def get_volume(volume_id: int):
    return success(get_writing_service().get_volume(volume_id).to_dict())


@bp.route("/volumes/<int:volume_id>", methods=["PATCH"])
def update_volume(volume_id: int):
    return success(get_writing_service().update_volume(volume_id, _payload()).to_dict())


@bp.route("/volumes/<int:volume_id>", methods=["DELETE"])
def delete_volume(volume_id: int):
    get_writing_service().delete_volume(volume_id)
    return success({"deleted": True})


# ---------------------------------------------------------------------------
# Chapters
# ---------------------------------------------------------------------------
@bp.route("/chapters", methods=["GET"])
def list_chapters():
    service = get_writing_service()
    volume_id = request.args.get("volume_id", type=int)
    arc_id = request.args.get("arc_id")
    status = request.args.get("status")

    if volume_id is not None:
        chapters = service.get_chapters_by_volume(volume_id)
    elif arc_id:
        chapters = service.get_chapters_by_arc(arc_id)
    elif status:
        chapters = service.get_chapters_by_status(status)
    else:
        chapters = service.get_all_chapters()
    return success([chapter.to_dict(include_content=False) for chapter in chapters])


@bp.route("/chapters", methods=["POST"])
def create_chapter():
    validate_form(ChapterCreateForm)
    return created(get_writing_service().create_chapter(_payload()).to_dict())


@bp.route("/chapters/reorder", methods=["POST"])
def reorder_chapters():
    chapter_ids = _payload().get("chapter_ids")
    if not isinstance(chapter_ids, list) or not all(_is_int(item) for item in chapter_ids):
        raise ValidationError("chapter_ids must be a list of chapter ids", "chapter_ids")
    get_writing_service().reorder_chapters(chapter_ids)
    return success({"reordered": len(chapter_ids)})


@bp.route("/chapters/<int:chapter_id>", methods=["GET"])
def get_chapter(chapter_id: int):
    include_content = request.args.get("include_content", "false").lower() == "true"
    chapter = get_writing_service().get_chapter(chapter_id)
    return success(chapter.to_dict(include_content=include_content))


@bp.route("/chapters/<int:chapter_id>", methods=["PATCH"])
def update_chapter(chapter_id: int):
    payload = _payload()
    if "status" in payload and payload["status"] is None:
        payload.pop("status")
    return success(get_writing_service().update_chapter(chapter_id, payload).to_dict())


@bp.route("/chapters/<int:chapter_id>", methods=["DELETE"])
def delete_chapter(chapter_id: int):
    get_writing_service().delete_chapter(chapter_id)
    return success({"deleted": True})


@bp.route("/chapters/<int:chapter_id>/content", methods=["PUT"])
def save_chapter_content(chapter_id: int):
    payload = _payload()
    content = payload.get("content")
    if not isinstance(content, str):
        raise ValidationError("content must be a string", "content")
    chapter = get_writing_service().save_content(
        chapter_id, content, create_version=bool(payload.get("create_version", False))
    )
    return success(chapter.to_dict())


@bp.route("/chapters/<int:chapter_id>/setup-suggestions", methods=["GET"])
def chapter_setup_suggestions(chapter_id: int):
    get_writing_service().get_chapter(chapter_id)
    return success(_dicts(get_setup_assist().suggest(chapter_id)))


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------
@bp.route("/chapters/<int:chapter_id>/versions", methods=["GET"])
def list_versions(chapter_id: int):
    service = get_writing_service()
    service.get_chapter(chapter_id)
    return success(_dicts(service.get_versions(chapter_id)))


@bp.route("/chapters/<int:chapter_id>/versions", methods=["POST"])
def create_version(chapter_id: int):
    form = validate_form(VersionCreateForm)
    version = get_writing_service().create_version(chapter_id, form.summary.data or None)
    return created(version.to_dict())


@bp.route("/chapters/<int:chapter_id>/rollback", methods=["POST"])
def rollback_chapter(chapter_id: int):
    form = validate_form(RollbackForm)
    chapter = get_writing_service().rollback_to_version(chapter_id, form.version_id.data)
    return success(chapter.to_dict())


@bp.route("/versions/compare", methods=["GET"])
def compare_versions():
    first = request.args.get("version_id1", type=int)
    second = request.args.get("version_id2", type=int)
    if first is None or second is None:
        raise ValidationError("version_id1 and version_id2 are required")
    return success(get_writing_service().compare_versions(first, second))


@bp.route("/versions/<int:version_id>", methods=["GET"])
def get_version(version_id: int):
    return success(get_writing_service().get_version(version_id).to_dict())


@bp.route("/versions/cleanup", methods=["POST"])
def cleanup_versions():
    form = validate_form(VersionCleanupForm)
    days = form.older_than_days.data if form.older_than_days.data is not None else 30
    count = get_writing_service().cleanup_old_versions(days)
    return success({"deleted": count})


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------
@bp.route("/stats/word-count", methods=["GET"])
def total_word_count():
    return success({"total": get_writing_service().get_total_word_count()})
