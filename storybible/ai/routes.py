from __future__ import annotations

from flask import current_app, request

from ..errors import ValidationError
from ..responses import event_stream, success
from ..services import get_ai_service
from ..services.ai_presets import PRESET_CATEGORIES, list_presets
from . import bp
from .schemas import (
    AskRequest,
    BrainstormRequest,
    CompleteRequest,
    ContextRequest,
    ContinueRequest,
    DescribeRequest,
    DialogueRequest,
    parse_request,
)


def _payload() -> dict:
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


@bp.route("/continue", methods=["POST"])
def continue_scene():
    body = parse_request(ContinueRequest, _payload())
    chunks = get_ai_service().continue_scene(
        body.chapter_id,
        body.options_dict(),
        body.user_instruction,
        body.excluded_context_ids,
        body.presets,
    )
    return event_stream(chunks, "Continuation stream failed")


@bp.route("/dialogue", methods=["POST"])
def dialogue():
    body = parse_request(DialogueRequest, _payload())
    chunks = get_ai_service().generate_dialogue(
        body.character_ids,
        body.context,
        body.options_dict(),
        body.user_instruction,
        chapter_id=body.chapter_id,
        presets=body.presets,
    )
    return event_stream(chunks, "Dialogue stream failed")


@bp.route("/describe", methods=["POST"])
def describe():
    body = parse_request(DescribeRequest, _payload())
    chunks = get_ai_service().describe_scene(
        body.location_id,
        body.mood,
        body.options_dict(),
        body.user_instruction,
        chapter_id=body.chapter_id,
        presets=body.presets,
    )
    return event_stream(chunks, "Description stream failed")


@bp.route("/brainstorm", methods=["POST"])
def brainstorm():
    body = parse_request(BrainstormRequest, _payload())
    chunks = get_ai_service().brainstorm(
        body.topic,
        body.options_dict(),
        body.user_instruction,
        chapter_id=body.chapter_id,
        presets=body.presets,
    )
    return event_stream(chunks, "Brainstorm stream failed")


@bp.route("/ask", methods=["POST"])
def ask():
    body = parse_request(AskRequest, _payload())
    options = body.options.model_dump(exclude_none=True) if body.options else {}
    return event_stream(get_ai_service().ask_story_bible(body.question, options), "Story bible answer failed")


@bp.route("/complete", methods=["POST"])
def complete():
    body = parse_request(CompleteRequest, _payload())
    options = body.options.model_dump(exclude_none=True) if body.options else {}
    items = [item.to_item() for item in body.context]
    return event_stream(get_ai_service().complete(body.prompt, items, options), "Completion stream failed")


@bp.route("/context", methods=["POST"])
def build_context():
    body = parse_request(ContextRequest, _payload())
    context = get_ai_service().build_context(body.chapter_id, [item.to_item() for item in body.additional_items])
    current_app.logger.debug(
        "Built context for chapter %s: %d item(s), %d token(s)", body.chapter_id, len(context.items), context.total_tokens
    )
    return success(context.to_dict())


@bp.route("/providers", methods=["GET"])
def providers():
    return success(get_ai_service().providers_status())


@bp.route("/presets", methods=["GET"])
def presets():
    presets = list_presets(request.args.get("category") or None)
    return success({"categories": PRESET_CATEGORIES, "presets": [preset.to_dict() for preset in presets]})
