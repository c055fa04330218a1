"""JSON envelope helpers and the application-wide error handlers.

Every API response has the shape ``{"success": true, "data": ...}`` or
``{"success": false, "error": {"code", "message", "context"?}}``.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Iterable, Iterator, Optional, Type

from flask import Flask, Response, current_app, jsonify, request, stream_with_context
from flask_wtf import FlaskForm
from werkzeug.datastructures import ImmutableMultiDict
from werkzeug.exceptions import HTTPException
from wtforms import StringField

from .errors import StoryBibleError, ValidationError

INTERNAL_ERROR_MESSAGE = "Internal server error"


def success(data: Any = None, status: int = 200):
    return jsonify({"success": True, "data": data}), status


def created(data: Any = None):
    return success(data, 201)


def error_body(code: str, message: str, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if context:
        error["context"] = context
    return {"success": False, "error": error}


def validate_form(form_class: Type[FlaskForm]) -> FlaskForm:
    """Validate the JSON request body against ``form_class``.

    The first field error is raised as a :class:`ValidationError`.
    """

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}
    # JSON nulls mean "not provided" to the form fields.
    form = form_class(formdata=ImmutableMultiDict({k: v for k, v in payload.items() if v is not None}))
    for field in form:
        value = payload.get(field.name)
        if isinstance(field, StringField) and value is not None and not isinstance(value, str):
            raise ValidationError(f"{field.name} must be a string", field.name)
    if not form.validate():
        field_name, messages = next(iter(form.errors.items()))
        raise ValidationError(str(messages[0]), field_name)
    return form


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
TERMINAL_EVENT_TYPES = ("error", "done")


def sse_frame(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


def event_stream(events: Iterable[Dict[str, Any]], failure_message: str) -> Response:
    """Stream ``events`` as Server-Sent Events, stopping after an error or done event.

    Once the stream has started, an exception can no longer change the status
    code, so it is logged and reported as a final error event.
    """

    logger = current_app.logger

    def generate() -> Iterator[str]:
        try:
            for event in events:
                yield sse_frame(event)
                if event.get("type") in TERMINAL_EVENT_TYPES:
                    return
        except Exception as exc:
            logger.exception(failure_message)
            yield sse_frame({"type": "error", "error": str(exc) or failure_message})

    return Response(stream_with_context(generate()), mimetype="text/event-stream", headers=SSE_HEADERS)


def _handle_story_bible_error(exc: StoryBibleError):
    if exc.status_code >= 500:
        current_app.logger.error("%s: %s", exc.code, exc.message)
        return jsonify(error_body(exc.code, INTERNAL_ERROR_MESSAGE)), exc.status_code
    return jsonify(error_body(exc.code, exc.message, exc.context)), exc.status_code


def _handle_http_exception(exc: HTTPException):
    status = exc.code or 500
    if status == 404:
        code = "NOT_FOUND"
    elif status == 405:
        code = "METHOD_NOT_ALLOWED"
    else:
        code = "HTTP_ERROR"
    message = exc.description if status < 500 else INTERNAL_ERROR_MESSAGE
    return jsonify(error_body(code, message)), status


def _handle_unexpected_error(exc: Exception):
    current_app.logger.exception("Unhandled error while serving request")
    return jsonify(error_body("INTERNAL_ERROR", INTERNAL_ERROR_MESSAGE)), 500


def register_error_handlers(app: Flask) -> None:
    app.register_error_handler(StoryBibleError, _handle_story_bible_error)
    app.register_error_handler(HTTPException, _handle_http_exception)
    app.register_error_handler(Exception, _handle_unexpected_error)


__all__ = [
    "SSE_HEADERS",
    "created",
    "error_body",
    "event_stream",
    "register_error_handlers",
    "sse_frame",
    "success",
    "validate_form",
]
