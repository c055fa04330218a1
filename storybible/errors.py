"""Error types raised by the service layer and mapped to HTTP responses."""
from __future__ import annotations

from typing import Any, Dict, Optional


class StoryBibleError(Exception):
    """Base class for every expected application error."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.context:
            payload["context"] = self.context
        return payload


class EntityNotFoundError(StoryBibleError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            f"{entity_type} {entity_id} not found",
            context={"entity_type": entity_type, "entity_id": str(entity_id)},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationError(StoryBibleError):
    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = dict(context or {})
        if field:
            merged["field"] = field
        super().__init__(message, context=merged)
        self.field = field


class DuplicateEntityError(StoryBibleError):
    code = "DUPLICATE_ENTITY"
    status_code = 409

    def __init__(self, entity_type: str, field: str, value: Any) -> None:
        super().__init__(
            f"{entity_type} with {field} '{value}' already exists",
            context={"entity_type": entity_type, "field": field, "value": value},
        )


class InvalidOperationError(StoryBibleError):
    code = "INVALID_OPERATION"
    status_code = 400


class ReferenceNotFoundError(StoryBibleError):
    code = "REFERENCE_NOT_FOUND"
    status_code = 400

    def __init__(self, entity_type: str, entity_id: Any, field: str) -> None:
        super().__init__(
            f"Referenced {entity_type} {entity_id} not found (field: {field})",
            context={"entity_type": entity_type, "entity_id": str(entity_id), "field": field},
        )
        self.field = field


class SelfReferenceError(StoryBibleError):
    code = "SELF_REFERENCE"
    status_code = 400

    def __init__(self, entity_type: str, field1: str, field2: str) -> None:
        super().__init__(
            f"{entity_type}: {field1} and {field2} cannot be the same",
            context={"entity_type": entity_type, "fields": [field1, field2]},
        )


class DatabaseError(StoryBibleError):
    code = "DATABASE_ERROR"
    status_code = 500


class TransactionError(DatabaseError):
    code = "TRANSACTION_ERROR"


class ExportError(StoryBibleError):
    code = "EXPORT_ERROR"
    status_code = 500


AI_PROVIDER_ERROR = "AI_PROVIDER_ERROR"
AI_RATE_LIMITED = "AI_RATE_LIMITED"
AI_CONTEXT_TOO_LARGE = "AI_CONTEXT_TOO_LARGE"
AI_CONTENT_FILTERED = "AI_CONTENT_FILTERED"


class AIProviderError(StoryBibleError):
    """Raised when the upstream language model cannot serve a request."""

    code = AI_PROVIDER_ERROR
    status_code = 502

    def __init__(self, message: str, code: str = AI_PROVIDER_ERROR, *, retriable: bool = False) -> None:
        super().__init__(message, code=code, context={"retriable": retriable})
        self.retriable = retriable


__all__ = [
    "AIProviderError",
    "AI_CONTENT_FILTERED",
    "AI_CONTEXT_TOO_LARGE",
    "AI_PROVIDER_ERROR",
    "AI_RATE_LIMITED",
    "DatabaseError",
    "DuplicateEntityError",
    "EntityNotFoundError",
    "ExportError",
    "InvalidOperationError",
    "ReferenceNotFoundError",
    "SelfReferenceError",
    "StoryBibleError",
    "TransactionError",
    "ValidationError",
]
