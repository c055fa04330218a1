"""Request bodies of the writing assistant endpoints."""
from __future__ import annotations

from typing import Annotated, Any, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, Field, StrictInt, StrictStr, StringConstraints
from pydantic import ValidationError as SchemaError

from ..errors import ValidationError
from ..services.ai_context import ContextItem

ChapterId = Annotated[StrictInt, Field(gt=0)]
Text = Annotated[StrictStr, StringConstraints(strip_whitespace=True, min_length=1)]

ContextItemType = Literal[
    "chapter_content",
    "chapter_outline",
    "chapter_prev_tail",
    "character",
    "relationship",
    "location",
    "arc",
    "foreshadowing",
    "hook",
    "power_system",
    "social_rules",
    "custom",
]


class GenerationOptions(BaseModel):
    model: Optional[StrictStr] = None
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[Annotated[StrictInt, Field(gt=0)]] = None


class ContextItemBody(BaseModel):
    type: ContextItemType
    content: StrictStr
    id: Optional[StrictStr] = None
    priority: Optional[Annotated[StrictInt, Field(ge=0)]] = None

    def to_item(self) -> ContextItem:
        item = ContextItem(self.type, self.content, id=self.id)
        if self.priority:
            item.priority = self.priority
        return item


class AssistRequest(BaseModel):
    options: Optional[GenerationOptions] = None
    user_instruction: Optional[StrictStr] = None
    presets: List[StrictStr] = Field(default_factory=list)

    def options_dict(self) -> dict:
        return self.options.model_dump(exclude_none=True) if self.options else {}


class ContinueRequest(AssistRequest):
    chapter_id: ChapterId
    excluded_context_ids: List[StrictStr] = Field(default_factory=list)


class DialogueRequest(AssistRequest):
    character_ids: List[StrictStr] = Field(min_length=1)
    context: Text
    chapter_id: Optional[ChapterId] = None


class DescribeRequest(AssistRequest):
    location_id: Text
    mood: Text
    chapter_id: Optional[ChapterId] = None


class BrainstormRequest(AssistRequest):
    topic: Text
    chapter_id: Optional[ChapterId] = None


class AskRequest(BaseModel):
    question: Text
    options: Optional[GenerationOptions] = None


class CompleteRequest(BaseModel):
    prompt: Text
    context: List[ContextItemBody] = Field(default_factory=list)
    options: Optional[GenerationOptions] = None


class ContextRequest(BaseModel):
    chapter_id: ChapterId
    additional_items: List[ContextItemBody] = Field(default_factory=list)


RequestModel = TypeVar("RequestModel", bound=BaseModel)


def parse_request(model: Type[RequestModel], payload: Any) -> RequestModel:
    """Validate ``payload``; the first problem is raised as a ``ValidationError`` naming its field."""

    try:
        return model.model_validate(payload)
    except SchemaError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        message = f"{field}: {first['msg']}" if field else first["msg"]
        raise ValidationError(message, field) from exc


__all__ = [
    "AskRequest",
    "BrainstormRequest",
    "CompleteRequest",
    "ContextRequest",
    "ContinueRequest",
    "DescribeRequest",
    "DialogueRequest",
    "parse_request",
]
