"""Lenient validation of model output for the intake pipeline.

The prompts ask for snake_case keys, but camelCase keys are accepted too since
models do not always follow the requested casing.
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as SchemaError
from pydantic.alias_generators import to_camel

from ..models import HOOK_STYLES, HOOK_TYPES

Confidence = Literal["high", "medium", "low"]


class ExtractedModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    confidence: Confidence = "medium"


class Motivation(BaseModel):
    surface: str
    hidden: Optional[str] = None
    core: Optional[str] = None


class ExtractedCharacter(ExtractedModel):
    name: str = Field(min_length=1)
    role: Literal["main", "supporting", "antagonist", "mentioned"] = "supporting"
    appearance: Optional[str] = None
    voice_samples: Optional[List[str]] = None
    motivation: Optional[Motivation] = None
    conflict_type: Optional[
        Literal["desire_vs_morality", "ideal_vs_reality", "self_vs_society", "love_vs_duty", "survival_vs_dignity"]
    ] = None
    template: Optional[
        Literal["avenger", "guardian", "seeker", "rebel", "redeemer", "bystander", "martyr", "fallen"]
    ] = None


class ExtractedRelationship(ExtractedModel):
    source_name: str = Field(min_length=1)
    target_name: str = Field(min_length=1)
    type: Literal["companion", "rival", "enemy", "mentor", "confidant", "lover"]
    join_reason: Optional[str] = None
    independent_goal: Optional[str] = None
    disagree_scenarios: Optional[List[str]] = None
    leave_scenarios: Optional[List[str]] = None
    mc_needs: Optional[str] = None
    evolution: Optional[str] = None


class ExtractedLocation(ExtractedModel):
    name: str = Field(min_length=1)
    type: Optional[str] = None
    significance: Optional[str] = None
    atmosphere: Optional[str] = None


class ExtractedFaction(ExtractedModel):
    name: str = Field(min_length=1)
    type: Optional[str] = None
    status: Optional[str] = None
    leader_name: Optional[str] = None
    stance_to_mc: Optional[Literal["friendly", "neutral", "hostile"]] = Field(default=None, alias="stanceToMC")
    goals: Optional[List[str]] = None
    resources: Optional[List[str]] = None
    internal_conflict: Optional[str] = None


class PowerSystem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    levels: Optional[List[str]] = None
    core_rules: Optional[List[str]] = None
    constraints: Optional[List[str]] = None


class ExtractedWorld(ExtractedModel):
    power_system: Optional[PowerSystem] = None
    social_rules: Optional[Dict[str, str]] = None


class ExtractedTimelineEvent(ExtractedModel):
    event_date: Optional[str] = None
    description: str = Field(min_length=1)
    related_character_names: Optional[List[str]] = None
    related_location_names: Optional[List[str]] = None


class ExtractedForeshadowing(ExtractedModel):
    content: str = Field(min_length=1)
    planted_text: Optional[str] = None
    term: Optional[Literal["short", "mid", "long"]] = None


class ExtractedArc(ExtractedModel):
    name: str = Field(min_length=1)
    type: Literal["main", "sub"]
    status: Optional[Literal["planned", "in_progress", "complete"]] = None
    main_arc_relation: Optional[str] = None


class ExtractedHook(ExtractedModel):
    type: str = Field(min_length=1)
    content: str = Field(min_length=1)
    hook_type: Optional[Literal["suspense", "anticipation", "emotion", "mystery"]] = None
    strength: Optional[int] = Field(default=None, ge=0, le=100)

    @model_validator(mode="after")
    def _normalise_type(self) -> "ExtractedHook":
        # Models often put the style ("mystery") where the placement belongs.
        if self.type in HOOK_STYLES:
            self.hook_type = self.type
            self.type = "chapter"
        elif self.type not in HOOK_TYPES:
            self.type = "chapter"
        return self


class DecomposeResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    characters: List[ExtractedCharacter] = []
    relationships: List[ExtractedRelationship] = []
    locations: List[ExtractedLocation] = []
    factions: List[ExtractedFaction] = []
    world_rules: Optional[ExtractedWorld] = None
    foreshadowing: List[ExtractedForeshadowing] = []
    arcs: List[ExtractedArc] = []
    hooks: List[ExtractedHook] = []
    timeline: List[ExtractedTimelineEvent] = []
    warnings: List[str] = []

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class DuplicateCheckResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_same: bool
    confidence: float = Field(ge=0, le=1)
    reason: str


class ImportedChapter(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1, max_length=500_000)
    sort_order: int = Field(default=0, ge=0, strict=True)


class ChapterImportRequest(BaseModel):
    chapters: List[ImportedChapter] = Field(min_length=1)


# result field -> (entity type used in warnings and commits, item schema)
LIST_FIELDS: Dict[str, Tuple[str, Type[ExtractedModel]]] = {
    "characters": ("character", ExtractedCharacter),
    "relationships": ("relationship", ExtractedRelationship),
    "locations": ("location", ExtractedLocation),
    "factions": ("faction", ExtractedFaction),
    "foreshadowing": ("foreshadowing", ExtractedForeshadowing),
    "arcs": ("arc", ExtractedArc),
    "hooks": ("hook", ExtractedHook),
    "timeline": ("timeline", ExtractedTimelineEvent),
}

ENTITY_SCHEMAS: Dict[str, Type[ExtractedModel]] = {
    entity_type: schema for entity_type, schema in LIST_FIELDS.values()
}
ENTITY_SCHEMAS["world"] = ExtractedWorld


def _first_error(exc: SchemaError) -> str:
    errors = exc.errors()
    if not errors:
        return "unknown error"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first['msg']}" if location else first["msg"]


def validate_decompose_result(raw: Any) -> DecomposeResult:
    """Validate a whole response, keeping valid items when some are broken."""

    try:
        return DecomposeResult.model_validate(raw)
    except SchemaError:
        pass

    result = DecomposeResult()
    if not isinstance(raw, dict):
        result.warnings.append("AI response was not a valid JSON object")
        return result

    for field, (entity_type, schema) in LIST_FIELDS.items():
        items = raw.get(field)
        if not isinstance(items, list):
            continue
        valid = []
        for item in items:
            try:
                valid.append(schema.model_validate(item))
            except SchemaError as exc:
                name = item.get("name", "unknown") if isinstance(item, dict) else "unknown"
                result.warnings.append(f'Failed to validate {entity_type} "{name}": {_first_error(exc)}')
        setattr(result, field, valid)

    world = raw.get("world_rules", raw.get("worldRules"))
    if world:
        try:
            result.world_rules = ExtractedWorld.model_validate(world)
        except SchemaError as exc:
            result.warnings.append(f"Failed to validate world rules: {_first_error(exc)}")

    extra_warnings = raw.get("warnings")
    if isinstance(extra_warnings, list):
        result.warnings = [str(w) for w in extra_warnings] + result.warnings
    return result


def validate_chapter_import(raw: Any) -> List[Dict[str, Any]]:
    """Validate an import-chapters body, raising ``ValueError`` with the first problem."""

    try:
        request = ChapterImportRequest.model_validate(raw)
    except SchemaError as exc:
        raise ValueError(_first_error(exc)) from exc
    return [chapter.model_dump() for chapter in request.chapters]


def validate_entity_data(entity_type: str, data: Any) -> Dict[str, Any]:
    """Validate one commit payload, returning it with defaults filled in."""

    schema = ENTITY_SCHEMAS.get(entity_type)
    if schema is None:
        raise ValueError(f"Unknown entity type: {entity_type}")
    try:
        return schema.model_validate(data).model_dump(exclude_none=True)
    except SchemaError as exc:
        raise ValueError(_first_error(exc)) from exc


__all__ = [
    "ChapterImportRequest",
    "DecomposeResult",
    "DuplicateCheckResponse",
    "ENTITY_SCHEMAS",
    "ImportedChapter",
    "LIST_FIELDS",
    "validate_chapter_import",
    "validate_decompose_result",
    "validate_entity_data",
]
