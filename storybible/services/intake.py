"""AI-assisted intake: turn free text or chapters into story bible entities.

Every extraction produces a :class:`DecomposeResult` that the author reviews
before :meth:`IntakeService.commit_entities` writes anything.
"""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from flask import current_app

from ..errors import StoryBibleError, ValidationError
from ..events import EventBus
from ..repositories import (
    ArcRepository,
    CharacterRepository,
    FactionRepository,
    ForeshadowingRepository,
    HookRepository,
    LocationRepository,
    RelationshipRepository,
    TimelineEventRepository,
    WorldRepository,
    transaction,
)
from .intake_schemas import (
    DecomposeResult,
    DuplicateCheckResponse,
    SchemaError,
    validate_decompose_result,
    validate_entity_data,
)
from .text_generation import extract_generation_parameters, get_text_generator, load_prompt_entry

DECOMPOSE_PROMPT_KEY = "intake_decompose"
CHAPTER_EXTRACT_PROMPT_KEY = "intake_chapter_extract"
DUPLICATE_CHECK_PROMPT_KEY = "intake_duplicate_check"

INTAKE_HINTS = ("character", "world", "plot", "location", "faction", "auto")
COMMIT_ENTITY_TYPES = (
    "character",
    "location",
    "faction",
    "world",
    "relationship",
    "arc",
    "foreshadowing",
    "hook",
    "timeline",
)
COMMIT_ACTIONS = ("create", "merge", "skip")

EXACT_MATCH_THRESHOLD = 0.95
AI_CHECK_THRESHOLD = 0.5

HINT_FOCUS = {
    "character": (
        "Focus on extracting CHARACTERS and their RELATIONSHIPS.\n"
        "重点提取角色及其关系。\n"
        "Primary: characters[] (name, role, appearance, motivation, voice_samples, conflict_type, template)\n"
        "Secondary: relationships[] (source_name, target_name, type, join_reason, independent_goal)\n"
        "Also extract any relationships mentioned between characters.\n"
        "同时提取角色之间提到的关系。"
    ),
    "world": (
        "Focus on extracting WORLD-BUILDING elements.\n"
        "重点提取世界观设定。\n"
        "Primary: world_rules (power_system, social_rules), locations[], factions[]\n"
        "Extract power systems, magic/cultivation rules, social norms, notable locations, and organizations.\n"
        "提取力量体系、修炼/魔法规则、社会规范、重要地点和组织。"
    ),
    "plot": (
        "Focus on extracting PLOT elements.\n"
        "重点提取剧情元素。\n"
        "Primary: arcs[], foreshadowing[], hooks[]\n"
        "Secondary: timeline[]\n"
        "Extract story arcs (main/sub), foreshadowing seeds, narrative hooks, and timeline events.\n"
        "提取故事弧线（主线/支线）、伏笔、叙事钩子和时间线事件。"
    ),
    "location": (
        "Focus on extracting LOCATIONS.\n"
        "重点提取地点。\n"
        "Primary: locations[] (name, type, significance, atmosphere)\n"
        "Secondary: factions[] (organizations based at these locations)\n"
        "提取地点的名称、类型、意义、氛围，以及驻扎在这些地点的势力。"
    ),
    "faction": (
        "Focus on extracting FACTIONS and organizations.\n"
        "重点提取势力和组织。\n"
        "Primary: factions[] (name, type, status, leader_name, stance_to_mc, goals, resources, internal_conflict)\n"
        "Secondary: locations[] (faction headquarters or territories)\n"
        "提取势力的名称、类型、领导者、对主角态度、目标、资源、内部矛盾。"
    ),
    "auto": (
        "Extract ALL types of Story Bible entities from the text.\n"
        "从文本中提取所有类型的故事圣经实体。\n"
        "Extract: characters, relationships, locations, factions, world_rules, arcs, foreshadowing, hooks, timeline.\n"
        "Focus on entities that are explicitly described with enough detail to be useful.\n"
        "重点提取有足够细节描述的实体。"
    ),
}

HINT_SCHEMAS = {
    "character": ["characters", "relationships"],
    "world": ["world_rules", "locations", "factions"],
    "plot": ["arcs", "foreshadowing", "hooks", "timeline"],
    "location": ["locations", "factions"],
    "faction": ["factions", "locations"],
    "auto": [
        "characters",
        "relationships",
        "locations",
        "factions",
        "world_rules",
        "foreshadowing",
        "arcs",
        "hooks",
        "timeline",
    ],
}


@dataclass
class DuplicateCandidate:
    index: int
    entity_type: str
    imported_name: str
    imported_data: Dict[str, Any]
    existing_id: str
    existing_name: str
    confidence: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class IntakeCommitResult:
    created: List[Dict[str, str]] = field(default_factory=list)
    merged: List[Dict[str, str]] = field(default_factory=list)
    skipped: int = 0
    unresolved: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalize_name(name: str) -> str:
    return "".join((name or "").strip().lower().split())


def compare_names(first: str, second: str) -> float:
    """Score two names between 0 and 1.

    Identical names after normalisation score 1.0; when one contains the other
    the score is the ratio of their lengths ("林墨" vs "林墨大师" is 0.5).
    """

    a, b = normalize_name(first), normalize_name(second)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if a in b or b in a:
        return min(len(a), len(b)) / max(len(a), len(b))
    return 0.0


def build_entity_schemas(hint: str) -> str:
    descriptions = load_prompt_entry(DECOMPOSE_PROMPT_KEY).get("entity_schemas") or {}
    keys = HINT_SCHEMAS.get(hint, HINT_SCHEMAS["auto"])
    parts = [descriptions[key] for key in keys if key in descriptions]
    return "{\n" + ",\n".join(parts) + "\n}"


def _get_text_generator():
    return get_text_generator()


def _truncate(text: Optional[str], limit: int = 40) -> str:
    return (text or "")[:limit]


class IntakeService:
    def __init__(self, event_bus: EventBus) -> None:
        self.events = event_bus
        self.characters = CharacterRepository()
        self.relationships = RelationshipRepository()
        self.locations = LocationRepository()
        self.factions = FactionRepository()
        self.arcs = ArcRepository()
        self.foreshadowing = ForeshadowingRepository()
        self.hooks = HookRepository()
        self.world = WorldRepository()
        self.timeline = TimelineEventRepository()

    # ------------------------------------------------------------------
    # Document intake
    # ------------------------------------------------------------------
    def decompose(self, text: str, hint: str = "auto") -> DecomposeResult:
        if not text or not text.strip():
            raise ValidationError("Text is required", "text")
        hint = hint if hint in INTAKE_HINTS else "auto"

        entry = load_prompt_entry(DECOMPOSE_PROMPT_KEY)
        prompt = entry["prompt_template"].format(
            hint=HINT_FOCUS[hint],
            known_entities=self._known_entities(),
            text=text,
            entity_schemas=build_entity_schemas(hint),
        )
        raw = _get_text_generator().generate_json(
            prompt, **extract_generation_parameters(entry.get("parameters"))
        )
        return validate_decompose_result(raw)

    # ------------------------------------------------------------------
    # Chapter import
    # ------------------------------------------------------------------
    def extract_from_chapters(self, chapters: List[Dict[str, Any]]) -> Iterator[Dict[str, Any]]:
        """Run the three extraction passes, yielding progress events.

        Pass 1 finds characters, locations, factions and world rules; pass 2
        finds relationships between the pass 1 characters; pass 3 finds arcs,
        foreshadowing, hooks and timeline events. A failing pass yields an
        ``error`` event and ends the stream.
        """

        known = self._known_entities()
        chapters_text = "\n\n---\n\n".join(
            f"## {chapter.get('title', '')}\n\n{chapter.get('content', '')}" for chapter in chapters
        )

        yield {"type": "progress", "step": "Pass 1/3: Extracting characters, locations, world...", "pass": 1, "progress": 10}
        try:
            first = self._extract_pass(
                chapters_text,
                known,
                pass_target=(
                    "Extract ONLY: characters[], locations[], factions[], world_rules\n"
                    "本轮只提取：角色、地点、势力、世界观设定\n"
                    "Do NOT extract relationships, arcs, foreshadowing, hooks, or timeline in this pass."
                ),
                already_extracted="(first pass, nothing extracted yet)",
                schema_hint="auto",
            )
        except (StoryBibleError, ValueError) as exc:
            yield {"type": "error", "error": f"Pass 1 failed: {getattr(exc, 'message', str(exc))}"}
            return

        first_entities = {
            "characters": [c.model_dump(exclude_none=True) for c in first.characters],
            "locations": [l.model_dump(exclude_none=True) for l in first.locations],
            "factions": [f.model_dump(exclude_none=True) for f in first.factions],
        }
        if first.world_rules is not None:
            first_entities["world_rules"] = first.world_rules.model_dump(exclude_none=True)
        yield {
            "type": "pass_complete",
            "pass": 1,
            "progress": 35,
            "step": (
                f"Pass 1 complete: {len(first.characters)} characters, "
                f"{len(first.locations)} locations, {len(first.factions)} factions"
            ),
            "entities": first_entities,
        }

        yield {"type": "progress", "step": "Pass 2/3: Extracting relationships...", "pass": 2, "progress": 40}
        character_lines = "\n".join(f"- {c.name} ({c.role})" for c in first.characters) or "(none)"
        location_lines = "\n".join(f"- {l.name}" for l in first.locations) or "(none)"
        already = f"Characters:\n{character_lines}\n\nLocations:\n{location_lines}"
        try:
            second = self._extract_pass(
                chapters_text,
                known,
                pass_target=(
                    "Extract ONLY: relationships[]\n"
                    "本轮只提取：角色之间的关系\n"
                    'Use source_name/target_name from the characters listed in "Already Extracted".'
                ),
                already_extracted=already,
                schema_hint="character",
            )
        except (StoryBibleError, ValueError) as exc:
            yield {"type": "error", "error": f"Pass 2 failed: {getattr(exc, 'message', str(exc))}"}
            return

        yield {
            "type": "pass_complete",
            "pass": 2,
            "progress": 65,
            "step": f"Pass 2 complete: {len(second.relationships)} relationships",
            "entities": {"relationships": [r.model_dump(exclude_none=True) for r in second.relationships]},
        }

        yield {"type": "progress", "step": "Pass 3/3: Extracting plot elements...", "pass": 3, "progress": 70}
        relationship_lines = "\n".join(
            f"- {r.source_name} → {r.target_name} ({r.type})" for r in second.relationships
        ) or "(none)"
        try:
            third = self._extract_pass(
                chapters_text,
                known,
                pass_target=(
                    "Extract ONLY: arcs[], foreshadowing[], hooks[], timeline[]\n"
                    "本轮只提取：故事弧线、伏笔、钩子、时间线事件"
                ),
                already_extracted=f"{already}\n\nRelationships:\n{relationship_lines}",
                schema_hint="plot",
            )
        except (StoryBibleError, ValueError) as exc:
            yield {"type": "error", "error": f"Pass 3 failed: {getattr(exc, 'message', str(exc))}"}
            return

        yield {
            "type": "pass_complete",
            "pass": 3,
            "progress": 90,
            "step": (
                f"Pass 3 complete: {len(third.arcs)} arcs, {len(third.foreshadowing)} foreshadowing, "
                f"{len(third.hooks)} hooks, {len(third.timeline)} timeline events"
            ),
            "entities": {
                "arcs": [a.model_dump(exclude_none=True) for a in third.arcs],
                "foreshadowing": [f.model_dump(exclude_none=True) for f in third.foreshadowing],
                "hooks": [h.model_dump(exclude_none=True) for h in third.hooks],
                "timeline": [t.model_dump(exclude_none=True) for t in third.timeline],
            },
        }

        merged = DecomposeResult(
            characters=first.characters,
            relationships=second.relationships,
            locations=first.locations,
            factions=first.factions,
            world_rules=first.world_rules,
            foreshadowing=third.foreshadowing,
            arcs=third.arcs,
            hooks=third.hooks,
            timeline=third.timeline,
            warnings=[*first.warnings, *second.warnings, *third.warnings],
        )
        yield {"type": "done", "progress": 100, "step": "Extraction complete", "entities": merged.to_dict()}

    def _extract_pass(self, chapters_text: str, known: str, *, pass_target: str,
                      already_extracted: str, schema_hint: str) -> DecomposeResult:
        entry = load_prompt_entry(CHAPTER_EXTRACT_PROMPT_KEY)
        prompt = entry["prompt_template"].format(
            pass_target=pass_target,
            known_entities=known,
            already_extracted=already_extracted,
            chapters=chapters_text,
            entity_schemas=build_entity_schemas(schema_hint),
        )
        raw = _get_text_generator().generate_json(
            prompt, **extract_generation_parameters(entry.get("parameters"))
        )
        return validate_decompose_result(raw)

    # ------------------------------------------------------------------
    # Duplicate detection
    # ------------------------------------------------------------------
    def detect_duplicates(self, result: DecomposeResult) -> List[DuplicateCandidate]:
        candidates: List[DuplicateCandidate] = []

        for entity_type, extracted_items, existing_items, ai_check in (
            ("character", result.characters, self.characters.find_all(), True),
            ("location", result.locations, self.locations.find_all(), True),
            # Faction names rarely vary, so only exact matches count.
            ("faction", result.factions, self.factions.find_all(), False),
        ):
            for index, extracted in enumerate(extracted_items):
                imported = extracted.model_dump(exclude_none=True)
                for existing in existing_items:
                    score = compare_names(extracted.name, existing.name)
                    if score >= EXACT_MATCH_THRESHOLD:
                        confidence, reason = score, "exact name match"
                    elif ai_check and score >= AI_CHECK_THRESHOLD:
                        verdict = self._ai_duplicate_check(entity_type, imported, existing.to_dict())
                        if verdict is None or not verdict.is_same:
                            continue
                        confidence, reason = verdict.confidence, f"AI similarity: {verdict.reason}"
                    else:
                        continue
                    candidates.append(
                        DuplicateCandidate(
                            index=index,
                            entity_type=entity_type,
                            imported_name=extracted.name,
                            imported_data=imported,
                            existing_id=existing.id,
                            existing_name=existing.name,
                            confidence=confidence,
                            reason=reason,
                        )
                    )

        candidates.sort(key=lambda candidate: candidate.confidence, reverse=True)
        return candidates

    def _ai_duplicate_check(self, entity_type: str, imported: Dict[str, Any],
                            existing: Dict[str, Any]) -> Optional[DuplicateCheckResponse]:
        try:
            entry = load_prompt_entry(DUPLICATE_CHECK_PROMPT_KEY)
            prompt = entry["prompt_template"].format(
                entity_type=entity_type,
                imported_entity=json.dumps(imported, ensure_ascii=False, indent=2),
                existing_entity=json.dumps(existing, ensure_ascii=False, indent=2),
            )
            raw = _get_text_generator().generate_json(
                prompt, **extract_generation_parameters(entry.get("parameters"))
            )
            return DuplicateCheckResponse.model_validate(raw)
        except (StoryBibleError, SchemaError, ValueError) as exc:
            current_app.logger.warning("AI duplicate check for %s failed; treating as distinct. Error: %s", entity_type, exc)
            return None

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------
    def commit_entities(self, entities: List[Dict[str, Any]]) -> IntakeCommitResult:
        """Write reviewed entities in dependency order inside one transaction.

        Names in relationships, faction leaders and timeline events resolve
        against existing entities and those created earlier in the batch.
        """

        if not entities:
            raise ValidationError("At least one entity is required", "entities")
        for position, entity in enumerate(entities):
            if entity.get("entity_type") not in COMMIT_ENTITY_TYPES:
                raise ValidationError(f"Unknown entity type: {entity.get('entity_type')}", f"entities.{position}.entity_type")
            if entity.get("action") not in COMMIT_ACTIONS:
                raise ValidationError(f"Unknown action: {entity.get('action')}", f"entities.{position}.action")

        result = IntakeCommitResult()
        by_type: Dict[str, List[Dict[str, Any]]] = {}
        for entity in entities:
            by_type.setdefault(entity["entity_type"], []).append(entity)

        with transaction("commit intake entities"):
            character_ids = {normalize_name(c.name): c.id for c in self.characters.find_all()}
            location_ids = {normalize_name(l.name): l.id for l in self.locations.find_all()}

            for entity_type in COMMIT_ENTITY_TYPES:
                for item in by_type.get(entity_type, []):
                    if item["action"] == "skip":
                        result.skipped += 1
                        continue
                    committed = self._commit_one(item, character_ids, location_ids)
                    if committed is None:
                        result.unresolved += 1
                    elif item["action"] == "merge":
                        result.merged.append(committed)
                    else:
                        result.created.append(committed)

        self.events.emit(
            "INTAKE_COMMITTED",
            created=len(result.created),
            merged=len(result.merged),
            skipped=result.skipped,
            unresolved=result.unresolved,
        )
        return result

    def _commit_one(self, item: Dict[str, Any], character_ids: Dict[str, str],
                    location_ids: Dict[str, str]) -> Optional[Dict[str, str]]:
        entity_type = item["entity_type"]
        raw_data = item.get("data") or {}
        existing_id = item.get("existing_id")

        if item["action"] == "merge" and existing_id:
            repository = {
                "character": self.characters,
                "location": self.locations,
                "faction": self.factions,
                "arc": self.arcs,
            }.get(entity_type)
            if repository is not None:
                updated = repository.update(existing_id, raw_data)
                if updated is None:
                    return None
                return {"type": entity_type, "id": str(existing_id), "name": raw_data.get("name") or str(existing_id)}

        try:
            data = validate_entity_data(entity_type, raw_data)
        except ValueError as exc:
            current_app.logger.warning("Skipping invalid %s during intake commit: %s", entity_type, exc)
            return None

        if entity_type == "character":
            character = self.characters.create(data)
            character_ids[normalize_name(character.name)] = character.id
            return {"type": "character", "id": character.id, "name": character.name}

        if entity_type == "location":
            location = self.locations.create(data)
            location_ids[normalize_name(location.name)] = location.id
            return {"type": "location", "id": location.id, "name": location.name}

        if entity_type == "faction":
            leader_name = data.pop("leader_name", None)
            leader_id = character_ids.get(normalize_name(leader_name)) if leader_name else None
            if leader_id:
                data["leader_id"] = leader_id
            faction = self.factions.create(data)
            return {"type": "faction", "id": faction.id, "name": faction.name}

        if entity_type == "world":
            if data.get("power_system"):
                self.world.set_power_system(data["power_system"])
            if data.get("social_rules"):
                self.world.set_social_rules(data["social_rules"])
            return {"type": "world", "id": "world", "name": "World Settings"}

        if entity_type == "relationship":
            source_id = character_ids.get(normalize_name(data["source_name"]))
            target_id = character_ids.get(normalize_name(data["target_name"]))
            if not source_id or not target_id or source_id == target_id:
                return None
            if self.relationships.find_between(source_id, target_id) is not None:
                return None
            relationship = self.relationships.create(dict(data, source_id=source_id, target_id=target_id))
            return {
                "type": "relationship",
                "id": str(relationship.id),
                "name": f"{data['source_name']} → {data['target_name']}",
            }

        if entity_type == "arc":
            arc = self.arcs.create(dict(data, status=data.get("status", "planned"), progress=0))
            return {"type": "arc", "id": arc.id, "name": arc.name}

        if entity_type == "foreshadowing":
            item_row = self.foreshadowing.create(dict(data, status="active", hints=[]))
            return {"type": "foreshadowing", "id": item_row.id, "name": _truncate(item_row.content)}

        if entity_type == "hook":
            hook = self.hooks.create(data)
            return {"type": "hook", "id": hook.id, "name": _truncate(hook.content)}

        if entity_type == "timeline":
            related_characters = [
                character_ids[key]
                for key in (normalize_name(n) for n in data.get("related_character_names") or [])
                if key in character_ids
            ]
            related_locations = [
                location_ids[key]
                for key in (normalize_name(n) for n in data.get("related_location_names") or [])
                if key in location_ids
            ]
            event = self.timeline.create(
                {
                    "description": data["description"],
                    "event_date": data.get("event_date"),
                    "related_characters": related_characters,
                    "related_locations": related_locations,
                }
            )
            return {"type": "timeline", "id": str(event.id), "name": _truncate(data["description"])}

        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _known_entities(self) -> str:
        parts = []
        characters = self.characters.find_all()
        if characters:
            parts.append(
                "Characters / 角色:\n" + "\n".join(f"- {c.name} ({c.role}, ID: {c.id})" for c in characters)
            )
        locations = self.locations.find_all()
        if locations:
            parts.append("Locations / 地点:\n" + "\n".join(f"- {l.name} (ID: {l.id})" for l in locations))
        factions = self.factions.find_all()
        if factions:
            parts.append("Factions / 势力:\n" + "\n".join(f"- {f.name} (ID: {f.id})" for f in factions))
        arcs = self.arcs.find_all()
        if arcs:
            parts.append("Arcs / 弧线:\n" + "\n".join(f"- {a.name} ({a.type}, ID: {a.id})" for a in arcs))
        return "\n\n".join(parts) if parts else "(none, the Story Bible is empty)"


__all__ = [
    "DuplicateCandidate",
    "HINT_FOCUS",
    "HINT_SCHEMAS",
    "INTAKE_HINTS",
    "IntakeCommitResult",
    "IntakeService",
    "build_entity_schemas",
    "compare_names",
    "normalize_name",
]
