"""Context assembly for the writing assistant.

A chapter context is gathered in five layers, highest priority first:

* L1 (1000): the chapter text, its outline and the tail of the previous chapter
* L2 (800): characters, relationships between them, locations and the arc
* L3 (600): foreshadowing hinted in the chapter, active threads, previous hooks
* L4 (400): power system and social rules
* L5 (200): items picked by the writer

When the items do not fit the token budget, lower priorities are dropped first.
"""
from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ..errors import EntityNotFoundError
from ..models import Chapter, Character, Relationship
from ..repositories import (
    ArcRepository,
    ChapterRepository,
    CharacterRepository,
    ForeshadowingRepository,
    HookRepository,
    LocationRepository,
    RelationshipRepository,
    WorldRepository,
)

L1_PRIORITY = 1000
L2_PRIORITY = 800
L3_PRIORITY = 600
L4_PRIORITY = 400
L5_PRIORITY = 200

MODEL_CONTEXT_TOKENS = 1_000_000
OUTPUT_RESERVE = 4_000
PROMPT_RESERVE = 2_000
DEFAULT_CONTEXT_BUDGET = MODEL_CONTEXT_TOKENS - OUTPUT_RESERVE - PROMPT_RESERVE

PREV_CHAPTER_TAIL_LENGTH = 500

CONTEXT_ITEM_TYPES = (
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
)

# heading -> item types grouped under it, in output order
CONTEXT_SECTIONS = (
    ("Previous Content", ("chapter_content", "chapter_prev_tail")),
    ("Chapter Outline", ("chapter_outline", "arc")),
    ("Character Profiles", ("character", "relationship")),
    ("World Rules", ("location", "power_system", "social_rules")),
    ("Plot Threads", ("foreshadowing", "hook")),
    ("Additional Information", ("custom",)),
)

_CJK_PATTERN = re.compile(r"[\u4e00-\u9fff\u3400-\u4dbf\uf900-\ufaff]")


def count_tokens(text: Optional[str]) -> int:
    """Estimate tokens: 1.5 per CJK ideograph plus 1.3 per whitespace-separated word."""

    if not text:
        return 0
    cjk = len(_CJK_PATTERN.findall(text))
    words = len(_CJK_PATTERN.sub(" ", text).split())
    return math.ceil(cjk * 1.5 + words * 1.3)


@dataclass
class ContextItem:
    type: str
    content: str
    priority: int = L5_PRIORITY
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BuiltContext:
    items: List[ContextItem] = field(default_factory=list)
    total_tokens: int = 0
    truncated: bool = False

    def without(self, excluded_ids: Iterable[str]) -> "BuiltContext":
        excluded = set(excluded_ids or ())
        if not excluded:
            return self
        kept = [item for item in self.items if item.id not in excluded]
        return BuiltContext(kept, sum(count_tokens(item.content) for item in kept), self.truncated)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "total_tokens": self.total_tokens,
            "truncated": self.truncated,
        }


def truncate_to_budget(items: Iterable[ContextItem], budget: int) -> BuiltContext:
    """Keep items by descending priority while they fit; skipped items mark the result truncated."""

    result = BuiltContext()
    for item in sorted(items, key=lambda item: item.priority, reverse=True):
        tokens = count_tokens(item.content)
        if result.total_tokens + tokens <= budget:
            result.items.append(item)
            result.total_tokens += tokens
        else:
            result.truncated = True
    return result


def format_context(items: Iterable[ContextItem]) -> str:
    items = list(items)
    sections = []
    for heading, types in CONTEXT_SECTIONS:
        contents = [item.content for item in items if item.type in types]
        if contents:
            sections.append(f"## {heading}\n" + "\n\n".join(contents))
    return "<context>\n" + "\n\n".join(sections) + "\n</context>"


def format_character(character: Character) -> str:
    parts = [f"### {character.name} ({character.role})"]
    if character.appearance:
        parts.append(f"Appearance: {character.appearance}")

    motivation = character.motivation or {}
    if motivation:
        lines = ["Motivation:", f"  Surface: {motivation.get('surface') or ''}"]
        if motivation.get("hidden"):
            lines.append(f"  Hidden: {motivation['hidden']}")
        if motivation.get("core"):
            lines.append(f"  Core: {motivation['core']}")
        parts.append("\n".join(lines))

    facets = character.facets or {}
    if facets:
        lines = ["Personality:", f"  Public: {facets.get('public') or ''}"]
        for key, label in (("private", "Private"), ("hidden", "Hidden"), ("under_pressure", "Under pressure")):
            if facets.get(key):
                lines.append(f"  {label}: {facets[key]}")
        parts.append("\n".join(lines))

    if character.voice_samples:
        samples = "\n".join(f'  "{sample}"' for sample in character.voice_samples)
        parts.append(f"Voice samples:\n{samples}")
    return "\n".join(parts)


class ContextBuilder:
    def __init__(self, budget: int = DEFAULT_CONTEXT_BUDGET) -> None:
        self.budget = budget
        self.chapters = ChapterRepository()
        self.characters = CharacterRepository()
        self.relationships = RelationshipRepository()
        self.locations = LocationRepository()
        self.arcs = ArcRepository()
        self.foreshadowing = ForeshadowingRepository()
        self.hooks = HookRepository()
        self.world = WorldRepository()

    def scoped_relationships(self, character_ids: List[str]) -> List[Relationship]:
        """Relationships in either direction between any two of ``character_ids``."""

        found: List[Relationship] = []
        seen = set()
        for index, first in enumerate(character_ids):
            for second in character_ids[index + 1:]:
                for source_id, target_id in ((first, second), (second, first)):
                    relationship = self.relationships.find_between(source_id, target_id)
                    if relationship is not None and relationship.id not in seen:
                        seen.add(relationship.id)
                        found.append(relationship)
        return found


class ChapterContextBuilder(ContextBuilder):
    def build(
        self, chapter_id: int, additional_items: Optional[Iterable[ContextItem]] = None
    ) -> BuiltContext:
        chapter = self.chapters.find_by_id(chapter_id)
        if chapter is None:
            raise EntityNotFoundError("Chapter", chapter_id)

        previous = self.previous_chapter(chapter)
        items = [
            *self._required(chapter, previous),
            *self._references(chapter),
            *self._plot_threads(chapter, previous),
            *self._world_rules(),
        ]
        for item in additional_items or ():
            items.append(ContextItem(item.type, item.content, item.priority or L5_PRIORITY, item.id))
        return truncate_to_budget(items, self.budget)

    def previous_chapter(self, chapter: Chapter) -> Optional[Chapter]:
        if chapter.volume_id is not None:
            siblings = self.chapters.find_by_volume(chapter.volume_id)
        else:
            siblings = self.chapters.find_all()
        ids = [sibling.id for sibling in siblings]
        if chapter.id not in ids:
            return None
        position = ids.index(chapter.id)
        return siblings[position - 1] if position > 0 else None

    def _required(self, chapter: Chapter, previous: Optional[Chapter]) -> List[ContextItem]:
        items = []
        if chapter.content:
            items.append(ContextItem("chapter_content", chapter.content, L1_PRIORITY, str(chapter.id)))

        outline = chapter.outline or {}
        lines = []
        if outline.get("goal"):
            lines.append(f"Goal: {outline['goal']}")
        if outline.get("scenes"):
            scenes = "\n".join(f"  {number}. {scene}" for number, scene in enumerate(outline["scenes"], 1))
            lines.append(f"Scenes:\n{scenes}")
        if outline.get("hook_ending"):
            lines.append(f"Hook ending: {outline['hook_ending']}")
        if lines:
            items.append(ContextItem("chapter_outline", "\n".join(lines), L1_PRIORITY, str(chapter.id)))

        if previous is not None and previous.content:
            tail = previous.content[-PREV_CHAPTER_TAIL_LENGTH:]
            items.append(
                ContextItem(
                    "chapter_prev_tail", f"[Previous chapter ending]\n{tail}", L1_PRIORITY, f"prev-{previous.id}"
                )
            )
        return items

    def _references(self, chapter: Chapter) -> List[ContextItem]:
        items = []
        character_ids = list(chapter.characters or [])
        if character_ids:
            characters = self.characters.find_by_ids(character_ids)
            names = {character.id: character.name for character in characters}
            for character in characters:
                items.append(ContextItem("character", format_character(character), L2_PRIORITY, character.id))

            for relationship in self.scoped_relationships(character_ids):
                if relationship.source_id not in names or relationship.target_id not in names:
                    continue
                lines = [f"[Relationship] {names[relationship.source_id]} → {names[relationship.target_id]}: {relationship.type}"]
                if relationship.join_reason:
                    lines.append(f"  Join reason: {relationship.join_reason}")
                if relationship.independent_goal:
                    lines.append(f"  Independent goal: {relationship.independent_goal}")
                items.append(ContextItem("relationship", "\n".join(lines), L2_PRIORITY, f"rel-{relationship.id}"))

        for location in self.locations.find_by_ids(chapter.locations or []):
            lines = [f"### {location.name}"]
            if location.type:
                lines.append(f"Type: {location.type}")
            if location.atmosphere:
                lines.append(f"Atmosphere: {location.atmosphere}")
            if location.significance:
                lines.append(f"Significance: {location.significance}")
            items.append(ContextItem("location", "\n".join(lines), L2_PRIORITY, location.id))

        arc = self.arcs.find_by_id(chapter.arc_id) if chapter.arc_id else None
        if arc is not None:
            lines = [f"### Arc: {arc.name}", f"Type: {arc.type}", f"Status: {arc.status}"]
            sections = [section for section in arc.sections or [] if isinstance(section, dict)]
            if sections:
                lines.append("Sections:")
                lines.extend(f"  - {section.get('name', '')} ({section.get('status', 'planned')})" for section in sections)
            items.append(ContextItem("arc", "\n".join(lines), L2_PRIORITY, arc.id))
        return items

    def _plot_threads(self, chapter: Chapter, previous: Optional[Chapter]) -> List[ContextItem]:
        items = []
        hinted_ids = list(chapter.foreshadowing_hinted or [])
        for thread in self.foreshadowing.find_by_ids(hinted_ids):
            items.append(
                ContextItem(
                    "foreshadowing", f"[Foreshadowing hint] {thread.content} (status: {thread.status})", L3_PRIORITY, thread.id
                )
            )

        if chapter.arc_id:
            for thread in self.foreshadowing.find_active():
                if thread.id in hinted_ids:
                    continue
                items.append(
                    ContextItem(
                        "foreshadowing",
                        f"[Active foreshadowing] {thread.content} (status: {thread.status})",
                        L3_PRIORITY,
                        f"active-{thread.id}",
                    )
                )

        if previous is not None:
            for hook in self.hooks.find_by_chapter(previous.id):
                strength = hook.strength if hook.strength is not None else "unset"
                items.append(
                    ContextItem("hook", f"[Previous chapter hook] {hook.content} (strength: {strength})", L3_PRIORITY, hook.id)
                )
        return items

    def _world_rules(self) -> List[ContextItem]:
        world = self.world.get()
        if world is None:
            return []

        items = []
        power_system = world.power_system or {}
        if power_system.get("core_rules"):
            lines = [f"### Power system: {power_system.get('name') or ''}".rstrip()]
            if power_system.get("levels"):
                lines.append("Levels: " + " → ".join(power_system["levels"]))
            lines.append("Core rules:\n" + "\n".join(f"  - {rule}" for rule in power_system["core_rules"]))
            if power_system.get("constraints"):
                lines.append("Constraints:\n" + "\n".join(f"  - {rule}" for rule in power_system["constraints"]))
            items.append(ContextItem("power_system", "\n".join(lines), L4_PRIORITY, "power-system"))

        if world.social_rules:
            lines = ["### Social rules"] + [f"- {key}: {value}" for key, value in world.social_rules.items()]
            items.append(ContextItem("social_rules", "\n".join(lines), L4_PRIORITY, "social-rules"))
        return items


class GlobalContextBuilder(ContextBuilder):
    """Story-wide context for questions and brainstorming that are not tied to one chapter."""

    def build_full(self) -> BuiltContext:
        items = []
        characters = self.characters.find_all()
        if characters:
            entries = []
            for character in characters:
                lines = [f"- {character.name} ({character.role})"]
                if (character.motivation or {}).get("surface"):
                    lines.append(f"  Motivation: {character.motivation['surface']}")
                if (character.facets or {}).get("public"):
                    lines.append(f"  Personality: {character.facets['public']}")
                entries.append("\n".join(lines))
            items.append(ContextItem("character", "## Characters\n" + "\n".join(entries), L2_PRIORITY, "global-characters"))

        relationships = self.relationships.find_all()
        if relationships:
            names = {character.id: character.name for character in characters}
            lines = [
                f"- {names.get(rel.source_id, rel.source_id)} → {names.get(rel.target_id, rel.target_id)}: {rel.type}"
                for rel in relationships
            ]
            items.append(ContextItem("relationship", "## Relationships\n" + "\n".join(lines), L2_PRIORITY, "global-relationships"))

        arcs = self.arcs.find_all()
        if arcs:
            lines = [f"- {arc.name} ({arc.type}, {arc.status})" for arc in arcs]
            items.append(ContextItem("arc", "## Arcs\n" + "\n".join(lines), L2_PRIORITY, "global-arcs"))

        locations = self.locations.find_all()
        if locations:
            lines = [f"- {loc.name} ({loc.type})" if loc.type else f"- {loc.name}" for loc in locations]
            items.append(ContextItem("location", "## Locations\n" + "\n".join(lines), L2_PRIORITY, "global-locations"))

        threads = self.foreshadowing.find_all()
        if threads:
            lines = [f"- {thread.content} ({thread.status})" for thread in threads]
            items.append(
                ContextItem("foreshadowing", "## Foreshadowing\n" + "\n".join(lines), L3_PRIORITY, "global-foreshadowing")
            )

        world = self.world.get()
        if world is not None and world.power_system:
            lines = [f"## Power system: {world.power_system.get('name') or ''}".rstrip()]
            if world.power_system.get("core_rules"):
                lines.append("Core rules: " + ", ".join(world.power_system["core_rules"]))
            items.append(ContextItem("power_system", "\n".join(lines), L4_PRIORITY, "global-power-system"))
        if world is not None and world.social_rules:
            lines = [f"- {key}: {value}" for key, value in world.social_rules.items()]
            items.append(ContextItem("social_rules", "## Social rules\n" + "\n".join(lines), L4_PRIORITY, "global-social-rules"))

        return truncate_to_budget(items, self.budget)

    def build_summary(self) -> BuiltContext:
        items = []
        characters = self.characters.find_all()
        if characters:
            summary = ", ".join(f"{character.name}({character.role})" for character in characters)
            items.append(ContextItem("character", f"Characters: {summary}", L2_PRIORITY, "summary-characters"))

        arcs = self.arcs.find_all()
        if arcs:
            summary = ", ".join(f"{arc.name}({arc.status})" for arc in arcs)
            items.append(ContextItem("arc", f"Arcs: {summary}", L2_PRIORITY, "summary-arcs"))

        active = self.foreshadowing.find_active()
        if active:
            summary = "; ".join(thread.content for thread in active)
            items.append(ContextItem("foreshadowing", f"Active foreshadowing: {summary}", L3_PRIORITY, "summary-foreshadowing"))

        return truncate_to_budget(items, self.budget)


__all__ = [
    "BuiltContext",
    "CONTEXT_ITEM_TYPES",
    "ChapterContextBuilder",
    "ContextItem",
    "DEFAULT_CONTEXT_BUDGET",
    "GlobalContextBuilder",
    "L1_PRIORITY",
    "L2_PRIORITY",
    "L3_PRIORITY",
    "L4_PRIORITY",
    "L5_PRIORITY",
    "count_tokens",
    "format_character",
    "format_context",
    "truncate_to_budget",
]
