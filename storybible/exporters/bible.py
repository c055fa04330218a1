"""Render the story bible as a structured Markdown reference document."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ..models import Arc, Character, Faction, Foreshadowing, Hook, Location, Relationship, World
from .base import ExportResult

BIBLE_SECTIONS = (
    "characters",
    "relationships",
    "world",
    "locations",
    "factions",
    "arcs",
    "foreshadowing",
    "hooks",
)


@dataclass
class BibleData:
    characters: List[Character] = field(default_factory=list)
    relationships: List[Relationship] = field(default_factory=list)
    world: Optional[World] = None
    locations: List[Location] = field(default_factory=list)
    factions: List[Faction] = field(default_factory=list)
    arcs: List[Arc] = field(default_factory=list)
    foreshadowing: List[Foreshadowing] = field(default_factory=list)
    hooks: List[Hook] = field(default_factory=list)


def escape_cell(value) -> str:
    return str(value).replace("|", "\\|")


def _truncate(text: str, limit: int = 50) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def _bullets(label: str, items: Iterable[str]) -> List[str]:
    items = list(items)
    if not items:
        return []
    return [f"**{label}:**", *(f"- {item}" for item in items), ""]


class BibleFormatter:
    def format(self, data: BibleData, sections: Optional[Sequence[str]] = None) -> ExportResult:
        renderers: Dict[str, Callable[[BibleData], List[str]]] = {
            "characters": self._characters,
            "relationships": self._relationships,
            "world": self._world,
            "locations": self._locations,
            "factions": self._factions,
            "arcs": self._arcs,
            "foreshadowing": self._foreshadowing,
            "hooks": self._hooks,
        }

        lines = ["# Story Bible", ""]
        for section in sections or BIBLE_SECTIONS:
            renderer = renderers.get(section)
            if renderer is None:
                continue
            section_lines = renderer(data)
            if section_lines:
                lines.extend(section_lines)
                lines.append("")

        if len(lines) <= 2:
            lines.extend(["*No Story Bible data yet.*", ""])

        return ExportResult(data="\n".join(lines), filename="story-bible.md", mime_type="text/markdown")

    @staticmethod
    def _characters(data: BibleData) -> List[str]:
        if not data.characters:
            return []
        lines = ["## Characters", ""]
        for character in data.characters:
            lines.extend([f"### {character.name} ({character.role})", ""])
            if character.appearance:
                lines.append(f"- **Appearance**: {character.appearance}")
            motivation = character.motivation or {}
            if motivation.get("surface"):
                lines.append(f"- **Motivation (surface)**: {motivation['surface']}")
            if motivation.get("hidden"):
                lines.append(f"- **Motivation (hidden)**: {motivation['hidden']}")
            if motivation.get("core"):
                lines.append(f"- **Motivation (core)**: {motivation['core']}")
            if character.conflict_type:
                lines.append(f"- **Conflict**: {character.conflict_type}")
            if character.template:
                lines.append(f"- **Template**: {character.template}")
            if character.voice_samples:
                lines.append(f'- **Voice**: "{character.voice_samples[0]}"')
            arc = character.arc or {}
            if arc.get("type"):
                lines.append(
                    f"- **Arc**: {arc['type']} ({arc.get('start_state', '?')} → {arc.get('end_state', '?')})"
                )
            lines.append("")
        return lines

    @staticmethod
    def _relationships(data: BibleData) -> List[str]:
        if not data.relationships:
            return []
        names = {character.id: character.name for character in data.characters}
        lines = [
            "## Relationships",
            "",
            "| Source | Target | Type | Join Reason | Independent Goal |",
            "|--------|--------|------|-------------|------------------|",
        ]
        for relationship in data.relationships:
            source = names.get(relationship.source_id, relationship.source_id)
            target = names.get(relationship.target_id, relationship.target_id)
            lines.append(
                f"| {escape_cell(source)} | {escape_cell(target)} | {escape_cell(relationship.type)} | "
                f"{escape_cell(relationship.join_reason or '-')} | {escape_cell(relationship.independent_goal or '-')} |"
            )
        lines.append("")
        return lines

    @staticmethod
    def _world(data: BibleData) -> List[str]:
        world = data.world
        if world is None or not (world.power_system or world.social_rules):
            return []
        lines = ["## World", ""]
        power_system = world.power_system or {}
        if power_system:
            lines.extend([f"### Power System: {power_system.get('name', '')}", ""])
            lines.extend(_bullets("Levels", power_system.get("levels") or []))
            lines.extend(_bullets("Core Rules", power_system.get("core_rules") or []))
            lines.extend(_bullets("Constraints", power_system.get("constraints") or []))
        if world.social_rules:
            lines.extend(["### Social Rules", ""])
            lines.extend(f"- **{key}**: {value}" for key, value in world.social_rules.items())
            lines.append("")
        return lines

    @staticmethod
    def _locations(data: BibleData) -> List[str]:
        if not data.locations:
            return []
        lines = ["## Locations", ""]
        for location in data.locations:
            lines.extend([f"### {location.name}", ""])
            if location.type:
                lines.append(f"- **Type**: {location.type}")
            if location.atmosphere:
                lines.append(f"- **Atmosphere**: {location.atmosphere}")
            if location.significance:
                lines.append(f"- **Significance**: {location.significance}")
            lines.append("")
        return lines

    @staticmethod
    def _factions(data: BibleData) -> List[str]:
        if not data.factions:
            return []
        names = {character.id: character.name for character in data.characters}
        lines = ["## Factions", ""]
        for faction in data.factions:
            lines.extend([f"### {faction.name}", ""])
            if faction.type:
                lines.append(f"- **Type**: {faction.type}")
            if faction.status:
                lines.append(f"- **Status**: {faction.status}")
            if faction.leader_id:
                lines.append(f"- **Leader**: {names.get(faction.leader_id, faction.leader_id)}")
            if faction.stance_to_mc:
                lines.append(f"- **Stance**: {faction.stance_to_mc}")
            if faction.goals:
                lines.append(f"- **Goals**: {', '.join(faction.goals)}")
            if faction.internal_conflict:
                lines.append(f"- **Internal Conflict**: {faction.internal_conflict}")
            lines.append("")
        return lines

    @staticmethod
    def _arcs(data: BibleData) -> List[str]:
        if not data.arcs:
            return []
        lines = ["## Story Arcs", ""]
        for arc in data.arcs:
            lines.extend([f"### {arc.name} ({arc.type}, {arc.status})", "", f"- **Progress**: {arc.progress}%"])
            if arc.chapter_start is not None:
                end = arc.chapter_end if arc.chapter_end is not None else "?"
                lines.append(f"- **Chapters**: {arc.chapter_start} - {end}")
            if arc.sections:
                lines.append("- **Sections**:")
                for section in arc.sections:
                    chapters = ", ".join(str(number) for number in section.get("chapters") or [])
                    lines.append(f"  - {section.get('name', '')} ({section.get('status', '')}): chapters {chapters}")
            if arc.main_arc_relation:
                lines.append(f"- **Main Arc Relation**: {arc.main_arc_relation}")
            lines.append("")
        return lines

    @staticmethod
    def _foreshadowing(data: BibleData) -> List[str]:
        if not data.foreshadowing:
            return []
        lines = [
            "## Foreshadowing",
            "",
            "| ID | Content | Status | Term | Planted | Payoff |",
            "|----|---------|--------|------|---------|--------|",
        ]
        for item in data.foreshadowing:
            planted = f"Ch {item.planted_chapter}" if item.planted_chapter is not None else "-"
            if item.resolved_chapter is not None:
                payoff = f"Ch {item.resolved_chapter}"
            elif item.planned_payoff is not None:
                payoff = f"Ch {item.planned_payoff} (planned)"
            else:
                payoff = "-"
            lines.append(
                f"| {escape_cell(item.id)} | {escape_cell(_truncate(item.content))} | {escape_cell(item.status)} | "
                f"{escape_cell(item.term or '-')} | {planted} | {payoff} |"
            )
        lines.append("")
        return lines

    @staticmethod
    def _hooks(data: BibleData) -> List[str]:
        if not data.hooks:
            return []
        lines = [
            "## Hooks",
            "",
            "| Type | Chapter | Content | Style | Strength |",
            "|------|---------|---------|-------|----------|",
        ]
        for hook in data.hooks:
            chapter = f"Ch {hook.chapter_id}" if hook.chapter_id is not None else "-"
            strength = hook.strength if hook.strength is not None else "-"
            lines.append(
                f"| {escape_cell(hook.type)} | {chapter} | {escape_cell(_truncate(hook.content))} | "
                f"{escape_cell(hook.hook_type or '-')} | {strength} |"
            )
        lines.append("")
        return lines


__all__ = ["BIBLE_SECTIONS", "BibleData", "BibleFormatter", "escape_cell"]
