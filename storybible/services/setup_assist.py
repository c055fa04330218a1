"""Suggest characters, locations and foreshadowing for a chapter.

Candidates come from three sources, each with a fixed confidence:

* ``outline_mention`` (0.9): a known name appears in the chapter outline.
* ``previous_chapter`` (0.7): carried over from the chapter before it.
* ``arc_roster`` (0.5): appears in another chapter of the same arc.

Entities already assigned to the chapter are never suggested.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional, Set

from ..models import Chapter
from ..repositories import (
    ChapterRepository,
    CharacterRepository,
    ForeshadowingRepository,
    LocationRepository,
)

PREVIOUS_CHAPTER_CONFIDENCE = 0.7
ARC_ROSTER_CONFIDENCE = 0.5
OUTLINE_MENTION_CONFIDENCE = 0.9


@dataclass
class SetupSuggestion:
    entity_type: str
    entity_id: str
    name: str
    source: str
    confidence: float

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def _truncate(text: str, limit: int = 50) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def outline_text(outline) -> str:
    if not outline:
        return ""
    if isinstance(outline, str):
        return outline
    parts = [outline.get("goal"), *(outline.get("scenes") or []), outline.get("hook_ending")]
    return " ".join(str(part) for part in parts if part)


class ChapterSetupAssist:
    def __init__(self) -> None:
        self.chapters = ChapterRepository()
        self.characters = CharacterRepository()
        self.locations = LocationRepository()
        self.foreshadowing = ForeshadowingRepository()

    def suggest(self, chapter_id: int) -> List[SetupSuggestion]:
        chapter = self.chapters.find_by_id(chapter_id)
        if chapter is None:
            return []

        assigned_characters = set(chapter.characters or [])
        assigned_locations = set(chapter.locations or [])
        assigned_foreshadowing = set(chapter.foreshadowing_hinted or [])
        suggestions: Dict[str, SetupSuggestion] = {}

        previous = self._previous_chapter(chapter)
        if previous is not None:
            self._add_characters(
                previous.characters, assigned_characters, "previous_chapter", PREVIOUS_CHAPTER_CONFIDENCE, suggestions
            )
            self._add_locations(
                previous.locations, assigned_locations, "previous_chapter", PREVIOUS_CHAPTER_CONFIDENCE, suggestions
            )
            self._add_foreshadowing(
                previous.foreshadowing_hinted,
                assigned_foreshadowing,
                "previous_chapter",
                PREVIOUS_CHAPTER_CONFIDENCE,
                suggestions,
            )

        if chapter.arc_id:
            roster: List[str] = []
            for other in self.chapters.find_by_arc(chapter.arc_id):
                if other.id == chapter.id:
                    continue
                roster.extend(cid for cid in other.characters or [] if cid not in roster)
            self._add_characters(roster, assigned_characters, "arc_roster", ARC_ROSTER_CONFIDENCE, suggestions)

        text = outline_text(chapter.outline)
        if text:
            for character in self.characters.find_all():
                if character.id not in assigned_characters and character.name and character.name in text:
                    suggestions[f"character-{character.id}"] = SetupSuggestion(
                        "character", character.id, character.name, "outline_mention", OUTLINE_MENTION_CONFIDENCE
                    )
            for location in self.locations.find_all():
                if location.id not in assigned_locations and location.name and location.name in text:
                    suggestions[f"location-{location.id}"] = SetupSuggestion(
                        "location", location.id, location.name, "outline_mention", OUTLINE_MENTION_CONFIDENCE
                    )

        return sorted(suggestions.values(), key=lambda item: item.confidence, reverse=True)

    def _previous_chapter(self, chapter: Chapter) -> Optional[Chapter]:
        if chapter.volume_id:
            siblings = self.chapters.find_by_volume(chapter.volume_id)
        else:
            siblings = self.chapters.find_all()
        ids = [sibling.id for sibling in siblings]
        if chapter.id not in ids:
            return None
        index = ids.index(chapter.id)
        return siblings[index - 1] if index > 0 else None

    def _add_characters(self, ids: Optional[Iterable[str]], assigned: Set[str], source: str,
                        confidence: float, suggestions: Dict[str, SetupSuggestion]) -> None:
        for character in self.characters.find_by_ids(ids or []):
            key = f"character-{character.id}"
            if character.id in assigned or key in suggestions:
                continue
            suggestions[key] = SetupSuggestion("character", character.id, character.name, source, confidence)

    def _add_locations(self, ids: Optional[Iterable[str]], assigned: Set[str], source: str,
                       confidence: float, suggestions: Dict[str, SetupSuggestion]) -> None:
        for location in self.locations.find_by_ids(ids or []):
            key = f"location-{location.id}"
            if location.id in assigned or key in suggestions:
                continue
            suggestions[key] = SetupSuggestion("location", location.id, location.name, source, confidence)

    def _add_foreshadowing(self, ids: Optional[Iterable[str]], assigned: Set[str], source: str,
                           confidence: float, suggestions: Dict[str, SetupSuggestion]) -> None:
        for item in self.foreshadowing.find_by_ids(ids or []):
            key = f"foreshadowing-{item.id}"
            if item.id in assigned or key in suggestions or item.status != "active":
                continue
            suggestions[key] = SetupSuggestion(
                "foreshadowing", item.id, _truncate(item.content or ""), source, confidence
            )


__all__ = ["ChapterSetupAssist", "SetupSuggestion", "outline_text"]
