from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from flask import current_app

from ..errors import ValidationError
from ..events import EventBus
from ..exporters import (
    BIBLE_SECTIONS,
    CHAPTER_FORMATTERS,
    BibleData,
    BibleFormatter,
    ExportOptions,
    ExportResult,
)
from ..models import Chapter
from ..repositories import (
    ArcRepository,
    ChapterRepository,
    CharacterRepository,
    FactionRepository,
    ForeshadowingRepository,
    HookRepository,
    LocationRepository,
    RelationshipRepository,
    VolumeRepository,
    WorldRepository,
)

EXPORT_FORMATS = tuple(CHAPTER_FORMATTERS)
RANGE_TYPES = ("all", "volume", "chapters")


def build_export_options(payload: Dict[str, Any]) -> ExportOptions:
    """Turn a request payload into :class:`ExportOptions`, validating the choices."""

    export_format = payload.get("format") or "md"
    if export_format not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format: {export_format}", "format")

    export_range = payload.get("range") or {"type": "all"}
    if not isinstance(export_range, dict):
        raise ValidationError("range must be an object", "range")

    chapter_ids = export_range.get("chapter_ids") or []
    if not isinstance(chapter_ids, list):
        raise ValidationError("chapter_ids must be a list", "range.chapter_ids")

    return ExportOptions(
        format=export_format,
        range_type=export_range.get("type") or "all",
        volume_id=export_range.get("volume_id"),
        chapter_ids=chapter_ids,
        include_outline=bool(payload.get("include_outline")),
        include_metadata=bool(payload.get("include_metadata")),
    )


class ExportService:
    def __init__(self, event_bus: EventBus) -> None:
        self.events = event_bus
        self.chapters = ChapterRepository()
        self.volumes = VolumeRepository()
        self.characters = CharacterRepository()
        self.relationships = RelationshipRepository()
        self.world = WorldRepository()
        self.locations = LocationRepository()
        self.factions = FactionRepository()
        self.arcs = ArcRepository()
        self.foreshadowing = ForeshadowingRepository()
        self.hooks = HookRepository()

    def export_chapters(self, options: ExportOptions) -> ExportResult:
        formatter_class = CHAPTER_FORMATTERS.get(options.format)
        if formatter_class is None:
            raise ValidationError(f"Unsupported export format: {options.format}", "format")

        chapters = self._resolve_chapters(options)
        result = formatter_class().format_chapters(chapters, self.volumes.find_all(), options)

        current_app.logger.info(
            "Exported %d chapters as %s (%s)", len(chapters), options.format, options.range_type
        )
        self.events.emit(
            "EXPORT_COMPLETED",
            format=options.format,
            chapter_count=len(chapters),
            filename=result.filename,
        )
        return result

    def export_story_bible(self, sections: Optional[Sequence[str]] = None) -> ExportResult:
        if sections:
            unknown = [section for section in sections if section not in BIBLE_SECTIONS]
            if unknown:
                raise ValidationError(f"Unknown story bible section: {unknown[0]}", "sections")

        data = BibleData(
            characters=self.characters.find_all(),
            relationships=self.relationships.find_all(),
            world=self.world.get(),
            locations=self.locations.find_all(),
            factions=self.factions.find_all(),
            arcs=self.arcs.find_all(),
            foreshadowing=self.foreshadowing.find_all(),
            hooks=self.hooks.find_all(),
        )
        result = BibleFormatter().format(data, sections)
        self.events.emit("EXPORT_COMPLETED", format="bible", filename=result.filename)
        return result

    def _resolve_chapters(self, options: ExportOptions) -> List[Chapter]:
        if options.range_type == "all":
            chapters = self.chapters.find_all()
        elif options.range_type == "volume":
            if options.volume_id is None:
                raise ValidationError("volume_id is required for volume range", "range.volume_id")
            chapters = self.chapters.find_by_volume(options.volume_id)
        elif options.range_type == "chapters":
            if not options.chapter_ids:
                raise ValidationError("chapter_ids is required for chapters range", "range.chapter_ids")
            chapters = self.chapters.find_by_ids(options.chapter_ids)
        else:
            raise ValidationError(f"Unknown range type: {options.range_type}", "range.type")
        return sorted(chapters, key=lambda chapter: (chapter.sort_order, chapter.id))


__all__ = ["EXPORT_FORMATS", "ExportService", "RANGE_TYPES", "build_export_options"]
