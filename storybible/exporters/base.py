"""Shared types for the chapter and story bible exporters."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from ..models import Chapter, Volume

DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@dataclass
class ExportResult:
    data: Union[str, bytes]
    filename: str
    mime_type: str

    def as_bytes(self) -> bytes:
        if isinstance(self.data, bytes):
            return self.data
        return self.data.encode("utf-8")


@dataclass
class ExportOptions:
    format: str = "md"
    range_type: str = "all"
    volume_id: Optional[int] = None
    chapter_ids: List[int] = field(default_factory=list)
    include_outline: bool = False
    include_metadata: bool = False


@dataclass
class VolumeGroup:
    volume: Optional[Volume]
    chapters: List[Chapter]


def group_chapters_by_volume(chapters: Sequence[Chapter], volumes: Sequence[Volume]) -> List[VolumeGroup]:
    """Group ``chapters`` under their volumes, in volume order.

    Chapters without a volume (or pointing at a volume not in ``volumes``)
    are collected into a trailing group whose volume is ``None``.
    """

    by_volume: Dict[Optional[int], List[Chapter]] = {}
    known_ids = {volume.id for volume in volumes}
    for chapter in chapters:
        key = chapter.volume_id if chapter.volume_id in known_ids else None
        by_volume.setdefault(key, []).append(chapter)

    groups = [
        VolumeGroup(volume=volume, chapters=by_volume[volume.id])
        for volume in volumes
        if by_volume.get(volume.id)
    ]
    if by_volume.get(None):
        groups.append(VolumeGroup(volume=None, chapters=by_volume[None]))
    return groups


def chapter_title(chapter: Chapter) -> str:
    return chapter.title or f"Chapter {chapter.sort_order}"


def volume_title(volume: Volume) -> str:
    return volume.name or f"Volume {volume.id}"


def outline_parts(outline: Any) -> Dict[str, str]:
    """Return the goal, scenes and hook of a chapter outline as display strings."""

    if not isinstance(outline, dict):
        return {}
    parts = {}
    if outline.get("goal"):
        parts["goal"] = str(outline["goal"])
    if outline.get("scenes"):
        parts["scenes"] = ", ".join(str(scene) for scene in outline["scenes"])
    if outline.get("hook_ending"):
        parts["hook"] = str(outline["hook_ending"])
    return parts


__all__ = [
    "DOCX_MIME_TYPE",
    "ExportOptions",
    "ExportResult",
    "VolumeGroup",
    "chapter_title",
    "group_chapters_by_volume",
    "outline_parts",
    "volume_title",
]
