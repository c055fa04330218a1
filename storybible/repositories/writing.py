from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from ..extensions import db
from ..models import Chapter, Version, Volume
from .base import BaseRepository

_CJK_PATTERN = re.compile(r"[一-龥]")
_LATIN_WORD_PATTERN = re.compile(r"[A-Za-z0-9]+")
_WHITESPACE_PATTERN = re.compile(r"\s+")

CHAPTER_REFERENCE_FIELDS = {
    "character": ("characters",),
    "location": ("locations",),
    "foreshadowing": ("foreshadowing_planted", "foreshadowing_hinted", "foreshadowing_resolved"),
}


def count_words(content: Optional[str]) -> int:
    """Count CJK ideographs individually plus runs of Latin letters and digits."""

    if not content or not content.strip():
        return 0
    normalized = _WHITESPACE_PATTERN.sub(" ", content.strip())
    return len(_CJK_PATTERN.findall(normalized)) + len(_LATIN_WORD_PATTERN.findall(normalized))


class VolumeRepository(BaseRepository):
    model = Volume
    fields = ("name", "theme", "core_conflict", "mc_growth", "chapter_start", "chapter_end", "status")


class ChapterRepository(BaseRepository):
    model = Chapter
    fields = (
        "volume_id",
        "arc_id",
        "title",
        "status",
        "sort_order",
        "outline",
        "characters",
        "locations",
        "foreshadowing_planted",
        "foreshadowing_hinted",
        "foreshadowing_resolved",
        "emotion_curve",
        "tension",
    )

    def _ordering(self):
        return (Chapter.sort_order, Chapter.id)

    def find_by_volume(self, volume_id: int) -> List[Chapter]:
        return Chapter.query.filter_by(volume_id=volume_id).order_by(*self._ordering()).all()

    def find_by_arc(self, arc_id: str) -> List[Chapter]:
        return Chapter.query.filter_by(arc_id=arc_id).order_by(*self._ordering()).all()

    def find_by_status(self, status: str) -> List[Chapter]:
        return Chapter.query.filter_by(status=status).order_by(*self._ordering()).all()

    def next_sort_order(self) -> int:
        current = db.session.query(func.max(Chapter.sort_order)).scalar()
        return int(current or 0) + 1

    def create(self, data: Dict[str, Any]) -> Chapter:
        payload = dict(data)
        if payload.get("status") is None:
            payload["status"] = "outline"
        payload.setdefault("characters", [])
        payload.setdefault("locations", [])
        if not payload.get("sort_order"):
            payload["sort_order"] = self.next_sort_order()
        chapter = super().create(payload)
        chapter.word_count = 0
        db.session.flush()
        return chapter

    def save_content(self, chapter_id: int, content: str) -> Optional[Chapter]:
        chapter = self.find_by_id(chapter_id)
        if chapter is None:
            return None
        chapter.content = content
        chapter.word_count = count_words(content)
        db.session.flush()
        return chapter

    def reorder(self, chapter_ids: List[int]) -> None:
        for position, chapter_id in enumerate(chapter_ids, start=1):
            chapter = self.find_by_id(chapter_id)
            if chapter is not None:
                chapter.sort_order = position
        db.session.flush()

    def delete_by_volume(self, volume_id: int) -> List[int]:
        chapters = self.find_by_volume(volume_id)
        deleted_ids = [chapter.id for chapter in chapters]
        for chapter in chapters:
            db.session.delete(chapter)
        db.session.flush()
        return deleted_ids

    def clear_arc(self, arc_id: str) -> int:
        updated = Chapter.query.filter_by(arc_id=arc_id).update({"arc_id": None}, synchronize_session=False)
        db.session.flush()
        return updated

    def total_word_count(self) -> int:
        return int(db.session.query(func.coalesce(func.sum(Chapter.word_count), 0)).scalar() or 0)

    def remove_reference(self, reference_type: str, entity_id: str) -> int:
        """Strip ``entity_id`` from every chapter array that can point at it."""

        touched = 0
        for chapter in Chapter.query.all():
            changed = False
            for attribute in CHAPTER_REFERENCE_FIELDS[reference_type]:
                values = getattr(chapter, attribute) or []
                if entity_id in values:
                    setattr(chapter, attribute, [value for value in values if value != entity_id])
                    changed = True
            if changed:
                touched += 1
        db.session.flush()
        return touched


class VersionRepository(BaseRepository):
    model = Version
    fields = ("entity_type", "entity_id", "content", "change_summary", "source")

    def find_by_chapter(self, chapter_id: int) -> List[Version]:
        return (
            Version.query.filter_by(entity_type="chapter", entity_id=str(chapter_id))
            .order_by(Version.created_at.desc(), Version.id.desc())
            .all()
        )

    def cleanup_old_versions(self, older_than_days: int, source: str = "auto") -> int:
        """Delete old chapter versions, keeping the first one per chapter per day.

        Only versions older than the cutoff and matching ``source`` are
        considered; ``source="all"`` disregards the origin.
        """

        cutoff = datetime.utcnow() - timedelta(days=older_than_days)
        criteria = [Version.entity_type == "chapter", Version.created_at < cutoff]
        if source != "all":
            criteria.append(Version.source == source)

        keep_ids = {
            row[0]
            for row in db.session.query(func.min(Version.id))
            .filter(*criteria)
            .group_by(Version.entity_id, func.date(Version.created_at))
            .all()
        }
        stale = [version for version in Version.query.filter(*criteria).all() if version.id not in keep_ids]
        for version in stale:
            db.session.delete(version)
        db.session.flush()
        return len(stale)


__all__ = [
    "ChapterRepository",
    "VersionRepository",
    "VolumeRepository",
    "count_words",
]
