"""Volumes, chapters, chapter content and version history."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..errors import EntityNotFoundError, ReferenceNotFoundError, ValidationError
from ..events import EventBus
from ..models import CHAPTER_STATUSES, EMOTION_CURVES, TENSION_LEVELS, VOLUME_STATUSES, Chapter, Version, Volume
from ..repositories import (
    ArcRepository,
    ChapterRepository,
    CharacterRepository,
    ForeshadowingRepository,
    HookRepository,
    LocationRepository,
    VersionRepository,
    VolumeRepository,
    transaction,
)

STATUS_ORDER = {status: position for position, status in enumerate(CHAPTER_STATUSES)}

_FORESHADOWING_FIELDS = ("foreshadowing_planted", "foreshadowing_hinted", "foreshadowing_resolved")


def _snapshot(chapter: Chapter) -> Dict[str, Any]:
    return {
        "content": chapter.content,
        "word_count": chapter.word_count,
        "title": chapter.title,
        "status": chapter.status,
    }


class WritingService:
    def __init__(self, event_bus: EventBus) -> None:
        self.events = event_bus
        self.volumes = VolumeRepository()
        self.chapters = ChapterRepository()
        self.versions = VersionRepository()
        self.arcs = ArcRepository()
        self.characters = CharacterRepository()
        self.locations = LocationRepository()
        self.foreshadowing = ForeshadowingRepository()
        self.hooks = HookRepository()

    # ---------------- validation ----------------
    @staticmethod
    def _check_volume_status(status: Optional[str]) -> None:
        if status is not None and status not in VOLUME_STATUSES:
            raise ValidationError(f"Invalid volume status: {status}", "status")

    @staticmethod
    def _check_chapter_status(status: Optional[str]) -> None:
        if status is not None and status not in CHAPTER_STATUSES:
            raise ValidationError(f"Invalid chapter status: {status}", "status")

    @staticmethod
    def _check_status_transition(current: str, target: str) -> None:
        """Forward moves go one step at a time; moving back is always allowed."""

        if STATUS_ORDER[target] - STATUS_ORDER[current] > 1:
            raise ValidationError(
                f"Invalid status transition: {current} → {target}. "
                "Must progress sequentially (outline → draft → revision → done)",
                "status",
            )

    def _check_references(self, data: Dict[str, Any]) -> None:
        volume_id = data.get("volume_id")
        if volume_id is not None and not self.volumes.exists(volume_id):
            raise ReferenceNotFoundError("Volume", volume_id, "volume_id")
        arc_id = data.get("arc_id")
        if arc_id is not None and not self.arcs.exists(arc_id):
            raise ReferenceNotFoundError("Arc", arc_id, "arc_id")

        for character_id in data.get("characters") or []:
            if not self.characters.exists(character_id):
                raise ReferenceNotFoundError("Character", character_id, "characters")
        for location_id in data.get("locations") or []:
            if not self.locations.exists(location_id):
                raise ReferenceNotFoundError("Location", location_id, "locations")
        for field in _FORESHADOWING_FIELDS:
            for foreshadowing_id in data.get(field) or []:
                if not self.foreshadowing.exists(foreshadowing_id):
                    raise ReferenceNotFoundError("Foreshadowing", foreshadowing_id, "foreshadowing")

        if data.get("emotion_curve") is not None and data["emotion_curve"] not in EMOTION_CURVES:
            raise ValidationError(f"Invalid emotion curve: {data['emotion_curve']}", "emotion_curve")
        if data.get("tension") is not None and data["tension"] not in TENSION_LEVELS:
            raise ValidationError(f"Invalid tension: {data['tension']}", "tension")

    # ---------------- volumes ----------------
    def create_volume(self, data: Dict[str, Any]) -> Volume:
        self._check_volume_status(data.get("status"))
        payload = dict(data)
        payload["status"] = data.get("status") or "planned"
        with transaction("create volume"):
            volume = self.volumes.create(payload)
        self.events.emit("VOLUME_CREATED", volume=volume.to_dict())
        return volume

    def get_volume(self, volume_id: int) -> Volume:
        volume = self.volumes.find_by_id(volume_id)
        if volume is None:
            raise EntityNotFoundError("Volume", volume_id)
        return volume

    def get_all_volumes(self) -> List[Volume]:
        return self.volumes.find_all()

    def update_volume(self, volume_id: int, data: Dict[str, Any]) -> Volume:
        self.get_volume(volume_id)
        self._check_volume_status(data.get("status"))
        with transaction("update volume"):
            volume = self.volumes.update(volume_id, data)
        self.events.emit("VOLUME_UPDATED", volume=volume.to_dict(), changes=data)
        return volume

    def delete_volume(self, volume_id: int) -> None:
        self.get_volume(volume_id)
        with transaction(f"delete volume {volume_id}"):
            for chapter in self.chapters.find_by_volume(volume_id):
                self.hooks.detach_chapter(chapter.id)
            deleted_chapter_ids = self.chapters.delete_by_volume(volume_id)
            self.volumes.delete(volume_id)
        for chapter_id in deleted_chapter_ids:
            self.events.emit("CHAPTER_DELETED", chapter_id=chapter_id)
        self.events.emit("VOLUME_DELETED", volume_id=volume_id)

    # ---------------- chapters ----------------
    def create_chapter(self, data: Dict[str, Any]) -> Chapter:
        self._check_chapter_status(data.get("status"))
        self._check_references(data)
        with transaction("create chapter"):
            chapter = self.chapters.create(data)
        self.events.emit("CHAPTER_CREATED", chapter=chapter.to_dict())
        return chapter

    def get_chapter(self, chapter_id: int) -> Chapter:
        chapter = self.chapters.find_by_id(chapter_id)
        if chapter is None:
            raise EntityNotFoundError("Chapter", chapter_id)
        return chapter

    def get_all_chapters(self) -> List[Chapter]:
        return self.chapters.find_all()

    def get_chapters_by_volume(self, volume_id: int) -> List[Chapter]:
        return self.chapters.find_by_volume(volume_id)

    def get_chapters_by_arc(self, arc_id: str) -> List[Chapter]:
        return self.chapters.find_by_arc(arc_id)

    def get_chapters_by_status(self, status: str) -> List[Chapter]:
        self._check_chapter_status(status)
        return self.chapters.find_by_status(status)

    def update_chapter(self, chapter_id: int, data: Dict[str, Any]) -> Chapter:
        existing = self.get_chapter(chapter_id)
        previous_status = existing.status
        new_status = data.get("status")

        self._check_chapter_status(new_status)
        if new_status is not None:
            self._check_status_transition(previous_status, new_status)
        self._check_references(data)

        with transaction("update chapter"):
            chapter = self.chapters.update(chapter_id, data)

        if new_status is not None and new_status != previous_status:
            self.events.emit(
                "CHAPTER_STATUS_CHANGED",
                chapter_id=chapter_id,
                old_status=previous_status,
                new_status=new_status,
            )
        self.events.emit("CHAPTER_UPDATED", chapter=chapter.to_dict(), changes=data)
        return chapter

    def delete_chapter(self, chapter_id: int) -> None:
        self.get_chapter(chapter_id)
        with transaction(f"delete chapter {chapter_id}"):
            self.hooks.detach_chapter(chapter_id)
            self.chapters.delete(chapter_id)
        self.events.emit("CHAPTER_DELETED", chapter_id=chapter_id)

    def reorder_chapters(self, chapter_ids: List[int]) -> None:
        for chapter_id in chapter_ids:
            self.get_chapter(chapter_id)
        with transaction("reorder chapters"):
            self.chapters.reorder(chapter_ids)
        self.events.emit("CHAPTERS_REORDERED", chapter_ids=list(chapter_ids))

    # ---------------- content ----------------
    def save_content(self, chapter_id: int, content: str, create_version: bool = False) -> Chapter:
        existing = self.get_chapter(chapter_id)
        old_word_count = existing.word_count or 0

        version = None
        with transaction("save chapter content"):
            chapter = self.chapters.save_content(chapter_id, content)
            if create_version:
                version = self.versions.create(
                    {
                        "entity_type": "chapter",
                        "entity_id": str(chapter_id),
                        "content": {"content": content, "word_count": chapter.word_count},
                        "change_summary": "Manual save",
                        "source": "manual",
                    }
                )

        if version is not None:
            self.events.emit("VERSION_CREATED", version=version.to_dict(), chapter_id=chapter_id)
        self.events.emit(
            "CHAPTER_SAVED",
            chapter=chapter.to_dict(),
            word_count_delta=chapter.word_count - old_word_count,
        )
        return chapter

    def get_word_count(self, chapter_id: int) -> int:
        return self.get_chapter(chapter_id).word_count or 0

    def get_total_word_count(self) -> int:
        return self.chapters.total_word_count()

    # ---------------- versions ----------------
    def create_version(self, chapter_id: int, change_summary: Optional[str] = None) -> Version:
        chapter = self.get_chapter(chapter_id)
        with transaction("create version"):
            version = self.versions.create(
                {
                    "entity_type": "chapter",
                    "entity_id": str(chapter_id),
                    "content": _snapshot(chapter),
                    "change_summary": change_summary or "Manual version",
                    "source": "manual",
                }
            )
        self.events.emit("VERSION_CREATED", version=version.to_dict(), chapter_id=chapter_id)
        return version

    def get_versions(self, chapter_id: int) -> List[Version]:
        return self.versions.find_by_chapter(chapter_id)

    def get_version(self, version_id: int) -> Version:
        version = self.versions.find_by_id(version_id)
        if version is None:
            raise EntityNotFoundError("Version", version_id)
        return version

    def compare_versions(self, version_id1: int, version_id2: int) -> Dict[str, int]:
        first = self.get_version(version_id1).content or {}
        second = self.get_version(version_id2).content or {}

        first_lines = (first.get("content") or "").split("\n")
        second_lines = (second.get("content") or "").split("\n")
        return {
            "added": max(0, len(second_lines) - len(first_lines)),
            "removed": max(0, len(first_lines) - len(second_lines)),
            "word_count_delta": (second.get("word_count") or 0) - (first.get("word_count") or 0),
        }

    def rollback_to_version(self, chapter_id: int, version_id: int) -> Chapter:
        chapter = self.get_chapter(chapter_id)
        version = self.get_version(version_id)
        if version.entity_type != "chapter" or version.entity_id != str(chapter_id):
            raise ValidationError(
                f"Version {version_id} does not belong to chapter {chapter_id}", "version_id"
            )

        restored_content = (version.content or {}).get("content") or ""
        with transaction(f"rollback chapter {chapter_id} to version {version_id}"):
            self.versions.create(
                {
                    "entity_type": "chapter",
                    "entity_id": str(chapter_id),
                    "content": _snapshot(chapter),
                    "change_summary": f"Rollback backup before restoring to version {version_id}",
                    "source": "rollback_backup",
                }
            )
            chapter = self.chapters.save_content(chapter_id, restored_content)

        self.events.emit("CHAPTER_ROLLED_BACK", chapter=chapter.to_dict(), version_id=version_id)
        return chapter

    def cleanup_old_versions(self, older_than_days: int) -> int:
        if isinstance(older_than_days, bool) or not isinstance(older_than_days, int) or older_than_days < 0:
            raise ValidationError("older_than_days must be a non-negative integer", "older_than_days")
        with transaction("clean up versions"):
            count = self.versions.cleanup_old_versions(older_than_days, "auto")
        self.events.emit("VERSIONS_CLEANED_UP", count=count, older_than_days=older_than_days)
        return count

    # ---------------- reference cleanup ----------------
    def cleanup_character_references(self, character_id: str) -> int:
        with transaction("clean up character references"):
            return self.chapters.remove_reference("character", character_id)

    def cleanup_location_references(self, location_id: str) -> int:
        with transaction("clean up location references"):
            return self.chapters.remove_reference("location", location_id)

    def cleanup_foreshadowing_references(self, foreshadowing_id: str) -> int:
        with transaction("clean up foreshadowing references"):
            return self.chapters.remove_reference("foreshadowing", foreshadowing_id)


__all__ = ["STATUS_ORDER", "WritingService"]
