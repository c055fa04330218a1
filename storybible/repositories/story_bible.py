from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import or_

from ..extensions import db
from ..models import (
    Arc,
    Character,
    Faction,
    Foreshadowing,
    Hook,
    Location,
    Relationship,
    TimelineEvent,
    World,
)
from .base import LIKE_ESCAPE, BaseRepository, contains_pattern

WORLD_ID = "main"


class CharacterRepository(BaseRepository):
    model = Character
    id_prefix = "C"
    fields = (
        "name",
        "role",
        "appearance",
        "voice_samples",
        "motivation",
        "conflict_type",
        "template",
        "facets",
        "arc",
        "first_appearance",
        "faction_id",
    )

    def find_by_role(self, role: str) -> List[Character]:
        return Character.query.filter_by(role=role).order_by(Character.id).all()

    def clear_faction(self, faction_id: str) -> int:
        updated = Character.query.filter_by(faction_id=faction_id).update(
            {"faction_id": None}, synchronize_session=False
        )
        db.session.flush()
        return updated

    def search(self, query: str) -> List[Character]:
        pattern = contains_pattern(query)
        return (
            Character.query.filter(
                or_(
                    Character.name.ilike(pattern, escape=LIKE_ESCAPE),
                    Character.appearance.ilike(pattern, escape=LIKE_ESCAPE),
                )
            )
            .order_by(Character.name)
            .all()
        )


class RelationshipRepository(BaseRepository):
    model = Relationship
    fields = (
        "source_id",
        "target_id",
        "type",
        "join_reason",
        "independent_goal",
        "disagree_scenarios",
        "leave_scenarios",
        "mc_needs",
        "evolution",
    )

    def find_by_character(self, character_id: str) -> List[Relationship]:
        return (
            Relationship.query.filter(
                or_(Relationship.source_id == character_id, Relationship.target_id == character_id)
            )
            .order_by(Relationship.id)
            .all()
        )

    def find_between(self, source_id: str, target_id: str) -> Optional[Relationship]:
        return Relationship.query.filter_by(source_id=source_id, target_id=target_id).first()

    def delete_by_character(self, character_id: str) -> int:
        deleted = Relationship.query.filter(
            or_(Relationship.source_id == character_id, Relationship.target_id == character_id)
        ).delete(synchronize_session=False)
        db.session.flush()
        return deleted


class WorldRepository(BaseRepository):
    model = World
    fields = ("power_system", "social_rules")

    def get(self) -> Optional[World]:
        return self.find_by_id(WORLD_ID)

    def upsert(self, data: Dict[str, Any]) -> World:
        world = self.get()
        if world is None:
            world = World(id=WORLD_ID)
            db.session.add(world)
        self._apply(world, data)
        db.session.flush()
        return world

    def set_power_system(self, power_system: Dict[str, Any]) -> World:
        return self.upsert({"power_system": power_system})

    def set_social_rules(self, rules: Dict[str, str]) -> World:
        return self.upsert({"social_rules": rules})


class LocationRepository(BaseRepository):
    model = Location
    id_prefix = "L"
    fields = ("name", "type", "significance", "atmosphere", "details")


class FactionRepository(BaseRepository):
    model = Faction
    id_prefix = "F"
    fields = (
        "name",
        "type",
        "status",
        "leader_id",
        "stance_to_mc",
        "goals",
        "resources",
        "internal_conflict",
    )

    def clear_leader(self, character_id: str) -> int:
        updated = Faction.query.filter_by(leader_id=character_id).update(
            {"leader_id": None}, synchronize_session=False
        )
        db.session.flush()
        return updated


class TimelineEventRepository(BaseRepository):
    model = TimelineEvent
    fields = ("event_date", "description", "related_characters", "related_locations")

    def _ordering(self):
        return (
            TimelineEvent.event_date.is_(None),
            TimelineEvent.event_date,
            TimelineEvent.created_at,
            TimelineEvent.id,
        )


class ArcRepository(BaseRepository):
    model = Arc
    id_prefix = "ARC"
    fields = (
        "name",
        "type",
        "chapter_start",
        "chapter_end",
        "status",
        "progress",
        "sections",
        "character_arcs",
        "main_arc_relation",
    )


class ForeshadowingRepository(BaseRepository):
    model = Foreshadowing
    id_prefix = "FS"
    fields = (
        "content",
        "planted_chapter",
        "planted_text",
        "hints",
        "planned_payoff",
        "resolved_chapter",
        "status",
        "term",
    )

    def find_active(self) -> List[Foreshadowing]:
        return Foreshadowing.query.filter_by(status="active").order_by(Foreshadowing.id).all()

    def add_hint(self, foreshadowing_id: str, chapter: int, text: str) -> Optional[Foreshadowing]:
        item = self.find_by_id(foreshadowing_id)
        if item is None:
            return None
        # JSON columns only detect reassignment, not in-place mutation.
        item.hints = [*(item.hints or []), {"chapter": chapter, "text": text}]
        db.session.flush()
        return item

    def resolve(self, foreshadowing_id: str, resolved_chapter: int) -> Optional[Foreshadowing]:
        return self.update(foreshadowing_id, {"status": "resolved", "resolved_chapter": resolved_chapter})

    def abandon(self, foreshadowing_id: str) -> Optional[Foreshadowing]:
        return self.update(foreshadowing_id, {"status": "abandoned"})


class HookRepository(BaseRepository):
    model = Hook
    id_prefix = "HK"
    fields = ("type", "chapter_id", "content", "hook_type", "strength")

    def find_by_chapter(self, chapter_id: int) -> List[Hook]:
        return Hook.query.filter_by(chapter_id=chapter_id).order_by(Hook.id).all()

    def detach_chapter(self, chapter_id: int) -> int:
        updated = Hook.query.filter_by(chapter_id=chapter_id).update(
            {"chapter_id": None}, synchronize_session=False
        )
        db.session.flush()
        return updated
