"""Validation and orchestration for story bible entities."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from ..errors import (
    DuplicateEntityError,
    EntityNotFoundError,
    ReferenceNotFoundError,
    SelfReferenceError,
    ValidationError,
)
from ..events import EventBus
from ..models import (
    ARC_STATUSES,
    ARC_TYPES,
    CHARACTER_ROLES,
    FACTION_STANCES,
    FORESHADOWING_STATUSES,
    FORESHADOWING_TERMS,
    HOOK_STYLES,
    HOOK_TYPES,
    RELATIONSHIP_TYPES,
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
from ..repositories import (
    ArcRepository,
    ChapterRepository,
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


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _require_text(value: Any, message: str, field: str) -> str:
    if _is_blank(value):
        raise ValidationError(message, field)
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field)
    return value.strip()


def _check_choice(value: Any, choices: Iterable[str], label: str, field: str) -> None:
    if value is not None and value not in choices:
        raise ValidationError(f"Invalid {label}: {value}", field, {"value": value, "valid": list(choices)})


def _check_percentage(value: Any, label: str, field: str) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
        raise ValidationError(f"{label} must be an integer between 0 and 100", field, {"value": value})


class StoryBibleService:
    """CRUD for characters, relationships, world, locations, factions,
    timeline, arcs, foreshadowing and hooks.

    Every mutation runs inside :func:`transaction` and publishes an event on
    the bus once the commit succeeded.
    """

    def __init__(self, event_bus: EventBus) -> None:
        self.events = event_bus
        self.characters = CharacterRepository()
        self.relationships = RelationshipRepository()
        self.world = WorldRepository()
        self.locations = LocationRepository()
        self.factions = FactionRepository()
        self.timeline = TimelineEventRepository()
        self.arcs = ArcRepository()
        self.foreshadowing = ForeshadowingRepository()
        self.hooks = HookRepository()
        self.chapters = ChapterRepository()

    # ------------------------------------------------------------------
    # Characters
    # ------------------------------------------------------------------
    def _check_character_faction(self, data: Dict[str, Any]) -> None:
        faction_id = data.get("faction_id")
        if faction_id is not None and not self.factions.exists(faction_id):
            raise ReferenceNotFoundError("Faction", faction_id, "faction_id")

    def create_character(self, data: Dict[str, Any]) -> Character:
        name = _require_text(data.get("name"), "Character name is required", "name")
        _require_text(data.get("role"), "Character role is required", "role")
        _check_choice(data["role"], CHARACTER_ROLES, "character role", "role")
        self._check_character_faction(data)

        payload = dict(data, name=name)
        with transaction("create character"):
            character = self.characters.create(payload)
        self.events.emit("CHARACTER_CREATED", character=character.to_dict())
        return character

    def get_character(self, character_id: str) -> Character:
        character = self.characters.find_by_id(character_id)
        if character is None:
            raise EntityNotFoundError("Character", character_id)
        return character

    def get_all_characters(self) -> List[Character]:
        return self.characters.find_all()

    def get_characters_by_role(self, role: str) -> List[Character]:
        _check_choice(role, CHARACTER_ROLES, "character role", "role")
        return self.characters.find_by_role(role)

    def get_character_with_relations(self, character_id: str) -> Dict[str, Any]:
        character = self.get_character(character_id)
        relations = []
        for relationship in self.relationships.find_by_character(character_id):
            other_id = relationship.target_id if relationship.source_id == character_id else relationship.source_id
            other = self.characters.find_by_id(other_id)
            entry = relationship.to_dict()
            entry["target_name"] = other.name if other is not None else "Unknown"
            relations.append(entry)
        payload = character.to_dict()
        payload["relationships"] = relations
        return payload

    def update_character(self, character_id: str, data: Dict[str, Any]) -> Character:
        self.get_character(character_id)
        if "name" in data:
            _require_text(data["name"], "Character name cannot be empty", "name")
        if "role" in data:
            _check_choice(data["role"], CHARACTER_ROLES, "character role", "role")
        self._check_character_faction(data)

        with transaction("update character"):
            character = self.characters.update(character_id, data)
        self.events.emit("CHARACTER_UPDATED", character=character.to_dict(), changes=data)
        return character

    def delete_character(self, character_id: str) -> None:
        self.get_character(character_id)
        with transaction("delete character"):
            self.relationships.delete_by_character(character_id)
            self.factions.clear_leader(character_id)
            self.characters.delete(character_id)
            self.chapters.remove_reference("character", character_id)
        self.events.emit("CHARACTER_DELETED", character_id=character_id)

    def search_characters(self, query: str) -> List[Character]:
        if not isinstance(query, str) or _is_blank(query):
            return []
        return self.characters.search(query.strip())

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------
    def create_relationship(self, data: Dict[str, Any]) -> Relationship:
        source_id = data.get("source_id")
        target_id = data.get("target_id")
        if _is_blank(source_id) or _is_blank(target_id):
            raise ValidationError("Source and target character IDs are required")
        if source_id == target_id:
            raise SelfReferenceError("Relationship", "source_id", "target_id")
        if not self.characters.exists(source_id):
            raise ReferenceNotFoundError("Character", source_id, "source_id")
        if not self.characters.exists(target_id):
            raise ReferenceNotFoundError("Character", target_id, "target_id")
        _require_text(data.get("type"), "Relationship type is required", "type")
        _check_choice(data["type"], RELATIONSHIP_TYPES, "relationship type", "type")
        if self.relationships.find_between(source_id, target_id) is not None:
            raise DuplicateEntityError("Relationship", "source_id/target_id", f"{source_id}/{target_id}")

        with transaction("create relationship"):
            relationship = self.relationships.create(data)
        self.events.emit("RELATIONSHIP_CREATED", relationship=relationship.to_dict())
        return relationship

    def get_relationship(self, relationship_id: int) -> Relationship:
        relationship = self.relationships.find_by_id(relationship_id)
        if relationship is None:
            raise EntityNotFoundError("Relationship", relationship_id)
        return relationship

    def get_all_relationships(self) -> List[Relationship]:
        return self.relationships.find_all()

    def get_relationships_for_character(self, character_id: str) -> List[Relationship]:
        return self.relationships.find_by_character(character_id)

    def update_relationship(self, relationship_id: int, data: Dict[str, Any]) -> Relationship:
        self.get_relationship(relationship_id)
        if "type" in data:
            _check_choice(data["type"], RELATIONSHIP_TYPES, "relationship type", "type")
        # Endpoints are fixed; re-linking means deleting and recreating.
        changes = {key: value for key, value in data.items() if key not in ("source_id", "target_id")}

        with transaction("update relationship"):
            relationship = self.relationships.update(relationship_id, changes)
        self.events.emit("RELATIONSHIP_UPDATED", relationship=relationship.to_dict(), changes=changes)
        return relationship

    def delete_relationship(self, relationship_id: int) -> None:
        self.get_relationship(relationship_id)
        with transaction("delete relationship"):
            self.relationships.delete(relationship_id)
        self.events.emit("RELATIONSHIP_DELETED", relationship_id=relationship_id)

    # ------------------------------------------------------------------
    # World
    # ------------------------------------------------------------------
    def get_world(self) -> Optional[World]:
        return self.world.get()

    def update_world(self, data: Dict[str, Any]) -> World:
        if data.get("power_system") is not None:
            self._check_power_system(data["power_system"])
        if data.get("social_rules") is not None and not isinstance(data["social_rules"], dict):
            raise ValidationError("Social rules must be an object", "social_rules")

        with transaction("update world"):
            world = self.world.upsert(data)
        self.events.emit("WORLD_UPDATED", world=world.to_dict())
        return world

    def set_power_system(self, power_system: Dict[str, Any]) -> World:
        self._check_power_system(power_system)
        with transaction("set power system"):
            world = self.world.set_power_system(power_system)
        self.events.emit("WORLD_UPDATED", world=world.to_dict())
        return world

    def set_social_rules(self, rules: Dict[str, str]) -> World:
        if not isinstance(rules, dict):
            raise ValidationError("Social rules must be an object", "social_rules")
        with transaction("set social rules"):
            world = self.world.set_social_rules(rules)
        self.events.emit("WORLD_UPDATED", world=world.to_dict())
        return world

    @staticmethod
    def _check_power_system(power_system: Any) -> None:
        if not isinstance(power_system, dict):
            raise ValidationError("Power system name is required", "power_system.name")
        _require_text(power_system.get("name"), "Power system name is required", "power_system.name")

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------
    def create_location(self, data: Dict[str, Any]) -> Location:
        name = _require_text(data.get("name"), "Location name is required", "name")
        with transaction("create location"):
            location = self.locations.create(dict(data, name=name))
        self.events.emit("LOCATION_CREATED", location=location.to_dict())
        return location

    def get_location(self, location_id: str) -> Location:
        location = self.locations.find_by_id(location_id)
        if location is None:
            raise EntityNotFoundError("Location", location_id)
        return location

    def get_all_locations(self) -> List[Location]:
        return self.locations.find_all()

    def update_location(self, location_id: str, data: Dict[str, Any]) -> Location:
        self.get_location(location_id)
        if "name" in data:
            _require_text(data["name"], "Location name cannot be empty", "name")
        with transaction("update location"):
            location = self.locations.update(location_id, data)
        self.events.emit("LOCATION_UPDATED", location=location.to_dict(), changes=data)
        return location

    def delete_location(self, location_id: str) -> None:
        self.get_location(location_id)
        with transaction("delete location"):
            self.locations.delete(location_id)
            self.chapters.remove_reference("location", location_id)
        self.events.emit("LOCATION_DELETED", location_id=location_id)

    # ------------------------------------------------------------------
    # Factions
    # ------------------------------------------------------------------
    def _check_faction(self, data: Dict[str, Any]) -> None:
        leader_id = data.get("leader_id")
        if not _is_blank(leader_id) and not self.characters.exists(leader_id):
            raise ReferenceNotFoundError("Character", leader_id, "leader_id")
        _check_choice(data.get("stance_to_mc"), FACTION_STANCES, "faction stance", "stance_to_mc")

    def create_faction(self, data: Dict[str, Any]) -> Faction:
        name = _require_text(data.get("name"), "Faction name is required", "name")
        self._check_faction(data)
        with transaction("create faction"):
            faction = self.factions.create(dict(data, name=name))
        self.events.emit("FACTION_CREATED", faction=faction.to_dict())
        return faction

    def get_faction(self, faction_id: str) -> Faction:
        faction = self.factions.find_by_id(faction_id)
        if faction is None:
            raise EntityNotFoundError("Faction", faction_id)
        return faction

    def get_all_factions(self) -> List[Faction]:
        return self.factions.find_all()

    def update_faction(self, faction_id: str, data: Dict[str, Any]) -> Faction:
        self.get_faction(faction_id)
        if "name" in data:
            _require_text(data["name"], "Faction name cannot be empty", "name")
        self._check_faction(data)
        with transaction("update faction"):
            faction = self.factions.update(faction_id, data)
        self.events.emit("FACTION_UPDATED", faction=faction.to_dict(), changes=data)
        return faction

    def delete_faction(self, faction_id: str) -> None:
        self.get_faction(faction_id)
        with transaction("delete faction"):
            self.characters.clear_faction(faction_id)
            self.factions.delete(faction_id)
        self.events.emit("FACTION_DELETED", faction_id=faction_id)

    # ------------------------------------------------------------------
    # Timeline
    # ------------------------------------------------------------------
    def create_timeline_event(self, data: Dict[str, Any]) -> TimelineEvent:
        _require_text(data.get("description"), "Timeline event description is required", "description")
        with transaction("create timeline event"):
            event = self.timeline.create(data)
        self.events.emit("TIMELINE_EVENT_CREATED", event=event.to_dict())
        return event

    def get_timeline_event(self, event_id: int) -> TimelineEvent:
        event = self.timeline.find_by_id(event_id)
        if event is None:
            raise EntityNotFoundError("TimelineEvent", event_id)
        return event

    def get_timeline_events(self) -> List[TimelineEvent]:
        return self.timeline.find_all()

    def update_timeline_event(self, event_id: int, data: Dict[str, Any]) -> TimelineEvent:
        self.get_timeline_event(event_id)
        if "description" in data:
            _require_text(data["description"], "Timeline event description cannot be empty", "description")
        with transaction("update timeline event"):
            event = self.timeline.update(event_id, data)
        self.events.emit("TIMELINE_EVENT_UPDATED", event=event.to_dict(), changes=data)
        return event

    def delete_timeline_event(self, event_id: int) -> None:
        self.get_timeline_event(event_id)
        with transaction("delete timeline event"):
            self.timeline.delete(event_id)
        self.events.emit("TIMELINE_EVENT_DELETED", event_id=event_id)

    # ------------------------------------------------------------------
    # Arcs
    # ------------------------------------------------------------------
    @staticmethod
    def _check_arc(data: Dict[str, Any]) -> None:
        _check_choice(data.get("type"), ARC_TYPES, "arc type", "type")
        _check_choice(data.get("status"), ARC_STATUSES, "arc status", "status")
        _check_percentage(data.get("progress"), "Arc progress", "progress")

    def create_arc(self, data: Dict[str, Any]) -> Arc:
        name = _require_text(data.get("name"), "Arc name is required", "name")
        self._check_arc(data)
        payload = dict(data, name=name)
        payload["type"] = data.get("type") or "main"
        payload["status"] = data.get("status") or "planned"
        payload["progress"] = data.get("progress") or 0
        with transaction("create arc"):
            arc = self.arcs.create(payload)
        self.events.emit("ARC_CREATED", arc=arc.to_dict())
        return arc

    def get_arc(self, arc_id: str) -> Arc:
        arc = self.arcs.find_by_id(arc_id)
        if arc is None:
            raise EntityNotFoundError("Arc", arc_id)
        return arc

    def get_all_arcs(self) -> List[Arc]:
        return self.arcs.find_all()

    def update_arc(self, arc_id: str, data: Dict[str, Any]) -> Arc:
        self.get_arc(arc_id)
        if "name" in data:
            _require_text(data["name"], "Arc name cannot be empty", "name")
        self._check_arc(data)
        with transaction("update arc"):
            arc = self.arcs.update(arc_id, data)
        self.events.emit("ARC_UPDATED", arc=arc.to_dict(), changes=data)
        return arc

    def delete_arc(self, arc_id: str) -> None:
        self.get_arc(arc_id)
        with transaction("delete arc"):
            self.chapters.clear_arc(arc_id)
            self.arcs.delete(arc_id)
        self.events.emit("ARC_DELETED", arc_id=arc_id)

    # ------------------------------------------------------------------
    # Foreshadowing
    # ------------------------------------------------------------------
    @staticmethod
    def _check_foreshadowing(data: Dict[str, Any]) -> None:
        _check_choice(data.get("term"), FORESHADOWING_TERMS, "foreshadowing term", "term")
        _check_choice(data.get("status"), FORESHADOWING_STATUSES, "foreshadowing status", "status")

    def create_foreshadowing(self, data: Dict[str, Any]) -> Foreshadowing:
        _require_text(data.get("content"), "Foreshadowing content is required", "content")
        self._check_foreshadowing(data)
        payload = dict(data)
        payload["status"] = data.get("status") or "active"
        payload["hints"] = data.get("hints") or []
        with transaction("create foreshadowing"):
            item = self.foreshadowing.create(payload)
        self.events.emit("FORESHADOWING_CREATED", foreshadowing=item.to_dict())
        return item

    def get_foreshadowing(self, foreshadowing_id: str) -> Foreshadowing:
        item = self.foreshadowing.find_by_id(foreshadowing_id)
        if item is None:
            raise EntityNotFoundError("Foreshadowing", foreshadowing_id)
        return item

    def get_all_foreshadowing(self) -> List[Foreshadowing]:
        return self.foreshadowing.find_all()

    def get_active_foreshadowing(self) -> List[Foreshadowing]:
        return self.foreshadowing.find_active()

    def update_foreshadowing(self, foreshadowing_id: str, data: Dict[str, Any]) -> Foreshadowing:
        self.get_foreshadowing(foreshadowing_id)
        if "content" in data:
            _require_text(data["content"], "Foreshadowing content cannot be empty", "content")
        self._check_foreshadowing(data)
        with transaction("update foreshadowing"):
            item = self.foreshadowing.update(foreshadowing_id, data)
        self.events.emit("FORESHADOWING_UPDATED", foreshadowing=item.to_dict(), changes=data)
        return item

    def delete_foreshadowing(self, foreshadowing_id: str) -> None:
        self.get_foreshadowing(foreshadowing_id)
        with transaction("delete foreshadowing"):
            self.foreshadowing.delete(foreshadowing_id)
            self.chapters.remove_reference("foreshadowing", foreshadowing_id)
        self.events.emit("FORESHADOWING_DELETED", foreshadowing_id=foreshadowing_id)

    def add_foreshadowing_hint(self, foreshadowing_id: str, chapter: int, text: str) -> Foreshadowing:
        self.get_foreshadowing(foreshadowing_id)
        _require_text(text, "Hint text is required", "text")
        with transaction("add foreshadowing hint"):
            item = self.foreshadowing.add_hint(foreshadowing_id, chapter, text)
        self.events.emit("FORESHADOWING_HINT_ADDED", foreshadowing=item.to_dict(), hint_chapter=chapter)
        return item

    def resolve_foreshadowing(self, foreshadowing_id: str, resolved_chapter: int) -> Foreshadowing:
        self.get_foreshadowing(foreshadowing_id)
        with transaction("resolve foreshadowing"):
            item = self.foreshadowing.resolve(foreshadowing_id, resolved_chapter)
        self.events.emit(
            "FORESHADOWING_RESOLVED", foreshadowing=item.to_dict(), resolved_chapter=resolved_chapter
        )
        return item

    def abandon_foreshadowing(self, foreshadowing_id: str) -> Foreshadowing:
        self.get_foreshadowing(foreshadowing_id)
        with transaction("abandon foreshadowing"):
            item = self.foreshadowing.abandon(foreshadowing_id)
        self.events.emit("FORESHADOWING_ABANDONED", foreshadowing=item.to_dict())
        return item

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------
    def _check_hook(self, data: Dict[str, Any]) -> None:
        _check_choice(data.get("type"), HOOK_TYPES, "hook type", "type")
        _check_choice(data.get("hook_type"), HOOK_STYLES, "hook style", "hook_type")
        _check_percentage(data.get("strength"), "Hook strength", "strength")
        chapter_id = data.get("chapter_id")
        if chapter_id is not None and not self.chapters.exists(chapter_id):
            raise ReferenceNotFoundError("Chapter", chapter_id, "chapter_id")

    def create_hook(self, data: Dict[str, Any]) -> Hook:
        _require_text(data.get("content"), "Hook content is required", "content")
        _require_text(data.get("type"), "Hook type is required", "type")
        self._check_hook(data)
        with transaction("create hook"):
            hook = self.hooks.create(data)
        self.events.emit("HOOK_CREATED", hook=hook.to_dict())
        return hook

    def get_hook(self, hook_id: str) -> Hook:
        hook = self.hooks.find_by_id(hook_id)
        if hook is None:
            raise EntityNotFoundError("Hook", hook_id)
        return hook

    def get_all_hooks(self) -> List[Hook]:
        return self.hooks.find_all()

    def get_hooks_for_chapter(self, chapter_id: int) -> List[Hook]:
        return self.hooks.find_by_chapter(chapter_id)

    def update_hook(self, hook_id: str, data: Dict[str, Any]) -> Hook:
        self.get_hook(hook_id)
        if "content" in data:
            _require_text(data["content"], "Hook content cannot be empty", "content")
        self._check_hook(data)
        with transaction("update hook"):
            hook = self.hooks.update(hook_id, data)
        self.events.emit("HOOK_UPDATED", hook=hook.to_dict(), changes=data)
        return hook

    def delete_hook(self, hook_id: str) -> None:
        self.get_hook(hook_id)
        with transaction("delete hook"):
            self.hooks.delete(hook_id)
        self.events.emit("HOOK_DELETED", hook_id=hook_id)


__all__ = ["StoryBibleService"]
