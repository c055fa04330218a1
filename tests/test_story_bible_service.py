import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storybible import create_app
from storybible.config import TestConfig
from storybible.errors import (
    DuplicateEntityError,
    EntityNotFoundError,
    ReferenceNotFoundError,
    SelfReferenceError,
    ValidationError,
)
from storybible.extensions import db
from storybible.models import Chapter, Faction, Relationship
from storybible.services import get_event_bus, get_story_bible_service, get_writing_service


@pytest.fixture
def app_instance():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def service(app_instance):
    return get_story_bible_service()


@pytest.fixture
def events(app_instance):
    received = []
    get_event_bus().on_any(received.append)
    return received


def test_create_character_assigns_sequential_ids_and_emits(service, events):
    first = service.create_character({"name": "  Lin Mo ", "role": "main"})
    second = service.create_character({"name": "Su Yan", "role": "supporting"})

    assert first.id == "C001"
    assert second.id == "C002"
    assert first.name == "Lin Mo"
    assert [event["type"] for event in events] == ["CHARACTER_CREATED", "CHARACTER_CREATED"]
    assert events[0]["character"]["id"] == "C001"


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"role": "main"}, "Character name is required"),
        ({"name": "   ", "role": "main"}, "Character name is required"),
        ({"name": "Lin Mo"}, "Character role is required"),
    ],
)
def test_create_character_requires_name_and_role(service, payload, message):
    with pytest.raises(ValidationError, match=message):
        service.create_character(payload)


def test_create_character_rejects_unknown_role(service):
    with pytest.raises(ValidationError) as excinfo:
        service.create_character({"name": "Lin Mo", "role": "hero"})
    assert excinfo.value.context["field"] == "role"
    assert "main" in excinfo.value.context["valid"]


def test_ids_continue_after_deletion(service):
    service.create_character({"name": "A", "role": "main"})
    second = service.create_character({"name": "B", "role": "main"})
    service.delete_character(second.id)

    third = service.create_character({"name": "C", "role": "main"})

    assert third.id == "C002"


def test_update_character_rejects_empty_name_and_missing_entity(service):
    character = service.create_character({"name": "Lin Mo", "role": "main"})

    with pytest.raises(ValidationError, match="cannot be empty"):
        service.update_character(character.id, {"name": ""})
    with pytest.raises(EntityNotFoundError):
        service.update_character("C999", {"name": "Ghost"})

    updated = service.update_character(character.id, {"appearance": "scar over the left eye"})
    assert updated.appearance == "scar over the left eye"
    assert updated.name == "Lin Mo"


def test_delete_character_cascades(service, app_instance):
    hero = service.create_character({"name": "Lin Mo", "role": "main"})
    rival = service.create_character({"name": "Zhao Feng", "role": "antagonist"})
    service.create_relationship({"source_id": hero.id, "target_id": rival.id, "type": "rival"})
    faction = service.create_faction({"name": "Azure Sect", "leader_id": rival.id})
    chapter = get_writing_service().create_chapter({"title": "Duel", "characters": [hero.id, rival.id]})

    service.delete_character(rival.id)

    assert Relationship.query.count() == 0
    assert db.session.get(Faction, faction.id).leader_id is None
    db.session.expire_all()
    assert db.session.get(Chapter, chapter.id).characters == [hero.id]


def test_relationship_rules(service):
    hero = service.create_character({"name": "Lin Mo", "role": "main"})
    friend = service.create_character({"name": "Su Yan", "role": "supporting"})

    with pytest.raises(ValidationError, match="Source and target character IDs are required"):
        service.create_relationship({"source_id": hero.id, "type": "companion"})
    with pytest.raises(SelfReferenceError):
        service.create_relationship({"source_id": hero.id, "target_id": hero.id, "type": "companion"})
    with pytest.raises(ReferenceNotFoundError) as excinfo:
        service.create_relationship({"source_id": hero.id, "target_id": "C404", "type": "companion"})
    assert excinfo.value.context["field"] == "target_id"
    with pytest.raises(ValidationError):
        service.create_relationship({"source_id": hero.id, "target_id": friend.id, "type": "acquaintance"})

    relationship = service.create_relationship(
        {"source_id": hero.id, "target_id": friend.id, "type": "companion"}
    )
    with pytest.raises(DuplicateEntityError):
        service.create_relationship({"source_id": hero.id, "target_id": friend.id, "type": "rival"})

    # The reverse direction is a different relationship.
    service.create_relationship({"source_id": friend.id, "target_id": hero.id, "type": "confidant"})

    updated = service.update_relationship(
        relationship.id, {"type": "lover", "source_id": "C999", "target_id": "C998"}
    )
    assert updated.type == "lover"
    assert updated.source_id == hero.id
    assert updated.target_id == friend.id


def test_character_with_relations_names_the_other_side(service):
    hero = service.create_character({"name": "Lin Mo", "role": "main"})
    mentor = service.create_character({"name": "Elder Qing", "role": "supporting"})
    service.create_relationship({"source_id": mentor.id, "target_id": hero.id, "type": "mentor"})

    payload = service.get_character_with_relations(hero.id)

    assert payload["name"] == "Lin Mo"
    assert payload["relationships"][0]["target_name"] == "Elder Qing"


def test_search_characters_is_case_insensitive(service):
    service.create_character({"name": "Lin Mo", "role": "main"})
    service.create_character({"name": "Su Yan", "role": "supporting", "appearance": "Silver hair"})

    assert [c.name for c in service.search_characters("lin")] == ["Lin Mo"]
    assert [c.name for c in service.search_characters("SILVER")] == ["Su Yan"]
    assert service.search_characters("   ") == []


def test_world_settings(service, events):
    assert service.get_world() is None

    with pytest.raises(ValidationError, match="Power system name is required"):
        service.set_power_system({"levels": []})

    world = service.set_power_system({"name": "Qi Refining", "levels": ["Body", "Core"]})
    world = service.set_social_rules({"law": "The strong rule"})

    assert world.id == "main"
    assert world.power_system["name"] == "Qi Refining"
    assert world.social_rules == {"law": "The strong rule"}
    assert [event["type"] for event in events] == ["WORLD_UPDATED", "WORLD_UPDATED"]

    with pytest.raises(ValidationError):
        service.update_world({"social_rules": ["not", "a", "dict"]})


def test_faction_leader_must_exist(service):
    with pytest.raises(ReferenceNotFoundError):
        service.create_faction({"name": "Azure Sect", "leader_id": "C404"})
    with pytest.raises(ValidationError):
        service.create_faction({"name": "Azure Sect", "stance_to_mc": "ambivalent"})

    faction = service.create_faction({"name": "Azure Sect", "stance_to_mc": "hostile"})
    assert faction.id == "F001"


def test_arc_defaults_and_progress_bounds(service):
    arc = service.create_arc({"name": "Tournament"})
    assert (arc.id, arc.type, arc.status, arc.progress) == ("ARC001", "main", "planned", 0)

    with pytest.raises(ValidationError, match="between 0 and 100"):
        service.update_arc(arc.id, {"progress": 101})
    with pytest.raises(ValidationError):
        service.create_arc({"name": "Side quest", "type": "tertiary"})


def test_delete_arc_clears_chapter_links(service):
    arc = service.create_arc({"name": "Tournament"})
    chapter = get_writing_service().create_chapter({"title": "Opening bout", "arc_id": arc.id})

    service.delete_arc(arc.id)

    db.session.expire_all()
    assert db.session.get(Chapter, chapter.id).arc_id is None


def test_foreshadowing_lifecycle(service, events):
    item = service.create_foreshadowing({"content": "A cracked jade pendant", "term": "long"})
    assert item.id == "FS001"
    assert item.status == "active"
    assert item.hints == []

    service.add_foreshadowing_hint(item.id, 3, "The pendant glows")
    item = service.add_foreshadowing_hint(item.id, 7, "It hums near the tomb")
    assert item.hints == [
        {"chapter": 3, "text": "The pendant glows"},
        {"chapter": 7, "text": "It hums near the tomb"},
    ]
    assert [f.id for f in service.get_active_foreshadowing()] == [item.id]

    resolved = service.resolve_foreshadowing(item.id, 12)
    assert resolved.status == "resolved"
    assert resolved.resolved_chapter == 12
    assert service.get_active_foreshadowing() == []

    other = service.create_foreshadowing({"content": "A stranger's warning"})
    assert service.abandon_foreshadowing(other.id).status == "abandoned"

    types = [event["type"] for event in events]
    assert "FORESHADOWING_HINT_ADDED" in types
    assert "FORESHADOWING_RESOLVED" in types
    assert "FORESHADOWING_ABANDONED" in types


def test_foreshadowing_hint_requires_text(service):
    item = service.create_foreshadowing({"content": "A cracked jade pendant"})
    with pytest.raises(ValidationError, match="Hint text is required"):
        service.add_foreshadowing_hint(item.id, 3, " ")


def test_hooks_validate_type_strength_and_chapter(service):
    with pytest.raises(ValidationError, match="Hook type is required"):
        service.create_hook({"content": "Who opened the gate?"})
    with pytest.raises(ValidationError):
        service.create_hook({"content": "x", "type": "chapter", "hook_type": "shock"})
    with pytest.raises(ValidationError):
        service.create_hook({"content": "x", "type": "chapter", "strength": 150})
    with pytest.raises(ReferenceNotFoundError):
        service.create_hook({"content": "x", "type": "chapter", "chapter_id": 99})

    chapter = get_writing_service().create_chapter({"title": "Gate"})
    hook = service.create_hook(
        {"content": "Who opened the gate?", "type": "chapter", "hook_type": "mystery", "strength": 80,
         "chapter_id": chapter.id}
    )
    assert hook.id == "HK001"
    assert [h.id for h in service.get_hooks_for_chapter(chapter.id)] == [hook.id]


def test_timeline_events_sort_by_date(service):
    service.create_timeline_event({"description": "Undated rumour"})
    service.create_timeline_event({"event_date": "0002", "description": "The sect falls"})
    service.create_timeline_event({"event_date": "0001", "description": "The founding"})

    descriptions = [event.description for event in service.get_timeline_events()]

    assert descriptions == ["The founding", "The sect falls", "Undated rumour"]
    with pytest.raises(ValidationError):
        service.create_timeline_event({"event_date": "0003"})


def test_events_are_not_emitted_when_validation_fails(service, events):
    with pytest.raises(ValidationError):
        service.create_location({"name": ""})
    assert events == []


def test_null_for_required_columns_is_a_validation_error(service, events):
    character = service.create_character({"name": "Lin Mo", "role": "main"})
    item = service.create_foreshadowing({"content": "A cracked jade pendant", "status": None})
    events.clear()

    with pytest.raises(ValidationError, match="role cannot be null") as excinfo:
        service.update_character(character.id, {"role": None})

    assert excinfo.value.context == {"field": "role"}
    assert item.status == "active"
    assert service.get_character(character.id).role == "main"
    assert events == []


@pytest.mark.parametrize(
    "create,payload",
    [
        ("create_character", {"name": 5, "role": "main"}),
        ("create_location", {"name": 5}),
        ("create_faction", {"name": ["Azure Sect"]}),
        ("create_arc", {"name": 7}),
        ("create_timeline_event", {"description": 1999}),
        ("create_foreshadowing", {"content": {"text": "jade"}}),
        ("create_hook", {"content": 3, "type": "chapter"}),
    ],
)
def test_non_string_text_fields_are_rejected(service, create, payload):
    field = next(iter(payload))

    with pytest.raises(ValidationError, match=f"{field} must be a string"):
        getattr(service, create)(payload)


def test_non_string_names_on_update_and_hint_text(service):
    location = service.create_location({"name": "River Gate"})
    item = service.create_foreshadowing({"content": "A cracked jade pendant"})

    with pytest.raises(ValidationError, match="name must be a string"):
        service.update_location(location.id, {"name": 12})
    with pytest.raises(ValidationError, match="text must be a string"):
        service.add_foreshadowing_hint(item.id, 2, 99)
    with pytest.raises(ValidationError, match="power_system.name must be a string"):
        service.set_power_system({"name": 1})
    assert service.search_characters(5) == []


def test_character_faction_must_exist_and_is_cleared_on_delete(service, events):
    with pytest.raises(ReferenceNotFoundError) as excinfo:
        service.create_character({"name": "Lin Mo", "role": "main", "faction_id": "F404"})
    assert excinfo.value.context["field"] == "faction_id"

    sect = service.create_faction({"name": "Azure Sect"})
    lin = service.create_character({"name": "Lin Mo", "role": "main", "faction_id": sect.id})
    su = service.create_character({"name": "Su Yan", "role": "supporting"})
    service.update_character(su.id, {"faction_id": sect.id})
    with pytest.raises(ReferenceNotFoundError):
        service.update_character(su.id, {"faction_id": "F999"})

    assert lin.to_dict()["faction_id"] == sect.id

    service.delete_faction(sect.id)

    db.session.expire_all()
    assert service.get_character(lin.id).faction_id is None
    assert service.get_character(su.id).faction_id is None
    assert events[-1]["type"] == "FACTION_DELETED"
