from __future__ import annotations

from flask import request

from ..errors import ValidationError
from ..responses import created, success, validate_form
from ..services import get_story_bible_service
from . import bp
from .forms import CharacterCreateForm, ForeshadowingHintForm, ForeshadowingResolveForm, RelationshipCreateForm


def _payload() -> dict:
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _dicts(items) -> list:
    return [item.to_dict() for item in items]


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------
@bp.route("/characters", methods=["GET"])
def list_characters():
    service = get_story_bible_service()
    role = request.args.get("role")
    characters = service.get_characters_by_role(role) if role else service.get_all_characters()
    return success(_dicts(characters))


@bp.route("/characters", methods=["POST"])
def create_character():
    validate_form(CharacterCreateForm)
    character = get_story_bible_service().create_character(_payload())
    return created(character.to_dict())


@bp.route("/characters/search/<path:query>", methods=["GET"])
def search_characters(query: str):
    return success(_dicts(get_story_bible_service().search_characters(query)))


@bp.route("/characters/<character_id>", methods=["GET"])
def get_character(character_id: str):
    return success(get_story_bible_service().get_character(character_id).to_dict())


@bp.route("/characters/<character_id>/relations", methods=["GET"])
def get_character_relations(character_id: str):
    return success(get_story_bible_service().get_character_with_relations(character_id))


@bp.route("/characters/<character_id>", methods=["PATCH"])
def update_character(character_id: str):
    character = get_story_bible_service().update_character(character_id, _payload())
    return success(character.to_dict())


@bp.route("/characters/<character_id>", methods=["DELETE"])
def delete_character(character_id: str):
    get_story_bible_service().delete_character(character_id)
    return success({"deleted": True})


# ---------------------------------------------------------------------------
# Relationships
# ---------------------------------------------------------------------------
@bp.route("/relationships", methods=["GET"])
def list_relationships():
    service = get_story_bible_service()
    character_id = request.args.get("character_id")
    if character_id:
        relationships = service.get_relationships_for_character(character_id)
    else:
        relationships = service.get_all_relationships()
    return success(_dicts(relationships))


@bp.route("/relationships", methods=["POST"])
def create_relationship():
    validate_form(RelationshipCreateForm)
    relationship = get_story_bible_service().create_relationship(_payload())
    return created(relationship.to_dict())


@bp.route("/relationships/<int:relationship_id>", methods=["GET"])
def get_relationship(relationship_id: int):
    return success(get_story_bible_service().get_relationship(relationship_id).to_dict())


@bp.route("/relationships/<int:relationship_id>", methods=["PATCH"])
def update_relationship(relationship_id: int):
    payload = {key: value for key, value in _payload().items() if key not in ("source_id", "target_id")}
    relationship = get_story_bible_service().update_relationship(relationship_id, payload)
    return success(relationship.to_dict())


@bp.route("/relationships/<int:relationship_id>", methods=["DELETE"])
def delete_relationship(relationship_id: int):
    get_story_bible_service().delete_relationship(relationship_id)
    return success({"deleted": True})


# ---------------------------------------------------------------------------
# World
# ---------------------------------------------------------------------------
@bp.route("/world", methods=["GET"])
def get_world():
    world = get_story_bible_service().get_world()
    return success(world.to_dict() if world else None)


@bp.route("/world", methods=["PATCH"])
def update_world():
    return success(get_story_bible_service().update_world(_payload()).to_dict())


@bp.route("/world/power-system", methods=["PUT"])
def set_power_system():
    return success(get_story_bible_service().set_power_system(_payload()).to_dict())


@bp.route("/world/social-rules", methods=["PUT"])
def set_social_rules():
    return success(get_story_bible_service().set_social_rules(_payload()).to_dict())


# ---------------------------------------------------------------------------
# Locations, factions and arcs share the same five routes
# ---------------------------------------------------------------------------
@bp.route("/locations", methods=["GET"])
def list_locations():
    return success(_dicts(get_story_bible_service().get_all_locations()))


@bp.route("/locations", methods=["POST"])
def create_location():
    return created(get_story_bible_service().create_location(_payload()).to_dict())


@bp.route("/locations/<location_id>", methods=["GET"])
def get_location(location_id: str):
    return success(get_story_bible_service().get_location(location_id).to_dict())


@bp.route("/locations/<location_id>", methods=["PATCH"])
def update_location(location_id: str):
    return success(get_story_bible_service().update_location(location_id, _payload()).to_dict())


@bp.route("/locations/<location_id>", methods=["DELETE"])
def delete_location(location_id: str):
    get_story_bible_service().delete_location(location_id)
    return success({"deleted": True})


@bp.route("/factions", methods=["GET"])
def list_factions():
    return success(_dicts(get_story_bible_service().get_all_factions()))


@bp.route("/factions", methods=["POST"])
def create_faction():
    return created(get_story_bible_service().create_faction(_payload()).to_dict())


@bp.route("/factions/<faction_id>", methods=["GET"])
def get_faction(faction_id: str):
    return success(get_story_bible_service().get_faction(faction_id).to_dict())


@bp.route("/factions/<faction_id>", methods=["PATCH"])
def update_faction(faction_id: str):
    return success(get_story_bible_service().update_faction(faction_id, _payload()).to_dict())


@bp.route("/factions/<faction_id>", methods=["DELETE"])
def delete_faction(faction_id: str):
    get_story_bible_service().delete_faction(faction_id)
    return success({"deleted": True})


@bp.route("/arcs", methods=["GET"])
def list_arcs():
    return success(_dicts(get_story_bible_service().get_all_arcs()))


@bp.route("/arcs", methods=["POST"])
def create_arc():
    return created(get_story_bible_service().create_arc(_payload()).to_dict())


@bp.route("/arcs/<arc_id>", methods=["GET"])
def get_arc(arc_id: str):
    return success(get_story_bible_service().get_arc(arc_id).to_dict())


@bp.route("/arcs/<arc_id>", methods=["PATCH"])
def update_arc(arc_id: str):
    return success(get_story_bible_service().update_arc(arc_id, _payload()).to_dict())


@bp.route("/arcs/<arc_id>", methods=["DELETE"])
def delete_arc(arc_id: str):
    get_story_bible_service().delete_arc(arc_id)
    return success({"deleted": True})


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------
@bp.route("/timeline", methods=["GET"])
def list_timeline():
    return success(_dicts(get_story_bible_service().get_timeline_events()))


@bp.route("/timeline", methods=["POST"])
def create_timeline_event():
    return created(get_story_bible_service().create_timeline_event(_payload()).to_dict())


@bp.route("/timeline/<int:event_id>", methods=["PATCH"])
def update_timeline_event(event_id: int):
    return success(get_story_bible_service().update_timeline_event(event_id, _payload()).to_dict())


@bp.route("/timeline/<int:event_id>", methods=["DELETE"])
def delete_timeline_event(event_id: int):
    get_story_bible_service().delete_timeline_event(event_id)
    return success({"deleted": True})


# ---------------------------------------------------------------------------
# Foreshadowing
# ---------------------------------------------------------------------------
@bp.route("/foreshadowing", methods=["GET"])
def list_foreshadowing():
    return success(_dicts(get_story_bible_service().get_all_foreshadowing()))


@bp.route("/foreshadowing/active", methods=["GET"])
def list_active_foreshadowing():
    return success(_dicts(get_story_bible_service().get_active_foreshadowing()))


@bp.route("/foreshadowing", methods=["POST"])
def create_foreshadowing():
    return created(get_story_bible_service().create_foreshadowing(_payload()).to_dict())


@bp.route("/foreshadowing/<foreshadowing_id>", methods=["GET"])
def get_foreshadowing(foreshadowing_id: str):
    return success(get_story_bible_service().get_foreshadowing(foreshadowing_id).to_dict())


@bp.route("/foreshadowing/<foreshadowing_id>", methods=["PATCH"])
def update_foreshadowing(foreshadowing_id: str):
    item = get_story_bible_service().update_foreshadowing(foreshadowing_id, _payload())
    return success(item.to_dict())


@bp.route("/foreshadowing/<foreshadowing_id>", methods=["DELETE"])
def delete_foreshadowing(foreshadowing_id: str):
    get_story_bible_service().delete_foreshadowing(foreshadowing_id)
    return success({"deleted": True})


@bp.route("/foreshadowing/<foreshadowing_id>/hint", methods=["POST"])
def add_foreshadowing_hint(foreshadowing_id: str):
    form = validate_form(ForeshadowingHintForm)
    item = get_story_bible_service().add_foreshadowing_hint(foreshadowing_id, form.chapter.data, form.text.data)
    return success(item.to_dict())


@bp.route("/foreshadowing/<foreshadowing_id>/resolve", methods=["POST"])
def resolve_foreshadowing(foreshadowing_id: str):
    form = validate_form(ForeshadowingResolveForm)
    item = get_story_bible_service().resolve_foreshadowing(foreshadowing_id, form.resolved_chapter.data)
    return success(item.to_dict())


@bp.route("/foreshadowing/<foreshadowing_id>/abandon", methods=["POST"])
def abandon_foreshadowing(foreshadowing_id: str):
    return success(get_story_bible_service().abandon_foreshadowing(foreshadowing_id).to_dict())


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------
@bp.route("/hooks", methods=["GET"])
def list_hooks():
    service = get_story_bible_service()
    chapter_id = request.args.get("chapter_id", type=int)
    hooks = service.get_hooks_for_chapter(chapter_id) if chapter_id is not None else service.get_all_hooks()
    return success(_dicts(hooks))


@bp.route("/hooks", methods=["POST"])
def create_hook():
    return created(get_story_bible_service().create_hook(_payload()).to_dict())


@bp.route("/hooks/<hook_id>", methods=["GET"])
def get_hook(hook_id: str):
    return success(get_story_bible_service().get_hook(hook_id).to_dict())


@bp.route("/hooks/<hook_id>", methods=["PATCH"])
def update_hook(hook_id: str):
    return success(get_story_bible_service().update_hook(hook_id, _payload()).to_dict())


@bp.route("/hooks/<hook_id>", methods=["DELETE"])
def delete_hook(hook_id: str):
    get_story_bible_service().delete_hook(hook_id)
    return success({"deleted": True})
