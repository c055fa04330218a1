"""View models for the relationship graph and the timeline."""
from __future__ import annotations

from typing import Any, Dict, List

from ..repositories import (
    CharacterRepository,
    LocationRepository,
    RelationshipRepository,
    TimelineEventRepository,
)


def relationship_graph() -> Dict[str, List[Dict[str, Any]]]:
    characters = CharacterRepository().find_all()
    known_ids = {character.id for character in characters}
    nodes = [{"id": c.id, "name": c.name, "role": c.role, "faction_id": c.faction_id} for c in characters]
    edges = [
        {"id": r.id, "source": r.source_id, "target": r.target_id, "type": r.type}
        for r in RelationshipRepository().find_all()
        if r.source_id in known_ids and r.target_id in known_ids
    ]
    return {"nodes": nodes, "edges": edges}


def timeline_view() -> List[Dict[str, Any]]:
    character_names = {c.id: c.name for c in CharacterRepository().find_all()}
    location_names = {l.id: l.name for l in LocationRepository().find_all()}

    events = []
    for event in TimelineEventRepository().find_all():
        payload = event.to_dict()
        payload["characters"] = [
            {"id": cid, "name": character_names[cid]}
            for cid in payload["related_characters"]
            if cid in character_names
        ]
        payload["locations"] = [
            {"id": lid, "name": location_names[lid]}
            for lid in payload["related_locations"]
            if lid in location_names
        ]
        events.append(payload)
    return events


__all__ = ["relationship_graph", "timeline_view"]
