from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from .extensions import db

CHARACTER_ROLES = ("main", "supporting", "antagonist", "mentioned")
RELATIONSHIP_TYPES = ("companion", "rival", "enemy", "mentor", "confidant", "lover")
FACTION_STANCES = ("friendly", "neutral", "hostile")
ARC_TYPES = ("main", "sub")
ARC_STATUSES = ("planned", "in_progress", "complete")
FORESHADOWING_STATUSES = ("active", "resolved", "abandoned")
FORESHADOWING_TERMS = ("short", "mid", "long")
HOOK_TYPES = ("opening", "arc", "chapter")
HOOK_STYLES = ("suspense", "anticipation", "emotion", "mystery")
VOLUME_STATUSES = ("planned", "in_progress", "complete")
CHAPTER_STATUSES = ("outline", "draft", "revision", "done")
EMOTION_CURVES = ("low_to_high", "high_to_low", "stable", "wave")
TENSION_LEVELS = ("low", "medium", "high")
VERSION_SOURCES = ("auto", "manual", "ai_backup", "rollback_backup")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Character(db.Model):
    __tablename__ = "characters"

    id = db.Column(db.String(16), primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False)
    appearance = db.Column(db.Text, nullable=True)
    voice_samples = db.Column(db.JSON, nullable=True)
    motivation = db.Column(db.JSON, nullable=True)
    conflict_type = db.Column(db.String(40), nullable=True)
    template = db.Column(db.String(40), nullable=True)
    facets = db.Column(db.JSON, nullable=True)
    arc = db.Column(db.JSON, nullable=True)
    first_appearance = db.Column(db.Integer, nullable=True)
    faction_id = db.Column(
        db.String(16),
        db.ForeignKey("factions.id", ondelete="SET NULL", use_alter=True, name="fk_characters_faction_id"),
        nullable=True,
    )
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "appearance": self.appearance,
            "voice_samples": self.voice_samples,
            "motivation": self.motivation,
            "conflict_type": self.conflict_type,
            "template": self.template,
            "facets": self.facets,
            "arc": self.arc,
            "first_appearance": self.first_appearance,
            "faction_id": self.faction_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover - repr for debugging
        return f"<Character {self.id} {self.name}>"


class Relationship(db.Model):
    __tablename__ = "relationships"

    id = db.Column(db.Integer, primary_key=True)
    source_id = db.Column(db.String(16), db.ForeignKey("characters.id"), nullable=False)
    target_id = db.Column(db.String(16), db.ForeignKey("characters.id"), nullable=False)
    type = db.Column(db.String(20), nullable=False)
    join_reason = db.Column(db.Text, nullable=True)
    independent_goal = db.Column(db.Text, nullable=True)
    disagree_scenarios = db.Column(db.JSON, nullable=True)
    leave_scenarios = db.Column(db.JSON, nullable=True)
    mc_needs = db.Column(db.Text, nullable=True)
    evolution = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("source_id", "target_id", name="uq_relationship_pair"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "type": self.type,
            "join_reason": self.join_reason,
            "independent_goal": self.independent_goal,
            "disagree_scenarios": self.disagree_scenarios,
            "leave_scenarios": self.leave_scenarios,
            "mc_needs": self.mc_needs,
            "evolution": self.evolution,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Relationship {self.source_id}->{self.target_id} ({self.type})>"


class World(db.Model):
    __tablename__ = "world"

    id = db.Column(db.String(16), primary_key=True, default="main")
    power_system = db.Column(db.JSON, nullable=True)
    social_rules = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "power_system": self.power_system,
            "social_rules": self.social_rules,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<World {self.id}>"


class Location(db.Model):
    __tablename__ = "locations"

    id = db.Column(db.String(16), primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    type = db.Column(db.String(100), nullable=True)
    significance = db.Column(db.Text, nullable=True)
    atmosphere = db.Column(db.Text, nullable=True)
    details = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "significance": self.significance,
            "atmosphere": self.atmosphere,
            "details": self.details,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Location {self.id} {self.name}>"


class Faction(db.Model):
    __tablename__ = "factions"

    id = db.Column(db.String(16), primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    type = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(100), nullable=True)
    leader_id = db.Column(db.String(16), db.ForeignKey("characters.id"), nullable=True)
    stance_to_mc = db.Column(db.String(20), nullable=True)
    goals = db.Column(db.JSON, nullable=True)
    resources = db.Column(db.JSON, nullable=True)
    internal_conflict = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "status": self.status,
            "leader_id": self.leader_id,
            "stance_to_mc": self.stance_to_mc,
            "goals": self.goals,
            "resources": self.resources,
            "internal_conflict": self.internal_conflict,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Faction {self.id} {self.name}>"


class TimelineEvent(db.Model):
    __tablename__ = "timeline_events"

    id = db.Column(db.Integer, primary_key=True)
    event_date = db.Column(db.String(100), nullable=True)
    description = db.Column(db.Text, nullable=False)
    related_characters = db.Column(db.JSON, nullable=True)
    related_locations = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event_date": self.event_date,
            "description": self.description,
            "related_characters": self.related_characters or [],
            "related_locations": self.related_locations or [],
            "created_at": _iso(self.created_at),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<TimelineEvent {self.id} {self.event_date}>"


class Arc(db.Model):
    __tablename__ = "arcs"

    id = db.Column(db.String(16), primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(10), nullable=False, default="main")
    chapter_start = db.Column(db.Integer, nullable=True)
    chapter_end = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="planned")
    progress = db.Column(db.Integer, nullable=False, default=0)
    sections = db.Column(db.JSON, nullable=True)
    character_arcs = db.Column(db.JSON, nullable=True)
    main_arc_relation = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "chapter_start": self.chapter_start,
            "chapter_end": self.chapter_end,
            "status": self.status,
            "progress": self.progress,
            "sections": self.sections,
            "character_arcs": self.character_arcs,
            "main_arc_relation": self.main_arc_relation,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Arc {self.id} {self.name} ({self.status})>"


class Foreshadowing(db.Model):
    __tablename__ = "foreshadowing"

    id = db.Column(db.String(16), primary_key=True)
    content = db.Column(db.Text, nullable=False)
    planted_chapter = db.Column(db.Integer, nullable=True)
    planted_text = db.Column(db.Text, nullable=True)
    hints = db.Column(db.JSON, nullable=True)
    planned_payoff = db.Column(db.Integer, nullable=True)
    resolved_chapter = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="active")
    term = db.Column(db.String(10), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "planted_chapter": self.planted_chapter,
            "planted_text": self.planted_text,
            "hints": self.hints or [],
            "planned_payoff": self.planned_payoff,
            "resolved_chapter": self.resolved_chapter,
            "status": self.status,
            "term": self.term,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Foreshadowing {self.id} ({self.status})>"


class Hook(db.Model):
    __tablename__ = "hooks"

    id = db.Column(db.String(16), primary_key=True)
    type = db.Column(db.String(20), nullable=False)
    chapter_id = db.Column(db.Integer, db.ForeignKey("chapters.id"), nullable=True)
    content = db.Column(db.Text, nullable=False)
    hook_type = db.Column(db.String(20), nullable=True)
    strength = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "chapter_id": self.chapter_id,
            "content": self.content,
            "hook_type": self.hook_type,
            "strength": self.strength,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Hook {self.id} ({self.type})>"


class Volume(db.Model):
    __tablename__ = "volumes"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=True)
    theme = db.Column(db.Text, nullable=True)
    core_conflict = db.Column(db.Text, nullable=True)
    mc_growth = db.Column(db.Text, nullable=True)
    chapter_start = db.Column(db.Integer, nullable=True)
    chapter_end = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="planned")
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "theme": self.theme,
            "core_conflict": self.core_conflict,
            "mc_growth": self.mc_growth,
            "chapter_start": self.chapter_start,
            "chapter_end": self.chapter_end,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Volume {self.id} {self.name}>"


class Chapter(db.Model):
    __tablename__ = "chapters"

    id = db.Column(db.Integer, primary_key=True)
    volume_id = db.Column(db.Integer, db.ForeignKey("volumes.id"), nullable=True)
    arc_id = db.Column(db.String(16), db.ForeignKey("arcs.id"), nullable=True)
    title = db.Column(db.String(300), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="outline")
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    outline = db.Column(db.JSON, nullable=True)
    content = db.Column(db.Text, nullable=True)
    word_count = db.Column(db.Integer, nullable=False, default=0)
    characters = db.Column(db.JSON, nullable=True)
    locations = db.Column(db.JSON, nullable=True)
    foreshadowing_planted = db.Column(db.JSON, nullable=True)
    foreshadowing_hinted = db.Column(db.JSON, nullable=True)
    foreshadowing_resolved = db.Column(db.JSON, nullable=True)
    emotion_curve = db.Column(db.String(20), nullable=True)
    tension = db.Column(db.String(10), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self, *, include_content: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "volume_id": self.volume_id,
            "arc_id": self.arc_id,
            "title": self.title,
            "status": self.status,
            "sort_order": self.sort_order,
            "outline": self.outline,
            "word_count": self.word_count,
            "characters": self.characters or [],
            "locations": self.locations or [],
            "foreshadowing_planted": self.foreshadowing_planted or [],
            "foreshadowing_hinted": self.foreshadowing_hinted or [],
            "foreshadowing_resolved": self.foreshadowing_resolved or [],
            "emotion_curve": self.emotion_curve,
            "tension": self.tension,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_content:
            data["content"] = self.content
        return data

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Chapter {self.id} {self.title} ({self.status})>"


class Version(db.Model):
    __tablename__ = "versions"

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(20), nullable=False)
    entity_id = db.Column(db.String(32), nullable=False)
    content = db.Column(db.JSON, nullable=False)
    change_summary = db.Column(db.Text, nullable=True)
    source = db.Column(db.String(20), nullable=False, default="manual")
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "content": self.content,
            "change_summary": self.change_summary,
            "source": self.source,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Version {self.id} {self.entity_type}:{self.entity_id} ({self.source})>"


CORE_MODELS = (
    Character,
    Relationship,
    World,
    Location,
    Faction,
    TimelineEvent,
    Arc,
    Foreshadowing,
    Hook,
    Volume,
    Chapter,
    Version,
)
