"""Demo story bible data for trying the application out."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

from flask import current_app

from .errors import ValidationError
from .extensions import db
from .models import (
    Arc,
    Chapter,
    Character,
    Faction,
    Foreshadowing,
    Hook,
    Location,
    Relationship,
    TimelineEvent,
    Version,
    Volume,
    World,
)
from .repositories import count_words, transaction
from .repositories.story_bible import WORLD_ID

SEED_DIR = Path(__file__).resolve().parent / "seed_data"
SEED_LANGUAGES = ("en", "zh")

# Deletion order: rows referencing others go first.
_CONTENT_MODELS = (
    Hook,
    Version,
    Relationship,
    TimelineEvent,
    Foreshadowing,
    Chapter,
    Volume,
    Arc,
    Faction,
    Location,
    Character,
    World,
)

# Insertion order: referenced rows go first.
_SEED_SECTIONS = (
    ("characters", Character),
    ("relationships", Relationship),
    ("locations", Location),
    ("factions", Faction),
    ("arcs", Arc),
    ("foreshadowing", Foreshadowing),
    ("timeline", TimelineEvent),
    ("volumes", Volume),
    ("chapters", Chapter),
    ("hooks", Hook),
)


def load_seed_file(lang: str) -> Dict[str, Any]:
    if lang not in SEED_LANGUAGES:
        raise ValidationError(f"Unsupported seed language: {lang}", "lang")
    with (SEED_DIR / f"{lang}.json").open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _delete_all() -> None:
    for model in _CONTENT_MODELS:
        model.query.delete(synchronize_session=False)


def clear_all_data() -> None:
    with transaction("clear story data"):
        _delete_all()
    current_app.logger.info("Cleared all story data")


def is_database_empty() -> bool:
    return Character.query.count() == 0 and Chapter.query.count() == 0


def run_seed(lang: str) -> Dict[str, int]:
    """Replace the current data with the demo story in ``lang``.

    Returns the number of rows inserted per section.
    """

    data = load_seed_file(lang)
    counts: Dict[str, int] = {}
    with transaction(f"load {lang} seed data"):
        _delete_all()

        world = data.get("world")
        if world:
            db.session.add(World(id=WORLD_ID, **world))

        for section, model in _SEED_SECTIONS:
            rows = data.get(section) or []
            for row in rows:
                if model is Chapter:
                    row = dict(row, word_count=count_words(row.get("content")))
                db.session.add(model(**row))
            db.session.flush()
            counts[section] = len(rows)

    current_app.logger.info("Loaded %s seed data: %s", lang, counts)
    return counts


__all__ = ["SEED_LANGUAGES", "clear_all_data", "is_database_empty", "load_seed_file", "run_seed"]
