"""Case-insensitive substring search across the story bible and chapters."""
from __future__ import annotations

import html
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import or_

from ..models import Arc, Chapter, Character, Faction, Foreshadowing, Location
from ..repositories import LIKE_ESCAPE, contains_pattern

TITLE_MATCH_SCORE = 1.0
BODY_MATCH_SCORE = 0.5
SNIPPET_RADIUS = 40

# entity type -> (model, title column, body columns)
SEARCHABLE: Dict[str, Tuple[Any, str, Sequence[str]]] = {
    "character": (Character, "name", ("appearance",)),
    "chapter": (Chapter, "title", ("content",)),
    "location": (Location, "name", ("significance", "atmosphere")),
    "faction": (Faction, "name", ("internal_conflict",)),
    "arc": (Arc, "name", ("type",)),
    "foreshadowing": (Foreshadowing, "content", ("planted_text",)),
}

ENTITY_TYPES = tuple(SEARCHABLE)


@dataclass
class SearchResult:
    entity_type: str
    entity_id: str
    title: str
    highlight: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def highlight(text: str, query: str, radius: int = SNIPPET_RADIUS) -> str:
    """Return a snippet around the first match with the match wrapped in ``<mark>``."""

    match = re.search(re.escape(query), text, flags=re.IGNORECASE)
    if match is None:
        return html.escape(text[: radius * 2])

    start = max(0, match.start() - radius)
    end = min(len(text), match.end() + radius)
    snippet = (
        html.escape(text[start:match.start()])
        + "<mark>"
        + html.escape(match.group(0))
        + "</mark>"
        + html.escape(text[match.end():end])
    )
    if start > 0:
        snippet = "..." + snippet
    if end < len(text):
        snippet += "..."
    return snippet


class SearchService:
    def search(self, query: str, entity_types: Optional[Iterable[str]] = None, limit: int = 20) -> List[SearchResult]:
        needle = (query or "").strip()
        if not needle:
            return []

        wanted = [entity_type for entity_type in (entity_types or ENTITY_TYPES) if entity_type in SEARCHABLE]
        pattern = contains_pattern(needle)
        lowered = needle.lower()
        results: List[SearchResult] = []

        for entity_type in wanted:
            model, title_field, body_fields = SEARCHABLE[entity_type]
            columns = [getattr(model, title_field)] + [getattr(model, name) for name in body_fields]
            rows = model.query.filter(or_(*(column.ilike(pattern, escape=LIKE_ESCAPE) for column in columns))).all()

            for row in rows:
                title = getattr(row, title_field) or ""
                if lowered in title.lower():
                    results.append(
                        SearchResult(entity_type, str(row.id), title, highlight(title, needle), TITLE_MATCH_SCORE)
                    )
                    continue
                body = " ".join(getattr(row, name) or "" for name in body_fields)
                results.append(
                    SearchResult(entity_type, str(row.id), title, highlight(body, needle), BODY_MATCH_SCORE)
                )

        results.sort(key=lambda item: item.score, reverse=True)
        return results[:limit]


__all__ = ["ENTITY_TYPES", "SearchResult", "SearchService", "highlight"]
