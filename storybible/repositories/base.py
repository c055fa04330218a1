"""Shared repository plumbing on top of the Flask-SQLAlchemy session."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ..errors import TransactionError, ValidationError
from ..extensions import db

LIKE_ESCAPE = "\\"


def contains_pattern(query: str) -> str:
    """Build a LIKE pattern matching ``query`` literally anywhere in a column."""

    escaped = query.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2).replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


@contextmanager
def transaction(description: str = "database operation") -> Iterator[Any]:
    """Commit the session when the block succeeds and roll back otherwise.

    Repositories only ``flush``; the service that opens the transaction owns
    the commit.
    """

    try:
        yield db.session
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise TransactionError(f"Failed to complete {description}") from exc
    except Exception:
        db.session.rollback()
        raise


class BaseRepository:
    model: Any = None
    id_prefix: Optional[str] = None
    fields: Tuple[str, ...] = ()

    # ---------------- queries ----------------
    def _ordering(self) -> Sequence[Any]:
        return (self.model.id,)

    def find_by_id(self, entity_id: Any) -> Optional[Any]:
        if entity_id is None:
            return None
        return db.session.get(self.model, entity_id)

    def find_all(self) -> List[Any]:
        return self.model.query.order_by(*self._ordering()).all()

    def find_by_ids(self, entity_ids: Iterable[Any]) -> List[Any]:
        ids = [entity_id for entity_id in entity_ids if entity_id is not None]
        if not ids:
            return []
        return self.model.query.filter(self.model.id.in_(ids)).order_by(*self._ordering()).all()

    def exists(self, entity_id: Any) -> bool:
        return self.find_by_id(entity_id) is not None

    def count(self) -> int:
        return self.model.query.count()

    # ---------------- mutations ----------------
    def generate_id(self) -> str:
        prefix = self.id_prefix or ""
        rows = db.session.query(self.model.id).filter(self.model.id.like(f"{prefix}%")).all()
        highest = 0
        for (raw_id,) in rows:
            suffix = str(raw_id)[len(prefix):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return f"{prefix}{highest + 1:03d}"

    def required_fields(self) -> Tuple[str, ...]:
        """Writable fields backed by NOT NULL columns."""

        columns = self.model.__table__.columns
        return tuple(key for key in self.fields if key in columns and not columns[key].nullable)

    def check_required(self, data: Dict[str, Any]) -> None:
        for key in self.required_fields():
            if key in data and data[key] is None:
                raise ValidationError(f"{key} cannot be null", key)

    def _apply(self, entity: Any, data: Dict[str, Any]) -> None:
        for key in self.fields:
            if key in data:
                setattr(entity, key, data[key])

    def create(self, data: Dict[str, Any]) -> Any:
        columns = self.model.__table__.columns
        # an explicit null on a column with a default means "use the default"
        data = {
            key: value
            for key, value in data.items()
            if not (value is None and key in columns and columns[key].default is not None)
        }
        self.check_required(data)
        entity = self.model()
        if self.id_prefix:
            entity.id = self.generate_id()
        self._apply(entity, data)
        db.session.add(entity)
        db.session.flush()
        return entity

    def update(self, entity_id: Any, data: Dict[str, Any]) -> Optional[Any]:
        self.check_required(data)
        entity = self.find_by_id(entity_id)
        if entity is None:
            return None
        self._apply(entity, data)
        db.session.flush()
        return entity

    def delete(self, entity_id: Any) -> bool:
        entity = self.find_by_id(entity_id)
        if entity is None:
            return False
        db.session.delete(entity)
        db.session.flush()
        return True


__all__ = ["BaseRepository", "transaction"]
