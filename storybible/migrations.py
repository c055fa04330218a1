"""Versioned schema migrations.

Each migration is applied inside its own transaction together with the row
that records it in ``schema_version``, so a failed migration leaves neither
partial schema changes nor a stale version entry behind.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from .errors import InvalidOperationError
from .extensions import db

LOGGER = logging.getLogger(__name__)

MigrationStep = Union[str, Callable[[Connection], None]]

_SCHEMA_VERSION_DDL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    description TEXT NOT NULL,
    applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""


@dataclass
class Migration:
    version: int
    description: str
    up: MigrationStep
    down: Optional[MigrationStep] = None


@dataclass
class MigrationResult:
    version: int
    description: str
    success: bool
    error: Optional[str] = None
    duration_ms: float = 0.0


@dataclass
class MigrationStatus:
    current_version: int
    applied: List[int] = field(default_factory=list)
    pending: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "current_version": self.current_version,
            "applied": list(self.applied),
            "pending": list(self.pending),
        }


def _split_statements(sql: str) -> Iterable[str]:
    for statement in sql.split(";"):
        cleaned = "\n".join(
            line for line in statement.splitlines() if not line.strip().startswith("--")
        ).strip()
        if cleaned:
            yield cleaned


def _execute_step(connection: Connection, step: MigrationStep) -> None:
    if callable(step):
        step(connection)
        return
    for statement in _split_statements(step):
        connection.execute(text(statement))


class MigrationRunner:
    """Apply, inspect and roll back the ordered list of migrations."""

    def __init__(self, engine: Optional[Engine] = None, migrations: Optional[List[Migration]] = None) -> None:
        self._engine = engine
        self._migrations = sorted(migrations if migrations is not None else MIGRATIONS, key=lambda m: m.version)

    @property
    def engine(self) -> Engine:
        return self._engine if self._engine is not None else db.engine

    def _ensure_version_table(self) -> None:
        with self.engine.begin() as connection:
            connection.execute(text(_SCHEMA_VERSION_DDL))

    def get_all_migrations(self) -> List[Migration]:
        return list(self._migrations)

    def get_applied_versions(self) -> Set[int]:
        self._ensure_version_table()
        with self.engine.connect() as connection:
            rows = connection.execute(text("SELECT version FROM schema_version")).fetchall()
        return {int(row[0]) for row in rows}

    def get_pending_migrations(self) -> List[Migration]:
        applied = self.get_applied_versions()
        return [migration for migration in self._migrations if migration.version not in applied]

    def run_migrations(self) -> List[MigrationResult]:
        results: List[MigrationResult] = []
        for migration in self.get_pending_migrations():
            started = time.perf_counter()
            try:
                with self.engine.begin() as connection:
                    _execute_step(connection, migration.up)
                    connection.execute(
                        text("INSERT INTO schema_version (version, description) VALUES (:version, :description)"),
                        {"version": migration.version, "description": migration.description},
                    )
            except (SQLAlchemyError, ValueError) as exc:
                duration = (time.perf_counter() - started) * 1000
                LOGGER.error("Migration %s failed: %s", migration.version, exc)
                results.append(
                    MigrationResult(
                        version=migration.version,
                        description=migration.description,
                        success=False,
                        error=str(exc),
                        duration_ms=duration,
                    )
                )
                break

            duration = (time.perf_counter() - started) * 1000
            LOGGER.info("Applied migration %s: %s (%.1f ms)", migration.version, migration.description, duration)
            results.append(
                MigrationResult(
                    version=migration.version,
                    description=migration.description,
                    success=True,
                    duration_ms=duration,
                )
            )
        return results

    def rollback_last(self) -> MigrationResult:
        applied = self.get_applied_versions()
        if not applied:
            raise InvalidOperationError("No migrations to rollback")

        last_version = max(applied)
        migration = next((m for m in self._migrations if m.version == last_version), None)
        if migration is None:
            raise InvalidOperationError(f"Migration {last_version} is not registered")
        if migration.down is None:
            raise InvalidOperationError(f"Migration {last_version} has no down migration")

        started = time.perf_counter()
        with self.engine.begin() as connection:
            _execute_step(connection, migration.down)
            connection.execute(
                text("DELETE FROM schema_version WHERE version = :version"),
                {"version": migration.version},
            )
        duration = (time.perf_counter() - started) * 1000
        LOGGER.info("Rolled back migration %s: %s", migration.version, migration.description)
        return MigrationResult(
            version=migration.version,
            description=migration.description,
            success=True,
            duration_ms=duration,
        )

    def get_status(self) -> MigrationStatus:
        applied = sorted(self.get_applied_versions())
        pending = [m.version for m in self._migrations if m.version not in applied]
        return MigrationStatus(
            current_version=applied[-1] if applied else 0,
            applied=applied,
            pending=pending,
        )


def _core_tables():
    from .models import CORE_MODELS

    return [model.__table__ for model in CORE_MODELS]


def _create_core_tables(connection: Connection) -> None:
    db.metadata.create_all(bind=connection, tables=_core_tables())


def _drop_core_tables(connection: Connection) -> None:
    db.metadata.drop_all(bind=connection, tables=_core_tables())


def _backfill_sort_order(connection: Connection) -> None:
    if "chapters" not in inspect(connection).get_table_names():
        raise ValueError("chapters table is missing")
    connection.execute(
        text("UPDATE chapters SET sort_order = id WHERE sort_order IS NULL OR sort_order = 0")
    )


def _character_columns(connection: Connection) -> Set[str]:
    return {column["name"] for column in inspect(connection).get_columns("characters")}


def _add_character_faction(connection: Connection) -> None:
    if "faction_id" in _character_columns(connection):
        return
    connection.execute(
        text("ALTER TABLE characters ADD COLUMN faction_id VARCHAR(16)")
    )


def _drop_character_faction(connection: Connection) -> None:
    if "faction_id" in _character_columns(connection):
        connection.execute(text("ALTER TABLE characters DROP COLUMN faction_id"))


MIGRATIONS: List[Migration] = [
    Migration(
        version=1,
        description="Core story bible and writing tables",
        up=_create_core_tables,
        down=_drop_core_tables,
    ),
    Migration(
        version=2,
        description="Lookup indexes",
        up="""
            CREATE INDEX IF NOT EXISTS idx_relationships_source ON relationships(source_id);
            CREATE INDEX IF NOT EXISTS idx_relationships_target ON relationships(target_id);
            CREATE INDEX IF NOT EXISTS idx_chapters_volume ON chapters(volume_id);
            CREATE INDEX IF NOT EXISTS idx_chapters_arc ON chapters(arc_id);
            CREATE INDEX IF NOT EXISTS idx_chapters_status ON chapters(status);
            CREATE INDEX IF NOT EXISTS idx_versions_entity ON versions(entity_type, entity_id);
            CREATE INDEX IF NOT EXISTS idx_hooks_chapter ON hooks(chapter_id);
            CREATE INDEX IF NOT EXISTS idx_foreshadowing_status ON foreshadowing(status);
        """,
        down="""
            DROP INDEX IF EXISTS idx_relationships_source;
            DROP INDEX IF EXISTS idx_relationships_target;
            DROP INDEX IF EXISTS idx_chapters_volume;
            DROP INDEX IF EXISTS idx_chapters_arc;
            DROP INDEX IF EXISTS idx_chapters_status;
            DROP INDEX IF EXISTS idx_versions_entity;
            DROP INDEX IF EXISTS idx_hooks_chapter;
            DROP INDEX IF EXISTS idx_foreshadowing_status;
        """,
    ),
    Migration(
        version=3,
        description="Backfill chapter sort order",
        up=_backfill_sort_order,
    ),
    Migration(
        version=4,
        description="Character faction membership",
        up=_add_character_faction,
        down=_drop_character_faction,
    ),
]


def ensure_database_schema() -> List[MigrationResult]:
    """Apply pending migrations, raising if any of them fails.

    Runs on every application start, so it must be cheap when the schema is
    already current.
    """

    runner = MigrationRunner()
    results = runner.run_migrations()
    failed = [result for result in results if not result.success]
    if failed:
        raise SQLAlchemyError(f"Migration {failed[0].version} failed: {failed[0].error}")
    return results


__all__ = [
    "MIGRATIONS",
    "Migration",
    "MigrationResult",
    "MigrationRunner",
    "MigrationStatus",
    "ensure_database_schema",
]
