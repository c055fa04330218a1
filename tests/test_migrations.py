import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine, inspect, text

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storybible.errors import InvalidOperationError
from storybible.migrations import MIGRATIONS, Migration, MigrationRunner


@pytest.fixture
def engine():
    engine = create_engine("sqlite://")
    yield engine
    engine.dispose()


def test_run_migrations_applies_everything_once(engine):
    runner = MigrationRunner(engine)

    results = runner.run_migrations()

    assert [result.version for result in results] == [m.version for m in MIGRATIONS]
    assert all(result.success for result in results)
    tables = set(inspect(engine).get_table_names())
    assert {"characters", "chapters", "versions", "schema_version"} <= tables

    assert runner.run_migrations() == []
    status = runner.get_status()
    assert status.current_version == MIGRATIONS[-1].version
    assert status.pending == []


def test_failed_migration_records_nothing_and_stops(engine):
    migrations = [
        Migration(1, "create table", "CREATE TABLE notes (id INTEGER PRIMARY KEY)"),
        Migration(2, "broken", "INSERT INTO missing VALUES (1)"),
        Migration(3, "never reached", "CREATE TABLE later (id INTEGER PRIMARY KEY)"),
    ]
    runner = MigrationRunner(engine, migrations)

    results = runner.run_migrations()

    assert [(r.version, r.success) for r in results] == [(1, True), (2, False)]
    assert results[1].error
    assert runner.get_applied_versions() == {1}
    assert "later" not in inspect(engine).get_table_names()
    assert [m.version for m in runner.get_pending_migrations()] == [2, 3]


def test_rollback_last_runs_down_step(engine):
    migrations = [
        Migration(
            1,
            "notes",
            "CREATE TABLE notes (id INTEGER PRIMARY KEY)",
            "DROP TABLE notes",
        ),
    ]
    runner = MigrationRunner(engine, migrations)
    runner.run_migrations()

    result = runner.rollback_last()

    assert result.version == 1
    assert "notes" not in inspect(engine).get_table_names()
    assert runner.get_status().current_version == 0


def test_rollback_errors(engine):
    runner = MigrationRunner(engine, [Migration(1, "one way", "CREATE TABLE notes (id INTEGER PRIMARY KEY)")])
    with pytest.raises(InvalidOperationError, match="No migrations to rollback"):
        runner.rollback_last()

    runner.run_migrations()
    with pytest.raises(InvalidOperationError, match="has no down migration"):
        runner.rollback_last()


def test_comment_lines_are_ignored(engine):
    runner = MigrationRunner(
        engine,
        [Migration(1, "commented", "-- leading comment\nCREATE TABLE notes (id INTEGER PRIMARY KEY);\n-- trailing")],
    )
    assert runner.run_migrations()[0].success
    with engine.connect() as connection:
        count = connection.execute(text("SELECT COUNT(*) FROM notes")).scalar()
    assert count == 0


def test_character_faction_column_is_added_to_existing_tables(engine):
    with engine.begin() as connection:
        connection.execute(text("CREATE TABLE characters (id VARCHAR(16) PRIMARY KEY, name VARCHAR(200))"))
    runner = MigrationRunner(engine, [m for m in MIGRATIONS if m.version == 4])

    assert runner.run_migrations()[0].success
    columns = {column["name"] for column in inspect(engine).get_columns("characters")}
    assert "faction_id" in columns

    runner.rollback_last()
    columns = {column["name"] for column in inspect(engine).get_columns("characters")}
    assert "faction_id" not in columns


def test_character_faction_migration_is_a_no_op_on_fresh_schema(engine):
    runner = MigrationRunner(engine)
    runner.run_migrations()

    columns = [column["name"] for column in inspect(engine).get_columns("characters")]
    assert columns.count("faction_id") == 1
    assert 4 in runner.get_applied_versions()
