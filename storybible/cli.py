"""``flask`` commands for running and maintaining a story bible from the terminal.

Run them with ``flask --app storybible <command>``.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import click
from flask import Flask, current_app
from flask.cli import AppGroup, with_appcontext
from werkzeug.serving import run_simple

from .errors import InvalidOperationError, StoryBibleError
from .exporters import BIBLE_SECTIONS, ExportResult
from .migrations import MigrationRunner
from .seed import SEED_LANGUAGES, clear_all_data, run_seed
from .services import get_export_service, get_story_bible_service
from .services.export import EXPORT_FORMATS, build_export_options

db_cli = AppGroup("db", help="Apply, inspect or roll back schema migrations.")
seed_cli = AppGroup("seed", help="Load or clear the demo story.")
bible_cli = AppGroup("bible", help="Browse story bible entries.")
export_cli = AppGroup("export", help="Write chapters or the story bible to a file.")

# entity type -> (list getter name, title attribute)
LISTABLE: Dict[str, Tuple[str, str]] = {
    "character": ("get_all_characters", "name"),
    "location": ("get_all_locations", "name"),
    "faction": ("get_all_factions", "name"),
    "arc": ("get_all_arcs", "name"),
    "foreshadowing": ("get_all_foreshadowing", "content"),
    "hook": ("get_all_hooks", "content"),
    "timeline": ("get_timeline_events", "description"),
}

SHOWABLE: Dict[str, Callable[[Any, str], Dict[str, Any]]] = {
    "character": lambda service, entity_id: service.get_character_with_relations(entity_id),
    "location": lambda service, entity_id: service.get_location(entity_id).to_dict(),
    "faction": lambda service, entity_id: service.get_faction(entity_id).to_dict(),
    "arc": lambda service, entity_id: service.get_arc(entity_id).to_dict(),
    "foreshadowing": lambda service, entity_id: service.get_foreshadowing(entity_id).to_dict(),
    "hook": lambda service, entity_id: service.get_hook(entity_id).to_dict(),
}


def _fail(exc: StoryBibleError) -> click.ClickException:
    return click.ClickException(f"{exc.code}: {exc.message}")


def _write_result(result: ExportResult, output: Optional[Path]) -> Path:
    target = output or Path(result.filename)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(result.as_bytes())
    return target


@db_cli.command("migrate")
def db_migrate() -> None:
    """Apply pending migrations."""

    results = MigrationRunner().run_migrations()
    if not results:
        click.echo("Database schema is up to date.")
        return
    for result in results:
        state = "ok" if result.success else f"FAILED: {result.error}"
        click.echo(f"{result.version}: {result.description} ({state})")
    if not all(result.success for result in results):
        raise click.ClickException("Migration failed")


@db_cli.command("status")
def db_status() -> None:
    status = MigrationRunner().get_status()
    click.echo(f"Current version: {status.current_version}")
    click.echo(f"Applied: {', '.join(map(str, status.applied)) or 'none'}")
    click.echo(f"Pending: {', '.join(map(str, status.pending)) or 'none'}")


@db_cli.command("rollback")
def db_rollback() -> None:
    """Roll back the most recent migration."""

    try:
        result = MigrationRunner().rollback_last()
    except InvalidOperationError as exc:
        raise _fail(exc) from exc
    click.echo(f"Rolled back {result.version}: {result.description}")


@seed_cli.command("load")
@click.argument("lang", type=click.Choice(SEED_LANGUAGES))
@click.option("--yes", is_flag=True, help="Replace existing data without asking.")
def seed_load(lang: str, yes: bool) -> None:
    """Replace all data with the demo story in LANG."""

    if not yes:
        click.confirm("This deletes every chapter and story bible entry. Continue?", abort=True)
    counts = run_seed(lang)
    click.echo(", ".join(f"{section}: {count}" for section, count in counts.items()))


@seed_cli.command("clear")
@click.option("--yes", is_flag=True, help="Delete without asking.")
def seed_clear(yes: bool) -> None:
    if not yes:
        click.confirm("This deletes every chapter and story bible entry. Continue?", abort=True)
    clear_all_data()
    click.echo("All story data cleared.")


@bible_cli.command("list")
@click.argument("entity_type", type=click.Choice(sorted(LISTABLE)))
def bible_list(entity_type: str) -> None:
    """List every entry of ENTITY_TYPE, one per line."""

    getter, title = LISTABLE[entity_type]
    rows = getattr(get_story_bible_service(), getter)()
    if not rows:
        click.echo(f"No {entity_type} entries.")
        return
    for row in rows:
        click.echo(f"{row.id}\t{getattr(row, title)}")


@bible_cli.command("show")
@click.argument("entity_type", type=click.Choice(sorted(SHOWABLE)))
@click.argument("entity_id")
def bible_show(entity_type: str, entity_id: str) -> None:
    """Print one entry as JSON."""

    try:
        payload = SHOWABLE[entity_type](get_story_bible_service(), entity_id)
    except StoryBibleError as exc:
        raise _fail(exc) from exc
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))


@export_cli.command("chapters")
@click.option("--format", "export_format", type=click.Choice(EXPORT_FORMATS), default="md", show_default=True)
@click.option("--volume", "volume_id", type=int, help="Export only this volume.")
@click.option("--chapter", "chapter_ids", type=int, multiple=True, help="Export only these chapters.")
@click.option("--outline", is_flag=True, help="Include chapter outlines.")
@click.option("--metadata", is_flag=True, help="Include word counts and status.")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), help="Defaults to the export filename.")
def export_chapters(
    export_format: str,
    volume_id: Optional[int],
    chapter_ids: Sequence[int],
    outline: bool,
    metadata: bool,
    output: Optional[Path],
) -> None:
    if volume_id is not None:
        export_range: Dict[str, Any] = {"type": "volume", "volume_id": volume_id}
    elif chapter_ids:
        export_range = {"type": "chapters", "chapter_ids": list(chapter_ids)}
    else:
        export_range = {"type": "all"}
    try:
        options = build_export_options(
            {
                "format": export_format,
                "range": export_range,
                "include_outline": outline,
                "include_metadata": metadata,
            }
        )
        result = get_export_service().export_chapters(options)
    except StoryBibleError as exc:
        raise _fail(exc) from exc
    click.echo(f"Wrote {_write_result(result, output)}")


@export_cli.command("bible")
@click.option("--section", "sections", type=click.Choice(BIBLE_SECTIONS), multiple=True)
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), help="Defaults to the export filename.")
def export_bible(sections: Sequence[str], output: Optional[Path]) -> None:
    result = get_export_service().export_story_bible(list(sections) or None)
    click.echo(f"Wrote {_write_result(result, output)}")


@click.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=5000, type=int, show_default=True)
@click.option("--reload", is_flag=True, help="Restart when source files change.")
@with_appcontext
def serve(host: str, port: int, reload: bool) -> None:
    """Serve the API with the threaded development server."""

    app = current_app._get_current_object()
    app.logger.info("Serving story bible on http://%s:%d", host, port)
    run_simple(host, port, app, use_reloader=reload, threaded=True)


def register_cli(app: Flask) -> None:
    for command in (db_cli, seed_cli, bible_cli, export_cli, serve):
        app.cli.add_command(command)


__all__ = ["register_cli"]
