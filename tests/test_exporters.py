import io
import sys
from pathlib import Path

import pytest
from docx import Document

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storybible import create_app
from storybible.config import TestConfig
from storybible.errors import ValidationError
from storybible.exporters import BibleData, BibleFormatter, ExportOptions
from storybible.exporters.bible import escape_cell
from storybible.exporters.pdf import pdf_safe_text
from storybible.extensions import db
from storybible.services import get_event_bus, get_export_service, get_story_bible_service, get_writing_service
from storybible.services.export import build_export_options


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
def manuscript(app_instance):
    writing = get_writing_service()
    volume = writing.create_volume({"name": "Book One"})
    first = writing.create_chapter(
        {"title": "The Gate", "volume_id": volume.id, "outline": {"goal": "Enter the sect", "scenes": ["Rain", "Gate"]}}
    )
    writing.save_content(first.id, "Rain fell on the gate.\n\nLin Mo knocked.")
    loose = writing.create_chapter({"title": "Interlude"})
    return {"volume": volume, "first": first, "loose": loose}


def test_build_export_options_validates_choices():
    options = build_export_options({"format": "txt", "range": {"type": "volume", "volume_id": 2}})
    assert (options.format, options.range_type, options.volume_id) == ("txt", "volume", 2)

    assert build_export_options({}).format == "md"
    with pytest.raises(ValidationError, match="Unsupported export format"):
        build_export_options({"format": "epub"})
    with pytest.raises(ValidationError):
        build_export_options({"range": {"type": "chapters", "chapter_ids": "1,2"}})


def test_markdown_export_groups_by_volume(manuscript):
    result = get_export_service().export_chapters(
        ExportOptions(format="md", include_outline=True, include_metadata=True)
    )

    text = result.data
    assert result.filename == "export.md"
    assert result.mime_type == "text/markdown"
    assert "## Table of Contents" in text
    assert "- **Book One**" in text
    assert "# Unassigned Chapters" in text
    assert "> **Goal**: Enter the sect" in text
    assert "> **Scenes**: Rain, Gate" in text
    assert "> Words: 8 | Status: outline" in text
    assert "*(No content yet)*" in text
    assert text.index("## The Gate") < text.index("## Interlude")


def test_text_export_without_extras(manuscript):
    result = get_export_service().export_chapters(ExportOptions(format="txt"))

    assert "BOOK ONE" not in result.data
    assert "Book One" in result.data
    assert "[Goal]" not in result.data
    assert "(No content yet)" in result.data
    assert result.as_bytes().decode("utf-8") == result.data


def test_docx_export_can_be_read_back(manuscript):
    result = get_export_service().export_chapters(ExportOptions(format="docx"))

    document = Document(io.BytesIO(result.as_bytes()))
    texts = [paragraph.text for paragraph in document.paragraphs]
    assert result.filename == "export.docx"
    assert "Book One" in texts
    assert "The Gate" in texts
    assert "Rain fell on the gate." in texts
    assert "Lin Mo knocked." in texts


def test_pdf_export_produces_pdf_bytes(manuscript):
    writing = get_writing_service()
    writing.save_content(manuscript["loose"].id, "“Quoted” — 林墨 said…")

    result = get_export_service().export_chapters(ExportOptions(format="pdf"))

    assert result.mime_type == "application/pdf"
    assert result.as_bytes().startswith(b"%PDF")


def test_pdf_safe_text_replaces_unsupported_characters():
    assert pdf_safe_text("“Hi”—林") == '"Hi"-?'
    assert pdf_safe_text("wait…") == "wait..."
    assert pdf_safe_text(None) == ""


def test_export_ranges(manuscript):
    service = get_export_service()

    by_volume = service.export_chapters(
        ExportOptions(format="md", range_type="volume", volume_id=manuscript["volume"].id)
    )
    picked = service.export_chapters(
        ExportOptions(format="md", range_type="chapters", chapter_ids=[manuscript["loose"].id])
    )

    assert "The Gate" in by_volume.data and "Interlude" not in by_volume.data
    assert "Interlude" in picked.data and "The Gate" not in picked.data

    with pytest.raises(ValidationError, match="volume_id is required"):
        service.export_chapters(ExportOptions(range_type="volume"))
    with pytest.raises(ValidationError, match="chapter_ids is required"):
        service.export_chapters(ExportOptions(range_type="chapters"))
    with pytest.raises(ValidationError, match="Unknown range type"):
        service.export_chapters(ExportOptions(range_type="shelf"))


def test_empty_export_says_so(app_instance):
    result = get_export_service().export_chapters(ExportOptions(format="md"))
    assert "*No chapters to export.*" in result.data


def test_export_emits_completion_event(manuscript):
    received = []
    get_event_bus().on("EXPORT_COMPLETED", received.append)

    get_export_service().export_chapters(ExportOptions(format="txt"))

    assert received[0]["format"] == "txt"
    assert received[0]["chapter_count"] == 2


def test_story_bible_export(app_instance):
    bible = get_story_bible_service()
    hero = bible.create_character(
        {"name": "Lin Mo", "role": "main", "motivation": {"surface": "Join the sect"}, "voice_samples": ["Again."]}
    )
    friend = bible.create_character({"name": "Su Yan", "role": "supporting"})
    bible.create_relationship(
        {"source_id": hero.id, "target_id": friend.id, "type": "companion", "join_reason": "Owes a debt | or two"}
    )
    bible.set_power_system({"name": "Qi Refining", "levels": ["Body", "Core"]})
    bible.create_foreshadowing({"content": "A cracked jade pendant", "planted_chapter": 1, "planned_payoff": 30})

    result = get_export_service().export_story_bible()

    text = result.data
    assert result.filename == "story-bible.md"
    assert "### Lin Mo (main)" in text
    assert "- **Motivation (surface)**: Join the sect" in text
    assert '- **Voice**: "Again."' in text
    assert "| Lin Mo | Su Yan | companion | Owes a debt \\| or two | - |" in text
    assert "### Power System: Qi Refining" in text
    assert "| FS001 | A cracked jade pendant | active | - | Ch 1 | Ch 30 (planned) |" in text


def test_story_bible_sections_filter_and_validation(app_instance):
    get_story_bible_service().create_location({"name": "Qingyun Town"})
    service = get_export_service()

    only_characters = service.export_story_bible(["characters"])
    only_locations = service.export_story_bible(["locations"])

    assert "*No Story Bible data yet.*" in only_characters.data
    assert "### Qingyun Town" in only_locations.data
    with pytest.raises(ValidationError, match="Unknown story bible section"):
        service.export_story_bible(["dragons"])


def test_escape_cell_and_empty_bible():
    assert escape_cell("a|b") == "a\\|b"
    assert "*No Story Bible data yet.*" in BibleFormatter().format(BibleData()).data
