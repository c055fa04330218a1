"""Word document chapter export built with python-docx."""
from __future__ import annotations

import io
import re
from typing import Sequence

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt, RGBColor

from ..models import Chapter, Volume
from .base import (
    DOCX_MIME_TYPE,
    ExportOptions,
    ExportResult,
    chapter_title,
    group_chapters_by_volume,
    outline_parts,
    volume_title,
)

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n+")


def _add_note(document, text: str, colour: RGBColor) -> None:
    paragraph = document.add_paragraph()
    run = paragraph.add_run(text)
    run.italic = True
    run.font.size = Pt(10)
    run.font.color.rgb = colour


class DocxFormatter:
    def format_chapters(self, chapters: Sequence[Chapter], volumes: Sequence[Volume],
                        options: ExportOptions) -> ExportResult:
        groups = group_chapters_by_volume(chapters, volumes)
        document = Document()

        title = document.add_heading("Export", level=0)
        title.alignment = WD_ALIGN_PARAGRAPH.CENTER

        first_block = True
        for group in groups:
            if group.volume is not None or len(groups) > 1:
                label = volume_title(group.volume) if group.volume is not None else "Unassigned Chapters"
                heading = document.add_heading(label, level=1)
                heading.paragraph_format.page_break_before = not first_block
                first_block = False

            for chapter in group.chapters:
                heading = document.add_heading(chapter_title(chapter), level=2)
                heading.paragraph_format.page_break_before = not first_block
                first_block = False

                if options.include_metadata:
                    _add_note(
                        document,
                        f"Words: {chapter.word_count} | Status: {chapter.status}",
                        RGBColor(0x88, 0x88, 0x88),
                    )

                outline = outline_parts(chapter.outline) if options.include_outline else {}
                if outline:
                    labels = {"goal": "Goal", "scenes": "Scenes", "hook": "Hook"}
                    _add_note(
                        document,
                        " | ".join(f"{labels[key]}: {value}" for key, value in outline.items()),
                        RGBColor(0x66, 0x66, 0x66),
                    )

                if chapter.content:
                    for block in _PARAGRAPH_BREAK.split(chapter.content):
                        if block.strip():
                            document.add_paragraph(block.strip())
                else:
                    _add_note(document, "(No content yet)", RGBColor(0x99, 0x99, 0x99))

        if not chapters:
            _add_note(document, "No chapters to export.", RGBColor(0x99, 0x99, 0x99))

        buffer = io.BytesIO()
        document.save(buffer)
        return ExportResult(data=buffer.getvalue(), filename="export.docx", mime_type=DOCX_MIME_TYPE)


__all__ = ["DocxFormatter"]
