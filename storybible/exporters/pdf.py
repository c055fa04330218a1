"""PDF chapter export.

The FPDF core fonts only cover Latin-1, so every string goes through
:func:`pdf_safe_text` first; characters outside that range are replaced.
"""
from __future__ import annotations

import logging
import textwrap
import unicodedata
from typing import Sequence

from fpdf import FPDF
from fpdf.errors import FPDFException

from ..errors import ExportError
from ..models import Chapter, Volume
from .base import (
    ExportOptions,
    ExportResult,
    chapter_title,
    group_chapters_by_volume,
    outline_parts,
    volume_title,
)

LOGGER = logging.getLogger(__name__)

_LATIN1_REPLACEMENTS = {
    ord("\u2010"): "-",
    ord("\u2011"): "-",
    ord("\u2012"): "-",
    ord("\u2013"): "-",
    ord("\u2014"): "-",
    ord("\u2015"): "-",
    ord("\u2212"): "-",
    ord("\u2018"): "'",
    ord("\u2019"): "'",
    ord("\u201A"): "'",
    ord("\u201B"): "'",
    ord("\u2032"): "'",
    ord("\u201C"): '"',
    ord("\u201D"): '"',
    ord("\u201E"): '"',
    ord("\u00AB"): '"',
    ord("\u00BB"): '"',
    ord("\u2026"): "...",
    ord("\u2192"): "->",
    ord("\u00A0"): " ",
    ord("\u2007"): " ",
    ord("\u2009"): " ",
    ord("\u202F"): " ",
    ord("\u3000"): " ",
    ord("\u200B"): "",
    ord("\ufeff"): "",
}


def pdf_safe_text(text: str) -> str:
    normalized = unicodedata.normalize("NFKC", text or "").replace("\t", " ")
    replaced = normalized.translate(_LATIN1_REPLACEMENTS)
    return replaced.encode("latin-1", "replace").decode("latin-1")


def _wrapped(text: str, width: int = 100) -> str:
    lines = []
    for raw_line in pdf_safe_text(text).splitlines():
        if not raw_line:
            lines.append("")
            continue
        lines.extend(
            textwrap.wrap(raw_line, width=width, break_long_words=True, break_on_hyphens=False) or [""]
        )
    return "\n".join(lines)


class PdfFormatter:
    def __init__(self) -> None:
        self._pdf = None
        self._width = 0.0

    def _write(self, height: float, text: str) -> None:
        wrapped = _wrapped(text)
        if not wrapped:
            return
        self._pdf.set_x(self._pdf.l_margin)
        self._pdf.multi_cell(self._width, height, wrapped)

    def format_chapters(self, chapters: Sequence[Chapter], volumes: Sequence[Volume],
                        options: ExportOptions) -> ExportResult:
        pdf = FPDF()
        pdf.set_auto_page_break(auto=True, margin=15)
        pdf.set_left_margin(15)
        pdf.set_right_margin(15)
        self._pdf = pdf
        self._width = pdf.w - pdf.l_margin - pdf.r_margin

        try:
            pdf.add_page()
            pdf.set_font("Times", "B", 20)
            self._write(12, "Export")
            pdf.ln(4)

            groups = group_chapters_by_volume(chapters, volumes)
            first_block = True
            for group in groups:
                if group.volume is not None or len(groups) > 1:
                    if not first_block:
                        pdf.add_page()
                    first_block = False
                    pdf.set_font("Times", "B", 18)
                    self._write(10, volume_title(group.volume) if group.volume is not None else "Unassigned Chapters")
                    pdf.ln(2)

                for chapter in group.chapters:
                    if not first_block:
                        pdf.add_page()
                    first_block = False
                    pdf.set_font("Times", "B", 14)
                    self._write(10, chapter_title(chapter))

                    pdf.set_font("Times", "I", 10)
                    if options.include_metadata:
                        self._write(6, f"Words: {chapter.word_count} | Status: {chapter.status}")
                    outline = outline_parts(chapter.outline) if options.include_outline else {}
                    labels = {"goal": "Goal", "scenes": "Scenes", "hook": "Hook"}
                    for key, value in outline.items():
                        self._write(6, f"{labels[key]}: {value}")
                    pdf.ln(2)

                    pdf.set_font("Times", "", 12)
                    content = (chapter.content or "").strip() or "(No content yet)"
                    for paragraph in content.split("\n\n"):
                        if paragraph.strip():
                            self._write(6.5, paragraph.strip())
                            pdf.ln(1.5)

            if not chapters:
                pdf.set_font("Times", "I", 12)
                self._write(6, "No chapters to export.")

            data = bytes(pdf.output())
        except FPDFException as exc:
            LOGGER.error("PDF export failed: %s", exc)
            raise ExportError(f"Unable to export PDF: {exc}") from exc
        finally:
            self._pdf = None

        return ExportResult(data=data, filename="export.pdf", mime_type="application/pdf")


__all__ = ["PdfFormatter", "pdf_safe_text"]
