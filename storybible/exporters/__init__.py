from .base import ExportOptions, ExportResult, VolumeGroup, group_chapters_by_volume
from .bible import BIBLE_SECTIONS, BibleData, BibleFormatter
from .markdown import MarkdownFormatter
from .pdf import PdfFormatter
from .text import TextFormatter
from .word import DocxFormatter

CHAPTER_FORMATTERS = {
    "md": MarkdownFormatter,
    "txt": TextFormatter,
    "docx": DocxFormatter,
    "pdf": PdfFormatter,
}

__all__ = [
    "BIBLE_SECTIONS",
    "BibleData",
    "BibleFormatter",
    "CHAPTER_FORMATTERS",
    "DocxFormatter",
    "ExportOptions",
    "ExportResult",
    "MarkdownFormatter",
    "PdfFormatter",
    "TextFormatter",
    "VolumeGroup",
    "group_chapters_by_volume",
]
