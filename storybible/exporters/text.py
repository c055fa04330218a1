"""Plain text chapter export."""
from __future__ import annotations

from typing import List, Sequence

from ..models import Chapter, Volume
from .base import ExportOptions, ExportResult, chapter_title, group_chapters_by_volume, outline_parts

VOLUME_SEPARATOR = "=" * 40
CHAPTER_SEPARATOR = "-" * 40


class TextFormatter:
    def format_chapters(self, chapters: Sequence[Chapter], volumes: Sequence[Volume],
                        options: ExportOptions) -> ExportResult:
        groups = group_chapters_by_volume(chapters, volumes)
        lines: List[str] = []

        for group in groups:
            if group.volume is not None:
                heading = group.volume.name or f"VOLUME {group.volume.id}"
                lines.extend([VOLUME_SEPARATOR, heading, VOLUME_SEPARATOR, ""])
            elif len(groups) > 1:
                lines.extend([VOLUME_SEPARATOR, "UNASSIGNED CHAPTERS", VOLUME_SEPARATOR, ""])

            for chapter in group.chapters:
                lines.extend([CHAPTER_SEPARATOR, chapter_title(chapter), CHAPTER_SEPARATOR, ""])

                if options.include_metadata:
                    lines.extend([f"[Words: {chapter.word_count} | Status: {chapter.status}]", ""])

                outline = outline_parts(chapter.outline) if options.include_outline else {}
                if outline:
                    if "goal" in outline:
                        lines.append(f"[Goal] {outline['goal']}")
                    if "scenes" in outline:
                        lines.append(f"[Scenes] {outline['scenes']}")
                    if "hook" in outline:
                        lines.append(f"[Hook] {outline['hook']}")
                    lines.append("")

                lines.append((chapter.content or "").strip() or "(No content yet)")
                lines.append("")

        if not chapters:
            lines.extend(["No chapters to export.", ""])

        return ExportResult(data="\n".join(lines), filename="export.txt", mime_type="text/plain")


__all__ = ["TextFormatter"]
