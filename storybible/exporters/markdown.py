from __future__ import annotations

from typing import List, Sequence

from ..models import Chapter, Volume
from .base import ExportOptions, ExportResult, chapter_title, group_chapters_by_volume, outline_parts, volume_title


class MarkdownFormatter:
    """Render chapters as one Markdown document with a table of contents."""

    def format_chapters(self, chapters: Sequence[Chapter], volumes: Sequence[Volume],
                        options: ExportOptions) -> ExportResult:
        groups = group_chapters_by_volume(chapters, volumes)
        lines: List[str] = ["# Export", ""]

        if chapters:
            lines.extend(["## Table of Contents", ""])
            for group in groups:
                label = volume_title(group.volume) if group.volume else "Unassigned Chapters"
                lines.append(f"- **{label}**")
                lines.extend(f"  - {chapter_title(chapter)}" for chapter in group.chapters)
            lines.extend(["", "---", ""])

        for group in groups:
            if group.volume is not None:
                lines.extend([f"# {volume_title(group.volume)}", ""])
            elif len(groups) > 1:
                lines.extend(["# Unassigned Chapters", ""])

            for chapter in group.chapters:
                lines.extend([f"## {chapter_title(chapter)}", ""])

                if options.include_metadata:
                    lines.extend([f"> Words: {chapter.word_count} | Status: {chapter.status}", ""])

                outline = outline_parts(chapter.outline) if options.include_outline else {}
                if outline:
                    if "goal" in outline:
                        lines.append(f"> **Goal**: {outline['goal']}")
                    if "scenes" in outline:
                        lines.append(f"> **Scenes**: {outline['scenes']}")
                    if "hook" in outline:
                        lines.append(f"> **Hook**: {outline['hook']}")
                    lines.append("")

                lines.append(chapter.content or "*(No content yet)*")
                lines.extend(["", "---", ""])

        if not chapters:
            lines.extend(["*No chapters to export.*", ""])

        return ExportResult(data="\n".join(lines), filename="export.md", mime_type="text/markdown")


__all__ = ["MarkdownFormatter"]
