"""Split raw manuscript text into chapters on Chinese and English headings."""
from __future__ import annotations

import re
from dataclasses import asdict, dataclass, replace
from typing import Dict, List

CN_NUMS = "一二三四五六七八九十百千零壹贰叁肆伍陆柒捌玖拾佰仟"

_CJK_CHAR = re.compile("[\u4e00-\u9fff\u3400-\u4dbf\uf900-\ufaff]")

# Each pattern matches a whole (stripped) heading line; group 1 is the title.
_HEADING_PATTERNS = [
    re.compile(rf"第[{CN_NUMS}\d]+章[\s\uff1a:\u3000]*(.*?)"),
    re.compile(rf"第[{CN_NUMS}\d]+回[\s\uff1a:\u3000]*(.*?)"),
    re.compile(rf"第[{CN_NUMS}\d]+节[\s\uff1a:\u3000]*(.*?)"),
    re.compile(r"Chapter\s+\d+[:\s]*(.*?)", re.IGNORECASE),
    re.compile(r"CHAPTER\s+\d+[:\s]*(.*?)"),
    re.compile(r"Part\s+\d+[:\s]*(.*?)", re.IGNORECASE),
]

PREAMBLE_MIN_WORDS = 50


@dataclass
class DetectedChapter:
    title: str
    content: str
    start_line: int
    end_line: int
    word_count: int

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def count_words(text: str) -> int:
    """CJK characters count one each; everything else splits on whitespace."""

    cjk = len(_CJK_CHAR.findall(text))
    return cjk + len(_CJK_CHAR.sub(" ", text).split())


def _heading_title(line: str):
    for pattern in _HEADING_PATTERNS:
        match = pattern.fullmatch(line)
        if match:
            return match.group(1).strip() or line
    return None


def detect_chapter_boundaries(text: str) -> List[DetectedChapter]:
    if not text or not text.strip():
        return []

    lines = text.split("\n")
    marks = []
    for index, raw_line in enumerate(lines):
        line = raw_line.strip()
        if not line:
            continue
        title = _heading_title(line)
        if title is not None:
            marks.append((index, title))

    if not marks:
        content = text.strip()
        return [DetectedChapter("Chapter 1", content, 1, len(lines), count_words(content))]

    chapters: List[DetectedChapter] = []
    first_index = marks[0][0]
    if first_index > 0:
        preamble = "\n".join(lines[:first_index]).strip()
        if preamble and count_words(preamble) > PREAMBLE_MIN_WORDS:
            chapters.append(DetectedChapter("Preamble", preamble, 1, first_index, count_words(preamble)))

    for position, (start, title) in enumerate(marks):
        end = marks[position + 1][0] if position + 1 < len(marks) else len(lines)
        content = "\n".join(lines[start + 1:end]).strip()
        chapters.append(DetectedChapter(title, content, start + 1, end, count_words(content)))

    return chapters


def merge_short_chapters(chapters: List[DetectedChapter], min_words: int = 200) -> List[DetectedChapter]:
    """Fold chapters under ``min_words`` into the chapter before them."""

    if len(chapters) <= 1:
        return list(chapters)

    merged = [replace(chapters[0])]
    for current in chapters[1:]:
        if current.word_count < min_words:
            previous = merged[-1]
            previous.content = f"{previous.content}\n\n{current.title}\n{current.content}"
            previous.end_line = current.end_line
            previous.word_count = count_words(previous.content)
        else:
            merged.append(replace(current))
    return merged


__all__ = ["DetectedChapter", "count_words", "detect_chapter_boundaries", "merge_short_chapters"]
