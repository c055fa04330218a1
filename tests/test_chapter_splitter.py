import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storybible.services.chapter_splitter import (
    DetectedChapter,
    detect_chapter_boundaries,
    merge_short_chapters,
)


def test_english_headings_split_text():
    text = "Chapter 1: Beginning\nLine a\nLine b\nChapter 2 The Road\nLine c"

    chapters = detect_chapter_boundaries(text)

    assert [c.title for c in chapters] == ["Beginning", "The Road"]
    assert chapters[0].content == "Line a\nLine b"
    assert (chapters[0].start_line, chapters[0].end_line) == (1, 3)
    assert chapters[0].word_count == 4
    assert chapters[1].content == "Line c"


def test_chinese_headings_and_bare_heading_title():
    text = "第一章 初见\n林墨走进小镇\n第二章\n他拔出了剑"

    chapters = detect_chapter_boundaries(text)

    assert [c.title for c in chapters] == ["初见", "第二章"]
    assert chapters[0].word_count == 6
    assert chapters[1].content == "他拔出了剑"


def test_text_without_headings_is_one_chapter():
    chapters = detect_chapter_boundaries("Just a short story.\nWith two lines.")

    assert len(chapters) == 1
    assert chapters[0].title == "Chapter 1"
    assert chapters[0].content == "Just a short story.\nWith two lines."


def test_empty_text_has_no_chapters():
    assert detect_chapter_boundaries("") == []
    assert detect_chapter_boundaries("  \n ") == []


def test_short_preamble_is_dropped_long_one_kept():
    short = "A note\nChapter 1\nBody"
    long_preamble = " ".join(["word"] * 60)
    long = f"{long_preamble}\nChapter 1\nBody"

    assert [c.title for c in detect_chapter_boundaries(short)] == ["Chapter 1"]
    assert [c.title for c in detect_chapter_boundaries(long)] == ["Preamble", "Chapter 1"]


def test_merge_short_chapters_folds_into_previous():
    chapters = [
        DetectedChapter("One", "alpha beta gamma", 1, 3, 3),
        DetectedChapter("Interlude", "tiny", 4, 5, 1),
        DetectedChapter("Two", "delta epsilon zeta", 6, 8, 3),
    ]

    merged = merge_short_chapters(chapters, min_words=2)

    assert [c.title for c in merged] == ["One", "Two"]
    assert merged[0].content == "alpha beta gamma\n\nInterlude\ntiny"
    assert merged[0].end_line == 5
    assert merged[0].word_count == 5
    # The input list is left untouched.
    assert chapters[0].content == "alpha beta gamma"


def test_merge_keeps_single_chapter():
    only = [DetectedChapter("One", "x", 1, 1, 1)]
    assert merge_short_chapters(only, min_words=100) == only
