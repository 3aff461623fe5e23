"""
Tests for title deduplication module.

Covers:
- Title normalization
- Containment and word-overlap matching
- TitleDedupeTracker behavior
"""
from smartqueue.title_dedupe import (
    TitleDedupeTracker,
    normalize_title,
    normalized_titles_too_similar,
    titles_too_similar,
)


class TestNormalizeTitle:
    """Tests for normalize_title."""

    def test_strips_brackets_and_article(self):
        assert normalize_title("The Song (Remastered 2011)") == "song"

    def test_strips_version_suffix(self):
        assert normalize_title("Song - Live") == "song"
        assert normalize_title("Song - Remastered 2009") == "song"

    def test_strips_punctuation(self):
        assert normalize_title("Hello, World!") == "hello world"

    def test_empty(self):
        assert normalize_title("") == ""


class TestTitlesTooSimilar:
    """Tests for the duplicate predicate."""

    def test_equal_after_normalization(self):
        assert titles_too_similar("Creep", "Creep (Acoustic)")

    def test_containment_requires_five_chars(self):
        assert titles_too_similar("Hello", "Hello World")
        assert not normalized_titles_too_similar("ab", "ab cd")

    def test_word_overlap(self):
        # "street" and "spirit" both appear in the longer title
        assert titles_too_similar("Street Spirit", "Spirit of the Street")

    def test_different_titles(self):
        assert not titles_too_similar("Karma Police", "Paranoid Android")

    def test_empty_never_duplicate(self):
        assert not titles_too_similar("", "Song")


class TestTitleDedupeTracker:
    """Tests for TitleDedupeTracker."""

    def test_check_and_add(self):
        tracker = TitleDedupeTracker()
        assert not tracker.check_and_add("Bohemian Rhapsody")
        assert tracker.check_and_add("Bohemian Rhapsody - Remastered 2011")
        assert not tracker.check_and_add("Under Pressure")

    def test_stats_and_reset(self):
        tracker = TitleDedupeTracker()
        tracker.add_many(["One", "Two"])
        tracker.check_and_add("One")
        stats = tracker.get_stats()
        assert stats["titles_tracked"] == 2
        assert stats["duplicates_found"] == 1
        tracker.reset()
        assert tracker.get_stats() == {"titles_tracked": 0, "checks": 0, "duplicates_found": 0}
