"""
Title Deduplication
===================
Near-duplicate title detection so the same song does not land in the queue
twice through different releases (remasters, live cuts, radio edits).

Two titles count as duplicates when, after normalization:
- they are equal, or
- one contains the other and the shorter side has at least 5 characters, or
- at least 80% of the shorter title's significant words (longer than 2
  characters) also appear in the other title.
"""
import re
import logging
from typing import Iterable, List, Set

from .string_utils import normalize_text

logger = logging.getLogger(__name__)

MIN_CONTAINMENT_LENGTH = 5
WORD_OVERLAP_THRESHOLD = 0.8

_BRACKETED = re.compile(r"\s*[\(\[][^\)\]]*[\)\]]")
_VERSION_SUFFIX = re.compile(
    r"\s+-\s*(remaster(ed)?|remix|live|acoustic|demo|radio edit|extended|original)\b.*$",
    re.IGNORECASE,
)
_LEADING_ARTICLE = re.compile(r"^(the|a|an)\s+")
_PUNCTUATION = re.compile(r"[^\w\s]")


def normalize_title(title: str) -> str:
    """
    Normalize a title for duplicate detection.

    Strips bracketed annotations, version suffixes ("- Live", "- Remastered
    2011"), leading articles and punctuation, then collapses whitespace.
    """
    if not title:
        return ""
    text = normalize_text(title)
    text = _BRACKETED.sub("", text)
    text = _VERSION_SUFFIX.sub("", text)
    text = _LEADING_ARTICLE.sub("", text.strip())
    text = _PUNCTUATION.sub("", text)
    return " ".join(text.split())


def _significant_words(normalized: str) -> List[str]:
    return [w for w in normalized.split() if len(w) > 2]


def titles_too_similar(title1: str, title2: str) -> bool:
    """Return True if two raw titles look like the same song."""
    a = normalize_title(title1)
    b = normalize_title(title2)
    return normalized_titles_too_similar(a, b)


def normalized_titles_too_similar(a: str, b: str) -> bool:
    if not a or not b:
        return False
    if a == b:
        return True

    shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
    if len(shorter) >= MIN_CONTAINMENT_LENGTH and shorter in longer:
        return True

    words_a = _significant_words(a)
    words_b = _significant_words(b)
    if not words_a or not words_b:
        return False
    few, many = (words_a, words_b) if len(words_a) <= len(words_b) else (words_b, words_a)
    many_set = set(many)
    overlap = sum(1 for w in few if w in many_set)
    return overlap / len(few) >= WORD_OVERLAP_THRESHOLD


class TitleDedupeTracker:
    """
    Tracks normalized titles already accepted into a batch.

    Usage:
        tracker = TitleDedupeTracker()
        tracker.add_many(title for title in recent_queue_titles)
        if not tracker.check_and_add(candidate.title):
            accept(candidate)
    """

    def __init__(self) -> None:
        self._seen: Set[str] = set()
        self._ordered: List[str] = []
        self.checks = 0
        self.duplicates_found = 0

    def is_duplicate(self, title: str) -> bool:
        self.checks += 1
        normalized = normalize_title(title)
        if not normalized:
            return False
        if normalized in self._seen:
            self.duplicates_found += 1
            return True
        for seen in self._ordered:
            if normalized_titles_too_similar(normalized, seen):
                self.duplicates_found += 1
                logger.debug(f"Title dedupe: '{title}' matches '{seen}'")
                return True
        return False

    def add(self, title: str) -> None:
        normalized = normalize_title(title)
        if normalized and normalized not in self._seen:
            self._seen.add(normalized)
            self._ordered.append(normalized)

    def add_many(self, titles: Iterable[str]) -> None:
        for title in titles:
            self.add(title)

    def check_and_add(self, title: str) -> bool:
        """Return True if the title is a duplicate; otherwise record it."""
        if self.is_duplicate(title):
            return True
        self.add(title)
        return False

    def get_stats(self) -> dict:
        return {
            "titles_tracked": len(self._ordered),
            "checks": self.checks,
            "duplicates_found": self.duplicates_found,
        }

    def reset(self) -> None:
        self._seen.clear()
        self._ordered.clear()
        self.checks = 0
        self.duplicates_found = 0
