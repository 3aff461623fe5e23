"""
Artist diversity for queue batches.

Selection walks the score-sorted candidates and keeps at most
`max_per_artist` tracks per artist. When the cap leaves the batch short, the
remaining slots are back-filled with the best leftovers regardless of artist.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Sequence, TypeVar

from ..models import Track

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class DiversityResult:
    """
    Result of diversity selection.

    Attributes:
        selected: Chosen items in selection order
        stats: capped_out (items skipped by the cap), backfilled, artist_counts
    """
    selected: List
    stats: Dict[str, object] = field(default_factory=dict)


def _track_artist(item) -> str:
    track = item if isinstance(item, Track) else getattr(item, "track", item)
    return track.primary_artist_key or track.id


def apply_diversity_filter(
    *,
    items: Sequence[T],
    batch_size: int,
    max_per_artist: int = 2,
    artist_of: Callable[[T], str] = _track_artist,
    backfill: bool = True,
) -> DiversityResult:
    """
    Pick up to `batch_size` items honouring the per-artist cap.

    Args:
        items: Candidates, best first
        batch_size: Number of items wanted
        max_per_artist: Cap per artist within the batch
        artist_of: Artist key of an item
        backfill: Fill remaining slots from capped-out items when short

    Returns:
        DiversityResult with the selection and diagnostics
    """
    if batch_size <= 0:
        return DiversityResult(selected=[], stats={"capped_out": 0, "backfilled": 0})

    counts: Counter = Counter()
    selected: List[T] = []
    leftovers: List[T] = []

    for item in items:
        if len(selected) >= batch_size:
            break
        artist = artist_of(item)
        if counts[artist] < max_per_artist:
            selected.append(item)
            counts[artist] += 1
        else:
            leftovers.append(item)

    backfilled = 0
    if backfill and len(selected) < batch_size:
        for item in leftovers:
            if len(selected) >= batch_size:
                break
            selected.append(item)
            counts[artist_of(item)] += 1
            backfilled += 1
        if backfilled:
            logger.debug(f"Diversity back-filled {backfilled} slot(s) past the artist cap")

    logger.debug(
        f"Diversity selected {len(selected)}/{len(items)} "
        f"(max {max_per_artist} per artist, {len(leftovers)} capped)"
    )
    return DiversityResult(
        selected=selected,
        stats={
            "capped_out": len(leftovers),
            "backfilled": backfilled,
            "artist_counts": dict(counts),
        },
    )
