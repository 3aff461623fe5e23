"""
Co-occurrence Matrix
====================

Collaborative signal that is independent of embeddings: how often two tracks
end up together in the same queue, playlist, listening session or radio run.

- Pairs are symmetric and tracked per context.
- Counts decay by 0.98 per elapsed day. Decay is applied lazily, in one
  batch, the next time the matrix is read or maintained after at least a day
  has passed.
- At most `max_pairs` pairs are stored; the lowest-count pair (oldest on
  ties) is evicted first.
- During maintenance, pairs whose decayed count is below `min_count` and
  that have not been seen for a day are pruned.
"""
import heapq
import logging
import math
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Literal, Optional, Sequence, Set, Tuple

from ..logging_utils import format_count

logger = logging.getLogger(__name__)

CoOccurrenceContext = Literal["queue", "playlist", "session", "radio"]
CONTEXTS = ("queue", "playlist", "session", "radio")

SECONDS_PER_DAY = 86_400.0

PairKey = Tuple[str, str, str]


@dataclass(frozen=True)
class CoOccurrenceConfig:
    max_pairs: int = 50_000
    min_count: float = 2.0
    daily_decay: float = 0.98
    session_window_s: float = 30 * 60
    session_max_tracks: int = 20
    group_window: int = 10
    embedding_weight: float = 0.6
    collaborative_weight: float = 0.4
    overlap_bonus: float = 0.1

    def __post_init__(self):
        if not 0 < self.daily_decay <= 1:
            raise ValueError("daily_decay must be in (0, 1]")
        if self.max_pairs < 1:
            raise ValueError("max_pairs must be positive")
        if abs(self.embedding_weight + self.collaborative_weight - 1.0) > 0.01:
            raise ValueError("embedding_weight + collaborative_weight must sum to 1.0")


@dataclass
class PairStats:
    count: float
    last_seen: float


def _pair_key(a: str, b: str, context: str) -> PairKey:
    return (a, b, context) if a <= b else (b, a, context)


class CoOccurrenceMatrix:
    """One user's co-occurrence pairs."""

    def __init__(self, config: Optional[CoOccurrenceConfig] = None, clock=time.time):
        self.config = config or CoOccurrenceConfig()
        self._clock = clock
        self._pairs: Dict[PairKey, PairStats] = {}
        self._adjacency: Dict[str, Set[PairKey]] = defaultdict(set)
        self._last_decay: Optional[float] = None
        self._session: List[Tuple[str, float]] = []
        self._lock = threading.RLock()
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._pairs)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_co_occurrence(
        self,
        track_a: str,
        track_b: str,
        context: CoOccurrenceContext,
        timestamp: Optional[float] = None,
        increment: float = 1.0,
    ) -> None:
        """Increment the symmetric counter for (track_a, track_b) in a context."""
        if context not in CONTEXTS:
            raise ValueError(f"Unknown co-occurrence context: {context!r}")
        if not track_a or not track_b or track_a == track_b:
            return
        now = self._clock() if timestamp is None else float(timestamp)
        key = _pair_key(track_a, track_b, context)
        with self._lock:
            if self._last_decay is None:
                self._last_decay = now
            stats = self._pairs.get(key)
            if stats is None:
                if len(self._pairs) >= self.config.max_pairs:
                    self._evict(len(self._pairs) - self.config.max_pairs + 1)
                stats = PairStats(count=0.0, last_seen=now)
                self._pairs[key] = stats
                self._adjacency[key[0]].add(key)
                self._adjacency[key[1]].add(key)
            stats.count += increment
            stats.last_seen = max(stats.last_seen, now)

    def record_group(
        self,
        track_ids: Sequence[str],
        context: CoOccurrenceContext,
        timestamp: Optional[float] = None,
    ) -> int:
        """
        Record a whole queue/playlist. Each track pairs with the tracks
        within `group_window` positions after it. Returns pairs touched.
        """
        ids = [t for t in track_ids if t]
        window = self.config.group_window
        touched = 0
        for i, a in enumerate(ids):
            for b in ids[i + 1:i + 1 + window]:
                if a != b:
                    self.record_co_occurrence(a, b, context, timestamp)
                    touched += 1
        return touched

    def record_session_play(self, track_id: str, timestamp: Optional[float] = None) -> int:
        """
        Add a played track to the running listening session.

        A session ends after 30 minutes without plays or once it holds 20
        tracks. The new track pairs with every track already in the session.
        """
        now = self._clock() if timestamp is None else float(timestamp)
        with self._lock:
            if self._session:
                last_ts = self._session[-1][1]
                if (now - last_ts > self.config.session_window_s
                        or len(self._session) >= self.config.session_max_tracks):
                    self._session = []
            partners = [tid for tid, _ in self._session if tid != track_id]
            self._session.append((track_id, now))
        for other in dict.fromkeys(partners):
            self.record_co_occurrence(track_id, other, "session", now)
        return len(partners)

    def _evict(self, n: int) -> None:
        victims = heapq.nsmallest(
            n, self._pairs.items(), key=lambda kv: (kv[1].count, kv[1].last_seen)
        )
        for key, _ in victims:
            self._remove(key)
        self.evictions += len(victims)
        logger.debug(f"Co-occurrence cap reached; evicted {format_count(len(victims), 'pair')}")

    def _remove(self, key: PairKey) -> None:
        self._pairs.pop(key, None)
        for tid in key[:2]:
            keys = self._adjacency.get(tid)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._adjacency[tid]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def maintain(self, now: Optional[float] = None) -> int:
        """
        Apply pending decay and prune stale low-count pairs.

        Decay runs once at least one full day has elapsed since the last run
        and uses the exact elapsed time: factor = 0.98 ** elapsed_days.
        Returns the number of pairs pruned.
        """
        now = self._clock() if now is None else float(now)
        with self._lock:
            if self._last_decay is None:
                self._last_decay = now
                return 0
            elapsed_days = (now - self._last_decay) / SECONDS_PER_DAY
            if elapsed_days < 1.0:
                return 0
            factor = self.config.daily_decay ** elapsed_days
            stale = []
            for key, stats in self._pairs.items():
                stats.count *= factor
                if (stats.count < self.config.min_count
                        and now - stats.last_seen >= SECONDS_PER_DAY):
                    stale.append(key)
            for key in stale:
                self._remove(key)
            self._last_decay = now
        if stale:
            logger.debug(
                f"Co-occurrence decay x{factor:.4f} over {elapsed_days:.1f} days; "
                f"pruned {format_count(len(stale), 'pair')}"
            )
        return len(stale)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_count(self, track_a: str, track_b: str, context: Optional[str] = None) -> float:
        with self._lock:
            if context is not None:
                stats = self._pairs.get(_pair_key(track_a, track_b, context))
                return stats.count if stats else 0.0
            total = 0.0
            for ctx in CONTEXTS:
                stats = self._pairs.get(_pair_key(track_a, track_b, ctx))
                if stats is not None:
                    total += stats.count
            return total

    def get_co_occurring(
        self,
        track_id: str,
        context: Optional[CoOccurrenceContext] = None,
        limit: int = 10,
        now: Optional[float] = None,
    ) -> List[Tuple[str, float]]:
        """
        Partners of a track by decayed count, highest first.

        With no context, counts are summed across contexts. Partners below
        `min_count` are left out.
        """
        self.maintain(now)
        totals: Dict[str, float] = defaultdict(float)
        last_seen: Dict[str, float] = defaultdict(float)
        with self._lock:
            for key in self._adjacency.get(track_id, ()):
                if context is not None and key[2] != context:
                    continue
                stats = self._pairs[key]
                other = key[1] if key[0] == track_id else key[0]
                totals[other] += stats.count
                last_seen[other] = max(last_seen[other], stats.last_seen)
        ranked = [
            (other, count) for other, count in totals.items()
            if count >= self.config.min_count
        ]
        ranked.sort(key=lambda kv: (-kv[1], -last_seen[kv[0]], kv[0]))
        return ranked[:limit]

    def get_co_occurring_many(
        self,
        track_ids: Iterable[str],
        context: Optional[CoOccurrenceContext] = None,
        limit: int = 20,
        now: Optional[float] = None,
    ) -> List[Tuple[str, float]]:
        """Summed partners of several seed tracks, seeds excluded."""
        seeds = list(dict.fromkeys(track_ids))
        totals: Dict[str, float] = defaultdict(float)
        for seed in seeds:
            for other, count in self.get_co_occurring(seed, context, limit=limit * 2, now=now):
                totals[other] += count
        for seed in seeds:
            totals.pop(seed, None)
        ranked = sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))
        return ranked[:limit]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_state(self) -> dict:
        with self._lock:
            return {
                "pairs": [
                    [a, b, ctx, stats.count, stats.last_seen]
                    for (a, b, ctx), stats in self._pairs.items()
                ],
                "last_decay": self._last_decay,
                "session": [[tid, ts] for tid, ts in self._session],
            }

    def load_state(self, state: dict) -> None:
        pairs: Dict[PairKey, PairStats] = {}
        adjacency: Dict[str, Set[PairKey]] = defaultdict(set)
        for a, b, ctx, count, seen in state.get("pairs", []):
            if ctx not in CONTEXTS:
                raise ValueError(f"unknown context {ctx!r}")
            key = _pair_key(str(a), str(b), ctx)
            pairs[key] = PairStats(float(count), float(seen))
            adjacency[key[0]].add(key)
            adjacency[key[1]].add(key)
        with self._lock:
            self._pairs = pairs
            self._adjacency = adjacency
            self._last_decay = state.get("last_decay")
            self._session = [(str(t), float(ts)) for t, ts in state.get("session", [])]


def blend_with_embeddings(
    embedding_results: Sequence[Tuple[str, float]],
    collaborative_results: Sequence[Tuple[str, float]],
    *,
    config: Optional[CoOccurrenceConfig] = None,
    limit: int = 20,
) -> List[Tuple[str, float]]:
    """
    Merge embedding neighbours with co-occurrence partners.

    score = 0.6 * similarity + 0.4 * (count / max_count), plus
    log(count) * 0.1 for candidates present in both lists.
    """
    cfg = config or CoOccurrenceConfig()
    emb = {tid: max(0.0, float(sim)) for tid, sim in embedding_results}
    collab = {tid: float(count) for tid, count in collaborative_results}
    max_count = max(collab.values(), default=0.0)

    scores: Dict[str, float] = {}
    for tid in set(emb) | set(collab):
        score = cfg.embedding_weight * emb.get(tid, 0.0)
        if max_count > 0 and tid in collab:
            score += cfg.collaborative_weight * (collab[tid] / max_count)
        if tid in emb and tid in collab:
            score += math.log(max(collab[tid], 1.0)) * cfg.overlap_bonus
        scores[tid] = score

    ranked = sorted(scores.items(), key=lambda kv: (-kv[1], kv[0]))
    return ranked[:limit]
