"""
Candidate gathering for queue replenishment.

Candidates come from several independent sources, queried concurrently:

    1. feature-provider similar tracks for the current track
    2. recommendation API: similar to the current track
    3. recommendation API: radio-seed recommendations
    4. recommendation API: recommendations for the current artist
    5. recommendation API: recommendations for the current genre
    6. recommendation API: the user's top genres
    7. local library (embedding neighbours, liked tracks, co-occurring tracks)
    8. smart search queries, when discovery is thin (< 20)
    9. trending, when discovery is very thin (< 10)
   10. cached search results

Each source runs in isolation with a timeout; a failing or slow source is
logged and contributes nothing. Results are grouped as similar, discovery or
local and merged in the order above, a track found by several sources
keeping the first, so the pool does not depend on thread timing.
"""
import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Literal, Optional, Sequence, Set, Tuple

from ..logging_utils import truncate_list
from ..models import QueueSourceType, RadioSeed, Track
from ..providers import ProviderRegistry
from ..recommendation_client import RecommendationSource
from ..title_dedupe import TitleDedupeTracker

logger = logging.getLogger(__name__)

CandidateGroup = Literal["similar", "discovery", "local"]

SOURCE_TIMEOUT_S = 10.0
PLUGIN_SIMILAR_LIMIT = 20
API_LIMIT = 20
TOP_GENRE_LIMIT = 10
SEARCH_THRESHOLD = 20
SEARCH_QUERY_COUNT = 3
SEARCH_RESULT_LIMIT = 15
TRENDING_THRESHOLD = 10
TRENDING_LIMIT = 20


@dataclass
class CandidatePool:
    """Gathered candidates, grouped, plus where each one came from."""

    similar: List[Track] = field(default_factory=list)
    discovery: List[Track] = field(default_factory=list)
    local: List[Track] = field(default_factory=list)
    source_types: Dict[str, QueueSourceType] = field(default_factory=dict)
    failures: List[str] = field(default_factory=list)

    def add(self, group: CandidateGroup, tracks: Sequence[Track], source_type: QueueSourceType) -> int:
        """Append tracks not already pooled; returns how many were new."""
        bucket = getattr(self, group)
        added = 0
        for track in tracks:
            if track.id in self.source_types:
                continue
            self.source_types[track.id] = source_type
            bucket.append(track)
            added += 1
        return added

    def __len__(self) -> int:
        return len(self.similar) + len(self.discovery) + len(self.local)

    @property
    def discovery_ratio(self) -> float:
        return (len(self.discovery) + len(self.similar)) / max(1, len(self))

    def exploration_mode(self, explore_below: float = 0.3, exploit_above: float = 0.6) -> str:
        """
        Mostly external candidates: exploit (lean on preference). Mostly
        local: explore (push novelty). Otherwise balanced.
        """
        ratio = self.discovery_ratio
        if ratio > exploit_above:
            return "exploit"
        if ratio < explore_below:
            return "explore"
        return "balanced"

    def interleave(self) -> List[Track]:
        """All similar first, then two discovery for every local."""
        merged = list(self.similar)
        d, l = 0, 0
        while d < len(self.discovery) or l < len(self.local):
            for _ in range(2):
                if d < len(self.discovery):
                    merged.append(self.discovery[d])
                    d += 1
            if l < len(self.local):
                merged.append(self.local[l])
                l += 1
        return merged


@dataclass
class GatherRequest:
    """Everything the sources need for one replenishment."""

    current_track: Optional[Track] = None
    radio_seed: Optional[RadioSeed] = None
    top_genres: Sequence[str] = ()
    top_artists: Sequence[str] = ()
    cached_search: Sequence[Track] = ()
    local_source: Optional[Callable[[], Sequence[Track]]] = None


def build_search_queries(
    current_track: Optional[Track],
    top_artists: Sequence[str],
    top_genres: Sequence[str],
) -> List[str]:
    """Free-text queries that widen discovery around the current listening."""
    queries: List[str] = []
    artist = current_track.primary_artist if current_track and current_track.artists else None
    genre = None
    if current_track and current_track.genres:
        genre = current_track.genres[0]
    elif top_genres:
        genre = top_genres[0]

    if artist:
        queries.append(f"{artist} fans also like")
        queries.append(f"similar to {artist}")
    if genre:
        queries.append(f"best {genre} songs")
        queries.append(f"{genre} playlist")
    current_key = current_track.primary_artist_key if current_track else ""
    for name in [a for a in top_artists if a and a != current_key][:3]:
        queries.append(f"{name} popular songs")
    return queries


def dedupe_candidates(
    candidates: Sequence[Track],
    *,
    exclude_ids: Set[str],
    seed_titles: Sequence[str] = (),
) -> Tuple[List[Track], Dict[str, int]]:
    """
    Drop excluded ids, repeated ids and near-duplicate titles.

    Titles in `seed_titles` (the current track and the end of the queue)
    count as already present, so a live or remastered version of something
    just played is rejected too.
    """
    tracker = TitleDedupeTracker()
    tracker.add_many(t for t in seed_titles if t)
    seen: Set[str] = set()
    kept: List[Track] = []
    stats = {"excluded": 0, "duplicate_id": 0, "duplicate_title": 0}
    for track in candidates:
        if track.id in exclude_ids:
            stats["excluded"] += 1
            continue
        if track.id in seen:
            stats["duplicate_id"] += 1
            continue
        seen.add(track.id)
        if track.title and tracker.check_and_add(track.title):
            stats["duplicate_title"] += 1
            continue
        kept.append(track)
    return kept, stats


Branch = Tuple[str, CandidateGroup, QueueSourceType, Callable[[], Sequence[Track]]]


class CandidateGatherer:
    """
    Fans candidate sources out on a thread pool.

    Usage:
        gatherer = CandidateGatherer(recommendations=client, providers=registry,
                                     resolve_track=catalog.get)
        pool = gatherer.gather(GatherRequest(current_track=track))
    """

    def __init__(
        self,
        *,
        recommendations: Optional[RecommendationSource] = None,
        providers: Optional[ProviderRegistry] = None,
        resolve_track: Callable[[str], Optional[Track]] = lambda _id: None,
        max_workers: int = 6,
        timeout_s: float = SOURCE_TIMEOUT_S,
    ):
        self.recommendations = recommendations
        self.providers = providers
        self.resolve_track = resolve_track
        self.timeout_s = timeout_s
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="candidates")

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def _run(self, branches: List[Branch], pool: CandidatePool) -> None:
        if not branches:
            return
        futures: List[Future] = [self._executor.submit(fn) for _, _, _, fn in branches]
        done, _ = wait(futures, timeout=self.timeout_s)
        for (name, group, source_type, _), future in zip(branches, futures):
            if future not in done:
                future.cancel()
                logger.warning(f"Candidate source '{name}' timed out after {self.timeout_s:.0f}s")
                pool.failures.append(name)
                continue
            try:
                tracks = future.result()
            except Exception as e:
                logger.warning(f"Candidate source '{name}' failed: {e}")
                pool.failures.append(name)
                continue
            added = pool.add(group, tracks or [], source_type)
            logger.debug(f"Source '{name}': {added} new candidate(s) -> {group}")

    def _plugin_similar(self, track_id: str) -> List[Track]:
        per_provider = self.providers.similar_tracks(track_id, PLUGIN_SIMILAR_LIMIT)
        tracks = []
        for ids in per_provider.values():
            for tid in ids:
                resolved = self.resolve_track(tid)
                if resolved is not None:
                    tracks.append(resolved)
        return tracks

    def _top_genre_branches(self, request: GatherRequest) -> List[Branch]:
        current_genres = set(request.current_track.genre_keys) if request.current_track else set()
        branches: List[Branch] = []
        for genre in [g for g in request.top_genres if g not in current_genres][:2]:
            branches.append((
                f"top-genre:{genre}", "discovery", "genre",
                lambda g=genre: self.recommendations.get_recommended("genre", g, TOP_GENRE_LIMIT),
            ))
        return branches

    def _radio_branch(self, seed: RadioSeed) -> Branch:
        value = seed.id if seed.type == "track" else (seed.name or seed.id)
        return (
            "radio-seed", "discovery", "radio",
            lambda: self.recommendations.get_recommended(seed.type, value, API_LIMIT),
        )

    def gather(self, request: GatherRequest) -> CandidatePool:
        pool = CandidatePool()
        current = request.current_track
        recs = self.recommendations

        branches: List[Branch] = []
        if current is not None and self.providers is not None and len(self.providers):
            branches.append(("plugin-similar", "similar", "similar", lambda: self._plugin_similar(current.id)))
        if recs is not None:
            if current is not None:
                branches.append(("api-similar", "similar", "similar", lambda: recs.get_similar(current, API_LIMIT)))
            if request.radio_seed is not None:
                branches.append(self._radio_branch(request.radio_seed))
            if current is not None and current.artists:
                branches.append((
                    "artist-recs", "discovery", "artist",
                    lambda: recs.get_recommended("artist", current.primary_artist, API_LIMIT),
                ))
            if current is not None and current.genres:
                branches.append((
                    "genre-recs", "discovery", "genre",
                    lambda: recs.get_recommended("genre", current.genres[0], API_LIMIT),
                ))
            branches.extend(self._top_genre_branches(request))
        if request.local_source is not None:
            branches.append(("local", "local", "auto", request.local_source))
        self._run(branches, pool)

        if recs is not None and len(pool.discovery) < SEARCH_THRESHOLD:
            queries = build_search_queries(current, request.top_artists, request.top_genres)
            search_branches: List[Branch] = [
                (f"search:{q}", "discovery", "search", lambda q=q: recs.search(q, SEARCH_RESULT_LIMIT))
                for q in queries[:SEARCH_QUERY_COUNT]
            ]
            if search_branches:
                logger.debug(f"Discovery thin ({len(pool.discovery)}); searching {truncate_list(queries[:SEARCH_QUERY_COUNT])}")
            self._run(search_branches, pool)

        if recs is not None and len(pool.discovery) < TRENDING_THRESHOLD:
            self._run([("trending", "discovery", "trending", lambda: recs.get_trending(TRENDING_LIMIT))], pool)

        if request.cached_search:
            pool.add("discovery", request.cached_search, "search")

        logger.info(
            f"Gathered {len(pool)} candidate(s): {len(pool.similar)} similar, "
            f"{len(pool.discovery)} discovery, {len(pool.local)} local"
            + (f"; failed sources: {truncate_list(pool.failures)}" if pool.failures else "")
        )
        return pool
