"""
Smart Queue Controller
======================

Keeps the play queue topped up while the user listens.

Modes:
    manual      nothing is added automatically
    auto-queue  replenish when the queue runs low
    radio       replenish around a RadioSeed, with seed-weighted scoring

Replenishment pipeline:
    gather (concurrent sources) -> interleave -> dedupe (ids, exclusions,
    near-duplicate titles) -> score -> sort -> per-artist cap with back-fill

A replenishment fires only when the mode is not manual, the remaining queue
is at or below the threshold, no fetch is in flight and at least
`min_fetch_interval_s` has passed since the previous fetch. When every source
comes back empty the controller records "No matching tracks found" and bumps
`consecutive_failures`; the rate gate keeps it from retrying in a loop.
"""
import logging
import threading
import time
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Callable, Dict, List, Literal, Mapping, Optional, Sequence, Set

from ..errors import NoCandidatesError
from ..models import QueuedTrack, QueueSource, QueueSourceType, RadioSeed, Track
from ..rate_limiter import RateLimiter
from ..scoring import ScoredTrack, ScoringContext, ScoringEngine, UserSnapshot
from .candidate_sources import CandidateGatherer, GatherRequest, dedupe_candidates
from .diversity import apply_diversity_filter
from .session import SessionHistory

logger = logging.getLogger(__name__)

QueueMode = Literal["manual", "auto-queue", "radio"]

CONTEXT_TRACKS = 10
FLOW_TRACKS = 3
TITLE_SEED_TRACKS = 3


@dataclass(frozen=True)
class SmartQueueConfig:
    """Replenishment settings. Persisted per user."""

    auto_queue_enabled: bool = False
    auto_queue_threshold: int = 2
    batch_size: int = 10
    max_artist_per_batch: int = 2
    limit_artist_repetition: bool = True
    min_fetch_interval_s: float = 5.0
    session_timeout_s: float = 4 * 3600
    max_session_history: int = 200
    explore_below: float = 0.3
    exploit_above: float = 0.6

    def __post_init__(self):
        if self.auto_queue_threshold < 0:
            raise ValueError(f"auto_queue_threshold must be >= 0, got {self.auto_queue_threshold}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.max_artist_per_batch < 1:
            raise ValueError(f"max_artist_per_batch must be >= 1, got {self.max_artist_per_batch}")
        if self.min_fetch_interval_s < 0:
            raise ValueError("min_fetch_interval_s must be >= 0")
        if not 0.0 <= self.explore_below <= self.exploit_above <= 1.0:
            raise ValueError("need 0 <= explore_below <= exploit_above <= 1")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping) -> "SmartQueueConfig":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class ReplenishRequest:
    """
    What the controller needs from the host for one replenishment.

    The score callables receive the deduplicated candidates and return values
    keyed by track id; missing ids fall back to neutral.
    """

    current_track: Optional[Track]
    timestamp: float
    hour: int
    day_of_week: int
    upcoming: Sequence[Track] = ()
    user: UserSnapshot = field(default_factory=UserSnapshot)
    excluded_ids: Set[str] = field(default_factory=set)
    top_genres: Sequence[str] = ()
    top_artists: Sequence[str] = ()
    cached_search: Sequence[Track] = ()
    local_source: Optional[Callable[[], Sequence[Track]]] = None
    base_scores: Callable[[Sequence[Track]], Dict[str, float]] = lambda tracks: {}
    plugin_scores: Callable[[Sequence[Track]], Dict[str, float]] = lambda tracks: {}


@dataclass
class ReplenishResult:
    tracks: List[QueuedTrack] = field(default_factory=list)
    scored: List[ScoredTrack] = field(default_factory=list)
    exploration_mode: str = "balanced"
    error: Optional[str] = None
    stats: Dict[str, object] = field(default_factory=dict)


class SmartQueueController:
    """
    Per-user queue controller. Owns the session history and the map of
    why each queued track was added.

    Usage:
        controller = SmartQueueController(gatherer, ScoringEngine())
        controller.enable_auto_queue()
        result = controller.check_and_replenish(remaining=1, request=request)
    """

    def __init__(
        self,
        gatherer: CandidateGatherer,
        scoring: ScoringEngine,
        config: Optional[SmartQueueConfig] = None,
        *,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.gatherer = gatherer
        self.scoring = scoring
        self.config = config or SmartQueueConfig()
        self.clock = clock
        self._monotonic = monotonic
        self.mode: QueueMode = "auto-queue" if self.config.auto_queue_enabled else "manual"
        self.radio_seed: Optional[RadioSeed] = None
        self.radio_tracks_played = 0
        self.is_fetching = False
        self.last_fetch: Optional[float] = None
        self.error: Optional[str] = None
        self.consecutive_failures = 0
        self.sources: Dict[str, QueueSource] = {}
        self.session = SessionHistory(
            max_tracks=self.config.max_session_history,
            max_artists=self.config.max_session_history * 2,
            timeout_s=self.config.session_timeout_s,
            clock=clock,
        )
        self.rate_limiter = RateLimiter(self.config.min_fetch_interval_s, clock=monotonic)
        self._fetch_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Mode and configuration
    # ------------------------------------------------------------------

    def enable_auto_queue(self) -> None:
        self.config = replace(self.config, auto_queue_enabled=True)
        if self.mode == "radio":
            logger.info("Auto-queue enabled; radio keeps control until it is stopped")
            return
        self.mode = "auto-queue"

    def disable_auto_queue(self) -> None:
        self.config = replace(self.config, auto_queue_enabled=False)
        if self.mode == "auto-queue":
            self.mode = "manual"

    def toggle_auto_queue(self) -> bool:
        if self.config.auto_queue_enabled or self.mode == "auto-queue":
            self.disable_auto_queue()
        else:
            self.enable_auto_queue()
        return self.config.auto_queue_enabled

    def update_config(self, **changes) -> SmartQueueConfig:
        """
        Replace config fields.

        Raises:
            ValueError: On unknown fields or invalid values
        """
        known = {f.name for f in fields(SmartQueueConfig)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown queue config field(s): {', '.join(sorted(unknown))}")
        self.config = replace(self.config, **changes)
        if "min_fetch_interval_s" in changes:
            self.rate_limiter = RateLimiter(self.config.min_fetch_interval_s, clock=self._monotonic)
        if "session_timeout_s" in changes:
            self.session.timeout_s = self.config.session_timeout_s
        if "auto_queue_enabled" in changes and self.mode != "radio":
            self.mode = "auto-queue" if self.config.auto_queue_enabled else "manual"
        return self.config

    def start_radio(self, seed: RadioSeed) -> None:
        """Enter radio mode around `seed`; starts a fresh session."""
        self.mode = "radio"
        self.radio_seed = seed
        self.radio_tracks_played = 0
        self.session.clear()
        self.error = None
        self.consecutive_failures = 0
        logger.info(f"Radio started: {seed.type} '{seed.name or seed.id}'")

    def stop_radio(self) -> None:
        if self.mode != "radio":
            return
        self.mode = "manual"
        self.radio_seed = None
        self.radio_tracks_played = 0
        logger.info("Radio stopped")

    def record_track_played(self, track: Track, timestamp: Optional[float] = None) -> None:
        self.session.record_play(track, timestamp)
        if self.mode == "radio":
            self.radio_tracks_played += 1

    def clear_session(self) -> None:
        self.session.clear()
        self.radio_tracks_played = 0

    # ------------------------------------------------------------------
    # Provenance
    # ------------------------------------------------------------------

    def determine_track_source(
        self,
        track: Track,
        current_track: Optional[Track],
        *,
        liked_ids: Set[str] = frozenset(),
        hint: Optional[QueueSourceType] = None,
        score: Optional[float] = None,
        timestamp: Optional[float] = None,
    ) -> QueueSource:
        """Explain why `track` was queued, most specific reason first."""
        now = self.clock() if timestamp is None else timestamp
        seed = self.radio_seed
        if self.mode == "radio" and seed is not None:
            name = seed.name or seed.id
            if seed.type == "artist":
                seed_key = name.casefold()
                if any(a.casefold() == seed_key for a in track.artists):
                    return QueueSource("artist", f"More from {name}", name, score, now, seed.id)
            elif seed.type == "genre":
                return QueueSource("genre", f"{name} radio", name, score, now)
            elif seed.type == "track":
                return QueueSource("similar", f"Similar to {name}", name, score, now, seed.id)
            return QueueSource("radio", f"{name} Radio", name, score, now)

        if track.id in liked_ids:
            return QueueSource("liked", "From your Likes", None, score, now)

        if current_track is not None:
            current_id = current_track.id
            current_artists = {a.casefold(): a for a in current_track.artists}
            shared_artist = next((a for a in track.artists if a.casefold() in current_artists), None)
            if shared_artist:
                return QueueSource("artist", f"More from {shared_artist}", shared_artist, score, now, current_id)
            if current_track.album and track.album and track.album == current_track.album:
                album = current_track.album
                return QueueSource("album", f"From {album}", album, score, now, current_id)
            track_genres = {g.casefold() for g in track.genres}
            shared_genre = next((g for g in current_track.genres if g.casefold() in track_genres), None)
            if shared_genre:
                return QueueSource("genre", f"{shared_genre} vibes", shared_genre, score, now, current_id)
            if hint == "similar":
                return QueueSource("similar", f"Similar to {current_track.title}", current_track.title, score, now, current_id)

        if hint in ("trending", "search", "discovery"):
            label = {"trending": "Trending now", "search": "Discovered for you", "discovery": "Discovered for you"}[hint]
            return QueueSource(hint, label, None, score, now, current_track.id if current_track else None)
        return QueueSource("ml", "Recommended for you", None, score, now, current_track.id if current_track else None)

    def get_queue_sources(self) -> Dict[str, QueueSource]:
        return dict(self.sources)

    def set_manual_source(self, track: Track) -> None:
        self.sources[track.id] = QueueSource("manual", "Added by you", timestamp=self.clock())

    def forget_source(self, track_id: str) -> None:
        self.sources.pop(track_id, None)

    # ------------------------------------------------------------------
    # Replenishment
    # ------------------------------------------------------------------

    def should_replenish(self, remaining: int) -> bool:
        if self.mode == "manual":
            return False
        if self.mode == "auto-queue" and not self.config.auto_queue_enabled:
            return False
        if remaining > self.config.auto_queue_threshold:
            return False
        if self.is_fetching:
            return False
        return self.rate_limiter.ready()

    def check_and_replenish(self, remaining: int, request: ReplenishRequest) -> Optional[ReplenishResult]:
        """Replenish if the trigger conditions hold; None when nothing fired."""
        if not self.should_replenish(remaining):
            return None
        if not self.rate_limiter.try_acquire():
            return None
        logger.info(f"Replenishing queue ({remaining} remaining, mode={self.mode})")
        return self.fetch_more_tracks(request)

    def build_context(self, request: ReplenishRequest, exploration_mode: str) -> ScoringContext:
        recent = self.session.recent_tracks(CONTEXT_TRACKS)
        if request.current_track is not None and (not recent or recent[-1].id != request.current_track.id):
            recent.append(request.current_track)
        session_genres = [g for t in recent for g in t.genre_keys]
        energies = [
            t.audio_features.energy for t in recent
            if t.audio_features is not None and t.audio_features.energy is not None
        ]
        previous = recent[-1] if recent else None
        features = previous.audio_features if previous is not None else None
        return ScoringContext(
            timestamp=request.timestamp,
            hour=request.hour,
            day_of_week=request.day_of_week,
            session_artists=[a for t in recent for a in t.artist_keys],
            session_genres=session_genres,
            recent_energy=energies[-FLOW_TRACKS:],
            previous_bpm=features.bpm if features else None,
            previous_key=features.key if features else None,
            exploration_mode=exploration_mode,
            radio_seed=self.radio_seed if self.mode == "radio" else None,
            radio_tracks_played=self.radio_tracks_played,
        )

    def _fail(self, message: str, stats: Dict[str, object]) -> ReplenishResult:
        self.error = message
        self.consecutive_failures += 1
        logger.warning(f"Replenishment failed ({self.consecutive_failures} in a row): {message}")
        return ReplenishResult(error=message, stats=stats)

    def fetch_more_tracks(self, request: ReplenishRequest, count: Optional[int] = None) -> ReplenishResult:
        """
        Run the full pipeline and return up to `count` (default batch size)
        queued tracks. Never raises for upstream trouble; the outcome is in
        the result and in `error` / `consecutive_failures`.
        """
        if not self._fetch_lock.acquire(blocking=False):
            return ReplenishResult(stats={"skipped": "fetch in flight"})
        self.is_fetching = True
        try:
            return self._fetch(request, count or self.config.batch_size)
        finally:
            self.is_fetching = False
            self._fetch_lock.release()

    def _fetch(self, request: ReplenishRequest, count: int) -> ReplenishResult:
        self.session.touch(request.timestamp)
        current = request.current_track

        pool = self.gatherer.gather(GatherRequest(
            current_track=current,
            radio_seed=self.radio_seed if self.mode == "radio" else None,
            top_genres=request.top_genres,
            top_artists=request.top_artists,
            cached_search=request.cached_search,
            local_source=request.local_source,
        ))

        exclude = set(request.excluded_ids) | self.session.played_ids() | {t.id for t in request.upcoming}
        if current is not None:
            exclude.add(current.id)
        title_seeds = [t.title for t in list(request.upcoming)[-TITLE_SEED_TRACKS:]]
        if current is not None:
            title_seeds.append(current.title)
        candidates, dedupe_stats = dedupe_candidates(pool.interleave(), exclude_ids=exclude, seed_titles=title_seeds)
        stats: Dict[str, object] = {
            "gathered": len(pool),
            "failed_sources": list(pool.failures),
            **dedupe_stats,
        }
        if not candidates:
            return self._fail(NoCandidatesError.MESSAGE, stats)

        exploration_mode = pool.exploration_mode(self.config.explore_below, self.config.exploit_above)
        context = self.build_context(request, exploration_mode)
        context.plugin_scores = dict(request.plugin_scores(candidates))
        base_scores = request.base_scores(candidates)
        ranked = self.scoring.rank(candidates, base_scores, context, request.user)

        if self.config.limit_artist_repetition:
            selection = apply_diversity_filter(
                items=ranked,
                batch_size=count,
                max_per_artist=self.config.max_artist_per_batch,
                artist_of=lambda s: s.track.primary_artist_key or s.track.id,
            )
            chosen = selection.selected
            stats["diversity"] = selection.stats
        else:
            chosen = ranked[:count]

        now = request.timestamp
        queued: List[QueuedTrack] = []
        for scored in chosen:
            source = self.determine_track_source(
                scored.track,
                current,
                liked_ids=set(request.user.liked_tracks),
                hint=pool.source_types.get(scored.track.id),
                score=scored.score,
                timestamp=now,
            )
            self.sources[scored.track.id] = source
            queued.append(QueuedTrack(scored.track, source))

        self.last_fetch = now
        self.error = None
        self.consecutive_failures = 0
        stats["selected"] = len(queued)
        logger.info(
            f"Queued {len(queued)} of {len(candidates)} candidate(s) "
            f"(mode={self.mode}, exploration={exploration_mode})"
        )
        return ReplenishResult(tracks=queued, scored=chosen, exploration_mode=exploration_mode, stats=stats)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_state(self) -> dict:
        return {
            "config": self.config.to_dict(),
            "mode": self.mode,
            "radio_seed": self.radio_seed.to_dict() if self.radio_seed else None,
            "radio_tracks_played": self.radio_tracks_played,
        }

    def load_state(self, state: Mapping) -> None:
        self.config = SmartQueueConfig.from_dict(state.get("config") or {})
        self.rate_limiter = RateLimiter(self.config.min_fetch_interval_s, clock=self._monotonic)
        self.session.timeout_s = self.config.session_timeout_s
        seed = state.get("radio_seed")
        mode = state.get("mode", "manual")
        if mode == "radio" and seed:
            self.radio_seed = RadioSeed.from_dict(seed)
            self.mode = "radio"
            self.radio_tracks_played = int(state.get("radio_tracks_played", 0))
        else:
            self.mode = "auto-queue" if self.config.auto_queue_enabled else "manual"
            self.radio_seed = None
            self.radio_tracks_played = 0
