"""
Recommendation Engine
=====================

Facade over the recommendation core. One engine holds the shared track
catalog, embedding cache and vector index, plus per-user state (preferences,
taste profile, co-occurrence, queue controller) created on first use and kept
behind a per-user lock.

Usage:
    engine = RecommendationEngine(storage=MemoryStorage())
    engine.register_tracks(library)
    engine.record_event(UserEvent("like", "t1"))
    result = engine.get_next_tracks(10, current_track_id="t1")

Persistence keys:
    catalog, embeddings, index,
    user:<id>:profile, user:<id>:preferences, user:<id>:cooccurrence,
    user:<id>:queue_config
"""
import logging
import random
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple
from zoneinfo import ZoneInfo

import numpy as np

from .config_loader import Config
from .embeddings.cooccurrence import CoOccurrenceMatrix, blend_with_embeddings
from .embeddings.embedding_engine import EmbeddingEngine, cosine_similarity
from .embeddings.playlist_generator import GeneratedPlaylist, PlaylistGenerator, PlaylistOptions
from .embeddings.taste_profile import TasteProfileManager
from .embeddings.vector_index import VectorIndex
from .errors import IndexCapacityError, StorageCorruptionError, UpstreamUnavailableError
from .features.extractor import FeatureExtractor
from .learning.event_recorder import EventRecorder, RecordOutcome
from .learning.preference_store import PreferenceStore
from .logging_utils import format_count, stage_timer
from .models import QueueSource, RadioSeed, Track, UserEvent
from .providers import FeatureProvider, ProviderRegistry
from .queue.candidate_sources import CandidateGatherer
from .queue.smart_queue import ReplenishRequest, ReplenishResult, SmartQueueController
from .recommendation_client import HttpRecommendationClient, RecommendationSource
from .scoring import ScoredTrack, ScoringContext, ScoringEngine
from .storage import MemoryStorage, StorageAdapter, create_storage

logger = logging.getLogger(__name__)

DEFAULT_USER = "default"
LOCAL_NEIGHBOURS = 30
LOCAL_PARTNERS = 20
LOCAL_TASTE_MATCHES = 20
LOCAL_LIKED = 20
LOCAL_FALLBACK = 100
SEARCH_CACHE_SIZE = 50

USER_KEYS = ("profile", "preferences", "cooccurrence", "queue_config")


def _user_key(user_id: str, part: str) -> str:
    return f"user:{user_id}:{part}"


def _user_id_from_key(key: str) -> Optional[str]:
    """User id of a per-user storage key; ids may themselves contain ':'."""
    if not key.startswith("user:"):
        return None
    user_id, sep, part = key[len("user:"):].rpartition(":")
    if not sep or not user_id or part not in USER_KEYS:
        return None
    return user_id


@dataclass
class UserState:
    """Everything the engine keeps for one user."""

    preferences: PreferenceStore
    taste: TasteProfileManager
    cooccurrence: CoOccurrenceMatrix
    queue: SmartQueueController
    recorder: EventRecorder
    search_cache: List[Track] = field(default_factory=list)
    lock: threading.RLock = field(default_factory=threading.RLock)


class RecommendationEngine:
    """Entry point for hosts: ranking, replenishment, learning and persistence."""

    def __init__(
        self,
        *,
        config: Optional[Config] = None,
        storage: Optional[StorageAdapter] = None,
        recommendations: Optional[RecommendationSource] = None,
        providers: Optional[ProviderRegistry] = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.config = config or Config()
        self.storage = storage if storage is not None else MemoryStorage()
        self.providers = providers or ProviderRegistry()
        self.recommendations = recommendations
        self.clock = clock
        self._monotonic = monotonic
        tz_name = self.config.timezone
        self._tz = timezone.utc if tz_name.upper() == "UTC" else ZoneInfo(tz_name)

        self.embeddings = EmbeddingEngine(self.config.embedding_config())
        self.index = VectorIndex(self.config.index_config())
        self.features = FeatureExtractor(self._tz)
        self.gatherer = CandidateGatherer(
            recommendations=recommendations,
            providers=self.providers,
            resolve_track=self.get_track,
            max_workers=self.config.source_workers,
            timeout_s=self.config.source_timeout,
        )
        self.playlists = PlaylistGenerator(self.index, self.get_track, self.config.cooccurrence_config())

        self._tracks: Dict[str, Track] = {}
        self._catalog_lock = threading.RLock()
        self._users: Dict[str, UserState] = {}
        self._users_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Config, **kwargs) -> "RecommendationEngine":
        """Build storage and the HTTP recommendation client from config values."""
        if "storage" not in kwargs:
            kwargs["storage"] = create_storage(config.storage_backend, config.storage_path)
        if "recommendations" not in kwargs and config.api_base_url:
            kwargs["recommendations"] = HttpRecommendationClient(config.api_base_url, timeout=config.api_timeout)
        return cls(config=config, **kwargs)

    def close(self) -> None:
        self.gatherer.close()

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def get_track(self, track_id: str) -> Optional[Track]:
        with self._catalog_lock:
            return self._tracks.get(track_id)

    @property
    def track_count(self) -> int:
        with self._catalog_lock:
            return len(self._tracks)

    def register_feature_provider(self, provider: FeatureProvider) -> None:
        self.providers.register(provider)

    def _index_track(self, track: Track) -> str:
        embedding = self.embeddings.embed(track)
        if embedding is None:
            return "unembeddable"
        try:
            self.index.add(track.id, embedding.vector)
        except IndexCapacityError as e:
            logger.warning(f"Not indexing {track.id}: {e}")
            return "rejected"
        return "indexed"

    def register_tracks(self, tracks: Iterable[Track], *, enrich: bool = True) -> Dict[str, int]:
        """
        Add or update catalog tracks, embed them and index them.

        Tracks without audio features are enriched from feature providers
        when `enrich` is set. Returns counts per outcome.
        """
        counts = {"registered": 0, "indexed": 0, "unembeddable": 0, "rejected": 0}
        with stage_timer("register_tracks", logger):
            for track in tracks:
                if enrich and track.audio_features is None and len(self.providers):
                    track.audio_features = self.providers.audio_features(track.id)
                with self._catalog_lock:
                    self._tracks[track.id] = track
                counts["registered"] += 1
                counts[self._index_track(track)] += 1
        logger.info(
            f"Registered {format_count(counts['registered'], 'track')} "
            f"({counts['indexed']} indexed, {counts['unembeddable']} unembeddable, "
            f"{counts['rejected']} rejected)"
        )
        return counts

    def _ensure_track(self, track: Track) -> Track:
        """Catalog version of a track, registering it when new."""
        known = self.get_track(track.id)
        if known is not None:
            return known
        self.register_tracks([track])
        return track

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def _new_user_state(self) -> UserState:
        cfg = self.config
        preferences = PreferenceStore(cfg.timezone)
        taste = TasteProfileManager(cfg.taste_profile_config())
        cooccurrence = CoOccurrenceMatrix(cfg.cooccurrence_config(), clock=self.clock)
        scoring = ScoringEngine(
            cfg.scoring_weights(),
            cfg.mode_adjustments(),
            cfg.radio_config(),
            rng=random.Random(cfg.rng_seed),
        )
        queue = SmartQueueController(
            self.gatherer, scoring, cfg.queue_config(), clock=self.clock, monotonic=self._monotonic
        )
        recorder = EventRecorder(preferences, taste, cooccurrence, self.embeddings.embed)
        return UserState(preferences, taste, cooccurrence, queue, recorder)

    def user(self, user_id: str = DEFAULT_USER) -> UserState:
        with self._users_lock:
            state = self._users.get(user_id)
            if state is None:
                state = self._new_user_state()
                self._users[user_id] = state
                logger.debug(f"Created state for user '{user_id}'")
            return state

    @property
    def user_ids(self) -> List[str]:
        with self._users_lock:
            return list(self._users)

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _moment(self, now: float) -> Tuple[int, int]:
        local = datetime.fromtimestamp(now, tz=self._tz)
        return local.hour, local.weekday()

    def base_scores(self, state: UserState, tracks: Sequence[Track], now: float) -> Dict[str, float]:
        """
        Fused preference per track (0-100, 50 neutral).

        Taste similarity (cosine mapped onto 0-100) and the affinity score are
        averaged when the user has a valid taste profile and the track has an
        embedding; otherwise the affinity score stands alone.
        """
        profile = state.taste.get_profile(now)
        scores: Dict[str, float] = {}
        for track in tracks:
            affinity = state.preferences.calculate_track_score(track, now)
            embedding = self.embeddings.embed(track) if profile is not None else None
            if embedding is not None:
                taste = (cosine_similarity(profile, embedding.vector) + 1.0) * 50.0
                scores[track.id] = (taste + affinity) / 2.0
            else:
                scores[track.id] = affinity
        return scores

    def rank_candidates(
        self,
        candidates: Sequence[Track],
        context: Optional[ScoringContext] = None,
        *,
        user_id: str = DEFAULT_USER,
        now: Optional[float] = None,
    ) -> List[ScoredTrack]:
        """Score a batch for a user and return it best first."""
        now = self.clock() if now is None else now
        state = self.user(user_id)
        with state.lock:
            if context is None:
                hour, day = self._moment(now)
                context = state.queue.build_context(
                    ReplenishRequest(current_track=None, timestamp=now, hour=hour, day_of_week=day),
                    "balanced",
                )
            if not context.plugin_scores:
                context = replace(context, plugin_scores=dict(self.providers.track_scores(candidates)))
            user = state.preferences.snapshot(now)
            return state.queue.scoring.rank(candidates, self.base_scores(state, candidates, now), context, user)

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def _local_candidates(self, state: UserState, current: Optional[Track], now: float) -> List[Track]:
        ids: List[str] = []
        exclude: Set[str] = {current.id} if current is not None else set()
        if current is not None:
            vector = self.index.get_vector(current.id)
            if vector is not None:
                ids.extend(tid for tid, _ in self.index.search(vector, LOCAL_NEIGHBOURS, exclude))
            ids.extend(tid for tid, _ in state.cooccurrence.get_co_occurring(current.id, limit=LOCAL_PARTNERS, now=now))
        profile = state.taste.get_profile(now)
        if profile is not None:
            ids.extend(tid for tid, _ in self.index.search(profile, LOCAL_TASTE_MATCHES, exclude))
        ids.extend(sorted(state.preferences.liked_tracks)[:LOCAL_LIKED])

        tracks = [t for t in (self.get_track(tid) for tid in dict.fromkeys(ids)) if t is not None]
        if not tracks:
            with self._catalog_lock:
                tracks = [t for t in list(self._tracks.values())[:LOCAL_FALLBACK] if t.id not in exclude]
        return tracks

    def _replenish_request(
        self,
        state: UserState,
        current: Optional[Track],
        upcoming: Sequence[Track],
        now: float,
    ) -> ReplenishRequest:
        hour, day = self._moment(now)
        prefs = state.preferences
        return ReplenishRequest(
            current_track=current,
            timestamp=now,
            hour=hour,
            day_of_week=day,
            upcoming=list(upcoming),
            user=prefs.snapshot(now),
            excluded_ids=set(prefs.excluded_track_ids()),
            top_genres=prefs.top_genres(now, 2),
            top_artists=prefs.top_artists(now, 3),
            cached_search=list(state.search_cache),
            local_source=lambda: self._local_candidates(state, current, now),
            base_scores=lambda tracks: self.base_scores(state, tracks, now),
            plugin_scores=self.providers.track_scores,
        )

    def _resolve_many(self, track_ids: Sequence[str]) -> List[Track]:
        return [t for t in (self.get_track(tid) for tid in track_ids) if t is not None]

    def get_next_tracks(
        self,
        n: int = 10,
        *,
        user_id: str = DEFAULT_USER,
        current_track_id: Optional[str] = None,
        upcoming_ids: Sequence[str] = (),
        now: Optional[float] = None,
    ) -> ReplenishResult:
        """Gather, score and select the next `n` tracks for a user."""
        now = self.clock() if now is None else now
        state = self.user(user_id)
        current = self.get_track(current_track_id) if current_track_id else None
        with state.lock:
            request = self._replenish_request(state, current, self._resolve_many(upcoming_ids), now)
            return state.queue.fetch_more_tracks(request, n)

    def check_and_replenish(
        self,
        remaining: int,
        *,
        user_id: str = DEFAULT_USER,
        current_track_id: Optional[str] = None,
        upcoming_ids: Sequence[str] = (),
        now: Optional[float] = None,
    ) -> Optional[ReplenishResult]:
        """Replenish only when the controller's trigger conditions hold."""
        now = self.clock() if now is None else now
        state = self.user(user_id)
        current = self.get_track(current_track_id) if current_track_id else None
        with state.lock:
            if not state.queue.should_replenish(remaining):
                return None
            request = self._replenish_request(state, current, self._resolve_many(upcoming_ids), now)
            return state.queue.check_and_replenish(remaining, request)

    def get_queue_sources(self, user_id: str = DEFAULT_USER) -> Dict[str, QueueSource]:
        state = self.user(user_id)
        with state.lock:
            return state.queue.get_queue_sources()

    def add_manual_track(self, track_id: str, *, user_id: str = DEFAULT_USER) -> Optional[QueueSource]:
        """Label a track the user queued by hand. None when the track is unknown."""
        track = self.get_track(track_id)
        if track is None:
            return None
        state = self.user(user_id)
        with state.lock:
            state.queue.set_manual_source(track)
            return state.queue.get_queue_sources()[track_id]

    def remove_queued_track(self, track_id: str, *, user_id: str = DEFAULT_USER) -> None:
        state = self.user(user_id)
        with state.lock:
            state.queue.forget_source(track_id)

    def clear_session(self, *, user_id: str = DEFAULT_USER) -> None:
        """Forget the listening session so played tracks become eligible again."""
        state = self.user(user_id)
        with state.lock:
            state.queue.clear_session()
        logger.info(f"Cleared listening session for user '{user_id}'")

    def search(self, query: str, *, user_id: str = DEFAULT_USER, limit: int = 15) -> List[Track]:
        """Search the recommendation service and keep the hits as cached candidates."""
        if self.recommendations is None:
            return []
        try:
            hits = self.recommendations.search(query, limit)
        except UpstreamUnavailableError as e:
            logger.warning(f"Search for '{query}' failed: {e}")
            return []
        state = self.user(user_id)
        with state.lock:
            known = {t.id for t in state.search_cache}
            state.search_cache.extend(t for t in hits if t.id not in known)
            del state.search_cache[:-SEARCH_CACHE_SIZE]
        return hits

    # ------------------------------------------------------------------
    # Radio
    # ------------------------------------------------------------------

    def _enrich_seed(self, seed: RadioSeed) -> RadioSeed:
        if seed.type != "track":
            return seed
        track = self.get_track(seed.id)
        if track is not None:
            if not seed.name:
                seed.name = track.title
            if not seed.genres:
                seed.genres = list(track.genres)
            if not seed.artist_ids:
                seed.artist_ids = list(track.artist_keys)
            if seed.audio_features is None:
                seed.audio_features = track.audio_features
        if seed.audio_features is None:
            seed.audio_features = self.providers.audio_features(seed.id)
            if seed.audio_features is not None:
                logger.debug(f"Enriched radio seed {seed.id} with provider audio features")
        return seed

    def start_radio(self, seed: RadioSeed, *, user_id: str = DEFAULT_USER) -> RadioSeed:
        state = self.user(user_id)
        seed = self._enrich_seed(seed)
        with state.lock:
            state.queue.start_radio(seed)
        return seed

    def stop_radio(self, *, user_id: str = DEFAULT_USER) -> None:
        state = self.user(user_id)
        with state.lock:
            state.queue.stop_radio()

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def record_event(self, event: UserEvent, *, user_id: str = DEFAULT_USER) -> Optional[RecordOutcome]:
        """
        Feed one user event to the learning stores.

        Returns None when the event's track is neither attached nor known.
        """
        if event.track is not None:
            track = self._ensure_track(event.track)
        else:
            track = self.get_track(event.track_id)
        if track is None:
            logger.warning(f"Ignoring {event.type} event for unknown track {event.track_id}")
            return None

        state = self.user(user_id)
        with state.lock:
            outcome = state.recorder.record(event, track, radio_active=state.queue.mode == "radio")
            if event.type == "listen":
                state.queue.record_track_played(track, event.timestamp)
        return outcome

    def record_group(self, track_ids: Sequence[str], context: str, *, user_id: str = DEFAULT_USER,
                     now: Optional[float] = None) -> int:
        """Record a queue or playlist as co-occurring tracks."""
        state = self.user(user_id)
        with state.lock:
            return state.cooccurrence.record_group(track_ids, context, now)

    def maintain(self, now: Optional[float] = None) -> int:
        """Apply co-occurrence decay and pruning for every user."""
        pruned = 0
        for user_id in self.user_ids:
            state = self.user(user_id)
            with state.lock:
                pruned += state.cooccurrence.maintain(now)
        return pruned

    # ------------------------------------------------------------------
    # Similarity and playlists
    # ------------------------------------------------------------------

    def similar_tracks(
        self,
        track_id: str,
        k: int = 10,
        *,
        user_id: Optional[str] = None,
        now: Optional[float] = None,
    ) -> List[Tuple[str, float]]:
        """
        Nearest tracks by embedding. With a user, blended with that user's
        co-occurrence partners.
        """
        vector = self.index.get_vector(track_id)
        embedding_results = self.index.search(vector, k, {track_id}) if vector is not None else []
        if user_id is None:
            return embedding_results
        state = self.user(user_id)
        with state.lock:
            partners = state.cooccurrence.get_co_occurring(track_id, limit=k, now=now)
        return blend_with_embeddings(
            embedding_results, partners, config=self.config.cooccurrence_config(), limit=k
        )

    def generate_playlist(
        self,
        options: PlaylistOptions,
        *,
        user_id: str = DEFAULT_USER,
        now: Optional[float] = None,
    ) -> GeneratedPlaylist:
        now = self.clock() if now is None else now
        state = self.user(user_id)
        with state.lock:
            excluded = tuple(state.preferences.excluded_track_ids())
            if excluded:
                options = replace(options, exclude_ids=tuple(options.exclude_ids) + excluded)
            return self.playlists.generate(
                options, taste=state.taste, cooccurrence=state.cooccurrence, now=now
            )

    def track_feature_vector(self, track_id: str, *, user_id: str = DEFAULT_USER) -> Optional[np.ndarray]:
        track = self.get_track(track_id)
        if track is None:
            return None
        state = self.user(user_id)
        with state.lock:
            prefs = state.preferences
            return self.features.extract_track_features(
                track,
                play_count=prefs.play_counts.get(track_id, 0),
                liked=track_id in prefs.liked_tracks,
                disliked=track_id in prefs.disliked_tracks,
            )

    def context_feature_vector(self, *, user_id: str = DEFAULT_USER, now: Optional[float] = None) -> np.ndarray:
        now = self.clock() if now is None else now
        state = self.user(user_id)
        return self.features.extract_context_features(now, len(state.queue.session))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> None:
        storage = self.storage
        with self._catalog_lock:
            storage.set("catalog", [t.to_dict() for t in self._tracks.values()])
        storage.set("embeddings", self.embeddings.to_state())
        storage.set("index", self.index.to_state())
        for user_id in self.user_ids:
            state = self.user(user_id)
            with state.lock:
                storage.set(_user_key(user_id, "profile"), state.taste.to_state())
                storage.set(_user_key(user_id, "preferences"), state.preferences.to_state())
                storage.set(_user_key(user_id, "cooccurrence"), state.cooccurrence.to_state())
                storage.set(_user_key(user_id, "queue_config"), state.queue.to_state())
        logger.info(f"Saved engine state ({format_count(len(self.user_ids), 'user')})")

    def _read(self, key: str):
        """Stored value, or None when missing or undecodable."""
        try:
            return self.storage.get(key)
        except StorageCorruptionError as e:
            logger.warning(f"{e}; using defaults")
            return None

    def _restore(self, key: str, loader: Callable[[dict], None]) -> bool:
        value = self._read(key)
        if value is None:
            return False
        try:
            loader(value)
        except (KeyError, TypeError, ValueError, AttributeError, StorageCorruptionError) as e:
            logger.warning(f"Corrupt persisted state for '{key}' ({e}); using defaults")
            return False
        return True

    def load(self) -> List[str]:
        """
        Restore catalog, embeddings, index and every stored user.

        Anything that fails to decode falls back to defaults with a warning.
        Returns the user ids found in storage.
        """
        def load_catalog(items):
            tracks = {t.id: t for t in (Track.from_dict(d) for d in items)}
            with self._catalog_lock:
                self._tracks = tracks

        self._restore("catalog", load_catalog)
        self._restore("embeddings", self.embeddings.load_state)

        def load_index(state):
            self.index = VectorIndex.from_state(state, self.config.index_config())
            self.playlists.index = self.index

        if not self._restore("index", load_index):
            self.index = VectorIndex(self.config.index_config())
            self.playlists.index = self.index
            with self._catalog_lock:
                tracks = list(self._tracks.values())
            for track in tracks:
                self._index_track(track)

        user_ids = sorted({
            user_id for user_id in map(_user_id_from_key, self.storage.keys()) if user_id is not None
        })
        for user_id in user_ids:
            state = self._new_user_state()
            restored = [
                self._restore(_user_key(user_id, "profile"), state.taste.load_state),
                self._restore(_user_key(user_id, "preferences"), state.preferences.load_state),
                self._restore(_user_key(user_id, "cooccurrence"), state.cooccurrence.load_state),
                self._restore(_user_key(user_id, "queue_config"), state.queue.load_state),
            ]
            with self._users_lock:
                self._users[user_id] = state
            logger.debug(f"Loaded user '{user_id}' ({sum(restored)}/{len(restored)} parts restored)")
        logger.info(
            f"Loaded {format_count(self.track_count, 'track')}, {len(self.index)} indexed, "
            f"{format_count(len(user_ids), 'user')}"
        )
        return user_ids
