"""
Preference Store
================

Per-user artist and genre affinities plus the play history the scoring
engine reads.

Affinities live in [-100, 100], are created on first interaction and decay
toward 0 by 0.98 per elapsed day. Decay is computed from exact elapsed time
whenever an affinity is read or updated; records are never deleted.
"""
import logging
import threading
from collections import Counter, OrderedDict, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set
from zoneinfo import ZoneInfo

from ..models import Track
from ..scoring.components import UserSnapshot

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400.0
AFFINITY_MIN = -100.0
AFFINITY_MAX = 100.0
AFFINITY_DAILY_DECAY = 0.98
MAX_ARTIST_HISTORY = 400

# Affinity deltas per event
AFFINITY_DELTAS = {
    "like": 10.0,
    "like-strong": 15.0,
    "download": 10.0,
    "playlist-add": 10.0,
    "listen-complete": 5.0,
    "skip": -5.0,
    "dislike": -20.0,
}
PARTIAL_LISTEN_POINTS = 3.0
EARLY_SKIP_SECONDS = 30.0


def clamp_affinity(score: float) -> float:
    return max(AFFINITY_MIN, min(AFFINITY_MAX, score))


@dataclass
class Affinity:
    score: float = 0.0
    play_count: int = 0
    last_updated: Optional[float] = None

    def decayed_score(self, now: float) -> float:
        if self.last_updated is None:
            return self.score
        days = max(0.0, now - self.last_updated) / SECONDS_PER_DAY
        return self.score * (AFFINITY_DAILY_DECAY ** days)

    def apply(self, delta: float, now: float, count_play: bool = False) -> None:
        self.score = clamp_affinity(self.decayed_score(now) + delta)
        self.last_updated = max(now, self.last_updated or now)
        if count_play:
            self.play_count += 1


@dataclass
class HourPattern:
    genre_counts: Counter = field(default_factory=Counter)
    energy_sum: float = 0.0
    energy_count: int = 0


class PreferenceStore:
    """Owns one user's affinities, play counts and listening patterns."""

    def __init__(self, timezone_name: str = "UTC"):
        self._tz = timezone.utc if timezone_name.upper() == "UTC" else ZoneInfo(timezone_name)
        self.artist_affinities: Dict[str, Affinity] = {}
        self.genre_affinities: Dict[str, Affinity] = {}
        self.artist_names: Dict[str, str] = {}
        self.play_counts: Counter = Counter()
        self.liked_tracks: Set[str] = set()
        self.disliked_tracks: Set[str] = set()
        self.artist_history: "OrderedDict[str, None]" = OrderedDict()
        self.genre_history: Counter = Counter()
        self.hour_patterns: Dict[int, HourPattern] = defaultdict(HourPattern)
        self._lock = threading.RLock()

    def _hour(self, timestamp: float) -> int:
        return datetime.fromtimestamp(timestamp, tz=self._tz).hour

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def adjust_artist(self, artist_key: str, delta: float, now: float, count_play: bool = False) -> float:
        with self._lock:
            affinity = self.artist_affinities.setdefault(artist_key, Affinity())
            affinity.apply(delta, now, count_play)
            return affinity.score

    def adjust_genre(self, genre_key: str, delta: float, now: float, count_play: bool = False) -> float:
        with self._lock:
            affinity = self.genre_affinities.setdefault(genre_key, Affinity())
            affinity.apply(delta, now, count_play)
            return affinity.score

    def _apply_to_track(self, track: Track, delta: float, now: float, count_play: bool) -> None:
        for key, name in zip(track.artist_keys, track.artists):
            self.artist_names.setdefault(key, name)
            self.adjust_artist(key, delta, now, count_play)
        for genre in track.genre_keys:
            self.adjust_genre(genre, delta, now, count_play)

    def record_listen(
        self,
        track: Track,
        timestamp: float,
        *,
        played_duration: Optional[float] = None,
        completed: bool = False,
    ) -> None:
        if completed:
            delta = AFFINITY_DELTAS["listen-complete"]
        elif played_duration and track.duration:
            delta = min(1.0, played_duration / track.duration) * PARTIAL_LISTEN_POINTS
        else:
            delta = 0.0

        with self._lock:
            self.play_counts[track.id] += 1
            self._apply_to_track(track, delta, timestamp, count_play=True)
            for key in track.artist_keys:
                self.artist_history.pop(key, None)
                self.artist_history[key] = None
            while len(self.artist_history) > MAX_ARTIST_HISTORY:
                self.artist_history.popitem(last=False)
            self.genre_history.update(track.genre_keys)

            pattern = self.hour_patterns[self._hour(timestamp)]
            pattern.genre_counts.update(track.genre_keys)
            energy = track.audio_features.energy if track.audio_features else None
            if energy is not None:
                pattern.energy_sum += energy
                pattern.energy_count += 1

    def record_skip(self, track: Track, timestamp: float, *, played_duration: Optional[float] = None) -> None:
        delta = AFFINITY_DELTAS["skip"]
        if played_duration is not None and played_duration < EARLY_SKIP_SECONDS:
            delta *= 2
        with self._lock:
            self._apply_to_track(track, delta, timestamp, count_play=False)

    def record_like(self, track: Track, timestamp: float, *, strong: bool = False) -> None:
        delta = AFFINITY_DELTAS["like-strong" if strong else "like"]
        with self._lock:
            self.liked_tracks.add(track.id)
            self.disliked_tracks.discard(track.id)
            self._apply_to_track(track, delta, timestamp, count_play=False)

    def record_dislike(self, track: Track, timestamp: float, *, reason: Optional[str] = None) -> None:
        """
        Penalize a track. reason "artist" or "genre" doubles the penalty on
        that dimension and spares the other.
        """
        delta = AFFINITY_DELTAS["dislike"]
        with self._lock:
            self.disliked_tracks.add(track.id)
            self.liked_tracks.discard(track.id)
            if reason != "genre":
                for key in track.artist_keys:
                    self.adjust_artist(key, delta * (2 if reason == "artist" else 1), timestamp)
            if reason != "artist":
                for genre in track.genre_keys:
                    self.adjust_genre(genre, delta * (2 if reason == "genre" else 1), timestamp)

    def record_positive(self, track: Track, interaction: str, timestamp: float) -> None:
        """Downloads and playlist adds."""
        with self._lock:
            self._apply_to_track(track, AFFINITY_DELTAS[interaction], timestamp, count_play=False)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def artist_score(self, artist_key: str, now: float) -> float:
        with self._lock:
            affinity = self.artist_affinities.get(artist_key)
            return affinity.decayed_score(now) if affinity else 0.0

    def genre_score(self, genre_key: str, now: float) -> float:
        with self._lock:
            affinity = self.genre_affinities.get(genre_key)
            return affinity.decayed_score(now) if affinity else 0.0

    def top_genres(self, now: float, n: int = 2) -> List[str]:
        with self._lock:
            scored = [(g, a.decayed_score(now)) for g, a in self.genre_affinities.items()]
        scored = [s for s in scored if s[1] > 0]
        scored.sort(key=lambda kv: (-kv[1], kv[0]))
        return [g for g, _ in scored[:n]]

    def top_artists(self, now: float, n: int = 3) -> List[str]:
        """Display names of the highest-affinity artists."""
        with self._lock:
            scored = [(k, a.decayed_score(now)) for k, a in self.artist_affinities.items()]
            names = dict(self.artist_names)
        scored = [s for s in scored if s[1] > 0]
        scored.sort(key=lambda kv: (-kv[1], kv[0]))
        return [names.get(k, k) for k, _ in scored[:n]]

    def calculate_track_score(self, track: Track, now: float) -> float:
        """
        Affinity-only preference score in [0, 100], 50 being neutral.

        Artist affinity counts for up to +/-30, genre affinity for up to
        +/-20. Disliked tracks score 0.
        """
        if track.id in self.disliked_tracks:
            return 0.0
        artist_scores = [self.artist_score(k, now) for k in track.artist_keys]
        genre_scores = [self.genre_score(g, now) for g in track.genre_keys]
        score = 50.0
        if artist_scores:
            score += 0.3 * (sum(artist_scores) / len(artist_scores))
        if genre_scores:
            score += 0.2 * (sum(genre_scores) / len(genre_scores))
        if track.id in self.liked_tracks:
            score += 10.0
        return max(0.0, min(100.0, score))

    def time_pattern(self, hour: int):
        """(genre share per genre, mean energy or None) for an hour of day."""
        with self._lock:
            pattern = self.hour_patterns.get(hour)
            if pattern is None:
                return {}, None
            total = sum(pattern.genre_counts.values())
            shares = {g: c / total for g, c in pattern.genre_counts.items()} if total else {}
            energy = pattern.energy_sum / pattern.energy_count if pattern.energy_count else None
            return shares, energy

    def snapshot(self, now: float) -> UserSnapshot:
        """Read-only copy of everything scoring needs."""
        hour = self._hour(now)
        shares, energy = self.time_pattern(hour)
        with self._lock:
            return UserSnapshot(
                artist_affinity={k: a.decayed_score(now) for k, a in self.artist_affinities.items()},
                genre_affinity={k: a.decayed_score(now) for k, a in self.genre_affinities.items()},
                known_artists=frozenset(self.artist_history),
                genre_history=dict(self.genre_history),
                play_counts=dict(self.play_counts),
                liked_tracks=frozenset(self.liked_tracks),
                hour_genre_preferences=shares,
                preferred_energy=energy,
            )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_state(self) -> dict:
        def _aff(table: Dict[str, Affinity]) -> dict:
            return {k: [a.score, a.play_count, a.last_updated] for k, a in table.items()}

        with self._lock:
            return {
                "artists": _aff(self.artist_affinities),
                "genres": _aff(self.genre_affinities),
                "artist_names": dict(self.artist_names),
                "play_counts": dict(self.play_counts),
                "liked": sorted(self.liked_tracks),
                "disliked": sorted(self.disliked_tracks),
                "artist_history": list(self.artist_history),
                "genre_history": dict(self.genre_history),
                "hours": {
                    str(h): [dict(p.genre_counts), p.energy_sum, p.energy_count]
                    for h, p in self.hour_patterns.items()
                },
            }

    def load_state(self, state: dict) -> None:
        def _aff(raw: dict) -> Dict[str, Affinity]:
            return {
                k: Affinity(clamp_affinity(float(s)), int(c), None if t is None else float(t))
                for k, (s, c, t) in raw.items()
            }

        hours: Dict[int, HourPattern] = defaultdict(HourPattern)
        for h, (genres, esum, ecount) in state.get("hours", {}).items():
            hours[int(h)] = HourPattern(Counter(genres), float(esum), int(ecount))

        artists = _aff(state.get("artists", {}))
        genres = _aff(state.get("genres", {}))
        names = dict(state.get("artist_names", {}))
        play_counts = Counter({k: int(v) for k, v in state.get("play_counts", {}).items()})
        liked = set(state.get("liked", []))
        disliked = set(state.get("disliked", []))
        history = OrderedDict((k, None) for k in state.get("artist_history", []))
        genre_history = Counter({k: int(v) for k, v in state.get("genre_history", {}).items()})

        with self._lock:
            self.artist_affinities = artists
            self.genre_affinities = genres
            self.artist_names = names
            self.play_counts = play_counts
            self.liked_tracks = liked
            self.disliked_tracks = disliked
            self.artist_history = history
            self.genre_history = genre_history
            self.hour_patterns = hours

    def excluded_track_ids(self) -> Iterable[str]:
        with self._lock:
            return set(self.disliked_tracks)
