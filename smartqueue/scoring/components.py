"""
Score Components
================

Exploration, serendipity, diversity and temporal components. Each returns
(points, reasons) so the engine can assemble a human-readable explanation.

Inputs are read-only snapshots; nothing here reaches into a store.
"""

import random
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Literal, Mapping, Optional, Sequence, Tuple

from ..models import RadioSeed, Track

ExplorationMode = Literal["explore", "exploit", "balanced"]

EXPLORATION_MAX = 25.0
NEW_ARTIST_BONUS = 15.0
NEW_GENRE_BONUS = 10.0
EPSILON_BONUS = 12.5
NOVELTY_DECAY = 0.9

SERENDIPITY_MAX = 30.0
GENRE_JUMP_BONUS = 15.0
UNEXPECTED_ARTIST_BONUS = 20.0
GENRE_BRIDGE_BONUS = 10.0

ARTIST_REPEAT_PENALTY = -30.0
ARTIST_REPEAT_FLOOR = -90.0
GENRE_DOMINANCE_THRESHOLD = 0.4
GENRE_DOMINANCE_PENALTY = 10.0
SESSION_NEW_GENRE_BONUS = 15.0

TEMPORAL_SCALE = 0.25
TEMPORAL_PATTERN_BONUS = 5.0
WEEKEND_HIGH_ENERGY = 0.7
MORNING_FOCUS_ENERGY = 0.5
EVENING_RELAX_ENERGY = 0.4


@dataclass(frozen=True)
class UserSnapshot:
    """Read-only view of a user's preferences at scoring time."""

    artist_affinity: Mapping[str, float] = field(default_factory=dict)
    genre_affinity: Mapping[str, float] = field(default_factory=dict)
    known_artists: FrozenSet[str] = frozenset()
    genre_history: Mapping[str, int] = field(default_factory=dict)
    play_counts: Mapping[str, int] = field(default_factory=dict)
    liked_tracks: FrozenSet[str] = frozenset()
    hour_genre_preferences: Mapping[str, float] = field(default_factory=dict)
    preferred_energy: Optional[float] = None

    def likes_genre(self, genre: str) -> bool:
        return self.genre_affinity.get(genre, 0.0) > 0


@dataclass
class ScoringContext:
    """The listening moment a batch is scored for."""

    timestamp: float
    hour: int
    day_of_week: int
    """0 = Monday ... 6 = Sunday."""

    session_artists: Sequence[str] = ()
    session_genres: Sequence[str] = ()
    recent_energy: Sequence[float] = ()
    previous_bpm: Optional[float] = None
    previous_key: Optional[object] = None
    exploration_mode: ExplorationMode = "balanced"
    radio_seed: Optional[RadioSeed] = None
    radio_tracks_played: int = 0
    plugin_scores: Dict[str, float] = field(default_factory=dict)

    @property
    def is_weekend(self) -> bool:
        return self.day_of_week >= 5


def exploration_score(
    track: Track,
    user: UserSnapshot,
    play_count: int,
    rng: random.Random,
    epsilon: float,
) -> Tuple[float, List[str]]:
    """+15 new artist, +10 new genre, +12.5 at epsilon; x 0.9^plays, max 25."""
    points = 0.0
    reasons = []
    artist = track.primary_artist_key
    if artist and artist not in user.known_artists:
        points += NEW_ARTIST_BONUS
        reasons.append("New artist for you")
    genres = track.genre_keys
    if genres and not any(g in user.genre_history for g in genres):
        points += NEW_GENRE_BONUS
        reasons.append("New genre to explore")
    if rng.random() < epsilon:
        points += EPSILON_BONUS
    points *= NOVELTY_DECAY ** max(0, play_count)
    return min(EXPLORATION_MAX, points), reasons


def serendipity_score(
    track: Track,
    user: UserSnapshot,
    session_genres: Sequence[str],
) -> Tuple[float, List[str]]:
    """Genre jump to a liked genre, unexpected artist in a liked genre, genre bridge."""
    points = 0.0
    reasons = []
    genres = track.genre_keys
    liked = [g for g in genres if user.likes_genre(g)]
    recent = set(session_genres)

    if recent and any(g not in recent for g in liked):
        points += GENRE_JUMP_BONUS
        reasons.append("Fresh turn into a genre you like")
    artist = track.primary_artist_key
    if liked and artist and artist not in user.known_artists:
        points += UNEXPECTED_ARTIST_BONUS
        reasons.append("Unexpected artist in a genre you like")
    if sum(1 for g in genres if g in user.genre_history) >= 2:
        points += GENRE_BRIDGE_BONUS
        reasons.append("Bridges genres you listen to")
    return min(SERENDIPITY_MAX, points), reasons


def diversity_score(
    track: Track,
    batch_artist_counts: Mapping[str, int],
    session_genres: Sequence[str],
) -> Tuple[float, List[str]]:
    """
    -30 per earlier occurrence of the artist in this batch (floor -90),
    -10 * (share - 0.4) when the track's genre dominates the session,
    +15 when the track brings a genre the session has not had.
    """
    points = 0.0
    reasons = []
    repeats = batch_artist_counts.get(track.primary_artist_key, 0)
    if repeats:
        points += max(ARTIST_REPEAT_FLOOR, ARTIST_REPEAT_PENALTY * repeats)

    genres = track.genre_keys
    if session_genres and genres:
        counts = Counter(session_genres)
        total = sum(counts.values())
        share = max(counts.get(g, 0) for g in genres) / total
        if share > GENRE_DOMINANCE_THRESHOLD:
            points -= GENRE_DOMINANCE_PENALTY * (share - GENRE_DOMINANCE_THRESHOLD)
        if not any(g in counts for g in genres):
            points += SESSION_NEW_GENRE_BONUS
            reasons.append("Adds variety")
    return points, reasons


def temporal_score(
    track: Track,
    user: UserSnapshot,
    context: ScoringContext,
) -> Tuple[float, List[str]]:
    """Hour-of-day genre and energy fit plus weekday/weekend pattern bonuses."""
    points = 0.0
    reasons = []
    prefs = user.hour_genre_preferences
    genre_pref = max((prefs.get(g, 0.0) for g in track.genre_keys), default=0.0)
    if genre_pref > 0:
        points += genre_pref * 100 * TEMPORAL_SCALE
        if genre_pref >= 0.3:
            reasons.append("Fits what you play at this hour")

    energy = track.audio_features.energy if track.audio_features else None
    if energy is not None and user.preferred_energy is not None:
        points += (1 - abs(energy - user.preferred_energy)) * 50 * TEMPORAL_SCALE

    if energy is not None:
        if context.is_weekend and energy > WEEKEND_HIGH_ENERGY:
            points += TEMPORAL_PATTERN_BONUS
            reasons.append("Weekend energy")
        elif not context.is_weekend and 6 <= context.hour < 12 and energy < MORNING_FOCUS_ENERGY:
            points += TEMPORAL_PATTERN_BONUS
            reasons.append("Morning focus")
        elif not context.is_weekend and 18 <= context.hour < 22 and energy < EVENING_RELAX_ENERGY:
            points += TEMPORAL_PATTERN_BONUS
            reasons.append("Evening wind-down")
    return points, reasons
