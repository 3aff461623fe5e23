"""
Feature Extractor
=================

Fixed-length numeric vectors for a track and for the listening context,
suitable as model inputs.

Track vector (TRACK_FEATURE_DIM = 34):
    [0:5]   energy, valence, danceability, bpm (normalized), key position
    [5]     duration (normalized to 10 minutes)
    [6:10]  mood one-hot (energetic, happy, calm, melancholic)
    [10:30] genre one-hot over PRIMARY_GENRES
    [30:34] play count (log-scaled), liked, disliked, skip ratio

Context vector (CONTEXT_FEATURE_DIM = 10):
    [0:2]   hour of day (sin, cos)
    [2:4]   day of week (sin, cos)
    [4]     weekend flag
    [5:9]   time-slot one-hot (morning, afternoon, evening, night)
    [9]     session length (normalized to 50 tracks)
"""

import math
from datetime import datetime, timezone
from typing import Dict, List, Optional

import numpy as np

from ..embeddings.embedding_engine import normalize_bpm
from ..embeddings.taste_profile import TIME_SLOTS, time_slot_for_hour
from ..models import Track
from ..scoring.transition_scoring import key_position

PRIMARY_GENRES = (
    "rock", "pop", "hip hop", "electronic", "jazz", "classical", "r&b",
    "country", "folk", "metal", "punk", "blues", "soul", "funk", "reggae",
    "latin", "indie", "alternative", "ambient", "soundtrack",
)

# Typical energy of a genre, used when a track has no measured energy
GENRE_ENERGY_MAP: Dict[str, float] = {
    "metal": 0.9, "punk": 0.88, "drum and bass": 0.88, "techno": 0.82,
    "house": 0.78, "electronic": 0.72, "dubstep": 0.85, "rock": 0.72,
    "hip hop": 0.68, "rap": 0.7, "latin": 0.72, "disco": 0.76, "funk": 0.7,
    "pop": 0.65, "alternative": 0.62, "indie": 0.55, "reggae": 0.55,
    "r&b": 0.52, "soul": 0.5, "country": 0.52, "blues": 0.45,
    "jazz": 0.4, "soundtrack": 0.4, "folk": 0.35, "lo fi": 0.3,
    "classical": 0.28, "ambient": 0.15,
}
DEFAULT_ENERGY = 0.5

MOODS = ("energetic", "happy", "calm", "melancholic")

TRACK_FEATURE_DIM = 5 + 1 + len(MOODS) + len(PRIMARY_GENRES) + 4
CONTEXT_FEATURE_DIM = 10

MAX_DURATION_S = 600.0
MAX_SESSION_TRACKS = 50.0


def normalize_value(value: Optional[float], lo: float, hi: float, default: float = 0.5) -> float:
    """Scale into [0, 1]; `default` when missing."""
    if value is None or hi <= lo:
        return default
    return float(min(1.0, max(0.0, (value - lo) / (hi - lo))))


def estimate_energy(track: Track) -> float:
    """Measured energy, else the mean typical energy of the track's genres."""
    if track.audio_features and track.audio_features.energy is not None:
        return float(track.audio_features.energy)
    known = [GENRE_ENERGY_MAP[g] for g in track.genre_keys if g in GENRE_ENERGY_MAP]
    if known:
        return sum(known) / len(known)
    return DEFAULT_ENERGY


def calculate_track_mood(energy: float, valence: float) -> str:
    """Quadrant mood from energy and valence."""
    if energy >= 0.5:
        return "happy" if valence >= 0.5 and energy < 0.75 else "energetic"
    return "calm" if valence >= 0.5 else "melancholic"


def encode_genres(genre_keys: List[str]) -> np.ndarray:
    vec = np.zeros(len(PRIMARY_GENRES))
    for i, genre in enumerate(PRIMARY_GENRES):
        if any(genre == g or genre in g.split() for g in genre_keys):
            vec[i] = 1.0
    return vec


class FeatureExtractor:
    """Builds track and context feature vectors."""

    def __init__(self, tz=timezone.utc):
        self.tz = tz

    def extract_track_features(
        self,
        track: Track,
        *,
        play_count: int = 0,
        liked: bool = False,
        disliked: bool = False,
        skip_ratio: float = 0.0,
    ) -> np.ndarray:
        features = track.audio_features
        energy = estimate_energy(track)
        valence = features.valence if features and features.valence is not None else 0.5
        danceability = features.danceability if features and features.danceability is not None else 0.5
        bpm = normalize_bpm(features.bpm) if features and features.bpm is not None else 0.5
        pos = key_position(features.key) if features else None
        key = pos / 11.0 if pos is not None else 0.5

        mood = np.zeros(len(MOODS))
        mood[MOODS.index(calculate_track_mood(energy, valence))] = 1.0

        interaction = np.array([
            min(1.0, math.log1p(max(0, play_count)) / math.log1p(100)),
            1.0 if liked else 0.0,
            1.0 if disliked else 0.0,
            float(min(1.0, max(0.0, skip_ratio))),
        ])

        vec = np.concatenate([
            np.array([energy, valence, danceability, bpm, key]),
            np.array([normalize_value(track.duration, 0.0, MAX_DURATION_S)]),
            mood,
            encode_genres(track.genre_keys),
            interaction,
        ])
        return vec

    def extract_context_features(self, timestamp: float, session_length: int = 0) -> np.ndarray:
        moment = datetime.fromtimestamp(timestamp, tz=self.tz)
        hour_angle = 2 * math.pi * moment.hour / 24
        day_angle = 2 * math.pi * moment.weekday() / 7
        slot = np.zeros(len(TIME_SLOTS))
        slot[TIME_SLOTS.index(time_slot_for_hour(moment.hour))] = 1.0
        vec = np.concatenate([
            np.array([
                math.sin(hour_angle), math.cos(hour_angle),
                math.sin(day_angle), math.cos(day_angle),
                1.0 if moment.weekday() >= 5 else 0.0,
            ]),
            slot,
            np.array([min(1.0, session_length / MAX_SESSION_TRACKS)]),
        ])
        return vec
