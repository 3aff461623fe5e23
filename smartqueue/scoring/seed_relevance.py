"""
Radio seed relevance: how close a candidate stays to the seed that started
the radio session, on a 0-100 scale.
"""
import logging
from typing import Optional

from ..models import AudioFeatures, RadioSeed, Track
from ..string_utils import normalize_artist_key, normalize_genre
from .transition_scoring import key_compatibility

logger = logging.getLogger(__name__)

UNKNOWN_KEY_COMPATIBILITY = 0.5


def _genre_overlap(track: Track, genres) -> bool:
    seed_genres = [normalize_genre(g) for g in genres or []]
    seed_genres = [g for g in seed_genres if g]
    return any(sg in tg for sg in seed_genres for tg in track.genre_keys)


def _artist_match(track: Track, seed: RadioSeed) -> bool:
    wanted = {normalize_artist_key(a) for a in seed.artist_ids if a}
    if seed.type == "artist":
        wanted.add(normalize_artist_key(seed.id))
        if seed.name:
            wanted.add(normalize_artist_key(seed.name))
    wanted.discard("")
    return any(k in wanted for k in track.artist_keys)


def audio_bonus(seed_features: Optional[AudioFeatures], track_features: Optional[AudioFeatures]) -> int:
    """
    Audio closeness to the seed, up to +40.

    BPM: +12/+8/+4 within 10/20/30% of the seed tempo. Energy: +12/+8/+4
    within 0.15/0.25/0.35. Key: round(compatibility * 10). Valence: +6/+3
    within 0.2/0.35.
    """
    if seed_features is None or track_features is None:
        return 0
    bonus = 0

    if seed_features.bpm and track_features.bpm is not None:
        ratio = min(abs(seed_features.bpm - track_features.bpm) / seed_features.bpm, 1.0)
        if ratio <= 0.1:
            bonus += 12
        elif ratio <= 0.2:
            bonus += 8
        elif ratio <= 0.3:
            bonus += 4

    if seed_features.energy is not None and track_features.energy is not None:
        diff = abs(seed_features.energy - track_features.energy)
        if diff <= 0.15:
            bonus += 12
        elif diff <= 0.25:
            bonus += 8
        elif diff <= 0.35:
            bonus += 4

    if seed_features.key is not None and track_features.key is not None:
        compat = key_compatibility(seed_features.key, track_features.key)
        if compat is None:
            compat = UNKNOWN_KEY_COMPATIBILITY
        bonus += int(round(compat * 10))

    if seed_features.valence is not None and track_features.valence is not None:
        diff = abs(seed_features.valence - track_features.valence)
        if diff <= 0.2:
            bonus += 6
        elif diff <= 0.35:
            bonus += 3

    return bonus


def calculate_seed_relevance(track: Track, seed: RadioSeed) -> float:
    """
    Relevance of a candidate to the radio seed, capped at 100.

    Track seeds: +30 same artist, +20 shared genre.
    Artist seeds: +50 same artist, +20 shared genre.
    Genre seeds: +60 when the genre matches either way round.
    Plus the audio bonus against the seed's audio snapshot.
    """
    relevance = 0.0
    if seed.type == "track":
        if _artist_match(track, seed):
            relevance += 30
        if _genre_overlap(track, seed.genres):
            relevance += 20
    elif seed.type == "artist":
        if _artist_match(track, seed):
            relevance += 50
        if _genre_overlap(track, seed.genres):
            relevance += 20
    elif seed.type == "genre":
        seed_genre = normalize_genre(seed.id)
        if seed_genre and any(seed_genre in g or g in seed_genre for g in track.genre_keys):
            relevance += 60

    bonus = audio_bonus(seed.audio_features, track.audio_features)
    if bonus:
        logger.debug(f"Seed audio match for '{track.title}': +{bonus}")
    return min(100.0, relevance + bonus)
