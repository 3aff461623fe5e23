from .extractor import (
    CONTEXT_FEATURE_DIM,
    GENRE_ENERGY_MAP,
    PRIMARY_GENRES,
    TRACK_FEATURE_DIM,
    FeatureExtractor,
    calculate_track_mood,
    encode_genres,
    estimate_energy,
    normalize_value,
)

__all__ = [
    "CONTEXT_FEATURE_DIM",
    "GENRE_ENERGY_MAP",
    "PRIMARY_GENRES",
    "TRACK_FEATURE_DIM",
    "FeatureExtractor",
    "calculate_track_mood",
    "encode_genres",
    "estimate_energy",
    "normalize_value",
]
