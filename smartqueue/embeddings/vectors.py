"""
Base vectors for genre and mood tags.

Each tag owns an 8-value descriptor over the axes in BASE_AXES, centered on
zero. expand_base_vector() spreads a descriptor over the full embedding
dimensionality with a fixed golden-ratio lookup, so two tags with similar
descriptors end up close in embedding space.
"""
import hashlib
import math
from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from ..string_utils import normalize_genre

PHI = (1 + math.sqrt(5)) / 2
BASE_DIM = 8

BASE_AXES = (
    "energy",
    "valence",
    "acoustic",
    "electronic",
    "rhythm",
    "intensity",
    "complexity",
    "tradition",
)

GENRE_VECTORS: Dict[str, Tuple[float, ...]] = {
    "rock": (0.5, 0.1, -0.1, -0.5, 0.2, 0.4, 0.1, 0.2),
    "alternative": (0.3, -0.1, -0.1, -0.3, 0.1, 0.3, 0.2, -0.1),
    "indie": (0.1, 0.1, 0.2, -0.2, 0.0, 0.0, 0.3, -0.2),
    "punk": (0.9, 0.0, -0.3, -0.6, 0.4, 0.8, -0.4, 0.0),
    "metal": (0.9, -0.5, -0.6, -0.4, 0.3, 1.0, 0.4, 0.1),
    "pop": (0.4, 0.7, -0.2, 0.3, 0.6, -0.2, -0.4, -0.2),
    "electronic": (0.5, 0.2, -0.9, 1.0, 0.7, 0.1, 0.2, -0.6),
    "house": (0.6, 0.5, -0.9, 0.9, 1.0, 0.0, -0.1, -0.4),
    "techno": (0.7, -0.2, -1.0, 1.0, 1.0, 0.4, 0.1, -0.5),
    "ambient": (-0.9, 0.1, -0.2, 0.6, -0.9, -0.7, 0.2, -0.3),
    "drum and bass": (0.9, 0.1, -0.8, 0.9, 0.8, 0.5, 0.4, -0.5),
    "dubstep": (0.8, -0.3, -0.9, 1.0, 0.6, 0.8, 0.1, -0.7),
    "hip hop": (0.4, 0.2, -0.4, 0.4, 0.8, 0.3, 0.3, -0.1),
    "rap": (0.5, 0.1, -0.5, 0.4, 0.8, 0.4, 0.4, -0.1),
    "r&b": (0.1, 0.5, -0.2, 0.3, 0.6, -0.2, 0.1, 0.1),
    "soul": (0.1, 0.6, 0.3, -0.3, 0.5, -0.1, 0.2, 0.6),
    "funk": (0.6, 0.8, 0.0, -0.1, 0.9, 0.1, 0.4, 0.5),
    "jazz": (-0.1, 0.3, 0.7, -0.6, 0.2, -0.2, 1.0, 0.7),
    "blues": (0.0, -0.3, 0.6, -0.7, 0.2, 0.0, 0.3, 0.9),
    "classical": (-0.4, 0.2, 1.0, -0.9, -0.5, -0.1, 1.0, 1.0),
    "folk": (-0.3, 0.3, 1.0, -0.8, -0.1, -0.4, 0.1, 0.8),
    "country": (0.1, 0.5, 0.8, -0.7, 0.3, -0.2, -0.2, 0.9),
    "reggae": (0.0, 0.7, 0.3, -0.2, 0.6, -0.4, -0.1, 0.6),
    "latin": (0.6, 0.8, 0.4, -0.1, 0.9, 0.0, 0.2, 0.5),
    "world": (0.1, 0.4, 0.8, -0.4, 0.5, -0.2, 0.4, 0.9),
    "soundtrack": (-0.2, 0.0, 0.5, 0.0, -0.5, 0.2, 0.7, 0.3),
    "lo fi": (-0.6, 0.2, 0.1, 0.5, 0.1, -0.6, -0.1, -0.4),
    "shoegaze": (0.2, -0.2, -0.3, 0.1, -0.1, 0.3, 0.4, -0.2),
    "post rock": (0.1, -0.2, 0.2, -0.3, -0.3, 0.4, 0.7, -0.1),
    "disco": (0.7, 0.9, -0.3, 0.3, 1.0, -0.1, 0.0, 0.3),
    "synthwave": (0.5, 0.2, -0.9, 0.9, 0.6, 0.1, 0.0, -0.2),
    "trap": (0.6, -0.2, -0.7, 0.8, 0.8, 0.6, -0.2, -0.6),
    "gospel": (0.3, 0.8, 0.5, -0.5, 0.5, 0.2, 0.3, 1.0),
    "experimental": (0.0, -0.3, 0.0, 0.3, -0.4, 0.4, 1.0, -0.9),
}

MOOD_VECTORS: Dict[str, Tuple[float, ...]] = {
    "happy": (0.5, 1.0, 0.0, 0.0, 0.5, -0.3, -0.2, 0.0),
    "sad": (-0.6, -1.0, 0.4, -0.1, -0.5, -0.1, 0.2, 0.1),
    "energetic": (1.0, 0.5, -0.3, 0.3, 0.8, 0.5, 0.0, -0.1),
    "calm": (-1.0, 0.3, 0.5, 0.0, -0.6, -0.9, 0.0, 0.1),
    "angry": (0.9, -0.8, -0.4, 0.0, 0.4, 1.0, 0.1, 0.0),
    "romantic": (-0.3, 0.6, 0.5, -0.2, 0.0, -0.4, 0.1, 0.4),
    "melancholic": (-0.4, -0.7, 0.4, 0.0, -0.3, 0.0, 0.5, 0.2),
    "dark": (0.1, -0.9, -0.2, 0.3, 0.0, 0.6, 0.4, -0.2),
    "uplifting": (0.6, 0.9, 0.1, 0.2, 0.5, 0.0, 0.1, 0.1),
    "chill": (-0.7, 0.4, 0.1, 0.4, 0.0, -0.8, -0.1, -0.3),
    "focus": (-0.5, 0.1, 0.3, 0.3, -0.2, -0.5, 0.4, 0.0),
    "party": (0.9, 0.8, -0.5, 0.6, 1.0, 0.2, -0.4, -0.3),
    "dreamy": (-0.5, 0.3, 0.0, 0.4, -0.5, -0.4, 0.3, -0.3),
    "aggressive": (1.0, -0.6, -0.5, 0.2, 0.6, 1.0, 0.0, -0.2),
    "nostalgic": (-0.2, 0.1, 0.4, -0.1, 0.0, -0.2, 0.2, 0.7),
}


def hash_base_vector(tag: str) -> Tuple[float, ...]:
    """Deterministic descriptor for tags that have no curated entry."""
    digest = hashlib.md5(tag.encode("utf-8")).digest()
    return tuple((digest[i] / 255.0) * 2.0 - 1.0 for i in range(BASE_DIM))


def lookup_base_vector(tag: str, table: Dict[str, Tuple[float, ...]]) -> Optional[Tuple[float, ...]]:
    """
    Resolve a tag to a base descriptor.

    Exact key first, then the mean of curated keys whose words all appear in
    the tag ("indie rock" -> indie + rock), then a hash-derived descriptor.
    """
    key = normalize_genre(tag)
    if not key:
        return None
    if key in table:
        return table[key]

    words = set(key.split())
    partial = [vec for name, vec in table.items() if set(name.split()) <= words]
    if partial:
        arr = np.mean(np.asarray(partial, dtype=np.float64), axis=0)
        return tuple(float(v) for v in arr)
    return hash_base_vector(key)


def expand_base_vector(base: Iterable[float], dim: int) -> np.ndarray:
    """Spread an 8-value descriptor across `dim` dimensions."""
    base_arr = np.asarray(tuple(base), dtype=np.float64)
    j = np.arange(dim)
    return base_arr[(j * 5) % BASE_DIM] * np.cos(j * PHI)


def tags_vector(tags: Iterable[str], table: Dict[str, Tuple[float, ...]], dim: int) -> np.ndarray:
    """Mean of expanded tag vectors; all zeros when no tag resolves."""
    expanded = []
    for tag in tags:
        base = lookup_base_vector(tag, table)
        if base is not None:
            expanded.append(expand_base_vector(base, dim))
    if not expanded:
        return np.zeros(dim, dtype=np.float64)
    return np.mean(expanded, axis=0)
