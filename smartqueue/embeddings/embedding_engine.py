"""
Track embeddings.

A track's embedding is a unit-length 128-dimensional vector built from three
sources, each scaled by a confidence weight:

- audio features (0.8): energy, valence, danceability, bpm and key each own a
  20-dimension region; energy x valence and danceability x bpm interaction
  terms own 14 dimensions each (5 * 20 + 2 * 14 = 128)
- genre tags (0.6)
- mood tags (variable, grows with the number of tags up to 0.7)

Values are phase-encoded with golden-ratio frequencies so neighbouring
dimensions stay decorrelated. A track with no usable source has no embedding.
"""
import hashlib
import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from ..models import AudioFeatures, Track
from ..scoring.transition_scoring import CIRCLE_SIZE, key_position
from .vectors import GENRE_VECTORS, MOOD_VECTORS, PHI, tags_vector

logger = logging.getLogger(__name__)

EMBEDDING_DIM = 128
AUDIO_REGION_SIZE = 20
INTERACTION_REGION_SIZE = 14
AUDIO_FEATURE_ORDER = ("energy", "valence", "danceability", "bpm", "key")
BPM_MIN = 60.0
BPM_RANGE = 140.0
ZERO_NORM_EPS = 1e-12


@dataclass(frozen=True)
class EmbeddingConfig:
    audio_weight: float = 0.8
    genre_weight: float = 0.6
    mood_base_weight: float = 0.3
    mood_weight_per_tag: float = 0.1
    mood_max_weight: float = 0.7


@dataclass
class TrackEmbedding:
    track_id: str
    vector: np.ndarray
    confidence: Dict[str, float] = field(default_factory=dict)
    fingerprint: str = ""

    def to_dict(self) -> dict:
        return {
            "track_id": self.track_id,
            "vector": [float(v) for v in self.vector],
            "confidence": dict(self.confidence),
            "fingerprint": self.fingerprint,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TrackEmbedding":
        vector = np.asarray(data["vector"], dtype=np.float64)
        if vector.shape != (EMBEDDING_DIM,):
            raise ValueError(f"embedding for {data.get('track_id')} has shape {vector.shape}")
        return cls(
            track_id=str(data["track_id"]),
            vector=vector,
            confidence=dict(data.get("confidence") or {}),
            fingerprint=data.get("fingerprint", ""),
        )


def normalize_bpm(bpm: float) -> float:
    return float(np.clip((bpm - BPM_MIN) / BPM_RANGE, 0.0, 1.0))


def _phase_offsets(size: int, start: int) -> np.ndarray:
    j = np.arange(start, start + size)
    return 2.0 * np.pi * np.mod(j * PHI, 1.0)


def _encode_scalar(value: float, size: int, start: int) -> np.ndarray:
    """cos(pi * v * f_j + theta_j), f_j in [1, 2) spaced by the golden ratio."""
    j = np.arange(start, start + size)
    freqs = 1.0 + np.mod(j * PHI, 1.0)
    return np.cos(np.pi * value * freqs + _phase_offsets(size, start))


def _encode_circular(position: int, size: int, start: int) -> np.ndarray:
    """Periodic encoding so key 11 stays close to key 0."""
    j = np.arange(size)
    harmonics = 1 + (j % 3)
    angle = 2.0 * np.pi * (position / CIRCLE_SIZE) * harmonics
    return np.cos(angle + _phase_offsets(size, start))


def audio_vector(features: Optional[AudioFeatures]) -> Optional[np.ndarray]:
    """Audio region of the embedding, None when no feature is usable."""
    if features is None:
        return None

    values: Dict[str, Optional[float]] = {
        "energy": features.energy,
        "valence": features.valence,
        "danceability": features.danceability,
        "bpm": normalize_bpm(features.bpm) if features.bpm is not None else None,
    }
    pos = key_position(features.key)

    vec = np.zeros(EMBEDDING_DIM, dtype=np.float64)
    used = False
    offset = 0
    for name in AUDIO_FEATURE_ORDER:
        if name == "key":
            if pos is not None:
                vec[offset:offset + AUDIO_REGION_SIZE] = _encode_circular(pos, AUDIO_REGION_SIZE, offset)
                used = True
        elif values[name] is not None:
            v = float(np.clip(values[name], 0.0, 1.0))
            vec[offset:offset + AUDIO_REGION_SIZE] = _encode_scalar(v, AUDIO_REGION_SIZE, offset)
            used = True
        offset += AUDIO_REGION_SIZE

    for a, b in (("energy", "valence"), ("danceability", "bpm")):
        if values[a] is not None and values[b] is not None:
            product = float(np.clip(values[a], 0.0, 1.0) * np.clip(values[b], 0.0, 1.0))
            vec[offset:offset + INTERACTION_REGION_SIZE] = _encode_scalar(
                product, INTERACTION_REGION_SIZE, offset
            )
        offset += INTERACTION_REGION_SIZE

    return vec if used else None


def _unit(vec: Optional[np.ndarray]) -> Optional[np.ndarray]:
    if vec is None:
        return None
    norm = float(np.linalg.norm(vec))
    if norm < ZERO_NORM_EPS:
        return None
    return vec / norm


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity clipped to [-1, 1]; 0 when either vector is zero."""
    na = float(np.linalg.norm(a))
    nb = float(np.linalg.norm(b))
    if na < ZERO_NORM_EPS or nb < ZERO_NORM_EPS:
        return 0.0
    return float(np.clip(np.dot(a, b) / (na * nb), -1.0, 1.0))


def track_fingerprint(track: Track) -> str:
    audio = track.audio_features.fingerprint() if track.audio_features else ""
    parts = [
        audio,
        "|".join(sorted(track.genre_keys)),
        "|".join(sorted(m.casefold() for m in track.moods)),
        "" if track.mood_confidence is None else f"{track.mood_confidence:.4f}",
    ]
    return hashlib.md5("#".join(parts).encode("utf-8")).hexdigest()[:16]


class EmbeddingEngine:
    """
    Builds and caches track embeddings.

    Cached entries are keyed by track id and carry a fingerprint of their
    inputs; a track whose audio features or tags change is re-embedded on
    its next request.
    """

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        self.config = config or EmbeddingConfig()
        self._cache: Dict[str, TrackEmbedding] = {}
        self._lock = threading.Lock()
        self.cache_hits = 0
        self.cache_misses = 0

    def mood_weight(self, track: Track) -> float:
        if track.mood_confidence is not None:
            return float(np.clip(track.mood_confidence, 0.0, 1.0))
        cfg = self.config
        return min(cfg.mood_max_weight, cfg.mood_base_weight + cfg.mood_weight_per_tag * len(track.moods))

    def build(self, track: Track) -> Optional[TrackEmbedding]:
        """Compute an embedding without touching the cache."""
        sources = []
        confidence: Dict[str, float] = {}

        audio = _unit(audio_vector(track.audio_features))
        if audio is not None:
            sources.append((self.config.audio_weight, audio))
            confidence["audio"] = self.config.audio_weight

        genre = _unit(tags_vector(track.genres, GENRE_VECTORS, EMBEDDING_DIM)) if track.genres else None
        if genre is not None:
            sources.append((self.config.genre_weight, genre))
            confidence["genre"] = self.config.genre_weight

        mood = _unit(tags_vector(track.moods, MOOD_VECTORS, EMBEDDING_DIM)) if track.moods else None
        if mood is not None:
            weight = self.mood_weight(track)
            if weight > 0:
                sources.append((weight, mood))
                confidence["mood"] = weight

        if not sources:
            return None

        combined = np.zeros(EMBEDDING_DIM, dtype=np.float64)
        for weight, vec in sources:
            combined += weight * vec
        unit = _unit(combined)
        if unit is None:
            return None
        return TrackEmbedding(
            track_id=track.id,
            vector=unit,
            confidence=confidence,
            fingerprint=track_fingerprint(track),
        )

    def embed(self, track: Track) -> Optional[TrackEmbedding]:
        """Return the cached embedding for a track, rebuilding when stale."""
        fingerprint = track_fingerprint(track)
        with self._lock:
            cached = self._cache.get(track.id)
            if cached is not None and cached.fingerprint == fingerprint:
                self.cache_hits += 1
                return cached

        embedding = self.build(track)
        with self._lock:
            self.cache_misses += 1
            if embedding is None:
                self._cache.pop(track.id, None)
                logger.debug(f"Track {track.id} is unembeddable (no audio, genre or mood data)")
            else:
                self._cache[track.id] = embedding
        return embedding

    def embed_many(self, tracks: List[Track]) -> Dict[str, TrackEmbedding]:
        out = {}
        for track in tracks:
            emb = self.embed(track)
            if emb is not None:
                out[track.id] = emb
        return out

    def get(self, track_id: str) -> Optional[TrackEmbedding]:
        with self._lock:
            return self._cache.get(track_id)

    def invalidate(self, track_id: str) -> None:
        with self._lock:
            self._cache.pop(track_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def to_state(self) -> dict:
        with self._lock:
            return {"embeddings": [e.to_dict() for e in self._cache.values()]}

    def load_state(self, state: dict) -> None:
        loaded = {}
        for entry in state.get("embeddings", []):
            emb = TrackEmbedding.from_dict(entry)
            if not math.isclose(float(np.linalg.norm(emb.vector)), 1.0, abs_tol=1e-6):
                raise ValueError(f"embedding for {emb.track_id} is not unit length")
            loaded[emb.track_id] = emb
        with self._lock:
            self._cache = loaded
