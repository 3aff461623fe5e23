"""
Core data records shared by the recommendation components.

Tracks, user events, radio seeds and queue provenance records. All of them
round-trip through plain dicts so the storage adapters, the CLI and the HTTP
layer can share one wire shape.
"""
from __future__ import annotations

import hashlib
import json
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

from .string_utils import normalize_artist_key, normalize_genre

EventType = Literal["listen", "skip", "like", "dislike", "download", "playlist-add"]
EVENT_TYPES = ("listen", "skip", "like", "dislike", "download", "playlist-add")

RadioSeedType = Literal["track", "artist", "genre"]
RADIO_SEED_TYPES = ("track", "artist", "genre")

QueueSourceType = Literal[
    "manual", "artist", "album", "genre", "similar", "radio", "mood",
    "discovery", "trending", "search", "liked", "playlist", "ml", "auto",
]
QUEUE_SOURCE_TYPES = (
    "manual", "artist", "album", "genre", "similar", "radio", "mood",
    "discovery", "trending", "search", "liked", "playlist", "ml", "auto",
)

KeyValue = Union[str, int]


@dataclass
class AudioFeatures:
    """Provider-supplied audio descriptors. Every field is optional."""

    energy: Optional[float] = None
    valence: Optional[float] = None
    danceability: Optional[float] = None
    bpm: Optional[float] = None
    key: Optional[KeyValue] = None

    def is_empty(self) -> bool:
        return all(
            v is None for v in (self.energy, self.valence, self.danceability, self.bpm, self.key)
        )

    def fingerprint(self) -> str:
        """Stable digest used to invalidate cached embeddings."""
        payload = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.md5(payload.encode("utf-8")).hexdigest()[:12]

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["AudioFeatures"]:
        if not data:
            return None
        return cls(
            energy=_opt_float(data.get("energy")),
            valence=_opt_float(data.get("valence")),
            danceability=_opt_float(data.get("danceability")),
            bpm=_opt_float(data.get("bpm")),
            key=data.get("key"),
        )


def _opt_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


@dataclass
class Track:
    id: str
    title: str = ""
    artists: List[str] = field(default_factory=list)
    genres: List[str] = field(default_factory=list)
    moods: List[str] = field(default_factory=list)
    duration: Optional[float] = None
    album: Optional[str] = None
    audio_features: Optional[AudioFeatures] = None
    mood_confidence: Optional[float] = None

    @property
    def artist_keys(self) -> List[str]:
        keys = [normalize_artist_key(a) for a in self.artists]
        return [k for k in keys if k]

    @property
    def primary_artist_key(self) -> str:
        keys = self.artist_keys
        return keys[0] if keys else ""

    @property
    def primary_artist(self) -> str:
        return self.artists[0] if self.artists else "Unknown Artist"

    @property
    def genre_keys(self) -> List[str]:
        keys = [normalize_genre(g) for g in self.genres]
        return [k for k in keys if k]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "artists": list(self.artists),
            "genres": list(self.genres),
            "moods": list(self.moods),
        }
        if self.duration is not None:
            data["duration"] = self.duration
        if self.album:
            data["album"] = self.album
        if self.audio_features is not None:
            data["audio_features"] = self.audio_features.to_dict()
        if self.mood_confidence is not None:
            data["mood_confidence"] = self.mood_confidence
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Track":
        artists = data.get("artists")
        if artists is None and data.get("artist"):
            artists = [data["artist"]]
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            artists=list(artists or []),
            genres=list(data.get("genres") or []),
            moods=list(data.get("moods") or []),
            duration=_opt_float(data.get("duration")),
            album=data.get("album"),
            audio_features=AudioFeatures.from_dict(data.get("audio_features")),
            mood_confidence=_opt_float(data.get("mood_confidence")),
        )


@dataclass
class UserEvent:
    type: EventType
    track_id: str
    timestamp: float = field(default_factory=time.time)
    track: Optional[Track] = None
    duration: Optional[float] = None
    completed: bool = False
    strength: int = 1
    dislike_reason: Optional[str] = None

    def __post_init__(self) -> None:
        if self.type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {self.type!r}")
        if self.strength not in (1, 2):
            raise ValueError(f"strength must be 1 or 2, got {self.strength}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserEvent":
        track = Track.from_dict(data["track"]) if data.get("track") else None
        return cls(
            type=data["type"],
            track_id=str(data.get("track_id") or (track.id if track else "")),
            timestamp=float(data.get("timestamp", time.time())),
            track=track,
            duration=_opt_float(data.get("duration")),
            completed=bool(data.get("completed", False)),
            strength=int(data.get("strength", 1)),
            dislike_reason=data.get("dislike_reason"),
        )


@dataclass
class RadioSeed:
    type: RadioSeedType
    id: str
    name: str = ""
    genres: List[str] = field(default_factory=list)
    artist_ids: List[str] = field(default_factory=list)
    audio_features: Optional[AudioFeatures] = None

    def __post_init__(self) -> None:
        if self.type not in RADIO_SEED_TYPES:
            raise ValueError(f"Unknown radio seed type: {self.type!r}")

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.type,
            "id": self.id,
            "name": self.name,
            "genres": list(self.genres),
            "artist_ids": list(self.artist_ids),
        }
        if self.audio_features is not None:
            data["audio_features"] = self.audio_features.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RadioSeed":
        return cls(
            type=data["type"],
            id=str(data["id"]),
            name=data.get("name", ""),
            genres=list(data.get("genres") or []),
            artist_ids=list(data.get("artist_ids") or []),
            audio_features=AudioFeatures.from_dict(data.get("audio_features")),
        )


@dataclass
class QueueSource:
    """Provenance of a queued track, shown to the user."""

    type: QueueSourceType
    label: str
    context: Optional[str] = None
    score: Optional[float] = None
    timestamp: float = field(default_factory=time.time)
    seed_track_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class QueuedTrack:
    track: Track
    source: QueueSource
