"""
Recommendation API collaborator.

The queue controller asks an external recommendation service for similar
tracks, artist/genre/track recommendations, free-text search and trending
tracks. `HttpRecommendationClient` talks to such a service over HTTP;
`CatalogRecommendationSource` answers the same questions from an in-memory
catalog and is what the CLI and tests use offline.

Every failure surfaces as `UpstreamUnavailableError`; the caller isolates it.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Literal, Optional

import requests

from .errors import UpstreamUnavailableError
from .models import Track
from .string_utils import normalize_artist_key, normalize_genre, normalize_text

logger = logging.getLogger(__name__)

RecommendationKind = Literal["track", "artist", "genre"]

DEFAULT_TIMEOUT_S = 10


class RecommendationSource(ABC):
    """What the candidate gatherer needs from a recommendation service."""

    name = "recommendations"

    @abstractmethod
    def get_similar(self, track: Track, limit: int = 20) -> List[Track]:
        """Tracks similar to `track`."""

    @abstractmethod
    def get_recommended(self, kind: RecommendationKind, value: str, limit: int = 20) -> List[Track]:
        """Recommendations seeded by a track id, artist name or genre."""

    @abstractmethod
    def search(self, query: str, limit: int = 15) -> List[Track]:
        """Free-text track search."""

    @abstractmethod
    def get_trending(self, limit: int = 20) -> List[Track]:
        """Currently trending tracks."""


def _parse_tracks(payload: Any, source: str) -> List[Track]:
    """Accepts either a bare list or {"tracks": [...]}."""
    if isinstance(payload, dict):
        payload = payload.get("tracks", [])
    if not isinstance(payload, list):
        raise UpstreamUnavailableError(source, "unexpected response shape")
    tracks = []
    for item in payload:
        if not isinstance(item, dict) or "id" not in item:
            logger.debug(f"Skipping malformed track from {source}: {item!r}")
            continue
        tracks.append(Track.from_dict(item))
    return tracks


class HttpRecommendationClient(RecommendationSource):
    """
    JSON-over-HTTP recommendation client.

    Endpoints (relative to `base_url`):
        GET /similar/{track_id}?limit=N
        GET /recommendations?type={track|artist|genre}&value=V&limit=N
        GET /search?q=Q&limit=N
        GET /trending?limit=N
    """

    name = "http-recommendations"

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT_S, session: Optional[requests.Session] = None):
        """
        Initialize the client

        Args:
            base_url: Service root, e.g. "http://localhost:9000/api"
            timeout: Per-request timeout in seconds
            session: Optional pre-configured requests session
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        logger.info(f"Initialized recommendation client for {self.base_url}")

    def _get(self, path: str, params: Dict[str, Any]) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise UpstreamUnavailableError(self.name, f"timeout after {self.timeout}s on {path}") from e
        except requests.exceptions.RequestException as e:
            raise UpstreamUnavailableError(self.name, f"request to {path} failed: {e}") from e

        if response.status_code >= 400:
            raise UpstreamUnavailableError(self.name, f"{path} returned HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamUnavailableError(self.name, f"{path} returned invalid JSON") from e

    def get_similar(self, track: Track, limit: int = 20) -> List[Track]:
        return _parse_tracks(self._get(f"/similar/{track.id}", {"limit": limit}), self.name)[:limit]

    def get_recommended(self, kind: RecommendationKind, value: str, limit: int = 20) -> List[Track]:
        payload = self._get("/recommendations", {"type": kind, "value": value, "limit": limit})
        return _parse_tracks(payload, self.name)[:limit]

    def search(self, query: str, limit: int = 15) -> List[Track]:
        return _parse_tracks(self._get("/search", {"q": query, "limit": limit}), self.name)[:limit]

    def get_trending(self, limit: int = 20) -> List[Track]:
        return _parse_tracks(self._get("/trending", {"limit": limit}), self.name)[:limit]

    def close(self) -> None:
        self.session.close()


class CatalogRecommendationSource(RecommendationSource):
    """
    Answers recommendation queries from a fixed track catalog.

    Similarity is shared artist or genre; search matches a query word against artist
    and genre words, or every query word against the title; trending is catalog order.
    """

    name = "catalog"

    def __init__(self, tracks: Iterable[Track]):
        self.tracks: List[Track] = list(tracks)

    def get_similar(self, track: Track, limit: int = 20) -> List[Track]:
        artists = set(track.artist_keys)
        genres = set(track.genre_keys)
        hits = [
            t for t in self.tracks
            if t.id != track.id and (artists & set(t.artist_keys) or genres & set(t.genre_keys))
        ]
        return hits[:limit]

    def get_recommended(self, kind: RecommendationKind, value: str, limit: int = 20) -> List[Track]:
        if kind == "artist":
            key = normalize_artist_key(value)
            hits = [t for t in self.tracks if key in t.artist_keys]
        elif kind == "genre":
            key = normalize_genre(value)
            hits = [t for t in self.tracks if key in t.genre_keys]
        else:
            seed = next((t for t in self.tracks if t.id == value), None)
            hits = self.get_similar(seed, limit) if seed else []
        return hits[:limit]

    def search(self, query: str, limit: int = 15) -> List[Track]:
        words = set(w for w in normalize_text(query).split() if len(w) > 2)
        if not words:
            return []
        hits = []
        for track in self.tracks:
            tags = set(normalize_text(" ".join([*track.artists, *track.genres])).split())
            title = set(normalize_text(track.title).split())
            if words & tags or words <= title:
                hits.append(track)
        return hits[:limit]

    def get_trending(self, limit: int = 20) -> List[Track]:
        return self.tracks[:limit]
