"""
Listening-session history.

Tracks and artists played in the current session, used to exclude repeats
from replenishment and to build the scoring context. A session ends after 4
hours without activity; the reset is applied lazily on the next touch.
"""
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Optional

from ..models import Track

logger = logging.getLogger(__name__)

MAX_SESSION_TRACKS = 200
MAX_SESSION_ARTISTS = 400
SESSION_TIMEOUT_S = 4 * 3600


@dataclass
class SessionHistory:
    max_tracks: int = MAX_SESSION_TRACKS
    max_artists: int = MAX_SESSION_ARTISTS
    timeout_s: float = SESSION_TIMEOUT_S
    clock: Callable[[], float] = time.time
    track_ids: Deque[str] = field(init=False)
    artist_ids: Deque[str] = field(init=False)
    tracks: Deque[Track] = field(init=False)
    session_start: Optional[float] = field(default=None, init=False)
    last_activity: Optional[float] = field(default=None, init=False)

    def __post_init__(self):
        if self.max_tracks < 1 or self.max_artists < 1:
            raise ValueError("session history limits must be >= 1")
        self.track_ids = deque(maxlen=self.max_tracks)
        self.artist_ids = deque(maxlen=self.max_artists)
        # Recent tracks for flow/genre context; bounded like track_ids
        self.tracks = deque(maxlen=self.max_tracks)

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.last_activity is None:
            return False
        now = self.clock() if now is None else now
        return now - self.last_activity > self.timeout_s

    def _expire_if_idle(self, now: float) -> None:
        if self.is_expired(now):
            idle_h = (now - self.last_activity) / 3600
            logger.info(f"Session idle for {idle_h:.1f}h; starting a new session")
            self.clear()

    def record_play(self, track: Track, timestamp: Optional[float] = None) -> None:
        now = self.clock() if timestamp is None else timestamp
        self._expire_if_idle(now)
        if self.session_start is None:
            self.session_start = now
        self.last_activity = now
        self.track_ids.append(track.id)
        self.tracks.append(track)
        for artist in track.artist_keys:
            self.artist_ids.append(artist)

    def touch(self, now: Optional[float] = None) -> None:
        """Apply the inactivity reset without recording a play."""
        self._expire_if_idle(self.clock() if now is None else now)

    def played_ids(self) -> set:
        return set(self.track_ids)

    def recent_tracks(self, n: int) -> List[Track]:
        if n <= 0:
            return []
        return list(self.tracks)[-n:]

    def __len__(self) -> int:
        return len(self.track_ids)

    def clear(self) -> None:
        self.track_ids.clear()
        self.artist_ids.clear()
        self.tracks.clear()
        self.session_start = None
        self.last_activity = None
