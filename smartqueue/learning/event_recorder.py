"""
Event Recorder
==============

Turns one user event into updates of the three learning stores:

    event         PreferenceStore                 TasteProfile         CoOccurrence
    listen        play count, +5 / partial        listen weight        session (+ radio)
    skip          -5 (x2 under 30 s)              -                    -
    like          +10 (+15 strong)                like / like-strong   -
    dislike       -20 (reason doubles one side)   -                    -
    download      +10                             download             -
    playlist-add  +10                             playlist-add         -

Tracks that cannot be embedded still update affinities.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from ..embeddings.cooccurrence import CoOccurrenceMatrix
from ..embeddings.embedding_engine import TrackEmbedding
from ..embeddings.taste_profile import TasteProfileManager
from ..models import Track, UserEvent
from .preference_store import PreferenceStore

logger = logging.getLogger(__name__)


@dataclass
class RecordOutcome:
    """Which stores an event touched."""
    preferences: bool = False
    taste_profile: bool = False
    co_occurrence: int = 0


class EventRecorder:
    """Per-user dispatcher from events to learning stores."""

    def __init__(
        self,
        preferences: PreferenceStore,
        taste: TasteProfileManager,
        cooccurrence: CoOccurrenceMatrix,
        embed: Callable[[Track], Optional[TrackEmbedding]],
    ):
        self.preferences = preferences
        self.taste = taste
        self.cooccurrence = cooccurrence
        self.embed = embed
        self._last_radio_track: Optional[str] = None

    def _taste(self, track: Track, interaction: str, event: UserEvent) -> bool:
        embedding = self.embed(track)
        if embedding is None:
            logger.debug(f"Track {track.id} has no embedding; taste profile unchanged")
            return False
        return self.taste.record_interaction(
            embedding,
            interaction,
            event.timestamp,
            played_duration=event.duration,
            track_duration=track.duration,
            completed=event.completed,
        )

    def record(self, event: UserEvent, track: Track, *, radio_active: bool = False) -> RecordOutcome:
        outcome = RecordOutcome()
        ts = event.timestamp
        prefs = self.preferences

        if event.type == "listen":
            prefs.record_listen(track, ts, played_duration=event.duration, completed=event.completed)
            outcome.taste_profile = self._taste(track, "listen", event)
            outcome.co_occurrence = self.cooccurrence.record_session_play(track.id, ts)
            if radio_active:
                if self._last_radio_track and self._last_radio_track != track.id:
                    self.cooccurrence.record_co_occurrence(self._last_radio_track, track.id, "radio", ts)
                    outcome.co_occurrence += 1
                self._last_radio_track = track.id
            else:
                self._last_radio_track = None
        elif event.type == "skip":
            prefs.record_skip(track, ts, played_duration=event.duration)
        elif event.type == "like":
            prefs.record_like(track, ts, strong=event.strength == 2)
            outcome.taste_profile = self._taste(track, "like-strong" if event.strength == 2 else "like", event)
        elif event.type == "dislike":
            prefs.record_dislike(track, ts, reason=event.dislike_reason)
        else:
            prefs.record_positive(track, event.type, ts)
            outcome.taste_profile = self._taste(track, event.type, event)

        outcome.preferences = True
        logger.debug(
            f"Recorded {event.type} for {track.id} "
            f"(taste={'yes' if outcome.taste_profile else 'no'}, pairs={outcome.co_occurrence})"
        )
        return outcome
