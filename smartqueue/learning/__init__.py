"""Learning from user events: affinities and the event dispatcher."""

from .event_recorder import EventRecorder, RecordOutcome
from .preference_store import Affinity, PreferenceStore

__all__ = ["EventRecorder", "RecordOutcome", "Affinity", "PreferenceStore"]
