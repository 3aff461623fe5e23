"""
Taste Profile Manager
=====================

A user's taste as a vector in embedding space.

Every qualifying interaction stores a contribution (track embedding, base
weight, timestamp). Profiles are assembled at read time:

    profile = 0.5 * main + 0.3 * time_slot + 0.2 * weekday_or_weekend

with each contribution scaled by a continuous half-life decay

    weight = base_weight * 0.5 ** (days_since / 30)

computed from the exact elapsed seconds. Sub-profiles with no data hand their
blend weight to the main vector. The profile is invalid until 5 qualifying
interactions exist; only the 1,000 most recently contributing tracks are kept.
"""
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional
from zoneinfo import ZoneInfo

import numpy as np

from .embedding_engine import EMBEDDING_DIM, TrackEmbedding

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400.0

TimeSlot = Literal["morning", "afternoon", "evening", "night"]
TIME_SLOTS = ("morning", "afternoon", "evening", "night")

Interaction = Literal["like-strong", "like", "download", "playlist-add", "listen"]

# (multiplier, base points)
INTERACTION_WEIGHTS = {
    "like-strong": (3.0, 15.0),
    "like": (3.0, 10.0),
    "download": (3.6, 10.0),
    "playlist-add": (2.4, 10.0),
    "listen-complete": (1.0, 5.0),
}
PARTIAL_LISTEN_POINTS = 3.0
MAX_CONTRIBUTIONS_PER_TRACK = 50


@dataclass(frozen=True)
class TasteProfileConfig:
    half_life_days: float = 30.0
    min_interactions: int = 5
    max_tracks: int = 1_000
    main_weight: float = 0.5
    time_slot_weight: float = 0.3
    day_type_weight: float = 0.2
    timezone: str = "UTC"

    def __post_init__(self):
        total = self.main_weight + self.time_slot_weight + self.day_type_weight
        if abs(total - 1.0) > 0.01:
            raise ValueError(f"Taste profile blend weights must sum to 1.0, got {total:.3f}")
        if self.half_life_days <= 0:
            raise ValueError("half_life_days must be positive")


@dataclass
class Contribution:
    vector: np.ndarray
    weight: float
    timestamp: float


@dataclass
class UserTasteProfile:
    """Point-in-time view of a user's taste vectors."""

    main: Optional[np.ndarray]
    time_slots: Dict[str, Optional[np.ndarray]] = field(default_factory=dict)
    weekday: Optional[np.ndarray] = None
    weekend: Optional[np.ndarray] = None
    sample_count: int = 0
    last_updated: Optional[float] = None
    is_valid: bool = False


def recency_decay(days_since: float, half_life_days: float = 30.0) -> float:
    """0.5 ** (days / half_life). Future timestamps count as zero days."""
    return 0.5 ** (max(0.0, days_since) / half_life_days)


def interaction_base_weight(
    interaction: str,
    *,
    played_duration: Optional[float] = None,
    track_duration: Optional[float] = None,
    completed: bool = False,
) -> float:
    """
    Base weight of an interaction (multiplier * points).

    Listens are full weight when completed, otherwise proportional to the
    fraction played. Anything that is not a positive signal weighs 0.
    """
    if interaction == "listen":
        if completed:
            mult, points = INTERACTION_WEIGHTS["listen-complete"]
            return mult * points
        if played_duration and track_duration and track_duration > 0:
            ratio = min(1.0, max(0.0, played_duration / track_duration))
            return 1.0 * ratio * PARTIAL_LISTEN_POINTS
        return 0.0
    if interaction in INTERACTION_WEIGHTS:
        mult, points = INTERACTION_WEIGHTS[interaction]
        return mult * points
    return 0.0


def time_slot_for_hour(hour: int) -> TimeSlot:
    """Morning 06-12, Afternoon 12-18, Evening 18-22, Night 22-06."""
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "afternoon"
    if 18 <= hour < 22:
        return "evening"
    return "night"


def _unit(vec: np.ndarray) -> Optional[np.ndarray]:
    norm = float(np.linalg.norm(vec))
    if norm < 1e-12:
        return None
    return vec / norm


class TasteProfileManager:
    """Owns one user's taste contributions."""

    def __init__(self, config: Optional[TasteProfileConfig] = None):
        self.config = config or TasteProfileConfig()
        self._tz = timezone.utc if self.config.timezone.upper() == "UTC" else ZoneInfo(self.config.timezone)
        self._tracks: "OrderedDict[str, List[Contribution]]" = OrderedDict()
        self._last_updated: Optional[float] = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Time helpers
    # ------------------------------------------------------------------

    def _local(self, timestamp: float) -> datetime:
        return datetime.fromtimestamp(timestamp, tz=self._tz)

    def time_slot(self, timestamp: float) -> TimeSlot:
        return time_slot_for_hour(self._local(timestamp).hour)

    def is_weekend(self, timestamp: float) -> bool:
        return self._local(timestamp).weekday() >= 5

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_interaction(
        self,
        embedding: TrackEmbedding,
        interaction: str,
        timestamp: float,
        *,
        played_duration: Optional[float] = None,
        track_duration: Optional[float] = None,
        completed: bool = False,
    ) -> bool:
        """
        Add a contribution for a track. Returns False when the interaction
        carries no positive weight.
        """
        weight = interaction_base_weight(
            interaction,
            played_duration=played_duration,
            track_duration=track_duration,
            completed=completed,
        )
        if weight <= 0:
            return False

        contribution = Contribution(
            vector=np.asarray(embedding.vector, dtype=np.float64),
            weight=weight,
            timestamp=float(timestamp),
        )
        with self._lock:
            entries = self._tracks.pop(embedding.track_id, [])
            entries.append(contribution)
            if len(entries) > MAX_CONTRIBUTIONS_PER_TRACK:
                entries = entries[-MAX_CONTRIBUTIONS_PER_TRACK:]
            self._tracks[embedding.track_id] = entries
            while len(self._tracks) > self.config.max_tracks:
                evicted, _ = self._tracks.popitem(last=False)
                logger.debug(f"Taste profile full; evicted oldest track {evicted}")
            if self._last_updated is None or timestamp > self._last_updated:
                self._last_updated = float(timestamp)
        return True

    def clear(self) -> None:
        with self._lock:
            self._tracks.clear()
            self._last_updated = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def interaction_count(self) -> int:
        with self._lock:
            return sum(len(v) for v in self._tracks.values())

    @property
    def track_count(self) -> int:
        with self._lock:
            return len(self._tracks)

    def is_valid(self) -> bool:
        return self.interaction_count >= self.config.min_interactions

    def _accumulate(self, now: float) -> UserTasteProfile:
        dim = EMBEDDING_DIM
        main = np.zeros(dim)
        slots = {slot: np.zeros(dim) for slot in TIME_SLOTS}
        weekday = np.zeros(dim)
        weekend = np.zeros(dim)

        with self._lock:
            contributions = [c for entries in self._tracks.values() for c in entries]
            last_updated = self._last_updated

        for c in contributions:
            days = (now - c.timestamp) / SECONDS_PER_DAY
            w = c.weight * recency_decay(days, self.config.half_life_days)
            weighted = w * c.vector
            main += weighted
            slots[self.time_slot(c.timestamp)] += weighted
            if self.is_weekend(c.timestamp):
                weekend += weighted
            else:
                weekday += weighted

        count = len(contributions)
        return UserTasteProfile(
            main=_unit(main),
            time_slots={slot: _unit(vec) for slot, vec in slots.items()},
            weekday=_unit(weekday),
            weekend=_unit(weekend),
            sample_count=count,
            last_updated=last_updated,
            is_valid=count >= self.config.min_interactions,
        )

    def snapshot(self, now: float) -> UserTasteProfile:
        return self._accumulate(now)

    def get_profile(self, at: float) -> Optional[np.ndarray]:
        """
        Blended taste vector for the listening moment `at` (epoch seconds),
        or None while the profile is invalid.
        """
        profile = self._accumulate(at)
        if not profile.is_valid or profile.main is None:
            return None

        cfg = self.config
        slot_vec = profile.time_slots.get(self.time_slot(at))
        day_vec = profile.weekend if self.is_weekend(at) else profile.weekday

        main_weight = cfg.main_weight
        blended = np.zeros(EMBEDDING_DIM)
        if slot_vec is not None:
            blended += cfg.time_slot_weight * slot_vec
        else:
            main_weight += cfg.time_slot_weight
        if day_vec is not None:
            blended += cfg.day_type_weight * day_vec
        else:
            main_weight += cfg.day_type_weight
        blended += main_weight * profile.main
        return _unit(blended)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_state(self) -> dict:
        with self._lock:
            return {
                "tracks": [
                    {
                        "track_id": tid,
                        "contributions": [
                            {"vector": [float(v) for v in c.vector], "weight": c.weight, "timestamp": c.timestamp}
                            for c in entries
                        ],
                    }
                    for tid, entries in self._tracks.items()
                ],
                "last_updated": self._last_updated,
            }

    def load_state(self, state: dict) -> None:
        tracks: "OrderedDict[str, List[Contribution]]" = OrderedDict()
        for entry in state.get("tracks", []):
            contributions = []
            for c in entry["contributions"]:
                vector = np.asarray(c["vector"], dtype=np.float64)
                if vector.shape != (EMBEDDING_DIM,):
                    raise ValueError(f"contribution for {entry['track_id']} has shape {vector.shape}")
                contributions.append(Contribution(vector, float(c["weight"]), float(c["timestamp"])))
            tracks[str(entry["track_id"])] = contributions
        with self._lock:
            self._tracks = tracks
            self._last_updated = state.get("last_updated")
