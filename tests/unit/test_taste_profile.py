"""Tests for the taste profile manager."""
import numpy as np
import pytest

from smartqueue.embeddings.embedding_engine import EMBEDDING_DIM, TrackEmbedding
from smartqueue.embeddings.taste_profile import (
    TasteProfileConfig,
    TasteProfileManager,
    interaction_base_weight,
    recency_decay,
    time_slot_for_hour,
)

from tests.helpers import BASE_TIME, DAY


def _emb(track_id: str, axis: int) -> TrackEmbedding:
    vec = np.zeros(EMBEDDING_DIM)
    vec[axis] = 1.0
    return TrackEmbedding(track_id, vec)


class TestRecencyDecay:
    """Half-life decay."""

    def test_halves_at_thirty_days(self):
        assert recency_decay(30) == pytest.approx(0.5)
        assert recency_decay(60) == pytest.approx(0.25)

    def test_strictly_decreasing(self):
        values = [recency_decay(d) for d in (0, 0.5, 1, 10, 29.9, 30, 45, 365)]
        assert all(a > b for a, b in zip(values, values[1:]))

    def test_future_counts_as_now(self):
        assert recency_decay(-3) == 1.0


class TestInteractionWeights:
    """Base weight per interaction type."""

    def test_positive_signals(self):
        assert interaction_base_weight("like") == pytest.approx(30.0)
        assert interaction_base_weight("like-strong") == pytest.approx(45.0)
        assert interaction_base_weight("download") == pytest.approx(36.0)
        assert interaction_base_weight("playlist-add") == pytest.approx(24.0)

    def test_listens(self):
        assert interaction_base_weight("listen", completed=True) == pytest.approx(5.0)
        assert interaction_base_weight("listen", played_duration=60, track_duration=120) == pytest.approx(1.5)
        assert interaction_base_weight("listen") == 0.0

    def test_non_positive(self):
        assert interaction_base_weight("skip") == 0.0
        assert interaction_base_weight("dislike") == 0.0


class TestTimeSlots:
    """Hour to slot mapping."""

    @pytest.mark.parametrize(
        "hour,slot",
        [(6, "morning"), (11, "morning"), (12, "afternoon"), (18, "evening"), (22, "night"), (3, "night")],
    )
    def test_slots(self, hour, slot):
        assert time_slot_for_hour(hour) == slot


class TestTasteProfileManager:
    """Profile assembly."""

    def test_invalid_until_min_interactions(self):
        manager = TasteProfileManager()
        for i in range(4):
            manager.record_interaction(_emb(f"t{i}", i), "like", BASE_TIME)
        assert manager.get_profile(BASE_TIME) is None
        manager.record_interaction(_emb("t4", 4), "like", BASE_TIME)
        profile = manager.get_profile(BASE_TIME)
        assert profile is not None
        assert np.linalg.norm(profile) == pytest.approx(1.0)

    def test_zero_weight_interaction_ignored(self):
        manager = TasteProfileManager()
        assert not manager.record_interaction(_emb("t0", 0), "skip", BASE_TIME)
        assert manager.interaction_count == 0

    def test_recent_interactions_dominate(self):
        manager = TasteProfileManager()
        old = BASE_TIME - 90 * DAY
        for _ in range(3):
            manager.record_interaction(_emb("old", 0), "like", old)
        for _ in range(3):
            manager.record_interaction(_emb("new", 1), "like", BASE_TIME)
        profile = manager.get_profile(BASE_TIME)
        assert profile[1] > profile[0] > 0

    def test_time_slot_sub_profile(self):
        manager = TasteProfileManager()
        morning = BASE_TIME - 4 * 3600  # 08:00 on the same Monday
        for _ in range(3):
            manager.record_interaction(_emb("m", 0), "like", morning)
        for _ in range(3):
            manager.record_interaction(_emb("a", 1), "like", BASE_TIME)
        at_morning = manager.get_profile(morning + DAY)
        at_afternoon = manager.get_profile(BASE_TIME + DAY)
        assert at_morning[0] > at_afternoon[0]
        assert at_afternoon[1] > at_morning[1]

    def test_max_tracks_evicts_oldest(self):
        manager = TasteProfileManager(TasteProfileConfig(max_tracks=2))
        for i in range(3):
            manager.record_interaction(_emb(f"t{i}", i), "like", BASE_TIME + i)
        assert manager.track_count == 2
        state = manager.to_state()
        assert [t["track_id"] for t in state["tracks"]] == ["t1", "t2"]

    def test_state_round_trip(self):
        manager = TasteProfileManager()
        for i in range(6):
            manager.record_interaction(_emb(f"t{i}", i), "like", BASE_TIME - i * DAY)
        restored = TasteProfileManager()
        restored.load_state(manager.to_state())
        assert np.allclose(restored.get_profile(BASE_TIME), manager.get_profile(BASE_TIME))

    def test_snapshot(self):
        manager = TasteProfileManager()
        manager.record_interaction(_emb("t0", 0), "like", BASE_TIME)
        snap = manager.snapshot(BASE_TIME)
        assert snap.sample_count == 1
        assert not snap.is_valid
        assert snap.weekday is not None
        assert snap.weekend is None

    def test_config_validation(self):
        with pytest.raises(ValueError):
            TasteProfileConfig(main_weight=0.9)
        with pytest.raises(ValueError):
            TasteProfileConfig(half_life_days=0)
