"""Tests for the smart queue controller."""
from collections import Counter

import pytest

from smartqueue.models import RadioSeed
from smartqueue.queue.candidate_sources import CandidateGatherer
from smartqueue.queue.smart_queue import ReplenishRequest, SmartQueueConfig, SmartQueueController
from smartqueue.recommendation_client import CatalogRecommendationSource
from smartqueue.scoring import ScoringEngine, UserSnapshot

from tests.helpers import BASE_TIME, FakeClock, make_track


@pytest.fixture()
def monotonic():
    return FakeClock(0.0)


@pytest.fixture()
def controller(library, clock, monotonic):
    gatherer = CandidateGatherer(recommendations=CatalogRecommendationSource(library))
    ctrl = SmartQueueController(gatherer, ScoringEngine(), clock=clock, monotonic=monotonic)
    yield ctrl
    gatherer.close()


def _request(library, **overrides):
    params = dict(
        current_track=library[0],
        timestamp=BASE_TIME,
        hour=12,
        day_of_week=0,
    )
    params.update(overrides)
    params.setdefault("upcoming", library[1:2])
    return ReplenishRequest(**params)


class TestModes:
    """Manual, auto-queue and radio transitions."""

    def test_default_manual(self, controller):
        assert controller.mode == "manual"
        assert not controller.should_replenish(0)

    def test_enable_disable(self, controller):
        controller.enable_auto_queue()
        assert controller.mode == "auto-queue"
        assert controller.toggle_auto_queue() is False
        assert controller.mode == "manual"

    def test_radio_keeps_control(self, controller):
        controller.start_radio(RadioSeed("genre", "jazz", name="Jazz"))
        controller.enable_auto_queue()
        assert controller.mode == "radio"
        controller.stop_radio()
        assert controller.mode == "manual"
        assert controller.radio_seed is None

    def test_radio_counts_plays(self, controller, library):
        controller.start_radio(RadioSeed("genre", "jazz", name="Jazz"))
        controller.record_track_played(library[1])
        controller.record_track_played(library[6])
        assert controller.radio_tracks_played == 2

    def test_update_config(self, controller):
        cfg = controller.update_config(auto_queue_enabled=True, batch_size=5)
        assert cfg.batch_size == 5
        assert controller.mode == "auto-queue"

    def test_update_config_rejects(self, controller):
        with pytest.raises(ValueError, match="Unknown"):
            controller.update_config(volume=3)
        with pytest.raises(ValueError):
            controller.update_config(batch_size=0)

    def test_config_validation(self):
        with pytest.raises(ValueError):
            SmartQueueConfig(explore_below=0.7, exploit_above=0.6)
        assert SmartQueueConfig.from_dict({"batch_size": 4, "stale": 1}).batch_size == 4


class TestTrackSource:
    """Provenance labels, most specific first."""

    def test_radio_artist(self, controller):
        controller.start_radio(RadioSeed("artist", "a1", name="Muse"))
        source = controller.determine_track_source(make_track("x", artist="muse"), None)
        assert (source.type, source.label) == ("artist", "More from Muse")
        other = controller.determine_track_source(make_track("y", artist="Blur"), None)
        assert (other.type, other.label) == ("radio", "Muse Radio")

    def test_radio_genre_and_track(self, controller):
        controller.start_radio(RadioSeed("genre", "jazz", name="Jazz"))
        assert controller.determine_track_source(make_track("x"), None).label == "Jazz radio"
        controller.start_radio(RadioSeed("track", "t9", name="Lucky"))
        source = controller.determine_track_source(make_track("x"), None)
        assert (source.type, source.label, source.seed_track_id) == ("similar", "Similar to Lucky", "t9")

    def test_liked_before_artist(self, controller):
        current = make_track("c", artist="Muse")
        source = controller.determine_track_source(make_track("x", artist="Muse"), current, liked_ids={"x"})
        assert source.type == "liked"

    def test_artist_album_genre(self, controller):
        current = make_track("c", artist="Muse", album="Origin", genres=("Rock", "Prog"))
        assert controller.determine_track_source(make_track("x", artist="MUSE"), current).label == "More from MUSE"
        album = controller.determine_track_source(make_track("y", artist="Blur", album="Origin"), current)
        assert (album.type, album.label) == ("album", "From Origin")
        genre = controller.determine_track_source(make_track("z", artist="Blur", genres=("prog",)), current)
        assert (genre.type, genre.label) == ("genre", "Prog vibes")

    def test_hints_and_fallback(self, controller):
        current = make_track("c", artist="Muse", title="Uprising", genres=("rock",))
        unrelated = make_track("x", artist="Blur", genres=("jazz",))
        assert controller.determine_track_source(unrelated, current, hint="similar").label == "Similar to Uprising"
        assert controller.determine_track_source(unrelated, None, hint="trending").label == "Trending now"
        assert controller.determine_track_source(unrelated, None, hint="search").type == "search"
        fallback = controller.determine_track_source(unrelated, current)
        assert (fallback.type, fallback.label) == ("ml", "Recommended for you")

    def test_manual_source_and_forget(self, controller, clock):
        controller.set_manual_source(make_track("m"))
        source = controller.get_queue_sources()["m"]
        assert (source.type, source.label, source.timestamp) == ("manual", "Added by you", clock.now)
        controller.forget_source("m")
        controller.forget_source("never-queued")
        assert controller.get_queue_sources() == {}


class TestReplenishment:
    """Trigger conditions and the fetch pipeline."""

    def test_threshold(self, controller):
        controller.enable_auto_queue()
        assert controller.should_replenish(2)
        assert not controller.should_replenish(3)

    def test_fetch_selects_batch(self, controller, library):
        controller.record_track_played(library[5], BASE_TIME - 60)
        result = controller.fetch_more_tracks(_request(library))
        ids = [q.track.id for q in result.tracks]
        assert result.error is None
        assert len(ids) == 10
        assert len(set(ids)) == 10
        assert not {"t0", "t1", "t5"} & set(ids)
        artists = Counter(q.track.primary_artist_key for q in result.tracks)
        assert max(artists.values()) <= 2
        assert set(controller.get_queue_sources()) == set(ids)
        assert controller.last_fetch == BASE_TIME

    def test_count_override(self, controller, library):
        result = controller.fetch_more_tracks(_request(library), count=3)
        assert len(result.tracks) == 3

    def test_no_candidates(self, clock, monotonic):
        gatherer = CandidateGatherer(recommendations=CatalogRecommendationSource([]))
        ctrl = SmartQueueController(gatherer, ScoringEngine(), clock=clock, monotonic=monotonic)
        try:
            first = ctrl.fetch_more_tracks(_request([make_track("c")], upcoming=[]))
            ctrl.fetch_more_tracks(_request([make_track("c")], upcoming=[]))
        finally:
            gatherer.close()
        assert first.error == "No matching tracks found"
        assert first.tracks == []
        assert ctrl.consecutive_failures == 2
        assert ctrl.error == "No matching tracks found"

    def test_rate_gate(self, controller, library, monotonic):
        controller.enable_auto_queue()
        assert controller.check_and_replenish(1, _request(library)) is not None
        assert controller.check_and_replenish(1, _request(library)) is None
        monotonic.advance(5.0)
        assert controller.check_and_replenish(1, _request(library)) is not None

    def test_manual_never_fires(self, controller, library):
        assert controller.check_and_replenish(0, _request(library)) is None

    def test_liked_tracks_labelled(self, controller, library):
        request = _request(library, user=UserSnapshot(liked_tracks=frozenset({"t10"})))
        result = controller.fetch_more_tracks(request, count=30)
        sources = {q.track.id: q.source.type for q in result.tracks}
        assert sources["t10"] == "liked"

    def test_build_context_uses_session(self, controller, library):
        controller.record_track_played(library[3], BASE_TIME - 120)
        context = controller.build_context(_request(library), "explore")
        assert context.session_artists == ["artist 3", "artist 0"]
        assert context.previous_bpm == library[0].audio_features.bpm
        assert context.recent_energy == [0.3, 0.0]
        assert context.radio_seed is None


class TestSession:
    """Explicit session clearing."""

    def test_clear_session(self, controller, library):
        controller.start_radio(RadioSeed("genre", "jazz", name="Jazz"))
        controller.record_track_played(library[2], BASE_TIME)
        controller.record_track_played(library[3], BASE_TIME + 60)
        assert controller.session.played_ids() == {"t2", "t3"}
        assert controller.radio_tracks_played == 2

        controller.clear_session()
        assert len(controller.session) == 0
        assert controller.session.played_ids() == set()
        assert controller.radio_tracks_played == 0
        assert controller.mode == "radio"


class TestState:
    """Persisted controller state."""

    def test_round_trip_radio(self, controller, library, clock, monotonic):
        controller.update_config(batch_size=4)
        controller.start_radio(RadioSeed("artist", "a1", name="Muse"))
        controller.record_track_played(library[2])
        state = controller.to_state()

        restored = SmartQueueController(controller.gatherer, ScoringEngine(), clock=clock, monotonic=monotonic)
        restored.load_state(state)
        assert restored.mode == "radio"
        assert restored.radio_seed.name == "Muse"
        assert restored.radio_tracks_played == 1
        assert restored.config.batch_size == 4

    def test_auto_queue_restored(self, controller, clock, monotonic):
        controller.enable_auto_queue()
        restored = SmartQueueController(controller.gatherer, ScoringEngine(), clock=clock, monotonic=monotonic)
        restored.load_state(controller.to_state())
        assert restored.mode == "auto-queue"
