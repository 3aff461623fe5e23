"""Tests for embedding-based playlist generation."""
import numpy as np
import pytest

from smartqueue.embeddings.cooccurrence import CoOccurrenceMatrix
from smartqueue.embeddings.embedding_engine import EMBEDDING_DIM, TrackEmbedding
from smartqueue.embeddings.playlist_generator import PlaylistGenerator, PlaylistOptions
from smartqueue.embeddings.taste_profile import TasteProfileManager
from smartqueue.embeddings.vector_index import VectorIndex

from tests.helpers import BASE_TIME, make_track


def _axis(i: int) -> np.ndarray:
    vec = np.zeros(EMBEDDING_DIM)
    vec[i] = 1.0
    return vec


TRACKS = {
    "s": make_track("s", artist="Seed"),
    "a1": make_track("a1", artist="A"),
    "a2": make_track("a2", artist="A"),
    "a3": make_track("a3", artist="A"),
    "b1": make_track("b1", artist="B"),
    "c1": make_track("c1", artist="C"),
}

# Similarity to the seed falls off a1 > a2 > a3 > b1; c1 is not indexed
VECTORS = {
    "s": _axis(0),
    "a1": _axis(0) + 0.1 * _axis(1),
    "a2": _axis(0) + 0.2 * _axis(1),
    "a3": _axis(0) + 0.3 * _axis(1),
    "b1": _axis(0) + 0.4 * _axis(2),
}


@pytest.fixture()
def generator():
    index = VectorIndex()
    for tid, vec in VECTORS.items():
        index.add(tid, vec)
    return PlaylistGenerator(index, TRACKS.get)


class TestOptions:
    """Option validation."""

    def test_seed_method_needs_seeds(self):
        with pytest.raises(ValueError):
            PlaylistOptions(method="seed")

    def test_limit_positive(self):
        with pytest.raises(ValueError):
            PlaylistOptions(method="taste", limit=0)

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            PlaylistOptions(method="mood", seed_track_ids=("s",))


class TestFromSeeds:
    """Seed playlists."""

    def test_artist_cap_without_backfill(self, generator):
        playlist = generator.generate(PlaylistOptions(seed_track_ids=("s",), limit=3))
        assert playlist.track_ids == ["a1", "a2", "b1"]
        assert all(t.reason == "Sounds similar" for t in playlist.tracks)
        assert playlist.seed_track_ids == ["s"]

    def test_short_when_cap_binds(self, generator):
        playlist = generator.generate(PlaylistOptions(seed_track_ids=("s",), limit=10, max_per_artist=1))
        assert playlist.track_ids == ["a1", "b1"]

    def test_excluded_ids(self, generator):
        options = PlaylistOptions(seed_track_ids=("s",), limit=3, exclude_ids=("a1",))
        assert generator.generate(options).track_ids == ["a2", "a3", "b1"]

    def test_blends_co_occurrence(self, generator, clock):
        matrix = CoOccurrenceMatrix(clock=clock)
        for _ in range(3):
            matrix.record_co_occurrence("s", "c1", "queue")
        playlist = generator.generate(
            PlaylistOptions(seed_track_ids=("s",), limit=5), cooccurrence=matrix, now=BASE_TIME
        )
        assert playlist.track_ids == ["a1", "a2", "b1", "c1"]
        assert playlist.tracks[-1].reason == "Often played together"
        assert playlist.tracks[-1].score == pytest.approx(0.4)

    def test_collaborative_disabled(self, generator, clock):
        matrix = CoOccurrenceMatrix(clock=clock)
        for _ in range(3):
            matrix.record_co_occurrence("s", "c1", "queue")
        options = PlaylistOptions(seed_track_ids=("s",), limit=5, use_collaborative=False)
        assert "c1" not in generator.generate(options, cooccurrence=matrix, now=BASE_TIME).track_ids

    def test_unknown_seeds(self, generator):
        playlist = generator.generate(PlaylistOptions(seed_track_ids=("nope",)))
        assert playlist.tracks == []
        assert playlist.message == "No similar tracks found"


class TestFromTaste:
    """Taste playlists."""

    def test_needs_valid_profile(self, generator):
        taste = TasteProfileManager()
        playlist = generator.generate(PlaylistOptions(method="taste"), taste=taste, now=BASE_TIME)
        assert playlist.tracks == []
        assert "5 interactions" in playlist.message

    def test_nearest_to_taste(self, generator):
        taste = TasteProfileManager()
        for i in range(5):
            taste.record_interaction(TrackEmbedding(f"liked{i}", _axis(0)), "like", BASE_TIME - 3600)
        playlist = generator.generate(PlaylistOptions(method="taste", limit=3), taste=taste, now=BASE_TIME)
        assert playlist.track_ids == ["s", "a1", "a2"]
        assert playlist.to_dict()["tracks"][0]["reason"] == "Matches your taste"

    def test_taste_method_requires_manager(self, generator):
        with pytest.raises(ValueError):
            generator.generate(PlaylistOptions(method="taste"))
