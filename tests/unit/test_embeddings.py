"""
Tests for track embeddings.

Covers:
- Unit length for every source combination
- Unembeddable tracks
- Cosine similarity symmetry and bounds
- Tag base vectors
- Cache invalidation and persistence
"""
import numpy as np
import pytest

from smartqueue.embeddings.embedding_engine import (
    EMBEDDING_DIM,
    EmbeddingEngine,
    audio_vector,
    cosine_similarity,
    normalize_bpm,
)
from smartqueue.embeddings.vectors import GENRE_VECTORS, hash_base_vector, lookup_base_vector
from smartqueue.models import AudioFeatures, Track

from tests.helpers import make_track


class TestEmbeddingNorm:
    """Every embedding with a usable source is unit length."""

    def test_library_embeddings_are_unit(self, library):
        engine = EmbeddingEngine()
        for track in library:
            emb = engine.embed(track)
            assert emb is not None
            assert emb.vector.shape == (EMBEDDING_DIM,)
            assert np.linalg.norm(emb.vector) == pytest.approx(1.0, abs=1e-6)

    @pytest.mark.parametrize(
        "track",
        [
            Track(id="genre-only", genres=["jazz"]),
            Track(id="mood-only", moods=["happy", "uplifting"]),
            Track(id="audio-only", audio_features=AudioFeatures(bpm=128)),
            Track(id="unknown-tag", genres=["zydeco-core"]),
            Track(id="all", genres=["rock"], moods=["dark"], audio_features=AudioFeatures(energy=0.9, key="Em")),
        ],
    )
    def test_single_sources_are_unit(self, track):
        emb = EmbeddingEngine().embed(track)
        assert emb is not None
        assert np.linalg.norm(emb.vector) == pytest.approx(1.0, abs=1e-6)

    def test_confidence_records_sources(self):
        track = Track(id="x", genres=["rock"], moods=["dark"], audio_features=AudioFeatures(energy=0.5))
        emb = EmbeddingEngine().embed(track)
        assert emb.confidence["audio"] == pytest.approx(0.8)
        assert emb.confidence["genre"] == pytest.approx(0.6)
        assert emb.confidence["mood"] == pytest.approx(0.4)

    def test_mood_confidence_overrides_tag_count(self):
        engine = EmbeddingEngine()
        assert engine.mood_weight(Track(id="x", moods=["sad"] * 10)) == pytest.approx(0.7)
        assert engine.mood_weight(Track(id="x", moods=["sad"], mood_confidence=0.2)) == pytest.approx(0.2)


class TestUnembeddable:
    """Tracks without any usable source have no embedding."""

    def test_bare_track(self):
        assert EmbeddingEngine().embed(Track(id="bare")) is None

    def test_empty_audio_features(self):
        assert EmbeddingEngine().embed(Track(id="empty", audio_features=AudioFeatures())) is None

    def test_audio_vector_none(self):
        assert audio_vector(None) is None
        assert audio_vector(AudioFeatures(key="not a key")) is None


class TestCosineSimilarity:
    """Symmetric and bounded."""

    def test_symmetric_and_bounded(self):
        rng = np.random.default_rng(5)
        vectors = rng.normal(size=(10, EMBEDDING_DIM))
        for a in vectors:
            for b in vectors:
                s = cosine_similarity(a, b)
                assert s == pytest.approx(cosine_similarity(b, a))
                assert -1.0 <= s <= 1.0

    def test_zero_vector(self):
        assert cosine_similarity(np.zeros(4), np.ones(4)) == 0.0

    def test_opposite(self):
        v = np.ones(4)
        assert cosine_similarity(v, -v) == pytest.approx(-1.0)

    def test_related_genres_closer(self):
        engine = EmbeddingEngine()
        rock = engine.embed(Track(id="r", genres=["rock"])).vector
        metal = engine.embed(Track(id="m", genres=["metal"])).vector
        classical = engine.embed(Track(id="c", genres=["classical"])).vector
        assert cosine_similarity(rock, metal) > cosine_similarity(rock, classical)


class TestBaseVectors:
    """Tag descriptor lookup."""

    def test_exact(self):
        assert lookup_base_vector("Rock", GENRE_VECTORS) == GENRE_VECTORS["rock"]

    def test_partial_mean(self):
        result = lookup_base_vector("indie rock", GENRE_VECTORS)
        expected = np.mean([GENRE_VECTORS["indie"], GENRE_VECTORS["rock"]], axis=0)
        assert np.allclose(result, expected)

    def test_hash_fallback_deterministic(self):
        vec = hash_base_vector("zydeco")
        assert vec == hash_base_vector("zydeco")
        assert all(-1.0 <= v <= 1.0 for v in vec)

    def test_empty_tag(self):
        assert lookup_base_vector("", GENRE_VECTORS) is None

    def test_normalize_bpm_clipped(self):
        assert normalize_bpm(60) == 0.0
        assert normalize_bpm(130) == pytest.approx(0.5)
        assert normalize_bpm(400) == 1.0


class TestEmbeddingCache:
    """Cache keyed by id and fingerprint."""

    def test_cache_hit(self):
        engine = EmbeddingEngine()
        track = make_track("t1", energy=0.5)
        first = engine.embed(track)
        second = engine.embed(track)
        assert first is second
        assert engine.cache_hits == 1

    def test_changed_features_rebuild(self):
        engine = EmbeddingEngine()
        track = make_track("t1", genres=("rock",))
        before = engine.embed(track).vector
        track.genres = ["jazz"]
        after = engine.embed(track).vector
        assert engine.cache_misses == 2
        assert not np.allclose(before, after)

    def test_becoming_unembeddable_drops_cache(self):
        engine = EmbeddingEngine()
        track = make_track("t1", genres=("rock",))
        engine.embed(track)
        track.genres = []
        assert engine.embed(track) is None
        assert engine.get("t1") is None

    def test_state_round_trip(self, library):
        engine = EmbeddingEngine()
        engine.embed_many(library[:5])
        restored = EmbeddingEngine()
        restored.load_state(engine.to_state())
        assert len(restored) == 5
        assert np.allclose(restored.get("t0").vector, engine.get("t0").vector)

    def test_load_rejects_non_unit(self):
        state = {"embeddings": [{"track_id": "x", "vector": [2.0] * EMBEDDING_DIM}]}
        with pytest.raises(ValueError):
            EmbeddingEngine().load_state(state)

    def test_load_rejects_wrong_shape(self):
        state = {"embeddings": [{"track_id": "x", "vector": [1.0]}]}
        with pytest.raises(ValueError):
            EmbeddingEngine().load_state(state)
