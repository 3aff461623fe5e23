"""Tests for the feature provider registry."""
import pytest

from smartqueue.models import AudioFeatures
from smartqueue.providers import FeatureProvider, ProviderCapability, ProviderRegistry

from tests.helpers import make_track


class SimilarProvider(FeatureProvider):
    name = "similar"
    capabilities = frozenset({ProviderCapability.SIMILAR_TRACKS})

    def get_similar_tracks(self, track_id, limit=20):
        return ["a", "b", "c"]


class ScoreProvider(FeatureProvider):
    capabilities = frozenset({"track_score"})

    def __init__(self, name, value):
        self.name = name
        self.value = value

    def get_track_score(self, track):
        return self.value


class BrokenProvider(FeatureProvider):
    name = "broken"
    capabilities = frozenset({
        ProviderCapability.SIMILAR_TRACKS,
        ProviderCapability.AUDIO_FEATURES,
        ProviderCapability.TRACK_SCORE,
    })

    def get_similar_tracks(self, track_id, limit=20):
        raise RuntimeError("boom")

    def get_audio_features(self, track_id):
        raise RuntimeError("boom")

    def get_track_score(self, track):
        raise RuntimeError("boom")


class FeaturesProvider(FeatureProvider):
    name = "features"
    capabilities = frozenset({ProviderCapability.AUDIO_FEATURES})

    def get_audio_features(self, track_id):
        return AudioFeatures(energy=0.7)


class TestRegistration:
    """Capability declarations are checked once."""

    def test_unimplemented_capability_rejected(self):
        class Liar(FeatureProvider):
            name = "liar"
            capabilities = frozenset({ProviderCapability.AUDIO_FEATURES})

        with pytest.raises(ValueError, match="audio_features"):
            ProviderRegistry().register(Liar())

    def test_duplicate_name_rejected(self):
        registry = ProviderRegistry()
        registry.register(SimilarProvider())
        with pytest.raises(ValueError):
            registry.register(SimilarProvider())

    def test_string_capabilities_coerced(self):
        registry = ProviderRegistry()
        registry.register(ScoreProvider("s", 50))
        assert registry.providers_with(ProviderCapability.TRACK_SCORE)[0].name == "s"

    def test_unregister(self):
        registry = ProviderRegistry()
        registry.register(SimilarProvider())
        registry.unregister("similar")
        assert len(registry) == 0
        assert registry.names == []


class TestIsolation:
    """A failing provider contributes nothing."""

    def test_similar_tracks(self):
        registry = ProviderRegistry()
        registry.register(BrokenProvider())
        registry.register(SimilarProvider())
        assert registry.similar_tracks("x", limit=2) == {"similar": ["a", "b"]}

    def test_audio_features_falls_through(self):
        registry = ProviderRegistry()
        registry.register(BrokenProvider())
        registry.register(FeaturesProvider())
        assert registry.audio_features("x") == AudioFeatures(energy=0.7)

    def test_track_scores_mean_and_clamp(self):
        registry = ProviderRegistry()
        registry.register(BrokenProvider())
        registry.register(ScoreProvider("low", 40))
        registry.register(ScoreProvider("high", 180))
        scores = registry.track_scores([make_track("t1")])
        assert scores == {"t1": pytest.approx(70.0)}

    def test_no_scorers(self):
        assert ProviderRegistry().track_scores([make_track("t1")]) == {}
