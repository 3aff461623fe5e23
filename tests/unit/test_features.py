"""Tests for the feature extractor."""
from datetime import timezone

import numpy as np
import pytest

from smartqueue.features import (
    CONTEXT_FEATURE_DIM,
    TRACK_FEATURE_DIM,
    FeatureExtractor,
    calculate_track_mood,
    encode_genres,
    estimate_energy,
    normalize_value,
)
from smartqueue.models import Track

from tests.helpers import BASE_TIME, DAY, make_track


class TestTrackFeatures:
    """Track feature vector."""

    def test_dimensions_and_range(self, library):
        extractor = FeatureExtractor(timezone.utc)
        for track in library:
            vec = extractor.extract_track_features(track, play_count=3, liked=True)
            assert vec.shape == (TRACK_FEATURE_DIM,)
            assert np.all(vec >= 0.0) and np.all(vec <= 1.0)

    def test_interaction_flags(self):
        vec = FeatureExtractor().extract_track_features(make_track("t1"), liked=True, disliked=False)
        assert vec[-3] == 1.0
        assert vec[-2] == 0.0

    def test_bare_track_defaults(self):
        vec = FeatureExtractor().extract_track_features(Track(id="bare"))
        assert vec[0] == pytest.approx(0.5)
        assert vec[5] == pytest.approx(0.5)

    def test_estimate_energy_from_genre(self):
        assert estimate_energy(make_track("t1", genres=("metal",))) == pytest.approx(0.9)
        assert estimate_energy(make_track("t2", genres=("metal",), energy=0.1)) == pytest.approx(0.1)
        assert estimate_energy(make_track("t3", genres=("zydeco",))) == pytest.approx(0.5)

    def test_mood_quadrants(self):
        assert calculate_track_mood(0.6, 0.8) == "happy"
        assert calculate_track_mood(0.9, 0.8) == "energetic"
        assert calculate_track_mood(0.2, 0.8) == "calm"
        assert calculate_track_mood(0.2, 0.1) == "melancholic"

    def test_encode_genres_matches_words(self):
        vec = encode_genres(["indie rock"])
        assert vec.sum() == 2.0

    def test_normalize_value(self):
        assert normalize_value(None, 0, 10) == 0.5
        assert normalize_value(15, 0, 10) == 1.0
        assert normalize_value(5, 0, 10) == 0.5


class TestContextFeatures:
    """Context feature vector."""

    def test_dimensions(self):
        vec = FeatureExtractor().extract_context_features(BASE_TIME, session_length=10)
        assert vec.shape == (CONTEXT_FEATURE_DIM,)
        assert vec[9] == pytest.approx(0.2)

    def test_weekend_flag_and_slot(self):
        extractor = FeatureExtractor()
        monday_noon = extractor.extract_context_features(BASE_TIME)
        saturday_noon = extractor.extract_context_features(BASE_TIME + 5 * DAY)
        assert monday_noon[4] == 0.0
        assert saturday_noon[4] == 1.0
        # afternoon slot
        assert monday_noon[6] == 1.0
