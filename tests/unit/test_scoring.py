"""
Tests for the scoring package.

Covers:
- Circle-of-Fifths key compatibility and transition terms
- Radio seed relevance and its audio bonus
- Exploration, serendipity, diversity and temporal components
- Weighted final score and exploration-mode adjustments
- Batch ranking order and determinism
"""
import random

import pytest

from smartqueue.models import AudioFeatures, RadioSeed
from smartqueue.scoring import (
    ModeAdjustments,
    RadioConfig,
    ScoringContext,
    ScoringEngine,
    ScoringWeights,
    UserSnapshot,
    calculate_seed_relevance,
    compute_flow_score,
    compute_final_score,
    key_compatibility,
    key_position,
)
from smartqueue.scoring.components import (
    diversity_score,
    exploration_score,
    serendipity_score,
    temporal_score,
)
from smartqueue.scoring.engine import ScoreComponents
from smartqueue.scoring.seed_relevance import audio_bonus
from smartqueue.scoring.transition_scoring import bpm_transition_score, energy_transition_score

from tests.helpers import BASE_TIME, make_track


def _context(**kwargs) -> ScoringContext:
    defaults = dict(timestamp=BASE_TIME, hour=12, day_of_week=0)
    defaults.update(kwargs)
    return ScoringContext(**defaults)


class TestKeyCompatibility:
    """Circle-of-Fifths positions and compatibility."""

    def test_c_and_g(self):
        assert key_compatibility("C", "G") == pytest.approx(0.8)

    def test_relative_minor_shares_position(self):
        assert key_compatibility("C", "Am") == pytest.approx(1.0)

    def test_wraps_around_circle(self):
        # F sits one step from C going the other way
        assert key_compatibility("F", "C") == pytest.approx(0.8)

    def test_far_keys_floor_at_zero(self):
        assert key_compatibility("C", "F#") == 0.0

    def test_unknown_key(self):
        assert key_compatibility("C", "H") is None
        assert key_compatibility(None, "C") is None

    def test_key_position_formats(self):
        assert key_position("A minor") == 0
        assert key_position("Bb major") == 10
        assert key_position(7) == 1
        assert key_position(12) is None
        assert key_position(True) is None


class TestTransitionTerms:
    """Energy, BPM and combined flow score."""

    def test_energy_smooth(self):
        assert energy_transition_score(0.5, 0.5) == pytest.approx(15.0)
        assert energy_transition_score(0.5, 0.6) == pytest.approx(10.0)

    def test_energy_jump_penalized(self):
        assert energy_transition_score(0.2, 0.9) == pytest.approx(-8.0)

    def test_bpm_bands(self):
        assert bpm_transition_score(120, 125) == 10.0
        assert bpm_transition_score(120, 150) == 5.0
        assert bpm_transition_score(120, 170) == -10.0
        assert bpm_transition_score(0, 120) == 0.0

    def test_flow_score_combines_terms(self):
        score, reasons = compute_flow_score(
            candidate_energy=0.5,
            candidate_bpm=125,
            candidate_key="G",
            recent_energy=[0.4, 0.6],
            previous_bpm=120,
            previous_key="C",
        )
        assert score == pytest.approx(15.0 + 10.0 + 8.0)
        assert "Matching tempo" in reasons
        assert "Harmonic key match" in reasons

    def test_flow_score_missing_features(self):
        score, reasons = compute_flow_score(candidate_energy=None, candidate_bpm=None, candidate_key=None)
        assert score == 0.0
        assert reasons == []


class TestSeedRelevance:
    """Radio seed relevance."""

    def test_bpm_within_ten_percent_adds_twelve(self):
        assert audio_bonus(AudioFeatures(bpm=120), AudioFeatures(bpm=125)) == 12

    def test_audio_bonus_bands(self):
        assert audio_bonus(AudioFeatures(bpm=100), AudioFeatures(bpm=115)) == 8
        assert audio_bonus(AudioFeatures(energy=0.5), AudioFeatures(energy=0.7)) == 8
        assert audio_bonus(AudioFeatures(key="C"), AudioFeatures(key="G")) == 8
        assert audio_bonus(AudioFeatures(valence=0.5), AudioFeatures(valence=0.8)) == 3
        assert audio_bonus(None, AudioFeatures(bpm=120)) == 0

    def test_track_seed(self):
        seed = RadioSeed("track", "s1", name="Creep", genres=["rock"], artist_ids=["radiohead"])
        track = make_track("t1", artist="Radiohead", genres=("rock",))
        assert calculate_seed_relevance(track, seed) == 50.0

    def test_artist_seed(self):
        seed = RadioSeed("artist", "Radiohead", name="Radiohead")
        assert calculate_seed_relevance(make_track("t1", artist="Radiohead"), seed) == 50.0
        assert calculate_seed_relevance(make_track("t2", artist="Blur"), seed) == 0.0

    def test_genre_seed_matches_either_way(self):
        seed = RadioSeed("genre", "rock", name="rock")
        assert calculate_seed_relevance(make_track("t1", genres=("indie rock",)), seed) == 60.0
        assert calculate_seed_relevance(make_track("t2", genres=("jazz",)), seed) == 0.0

    def test_capped_at_hundred(self):
        features = AudioFeatures(energy=0.5, valence=0.5, bpm=120, key="C")
        seed = RadioSeed("artist", "Radiohead", name="Radiohead", genres=["rock"], audio_features=features)
        track = make_track("t1", artist="Radiohead", genres=("rock",), energy=0.5, valence=0.5, bpm=120, key="C")
        assert calculate_seed_relevance(track, seed) == 100.0


class TestComponents:
    """Individual score components."""

    def test_exploration_new_artist_and_genre(self):
        track = make_track("t1", artist="New Band", genres=("jazz",))
        points, reasons = exploration_score(track, UserSnapshot(), 0, random.Random(0), 0.0)
        assert points == 25.0
        assert "New artist for you" in reasons

    def test_exploration_decays_with_plays(self):
        track = make_track("t1", artist="New Band", genres=("jazz",))
        points, _ = exploration_score(track, UserSnapshot(), 2, random.Random(0), 0.0)
        assert points == pytest.approx(25.0 * 0.81)

    def test_exploration_capped(self):
        track = make_track("t1", artist="New Band", genres=("jazz",))
        points, _ = exploration_score(track, UserSnapshot(), 0, random.Random(0), 1.0)
        assert points == 25.0

    def test_exploration_known_track(self):
        user = UserSnapshot(known_artists=frozenset({"old band"}), genre_history={"jazz": 3})
        track = make_track("t1", artist="Old Band", genres=("jazz",))
        points, _ = exploration_score(track, user, 0, random.Random(0), 0.0)
        assert points == 0.0

    def test_serendipity_unexpected_artist_in_liked_genre(self):
        user = UserSnapshot(genre_affinity={"jazz": 40.0})
        track = make_track("t1", artist="Stranger", genres=("jazz",))
        points, reasons = serendipity_score(track, user, ["rock"])
        assert points == pytest.approx(30.0)
        assert "Unexpected artist in a genre you like" in reasons

    def test_diversity_artist_repeat_floor(self):
        track = make_track("t1", artist="A")
        assert diversity_score(track, {"a": 2}, [])[0] == -60.0
        assert diversity_score(track, {"a": 5}, [])[0] == -90.0

    def test_diversity_genre_dominance(self):
        track = make_track("t1", genres=("rock",))
        points, _ = diversity_score(track, {}, ["rock", "rock", "rock", "jazz"])
        assert points == pytest.approx(-10.0 * (0.75 - 0.4))

    def test_diversity_new_session_genre(self):
        points, reasons = diversity_score(make_track("t1", genres=("folk",)), {}, ["rock"])
        assert points == 15.0
        assert "Adds variety" in reasons

    def test_temporal_weekend_energy(self):
        track = make_track("t1", energy=0.9)
        points, reasons = temporal_score(track, UserSnapshot(), _context(day_of_week=6))
        assert points == 5.0
        assert "Weekend energy" in reasons

    def test_temporal_hour_genre_preference(self):
        user = UserSnapshot(hour_genre_preferences={"rock": 0.4})
        points, _ = temporal_score(make_track("t1", genres=("rock",)), user, _context())
        assert points == pytest.approx(10.0)


class TestFinalScore:
    """Weighted sum and mode adjustments."""

    COMPONENTS = ScoreComponents(
        base=80, exploration=20, serendipity=10, diversity=-30, flow=5, temporal=2, plugin=0
    )

    def test_default_weights_sum_to_one(self):
        assert sum(ScoringWeights().as_dict().values()) == pytest.approx(1.0)

    def test_weighted_sum(self):
        assert compute_final_score(self.COMPONENTS, ScoringWeights()) == pytest.approx(31.6)

    def test_explore_mode(self):
        assert compute_final_score(self.COMPONENTS, ScoringWeights(), "explore") == pytest.approx(41.6)

    def test_exploit_mode(self):
        assert compute_final_score(self.COMPONENTS, ScoringWeights(), "exploit") == pytest.approx(47.6)

    def test_invalid_weights(self):
        with pytest.raises(ValueError):
            ScoringWeights(base=0.5)

    def test_invalid_epsilon(self):
        with pytest.raises(ValueError):
            ModeAdjustments(epsilon=1.5)


class TestRadioDrift:
    """Seed weight drift in radio mode."""

    def test_drift(self):
        cfg = RadioConfig()
        assert cfg.effective_seed_weight(0) == pytest.approx(0.7)
        assert cfg.effective_seed_weight(10) == pytest.approx(0.5)
        assert cfg.effective_seed_weight(100) == pytest.approx(0.3)

    def test_no_drift(self):
        assert RadioConfig(progressive_drift=False).effective_seed_weight(50) == pytest.approx(0.7)


class TestScoringEngine:
    """Batch ranking."""

    def _engine(self, seed: int = 7) -> ScoringEngine:
        return ScoringEngine(adjustments=ModeAdjustments(epsilon=0.0), rng=random.Random(seed))

    def test_repeat_penalty_hits_weaker_duplicate(self):
        strong = make_track("strong", artist="Same")
        weak = make_track("weak", artist="Same")
        other = make_track("other", artist="Else")
        ranked = self._engine().rank(
            [weak, other, strong],
            {"strong": 90.0, "weak": 60.0, "other": 70.0},
            _context(),
            UserSnapshot(),
        )
        by_id = {s.track.id: s for s in ranked}
        assert by_id["strong"].components.diversity == 0.0
        assert by_id["weak"].components.diversity == -30.0
        assert [s.track.id for s in ranked][0] == "strong"
        assert ranked[-1].track.id == "weak"

    def test_ranked_best_first(self):
        tracks = [make_track(f"t{i}", artist=f"A{i}") for i in range(5)]
        base = {f"t{i}": float(i * 10) for i in range(5)}
        ranked = self._engine().rank(tracks, base, _context(), UserSnapshot())
        scores = [s.score for s in ranked]
        assert scores == sorted(scores, reverse=True)
        assert ranked[0].track.id == "t4"

    def test_radio_base_blend(self):
        seed = RadioSeed("artist", "Radiohead", name="Radiohead")
        track = make_track("t1", artist="Radiohead")
        result = self._engine().score(
            track, _context(radio_seed=seed), UserSnapshot(), {}, base_score=50.0
        )
        assert result.components.base == pytest.approx(50.0 * 0.3 + 50.0 * 0.7)
        assert "Close to Radiohead" in result.explanation

    def test_plugin_score_clamped(self):
        track = make_track("t1")
        result = self._engine().score(
            track, _context(plugin_scores={"t1": 250.0}), UserSnapshot(), {}
        )
        assert result.components.plugin == 100.0

    def test_liked_track_explained_first(self):
        track = make_track("t1")
        user = UserSnapshot(liked_tracks=frozenset({"t1"}))
        result = self._engine().score(track, _context(), user, {})
        assert result.explanation[0] == "From your Likes"

    def test_deterministic_with_seeded_rng(self, library):
        engine_a = ScoringEngine(rng=random.Random(3))
        engine_b = ScoringEngine(rng=random.Random(3))
        base = {t.id: 50.0 for t in library}
        a = [(s.track.id, s.score) for s in engine_a.rank(library, base, _context(), UserSnapshot())]
        b = [(s.track.id, s.score) for s in engine_b.rank(library, base, _context(), UserSnapshot())]
        assert a == b
