"""
Scoring Weights
===============

Fixed weights of the seven score components and the knobs that tune the
non-weighted adjustments (exploration mode, radio drift).
"""

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class ScoringWeights:
    """Weights of the final weighted sum."""

    base: float = 0.40
    """Fused taste-profile / affinity preference."""

    exploration: float = 0.10
    """Novelty of artist and genre."""

    serendipity: float = 0.15
    """Surprising but relevant picks."""

    diversity: float = 0.15
    """Artist repetition and genre balance within the batch and session."""

    flow: float = 0.10
    """Energy, tempo and key transition from the current session."""

    temporal: float = 0.05
    """Hour-of-day and day-of-week fit."""

    plugin: float = 0.05
    """Score supplied by feature providers."""

    def __post_init__(self):
        """Validate weights sum to 1.0."""
        total = sum(self.as_dict().values())
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Scoring weights must sum to 1.0, got {total:.3f}")

    def as_dict(self) -> Dict[str, float]:
        return {
            "base": self.base,
            "exploration": self.exploration,
            "serendipity": self.serendipity,
            "diversity": self.diversity,
            "flow": self.flow,
            "temporal": self.temporal,
            "plugin": self.plugin,
        }


@dataclass(frozen=True)
class ModeAdjustments:
    """Extra terms added on top of the weighted sum."""

    explore_exploration_boost: float = 0.5
    """In explore mode: final += exploration * this."""

    exploit_base_boost: float = 0.2
    """In exploit mode: final += base * this."""

    epsilon: float = 0.15
    """Probability of the "explore anyway" exploration bonus."""

    def __post_init__(self):
        if not (0.0 <= self.epsilon <= 1.0):
            raise ValueError(f"epsilon must be in [0,1], got {self.epsilon}")


@dataclass(frozen=True)
class RadioConfig:
    """Seed-relevance blending for radio mode."""

    seed_weight: float = 0.7
    """Starting weight of seed relevance in the base score."""

    diversity_factor: float = 0.3
    progressive_drift: bool = True
    drift_per_track: float = 0.02
    min_seed_weight: float = 0.3

    def __post_init__(self):
        if not (0.0 <= self.seed_weight <= 1.0):
            raise ValueError(f"seed_weight must be in [0,1], got {self.seed_weight}")
        if not (0.0 <= self.min_seed_weight <= 1.0):
            raise ValueError(f"min_seed_weight must be in [0,1], got {self.min_seed_weight}")

    def effective_seed_weight(self, radio_tracks_played: int) -> float:
        """Seed weight after `radio_tracks_played` tracks of drift."""
        if not self.progressive_drift:
            return self.seed_weight
        drifted = self.seed_weight - radio_tracks_played * self.drift_per_track
        return max(self.min_seed_weight, drifted)
