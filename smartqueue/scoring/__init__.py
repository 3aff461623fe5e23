"""
Scoring Module
==============

Seven-component candidate scoring.

Public API:
-----------
Engine:
    ScoringEngine, ScoreComponents, ScoreResult, ScoredTrack, compute_final_score

Components:
    ScoringContext, UserSnapshot

Transitions:
    key_position, key_compatibility, compute_flow_score

Radio:
    calculate_seed_relevance

Weights:
    ScoringWeights, ModeAdjustments, RadioConfig
"""

from .components import ScoringContext, UserSnapshot
from .engine import (
    ScoreComponents,
    ScoredTrack,
    ScoreResult,
    ScoringEngine,
    compute_final_score,
)
from .seed_relevance import calculate_seed_relevance
from .transition_scoring import compute_flow_score, key_compatibility, key_position
from .weights import ModeAdjustments, RadioConfig, ScoringWeights

__all__ = [
    "ScoringEngine",
    "ScoreComponents",
    "ScoreResult",
    "ScoredTrack",
    "compute_final_score",
    "ScoringContext",
    "UserSnapshot",
    "key_position",
    "key_compatibility",
    "compute_flow_score",
    "calculate_seed_relevance",
    "ModeAdjustments",
    "RadioConfig",
    "ScoringWeights",
]
