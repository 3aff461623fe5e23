"""
Scoring Engine
==============

Combines seven components into one rank score:

    final = 0.40 * base + 0.10 * exploration + 0.15 * serendipity
          + 0.15 * diversity + 0.10 * flow + 0.05 * temporal + 0.05 * plugin

then applies the exploration-mode adjustment (explore: + exploration * 0.5,
exploit: + base * 0.2). In radio mode the base component is first blended
with seed relevance:

    base = raw * (1 - w) + seed_relevance * w

where w starts at the configured seed weight and drifts down by 0.02 per
radio track played, floored at 0.3.
"""

import logging
import random
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..models import Track
from .components import (
    ScoringContext,
    UserSnapshot,
    diversity_score,
    exploration_score,
    serendipity_score,
    temporal_score,
)
from .seed_relevance import calculate_seed_relevance
from .transition_scoring import compute_flow_score
from .weights import ModeAdjustments, RadioConfig, ScoringWeights

logger = logging.getLogger(__name__)

COMPONENT_NAMES = ("base", "exploration", "serendipity", "diversity", "flow", "temporal", "plugin")


@dataclass
class ScoreComponents:
    base: float = 0.0
    exploration: float = 0.0
    serendipity: float = 0.0
    diversity: float = 0.0
    flow: float = 0.0
    temporal: float = 0.0
    plugin: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in COMPONENT_NAMES}

    def weighted_sum(self, weights: ScoringWeights) -> float:
        w = weights.as_dict()
        return sum(w[name] * getattr(self, name) for name in COMPONENT_NAMES)


@dataclass
class ScoreResult:
    final_score: float
    components: ScoreComponents
    explanation: List[str] = field(default_factory=list)


@dataclass
class ScoredTrack:
    track: Track
    score: float
    components: ScoreComponents
    explanation: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "track": self.track.to_dict(),
            "score": round(self.score, 4),
            "components": {k: round(v, 4) for k, v in self.components.as_dict().items()},
            "explanation": list(self.explanation),
        }


def compute_final_score(
    components: ScoreComponents,
    weights: ScoringWeights,
    mode: str = "balanced",
    adjustments: Optional[ModeAdjustments] = None,
) -> float:
    """Weighted sum plus the exploration-mode adjustment."""
    adjustments = adjustments or ModeAdjustments()
    final = components.weighted_sum(weights)
    if mode == "explore":
        final += components.exploration * adjustments.explore_exploration_boost
    elif mode == "exploit":
        final += components.base * adjustments.exploit_base_boost
    return final


class ScoringEngine:
    """
    Stateless apart from its random source.

    Usage:
        engine = ScoringEngine(rng=random.Random(7))
        ranked = engine.rank(candidates, base_scores, context, user_snapshot)
    """

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        adjustments: Optional[ModeAdjustments] = None,
        radio: Optional[RadioConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.weights = weights or ScoringWeights()
        self.adjustments = adjustments or ModeAdjustments()
        self.radio = radio or RadioConfig()
        self.rng = rng if rng is not None else random.Random(0)

    def radio_base(self, raw: float, track: Track, context: ScoringContext) -> Tuple[float, float]:
        """(blended base, seed relevance) for radio mode."""
        relevance = calculate_seed_relevance(track, context.radio_seed)
        w = self.radio.effective_seed_weight(context.radio_tracks_played)
        return raw * (1 - w) + relevance * w, relevance

    def score(
        self,
        candidate: Track,
        context: ScoringContext,
        user_profile: UserSnapshot,
        play_history: Mapping[str, int],
        *,
        base_score: float = 50.0,
        batch_artist_counts: Optional[Mapping[str, int]] = None,
    ) -> ScoreResult:
        """
        Score one candidate.

        Args:
            candidate: Track to score
            context: Listening moment, session state and exploration mode
            user_profile: Read-only preference snapshot
            play_history: Play counts by track id
            base_score: Fused taste/affinity preference (0-100)
            batch_artist_counts: Artists already placed earlier in this batch
        """
        explanation: List[str] = []
        components = ScoreComponents(base=base_score)

        if context.radio_seed is not None:
            components.base, relevance = self.radio_base(base_score, candidate, context)
            if relevance >= 50:
                explanation.append(f"Close to {context.radio_seed.name or context.radio_seed.id}")

        play_count = int(play_history.get(candidate.id, 0))
        components.exploration, reasons = exploration_score(
            candidate, user_profile, play_count, self.rng, self.adjustments.epsilon
        )
        explanation.extend(reasons)

        components.serendipity, reasons = serendipity_score(
            candidate, user_profile, context.session_genres
        )
        explanation.extend(reasons)

        components.diversity, reasons = diversity_score(
            candidate, batch_artist_counts or {}, context.session_genres
        )
        explanation.extend(reasons)

        features = candidate.audio_features
        components.flow, reasons = compute_flow_score(
            candidate_energy=features.energy if features else None,
            candidate_bpm=features.bpm if features else None,
            candidate_key=features.key if features else None,
            recent_energy=context.recent_energy,
            previous_bpm=context.previous_bpm,
            previous_key=context.previous_key,
        )
        explanation.extend(reasons)

        components.temporal, reasons = temporal_score(candidate, user_profile, context)
        explanation.extend(reasons)

        plugin = context.plugin_scores.get(candidate.id)
        if plugin is not None:
            components.plugin = max(0.0, min(100.0, float(plugin)))

        if candidate.id in user_profile.liked_tracks:
            explanation.insert(0, "From your Likes")

        final = compute_final_score(
            components, self.weights, context.exploration_mode, self.adjustments
        )
        return ScoreResult(final_score=final, components=components, explanation=explanation)

    def rank(
        self,
        candidates: Sequence[Track],
        base_scores: Mapping[str, float],
        context: ScoringContext,
        user_profile: UserSnapshot,
        play_history: Optional[Mapping[str, int]] = None,
    ) -> List[ScoredTrack]:
        """
        Score a batch and sort it best first.

        Candidates are scored in descending base-score order so the artist
        repetition penalty lands on the weaker duplicates. Equal final
        scores keep the input order.
        """
        play_history = play_history if play_history is not None else user_profile.play_counts
        order = sorted(
            range(len(candidates)),
            key=lambda i: (-base_scores.get(candidates[i].id, 50.0), i),
        )
        artist_counts: Counter = Counter()
        results: Dict[int, ScoredTrack] = {}
        for i in order:
            track = candidates[i]
            result = self.score(
                track,
                context,
                user_profile,
                play_history,
                base_score=base_scores.get(track.id, 50.0),
                batch_artist_counts=artist_counts,
            )
            artist_counts[track.primary_artist_key] += 1
            results[i] = ScoredTrack(track, result.final_score, result.components, result.explanation)

        ranked = sorted(results.items(), key=lambda kv: (-kv[1].score, kv[0]))
        return [scored for _, scored in ranked]
