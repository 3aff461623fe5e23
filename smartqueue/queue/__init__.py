"""Queue replenishment: candidate gathering, session history, diversity and the controller."""

from .candidate_sources import CandidateGatherer, CandidatePool, GatherRequest, dedupe_candidates
from .diversity import DiversityResult, apply_diversity_filter
from .session import SessionHistory
from .smart_queue import (
    QueueMode,
    ReplenishRequest,
    ReplenishResult,
    SmartQueueConfig,
    SmartQueueController,
)

__all__ = [
    "CandidateGatherer",
    "CandidatePool",
    "GatherRequest",
    "dedupe_candidates",
    "DiversityResult",
    "apply_diversity_filter",
    "SessionHistory",
    "QueueMode",
    "ReplenishRequest",
    "ReplenishResult",
    "SmartQueueConfig",
    "SmartQueueController",
]
