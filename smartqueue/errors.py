"""
Error types for the recommendation core.

Every failure here degrades to reduced-quality recommendations; component
boundaries catch these and log them rather than letting them reach the host.
"""
from typing import Optional


class SmartQueueError(Exception):
    """Base class for all recommendation-core errors."""


class UpstreamUnavailableError(SmartQueueError):
    """A feature provider or candidate source errored or timed out."""

    def __init__(self, source: str, message: str = ""):
        self.source = source
        super().__init__(f"{source}: {message}" if message else source)


class IndexCapacityError(SmartQueueError):
    """Insert rejected because the vector index is full."""

    def __init__(self, capacity: int, track_id: Optional[str] = None):
        self.capacity = capacity
        self.track_id = track_id
        super().__init__(f"Vector index capacity exceeded ({capacity:,} elements)")


class NoCandidatesError(SmartQueueError):
    """Every candidate source came back empty after filtering."""

    MESSAGE = "No matching tracks found"

    def __init__(self, message: str = MESSAGE):
        super().__init__(message)


class StorageCorruptionError(SmartQueueError):
    """Persisted state could not be decoded."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Corrupt persisted state for '{key}': {reason}")
