"""
Feature providers.

A provider is an opaque plugin that can return similar track ids, audio
features, or a 0-100 relevance score for a track. Each provider declares the
capabilities it implements; the registry checks the declaration once at
registration and afterwards only routes calls to providers that declared the
capability.

A failing provider never takes the others down: every call is isolated and
logged, and the failing provider simply contributes nothing.
"""
import logging
from abc import ABC
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional

from .models import AudioFeatures, Track

logger = logging.getLogger(__name__)


class ProviderCapability(str, Enum):
    SIMILAR_TRACKS = "similar_tracks"
    AUDIO_FEATURES = "audio_features"
    TRACK_SCORE = "track_score"


_CAPABILITY_METHODS = {
    ProviderCapability.SIMILAR_TRACKS: "get_similar_tracks",
    ProviderCapability.AUDIO_FEATURES: "get_audio_features",
    ProviderCapability.TRACK_SCORE: "get_track_score",
}


class FeatureProvider(ABC):
    """
    Base class for feature providers.

    Subclasses set `name` and `capabilities` and override the method for each
    declared capability. Methods may raise; the registry isolates failures.
    """

    name: str = "provider"
    capabilities: FrozenSet[ProviderCapability] = frozenset()

    def get_similar_tracks(self, track_id: str, limit: int = 20) -> List[str]:
        raise NotImplementedError

    def get_audio_features(self, track_id: str) -> Optional[AudioFeatures]:
        raise NotImplementedError

    def get_track_score(self, track: Track) -> Optional[float]:
        raise NotImplementedError


def _implements(provider: FeatureProvider, capability: ProviderCapability) -> bool:
    method = _CAPABILITY_METHODS[capability]
    return getattr(type(provider), method) is not getattr(FeatureProvider, method)


class ProviderRegistry:
    """Ordered set of registered providers, keyed by name."""

    def __init__(self) -> None:
        self._providers: Dict[str, FeatureProvider] = {}

    def register(self, provider: FeatureProvider) -> None:
        """
        Register a provider.

        Raises:
            ValueError: If a declared capability is not implemented or the
                name is already taken
        """
        if provider.name in self._providers:
            raise ValueError(f"Provider '{provider.name}' is already registered")
        capabilities = frozenset(ProviderCapability(c) for c in provider.capabilities)
        missing = [c.value for c in capabilities if not _implements(provider, c)]
        if missing:
            raise ValueError(
                f"Provider '{provider.name}' declares unimplemented capabilities: {', '.join(missing)}"
            )
        provider.capabilities = capabilities
        self._providers[provider.name] = provider
        logger.info(
            f"Registered provider '{provider.name}' "
            f"({', '.join(sorted(c.value for c in capabilities)) or 'no capabilities'})"
        )

    def unregister(self, name: str) -> None:
        self._providers.pop(name, None)

    def __len__(self) -> int:
        return len(self._providers)

    @property
    def names(self) -> List[str]:
        return list(self._providers)

    def providers_with(self, capability: ProviderCapability) -> List[FeatureProvider]:
        return [p for p in self._providers.values() if capability in p.capabilities]

    def similar_tracks(self, track_id: str, limit: int = 20) -> Dict[str, List[str]]:
        """Similar ids per provider; failing providers are omitted."""
        results: Dict[str, List[str]] = {}
        for provider in self.providers_with(ProviderCapability.SIMILAR_TRACKS):
            try:
                ids = provider.get_similar_tracks(track_id, limit)
            except Exception as e:
                logger.warning(
                    f"Provider '{provider.name}' similar-tracks failed for {track_id}: {e}"
                )
                continue
            results[provider.name] = [str(i) for i in (ids or [])][:limit]
        return results

    def audio_features(self, track_id: str) -> Optional[AudioFeatures]:
        """First non-empty audio features from any provider, in registration order."""
        for provider in self.providers_with(ProviderCapability.AUDIO_FEATURES):
            try:
                features = provider.get_audio_features(track_id)
            except Exception as e:
                logger.warning(
                    f"Provider '{provider.name}' audio-features failed for {track_id}: {e}"
                )
                continue
            if features is not None and not features.is_empty():
                return features
        return None

    def track_scores(self, tracks: Iterable[Track]) -> Dict[str, float]:
        """
        Mean 0-100 provider score per track id.

        Tracks no provider scored are absent from the result.
        """
        providers = self.providers_with(ProviderCapability.TRACK_SCORE)
        if not providers:
            return {}
        totals: Dict[str, List[float]] = {}
        for track in tracks:
            for provider in providers:
                try:
                    value = provider.get_track_score(track)
                except Exception as e:
                    logger.warning(
                        f"Provider '{provider.name}' track-score failed for {track.id}: {e}"
                    )
                    continue
                if value is None:
                    continue
                totals.setdefault(track.id, []).append(max(0.0, min(100.0, float(value))))
        return {tid: sum(vals) / len(vals) for tid, vals in totals.items()}

