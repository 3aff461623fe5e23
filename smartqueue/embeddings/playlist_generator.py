"""
Playlist Generator - Embedding-based playlists from seed tracks or a taste profile

Methods:
    seed   centroid of the seed embeddings, nearest neighbours blended 60/40
           with co-occurrence partners of the seeds
    taste  nearest neighbours of the user's current taste vector

Both cap tracks per artist (default 2) and never return a seed or an
excluded id.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Literal, Optional, Sequence, Set, Tuple

import numpy as np

from ..models import Track
from ..queue.diversity import apply_diversity_filter
from .cooccurrence import CoOccurrenceConfig, CoOccurrenceMatrix, blend_with_embeddings
from .taste_profile import TasteProfileManager
from .vector_index import VectorIndex

logger = logging.getLogger(__name__)

PlaylistMethod = Literal["seed", "taste"]

CANDIDATE_MULTIPLIER = 3


@dataclass(frozen=True)
class PlaylistOptions:
    method: PlaylistMethod = "seed"
    seed_track_ids: Tuple[str, ...] = ()
    limit: int = 20
    max_per_artist: int = 2
    exclude_ids: Tuple[str, ...] = ()
    use_collaborative: bool = True

    def __post_init__(self):
        if self.method not in ("seed", "taste"):
            raise ValueError(f"Unknown playlist method: {self.method!r}")
        if self.limit < 1:
            raise ValueError(f"limit must be >= 1, got {self.limit}")
        if self.method == "seed" and not self.seed_track_ids:
            raise ValueError("seed method needs at least one seed track id")


@dataclass
class PlaylistTrack:
    track_id: str
    score: float
    reason: str


@dataclass
class GeneratedPlaylist:
    method: PlaylistMethod
    tracks: List[PlaylistTrack] = field(default_factory=list)
    seed_track_ids: List[str] = field(default_factory=list)
    message: Optional[str] = None

    @property
    def track_ids(self) -> List[str]:
        return [t.track_id for t in self.tracks]

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "seed_track_ids": list(self.seed_track_ids),
            "tracks": [
                {"track_id": t.track_id, "score": round(t.score, 4), "reason": t.reason}
                for t in self.tracks
            ],
            "message": self.message,
        }


class PlaylistGenerator:
    """Generates playlists from the vector index and co-occurrence data"""

    def __init__(
        self,
        index: VectorIndex,
        resolve_track: Callable[[str], Optional[Track]],
        cooccurrence_config: Optional[CoOccurrenceConfig] = None,
    ):
        self.index = index
        self.resolve_track = resolve_track
        self.cooccurrence_config = cooccurrence_config or CoOccurrenceConfig()

    def _artist_of(self, item: Tuple[str, float, str]) -> str:
        track = self.resolve_track(item[0])
        if track is None:
            return item[0]
        return track.primary_artist_key or track.id

    def _finish(
        self,
        method: PlaylistMethod,
        ranked: Sequence[Tuple[str, float, str]],
        options: PlaylistOptions,
        seeds: Sequence[str],
    ) -> GeneratedPlaylist:
        selection = apply_diversity_filter(
            items=list(ranked),
            batch_size=options.limit,
            max_per_artist=options.max_per_artist,
            artist_of=self._artist_of,
            backfill=False,
        )
        playlist = GeneratedPlaylist(
            method=method,
            tracks=[PlaylistTrack(tid, score, reason) for tid, score, reason in selection.selected],
            seed_track_ids=list(seeds),
        )
        logger.info(
            f"Generated {method} playlist with {len(playlist.tracks)} track(s) "
            f"({selection.stats['capped_out']} capped by artist)"
        )
        return playlist

    def from_seeds(self, options: PlaylistOptions, cooccurrence: Optional[CoOccurrenceMatrix] = None,
                   now: Optional[float] = None) -> GeneratedPlaylist:
        seeds = list(dict.fromkeys(options.seed_track_ids))
        exclude: Set[str] = set(seeds) | set(options.exclude_ids)
        pool_size = options.limit * CANDIDATE_MULTIPLIER

        vectors = [v for v in (self.index.get_vector(s) for s in seeds) if v is not None]
        embedding_results: List[Tuple[str, float]] = []
        if vectors:
            centroid = np.mean(np.vstack(vectors), axis=0)
            if float(np.linalg.norm(centroid)) > 1e-12:
                embedding_results = self.index.search(centroid, k=pool_size, exclude=exclude)
        else:
            logger.debug(f"None of {len(seeds)} seed(s) are indexed; using co-occurrence only")

        collaborative: List[Tuple[str, float]] = []
        if options.use_collaborative and cooccurrence is not None:
            collaborative = [
                (tid, count)
                for tid, count in cooccurrence.get_co_occurring_many(seeds, limit=pool_size, now=now)
                if tid not in exclude
            ]

        if not embedding_results and not collaborative:
            return GeneratedPlaylist("seed", seed_track_ids=seeds, message="No similar tracks found")

        blended = blend_with_embeddings(
            embedding_results, collaborative, config=self.cooccurrence_config, limit=pool_size
        )
        emb_ids = {tid for tid, _ in embedding_results}
        collab_ids = {tid for tid, _ in collaborative}
        ranked = []
        for tid, score in blended:
            if tid in emb_ids and tid in collab_ids:
                reason = "Sounds similar and often played together"
            elif tid in collab_ids:
                reason = "Often played together"
            else:
                reason = "Sounds similar"
            ranked.append((tid, score, reason))
        return self._finish("seed", ranked, options, seeds)

    def from_taste(self, options: PlaylistOptions, taste: TasteProfileManager,
                   now: Optional[float] = None) -> GeneratedPlaylist:
        now = time.time() if now is None else now
        profile = taste.get_profile(now)
        if profile is None:
            return GeneratedPlaylist(
                "taste",
                message=f"Taste profile needs at least {taste.config.min_interactions} interactions",
            )
        results = self.index.search(
            profile, k=options.limit * CANDIDATE_MULTIPLIER, exclude=set(options.exclude_ids)
        )
        ranked = [(tid, sim, "Matches your taste") for tid, sim in results]
        return self._finish("taste", ranked, options, [])

    def generate(
        self,
        options: PlaylistOptions,
        *,
        taste: Optional[TasteProfileManager] = None,
        cooccurrence: Optional[CoOccurrenceMatrix] = None,
        now: Optional[float] = None,
    ) -> GeneratedPlaylist:
        if options.method == "taste":
            if taste is None:
                raise ValueError("taste method needs a TasteProfileManager")
            return self.from_taste(options, taste, now)
        return self.from_seeds(options, cooccurrence, now)
