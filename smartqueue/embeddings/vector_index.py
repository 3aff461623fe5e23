"""
Vector Index
============

Approximate nearest-neighbour search over track embeddings using a
Hierarchical Navigable Small World (HNSW) graph, with an exact brute-force
scan for small corpora.

- Similarity is cosine; vectors are stored unit-normalized so it is a dot
  product.
- Below `brute_force_threshold` elements every search is an exact scan.
- Results are ordered by similarity, ties broken by insertion order.
- Inserts beyond `capacity` raise IndexCapacityError and leave the index
  untouched.
- Entries are never removed from the graph; callers pass an exclusion set.

Inserts take the write side of a readers/writer lock; searches share the
read side, so a search never observes a half-linked node.
"""
import heapq
import logging
import math
import random
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Literal, Optional, Sequence, Set, Tuple

import numpy as np

from ..errors import IndexCapacityError, StorageCorruptionError
from ..logging_utils import format_count

logger = logging.getLogger(__name__)

IndexState = Literal["empty", "building", "ready"]

# Similarities are rounded before ranking so the scan and the graph search
# agree on ties regardless of BLAS summation order.
_SIM_DECIMALS = 12


@dataclass(frozen=True)
class IndexConfig:
    dim: int = 128
    ef_construction: int = 200
    ef_search: int = 50
    m_max: int = 16
    m_max0: int = 32
    capacity: int = 100_000
    brute_force_threshold: int = 1_000
    seed: int = 42

    def __post_init__(self):
        if self.m_max < 2 or self.m_max0 < self.m_max:
            raise ValueError("m_max must be >= 2 and m_max0 >= m_max")
        if self.ef_construction < 1 or self.ef_search < 1:
            raise ValueError("ef_construction and ef_search must be positive")
        if self.capacity < 1:
            raise ValueError("capacity must be positive")


class ReadWriteLock:
    """Many concurrent readers or one writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class VectorIndex:
    """HNSW index keyed by track id."""

    def __init__(self, config: Optional[IndexConfig] = None):
        self.config = config or IndexConfig()
        self._lock = ReadWriteLock()
        self._rng = random.Random(self.config.seed)
        self._level_mult = 1.0 / math.log(self.config.m_max)
        self._reset_structures()

    def _reset_structures(self) -> None:
        self._ids: List[str] = []
        self._id_to_idx: Dict[str, int] = {}
        # Row buffer grown geometrically; rows past len(self._ids) are unused
        self._vectors = np.zeros((0, self.config.dim), dtype=np.float64)
        self._levels: List[int] = []
        # _links[node][layer] -> neighbour indices
        self._links: List[List[List[int]]] = []
        self._entry_point: Optional[int] = None
        self._max_level = -1
        self._state: IndexState = "empty"

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> IndexState:
        return self._state

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, track_id: str) -> bool:
        return track_id in self._id_to_idx

    def get_vector(self, track_id: str) -> Optional[np.ndarray]:
        with self._lock.read():
            idx = self._id_to_idx.get(track_id)
            return None if idx is None else self._vectors[idx].copy()

    # ------------------------------------------------------------------
    # Insert
    # ------------------------------------------------------------------

    def add(self, track_id: str, vector: Sequence[float]) -> None:
        """
        Insert or update one vector.

        Raises:
            IndexCapacityError: index is full and track_id is new
            ValueError: wrong dimensionality or zero vector
        """
        unit = self._prepare(vector)
        with self._lock.write():
            self._state = "building"
            try:
                self._add_locked(track_id, unit)
            finally:
                self._state = "ready" if self._ids else "empty"

    def add_many(self, items: Iterable[Tuple[str, Sequence[float]]]) -> List[str]:
        """
        Insert a batch; stops at capacity.

        Returns the ids that were rejected for capacity.
        """
        prepared = [(tid, self._prepare(vec)) for tid, vec in items]
        rejected: List[str] = []
        with self._lock.write():
            self._state = "building"
            try:
                for tid, unit in prepared:
                    try:
                        self._add_locked(tid, unit)
                    except IndexCapacityError:
                        rejected.append(tid)
            finally:
                self._state = "ready" if self._ids else "empty"
        if rejected:
            logger.warning(
                f"Vector index full ({self.config.capacity:,}); rejected {format_count(len(rejected), 'insert')}"
            )
        return rejected

    def _prepare(self, vector: Sequence[float]) -> np.ndarray:
        arr = np.asarray(vector, dtype=np.float64)
        if arr.shape != (self.config.dim,):
            raise ValueError(f"expected vector of shape ({self.config.dim},), got {arr.shape}")
        norm = float(np.linalg.norm(arr))
        if norm < 1e-12 or not np.isfinite(norm):
            raise ValueError("cannot index a zero or non-finite vector")
        return arr / norm

    def _add_locked(self, track_id: str, unit: np.ndarray) -> None:
        existing = self._id_to_idx.get(track_id)
        if existing is not None:
            self._vectors[existing] = unit
            return

        if len(self._ids) >= self.config.capacity:
            raise IndexCapacityError(self.config.capacity, track_id)

        idx = len(self._ids)
        if idx >= self._vectors.shape[0]:
            grown = np.zeros((max(64, idx * 2), self.config.dim), dtype=np.float64)
            grown[:idx] = self._vectors[:idx]
            self._vectors = grown
        self._vectors[idx] = unit
        self._ids.append(track_id)
        self._id_to_idx[track_id] = idx

        level = self._random_level()
        self._levels.append(level)
        self._links.append([[] for _ in range(level + 1)])

        if self._entry_point is None:
            self._entry_point = idx
            self._max_level = level
            return

        entry = [self._entry_point]
        for layer in range(self._max_level, level, -1):
            nearest = self._search_layer(unit, entry, 1, layer)
            entry = [nearest[0][1]]

        for layer in range(min(level, self._max_level), -1, -1):
            found = self._search_layer(unit, entry, self.config.ef_construction, layer)
            m = self.config.m_max0 if layer == 0 else self.config.m_max
            neighbours = [i for _, i in found[:m]]
            self._links[idx][layer] = neighbours
            for n in neighbours:
                links = self._links[n][layer]
                links.append(idx)
                if len(links) > m:
                    self._links[n][layer] = self._closest(self._vectors[n], links, m)
            entry = [i for _, i in found]

        if level > self._max_level:
            self._max_level = level
            self._entry_point = idx

    def _random_level(self) -> int:
        # 1 - random() lies in (0, 1], keeping log() finite
        return int(-math.log(1.0 - self._rng.random()) * self._level_mult)

    def _closest(self, query: np.ndarray, candidates: List[int], m: int) -> List[int]:
        sims = self._similarities(query, candidates)
        order = sorted(range(len(candidates)), key=lambda k: (-sims[k], candidates[k]))
        return [candidates[k] for k in order[:m]]

    def _similarities(self, query: np.ndarray, indices: Sequence[int]) -> List[float]:
        if not indices:
            return []
        sims = self._vectors[np.asarray(indices, dtype=np.int64)] @ query
        return [float(s) for s in np.round(sims, _SIM_DECIMALS)]

    def _search_layer(
        self,
        query: np.ndarray,
        entry_points: List[int],
        ef: int,
        layer: int,
    ) -> List[Tuple[float, int]]:
        """Beam search on one layer. Returns (similarity, idx) best first."""
        visited: Set[int] = set(entry_points)
        entry_sims = self._similarities(query, entry_points)
        # candidates: max-similarity first, earliest insertion on ties
        candidates = [(-s, i) for s, i in zip(entry_sims, entry_points)]
        heapq.heapify(candidates)
        # results: worst on top (lowest similarity, latest insertion on ties)
        results = [(s, -i) for s, i in zip(entry_sims, entry_points)]
        heapq.heapify(results)
        while len(results) > ef:
            heapq.heappop(results)

        while candidates:
            neg_sim, current = heapq.heappop(candidates)
            if len(results) >= ef and -neg_sim < results[0][0]:
                break
            fresh = [n for n in self._links[current][layer] if n not in visited]
            if not fresh:
                continue
            visited.update(fresh)
            for sim, n in zip(self._similarities(query, fresh), fresh):
                if len(results) < ef or (sim, -n) > results[0]:
                    heapq.heappush(candidates, (-sim, n))
                    heapq.heappush(results, (sim, -n))
                    if len(results) > ef:
                        heapq.heappop(results)

        return sorted(((s, -neg_i) for s, neg_i in results), key=lambda t: (-t[0], t[1]))

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        query: Sequence[float],
        k: int = 10,
        exclude: Optional[Set[str]] = None,
    ) -> List[Tuple[str, float]]:
        """
        Top-k (track_id, similarity) pairs, best first.

        Exact scan below the brute-force threshold, HNSW above it.
        """
        q = self._prepare_query(query)
        if q is None or k <= 0:
            return []
        exclude = exclude or set()
        with self._lock.read():
            if len(self._ids) < self.config.brute_force_threshold:
                return self._brute_force(q, k, exclude)
            return self._hnsw(q, k, exclude)

    def search_brute_force(
        self,
        query: Sequence[float],
        k: int = 10,
        exclude: Optional[Set[str]] = None,
    ) -> List[Tuple[str, float]]:
        q = self._prepare_query(query)
        if q is None or k <= 0:
            return []
        with self._lock.read():
            return self._brute_force(q, k, exclude or set())

    def search_hnsw(
        self,
        query: Sequence[float],
        k: int = 10,
        exclude: Optional[Set[str]] = None,
    ) -> List[Tuple[str, float]]:
        q = self._prepare_query(query)
        if q is None or k <= 0:
            return []
        with self._lock.read():
            return self._hnsw(q, k, exclude or set())

    # Callers hold the read lock.

    def _brute_force(self, q: np.ndarray, k: int, exclude: Set[str]) -> List[Tuple[str, float]]:
        n = len(self._ids)
        if n == 0:
            return []
        sims = self._similarities(q, list(range(n)))
        order = sorted(range(n), key=lambda i: (-sims[i], i))
        out = []
        for i in order:
            if self._ids[i] in exclude:
                continue
            out.append((self._ids[i], sims[i]))
            if len(out) >= k:
                break
        return out

    def _hnsw(self, q: np.ndarray, k: int, exclude: Set[str]) -> List[Tuple[str, float]]:
        if self._entry_point is None:
            return []
        entry = [self._entry_point]
        for layer in range(self._max_level, 0, -1):
            entry = [self._search_layer(q, entry, 1, layer)[0][1]]
        ef = max(self.config.ef_search, k + len(exclude))
        found = self._search_layer(q, entry, ef, 0)
        out = []
        for sim, i in found:
            if self._ids[i] in exclude:
                continue
            out.append((self._ids[i], sim))
            if len(out) >= k:
                break
        return out

    def _prepare_query(self, query: Sequence[float]) -> Optional[np.ndarray]:
        arr = np.asarray(query, dtype=np.float64)
        if arr.shape != (self.config.dim,):
            raise ValueError(f"expected query of shape ({self.config.dim},), got {arr.shape}")
        norm = float(np.linalg.norm(arr))
        if norm < 1e-12:
            return None
        return arr / norm

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_state(self) -> dict:
        with self._lock.read():
            version, internal, gauss = self._rng.getstate()
            return {
                "config": asdict(self.config),
                "ids": list(self._ids),
                "vectors": self._vectors[:len(self._ids)].tolist(),
                "levels": list(self._levels),
                "links": [[list(layer) for layer in node] for node in self._links],
                "entry_point": self._entry_point,
                "max_level": self._max_level,
                "rng_state": [version, list(internal), gauss],
            }

    @classmethod
    def from_state(cls, state: dict, config: Optional[IndexConfig] = None) -> "VectorIndex":
        """
        Rebuild an index from to_state() output.

        Raises:
            StorageCorruptionError: the state is structurally inconsistent
        """
        try:
            cfg = config or IndexConfig(**state["config"])
            index = cls(cfg)
            ids = [str(i) for i in state["ids"]]
            vectors = np.asarray(state["vectors"], dtype=np.float64).reshape(len(ids), cfg.dim)
            levels = [int(v) for v in state["levels"]]
            links = [[[int(n) for n in layer] for layer in node] for node in state["links"]]
            entry_point = state["entry_point"]
            max_level = int(state["max_level"])
            version, internal, gauss = state["rng_state"]
        except (KeyError, TypeError, ValueError) as e:
            raise StorageCorruptionError("index", str(e)) from e

        n = len(ids)
        if len(levels) != n or len(links) != n or len(set(ids)) != n:
            raise StorageCorruptionError("index", "ids, levels and links disagree in length")
        for node, layers in enumerate(links):
            if len(layers) != levels[node] + 1:
                raise StorageCorruptionError("index", f"node {node} has wrong layer count")
            if any(not 0 <= nb < n for layer in layers for nb in layer):
                raise StorageCorruptionError("index", f"node {node} links out of range")
        if n and (entry_point is None or not 0 <= int(entry_point) < n):
            raise StorageCorruptionError("index", "entry point out of range")

        index._ids = ids
        index._id_to_idx = {tid: i for i, tid in enumerate(ids)}
        index._vectors = vectors if n else np.zeros((0, cfg.dim), dtype=np.float64)
        index._levels = levels
        index._links = links
        index._entry_point = int(entry_point) if n else None
        index._max_level = max_level if n else -1
        index._state = "ready" if n else "empty"
        index._rng.setstate((version, tuple(internal), gauss))
        logger.debug(f"Restored vector index with {format_count(n, 'element')}")
        return index
