"""
Storage adapters for persisted engine state.

The engine only needs a key/value contract (get/set/delete/clear). Values are
JSON-compatible structures; each adapter decides how they hit disk.
"""
import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import StorageCorruptionError

logger = logging.getLogger(__name__)


class StorageAdapter(ABC):
    """Key/value persistence contract used by the recommendation engine."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the stored value, None if missing.

        Raises StorageCorruptionError when a stored value cannot be decoded.
        """

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    @abstractmethod
    def keys(self) -> List[str]:
        ...


class MemoryStorage(StorageAdapter):
    """In-process storage, mainly for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._data.get(key)
        if raw is None:
            return None
        return _decode(key, raw)

    def set(self, key: str, value: Any) -> None:
        # Stored encoded so callers never share mutable state with the store
        encoded = json.dumps(value)
        with self._lock:
            self._data[key] = encoded

    def set_raw(self, key: str, raw: str) -> None:
        with self._lock:
            self._data[key] = raw

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._data)


class JsonFileStorage(StorageAdapter):
    """Single JSON document on disk, rewritten on every set."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data = self._load()
        logger.info(f"Initialized JSON storage: {self.path} ({len(self._data)} keys)")

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            logger.info("No existing state file found, starting fresh")
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load state file {self.path}: {e}, starting fresh")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"State file {self.path} is not a JSON object, starting fresh")
            return {}
        return data

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, ensure_ascii=False)
        tmp_path.replace(self.path)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = json.loads(json.dumps(value))
            self._save()

    def delete(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._save()

    def clear(self) -> None:
        with self._lock:
            self._data = {}
            self._save()

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._data)


class SqliteStorage(StorageAdapter):
    """Key/value table in a SQLite database."""

    def __init__(self, db_path: str, table: str = "engine_state"):
        self.db_path = str(db_path)
        self.table = table
        self._lock = threading.Lock()
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            self._conn.commit()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT value FROM {self.table} WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        return _decode(key, row[0])

    def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value)
        with self._lock:
            self._conn.execute(
                f"INSERT OR REPLACE INTO {self.table} (key, value) VALUES (?, ?)",
                (key, encoded),
            )
            self._conn.commit()

    def set_raw(self, key: str, raw: str) -> None:
        with self._lock:
            self._conn.execute(
                f"INSERT OR REPLACE INTO {self.table} (key, value) VALUES (?, ?)",
                (key, raw),
            )
            self._conn.commit()

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute(f"DELETE FROM {self.table} WHERE key = ?", (key,))
            self._conn.commit()

    def clear(self) -> None:
        with self._lock:
            self._conn.execute(f"DELETE FROM {self.table}")
            self._conn.commit()

    def keys(self) -> List[str]:
        with self._lock:
            rows = self._conn.execute(f"SELECT key FROM {self.table} ORDER BY key").fetchall()
        return [r[0] for r in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def _decode(key: str, raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError as e:
        raise StorageCorruptionError(key, str(e)) from e


def create_storage(backend: str, path: Optional[str] = None) -> StorageAdapter:
    """Build a storage adapter from config values ("memory", "json", "sqlite")."""
    backend = (backend or "memory").lower()
    if backend == "memory":
        return MemoryStorage()
    if not path:
        raise ValueError(f"Storage backend '{backend}' requires a path")
    if backend == "json":
        return JsonFileStorage(path)
    if backend == "sqlite":
        return SqliteStorage(path)
    raise ValueError(f"Unknown storage backend: {backend}")
