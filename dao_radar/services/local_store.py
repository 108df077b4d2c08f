# Client-local key/value stores for the seen-set and browse cache
import json
import os
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from dao_radar.utils.logger import logger


class LocalStore(ABC):
    """
    Whole-value key/value store.

    Writes always replace the complete value stored under a key, so two passes
    writing the same key never interleave partial state.
    """

    @abstractmethod
    def read(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def write(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    def read_fresh(self, key: str, ttl_seconds: float, clock: Callable[[], float] = time.time) -> Optional[Any]:
        """Read a value written with ``write_timestamped`` if it is younger than the TTL."""
        entry = self.read(key)
        if not isinstance(entry, dict) or "stored_at" not in entry:
            return None
        if clock() - float(entry["stored_at"]) >= ttl_seconds:
            logger.info(f"[LocalStore] Entry expired: {key}")
            self.delete(key)
            return None
        return entry.get("data")

    def write_timestamped(self, key: str, value: Any, clock: Callable[[], float] = time.time) -> None:
        self.write(key, {"data": value, "stored_at": clock()})


class MemoryStore(LocalStore):
    """Process-lifetime store."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def read(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        # Values are held serialised so callers never share mutable state with the store
        return json.loads(raw) if raw is not None else None

    def write(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore(LocalStore):
    """
    Store persisted as one JSON document on disk.

    Every write rewrites the document through a temporary file and
    ``os.replace``, so readers see either the old or the new blob.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as e:
            logger.warning(f"[LocalStore] Ignoring corrupt store file {self.path}: {e}")
            return {}
        return document if isinstance(document, dict) else {}

    def _save(self, document: Dict[str, Any]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".dao-radar-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def read(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._load().get(key)

    def write(self, key: str, value: Any) -> None:
        with self._lock:
            document = self._load()
            document[key] = value
            self._save(document)

    def delete(self, key: str) -> None:
        with self._lock:
            document = self._load()
            if key in document:
                del document[key]
                self._save(document)


def create_local_store(path: Optional[str]) -> LocalStore:
    if path:
        logger.info(f"[LocalStore] Using JSON file store at {path}")
        return JsonFileStore(path)
    return MemoryStore()
