"""Short-lived result caches for upstream data and computed scores."""

import json
import time
from abc import ABC, abstractmethod
from threading import RLock
from typing import Any, Callable, Dict, Optional, Tuple

from fiber.logging_utils import get_logger

from db.kv_store import KeyValueStore

logger = get_logger(__name__)

CLUSTER_NODES_KEY = "cluster:nodes"
ALL_NODES_KEY = "nodes:all"
LEADERBOARD_KEY = "leaderboard"
NODE_SCORE_PREFIX = "xandscore:"


def node_score_key(pubkey: str) -> str:
    return f"{NODE_SCORE_PREFIX}{pubkey}"


class ResultCache(ABC):
    """Abstract TTL cache of JSON-compatible values."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]: ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...

    @abstractmethod
    def clear(self) -> None: ...


class MemoryResultCache(ResultCache):
    """In-process cache; expired entries are dropped when read."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.lock = RLock()
        self._entries: Dict[str, Tuple[Any, float]] = {}

    def get(self, key):
        with self.lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self.clock():
                del self._entries[key]
                return None
            return value

    def set(self, key, value, ttl_seconds):
        with self.lock:
            self._entries[key] = (value, self.clock() + ttl_seconds)

    def delete(self, key):
        with self.lock:
            self._entries.pop(key, None)

    def clear(self):
        with self.lock:
            self._entries.clear()


class KeyValueResultCache(ResultCache):
    """
    Cache stored as JSON strings in a KeyValueStore, so cached results are
    shared by every process using the same Redis or SQLite backend.
    """

    def __init__(self, store: KeyValueStore, prefix: str = "cache:"):
        self.store = store
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key):
        raw = self.store.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Dropping undecodable cache entry {key}")
            self.store.delete(self._key(key))
            return None

    def set(self, key, value, ttl_seconds):
        self.store.set(self._key(key), json.dumps(value), ex=max(1, int(ttl_seconds)))

    def delete(self, key):
        self.store.delete(self._key(key))

    def clear(self):
        names = self.store.keys(f"{self.prefix}*")
        if names:
            self.store.delete(*names)
