"""Key-value store backends with Redis-compatible sorted-set primitives.

Method names and argument order follow redis-py so the Redis backend is a
thin delegate and the in-process backends can stand in for it.
"""

import fnmatch
import time
from abc import ABC, abstractmethod
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

Bound = Union[float, int, str]


def parse_score_bound(value: Bound) -> Tuple[float, bool]:
    """
    Parse a Redis score bound ("-inf", "+inf", "(5", 5) into
    ``(score, exclusive)``.
    """
    if isinstance(value, (int, float)):
        return float(value), False

    text = str(value).strip()
    exclusive = text.startswith("(")
    if exclusive:
        text = text[1:]
    if text in ("-inf", "-INF"):
        return float("-inf"), exclusive
    if text in ("+inf", "inf", "+INF", "INF"):
        return float("inf"), exclusive
    return float(text), exclusive


def score_in_range(score: float, low: Tuple[float, bool], high: Tuple[float, bool]) -> bool:
    low_value, low_exclusive = low
    high_value, high_exclusive = high
    above = score > low_value if low_exclusive else score >= low_value
    below = score < high_value if high_exclusive else score <= high_value
    return above and below


def slice_by_rank(items: List[Any], start: int, end: int) -> List[Any]:
    """Redis ZRANGE index semantics: inclusive, negative counts from the end."""
    count = len(items)
    if start < 0:
        start = max(0, count + start)
    if end < 0:
        end = count + end
    if start >= count or start > end:
        return []
    return items[start : min(end, count - 1) + 1]


class KeyValuePipeline:
    """
    Queues write commands and runs them as one batch on ``execute()``.
    Commands return the pipeline so calls can be chained, as in redis-py.
    """

    def __init__(self, store: "KeyValueStore"):
        self.store = store
        self.commands: List[Tuple[str, tuple, dict]] = []

    def _queue(self, name: str, *args, **kwargs) -> "KeyValuePipeline":
        self.commands.append((name, args, kwargs))
        return self

    def set(self, name, value, ex=None):
        return self._queue("set", name, value, ex=ex)

    def delete(self, *names):
        return self._queue("delete", *names)

    def expire(self, name, time):
        return self._queue("expire", name, time)

    def zadd(self, name, mapping):
        return self._queue("zadd", name, mapping)

    def zremrangebyscore(self, name, min, max):
        return self._queue("zremrangebyscore", name, min, max)

    def execute(self) -> List[Any]:
        commands, self.commands = self.commands, []
        return self.store._execute_batch(commands)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.commands = []


class KeyValueStore(ABC):
    """Abstract string + sorted-set store with per-key expiry."""

    @abstractmethod
    def get(self, name: str) -> Optional[str]: ...

    @abstractmethod
    def set(self, name: str, value: str, ex: Optional[int] = None) -> bool: ...

    @abstractmethod
    def delete(self, *names: str) -> int: ...

    @abstractmethod
    def keys(self, pattern: str = "*") -> List[str]: ...

    @abstractmethod
    def expire(self, name: str, time: int) -> bool: ...

    @abstractmethod
    def ttl(self, name: str) -> int: ...

    @abstractmethod
    def zadd(self, name: str, mapping: Dict[str, float]) -> int: ...

    @abstractmethod
    def zrange(self, name: str, start: int, end: int, withscores: bool = False) -> List: ...

    @abstractmethod
    def zrangebyscore(self, name: str, min: Bound, max: Bound, withscores: bool = False) -> List: ...

    @abstractmethod
    def zremrangebyscore(self, name: str, min: Bound, max: Bound) -> int: ...

    @abstractmethod
    def zcard(self, name: str) -> int: ...

    def pipeline(self):
        return KeyValuePipeline(self)

    def _execute_batch(self, commands: List[Tuple[str, tuple, dict]]) -> List[Any]:
        return [getattr(self, name)(*args, **kwargs) for name, args, kwargs in commands]

    def close(self) -> None:
        pass


class MemoryKeyValueStore(KeyValueStore):
    """
    In-process store. Expired keys are dropped lazily on access.
    Suitable for tests and single-process deployments.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.lock = RLock()
        self._strings: Dict[str, str] = {}
        self._sorted: Dict[str, Dict[str, float]] = {}
        self._expiry: Dict[str, float] = {}

    def _purge(self, name: str) -> None:
        expires_at = self._expiry.get(name)
        if expires_at is not None and expires_at <= self.clock():
            self._strings.pop(name, None)
            self._sorted.pop(name, None)
            self._expiry.pop(name, None)

    def _exists(self, name: str) -> bool:
        self._purge(name)
        return name in self._strings or name in self._sorted

    def _ordered(self, name: str) -> List[Tuple[str, float]]:
        members = self._sorted.get(name, {})
        return sorted(members.items(), key=lambda item: (item[1], item[0]))

    def get(self, name):
        with self.lock:
            self._purge(name)
            return self._strings.get(name)

    def set(self, name, value, ex=None):
        with self.lock:
            self._sorted.pop(name, None)
            self._strings[name] = value
            if ex:
                self._expiry[name] = self.clock() + ex
            else:
                self._expiry.pop(name, None)
            return True

    def delete(self, *names):
        with self.lock:
            removed = 0
            for name in names:
                if self._exists(name):
                    removed += 1
                self._strings.pop(name, None)
                self._sorted.pop(name, None)
                self._expiry.pop(name, None)
            return removed

    def keys(self, pattern="*"):
        with self.lock:
            names = list(self._strings) + list(self._sorted)
            return [
                name
                for name in names
                if self._exists(name) and fnmatch.fnmatchcase(name, pattern)
            ]

    def expire(self, name, time):
        with self.lock:
            if not self._exists(name):
                return False
            self._expiry[name] = self.clock() + time
            return True

    def ttl(self, name):
        with self.lock:
            if not self._exists(name):
                return -2
            expires_at = self._expiry.get(name)
            if expires_at is None:
                return -1
            return int(expires_at - self.clock())

    def zadd(self, name, mapping):
        with self.lock:
            self._purge(name)
            self._strings.pop(name, None)
            members = self._sorted.setdefault(name, {})
            added = sum(1 for member in mapping if member not in members)
            members.update({member: float(score) for member, score in mapping.items()})
            return added

    def zrange(self, name, start, end, withscores=False):
        with self.lock:
            self._purge(name)
            items = slice_by_rank(self._ordered(name), start, end)
            return items if withscores else [member for member, _ in items]

    def zrangebyscore(self, name, min, max, withscores=False):
        with self.lock:
            self._purge(name)
            low, high = parse_score_bound(min), parse_score_bound(max)
            items = [
                (member, score)
                for member, score in self._ordered(name)
                if score_in_range(score, low, high)
            ]
            return items if withscores else [member for member, _ in items]

    def zremrangebyscore(self, name, min, max):
        with self.lock:
            self._purge(name)
            members = self._sorted.get(name)
            if not members:
                return 0
            low, high = parse_score_bound(min), parse_score_bound(max)
            doomed = [m for m, score in members.items() if score_in_range(score, low, high)]
            for member in doomed:
                del members[member]
            if not members:
                self._sorted.pop(name, None)
                self._expiry.pop(name, None)
            return len(doomed)

    def zcard(self, name):
        with self.lock:
            self._purge(name)
            return len(self._sorted.get(name, {}))

    def _execute_batch(self, commands):
        with self.lock:
            return super()._execute_batch(commands)

    def clear(self) -> None:
        """Clear all keys (useful for testing)."""
        with self.lock:
            self._strings.clear()
            self._sorted.clear()
            self._expiry.clear()
