import json
import sqlite3
import time
from threading import Lock
from typing import Callable, Iterable, List, Optional, Tuple, Type

import redis
from fiber.logging_utils import get_logger

from db.kv_store import KeyValueStore
from interfaces.types import CreditSnapshot, MetricSnapshot, Snapshot
from monitor.errors import StorageError
from monitor.utils import now_ms

logger = get_logger(__name__)

NODE_METRICS_NAMESPACE = "node:metrics:"
POD_CREDITS_NAMESPACE = "pod:credits:"

DAY_MS = 24 * 60 * 60 * 1000
DEFAULT_RETENTION_MS = 7 * DAY_MS
DEFAULT_TTL_SECONDS = 60 * 24 * 60 * 60

STORE_ERRORS = (sqlite3.Error, redis.RedisError, OSError)

MEMBER_SEPARATOR = "|"
SEQUENCE_WIDTH = 20


class MemberSequence:
    """
    Monotonic, zero-padded member prefixes.

    Seeded from the wall clock in nanoseconds so prefixes stay unique and
    ordered across restarts; strictly increasing within a process.
    """

    def __init__(self):
        self._lock = Lock()
        self._last = 0

    def next(self) -> str:
        with self._lock:
            self._last = max(self._last + 1, time.time_ns())
            return str(self._last).zfill(SEQUENCE_WIDTH)


_sequence = MemberSequence()


def encode_member(snapshot: Snapshot) -> str:
    payload = json.dumps(snapshot.to_dict(), separators=(",", ":"), sort_keys=True)
    return f"{_sequence.next()}{MEMBER_SEPARATOR}{payload}"


def decode_member(member: str, snapshot_type: Type[Snapshot]) -> Snapshot:
    _, _, payload = member.partition(MEMBER_SEPARATOR)
    return snapshot_type.from_dict(json.loads(payload))


class TimeSeriesStorage:
    """
    Append-only, time-ordered snapshots per entity on top of a KeyValueStore.

    Each entity is one sorted set scored by snapshot timestamp. Appends
    refresh the key TTL and prune entries older than the retention horizon;
    the snapshot being appended always survives its own prune.
    """

    def __init__(
        self,
        store: KeyValueStore,
        namespace: str,
        snapshot_type: Type[Snapshot],
        retention_ms: int = DEFAULT_RETENTION_MS,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], int] = now_ms,
        archive=None,
    ):
        if retention_ms <= 0:
            raise ValueError(f"retention_ms must be positive, got {retention_ms}")
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")

        self.store = store
        self.namespace = namespace
        self.snapshot_type = snapshot_type
        self.retention_ms = retention_ms
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.archive = archive

    def key(self, entity_id: str) -> str:
        return f"{self.namespace}{entity_id}"

    def _prune_cutoff(self, snapshot: Snapshot) -> int:
        return min(self.clock() - self.retention_ms, snapshot.timestamp_ms - 1)

    def _queue_append(self, pipe, entity_id: str, snapshot: Snapshot) -> None:
        key = self.key(entity_id)
        pipe.zadd(key, {encode_member(snapshot): snapshot.timestamp_ms})
        pipe.expire(key, self.ttl_seconds)
        pipe.zremrangebyscore(key, "-inf", self._prune_cutoff(snapshot))

    def append(self, entity_id: str, snapshot: Snapshot) -> None:
        """Store one snapshot and apply the retention policy to its entity."""
        self.batch_append([(entity_id, snapshot)])

    def batch_append(self, entries: Iterable[Tuple[str, Snapshot]]) -> int:
        """
        Append many snapshots in one pipelined round trip.

        :param entries: (entity_id, snapshot) pairs
        :return: Number of snapshots written
        """
        entries = list(entries)
        if not entries:
            return 0

        try:
            pipe = self.store.pipeline()
            for entity_id, snapshot in entries:
                self._queue_append(pipe, entity_id, snapshot)
            pipe.execute()
        except STORE_ERRORS as e:
            logger.error(f"Failed to append {len(entries)} snapshots to {self.namespace}*: {e}")
            raise StorageError(f"Failed to store snapshots: {e}") from e

        self._mirror(entries)
        return len(entries)

    def _mirror(self, entries: List[Tuple[str, Snapshot]]) -> None:
        if self.archive is None:
            return
        try:
            self.archive.add_snapshots(self.namespace, entries)
        except Exception as e:
            logger.warning(f"Failed to archive snapshots to PostgreSQL: {e}")

    def _decode(self, members: List[str]) -> List[Snapshot]:
        snapshots = []
        for member in members:
            try:
                snapshots.append(decode_member(member, self.snapshot_type))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping undecodable snapshot in {self.namespace}*: {e}")
        return snapshots

    def range(self, entity_id: str, start_ms: float, end_ms: float) -> List[Snapshot]:
        """Snapshots with start_ms <= timestamp <= end_ms, oldest first."""
        try:
            members = self.store.zrangebyscore(self.key(entity_id), start_ms, end_ms)
        except STORE_ERRORS as e:
            raise StorageError(f"Failed to read history for {entity_id}: {e}") from e
        return self._decode(members)

    def history(self, entity_id: str, start_ms: int, end_ms: int) -> List[Snapshot]:
        """
        Like ``range``, but windows reaching past the retention horizon are
        served from the archive when it holds data for the entity.
        """
        if self.archive is not None and start_ms < self.clock() - self.retention_ms:
            archived = self._archived(entity_id, start_ms, end_ms)
            if archived:
                return archived
        return self.range(entity_id, start_ms, end_ms)

    def _archived(self, entity_id: str, start_ms: int, end_ms: int) -> List[Snapshot]:
        try:
            rows = self.archive.get_snapshots(
                self.namespace, entity_id, start_ms=int(start_ms), end_ms=int(end_ms)
            )
        except Exception as e:
            logger.warning(f"Failed to read archived history for {entity_id}: {e}")
            return []

        snapshots = []
        for row in rows:
            try:
                snapshots.append(self.snapshot_type.from_dict(row))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping undecodable archived snapshot for {entity_id}: {e}")
        return snapshots

    def latest(self, entity_id: str) -> Optional[Snapshot]:
        try:
            members = self.store.zrange(self.key(entity_id), -1, -1)
        except STORE_ERRORS as e:
            raise StorageError(f"Failed to read latest snapshot for {entity_id}: {e}") from e
        decoded = self._decode(members)
        return decoded[-1] if decoded else None

    def list_entities(self) -> List[str]:
        try:
            names = self.store.keys(f"{self.namespace}*")
        except STORE_ERRORS as e:
            raise StorageError(f"Failed to list {self.namespace}* keys: {e}") from e
        return sorted(name[len(self.namespace) :] for name in names)

    def delete(self, entity_id: str) -> bool:
        try:
            return self.store.delete(self.key(entity_id)) > 0
        except STORE_ERRORS as e:
            raise StorageError(f"Failed to delete history for {entity_id}: {e}") from e


def node_metrics_storage(store: KeyValueStore, **kwargs) -> TimeSeriesStorage:
    return TimeSeriesStorage(store, NODE_METRICS_NAMESPACE, MetricSnapshot, **kwargs)


def pod_credits_storage(store: KeyValueStore, **kwargs) -> TimeSeriesStorage:
    return TimeSeriesStorage(store, POD_CREDITS_NAMESPACE, CreditSnapshot, **kwargs)
