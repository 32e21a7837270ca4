import math
import time
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, asdict, field, fields

ACTIVE_WINDOW_MS = 60_000
SYNCING_WINDOW_MS = 300_000

STATUS_ACTIVE = "active"
STATUS_SYNCING = "syncing"
STATUS_OFFLINE = "offline"


def to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def coerce_number(value: Any, default: float = 0) -> float:
    """
    Coerce a loosely typed payload value to a finite, non-negative number.
    Anything missing, non-numeric, NaN or infinite becomes ``default``.
    """
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return max(0.0, number)


def determine_status(last_seen_ms: float, now_ms: float) -> str:
    """Derive node status from gossip recency."""
    if not last_seen_ms:
        return STATUS_OFFLINE

    age_ms = now_ms - last_seen_ms
    if age_ms < ACTIVE_WINDOW_MS:
        return STATUS_ACTIVE
    if age_ms < SYNCING_WINDOW_MS:
        return STATUS_SYNCING
    return STATUS_OFFLINE


@dataclass
class JSONSerializable:
    def to_dict(self):
        return {to_camel(key): value for key, value in asdict(self).items()}


@dataclass
class NodeRecord(JSONSerializable):
    """A pNode as reported by the gossip RPC, coerced to well-typed fields."""

    pubkey: str
    version: str = "unknown"
    uptime_seconds: float = 0
    last_seen_ms: float = 0
    rpc_port: int = 0
    ip_address: str = ""
    is_public: bool = False
    storage_committed: float = 0
    storage_used: float = 0
    storage_usage_percent: float = 0
    status: str = STATUS_OFFLINE

    # Set by a detail lookup
    is_private: bool = False
    details: Optional[Dict[str, Any]] = None

    @property
    def id(self) -> str:
        return f"pnode-{self.pubkey[:8]}"

    def to_dict(self):
        data = super().to_dict()
        data["id"] = self.id
        return data


def parse_node_record(data: Any, now_ms: Optional[float] = None) -> Optional[NodeRecord]:
    """
    Build a NodeRecord from a raw ``get-pods-with-stats`` pod entry.

    Numeric fields that are missing or malformed default to 0, so scoring
    never has to guard against them. Entries without a pubkey are rejected.

    :param data: Raw pod dictionary
    :param now_ms: Reference time for status derivation (defaults to now)
    :return: NodeRecord, or None when the entry cannot identify a node
    """
    if not isinstance(data, dict):
        return None

    pubkey = data.get("pubkey")
    if not pubkey or not isinstance(pubkey, str):
        return None

    if now_ms is None:
        now_ms = time.time() * 1000

    address = data.get("address") or ""
    ip_address = address.split(":")[0] if isinstance(address, str) else ""

    last_seen_seconds = coerce_number(data.get("last_seen_timestamp"))
    last_seen_ms = last_seen_seconds * 1000

    version = data.get("version")
    if not version or not isinstance(version, str):
        version = "unknown"

    return NodeRecord(
        pubkey=pubkey,
        version=version,
        uptime_seconds=coerce_number(data.get("uptime")),
        last_seen_ms=last_seen_ms,
        rpc_port=int(coerce_number(data.get("rpc_port"))),
        ip_address=ip_address,
        is_public=bool(data.get("is_public")),
        storage_committed=coerce_number(data.get("storage_committed")),
        storage_used=coerce_number(data.get("storage_used")),
        storage_usage_percent=min(
            100.0, coerce_number(data.get("storage_usage_percent"))
        ),
        status=determine_status(last_seen_ms, now_ms),
    )


@dataclass
class NetworkAverages(JSONSerializable):
    avg_uptime: float = 0
    avg_storage_committed: float = 0
    active_node_count: int = 0


@dataclass
class ScoreBreakdown(JSONSerializable):
    total: float
    uptime: float
    response_time: float
    storage: float
    version: float
    reliability: float
    grade: str
    color: str


@dataclass
class Snapshot(JSONSerializable):
    """Base for time-series entries; ``timestamp_ms`` is the sort key."""

    timestamp_ms: int

    def to_dict(self):
        data = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            if key == "timestamp_ms":
                data["timestamp"] = value
            else:
                data[to_camel(key)] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        kwargs = {}
        for item in fields(cls):
            source_key = (
                "timestamp" if item.name == "timestamp_ms" else to_camel(item.name)
            )
            if source_key in data:
                kwargs[item.name] = data[source_key]
        return cls(**kwargs)


@dataclass
class MetricSnapshot(Snapshot):
    uptime: float = 0
    score: float = 0
    xan_score: Optional[float] = None
    storage_committed: Optional[float] = None
    storage_used: Optional[float] = None
    storage_usage_percent: Optional[float] = None
    ram_total: Optional[float] = None
    ram_used: Optional[float] = None
    ram_percent: Optional[float] = None
    cpu_percent: Optional[float] = None


@dataclass
class CreditSnapshot(Snapshot):
    credits: float = 0
    pod_id: str = ""


@dataclass
class PodCredit(JSONSerializable):
    pod_id: str
    credits: float


@dataclass
class MetricStats(JSONSerializable):
    min: float
    max: float
    avg: float
    current: float
    previous: float
    change: float


@dataclass
class CreditStats(MetricStats):
    percent_change: float = 0
    earning_rate: float = 0


@dataclass
class PeriodChange(JSONSerializable):
    current: float
    previous: float
    change: float
    percent_change: float


@dataclass
class Recommendation(JSONSerializable):
    category: str
    severity: str
    message: str
    action: str


@dataclass
class RankedEntry(JSONSerializable):
    pubkey: str
    score: float
    uptime: float
    storage: float
    status: str
    version: str
    rank: int = 0


@dataclass
class CollectionResult(JSONSerializable):
    nodes_processed: int
    pods_processed: int
    nodes_failed: int = 0
    timestamp_ms: int = 0
    failed_pubkeys: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "nodesProcessed": self.nodes_processed,
            "podsProcessed": self.pods_processed,
            "nodesFailed": self.nodes_failed,
            "timestamp": self.timestamp_ms,
        }
