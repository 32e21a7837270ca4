"""
Windowed statistics over stored snapshot history.

Everything except AnalyticsService is pure: functions take an ascending
snapshot sequence and return new values without touching storage.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from fiber.logging_utils import get_logger

from interfaces.types import CreditStats, MetricStats, PeriodChange, Snapshot
from monitor.timeseries_storage import TimeSeriesStorage
from monitor.utils import now_ms as current_ms, round_half_up

logger = get_logger(__name__)

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

# Window lengths in ms; None means "since the epoch"
PERIODS: Dict[str, Optional[int]] = {
    "10min": 10 * MINUTE_MS,
    "1h": HOUR_MS,
    "24h": DAY_MS,
    "7d": 7 * DAY_MS,
    "7days": 7 * DAY_MS,
    "all": None,
}
DEFAULT_PERIOD = "24h"
DEFAULT_HISTORY_WINDOW_MS = 7 * DAY_MS

# Output key -> snapshot attribute
NODE_METRIC_FIELDS = [
    ("uptime", "uptime"),
    ("score", "score"),
    ("xanScore", "xan_score"),
    ("cpuPercent", "cpu_percent"),
    ("ramPercent", "ram_percent"),
    ("storagePercent", "storage_usage_percent"),
]


def _values(history: Sequence[Snapshot], field: str) -> List[float]:
    return [
        getattr(snapshot, field)
        for snapshot in history
        if getattr(snapshot, field, None) is not None
    ]


def summarize(history: Sequence[Snapshot], field: str) -> Optional[MetricStats]:
    """
    min/max/avg/current/previous/change of one field over a history.

    Snapshots that lack the field are skipped, so ``current`` and
    ``previous`` are the last and first snapshots that carry it.
    """
    values = _values(history, field)
    if not values:
        return None

    array = np.asarray(values, dtype=float)
    return MetricStats(
        min=float(array.min()),
        max=float(array.max()),
        avg=float(array.mean()),
        current=values[-1],
        previous=values[0],
        change=values[-1] - values[0],
    )


def summarize_node_history(history: Sequence[Snapshot]) -> Dict[str, Optional[Dict[str, Any]]]:
    metrics = {}
    for key, field in NODE_METRIC_FIELDS:
        stats = summarize(history, field)
        metrics[key] = stats.to_dict() if stats else None
    return metrics


def percent_change(change: float, previous: float) -> float:
    return change / previous * 100 if previous > 0 else 0.0


def summarize_credits(history: Sequence[Snapshot]) -> Optional[CreditStats]:
    """
    Credit balance statistics, plus percent change and credits earned per
    hour between the first and last snapshot.
    """
    base = summarize(history, "credits")
    if base is None:
        return None

    hours = (history[-1].timestamp_ms - history[0].timestamp_ms) / HOUR_MS
    earning_rate = base.change / hours if hours > 0 else 0.0

    return CreditStats(
        min=base.min,
        max=base.max,
        avg=base.avg,
        current=base.current,
        previous=base.previous,
        change=base.change,
        percent_change=round_half_up(percent_change(base.change, base.previous), 2),
        earning_rate=round_half_up(earning_rate, 2),
    )


def resolve_time_range(
    start_ms: Optional[int] = None,
    end_ms: Optional[int] = None,
    period: Optional[str] = None,
    now_ms: Optional[int] = None,
) -> Tuple[int, int]:
    """
    Resolve a query window.

    An explicit start wins over ``period``; unknown period names fall back to
    24h rather than being rejected; with neither, the window is the 7 days
    before ``end``. ``end`` defaults to now.
    """
    if now_ms is None:
        now_ms = current_ms()
    end = end_ms if end_ms is not None else now_ms

    if start_ms is not None:
        return start_ms, end

    if period:
        if period not in PERIODS:
            logger.debug(f"Unknown period '{period}', using {DEFAULT_PERIOD}")
            period = DEFAULT_PERIOD
        window = PERIODS[period]
        return (0 if window is None else now_ms - window), end

    return max(0, end - DEFAULT_HISTORY_WINDOW_MS), end


def change_over_period(
    storage: TimeSeriesStorage,
    entity_id: str,
    period: str,
    value_field: str = "credits",
    now_ms: Optional[int] = None,
) -> Optional[PeriodChange]:
    """Endpoint-to-endpoint change of ``value_field`` within the named period."""
    if period not in PERIODS:
        raise ValueError(f"Unknown period: {period}")
    if now_ms is None:
        now_ms = current_ms()

    window = PERIODS[period]
    start = 0 if window is None else now_ms - window
    values = _values(storage.range(entity_id, start, now_ms), value_field)
    if not values:
        return None

    current, previous = values[-1], values[0]
    change = current - previous
    return PeriodChange(
        current=current,
        previous=previous,
        change=change,
        percent_change=percent_change(change, previous),
    )


def _time_range(history: Sequence[Snapshot], start: int, end: int) -> Dict[str, int]:
    if not history:
        return {"start": start, "end": end}
    return {"start": history[0].timestamp_ms, "end": history[-1].timestamp_ms}


class AnalyticsService:
    """Read side of the analytics store, shaped for the HTTP API."""

    def __init__(
        self,
        node_storage: TimeSeriesStorage,
        credit_storage: TimeSeriesStorage,
        clock=current_ms,
    ):
        self.node_storage = node_storage
        self.credit_storage = credit_storage
        self.clock = clock

    def get_node_history(self, pubkey, start_ms=None, end_ms=None, period=None):
        now = self.clock()
        start, end = resolve_time_range(start_ms, end_ms, period, now)
        history = self.node_storage.history(pubkey, start, end)

        stats = {"dataPoints": len(history), "timeRange": _time_range(history, start, end)}
        if history:
            stats["metrics"] = summarize_node_history(history)
        else:
            logger.debug(f"No stored history for node {pubkey} in [{start}, {end}]")

        return {
            "pubkey": pubkey,
            "history": [snapshot.to_dict() for snapshot in history],
            "stats": stats,
        }

    def credit_changes(self, pod_id, now_ms=None) -> Dict[str, Optional[Dict[str, Any]]]:
        now = now_ms if now_ms is not None else self.clock()
        changes = {}
        for key, period in (("last10min", "10min"), ("last7days", "7days")):
            change = change_over_period(self.credit_storage, pod_id, period, now_ms=now)
            changes[key] = change.to_dict() if change else None
        return changes

    def get_pod_credits_history(self, pod_id, start_ms=None, end_ms=None, period=None):
        now = self.clock()
        start, end = resolve_time_range(start_ms, end_ms, period, now)
        history = self.credit_storage.history(pod_id, start, end)

        stats = {"dataPoints": len(history), "timeRange": _time_range(history, start, end)}
        if history:
            stats["credits"] = summarize_credits(history).to_dict()
            stats["changes"] = self.credit_changes(pod_id, now)

        return {
            "podId": pod_id,
            "history": [snapshot.to_dict() for snapshot in history],
            "stats": stats,
        }

    def get_overview(self, limit: int = 10) -> Dict[str, Any]:
        """Tracked node and pod counts with the latest point for the first ``limit`` of each."""
        now = self.clock()
        pubkeys = self.node_storage.list_entities()
        pod_ids = self.credit_storage.list_entities()

        nodes = []
        for pubkey in pubkeys[:limit]:
            latest = self.node_storage.latest(pubkey)
            nodes.append({"pubkey": pubkey, "latest": latest.to_dict() if latest else None})

        pods = []
        for pod_id in pod_ids[:limit]:
            latest = self.credit_storage.latest(pod_id)
            changes = self.credit_changes(pod_id, now)
            pods.append(
                {
                    "podId": pod_id,
                    "latest": latest.to_dict() if latest else None,
                    "change10min": changes["last10min"],
                    "change7days": changes["last7days"],
                }
            )

        return {
            "nodes": {
                "total": len(pubkeys),
                "tracked": sum(1 for node in nodes if node["latest"] is not None),
                "data": nodes,
            },
            "pods": {
                "total": len(pod_ids),
                "tracked": sum(1 for pod in pods if pod["latest"] is not None),
                "data": pods,
            },
            "timestamp": now,
        }
