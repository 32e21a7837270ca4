from collections import Counter
from typing import Any, Dict, List, Sequence, Tuple

import numpy as np

from interfaces.types import (
    NetworkAverages,
    NodeRecord,
    ScoreBreakdown,
    STATUS_ACTIVE,
    STATUS_OFFLINE,
    STATUS_SYNCING,
    coerce_number,
)

GRADE_RANGES = [
    ("A+ (95-100)", 95),
    ("A (90-94)", 90),
    ("B+ (85-89)", 85),
    ("B (80-84)", 80),
    ("C+ (75-79)", 75),
    ("C (70-74)", 70),
    ("D (60-69)", 60),
    ("F (<60)", float("-inf")),
]

HEALTH_LEVELS = [
    ("excellent", 85, 90, "Network is performing excellently"),
    ("good", 75, 80, "Network is performing well"),
    ("fair", 65, 70, "Network performance is fair"),
]


def compute_network_averages(nodes: Sequence[NodeRecord]) -> NetworkAverages:
    """
    Network-wide means used as the relative baseline for scoring.

    :param nodes: The node set being scored
    :return: NetworkAverages, all zero for an empty set
    """
    if not nodes:
        return NetworkAverages(avg_uptime=0, avg_storage_committed=0, active_node_count=0)

    return NetworkAverages(
        avg_uptime=float(np.mean([coerce_number(node.uptime_seconds) for node in nodes])),
        avg_storage_committed=float(
            np.mean([coerce_number(node.storage_committed) for node in nodes])
        ),
        active_node_count=sum(1 for node in nodes if node.status == STATUS_ACTIVE),
    )


def percentile_rank(value: float, dataset: Sequence[float]) -> float:
    """Share of ``dataset`` at or below ``value``, in percent."""
    if len(dataset) == 0:
        return 0.0
    return float(np.count_nonzero(np.asarray(dataset) <= value) / len(dataset) * 100)


def grade_range(score: float) -> str:
    for label, threshold in GRADE_RANGES:
        if score >= threshold:
            return label
    return GRADE_RANGES[-1][0]


def health_status(avg_score: float, active_percent: float) -> Dict[str, str]:
    for status, min_score, min_active, message in HEALTH_LEVELS:
        if avg_score >= min_score and active_percent >= min_active:
            return {"status": status, "message": message}
    return {"status": "poor", "message": "Network needs attention"}


def _distribution(counts: Counter, key_name: str, total: int) -> List[Dict[str, Any]]:
    return [
        {key_name: key, "count": count, "percentage": count / total * 100}
        for key, count in counts.items()
    ]


def compute_network_stats(
    scored: Sequence[Tuple[NodeRecord, ScoreBreakdown]], top: int = 10
) -> Dict[str, Any]:
    """
    Aggregate statistics over scored nodes: status counts, score and storage
    totals, version and grade distributions, top performers and a health label.
    """
    total = len(scored)
    nodes = [node for node, _ in scored]
    scores = [breakdown.total for _, breakdown in scored]

    active = sum(1 for node in nodes if node.status == STATUS_ACTIVE)
    syncing = sum(1 for node in nodes if node.status == STATUS_SYNCING)
    offline = sum(1 for node in nodes if node.status == STATUS_OFFLINE)

    avg_score = float(np.mean(scores)) if scores else 0.0
    avg_uptime = float(np.mean([coerce_number(n.uptime_seconds) for n in nodes])) if nodes else 0.0
    total_storage = float(sum(coerce_number(node.storage_committed) for node in nodes))
    used_storage = float(sum(coerce_number(node.storage_used) for node in nodes))
    active_percent = active / total * 100 if total else 0.0

    version_counts = Counter(node.version for node in nodes)
    grade_counts = Counter({label: 0 for label, _ in GRADE_RANGES})
    grade_counts.update(grade_range(score) for score in scores)

    ranked = sorted(scored, key=lambda pair: pair[1].total, reverse=True)

    return {
        "network": {
            "total": total,
            "active": active,
            "syncing": syncing,
            "offline": offline,
        },
        "performance": {
            "avgScore": avg_score,
            "avgUptime": avg_uptime,
            "healthStatus": health_status(avg_score, active_percent),
        },
        "storage": {
            "total": total_storage,
            "used": used_storage,
            "available": total_storage - used_storage,
            "utilizationPercent": (
                used_storage / total_storage * 100 if total_storage > 0 else 0.0
            ),
        },
        "distributions": {
            "versions": _distribution(version_counts, "version", total) if total else [],
            "scores": _distribution(grade_counts, "range", total) if total else [],
        },
        "topPerformers": [
            {"id": node.id, "pubkey": node.pubkey, "score": breakdown.total}
            for node, breakdown in ranked[:top]
        ],
    }
