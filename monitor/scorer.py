"""
XandScore: composite 0-100 pNode score.

Components (weights sum to 100):
- Uptime (30): cumulative uptime against a fixed full-marks baseline
- Response time (25): gossip freshness, linear decay to zero at 5 minutes
- Storage (20): committed storage relative to the network average
- Version (15): table lookup, see monitor.version_config
- Reliability (10): status, storage headroom and above-average uptime
"""

from typing import List, Optional, Sequence, Tuple

from interfaces.types import (
    NetworkAverages,
    NodeRecord,
    ScoreBreakdown,
    STATUS_ACTIVE,
    STATUS_SYNCING,
    coerce_number,
)
from monitor.network import compute_network_averages
from monitor.utils import clamp, now_ms as current_ms, round_half_up
from monitor.version_config import VersionScoreTable

# Uptime that earns the full 30 points (~3.5 days). Policy value, not derived.
UPTIME_CAP_SECONDS = 300_000
# Staleness at which the response component reaches zero.
FRESHNESS_WINDOW_MS = 300_000

UPTIME_WEIGHT = 30
RESPONSE_WEIGHT = 25
STORAGE_WEIGHT = 20
RELIABILITY_CAP = 10
MAX_SCORE = 100

GRADES = [
    (95, "A+", "green-400"),
    (90, "A", "green-500"),
    (85, "B+", "blue-400"),
    (80, "B", "blue-500"),
    (75, "C+", "yellow-400"),
    (70, "C", "yellow-500"),
    (60, "D", "orange-500"),
]
FAILING_GRADE = ("F", "red-500")

_DEFAULT_VERSIONS = VersionScoreTable()


def uptime_percent(uptime_seconds: float) -> float:
    """Uptime expressed against the full-marks baseline, capped at 100."""
    return min(100.0, coerce_number(uptime_seconds) / UPTIME_CAP_SECONDS * 100)


def get_score_grade(total: float) -> Tuple[str, str]:
    for threshold, grade, color in GRADES:
        if total >= threshold:
            return grade, color
    return FAILING_GRADE


def uptime_score(uptime_seconds: float) -> float:
    return min(UPTIME_WEIGHT, coerce_number(uptime_seconds) / UPTIME_CAP_SECONDS * UPTIME_WEIGHT)


def response_score(last_seen_ms: float, now_ms: float) -> float:
    age_ms = max(0.0, now_ms - coerce_number(last_seen_ms))
    return max(0.0, RESPONSE_WEIGHT * (1 - age_ms / FRESHNESS_WINDOW_MS))


def storage_score(storage_committed: float, avg_storage_committed: float) -> float:
    average = coerce_number(avg_storage_committed)
    if average <= 0:
        return 0.0
    return min(STORAGE_WEIGHT, coerce_number(storage_committed) / average * STORAGE_WEIGHT)


def reliability_score(node: NodeRecord, averages: NetworkAverages) -> float:
    score = 0

    if node.status == STATUS_ACTIVE:
        score += 5
    elif node.status == STATUS_SYNCING:
        score += 2

    usage = clamp(coerce_number(node.storage_usage_percent), 0, 100)
    if usage < 80:
        score += 3
    elif usage < 90:
        score += 1

    if coerce_number(node.uptime_seconds) > coerce_number(averages.avg_uptime):
        score += 2

    return min(RELIABILITY_CAP, score)


def score_node(
    node: NodeRecord,
    averages: NetworkAverages,
    now_ms: Optional[float] = None,
    versions: Optional[VersionScoreTable] = None,
) -> ScoreBreakdown:
    """
    Compute the XandScore breakdown for one node.

    Pure and total: malformed numeric fields count as 0, so the result is
    always within [0, 100] and deterministic for a fixed ``now_ms``.

    :param node: The node to score
    :param averages: Network averages over the node set being scored
    :param now_ms: Reference time for gossip freshness (defaults to now)
    :param versions: Version score table (defaults to the built-in map)
    :return: ScoreBreakdown with every component rounded to 1 decimal
    """
    if now_ms is None:
        now_ms = current_ms()
    versions = versions or _DEFAULT_VERSIONS

    uptime = uptime_score(node.uptime_seconds)
    response = response_score(node.last_seen_ms, now_ms)
    storage = storage_score(node.storage_committed, averages.avg_storage_committed)
    version = versions.score(node.version)
    reliability = reliability_score(node, averages)

    total = round_half_up(
        min(MAX_SCORE, uptime + response + storage + version + reliability)
    )
    grade, color = get_score_grade(total)

    return ScoreBreakdown(
        total=total,
        uptime=round_half_up(uptime),
        response_time=round_half_up(response),
        storage=round_half_up(storage),
        version=round_half_up(version),
        reliability=round_half_up(reliability),
        grade=grade,
        color=color,
    )


def score_all_nodes(
    nodes: Sequence[NodeRecord],
    now_ms: Optional[float] = None,
    versions: Optional[VersionScoreTable] = None,
) -> List[Tuple[NodeRecord, ScoreBreakdown]]:
    """Score a node set, computing the network averages once."""
    if now_ms is None:
        now_ms = current_ms()
    averages = compute_network_averages(nodes)
    return [(node, score_node(node, averages, now_ms, versions)) for node in nodes]
