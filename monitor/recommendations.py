from typing import List, Optional

from interfaces.types import (
    NetworkAverages,
    NodeRecord,
    Recommendation,
    ScoreBreakdown,
    STATUS_OFFLINE,
)
from monitor.scorer import uptime_percent

SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3, "info": 4}

MIN_UPTIME_PERCENT = 90
STORAGE_HIGH_PERCENT = 90
STORAGE_WARN_PERCENT = 80
EXCELLENT_SCORE = 90
UPTIME_AVERAGE_MARGIN = 5


def recommend(
    node: NodeRecord,
    breakdown: ScoreBreakdown,
    averages: NetworkAverages,
    latest_version: Optional[str],
) -> List[Recommendation]:
    """
    Advisory messages for a node, most severe first.

    Every rule is evaluated on its own; the two storage rules are the only
    mutually exclusive pair. Ties keep rule order (stable sort).

    :param node: The node being reviewed
    :param breakdown: Its score breakdown
    :param averages: Network averages the breakdown was computed against
    :param latest_version: Current release; None disables the version rule
    :return: Recommendations sorted critical -> info
    """
    recommendations = []
    node_uptime = uptime_percent(node.uptime_seconds)

    if node.status == STATUS_OFFLINE:
        recommendations.append(
            Recommendation(
                category="connectivity",
                severity="critical",
                message="Node is currently offline.",
                action="Check network connectivity and node service status immediately.",
            )
        )

    if node_uptime < MIN_UPTIME_PERCENT:
        recommendations.append(
            Recommendation(
                category="uptime",
                severity="high",
                message=f"Uptime is {node_uptime:.1f}%, below recommended 95%+.",
                action="Review system logs and ensure stable network connectivity.",
            )
        )

    usage = node.storage_usage_percent
    if usage > STORAGE_HIGH_PERCENT:
        recommendations.append(
            Recommendation(
                category="storage",
                severity="high",
                message=f"Storage usage is critically high at {usage:.1f}%.",
                action="Expand storage capacity or archive old data immediately.",
            )
        )
    elif usage > STORAGE_WARN_PERCENT:
        recommendations.append(
            Recommendation(
                category="storage",
                severity="medium",
                message=f"Storage usage is {usage:.1f}%.",
                action="Plan for storage expansion soon.",
            )
        )

    if latest_version and node.version != latest_version:
        recommendations.append(
            Recommendation(
                category="version",
                severity="medium",
                message=f"Running version {node.version}, latest is {latest_version}.",
                action="Schedule an upgrade to the latest stable release.",
            )
        )

    if node_uptime < uptime_percent(averages.avg_uptime) - UPTIME_AVERAGE_MARGIN:
        recommendations.append(
            Recommendation(
                category="performance",
                severity="medium",
                message="Node uptime is below network average.",
                action="Investigate potential reliability issues.",
            )
        )

    if breakdown.total >= EXCELLENT_SCORE:
        recommendations.append(
            Recommendation(
                category="general",
                severity="info",
                message=f"Excellent performance! XandScore: {breakdown.total:.1f}/100",
                action="Maintain current configuration and monitoring.",
            )
        )

    if node.is_private:
        recommendations.append(
            Recommendation(
                category="visibility",
                severity="info",
                message="Node is private; advanced metrics unavailable.",
                action="Consider making the node public for enhanced monitoring.",
            )
        )

    recommendations.sort(key=lambda r: SEVERITY_ORDER[r.severity])
    return recommendations
