import unittest

from interfaces.types import (
    NetworkAverages,
    NodeRecord,
    ScoreBreakdown,
    STATUS_ACTIVE,
    STATUS_OFFLINE,
)
from monitor.recommendations import SEVERITY_ORDER, recommend

LATEST = "0.8.0"


def breakdown(total):
    return ScoreBreakdown(
        total=total,
        uptime=0,
        response_time=0,
        storage=0,
        version=0,
        reliability=0,
        grade="",
        color="",
    )


class TestRecommend(unittest.TestCase):

    def test_struggling_node_gets_every_matching_rule(self):
        """Offline, low uptime, busy storage and an old version all fire."""
        node = NodeRecord(
            pubkey="p" * 44,
            version="0.7.0",
            uptime_seconds=150_000,
            storage_usage_percent=85,
            status=STATUS_OFFLINE,
        )
        averages = NetworkAverages(avg_uptime=280_000, avg_storage_committed=0, active_node_count=0)

        recommendations = recommend(node, breakdown(37), averages, LATEST)

        self.assertEqual(
            [(r.category, r.severity) for r in recommendations],
            [
                ("connectivity", "critical"),
                ("uptime", "high"),
                ("storage", "medium"),
                ("version", "medium"),
                ("performance", "medium"),
            ],
        )
        self.assertEqual(
            recommendations[1].message, "Uptime is 50.0%, below recommended 95%+."
        )
        self.assertEqual(
            recommendations[3].message, "Running version 0.7.0, latest is 0.8.0."
        )

    def test_critical_storage_excludes_warning(self):
        node = NodeRecord(
            pubkey="p" * 44,
            version=LATEST,
            uptime_seconds=300_000,
            storage_usage_percent=95,
            status=STATUS_ACTIVE,
        )
        averages = NetworkAverages(avg_uptime=300_000)

        storage = [r for r in recommend(node, breakdown(80), averages, LATEST) if r.category == "storage"]

        self.assertEqual(len(storage), 1)
        self.assertEqual(storage[0].severity, "high")
        self.assertIn("95.0%", storage[0].message)

    def test_excellent_private_node_gets_info_only(self):
        node = NodeRecord(
            pubkey="p" * 44,
            version=LATEST,
            uptime_seconds=300_000,
            storage_usage_percent=10,
            status=STATUS_ACTIVE,
            is_private=True,
        )
        averages = NetworkAverages(avg_uptime=300_000)

        recommendations = recommend(node, breakdown(96), averages, LATEST)

        self.assertEqual([r.category for r in recommendations], ["general", "visibility"])
        self.assertEqual(
            recommendations[0].message, "Excellent performance! XandScore: 96.0/100"
        )

    def test_version_rule_disabled_without_latest(self):
        node = NodeRecord(pubkey="p" * 44, version="0.1.0", uptime_seconds=300_000, status=STATUS_ACTIVE)
        recommendations = recommend(node, breakdown(70), NetworkAverages(), None)
        self.assertNotIn("version", [r.category for r in recommendations])

    def test_output_is_sorted_by_severity(self):
        node = NodeRecord(
            pubkey="p" * 44,
            version="0.6.x",
            uptime_seconds=1_000,
            storage_usage_percent=99,
            status=STATUS_OFFLINE,
            is_private=True,
        )
        recommendations = recommend(node, breakdown(95), NetworkAverages(avg_uptime=300_000), LATEST)

        ranks = [SEVERITY_ORDER[r.severity] for r in recommendations]
        self.assertEqual(ranks, sorted(ranks))
        self.assertEqual(recommendations[0].severity, "critical")
        self.assertEqual(recommendations[-1].severity, "info")


if __name__ == "__main__":
    unittest.main()
