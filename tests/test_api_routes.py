import time
from types import SimpleNamespace

import pytest
import redis
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, Mock

from db.kv_store import MemoryKeyValueStore
from interfaces.types import (
    CollectionResult,
    CreditSnapshot,
    NodeRecord,
    STATUS_ACTIVE,
    STATUS_OFFLINE,
)
from monitor.analytics import AnalyticsService
from monitor.api_routes import DashboardAPI
from monitor.cache import KeyValueResultCache, MemoryResultCache, node_score_key
from monitor.errors import UpstreamUnavailableError
from monitor.leaderboard import LeaderboardService
from monitor.timeseries_storage import node_metrics_storage, pod_credits_storage
from monitor.version_config import VersionScoreTable

TOKEN = "cron-secret"
ONLINE = "a" * 44
OFFLINE = "b" * 44


def node(pubkey, status, uptime):
    return NodeRecord(
        pubkey=pubkey,
        version="0.8.0",
        uptime_seconds=uptime,
        last_seen_ms=time.time() * 1000 if status == STATUS_ACTIVE else 0,
        storage_committed=1_000,
        storage_used=100,
        storage_usage_percent=10,
        status=status,
    )


@pytest.fixture
def nodes():
    return [node(ONLINE, STATUS_ACTIVE, 300_000), node(OFFLINE, STATUS_OFFLINE, 1_000)]


@pytest.fixture
def dashboard(nodes):
    prpc_client = Mock()
    prpc_client.get_cluster_nodes = AsyncMock(return_value=nodes)
    prpc_client.get_node_info = AsyncMock(
        side_effect=lambda pubkey: next((n for n in nodes if n.pubkey == pubkey), None)
    )

    pod_credits_client = Mock()
    pod_credits_client.fetch_raw = AsyncMock(return_value={"pods_credits": [{"pod_id": "pod-1", "credits": 3}]})

    store = MemoryKeyValueStore()
    cache = MemoryResultCache()
    node_storage = node_metrics_storage(store)
    credit_storage = pod_credits_storage(store)

    collector = Mock()
    collector.run_collection_cycle = AsyncMock(
        return_value=CollectionResult(nodes_processed=2, pods_processed=1, timestamp_ms=123)
    )

    return SimpleNamespace(
        config=SimpleNamespace(
            CRON_SECRET_TOKEN=TOKEN,
            NODES_CACHE_TTL_SECONDS=30,
            NODE_SCORE_CACHE_TTL_SECONDS=60,
        ),
        prpc_client=prpc_client,
        pod_credits_client=pod_credits_client,
        cache=cache,
        versions=VersionScoreTable(),
        leaderboard_service=LeaderboardService(prpc_client, cache),
        analytics_service=AnalyticsService(node_storage, credit_storage),
        node_storage=node_storage,
        credit_storage=credit_storage,
        collector=collector,
        healthcheck=lambda: {"service": "pnode-analytics"},
    )


@pytest.fixture
def client(dashboard):
    return TestClient(DashboardAPI(dashboard).app)


class TestNodeRoutes:
    def test_healthcheck(self, client):
        response = client.get("/healthcheck")
        assert response.status_code == 200
        assert response.json() == {"service": "pnode-analytics"}

    def test_list_pnodes(self, client):
        body = client.get("/pnodes").json()

        assert body["success"] is True
        assert body["count"] == 2
        assert body["stats"]["total"] == 2
        assert body["stats"]["active"] == 1
        assert body["stats"]["offline"] == 1
        assert body["data"][0]["id"] == f"pnode-{ONLINE[:8]}"
        assert "scoreBreakdown" in body["data"][0]

    def test_list_pnodes_filters(self, client):
        active = client.get("/pnodes", params={"status": "active"}).json()
        assert [n["pubkey"] for n in active["data"]] == [ONLINE]

        strong = client.get("/pnodes", params={"min_score": 90}).json()
        assert all(n["score"] >= 90 for n in strong["data"])

    def test_list_pnodes_rejects_unknown_status(self, client):
        response = client.get("/pnodes", params={"status": "sleeping"})

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_malformed_query_is_a_400(self, client):
        response = client.get("/pnodes", params={"min_score": "lots"})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    def test_pnode_detail(self, client):
        body = client.get(f"/pnodes/{ONLINE}").json()
        data = body["data"]

        assert body["success"] is True
        assert data["pubkey"] == ONLINE
        assert data["networkComparison"]["uptimePercentile"] == 100
        assert data["networkComparison"]["totalNodes"] == 2
        assert data["scoreBreakdown"]["total"] == data["score"]
        assert isinstance(data["recommendations"], list)

    def test_pnode_detail_invalid_pubkey(self, client):
        response = client.get("/pnodes/short")

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid pubkey format"

    def test_pnode_detail_not_found(self, client):
        response = client.get(f"/pnodes/{'z' * 44}")

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "pNode not found",
            "message": f"No pNode found with pubkey: {'z' * 44}",
        }

    def test_pnode_detail_without_network(self, client, dashboard):
        dashboard.prpc_client.get_cluster_nodes.return_value = []

        response = client.get(f"/pnodes/{ONLINE}")

        assert response.status_code == 503
        assert response.json()["error"] == "Unable to fetch network data"


class TestScoreRoutes:
    def test_xandscore_is_cached(self, client, dashboard):
        first = client.get(f"/xandscore/{ONLINE}").json()
        score = first["xandscore"]["score"]

        assert first["xandscore"]["pubkey"] == ONLINE
        assert dashboard.cache.get(node_score_key(ONLINE)) == score

        dashboard.cache.set(node_score_key(ONLINE), 12.5, 60)
        assert client.get(f"/xandscore/{ONLINE}").json()["xandscore"]["score"] == 12.5
        fresh = client.get(f"/xandscore/{ONLINE}", params={"cache": "false"}).json()
        assert fresh["xandscore"]["score"] == pytest.approx(score, abs=0.1)

    def test_cache_outage_is_not_fatal(self, client, dashboard):
        store = Mock()
        store.get.side_effect = redis.ConnectionError("Connection refused")
        store.set.side_effect = redis.ConnectionError("Connection refused")
        dashboard.cache = KeyValueResultCache(store)

        listing = client.get("/pnodes")
        score = client.get(f"/xandscore/{ONLINE}")

        assert listing.status_code == 200
        assert listing.json()["count"] == 2
        assert score.status_code == 200
        assert score.json()["xandscore"]["pubkey"] == ONLINE
        assert store.get.called

    def test_leaderboard(self, client):
        body = client.get("/leaderboard", params={"limit": 1}).json()

        assert body["success"] is True
        assert body["total"] == 2
        assert body["cached"] is False
        assert [e["pubkey"] for e in body["data"]] == [ONLINE]
        assert body["data"][0]["rank"] == 1

    def test_leaderboard_rejects_non_positive_limit(self, client):
        assert client.get("/leaderboard", params={"limit": 0}).status_code == 400

    def test_stats(self, client):
        body = client.get("/stats").json()

        assert body["data"]["network"]["total"] == 2
        assert body["data"]["topPerformers"][0]["pubkey"] == ONLINE

    def test_pods_credits_passthrough(self, client):
        assert client.get("/pods-credits").json() == {"pods_credits": [{"pod_id": "pod-1", "credits": 3}]}

    def test_pods_credits_unavailable(self, client, dashboard):
        dashboard.pod_credits_client.fetch_raw.side_effect = UpstreamUnavailableError(
            "Pod credits API returned 502"
        )

        response = client.get("/pods-credits")

        assert response.status_code == 503
        assert response.json()["message"] == "Pod credits API returned 502"


class TestAnalyticsRoutes:
    def test_node_history_without_data(self, client):
        body = client.get(f"/analytics/node/{ONLINE}", params={"period": "1h"}).json()

        assert body["success"] is True
        assert body["data"]["stats"]["dataPoints"] == 0
        assert body["message"] == "No historical data available for this node"

    def test_node_history_rejects_short_pubkey(self, client):
        response = client.get("/analytics/node/short")

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid pubkey format"

    def test_pod_history(self, client, dashboard):
        now = int(time.time() * 1000)
        dashboard.credit_storage.append("pod-1", CreditSnapshot(timestamp_ms=now - 1_000, credits=10, pod_id="pod-1"))
        dashboard.credit_storage.append("pod-1", CreditSnapshot(timestamp_ms=now, credits=15, pod_id="pod-1"))

        body = client.get("/analytics/pod/pod-1", params={"period": "24h"}).json()

        assert "message" not in body
        assert body["data"]["podId"] == "pod-1"
        assert body["data"]["stats"]["dataPoints"] == 2
        assert body["data"]["stats"]["credits"]["change"] == 5

    def test_overview(self, client):
        body = client.get("/analytics/overview").json()

        assert body["success"] is True
        assert body["data"]["nodes"]["total"] == 0
        assert client.get("/analytics/overview", params={"limit": 0}).status_code == 400

    def test_collect_requires_token(self, client, dashboard):
        assert client.post("/analytics/collect").status_code == 401
        assert (
            client.post("/analytics/collect", headers={"Authorization": "Bearer wrong"}).status_code
            == 401
        )
        dashboard.collector.run_collection_cycle.assert_not_awaited()

    def test_collect(self, client):
        response = client.post("/analytics/collect", headers={"Authorization": f"Bearer {TOKEN}"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Analytics data collected successfully",
            "stats": {"nodesProcessed": 2, "podsProcessed": 1, "nodesFailed": 0, "timestamp": 123},
        }

    def test_collect_without_configured_token(self, client, dashboard):
        dashboard.config.CRON_SECRET_TOKEN = None

        response = client.post("/analytics/collect", headers={"Authorization": "Bearer None"})

        assert response.status_code == 401
