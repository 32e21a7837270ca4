import asyncio
from typing import List, Optional, Sequence, Tuple

from fiber.logging_utils import get_logger

from interfaces.types import (
    CollectionResult,
    CreditSnapshot,
    MetricSnapshot,
    NodeRecord,
    PodCredit,
    ScoreBreakdown,
    coerce_number,
)
from monitor.cache import ResultCache, node_score_key
from monitor.scorer import score_all_nodes
from monitor.timeseries_storage import TimeSeriesStorage
from monitor.utils import now_ms
from monitor.version_config import VersionScoreTable

logger = get_logger(__name__)

DEFAULT_CONCURRENCY = 10
DEFAULT_NODE_TIMEOUT_SECONDS = 10


def hardware_metrics(details) -> dict:
    """cpu/ram fields from a public pod's ``get-stats`` response."""
    if not isinstance(details, dict):
        return {}
    result = details.get("result")
    if not isinstance(result, dict):
        return {}

    metrics = {}
    if result.get("cpu_percent") is not None:
        metrics["cpu_percent"] = coerce_number(result["cpu_percent"])

    if result.get("ram_total") is not None and result.get("ram_used") is not None:
        ram_total = coerce_number(result["ram_total"])
        ram_used = coerce_number(result["ram_used"])
        metrics["ram_total"] = ram_total
        metrics["ram_used"] = ram_used
        if ram_total > 0:
            metrics["ram_percent"] = ram_used / ram_total * 100
    return metrics


class SnapshotCollector:
    def __init__(
        self,
        prpc_client,
        pod_credits_client,
        node_storage: TimeSeriesStorage,
        credit_storage: TimeSeriesStorage,
        score_cache: Optional[ResultCache] = None,
        versions: Optional[VersionScoreTable] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        node_timeout: float = DEFAULT_NODE_TIMEOUT_SECONDS,
        clock=now_ms,
    ):
        """
        Initialize the collector that turns one poll of the network into
        stored snapshots.

        :param prpc_client: Source of node lists and public pod details
        :param pod_credits_client: Source of pod credit balances
        :param node_storage: Time series for node metrics
        :param credit_storage: Time series for pod credits
        :param score_cache: Per-node score cache read for ``xan_score``
        :param concurrency: Maximum concurrent per-node lookups
        :param node_timeout: Seconds allowed for one node's lookup
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.prpc_client = prpc_client
        self.pod_credits_client = pod_credits_client
        self.node_storage = node_storage
        self.credit_storage = credit_storage
        self.score_cache = score_cache
        self.versions = versions
        self.concurrency = concurrency
        self.node_timeout = node_timeout
        self.clock = clock

    def _cached_score(self, pubkey: str) -> Optional[float]:
        if self.score_cache is None:
            return None
        try:
            cached = self.score_cache.get(node_score_key(pubkey))
        except Exception as e:
            logger.debug(f"Score cache lookup failed for {pubkey[:10]}...: {e}")
            return None
        if isinstance(cached, (int, float)) and not isinstance(cached, bool):
            return float(cached)
        return None

    async def build_node_snapshot(
        self, node: NodeRecord, breakdown: ScoreBreakdown, timestamp_ms: int
    ) -> MetricSnapshot:
        snapshot = MetricSnapshot(
            timestamp_ms=timestamp_ms,
            uptime=node.uptime_seconds,
            score=breakdown.total,
            xan_score=self._cached_score(node.pubkey),
            storage_committed=node.storage_committed,
            storage_used=node.storage_used,
            storage_usage_percent=node.storage_usage_percent,
        )

        if node.is_public:
            detailed = await self.prpc_client.fetch_public_pod_details(node)
            for name, value in hardware_metrics(detailed.details).items():
                setattr(snapshot, name, value)

        return snapshot

    async def _collect_node(
        self,
        semaphore: asyncio.Semaphore,
        node: NodeRecord,
        breakdown: ScoreBreakdown,
        timestamp_ms: int,
    ) -> Optional[Tuple[str, MetricSnapshot]]:
        async with semaphore:
            try:
                snapshot = await asyncio.wait_for(
                    self.build_node_snapshot(node, breakdown, timestamp_ms),
                    timeout=self.node_timeout,
                )
                return node.pubkey, snapshot
            except asyncio.TimeoutError:
                logger.warning(
                    f"Node {node.pubkey[:10]}... timed out after {self.node_timeout}s, skipping"
                )
            except Exception as e:
                logger.error(
                    f"Failed to process node {node.pubkey}: {str(e)}", exc_info=True
                )
        return None

    async def collect_and_store_snapshot(
        self, nodes: Sequence[NodeRecord], pod_credits: Sequence[PodCredit]
    ) -> CollectionResult:
        """
        Score ``nodes``, build one snapshot per node and per pod, and store
        them all under a single timestamp.

        Individual node failures are logged and skipped; a storage failure
        raises StorageError.
        """
        timestamp_ms = self.clock()
        scored = score_all_nodes(nodes, now_ms=timestamp_ms, versions=self.versions)

        logger.info(f"Collecting metrics for {len(scored)} nodes")
        semaphore = asyncio.Semaphore(self.concurrency)
        results = await asyncio.gather(
            *(
                self._collect_node(semaphore, node, breakdown, timestamp_ms)
                for node, breakdown in scored
            )
        )

        node_entries = [result for result in results if result is not None]
        collected = {pubkey for pubkey, _ in node_entries}
        failed_pubkeys = [node.pubkey for node, _ in scored if node.pubkey not in collected]

        pod_entries = [
            (pod.pod_id, CreditSnapshot(timestamp_ms=timestamp_ms, credits=pod.credits, pod_id=pod.pod_id))
            for pod in pod_credits
        ]

        await asyncio.gather(
            asyncio.to_thread(self.node_storage.batch_append, node_entries),
            asyncio.to_thread(self.credit_storage.batch_append, pod_entries),
        )

        logger.info("Snapshot collection summary:")
        logger.info(f"  - Total nodes processed: {len(scored)}")
        logger.info(f"  - Stored node snapshots: {len(node_entries)}")
        logger.info(f"  - Failed nodes: {len(failed_pubkeys)}")
        logger.info(f"  - Stored pod credit snapshots: {len(pod_entries)}")
        if scored:
            logger.info(f"  - Success rate: {len(node_entries)/len(scored)*100:.2f}%")
        else:
            logger.info("  - Success rate: N/A (no nodes to process)")

        return CollectionResult(
            nodes_processed=len(node_entries),
            pods_processed=len(pod_entries),
            nodes_failed=len(failed_pubkeys),
            timestamp_ms=timestamp_ms,
            failed_pubkeys=failed_pubkeys,
        )

    async def run_collection_cycle(self) -> CollectionResult:
        """
        Fetch nodes and pod credits from their sources, then store a snapshot.

        :raises UpstreamUnavailableError: when the node list cannot be fetched
        """
        nodes: List[NodeRecord] = await self.prpc_client.fetch_cluster_nodes()
        logger.info(f"Found {len(nodes)} nodes in the cluster")

        pod_credits = await self.pod_credits_client.get_pod_credits()
        if not pod_credits:
            logger.info("No pod credits available this cycle")

        return await self.collect_and_store_snapshot(nodes, pod_credits)
