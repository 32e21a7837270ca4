import os
from dataclasses import replace
from typing import Any, Dict, List, Optional

import httpx
from fiber.logging_utils import get_logger

from interfaces.types import NodeRecord, parse_node_record
from monitor.cache import CLUSTER_NODES_KEY, MemoryResultCache, ResultCache
from monitor.errors import UpstreamUnavailableError

logger = get_logger(__name__)

DEFAULT_PRPC_ENDPOINT = "http://173.212.203.145:6000/rpc"
CLUSTER_TIMEOUT_SECONDS = 5
NODE_TIMEOUT_SECONDS = 3
CLUSTER_CACHE_TTL_SECONDS = 30


def rpc_payload(method: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": 1, "method": method, "params": []}


class PRPCClient:
    """
    JSON-RPC client for the gossip endpoint and public pods.

    The raw ``get-pods-with-stats`` pod list is cached; records are parsed
    on every read so node status always reflects the current time.
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        cache: Optional[ResultCache] = None,
        cache_ttl: int = CLUSTER_CACHE_TTL_SECONDS,
        timeout: float = CLUSTER_TIMEOUT_SECONDS,
        node_timeout: float = NODE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        endpoint = endpoint or os.getenv("PRPC_ENDPOINT", DEFAULT_PRPC_ENDPOINT)
        self.endpoint = endpoint.rstrip("/")
        self.cache = cache or MemoryResultCache()
        self.cache_ttl = cache_ttl
        self.timeout = timeout
        self.node_timeout = node_timeout
        self.transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self.transport)

    async def fetch_pods(self) -> List[Dict[str, Any]]:
        """
        Raw pod entries from the gossip endpoint, bypassing the cache.

        :raises UpstreamUnavailableError: on transport failure, non-2xx
            status, JSON-RPC error or malformed body
        """
        try:
            async with self._client(self.timeout) as client:
                response = await client.post(
                    self.endpoint,
                    headers={"Content-Type": "application/json"},
                    json=rpc_payload("get-pods-with-stats"),
                )
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException as e:
            raise UpstreamUnavailableError(f"Request timeout to {self.endpoint}") from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError(f"pRPC request to {self.endpoint} failed: {e}") from e
        except ValueError as e:
            raise UpstreamUnavailableError(f"Invalid JSON from {self.endpoint}") from e

        if not isinstance(body, dict):
            raise UpstreamUnavailableError(f"Unexpected pRPC response from {self.endpoint}")
        if body.get("error"):
            raise UpstreamUnavailableError(f"RPC error: {body['error']}")

        pods = (body.get("result") or {}).get("pods")
        if not isinstance(pods, list):
            raise UpstreamUnavailableError("Invalid pods data: expected array")
        return pods

    @staticmethod
    def parse_pods(pods: List[Any], now_ms: Optional[float] = None) -> List[NodeRecord]:
        records = []
        for pod in pods:
            record = parse_node_record(pod, now_ms)
            if record is None:
                logger.warning("Pod missing pubkey, skipping")
                continue
            records.append(record)
        return records

    async def fetch_cluster_nodes(self) -> List[NodeRecord]:
        """Cached node list; upstream failures propagate."""
        pods = self.cache.get(CLUSTER_NODES_KEY)
        if pods is None:
            pods = await self.fetch_pods()
            self.cache.set(CLUSTER_NODES_KEY, pods, self.cache_ttl)
        return self.parse_pods(pods)

    async def get_cluster_nodes(self) -> List[NodeRecord]:
        """Cached node list; an unreachable endpoint yields an empty list."""
        try:
            return await self.fetch_cluster_nodes()
        except UpstreamUnavailableError as e:
            logger.error(f"getClusterNodes: {e.message}")
            return []

    async def get_node_info(self, pubkey: str) -> Optional[NodeRecord]:
        """
        Look up one node by pubkey (case-insensitive) and, for public
        nodes, attach its ``get-stats`` result as ``details``.

        :return: The node, or None when the pubkey is not in the cluster
        """
        normalized = pubkey.strip().lower()
        nodes = await self.get_cluster_nodes()
        node = next(
            (n for n in nodes if n.pubkey.strip().lower() == normalized), None
        )
        if node is None:
            logger.warning(f"Pod not found: {pubkey}")
            return None

        if not node.is_public:
            return replace(node, is_private=True)

        return await self.fetch_public_pod_details(node)

    async def fetch_public_pod_details(self, node: NodeRecord) -> NodeRecord:
        if not node.ip_address or not node.rpc_port:
            logger.warning(f"Invalid RPC info for pod {node.pubkey}")
            return replace(node, is_private=False, details=None)

        rpc_endpoint = f"http://{node.ip_address}:{node.rpc_port}/rpc"
        try:
            async with self._client(self.node_timeout) as client:
                response = await client.post(
                    rpc_endpoint,
                    headers={"Content-Type": "application/json"},
                    json=rpc_payload("get-stats"),
                )
                # 4xx bodies are still returned to the caller
                if response.status_code >= 500:
                    response.raise_for_status()
                details = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Failed to fetch details for {node.pubkey}: {e}")
            details = None

        return replace(node, is_private=False, details=details)

    def clear_cache(self):
        self.cache.delete(CLUSTER_NODES_KEY)
