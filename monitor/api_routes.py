import asyncio
import time
from typing import Optional, Set

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fiber.logging_utils import get_logger

from interfaces.types import STATUS_ACTIVE, STATUS_OFFLINE, STATUS_SYNCING, coerce_number
from monitor.cache import ALL_NODES_KEY, node_score_key
from monitor.errors import (
    DashboardError,
    NotFoundError,
    UnauthorizedError,
    UpstreamUnavailableError,
    ValidationError,
)
from monitor.network import compute_network_averages, compute_network_stats, percentile_rank
from monitor.recommendations import recommend
from monitor.scorer import score_all_nodes, score_node
from monitor.utils import round_half_up

logger = get_logger(__name__)

MIN_PUBKEY_LENGTH = 32
NODE_STATUS_FILTERS = ("all", STATUS_ACTIVE, STATUS_SYNCING, STATUS_OFFLINE)


def timestamp_ms() -> int:
    return int(time.time() * 1000)


def validate_pubkey(pubkey: str) -> str:
    pubkey = (pubkey or "").strip()
    if len(pubkey) < MIN_PUBKEY_LENGTH:
        raise ValidationError(
            f"Pubkey must be at least {MIN_PUBKEY_LENGTH} characters",
            error="Invalid pubkey format",
        )
    return pubkey


def validate_limit(limit: int) -> int:
    if limit < 1:
        raise ValidationError(f"limit must be a positive integer, got {limit}")
    return limit


def require_cron_token(
    authorization: Optional[str] = Header(None), config=None
) -> None:
    """
    Dependency to check the bearer token of the collection trigger.

    :raises UnauthorizedError: If no token is configured or it does not match.
    """
    expected = getattr(config, "CRON_SECRET_TOKEN", None)
    if not expected or authorization != f"Bearer {expected}":
        raise UnauthorizedError("Missing or invalid bearer token")


async def dashboard_error_handler(request: Request, exc: DashboardError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    error = ValidationError("; ".join(
        f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}"
        for item in exc.errors()
    ))
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(
        f"Unhandled error on {request.method} {request.url.path}: {str(exc)}",
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "message": str(exc)},
    )


class DashboardAPI:
    def __init__(self, dashboard):
        self.dashboard = dashboard
        self.app = FastAPI()
        self._background_tasks: Set[asyncio.Task] = set()
        self.register_exception_handlers()
        self.register_routes()

    def register_exception_handlers(self) -> None:
        self.app.add_exception_handler(DashboardError, dashboard_error_handler)
        self.app.add_exception_handler(RequestValidationError, request_validation_handler)
        self.app.add_exception_handler(Exception, unexpected_error_handler)

    def get_cron_token_dependency(self):
        """Get a dependency function that checks the bearer token against config."""

        def check_cron_token(authorization: Optional[str] = Header(None)):
            return require_cron_token(authorization, config=self.dashboard.config)

        return check_cron_token

    def register_routes(self) -> None:
        self.app.add_api_route(
            "/healthcheck",
            self.healthcheck,
            methods=["GET"],
            tags=["healthcheck"],
        )

        self.app.add_api_route(
            "/pnodes",
            self.list_pnodes,
            methods=["GET"],
            tags=["pnodes"],
        )

        self.app.add_api_route(
            "/pnodes/{pubkey}",
            self.get_pnode,
            methods=["GET"],
            tags=["pnodes"],
        )

        self.app.add_api_route(
            "/xandscore/{pubkey}",
            self.get_xandscore,
            methods=["GET"],
            tags=["scores"],
        )

        self.app.add_api_route(
            "/leaderboard",
            self.get_leaderboard,
            methods=["GET"],
            tags=["scores"],
        )

        self.app.add_api_route(
            "/stats",
            self.get_stats,
            methods=["GET"],
            tags=["network"],
        )

        self.app.add_api_route(
            "/pods-credits",
            self.get_pods_credits,
            methods=["GET"],
            tags=["network"],
        )

        self.app.add_api_route(
            "/analytics/node/{pubkey}",
            self.analytics_node,
            methods=["GET"],
            tags=["analytics"],
        )

        self.app.add_api_route(
            "/analytics/pod/{pod_id}",
            self.analytics_pod,
            methods=["GET"],
            tags=["analytics"],
        )

        self.app.add_api_route(
            "/analytics/overview",
            self.analytics_overview,
            methods=["GET"],
            tags=["analytics"],
        )

        cron_token_dependency = self.get_cron_token_dependency()

        self.app.add_api_route(
            "/analytics/collect",
            self.analytics_collect,
            methods=["POST"],
            tags=["analytics"],
            dependencies=[Depends(cron_token_dependency)],
        )

    async def healthcheck(self):
        return self.dashboard.healthcheck()

    async def _cache_get(self, key: str):
        """Cached value, or None when missing or the cache is unreachable."""
        try:
            return await asyncio.to_thread(self.dashboard.cache.get, key)
        except Exception as e:
            logger.error(f"Failed to read cache entry {key}: {e}")
            return None

    async def _cache_set(self, key: str, value, ttl_seconds: int) -> None:
        try:
            await asyncio.to_thread(self.dashboard.cache.set, key, value, ttl_seconds)
        except Exception as e:
            logger.error(f"Failed to cache {key}: {e}")

    def _schedule_cache_write(self, key: str, value, ttl_seconds: int) -> None:
        task = asyncio.create_task(self._cache_set(key, value, ttl_seconds))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _scored_nodes_payload(self):
        """Scored node list plus summary stats, cached for a short TTL."""
        cached = await self._cache_get(ALL_NODES_KEY)
        if cached is not None:
            return cached

        nodes = await self.dashboard.prpc_client.get_cluster_nodes()
        scored = score_all_nodes(nodes, versions=self.dashboard.versions)

        data = []
        for node, breakdown in scored:
            entry = node.to_dict()
            entry["scoreBreakdown"] = breakdown.to_dict()
            entry["score"] = breakdown.total
            data.append(entry)

        network = compute_network_stats(scored)
        payload = {
            "nodes": data,
            "stats": {
                **network["network"],
                "avgScore": network["performance"]["avgScore"],
                "totalStorage": network["storage"]["total"],
                "usedStorage": network["storage"]["used"],
            },
        }
        if data:
            self._schedule_cache_write(
                ALL_NODES_KEY, payload, self.dashboard.config.NODES_CACHE_TTL_SECONDS
            )
        return payload

    async def list_pnodes(self, status: Optional[str] = None, min_score: Optional[float] = None):
        """All pNodes with XandScores, optionally filtered by status and minimum score."""
        if status is not None and status not in NODE_STATUS_FILTERS:
            raise ValidationError(
                f"status must be one of {', '.join(NODE_STATUS_FILTERS)}, got {status}"
            )

        payload = await self._scored_nodes_payload()
        filtered = payload["nodes"]
        if status and status != "all":
            filtered = [node for node in filtered if node["status"] == status]
        if min_score is not None:
            filtered = [node for node in filtered if node["score"] >= min_score]

        return {
            "success": True,
            "data": filtered,
            "count": len(filtered),
            "stats": payload["stats"],
            "timestamp": timestamp_ms(),
        }

    async def get_pnode(self, pubkey: str):
        """
        Detailed view of one pNode: score breakdown, percentile standing in
        the network and recommendations.
        """
        pubkey = validate_pubkey(pubkey)
        prpc_client = self.dashboard.prpc_client

        node = await prpc_client.get_node_info(pubkey)
        if node is None:
            raise NotFoundError(f"No pNode found with pubkey: {pubkey}", error="pNode not found")

        all_nodes = await prpc_client.get_cluster_nodes()
        if not all_nodes:
            raise UpstreamUnavailableError(
                "Could not retrieve cluster nodes for comparison",
                error="Unable to fetch network data",
            )

        versions = self.dashboard.versions
        averages = compute_network_averages(all_nodes)
        breakdown = score_node(node, averages, versions=versions)

        uptime_percentile = percentile_rank(
            coerce_number(node.uptime_seconds), [coerce_number(n.uptime_seconds) for n in all_nodes]
        )
        storage_percentile = percentile_rank(
            coerce_number(node.storage_committed),
            [coerce_number(n.storage_committed) for n in all_nodes],
        )

        data = node.to_dict()
        data.update(
            {
                "scoreBreakdown": breakdown.to_dict(),
                "score": breakdown.total,
                "networkComparison": {
                    "uptimePercentile": int(round_half_up(uptime_percentile, 0)),
                    "storagePercentile": int(round_half_up(storage_percentile, 0)),
                    "networkAverage": averages.to_dict(),
                    "totalNodes": len(all_nodes),
                },
                "recommendations": [
                    r.to_dict()
                    for r in recommend(node, breakdown, averages, versions.latest_version)
                ],
            }
        )
        return {"success": True, "data": data, "timestamp": timestamp_ms()}

    async def get_xandscore(self, pubkey: str, cache: bool = True):
        pubkey = validate_pubkey(pubkey)
        key = node_score_key(pubkey)

        if cache:
            cached = await self._cache_get(key)
            if cached is not None:
                return {"xandscore": {"score": cached, "pubkey": pubkey}}

        prpc_client = self.dashboard.prpc_client
        node = await prpc_client.get_node_info(pubkey)
        if node is None:
            raise NotFoundError(f"No pNode found with pubkey: {pubkey}", error="pNode not found")

        all_nodes = await prpc_client.get_cluster_nodes()
        if not all_nodes:
            raise UpstreamUnavailableError(error="Unable to fetch network data")

        breakdown = score_node(
            node, compute_network_averages(all_nodes), versions=self.dashboard.versions
        )
        await self._cache_set(key, breakdown.total, self.dashboard.config.NODE_SCORE_CACHE_TTL_SECONDS)

        return {"xandscore": {"score": breakdown.total, "pubkey": pubkey}}

    async def get_leaderboard(self, limit: int = 100, cache: bool = True):
        limit = validate_limit(limit)
        entries, total, cached = await self.dashboard.leaderboard_service.get_leaderboard(
            limit=limit, use_cache=cache
        )
        return {
            "success": True,
            "data": entries,
            "total": total,
            "cached": cached,
            "timestamp": timestamp_ms(),
        }

    async def get_stats(self):
        """Network-wide statistics and distributions."""
        nodes = await self.dashboard.prpc_client.get_cluster_nodes()
        scored = score_all_nodes(nodes, versions=self.dashboard.versions)
        return {
            "success": True,
            "data": compute_network_stats(scored),
            "timestamp": timestamp_ms(),
        }

    async def get_pods_credits(self):
        return await self.dashboard.pod_credits_client.fetch_raw()

    async def analytics_node(
        self,
        pubkey: str,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        period: Optional[str] = None,
    ):
        pubkey = validate_pubkey(pubkey)
        data = await asyncio.to_thread(
            self.dashboard.analytics_service.get_node_history, pubkey, start_time, end_time, period
        )
        response = {"success": True, "data": data}
        if not data["history"]:
            response["message"] = "No historical data available for this node"
        return response

    async def analytics_pod(
        self,
        pod_id: str,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        period: Optional[str] = None,
    ):
        data = await asyncio.to_thread(
            self.dashboard.analytics_service.get_pod_credits_history, pod_id, start_time, end_time, period
        )
        response = {"success": True, "data": data}
        if not data["history"]:
            response["message"] = "No historical data available for this pod"
        return response

    async def analytics_overview(self, limit: int = 10):
        limit = validate_limit(limit)
        data = await asyncio.to_thread(self.dashboard.analytics_service.get_overview, limit)
        return {"success": True, "data": data}

    async def analytics_collect(self):
        """Run one collection cycle now (bearer-token protected)."""
        logger.info("Collection triggered over HTTP")
        result = await self.dashboard.collector.run_collection_cycle()
        return {
            "success": True,
            "message": "Analytics data collected successfully",
            "stats": result.to_dict(),
        }
