from dotenv import load_dotenv

import asyncio
import os
import time
import uvicorn
from typing import Optional

from fiber.logging_utils import get_logger

from db.kv_store import KeyValueStore, MemoryKeyValueStore
from db.postgresql_snapshot_database import init_snapshot_archive
from db.redis_kv_store import RedisKeyValueStore
from db.sqlite_kv_store import SQLiteKeyValueStore
from monitor.analytics import AnalyticsService
from monitor.api_routes import DashboardAPI
from monitor.background_tasks import BackgroundTasks
from monitor.cache import KeyValueResultCache, MemoryResultCache
from monitor.collector import SnapshotCollector
from monitor.config import Config
from monitor.leaderboard import LeaderboardService
from monitor.pod_credits import PodCreditsClient
from monitor.prpc import PRPCClient
from monitor.timeseries_storage import node_metrics_storage, pod_credits_storage
from monitor.version_config import load_version_table
from server import __version__

logger = get_logger(__name__)


def build_kv_store(config: Config) -> KeyValueStore:
    """Key-value backend selected by KV_BACKEND."""
    if config.KV_BACKEND == "redis":
        logger.info(f"Using Redis key-value store at {config.REDIS_URL}")
        return RedisKeyValueStore(redis_url=config.REDIS_URL)
    if config.KV_BACKEND == "memory":
        logger.warning("Using in-memory key-value store; history is lost on restart")
        return MemoryKeyValueStore()
    logger.info(f"Using SQLite key-value store at {config.KV_SQLITE_PATH}")
    return SQLiteKeyValueStore(db_path=config.KV_SQLITE_PATH)


class Dashboard:
    def __init__(self, config: Optional[Config] = None, store: Optional[KeyValueStore] = None):
        """Initialize dashboard"""
        load_dotenv()

        self.config = config or Config()
        self.versions = load_version_table(self.config.VERSION_SCORES_FILE)

        self.store = store or build_kv_store(self.config)
        self.archive = init_snapshot_archive()

        # Upstream responses stay in-process; computed results are shared via the store
        self.prpc_client = PRPCClient(
            endpoint=self.config.PRPC_ENDPOINT,
            cache=MemoryResultCache(),
            cache_ttl=self.config.CLUSTER_CACHE_TTL_SECONDS,
        )
        self.pod_credits_client = PodCreditsClient(url=self.config.POD_CREDITS_URL)
        self.cache = KeyValueResultCache(self.store)

        self.node_storage = node_metrics_storage(self.store, archive=self.archive)
        self.credit_storage = pod_credits_storage(self.store, archive=self.archive)

        self.analytics_service = AnalyticsService(self.node_storage, self.credit_storage)
        self.leaderboard_service = LeaderboardService(
            self.prpc_client,
            self.cache,
            versions=self.versions,
            cache_ttl=self.config.LEADERBOARD_CACHE_TTL_SECONDS,
        )
        self.collector = SnapshotCollector(
            self.prpc_client,
            self.pod_credits_client,
            self.node_storage,
            self.credit_storage,
            score_cache=self.cache,
            versions=self.versions,
            concurrency=self.config.COLLECTION_CONCURRENCY,
            node_timeout=self.config.NODE_TIMEOUT_SECONDS,
        )

        self.background_tasks = BackgroundTasks(dashboard=self)
        self.api = DashboardAPI(dashboard=self)
        self.app = self.api.app

        self.server: Optional[uvicorn.Server] = None
        self.collection_task: Optional[asyncio.Task] = None
        self.server_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the collection loop and the HTTP server"""
        try:
            self.collection_task = asyncio.create_task(
                self.background_tasks.collection_loop(
                    self.config.COLLECTION_CADENCE_SECONDS
                )
            )

            config = uvicorn.Config(
                self.app, host="0.0.0.0", port=self.config.DASHBOARD_PORT, lifespan="on"
            )
            self.server = uvicorn.Server(config)
            self.server_task = asyncio.create_task(self.server.serve())
            logger.info(f"Dashboard API listening on port {self.config.DASHBOARD_PORT}")

        except Exception as e:
            logger.error(f"Failed to start dashboard: {str(e)}")
            raise

    async def stop(self) -> None:
        """Cleanup dashboard resources and shutdown gracefully.

        Stops:
        - HTTP server
        - Background collection loop
        - Key-value store connections
        """
        if self.server:
            self.server.should_exit = True
        if self.collection_task:
            self.collection_task.cancel()
        tasks = [t for t in (self.collection_task, self.server_task) if t is not None]
        await asyncio.gather(*tasks, return_exceptions=True)
        self.store.close()

    def healthcheck(self):
        try:
            return {
                "service": "pnode-analytics",
                "version": __version__,
                "kv_backend": str(self.config.KV_BACKEND),
                "prpc_endpoint": str(self.config.PRPC_ENDPOINT),
                "archive_enabled": self.archive is not None,
                "latest_version": self.versions.latest_version,
                "uptime_seconds": int(time.time()) - int(os.getenv("START_TIME", time.time())),
            }
        except Exception as e:
            logger.error(f"Failed to get dashboard info: {str(e)}")
            return None
