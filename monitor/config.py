import os
from fiber.logging_utils import get_logger

logger = get_logger(__name__)

KV_BACKENDS = ("sqlite", "redis", "memory")


def _env_int(name, default):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}, using default: {default}")
        return default


class Config:
    """Service settings read from the environment (and .env via load_dotenv)."""

    def __init__(self):
        self.PRPC_ENDPOINT = os.getenv("PRPC_ENDPOINT", "http://173.212.203.145:6000/rpc")
        self.POD_CREDITS_URL = os.getenv(
            "POD_CREDITS_URL", "https://podcredits.xandeum.network/api/pods-credits"
        )

        self.KV_BACKEND = os.getenv("KV_BACKEND", "sqlite").lower()
        if self.KV_BACKEND not in KV_BACKENDS:
            logger.warning(f"Unknown KV_BACKEND '{self.KV_BACKEND}', using sqlite")
            self.KV_BACKEND = "sqlite"
        self.KV_SQLITE_PATH = os.getenv("KV_SQLITE_PATH", "./pnode_analytics.db")
        self.REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")

        self.DASHBOARD_PORT = _env_int("DASHBOARD_PORT", 8000)
        self.CRON_SECRET_TOKEN = os.getenv("CRON_SECRET_TOKEN")

        self.COLLECTION_CADENCE_SECONDS = _env_int("COLLECTION_CADENCE_SECONDS", 300)
        self.COLLECTION_CONCURRENCY = max(1, _env_int("COLLECTION_CONCURRENCY", 10))
        self.NODE_TIMEOUT_SECONDS = _env_int("NODE_TIMEOUT_SECONDS", 10)

        self.CLUSTER_CACHE_TTL_SECONDS = _env_int("CLUSTER_CACHE_TTL_SECONDS", 30)
        self.NODES_CACHE_TTL_SECONDS = _env_int("NODES_CACHE_TTL_SECONDS", 30)
        self.LEADERBOARD_CACHE_TTL_SECONDS = _env_int("LEADERBOARD_CACHE_TTL_SECONDS", 30)
        self.NODE_SCORE_CACHE_TTL_SECONDS = _env_int("NODE_SCORE_CACHE_TTL_SECONDS", 60)

        self.VERSION_SCORES_FILE = os.getenv("VERSION_SCORES_FILE")
