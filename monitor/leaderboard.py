import asyncio
from typing import List, Optional, Sequence, Set, Tuple

from fiber.logging_utils import get_logger

from interfaces.types import NodeRecord, RankedEntry, ScoreBreakdown
from monitor.cache import LEADERBOARD_KEY, ResultCache
from monitor.scorer import score_all_nodes
from monitor.version_config import VersionScoreTable

logger = get_logger(__name__)

LEADERBOARD_CACHE_TTL_SECONDS = 30


def rank_nodes(scored: Sequence[Tuple[NodeRecord, ScoreBreakdown]]) -> List[RankedEntry]:
    """
    Rank scored nodes by total, highest first.

    The sort is stable and ranks are ``index + 1``, so equal scores get
    consecutive ranks in input order.
    """
    ordered = sorted(scored, key=lambda pair: pair[1].total, reverse=True)
    return [
        RankedEntry(
            pubkey=node.pubkey,
            score=breakdown.total,
            uptime=node.uptime_seconds,
            storage=node.storage_committed,
            status=node.status,
            version=node.version,
            rank=index + 1,
        )
        for index, (node, breakdown) in enumerate(ordered)
    ]


class LeaderboardService:
    def __init__(
        self,
        prpc_client,
        cache: ResultCache,
        versions: Optional[VersionScoreTable] = None,
        cache_ttl: int = LEADERBOARD_CACHE_TTL_SECONDS,
    ):
        self.prpc_client = prpc_client
        self.cache = cache
        self.versions = versions
        self.cache_ttl = cache_ttl
        self._background_tasks: Set[asyncio.Task] = set()

    async def _cached_entries(self) -> Optional[List[dict]]:
        try:
            cached = await asyncio.to_thread(self.cache.get, LEADERBOARD_KEY)
        except Exception as e:
            logger.error(f"Failed to read cached leaderboard: {e}")
            return None
        return cached if isinstance(cached, list) else None

    async def _write_cache(self, entries: List[dict]) -> None:
        try:
            await asyncio.to_thread(self.cache.set, LEADERBOARD_KEY, entries, self.cache_ttl)
        except Exception as e:
            logger.error(f"Failed to cache leaderboard: {e}")

    def _schedule_cache_write(self, entries: List[dict]) -> None:
        task = asyncio.create_task(self._write_cache(entries))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def get_leaderboard(self, limit: int = 100, use_cache: bool = True):
        """
        Ranked leaderboard, read through the cache.

        :return: (entries as dicts truncated to ``limit``, total ranked, cached)
        """
        if use_cache:
            cached = await self._cached_entries()
            if cached is not None:
                return cached[:limit], len(cached), True

        nodes = await self.prpc_client.get_cluster_nodes()
        if not nodes:
            return [], 0, False

        entries = [entry.to_dict() for entry in rank_nodes(score_all_nodes(nodes, versions=self.versions))]
        self._schedule_cache_write(entries)
        return entries[:limit], len(entries), False

    async def wait_for_background_tasks(self):
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
