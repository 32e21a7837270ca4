import asyncio
import os
from typing import Any, Dict, List, Optional

import aiohttp
from fiber.logging_utils import get_logger

from interfaces.types import PodCredit, coerce_number
from monitor.errors import UpstreamUnavailableError

logger = get_logger(__name__)

DEFAULT_POD_CREDITS_URL = "https://podcredits.xandeum.network/api/pods-credits"
REQUEST_TIMEOUT_SECONDS = 10


class PodCreditsClient:
    def __init__(self, url: Optional[str] = None, timeout: float = REQUEST_TIMEOUT_SECONDS):
        """
        Initialize the client for the pod credits API.

        :param url: Endpoint returning ``{"pods_credits": [...]}``
            (default from env POD_CREDITS_URL)
        :param timeout: Total request timeout in seconds
        """
        self.url = url or os.getenv("POD_CREDITS_URL", DEFAULT_POD_CREDITS_URL)
        self.timeout = timeout

    async def fetch_raw(self) -> Dict[str, Any]:
        """
        The upstream JSON body, unmodified.

        :raises UpstreamUnavailableError: on non-200 status, transport
            failure or a non-JSON body
        """
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(
                    self.url, headers={"Accept": "application/json"}
                ) as response:
                    if response.status != 200:
                        raise UpstreamUnavailableError(
                            f"Pod credits API returned {response.status}"
                        )
                    return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise UpstreamUnavailableError(
                f"Failed to fetch pod credits from {self.url}: {e}"
            ) from e

    @staticmethod
    def parse_pod_credits(body: Any) -> List[PodCredit]:
        if not isinstance(body, dict):
            return []
        credits = []
        for entry in body.get("pods_credits") or []:
            if not isinstance(entry, dict) or not entry.get("pod_id"):
                logger.debug(f"Skipping malformed pod credit entry: {entry}")
                continue
            credits.append(
                PodCredit(pod_id=str(entry["pod_id"]), credits=coerce_number(entry.get("credits")))
            )
        return credits

    async def fetch_pod_credits(self) -> List[PodCredit]:
        return self.parse_pod_credits(await self.fetch_raw())

    async def get_pod_credits(self) -> List[PodCredit]:
        """Pod credit balances; an unreachable API yields an empty list."""
        try:
            credits = await self.fetch_pod_credits()
            logger.debug(f"Fetched credits for {len(credits)} pods")
            return credits
        except UpstreamUnavailableError as e:
            logger.error(f"Failed to fetch pod credits: {e.message}")
            return []
