import asyncio
from fiber.logging_utils import get_logger

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from server.dashboard import Dashboard

logger = get_logger(__name__)

DEFAULT_COLLECTION_CADENCE_SECONDS = 300


class BackgroundTasks:
    def __init__(self, dashboard: "Dashboard"):
        """
        Initialize the BackgroundTasks with necessary components.

        :param dashboard: The dashboard instance owning the collector.
        """
        self.dashboard = dashboard
        self.collector = dashboard.collector

    async def collection_loop(self, cadence_seconds) -> None:
        """Background task to collect and store analytics snapshots"""
        if not cadence_seconds or cadence_seconds <= 0:
            logger.warning(
                f"Invalid collection cadence ({cadence_seconds}), using default: "
                f"{DEFAULT_COLLECTION_CADENCE_SECONDS} seconds"
            )
            cadence_seconds = DEFAULT_COLLECTION_CADENCE_SECONDS

        while True:
            try:
                logger.info("Running collection cycle")
                result = await self.collector.run_collection_cycle()
                logger.info(
                    f"Stored {result.nodes_processed} node and "
                    f"{result.pods_processed} pod snapshots"
                )
                await asyncio.sleep(cadence_seconds)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in collection loop 🚩: {str(e)}")
                retry_delay = max(30, cadence_seconds / 2)
                await asyncio.sleep(retry_delay)
