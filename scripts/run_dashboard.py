import os
import asyncio
import time
import signal
from server.dashboard import Dashboard
from fiber.logging_utils import get_logger

logger = get_logger(__name__)

# Set START_TIME environment variable for uptime tracking
if "START_TIME" not in os.environ:
    os.environ["START_TIME"] = str(int(time.time()))


async def main():
    dashboard = Dashboard()
    shutdown_event = asyncio.Event()

    def signal_handler(signum, frame):
        logger.info(f"🛑 Received signal {signum}, initiating graceful shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        logger.info("🚀 Starting pNode analytics dashboard...")
        await dashboard.start()

        # Give the server a moment to start up
        await asyncio.sleep(1)

        logger.info("✅ Dashboard started successfully. Press Ctrl+C to stop.")
        await shutdown_event.wait()

    except Exception as e:
        logger.error(f"❌ Error during dashboard operation: {e}")
        shutdown_event.set()
    finally:
        logger.info("🛑 Shutting down dashboard...")
        try:
            await dashboard.stop()
            logger.info("✅ Dashboard shutdown complete")
        except Exception as e:
            logger.error(f"❌ Error during shutdown: {e}")


if __name__ == "__main__":
    asyncio.run(main())
