"""
Standalone worker entry point.

Runs only the job scheduler against the shared record store, so the API
can be deployed with ``RUN_SCHEDULER=false``.
"""
import argparse
import asyncio
import logging
import signal

from docscan.config import settings
from docscan.worker.startup import build_services

logger = logging.getLogger(__name__)


async def run(once: bool = False) -> None:
    """
    Run the scheduler until SIGINT/SIGTERM, or until the backlog is empty
    when ``once`` is set.
    """
    services = build_services()
    scheduler = services.scheduler

    try:
        await services.recognition.load()
    except Exception as e:
        # Pages fail individually until the engine becomes available
        logger.error(f"Failed to load recognition engine: {e}")

    if once:
        scheduler.recover_stale_jobs()
        await scheduler.drain()
        await services.recognition.unload()
        return

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await scheduler.start()
    logger.info("Worker running, waiting for jobs")
    await stop_event.wait()

    logger.info("Shutting down worker")
    await scheduler.stop()
    await services.recognition.unload()


def main():
    """Run the scheduler worker."""
    parser = argparse.ArgumentParser(description="Run the docscan job scheduler")
    parser.add_argument("--once", action="store_true", help="Process the backlog, then exit")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    asyncio.run(run(once=args.once))


if __name__ == "__main__":
    main()
