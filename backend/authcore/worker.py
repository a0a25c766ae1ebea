"""Standalone expiry sweeper, for deployments that keep maintenance out of the API processes.

    python -m authcore.worker          # run forever
    python -m authcore.worker --once   # single sweep, e.g. from cron
"""
import argparse
import asyncio
import sys

import structlog

from authcore.core.config import settings
from authcore.core.database import AsyncSessionLocal, engine
from authcore.services.expiry_sweeper import ExpirySweeper

logger = structlog.get_logger()


class SweepWorker:
    def __init__(self, interval_seconds: int = settings.SWEEP_INTERVAL_SECONDS):
        self.sweeper = ExpirySweeper(AsyncSessionLocal, interval_seconds=interval_seconds)

    async def run_once(self) -> int:
        removed = await self.sweeper.run_once()
        logger.info("sweep_finished", removed=removed)
        return removed

    async def run(self):
        """Main worker loop, shared with the in-process sweeper"""
        logger.info("worker_started", interval=self.sweeper.interval)
        await self.sweeper.run_periodic()

    async def shutdown(self):
        await self.sweeper.stop()
        await engine.dispose()
        logger.info("worker_stopped")


async def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Purge expired session records.")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    args = parser.parse_args(argv)

    worker = SweepWorker()
    try:
        if args.once:
            await worker.run_once()
        else:
            await worker.run()
    except asyncio.CancelledError:
        pass
    finally:
        await worker.shutdown()
    return 0


def cli():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
