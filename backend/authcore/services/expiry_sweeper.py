import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from authcore.services.session_store import SessionFactory, remove_all_expired_across_users

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Background task that periodically purges expired session records.

    Owned by whoever starts it (the application lifespan or the standalone
    worker); there is no process-wide instance.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        interval_seconds: int = 3600,
        run_on_start: bool = True,
    ):
        self.session_factory = session_factory
        self.interval = interval_seconds
        self.run_on_start = run_on_start
        self.running = False
        self.last_run_at: Optional[datetime] = None
        self.last_removed: Optional[int] = None
        self._task: Optional[asyncio.Task] = None

    async def run_once(self, now: Optional[datetime] = None) -> int:
        """Run a single sweep and return the number of records removed."""
        start_time = datetime.now(timezone.utc)
        removed = await remove_all_expired_across_users(self.session_factory, now or start_time)
        elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()

        self.last_run_at = start_time
        self.last_removed = removed
        logger.info(f"Sweep completed in {elapsed:.2f}s: {removed} expired sessions removed")
        return removed

    async def run_periodic(self):
        """Sweep now (if configured), then every ``interval`` seconds until cancelled."""
        self.running = True
        logger.info(f"Starting session sweeps every {self.interval} seconds")

        first = True
        while self.running:
            try:
                if not first or self.run_on_start:
                    await self.run_once()
                first = False

                await asyncio.sleep(self.interval)

            except asyncio.CancelledError:
                logger.info("Session sweeps cancelled")
                break
            except Exception as e:
                first = False
                logger.error(f"Error in sweep cycle: {e}", exc_info=True)
                await asyncio.sleep(self.interval)

    def start(self):
        """Start the periodic sweeper on the running event loop."""
        if self._task is not None and not self._task.done():
            logger.warning("Sweeper already running")
            return

        self._task = asyncio.create_task(self.run_periodic())
        logger.info("Expiry sweeper started")

    async def stop(self):
        """Stop the periodic sweeper and wait for it to finish."""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Expiry sweeper stopped")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()
