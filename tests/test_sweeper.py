import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from authcore.models.refresh_token import RefreshToken
from authcore.services import session_store
from authcore.services.expiry_sweeper import ExpirySweeper
from authcore.services.session_store import SessionStore, utcnow
from authcore import worker

from conftest import create_user


async def _seed_expired(db) -> None:
    user = await create_user("alice", "alice@example.com")
    store = SessionStore(db, user.id)
    await store.add("expired", utcnow() - timedelta(minutes=1), now=utcnow() - timedelta(days=7))
    await store.add("active", utcnow() + timedelta(days=1), now=utcnow())
    await db.commit()


async def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        assert asyncio.get_running_loop().time() < deadline, "condition not met in time"
        await asyncio.sleep(0.01)


class TestExpirySweeper:
    async def test_run_once(self, db, session_factory):
        await _seed_expired(db)
        sweeper = ExpirySweeper(session_factory)

        assert await sweeper.run_once() == 1
        assert sweeper.last_removed == 1
        assert sweeper.last_run_at is not None
        assert await db.scalar(select(func.count()).select_from(RefreshToken)) == 1

    async def test_run_once_with_explicit_time(self, db, session_factory):
        await _seed_expired(db)
        later = datetime.now(timezone.utc) + timedelta(days=2)

        assert await ExpirySweeper(session_factory).run_once(now=later) == 2

    async def test_start_sweeps_immediately_and_stops(self, db, session_factory):
        await _seed_expired(db)
        sweeper = ExpirySweeper(session_factory, interval_seconds=3600, run_on_start=True)

        sweeper.start()
        assert sweeper.is_running
        await _wait_for(lambda: sweeper.last_removed is not None)
        await sweeper.stop()

        assert not sweeper.is_running
        assert sweeper.last_removed == 1

    async def test_no_sweep_on_start_when_disabled(self, session_factory):
        sweeper = ExpirySweeper(session_factory, interval_seconds=3600, run_on_start=False)

        sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert sweeper.last_run_at is None

    async def test_failed_cycle_keeps_the_loop_alive(self, session_factory, monkeypatch):
        calls = []

        async def failing_sweep(factory, now=None):
            calls.append(now)
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(
            "authcore.services.expiry_sweeper.remove_all_expired_across_users", failing_sweep
        )
        sweeper = ExpirySweeper(session_factory, interval_seconds=3600)

        sweeper.start()
        await _wait_for(lambda: calls)
        assert sweeper.is_running
        await sweeper.stop()

    async def test_start_twice_keeps_one_task(self, session_factory):
        sweeper = ExpirySweeper(session_factory, run_on_start=False)
        sweeper.start()
        task = sweeper._task
        sweeper.start()

        assert sweeper._task is task
        await sweeper.stop()


class TestWorker:
    async def test_single_sweep(self, db):
        await _seed_expired(db)

        assert await worker.main(["--once"]) == 0
        assert await db.scalar(select(func.count()).select_from(RefreshToken)) == 1

    async def test_worker_uses_shared_sweep(self, db, monkeypatch):
        await _seed_expired(db)
        seen = []
        original = session_store.remove_all_expired_across_users

        async def tracking_sweep(factory, now=None):
            removed = await original(factory, now)
            seen.append(removed)
            return removed

        monkeypatch.setattr(
            "authcore.services.expiry_sweeper.remove_all_expired_across_users", tracking_sweep
        )

        assert await worker.SweepWorker().run_once() == 1
        assert seen == [1]

    async def test_run_loop_is_the_sweeper_loop(self, db):
        await _seed_expired(db)
        sweep_worker = worker.SweepWorker(interval_seconds=3600)

        task = asyncio.create_task(sweep_worker.run())
        await _wait_for(lambda: sweep_worker.sweeper.last_removed is not None)
        task.cancel()
        await task
        await sweep_worker.shutdown()

        assert sweep_worker.sweeper.last_removed == 1
        assert task.done()
