from datetime import datetime, timedelta, timezone
import uuid

from sqlalchemy import func, select

from authcore.models.refresh_token import RefreshToken
from authcore.services import session_store
from authcore.services.session_store import (
    SessionStore,
    as_utc,
    cleanup_user_sessions,
    get_cleanup_stats,
    remove_all_expired_across_users,
)

from conftest import create_user

NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
PAST = NOW - timedelta(hours=1)
FUTURE = NOW + timedelta(days=7)


async def _count(db, user_id=None) -> int:
    query = select(func.count()).select_from(RefreshToken)
    if user_id is not None:
        query = query.where(RefreshToken.user_id == user_id)
    return await db.scalar(query)


class TestSessionStore:
    """Per-user session records"""

    async def test_add_and_find(self, db):
        user = await create_user("alice", "alice@example.com")
        store = SessionStore(db, user.id)

        record = await store.add("token-1", FUTURE, "Firefox", now=NOW)
        await db.commit()

        found = await store.find_by_token("token-1")
        assert found is not None
        assert found.id == record.id
        assert found.device_info == "Firefox"
        assert found.token_hash != "token-1"
        assert as_utc(found.expires_at) == FUTURE
        assert (await store.find_by_id(record.id)).id == record.id

    async def test_default_device_info(self, db):
        user = await create_user("alice", "alice@example.com")
        record = await SessionStore(db, user.id).add("token-1", FUTURE)
        assert record.device_info == "Unknown device"

    async def test_records_are_scoped_to_their_user(self, db):
        alice = await create_user("alice", "alice@example.com")
        bob = await create_user("bob", "bob@example.com")

        record = await SessionStore(db, alice.id).add("alice-token", FUTURE, now=NOW)
        await db.commit()

        bob_store = SessionStore(db, bob.id)
        assert await bob_store.find_by_token("alice-token") is None
        assert await bob_store.find_by_id(record.id) is None
        assert not await bob_store.remove_by_token("alice-token")
        assert not await bob_store.remove_by_id(record.id)
        assert await _count(db, alice.id) == 1

    async def test_remove_is_idempotent(self, db):
        user = await create_user("alice", "alice@example.com")
        store = SessionStore(db, user.id)
        await store.add("token-1", FUTURE, now=NOW)
        await db.commit()

        assert await store.remove_by_token("token-1")
        assert not await store.remove_by_token("token-1")
        assert not await store.remove_by_token("never-issued")
        await db.commit()
        assert await _count(db, user.id) == 0

    async def test_multiple_devices_are_independent(self, db):
        user = await create_user("alice", "alice@example.com")
        store = SessionStore(db, user.id)
        await store.add("laptop", FUTURE, "laptop", now=NOW)
        await store.add("phone", FUTURE, "phone", now=NOW + timedelta(seconds=1))
        await db.commit()

        assert await store.remove_by_token("laptop")
        await db.commit()

        assert await store.find_by_token("laptop") is None
        assert await store.find_by_token("phone") is not None

    async def test_remove_expired(self, db):
        user = await create_user("alice", "alice@example.com")
        store = SessionStore(db, user.id)
        await store.add("old", PAST, now=NOW - timedelta(days=8))
        await store.add("boundary", NOW, now=NOW - timedelta(days=7))
        await store.add("fresh", FUTURE, now=NOW)
        await db.commit()

        assert await store.remove_expired(NOW) == 2
        await db.commit()
        assert await store.find_by_token("fresh") is not None
        assert await _count(db, user.id) == 1

    async def test_list_active_newest_first(self, db):
        user = await create_user("alice", "alice@example.com")
        store = SessionStore(db, user.id)
        await store.add("first", FUTURE, "first", now=NOW - timedelta(minutes=2))
        await store.add("second", FUTURE, "second", now=NOW - timedelta(minutes=1))
        await store.add("expired", PAST, "expired", now=NOW - timedelta(days=8))
        await db.commit()

        active = await store.list_active(NOW)
        assert [r.device_info for r in active] == ["second", "first"]

    async def test_cap_evicts_oldest(self, db):
        user = await create_user("alice", "alice@example.com")
        store = SessionStore(db, user.id, max_sessions=2)
        for i in range(3):
            await store.add(f"token-{i}", FUTURE, f"device-{i}", now=NOW + timedelta(minutes=i))
        await db.commit()

        assert await _count(db, user.id) == 2
        assert await store.find_by_token("token-0") is None
        assert await store.find_by_token("token-1") is not None
        assert await store.find_by_token("token-2") is not None

    async def test_remove_all(self, db):
        user = await create_user("alice", "alice@example.com")
        other = await create_user("bob", "bob@example.com")
        store = SessionStore(db, user.id)
        await store.add("a", FUTURE, now=NOW)
        await store.add("b", FUTURE, now=NOW)
        await SessionStore(db, other.id).add("c", FUTURE, now=NOW)
        await db.commit()

        assert await store.remove_all() == 2
        await db.commit()
        assert await _count(db, user.id) == 0
        assert await _count(db, other.id) == 1

    async def test_rotate_keeps_session_id(self, db):
        user = await create_user("alice", "alice@example.com")
        store = SessionStore(db, user.id)
        record = await store.add("old", FUTURE, now=NOW)
        await db.commit()

        assert await store.rotate(record, "new", FUTURE + timedelta(days=1), NOW)
        await db.commit()

        assert await store.find_by_token("old") is None
        rotated = await store.find_by_token("new")
        assert rotated.id == record.id
        assert as_utc(rotated.expires_at) == FUTURE + timedelta(days=1)

    async def test_stale_rotation_fails(self, db, session_factory):
        user = await create_user("alice", "alice@example.com")
        await SessionStore(db, user.id).add("old", FUTURE, now=NOW)
        await db.commit()

        async with session_factory() as first, session_factory() as second:
            first_record = await SessionStore(first, user.id).find_by_token("old")
            second_record = await SessionStore(second, user.id).find_by_token("old")

            assert await SessionStore(first, user.id).rotate(first_record, "new-1", FUTURE, NOW)
            await first.commit()
            assert not await SessionStore(second, user.id).rotate(second_record, "new-2", FUTURE, NOW)
            await second.rollback()

        assert await SessionStore(db, user.id).find_by_token("new-1") is not None
        assert await SessionStore(db, user.id).find_by_token("new-2") is None


class TestSweep:
    """Expiry sweeping across all users"""

    async def _seed(self, db):
        alice = await create_user("alice", "alice@example.com")
        bob = await create_user("bob", "bob@example.com")
        carol = await create_user("carol", "carol@example.com")

        await SessionStore(db, alice.id).add("alice-old", PAST, now=NOW - timedelta(days=8))
        await SessionStore(db, alice.id).add("alice-new", FUTURE, now=NOW)
        await SessionStore(db, bob.id).add("bob-old-1", PAST, now=NOW - timedelta(days=8))
        await SessionStore(db, bob.id).add("bob-old-2", PAST, now=NOW - timedelta(days=8))
        await SessionStore(db, carol.id).add("carol-new", FUTURE, now=NOW)
        await db.commit()
        return alice, bob, carol

    async def test_removes_exactly_the_expired_records(self, db, session_factory):
        alice, bob, carol = await self._seed(db)

        removed = await remove_all_expired_across_users(session_factory, now=NOW)

        assert removed == 3
        assert await _count(db, alice.id) == 1
        assert await _count(db, bob.id) == 0
        assert await _count(db, carol.id) == 1
        assert await SessionStore(db, alice.id).find_by_token("alice-new") is not None

    async def test_nothing_to_remove(self, db, session_factory):
        user = await create_user("alice", "alice@example.com")
        await SessionStore(db, user.id).add("fresh", FUTURE, now=NOW)
        await db.commit()

        assert await remove_all_expired_across_users(session_factory, now=NOW) == 0
        assert await _count(db) == 1

    async def test_failing_user_does_not_stop_the_sweep(self, db, session_factory, monkeypatch):
        alice, bob, carol = await self._seed(db)
        original = session_store._prune_user

        async def flaky_prune(factory, user_id, now):
            if user_id == bob.id:
                raise RuntimeError("connection reset")
            return await original(factory, user_id, now)

        monkeypatch.setattr(session_store, "_prune_user", flaky_prune)

        removed = await remove_all_expired_across_users(session_factory, now=NOW)

        assert removed == 1
        assert await _count(db, alice.id) == 1
        assert await _count(db, bob.id) == 2

    async def test_records_created_during_the_sweep_survive(self, db, session_factory, monkeypatch):
        alice, bob, _ = await self._seed(db)
        original = session_store._prune_user

        async def prune_after_new_sign_in(factory, user_id, now):
            # A device signs in between the scan and this user's delete
            async with factory() as other:
                await SessionStore(other, user_id).add(f"fresh-{user_id}", FUTURE, now=NOW)
                await other.commit()
            return await original(factory, user_id, now)

        monkeypatch.setattr(session_store, "_prune_user", prune_after_new_sign_in)

        removed = await remove_all_expired_across_users(session_factory, now=NOW)

        assert removed == 3
        assert await SessionStore(db, alice.id).find_by_token(f"fresh-{alice.id}") is not None
        assert await SessionStore(db, bob.id).find_by_token(f"fresh-{bob.id}") is not None
        assert await _count(db, alice.id) == 2
        assert await _count(db, bob.id) == 1

    async def test_cleanup_single_user(self, db, session_factory):
        alice, bob, _ = await self._seed(db)

        assert await cleanup_user_sessions(session_factory, bob.id, now=NOW) == 2
        assert await _count(db, bob.id) == 0
        # Other users untouched
        assert await _count(db, alice.id) == 2

    async def test_cleanup_stats(self, db):
        await self._seed(db)

        stats = await get_cleanup_stats(db, now=NOW)

        assert stats == {
            "total_users": 3,
            "users_with_expired_sessions": 2,
            "total_expired_sessions": 3,
        }

    async def test_unknown_user_cleanup_is_zero(self, session_factory):
        assert await cleanup_user_sessions(session_factory, uuid.uuid4(), now=NOW) == 0
