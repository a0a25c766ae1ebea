"""Persistence of session records (one row per signed-in device).

Every mutation is a single targeted INSERT/UPDATE/DELETE on ``refresh_tokens``
so two requests touching the same user's sessions never overwrite each
other's effect.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from authcore.core.security import hash_token
from authcore.models.refresh_token import RefreshToken
from authcore.models.user import User

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_INFO = "Unknown device"

SessionFactory = Callable[[], AsyncSession]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SessionStore:
    """Session records belonging to a single user."""

    def __init__(self, db: AsyncSession, user_id: UUID, max_sessions: Optional[int] = None):
        self.db = db
        self.user_id = user_id
        self.max_sessions = max_sessions

    def _owned(self):
        return RefreshToken.user_id == self.user_id

    async def add(
        self,
        token: str,
        expires_at: datetime,
        device_info: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RefreshToken:
        """Insert a record for ``token`` and evict the oldest ones past the cap."""
        record = RefreshToken(
            user_id=self.user_id,
            token_hash=hash_token(token),
            expires_at=expires_at,
            device_info=(device_info or DEFAULT_DEVICE_INFO)[:255],
            created_at=now or utcnow(),
        )
        self.db.add(record)
        await self.db.flush()

        if self.max_sessions:
            await self._evict_oldest(keep=self.max_sessions)
        return record

    async def _evict_oldest(self, keep: int) -> int:
        result = await self.db.execute(
            select(RefreshToken.id)
            .where(self._owned())
            .order_by(RefreshToken.created_at.desc(), RefreshToken.id.desc())
            .offset(keep)
        )
        stale = list(result.scalars().all())
        if not stale:
            return 0

        await self.db.execute(
            delete(RefreshToken).where(RefreshToken.id.in_(stale))
        )
        logger.info(f"Evicted {len(stale)} oldest session(s) for user {self.user_id}")
        return len(stale)

    async def find_by_token(self, token: str) -> Optional[RefreshToken]:
        result = await self.db.execute(
            select(RefreshToken).where(
                self._owned(),
                RefreshToken.token_hash == hash_token(token),
            )
        )
        return result.scalar_one_or_none()

    async def find_by_id(self, session_id: UUID) -> Optional[RefreshToken]:
        result = await self.db.execute(
            select(RefreshToken).where(self._owned(), RefreshToken.id == session_id)
        )
        return result.scalar_one_or_none()

    async def remove_by_token(self, token: str) -> bool:
        """Idempotent: removing an unknown token is not an error."""
        result = await self.db.execute(
            delete(RefreshToken).where(
                self._owned(),
                RefreshToken.token_hash == hash_token(token),
            )
        )
        return result.rowcount > 0

    async def remove_by_id(self, session_id: UUID) -> bool:
        result = await self.db.execute(
            delete(RefreshToken).where(self._owned(), RefreshToken.id == session_id)
        )
        return result.rowcount > 0

    async def remove_all(self) -> int:
        result = await self.db.execute(delete(RefreshToken).where(self._owned()))
        return result.rowcount

    async def remove_expired(self, now: datetime) -> int:
        """Remove records whose expiry is at or before ``now``."""
        result = await self.db.execute(
            delete(RefreshToken).where(self._owned(), RefreshToken.expires_at <= now)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    async def list_active(self, now: datetime) -> List[RefreshToken]:
        result = await self.db.execute(
            select(RefreshToken)
            .where(self._owned(), RefreshToken.expires_at > now)
            .order_by(RefreshToken.created_at.desc())
        )
        return list(result.scalars().all())

    async def touch(self, record: RefreshToken, now: datetime) -> None:
        await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == record.id)
            .values(last_used_at=now)
        )

    async def rotate(self, record: RefreshToken, token: str, expires_at: datetime, now: datetime) -> bool:
        """Swap the token behind ``record`` for ``token``, keeping the session id.

        Conditional on the stored hash still being the one that was read, so
        of two concurrent rotations of the same token only one succeeds.
        """
        result = await self.db.execute(
            update(RefreshToken)
            .where(
                RefreshToken.id == record.id,
                RefreshToken.token_hash == record.token_hash,
            )
            .values(
                token_hash=hash_token(token),
                expires_at=expires_at,
                last_used_at=now,
            )
        )
        return result.rowcount == 1


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    retry=retry_if_exception_type(SQLAlchemyError),
    reraise=True,
)
async def _prune_user(session_factory: SessionFactory, user_id: UUID, now: datetime) -> int:
    async with session_factory() as db:
        removed = await SessionStore(db, user_id).remove_expired(now)
        await db.commit()
        return removed


async def remove_all_expired_across_users(
    session_factory: SessionFactory,
    now: Optional[datetime] = None,
) -> int:
    """
    Remove every expired session record, one user per transaction.

    A user whose prune fails (after retries) is logged and skipped; the
    sweep carries on with the others.

    Returns:
        int: total number of records removed.
    """
    now = now or utcnow()

    async with session_factory() as db:
        result = await db.execute(
            select(RefreshToken.user_id)
            .where(RefreshToken.expires_at <= now)
            .distinct()
        )
        user_ids = list(result.scalars().all())

    total = 0
    failed = 0
    for user_id in user_ids:
        try:
            total += await _prune_user(session_factory, user_id, now)
        except Exception as e:
            failed += 1
            logger.error(f"Failed to prune sessions for user {user_id}: {e}", exc_info=True)

    logger.info(
        f"Expired session cleanup: {total} removed from {len(user_ids) - failed} users"
        + (f", {failed} users failed" if failed else "")
    )
    return total


async def cleanup_user_sessions(
    session_factory: SessionFactory,
    user_id: UUID,
    now: Optional[datetime] = None,
) -> int:
    """Prune one user's expired records on demand."""
    removed = await _prune_user(session_factory, user_id, now or utcnow())
    if removed:
        logger.info(f"Removed {removed} expired session(s) for user {user_id}")
    return removed


async def get_cleanup_stats(db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, int]:
    now = now or utcnow()
    expired = RefreshToken.expires_at <= now

    total_users = await db.scalar(select(func.count()).select_from(User))
    users_with_expired = await db.scalar(
        select(func.count(func.distinct(RefreshToken.user_id))).where(expired)
    )
    total_expired = await db.scalar(
        select(func.count()).select_from(RefreshToken).where(expired)
    )
    return {
        "total_users": total_users or 0,
        "users_with_expired_sessions": users_with_expired or 0,
        "total_expired_sessions": total_expired or 0,
    }
