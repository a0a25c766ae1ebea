"""Sign-up, sign-in, refresh and sign-out orchestration.

The service is the only place that combines the token codec with the session
store. It raises typed ``AuthError`` subclasses and commits its own
transactions; HTTP mapping happens in the API layer.
"""
import logging
import re
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.core.config import Settings, settings as default_settings
from authcore.core.errors import (
    AccountInactive,
    AuthError,
    Conflict,
    InvalidCredentials,
    SessionNotFound,
    TokenExpired,
    TokenInvalid,
    UserNotFound,
)
from authcore.core.security import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    dummy_verify_password,
    get_password_hash,
    issue_access_token,
    issue_refresh_token,
    verify_password,
    verify_refresh_token,
)
from authcore.models.refresh_token import RefreshToken
from authcore.models.user import Role, User
from authcore.schemas.token import IdentityClaim, RefreshResponse, TokenPair
from authcore.schemas.user import ExternalIdentity, UserCreate
from authcore.services.session_store import SessionStore, as_utc, utcnow

logger = logging.getLogger(__name__)

ACCESS_TOKEN_EXPIRES_IN = ACCESS_TOKEN_EXPIRE_MINUTES * 60


def claim_for(user: User) -> IdentityClaim:
    return IdentityClaim(
        sub=str(user.id),
        username=user.username,
        email=user.email,
        role=user.role,
    )


def _subject_to_id(sub: str) -> UUID:
    try:
        return UUID(sub)
    except ValueError:
        raise TokenInvalid()


class SessionService:
    """Session lifecycle for one request (one DB session)."""

    def __init__(self, db: AsyncSession, settings: Settings = default_settings):
        self.db = db
        self.settings = settings

    def _store(self, user_id: UUID) -> SessionStore:
        return SessionStore(self.db, user_id, max_sessions=self.settings.MAX_SESSIONS_PER_USER)

    async def _get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.email == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def _require_user(self, user_id: UUID) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise UserNotFound()
        return user

    async def _open_session(self, user: User, device_info: Optional[str]) -> TokenPair:
        now = utcnow()
        claim = claim_for(user)
        access_token = issue_access_token(claim)
        refresh_token, expires_at = issue_refresh_token(claim)

        await self._store(user.id).add(refresh_token, expires_at, device_info, now=now)
        user.last_login = now
        await self.db.commit()

        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type="bearer",
            expires_in=ACCESS_TOKEN_EXPIRES_IN,
        )

    async def sign_up(self, data: UserCreate) -> User:
        """
        Create an account with no sessions.

        Raises:
            Conflict: the email or the username is already taken.
        """
        result = await self.db.execute(
            select(User.id).where(
                or_(User.email == data.email, User.username == data.username)
            )
        )
        if result.first() is not None:
            raise Conflict("Email or username already registered")

        user = User(
            username=data.username,
            email=data.email,
            hashed_password=get_password_hash(data.password),
            first_name=data.first_name,
            last_name=data.last_name,
            role=Role.USER.value,
            is_active=True,
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race against a concurrent sign-up for the same identity
            await self.db.rollback()
            raise Conflict("Email or username already registered")
        await self.db.refresh(user)

        logger.info(f"New user registered: {user.username}")
        return user

    async def sign_in(self, email: str, password: str, device_info: Optional[str] = None) -> TokenPair:
        """
        Check credentials and open a new session alongside any existing ones.

        Raises:
            InvalidCredentials: unknown email, no password set or wrong password.
            AccountInactive: the account is disabled.
        """
        user = await self._get_user_by_email(email)

        if user is None:
            dummy_verify_password()
            logger.warning("Login attempt for unknown email")
            raise InvalidCredentials()

        if not verify_password(password, user.hashed_password):
            logger.warning(f"Failed login attempt for user: {user.username}")
            raise InvalidCredentials()

        if not user.is_active:
            logger.warning(f"Inactive user attempted login: {user.username}")
            raise AccountInactive()

        pair = await self._open_session(user, device_info)
        logger.info(f"User logged in successfully: {user.username}")
        return pair

    async def _unique_username(self, seed: str) -> str:
        base = re.sub(r"[^a-z0-9_]", "", seed.lower())[:40]
        if len(base) < 3:
            base = f"user{base}"
        username = base
        counter = 1
        while (await self.db.execute(select(User.id).where(User.username == username))).first():
            username = f"{base}{counter}"
            counter += 1
        return username

    async def _create_external_user(self, identity: ExternalIdentity, attempts: int = 3) -> User:
        """
        Create the password-less account for ``identity``.

        A concurrent hand-off may insert the same email or pick the same
        username first; the existing account is then reused, or another
        username is tried.
        """
        name = (identity.name or "").strip()
        first_name, _, last_name = name.partition(" ")
        seed = name.replace(" ", "") or identity.email.split("@")[0]

        for _ in range(attempts):
            user = User(
                username=await self._unique_username(seed),
                email=identity.email,
                hashed_password=None,
                first_name=first_name[:50] or None,
                last_name=last_name.strip()[:50] or None,
                role=Role.USER.value,
                is_active=True,
            )
            self.db.add(user)
            try:
                await self.db.flush()
            except IntegrityError:
                await self.db.rollback()
                existing = await self._get_user_by_email(identity.email)
                if existing is not None:
                    logger.info(f"External identity account created concurrently: {existing.username}")
                    return existing
                continue

            logger.info(f"New user created from external identity: {user.username}")
            return user

        raise Conflict("Could not create an account for this identity")

    async def sign_in_external(self, identity: ExternalIdentity, device_info: Optional[str] = None) -> TokenPair:
        """
        Open a session for an identity a federated provider has already verified.

        Unknown emails get an account without a password, so password sign-in
        stays impossible for it until the owner sets one.
        """
        user = await self._get_user_by_email(identity.email)
        if user is None:
            user = await self._create_external_user(identity)

        if not user.is_active:
            logger.warning(f"Inactive user attempted external login: {user.username}")
            raise AccountInactive()

        pair = await self._open_session(user, device_info)
        logger.info(f"User logged in through external identity: {user.username}")
        return pair

    async def refresh(self, refresh_token: str) -> RefreshResponse:
        """
        Exchange a refresh token for a new access token.

        Without rotation the refresh token stays valid and unchanged, so
        concurrent refreshes with the same token all succeed. With
        ``REFRESH_TOKEN_ROTATION`` the session keeps its id but gets a new
        token and the presented one stops working.

        Raises:
            TokenExpired: token or stored session has expired.
            TokenInvalid: bad signature or malformed token.
            SessionNotFound: session revoked, swept, rotated away or its user is gone.
            AccountInactive: the account was disabled since sign-in.
        """
        claims = verify_refresh_token(refresh_token)
        user_id = _subject_to_id(claims.sub)
        store = self._store(user_id)

        record = await store.find_by_token(refresh_token)
        if record is None:
            logger.warning(f"Refresh with unknown or revoked session for user {user_id}")
            raise SessionNotFound()

        now = utcnow()
        if as_utc(record.expires_at) <= now:
            await store.remove_by_token(refresh_token)
            await self.db.commit()
            raise TokenExpired()

        user = await self.db.get(User, user_id)
        if user is None:
            raise SessionNotFound()
        if not user.is_active:
            logger.warning(f"Refresh for inactive user {user.username}")
            raise AccountInactive()

        claim = claim_for(user)
        access_token = issue_access_token(claim)
        current_refresh = refresh_token
        rotated = False

        if self.settings.REFRESH_TOKEN_ROTATION:
            new_refresh, expires_at = issue_refresh_token(claim)
            if not await store.rotate(record, new_refresh, expires_at, now):
                await self.db.rollback()
                raise SessionNotFound()
            current_refresh = new_refresh
            rotated = True
        else:
            await store.touch(record, now)

        await self.db.commit()
        logger.info(f"Token refreshed for user: {user.username}")

        return RefreshResponse(
            access_token=access_token,
            refresh_token=current_refresh,
            rotated=rotated,
            token_type="bearer",
            expires_in=ACCESS_TOKEN_EXPIRES_IN,
        )

    async def sign_out(self, refresh_token: Optional[str]) -> bool:
        """
        Revoke the session behind ``refresh_token`` if there is one.

        Never raises: a missing, garbled, expired or already revoked token
        simply results in ``False``.
        """
        if not refresh_token:
            return False

        try:
            claims = verify_refresh_token(refresh_token, verify_expiry=False)
            user_id = _subject_to_id(claims.sub)
        except AuthError:
            logger.debug("Sign-out with unreadable refresh token ignored")
            return False

        try:
            removed = await self._store(user_id).remove_by_token(refresh_token)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to remove session during sign-out for user {user_id}: {e}")
            return False

        if removed:
            logger.info(f"User {user_id} signed out one session")
        return removed

    async def sign_out_all(self, user_id: UUID) -> int:
        removed = await self._store(user_id).remove_all()
        await self.db.commit()
        logger.info(f"User {user_id} signed out from all devices ({removed} sessions)")
        return removed

    async def revoke_session(self, user_id: UUID, session_id: UUID) -> None:
        if not await self._store(user_id).remove_by_id(session_id):
            raise SessionNotFound()
        await self.db.commit()
        logger.info(f"User {user_id} revoked session {session_id}")

    async def list_sessions(self, user_id: UUID) -> List[RefreshToken]:
        return await self._store(user_id).list_active(utcnow())

    async def change_password(self, user_id: UUID, current_password: Optional[str], new_password: str) -> None:
        """
        Replace the password hash.

        Accounts without a password (external identity) may set a first one
        without supplying ``current_password``.
        """
        user = await self._require_user(user_id)
        if user.hashed_password is not None:
            if not current_password or not verify_password(current_password, user.hashed_password):
                logger.warning(f"Password change with wrong current password for user {user.username}")
                raise InvalidCredentials("Current password is incorrect")

        user.hashed_password = get_password_hash(new_password)
        await self.db.commit()
        logger.info(f"Password changed for user {user.username}")

    async def delete_account(self, user_id: UUID) -> None:
        """Delete the user and every session record in one transaction."""
        await self._require_user(user_id)
        await self.db.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))
        await self.db.execute(delete(User).where(User.id == user_id))
        await self.db.commit()
        logger.info(f"Account {user_id} deleted with all its sessions")

    async def update_user(
        self,
        user_id: UUID,
        is_active: Optional[bool] = None,
        role: Optional[str] = None,
    ) -> User:
        """Admin update. Deactivating an account also revokes all its sessions."""
        user = await self._require_user(user_id)
        if role is not None:
            user.role = role
        if is_active is not None:
            user.is_active = is_active
            if not is_active:
                await self._store(user.id).remove_all()
        await self.db.commit()
        await self.db.refresh(user)
        logger.info(f"User {user.username} updated: is_active={user.is_active}, role={user.role}")
        return user

    async def set_active(self, user_id: UUID, is_active: bool) -> User:
        return await self.update_user(user_id, is_active=is_active)

    async def list_users(self, limit: int = 100, offset: int = 0) -> List[User]:
        result = await self.db.execute(
            select(User).order_by(User.username).limit(limit).offset(offset)
        )
        return list(result.scalars().all())
