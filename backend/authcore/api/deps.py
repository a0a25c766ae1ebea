from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Callable, Optional
from uuid import UUID
import logging

from authcore.api.cookies import ACCESS_COOKIE_NAME, extract_bearer_token
from authcore.core.database import get_db
from authcore.core.errors import AccountInactive, AuthError, Forbidden, TokenInvalid, Unauthenticated
from authcore.core.security import verify_access_token
from authcore.models.user import Role, User
from authcore.schemas.user import CurrentUser
from authcore.services.session_service import SessionService

logger = logging.getLogger(__name__)


def get_session_service(db: AsyncSession = Depends(get_db)) -> SessionService:
    return SessionService(db)


def resolve_access_token(request: Request) -> Optional[str]:
    """Cookie first, Authorization header second."""
    return request.cookies.get(ACCESS_COOKIE_NAME) or extract_bearer_token(
        request.headers.get("Authorization")
    )


async def _load_identity(db: AsyncSession, token: str) -> CurrentUser:
    claims = verify_access_token(token)
    try:
        user_id = UUID(claims.sub)
    except ValueError:
        raise TokenInvalid()

    # Only identity columns: no password hash, no session list
    result = await db.execute(
        select(User.id, User.username, User.email, User.role, User.is_active)
        .where(User.id == user_id)
    )
    row = result.first()
    if row is None:
        raise Unauthenticated("User no longer exists")
    if not row.is_active:
        raise AccountInactive()

    return CurrentUser(id=row.id, username=row.username, email=row.email, role=row.role)


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> CurrentUser:
    """Authenticate the request or raise 401.

    Expired and invalid tokens produce different messages so clients know
    whether to refresh or to sign in again.
    """
    token = resolve_access_token(request)
    if not token:
        raise Unauthenticated()

    user = await _load_identity(db, token)
    request.state.user = user
    return user


async def get_optional_user(
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> Optional[CurrentUser]:
    """Identity of the caller when it presents a usable token, else None."""
    token = resolve_access_token(request)
    if not token:
        return None

    try:
        user = await _load_identity(db, token)
    except AuthError as e:
        logger.debug(f"Ignoring unusable token on optional auth: {e.error_code}")
        return None

    request.state.user = user
    return user


def require_roles(*roles: str) -> Callable:
    """Dependency factory: authenticated (401 otherwise) and in ``roles`` (403 otherwise)."""
    allowed = {r.value if isinstance(r, Role) else r for r in roles}

    async def role_checker(
        current_user: CurrentUser = Depends(get_current_user)
    ) -> CurrentUser:
        if current_user.role not in allowed:
            logger.warning(f"User {current_user.username} with role {current_user.role} denied")
            raise Forbidden()
        return current_user

    return role_checker


require_admin = require_roles(Role.ADMIN)
