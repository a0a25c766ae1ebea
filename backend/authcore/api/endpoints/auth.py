"""Authentication endpoints: registration, login, token refresh, logout and sessions."""
from typing import Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Cookie, Depends, Request, Response, status
from fastapi.security import OAuth2PasswordRequestForm
import logging

from authcore.api import deps
from authcore.api.cookies import (
    REFRESH_COOKIE_NAME,
    clear_session_cookies,
    set_access_cookie,
    set_session_cookies,
)
from authcore.core.errors import SessionNotFound
from authcore.schemas.token import RefreshResponse, TokenPair
from authcore.schemas.user import (
    CurrentUser,
    LoginRequest,
    PasswordChange,
    SessionInfo,
    SessionList,
    UserCreate,
    UserResponse,
)
from authcore.services.session_service import SessionService

router = APIRouter()
logger = logging.getLogger(__name__)


def _device_info(request: Request, explicit: Optional[str] = None) -> str:
    return explicit or request.headers.get("user-agent") or "Unknown device"


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserCreate,
    service: SessionService = Depends(deps.get_session_service)
) -> UserResponse:
    """
    Register a new user.

    The account starts with no sessions; the client signs in afterwards.

    Raises:
        Conflict: 409 if the email or username already exists.
    """
    user = await service.sign_up(user_data)
    return UserResponse.model_validate(user)


@router.post("/login", response_model=TokenPair)
async def login(
    login_data: LoginRequest,
    request: Request,
    response: Response,
    service: SessionService = Depends(deps.get_session_service)
) -> TokenPair:
    """
    Authenticate with email and password.

    Opens a new session for this device, leaving other devices signed in,
    and sets the ``access_token`` and ``refresh_token`` cookies. The pair is
    also returned in the body for non-browser clients.

    Raises:
        InvalidCredentials: 401, same message for unknown email and wrong password.
        AccountInactive: 401 if the account is disabled.
    """
    pair = await service.sign_in(
        login_data.email,
        login_data.password,
        _device_info(request, login_data.device_info),
    )
    set_session_cookies(response, pair.access_token, pair.refresh_token)
    return pair


@router.post("/login/form", response_model=TokenPair)
async def login_form(
    request: Request,
    response: Response,
    form_data: OAuth2PasswordRequestForm = Depends(),
    service: SessionService = Depends(deps.get_session_service)
) -> TokenPair:
    """
    Login with OAuth2 form data.

    Provides compatibility with the OAuth2 password flow for Swagger UI; the
    ``username`` form field carries the email.
    """
    login_data = LoginRequest(email=form_data.username, password=form_data.password)
    return await login(login_data, request, response, service)


@router.post("/refresh", response_model=RefreshResponse)
async def refresh_token(
    response: Response,
    refresh_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE_NAME),
    refresh_body: Optional[str] = Body(None, alias="refresh_token", embed=True),
    service: SessionService = Depends(deps.get_session_service)
) -> RefreshResponse:
    """
    Get a new access token using the refresh token.

    The refresh token is read from its cookie, or from the JSON body as
    ``{"refresh_token": "..."}``. It is reused unless rotation is enabled.

    Raises:
        TokenExpired / TokenInvalid / SessionNotFound / AccountInactive: 401.
    """
    token = refresh_cookie or refresh_body
    if not token:
        raise SessionNotFound("Refresh token missing")

    result = await service.refresh(token)
    if result.rotated:
        set_session_cookies(response, result.access_token, result.refresh_token)
    else:
        set_access_cookie(response, result.access_token)
    return result


async def _refresh_token_from_body(request: Request) -> Optional[str]:
    """``refresh_token`` from a JSON body; anything unreadable counts as absent."""
    try:
        body = await request.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    token = body.get("refresh_token")
    return token if isinstance(token, str) else None


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    refresh_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE_NAME),
    service: SessionService = Depends(deps.get_session_service)
) -> Dict[str, str]:
    """
    Logout this device.

    Always succeeds and always clears the cookies, whether or not the
    presented refresh token matched a session. The body is read leniently
    so a malformed one never turns into a validation error.
    """
    token = refresh_cookie or await _refresh_token_from_body(request)
    await service.sign_out(token)
    clear_session_cookies(response)
    return {"message": "Logged out successfully"}


@router.post("/logout/all")
async def logout_all_devices(
    response: Response,
    current_user: CurrentUser = Depends(deps.get_current_user),
    service: SessionService = Depends(deps.get_session_service)
) -> Dict[str, str]:
    """Logout from all devices by removing every session of the current user."""
    removed = await service.sign_out_all(UUID(current_user.id))
    clear_session_cookies(response)
    return {
        "message": "Logged out from all devices successfully",
        "detail": f"{removed} sessions have been terminated",
    }


@router.get("/me", response_model=CurrentUser)
async def get_current_user_info(
    current_user: CurrentUser = Depends(deps.get_current_user)
) -> CurrentUser:
    """Get information about the currently authenticated user."""
    return current_user


@router.delete("/me")
async def delete_my_account(
    response: Response,
    current_user: CurrentUser = Depends(deps.get_current_user),
    service: SessionService = Depends(deps.get_session_service)
) -> Dict[str, str]:
    """Delete the current account together with all its sessions."""
    await service.delete_account(UUID(current_user.id))
    clear_session_cookies(response)
    return {"message": "Account deleted"}


@router.post("/password")
async def change_password(
    data: PasswordChange,
    current_user: CurrentUser = Depends(deps.get_current_user),
    service: SessionService = Depends(deps.get_session_service)
) -> Dict[str, str]:
    """Change the password of the current user."""
    await service.change_password(UUID(current_user.id), data.current_password, data.new_password)
    return {"message": "Password changed successfully"}


@router.get("/sessions", response_model=SessionList)
async def get_active_sessions(
    current_user: CurrentUser = Depends(deps.get_current_user),
    service: SessionService = Depends(deps.get_session_service)
) -> SessionList:
    """List the active sessions (devices) of the current user, newest first."""
    records = await service.list_sessions(UUID(current_user.id))
    return SessionList(
        active_sessions=[SessionInfo.model_validate(r) for r in records],
        total=len(records),
    )


@router.delete("/sessions/{session_id}")
async def revoke_session(
    session_id: UUID,
    current_user: CurrentUser = Depends(deps.get_current_user),
    service: SessionService = Depends(deps.get_session_service)
) -> Dict[str, str]:
    """Sign one device out by its session id."""
    await service.revoke_session(UUID(current_user.id), session_id)
    return {"message": "Session revoked"}
