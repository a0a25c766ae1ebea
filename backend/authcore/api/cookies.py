"""Mapping of issued tokens to and from HTTP cookies and headers."""
from typing import Any, Dict, Optional

from fastapi import Response

from authcore.core.config import Settings, settings as default_settings
from authcore.core.security import ACCESS_TOKEN_EXPIRE_MINUTES, REFRESH_TOKEN_EXPIRE_DAYS

ACCESS_COOKIE_NAME = "access_token"
REFRESH_COOKIE_NAME = "refresh_token"

# Seconds, as Set-Cookie Max-Age expects (900000 ms / 604800000 ms)
ACCESS_COOKIE_MAX_AGE = ACCESS_TOKEN_EXPIRE_MINUTES * 60
REFRESH_COOKIE_MAX_AGE = REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60

BEARER_PREFIX = "Bearer "


def _cookie_attributes(settings: Settings) -> Dict[str, Any]:
    """Attributes shared by setting and clearing; deletion only works when they match."""
    attributes: Dict[str, Any] = {
        "httponly": True,
        "secure": settings.is_production,
        "samesite": "strict",
        "path": "/",
    }
    if settings.is_production and settings.COOKIE_DOMAIN:
        attributes["domain"] = settings.COOKIE_DOMAIN
    return attributes


def set_access_cookie(response: Response, access_token: str, settings: Settings = default_settings) -> None:
    response.set_cookie(
        ACCESS_COOKIE_NAME,
        access_token,
        max_age=ACCESS_COOKIE_MAX_AGE,
        **_cookie_attributes(settings),
    )


def set_session_cookies(
    response: Response,
    access_token: str,
    refresh_token: str,
    settings: Settings = default_settings,
) -> None:
    set_access_cookie(response, access_token, settings)
    response.set_cookie(
        REFRESH_COOKIE_NAME,
        refresh_token,
        max_age=REFRESH_COOKIE_MAX_AGE,
        **_cookie_attributes(settings),
    )


def clear_session_cookies(response: Response, settings: Settings = default_settings) -> None:
    attributes = _cookie_attributes(settings)
    response.delete_cookie(ACCESS_COOKIE_NAME, **attributes)
    response.delete_cookie(REFRESH_COOKIE_NAME, **attributes)


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    """Return the token from an exact ``Bearer <token>`` header, else None.

    A missing or differently shaped header means "no credentials", not an error.
    """
    if not header or not header.startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX):]
    if not token or " " in token:
        return None
    return token
