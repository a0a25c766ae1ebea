"""Error taxonomy for the session subsystem.

Every ``AuthError`` carries the HTTP status and a stable code; the API layer
turns them into responses. ``ConfigError`` is not an ``AuthError``:
it is raised at startup and never reaches a client.
"""
from typing import Optional


class ConfigError(RuntimeError):
    """Missing or inconsistent configuration (fatal, startup only)."""


class AuthError(Exception):
    status_code: int = 400
    error_code: str = "bad_request"
    default_message: str = "Authentication error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    status_code = 401
    error_code = "invalid_credentials"
    default_message = "Incorrect email or password"


class AccountInactive(AuthError):
    status_code = 401
    error_code = "account_inactive"
    default_message = "Account is disabled"


class Conflict(AuthError):
    status_code = 409
    error_code = "conflict"
    default_message = "User already exists"


class TokenExpired(AuthError):
    status_code = 401
    error_code = "token_expired"
    default_message = "Token expired"


class TokenInvalid(AuthError):
    status_code = 401
    error_code = "token_invalid"
    default_message = "Invalid token"


class SessionNotFound(AuthError):
    status_code = 401
    error_code = "session_not_found"
    default_message = "Session revoked or unknown"


class Unauthenticated(AuthError):
    status_code = 401
    error_code = "unauthenticated"
    default_message = "Not authenticated"


class Forbidden(AuthError):
    status_code = 403
    error_code = "forbidden"
    default_message = "Not enough permissions"


class UserNotFound(AuthError):
    status_code = 404
    error_code = "user_not_found"
    default_message = "User not found"
