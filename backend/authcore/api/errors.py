import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from authcore.core.errors import AuthError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Turn domain errors into ``{"detail", "code"}`` responses."""

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        logger.warning(
            f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}"
        )
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.error_code},
            headers=headers,
        )
