from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from authcore.api.errors import register_exception_handlers
from authcore.api.router import router as api_router
from authcore.core.config import Settings, settings
from authcore.core.database import AsyncSessionLocal
from authcore.core.logging import setup_logging
from authcore.services.expiry_sweeper import ExpirySweeper

logger = logging.getLogger("authcore")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    app_settings: Settings = app.state.settings
    logger.info("Starting up session service")
    logger.info(f"Environment: {app_settings.ENVIRONMENT}")

    sweeper = None
    if app_settings.SWEEP_ENABLED:
        sweeper = ExpirySweeper(
            AsyncSessionLocal,
            interval_seconds=app_settings.SWEEP_INTERVAL_SECONDS,
            run_on_start=app_settings.SWEEP_ON_STARTUP,
        )
        sweeper.start()
        logger.info(f"Expiry sweeper started with interval {app_settings.SWEEP_INTERVAL_SECONDS}s")
    app.state.sweeper = sweeper

    yield

    # Shutdown
    logger.info("Shutting down session service")
    if sweeper is not None:
        await sweeper.stop()
    app.state.sweeper = None


def create_app(app_settings: Settings = settings) -> FastAPI:
    # Missing or shared signing secrets are fatal before anything is served
    app_settings.require_signing_secrets()
    setup_logging(app_settings)

    app = FastAPI(
        title="Session Service API",
        version="1.0.0",
        description="Session and credential-token service",
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.sweeper = None

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(api_router, prefix=app_settings.API_STR)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app


app = create_app()
