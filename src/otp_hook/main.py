"""
FastAPI application entry point.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from otp_hook import __version__
from otp_hook.config import get_settings
from otp_hook.delivery.errors import OtpDeliveryError
from otp_hook.delivery.responses import ResponseBuilder
from otp_hook.hooks.router import get_delivery_service
from otp_hook.hooks.router import router as hooks_router
from otp_hook.shared.logging import get_logger, setup_logging
from otp_hook.telephony.factory import get_telephony_provider

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    settings = get_settings()

    logger.info("Application starting", extra={"env": settings.app_env})

    yield

    logger.info("Shutting down application")

    # Only drain when a request actually built the service.
    if get_delivery_service.cache_info().currsize:
        service = get_delivery_service()
        await service.voice.drain(timeout=settings.shutdown_grace_seconds)
        logger.info("Voice playbacks drained")

    if get_telephony_provider.cache_info().currsize:
        await get_telephony_provider().aclose()

    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="OTP Delivery Hook",
        description="Telephony inline hook delivering OTP codes by SMS or voice call",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    app.include_router(hooks_router)

    # Raised while resolving hook dependencies; the caller still gets an envelope.
    @app.exception_handler(OtpDeliveryError)
    async def _delivery_error(_: Request, exc: OtpDeliveryError) -> JSONResponse:
        return JSONResponse(status_code=200, content=ResponseBuilder.error(exc.message).to_payload())

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()


def run() -> None:
    """Serve the app with uvicorn (console entry point)."""
    import uvicorn

    uvicorn.run("otp_hook.main:app", host="0.0.0.0", port=8000)
