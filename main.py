"""
FlightClaims Backend - Main Application Entry Point
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from flightclaims.core import logger
from flightclaims.core.config import settings
from flightclaims.core.exceptions import (
    AlreadyInTargetStateError,
    AuthorizationError,
    ConfigurationError,
    ExternalServiceError,
    FlightClaimsError,
    IllegalTransition,
    ValidationError,
)
from flightclaims.api.routes import cron, notifications, claims
from flightclaims.services.email import build_email_provider
from flightclaims.services.notification_queue import NotificationQueue, QueueConfig


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} in {settings.APP_ENV} mode")
    queue = NotificationQueue(build_email_provider(), QueueConfig.from_settings())
    app.state.notification_queue = queue
    if settings.EMAIL_QUEUE_AUTOSTART:
        queue.start()
    yield
    # Shutdown
    logger.info("Shutting down...")
    await queue.stop()


app = FastAPI(
    title=settings.APP_NAME,
    description="Flight Delay Claim Lifecycle Orchestration",
    version="1.0.0",
    lifespan=lifespan,
)


ERROR_STATUS_CODES = [
    (AuthorizationError, status.HTTP_401_UNAUTHORIZED),
    (ConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (IllegalTransition, status.HTTP_409_CONFLICT),
    (AlreadyInTargetStateError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
]


@app.exception_handler(FlightClaimsError)
async def flightclaims_error_handler(request: Request, exc: FlightClaimsError):
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{exc.code} on {request.url.path}: {exc.message}")

    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": exc.code, "detail": exc.message},
        headers=headers,
    )


# Include API Routers
app.include_router(cron.router, prefix="/cron", tags=["Scheduled Triggers"])
app.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
app.include_router(claims.router, prefix="/claims", tags=["Claims"])


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "env": settings.APP_ENV,
    }
