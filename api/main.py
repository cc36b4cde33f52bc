"""
FastAPI API Service Entry Point
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.routes import cron, dev, notifications, resend
from shared.logging_config import configure_logging
from shared.startup_validator import StartupValidationError, validate_startup_config

# Configure structured JSON logging on startup
configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="SalonPilot Notifications API",
    version="1.0.0",
)

# Inbound provider webhooks
app.include_router(resend.router, prefix="/webhook", tags=["webhooks"])

# Job triggers for external schedulers
app.include_router(cron.router, prefix="/cron", tags=["jobs"])

# Creation-time dispatcher, called by the booking flow
app.include_router(notifications.router, prefix="/notifications", tags=["notifications"])

# Development helpers (404 in production)
app.include_router(dev.router, prefix="/dev", tags=["dev"])


@app.on_event("startup")
async def startup_config_validation():
    """
    Validate critical configuration at startup.

    A misconfigured email or SMS channel only logs a critical error; the
    channel is disabled and the rest of the API keeps serving.

    Raises:
        StartupValidationError: If critical configuration is invalid
    """
    logger.info("Running API startup configuration validation...")
    try:
        await validate_startup_config()
        logger.info("API startup configuration validation passed")
    except StartupValidationError as e:
        logger.critical(f"API startup blocked due to configuration errors: {e}")
        raise  # FastAPI will fail to start


# Exception handler for validation errors
@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Return 400 with validation error details."""
    logger.warning(
        f"Validation error on {request.url.path}: {exc.error_count()} errors",
        extra={"request_path": request.url.path},
    )
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "details": exc.errors(include_url=False, include_context=False)},
    )


@app.get("/health")
async def health_check() -> JSONResponse:
    """
    Health check endpoint for Docker health checks and monitoring.

    Checks:
    - PostgreSQL connectivity (SELECT 1 query)

    Returns:
        200 OK if all systems healthy
        503 Service Unavailable if degraded
    """
    from sqlalchemy import text

    from database.connection import get_async_session

    health_status = {
        "status": "healthy",
        "postgres": "unknown",
    }
    status_code = 200

    try:
        async with get_async_session() as session:
            await session.execute(text("SELECT 1"))
            health_status["postgres"] = "connected"
    except Exception:
        health_status["postgres"] = "disconnected"
        health_status["status"] = "degraded"
        status_code = 503

    return JSONResponse(status_code=status_code, content=health_status)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint"""
    return {"message": "SalonPilot Notifications API - Use /health for health checks"}
