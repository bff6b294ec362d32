"""
GroundControl Task Core - HTTP Service

FastAPI application exposing the task board, sales pipeline, templates,
GitHub webhook and notification outbox.

Run with:
    python -m groundcontrol.main
"""

import asyncio
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from . import SERVICE_NAME, __version__
from .api import (
    board_router,
    github_router,
    notifications_router,
    projects_router,
    prospects_router,
    tasks_router,
    templates_router,
)
from .errors import GroundControlError
from .models import utc_now_iso
from .services import get_services

# -----------------------------------------------------------------------------
# Logging Configuration
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("groundcontrol")

# -----------------------------------------------------------------------------
# FastAPI Application
# -----------------------------------------------------------------------------
app = FastAPI(
    title=SERVICE_NAME,
    description="Task state machine, ordering engine and integrations",
    version=__version__
)

app.include_router(tasks_router)
app.include_router(board_router)
app.include_router(prospects_router)
app.include_router(projects_router)
app.include_router(templates_router)
app.include_router(github_router)
app.include_router(notifications_router)

_drain_task: Optional[asyncio.Task] = None


# -----------------------------------------------------------------------------
# API Endpoints - Health
# -----------------------------------------------------------------------------
@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": SERVICE_NAME,
        "status": "running",
        "version": __version__
    }


@app.get("/health")
async def health_check():
    """Detailed health check."""
    services = get_services()
    return {
        "status": "healthy",
        "timestamp": utc_now_iso(),
        "components": {
            "api": "operational",
            "store": "persistent" if services.config.data_path else "in-memory",
            "notification_channels": services.notifications.channels,
            "telegram_configured": services.config.telegram_configured,
            "collaborator_webhook_configured": bool(services.config.collaborator_webhook_url),
        },
        "pending_notifications": len(services.outbox),
        "version": __version__
    }


# -----------------------------------------------------------------------------
# Error Handlers
# -----------------------------------------------------------------------------
@app.exception_handler(GroundControlError)
async def groundcontrol_exception_handler(request, exc: GroundControlError):
    """Render core errors with the standard error envelope."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": exc.code,
                "message": exc.message,
                "details": exc.details
            }
        }
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Handle HTTP exceptions with standard error format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": f"HTTP_{exc.status_code}",
                "message": exc.detail,
                "details": {}
            }
        }
    )


# -----------------------------------------------------------------------------
# Startup/Shutdown Events
# -----------------------------------------------------------------------------
@app.on_event("startup")
async def startup_event():
    """Load services and start draining the notification outbox."""
    global _drain_task

    services = get_services()
    logging.getLogger().setLevel(services.config.log_level.upper())
    logger.info(f"{SERVICE_NAME} v{__version__} starting up...")
    logger.info(f"Config: {services.config.to_dict()}")

    _drain_task = asyncio.create_task(
        services.notifications.run(services.config.notification_poll_interval)
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Flush the outbox and stop the drain loop."""
    global _drain_task

    logger.info(f"{SERVICE_NAME} shutting down...")
    if _drain_task is not None:
        get_services().notifications.stop()
        try:
            await asyncio.wait_for(_drain_task, timeout=10.0)
        except asyncio.TimeoutError:
            logger.error("Notification drain loop did not stop in time")
            _drain_task.cancel()
        _drain_task = None


# -----------------------------------------------------------------------------
# Main Entry Point (for development)
# -----------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
