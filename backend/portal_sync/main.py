"""Sync admin API - status, run history and manual trigger."""

from fastapi import FastAPI
import logging

from portal_sync import __version__
from portal_sync.config import settings
from portal_sync.database import Base, engine
from portal_sync import models  # noqa: F401  registers tables on Base.metadata
from portal_sync.routers import sync_routes
from portal_sync.scheduler import scheduler, start_scheduler, stop_scheduler

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Portal Sync API",
    description="ClientTether tenant data-sync engine",
    version=__version__,
    redirect_slashes=False
)

app.include_router(sync_routes.router)


# ============================================
# HEALTH
# ============================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "environment": settings.ENVIRONMENT,
        "registered_tables": len(Base.metadata.tables),
        "scheduler_running": scheduler.running,
    }


# ============================================
# STARTUP & SHUTDOWN
# ============================================

@app.on_event("startup")
async def startup_event():
    """Run on application startup."""
    logger.info("Starting Portal Sync API...")
    if settings.ENABLE_SCHEDULER:
        start_scheduler()
    else:
        logger.info("Scheduler disabled (ENABLE_SCHEDULER=false)")


@app.on_event("shutdown")
async def shutdown_event():
    """Run on application shutdown."""
    logger.info("Shutting down Portal Sync API...")
    await stop_scheduler(wait=False)
    await engine.dispose()
