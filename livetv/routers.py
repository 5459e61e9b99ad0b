from fastapi import APIRouter, HTTPException
import logging

from livetv.errors import StorageError
from livetv.services import livetv_scheduler, sync_all_users
from livetv.services.sync_coordinator import get_sync_coordinator


logger = logging.getLogger(__name__)

main_router = APIRouter()

SERVICE_NAME = "Live TV Sync Service"
SERVICE_VERSION = "0.1.0"


@main_router.get("/")
async def root() -> dict:
    """Root endpoint with service information"""
    next_run = livetv_scheduler.get_next_run_time()

    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "next_scheduled_sync": next_run.isoformat() if next_run else None,
        "endpoints": {
            "sync": "/sync - Manually trigger a Live TV sync (POST)",
            "health": "/health - Health check"
        }
    }


@main_router.get("/health")
async def health_check() -> dict:
    """Health check endpoint"""
    next_run = livetv_scheduler.get_next_run_time()
    return {
        "status": "ok",
        "scheduler_running": livetv_scheduler.running,
        "sync_in_progress": get_sync_coordinator().is_syncing(),
        "next_sync": next_run.isoformat() if next_run else None
    }


@main_router.post("/sync")
async def trigger_sync() -> dict:
    """
    Manually trigger a Live TV sync

    Fetches every user's playlist and guide, then replaces their stored channels and programs
    """
    logger.info("Manual Live TV sync triggered via API")
    try:
        return await sync_all_users()
    except StorageError as exc:
        logger.error("Manual sync failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
