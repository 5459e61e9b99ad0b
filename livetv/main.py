from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from livetv.config import settings, setup_logging
from livetv.database import close_db, init_db
from livetv.services.scheduler_service import livetv_scheduler

from livetv.routers import SERVICE_NAME, SERVICE_VERSION, main_router


setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    logger.info("=" * 60)
    logger.info("Starting %s...", SERVICE_NAME)
    logger.info("=" * 60)

    try:
        logger.info("Initializing database...")
        await init_db()

        logger.info("Starting scheduler (cron: %s)...", settings.livetv_sync_cron)
        livetv_scheduler.start()
        logger.info("Scheduler started successfully")

        logger.info("=" * 60)
        logger.info("%s started successfully", SERVICE_NAME)
        logger.info("=" * 60)
    except Exception as e:
        logger.error("=" * 60)
        logger.error("Failed to start %s: %s", SERVICE_NAME, e, exc_info=True)
        logger.error("=" * 60)
        raise

    yield

    logger.info("=" * 60)
    logger.info("Shutting down %s...", SERVICE_NAME)
    logger.info("=" * 60)

    try:
        livetv_scheduler.shutdown()
    except Exception as e:
        logger.error("Error during scheduler shutdown: %s", e, exc_info=True)

    await close_db()

    logger.info("=" * 60)
    logger.info("%s stopped", SERVICE_NAME)
    logger.info("=" * 60)


app = FastAPI(
    title=SERVICE_NAME,
    version=SERVICE_VERSION,
    lifespan=lifespan
)

app.include_router(main_router)
