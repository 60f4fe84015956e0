# /chatbotflex/utils/lifecycle.py

import logging
from contextlib import asynccontextmanager
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI

from chatbotflex.utils.logging import setup_logging
from chatbotflex.utils.tasks import schedule_jobs
from chatbotflex.services.db_service import db_service
from chatbotflex.services.cache_service import cache_service
from chatbotflex.services.whatsapp_service import whatsapp_service
from chatbotflex.services.instagram_service import instagram_service

# Startup: logging, indexes, scheduled jobs. Shutdown: release connections.

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    setup_logging()
    logger.info("Application starting up...")

    await db_service.create_indexes()
    if not whatsapp_service.is_configured:
        logger.warning("WhatsApp access token or phone id missing; replies on WhatsApp will not be delivered.")
    if not instagram_service.is_configured:
        logger.info("Instagram messaging is not configured.")

    schedule_jobs(scheduler)
    scheduler.start()
    logger.info("Application startup complete. Ready to accept requests.")

    yield

    logger.info("Application shutting down...")
    scheduler.shutdown()
    await whatsapp_service.close()
    await instagram_service.close()
    await cache_service.close()
    db_service.close()
