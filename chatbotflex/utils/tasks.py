# /chatbotflex/utils/tasks.py

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from chatbotflex.config.settings import settings
from chatbotflex.services.auto_close_service import auto_close_service
from chatbotflex.services.queue_service import queue_service

logger = logging.getLogger(__name__)

WAITING_QUEUE_JOB_ID = "waiting_queue_job"
AUTO_CLOSE_JOB_ID = "auto_close_job"


async def retry_waiting_queue():
    """Retries operator assignment for conversations left in the waiting queue."""
    try:
        await queue_service.process_waiting_queue()
    except Exception:
        logger.error("An error occurred during the scheduled waiting queue pass.", exc_info=True)


async def close_inactive_conversations():
    """Warns and then closes conversations that went quiet."""
    try:
        await auto_close_service.run()
    except Exception:
        logger.error("An error occurred during the scheduled auto-close pass.", exc_info=True)


def schedule_jobs(scheduler: AsyncIOScheduler) -> None:
    scheduler.add_job(
        retry_waiting_queue,
        'interval',
        seconds=settings.waiting_queue_interval_seconds,
        id=WAITING_QUEUE_JOB_ID,
        replace_existing=True
    )
    logger.info(f"Scheduled job: retry_waiting_queue (every {settings.waiting_queue_interval_seconds}s).")

    if settings.auto_close_enabled:
        scheduler.add_job(
            close_inactive_conversations,
            'interval',
            seconds=settings.auto_close_interval_seconds,
            id=AUTO_CLOSE_JOB_ID,
            replace_existing=True
        )
        logger.info(f"Scheduled job: close_inactive_conversations (every {settings.auto_close_interval_seconds}s).")
