"""
Scheduled notification delivery job.

Notifications whose tier is not delivered immediately are stored as
``scheduled`` with a ``scheduled_for`` time. This job wakes up every
SCHEDULED_DELIVERY_INTERVAL_SECONDS and delivers the ones that are due.
"""

import asyncio
from datetime import UTC, datetime

import httpx

from napoleon.config import settings
from napoleon.db.pool import db_pool
from napoleon.features.notifications import (
    NotificationRepository,
    NotificationService,
    build_channel_senders,
)
from napoleon.infrastructure.observability.logging import get_logger
from napoleon.services.openai_service import OpenAIService
from napoleon.services.prompt_templates import PromptTemplateLoader

logger = get_logger(__name__)

MAX_PROCESSING_TIME_SECONDS = 300
ERROR_BACKOFF_SECONDS = 60


class ScheduledDeliveryJob:
    def __init__(self, service: NotificationService, *, batch_size: int | None = None):
        self.service = service
        self.batch_size = batch_size or settings.SCHEDULED_DELIVERY_BATCH_SIZE
        self.is_running = False
        self.last_run_time: datetime | None = None

    async def run_once(self) -> dict:
        """
        Deliver one batch of due notifications.

        Returns:
            Dict: Counts for the run, or the reason it was skipped or failed
        """
        if self.is_running:
            logger.warning("Scheduled delivery job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        started = datetime.now(UTC)
        try:
            self.is_running = True
            run = await asyncio.wait_for(
                self.service.deliver_due(self.batch_size), timeout=MAX_PROCESSING_TIME_SECONDS
            )
            self.last_run_time = datetime.now(UTC)
            return {
                "job_run": "scheduled_delivery",
                "due": run.due,
                "delivered": run.delivered,
                "failed": run.failed,
                "duration_seconds": round((self.last_run_time - started).total_seconds(), 2),
            }

        except TimeoutError:
            logger.error(
                "Scheduled delivery job timed out", timeout_seconds=MAX_PROCESSING_TIME_SECONDS
            )
            return {"job_run": "scheduled_delivery", "job_error": "timeout"}

        except Exception as e:
            logger.error(
                "Scheduled delivery job failed", error=str(e), error_type=type(e).__name__
            )
            return {"job_run": "scheduled_delivery", "job_error": str(e)}

        finally:
            self.is_running = False

    def get_job_status(self) -> dict:
        return {
            "job_name": "scheduled_delivery",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "interval_seconds": settings.SCHEDULED_DELIVERY_INTERVAL_SECONDS,
            "batch_size": self.batch_size,
        }


async def run_scheduler(job: ScheduledDeliveryJob, interval_seconds: float) -> None:
    """Run the job forever, sleeping between cycles."""
    logger.info("Starting scheduled delivery scheduler", interval_seconds=interval_seconds)

    while True:
        try:
            metrics = await job.run_once()
            if metrics.get("due"):
                logger.info("Scheduled delivery cycle completed", **metrics)
            await asyncio.sleep(interval_seconds)
        except Exception as e:
            logger.error(
                "Error in scheduled delivery scheduler", error=str(e), error_type=type(e).__name__
            )
            await asyncio.sleep(ERROR_BACKOFF_SECONDS)


async def start_scheduled_delivery_scheduler() -> None:
    """Worker entrypoint: open the pool and webhook client, then deliver due notifications."""
    await db_pool.initialize()
    http_client = httpx.AsyncClient(timeout=settings.NOTIFICATION_WEBHOOK_TIMEOUT_SECONDS)
    try:
        service = NotificationService(
            NotificationRepository,
            OpenAIService(),
            PromptTemplateLoader(settings.PROMPT_TEMPLATE_DIR),
            build_channel_senders(http_client),
        )
        await run_scheduler(
            ScheduledDeliveryJob(service), settings.SCHEDULED_DELIVERY_INTERVAL_SECONDS
        )
    finally:
        await http_client.aclose()
        await db_pool.close()
