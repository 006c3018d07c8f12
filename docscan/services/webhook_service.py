"""
Job webhooks.

A job created with a ``webhook_url`` gets one POST when it reaches a
terminal state. Delivery runs in the background and never changes the
job's outcome.
"""

import asyncio
import logging

import httpx

from docscan.config import settings
from docscan.schemas.job import Job

logger = logging.getLogger(__name__)


def webhook_payload(job: Job) -> dict:
    """Body POSTed to a job's webhook, e.g. ``{"event": "job.completed", ...}``."""
    return {
        "event": f"job.{job.status.value}",
        "job_id": job.id,
        "document_id": job.document_id,
        "status": job.status.value,
        "result": job.result.model_dump(mode="json"),
        "error": job.error.message if job.error else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }


class WebhookService:
    """
    Delivers terminal job states to their webhook URLs.

    Args:
        timeout: Request timeout in seconds.
        max_retries: Delivery attempts before giving up.
        backoff: Seconds to wait after the first failed attempt, doubled
            after each further one.
    """

    def __init__(
        self,
        timeout: int | None = None,
        max_retries: int | None = None,
        backoff: float = 0.5,
    ):
        self.timeout = timeout or settings.webhook_timeout
        self.max_retries = max_retries or settings.webhook_max_retries
        self.backoff = backoff

    async def deliver(self, job: Job) -> bool:
        """
        POST a finished job to its webhook.

        Returns:
            True if delivered or the job has no webhook, False once every
            attempt failed.
        """
        if not job.webhook_url:
            return True

        payload = webhook_payload(job)
        delay = self.backoff

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(1, self.max_retries + 1):
                try:
                    response = await client.post(job.webhook_url, json=payload)
                    response.raise_for_status()
                    logger.info(f"Webhook delivered for job {job.id} ({payload['event']})")
                    return True
                except httpx.HTTPStatusError as e:
                    reason = f"HTTP {e.response.status_code}"
                except httpx.RequestError as e:
                    reason = str(e) or e.__class__.__name__

                logger.warning(f"Webhook for job {job.id} failed (attempt {attempt}/{self.max_retries}): {reason}")
                if attempt < self.max_retries and delay > 0:
                    await asyncio.sleep(delay)
                    delay *= 2

        logger.error(f"Giving up on webhook for job {job.id} after {self.max_retries} attempts")
        return False
