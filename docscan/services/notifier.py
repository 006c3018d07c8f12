"""
Real-time notifications for job and document updates.

Notifications are best effort: a publish failure is logged and never
reaches the scheduler.
"""

import json
import logging
from abc import ABC, abstractmethod

import redis

from docscan.schemas.document import Document
from docscan.schemas.job import Job

logger = logging.getLogger(__name__)

JOB_UPDATE = "job:update"
DOCUMENT_UPDATE = "document:update"


def job_payload(job: Job) -> dict:
    """Payload published on ``job:update``."""
    return {
        "job_id": job.id,
        "document_id": job.document_id,
        "status": job.status.value,
        "progress": job.progress.model_dump(),
        "estimated_time_remaining": job.estimated_time_remaining,
        "result": job.result.model_dump(mode="json"),
        "error": job.error.model_dump(mode="json", exclude={"stack"}) if job.error else None,
    }


def document_payload(document: Document) -> dict:
    """Payload published on ``document:update``."""
    return {
        "document_id": document.id,
        "status": document.status.value,
        "processing_progress": document.processing_progress,
        "processed_pages": document.processed_pages,
        "total_pages": document.total_pages,
        "average_confidence": document.average_confidence,
    }


class Notifier(ABC):
    """Publishes update events to subscribers."""

    @abstractmethod
    def publish(self, topic: str, payload: dict) -> None:
        pass

    def job_updated(self, job: Job) -> None:
        self._safe_publish(JOB_UPDATE, job_payload(job))

    def document_updated(self, document: Document) -> None:
        self._safe_publish(DOCUMENT_UPDATE, document_payload(document))

    def _safe_publish(self, topic: str, payload: dict) -> None:
        try:
            self.publish(topic, payload)
        except Exception as e:
            logger.warning(f"Failed to publish {topic}: {e}")


class NullNotifier(Notifier):
    """Drops every notification."""

    def publish(self, topic: str, payload: dict) -> None:
        pass


class RedisNotifier(Notifier):
    """Publishes JSON payloads on Redis pub/sub channels ``{prefix}:{topic}``."""

    def __init__(self, redis_client: redis.Redis, prefix: str = "docscan"):
        self.redis = redis_client
        self.prefix = prefix

    def channel(self, topic: str) -> str:
        return f"{self.prefix}:{topic}"

    def publish(self, topic: str, payload: dict) -> None:
        self.redis.publish(self.channel(topic), json.dumps(payload, default=str))
