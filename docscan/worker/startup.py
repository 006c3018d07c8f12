"""
Service wiring shared by the API process and the standalone worker.
"""
import logging
from dataclasses import dataclass

import redis

from docscan.config import Settings, settings
from docscan.ocr import RecognitionEngineRegistry, RecognitionService
from docscan.services.document_service import DocumentService
from docscan.services.notifier import NullNotifier, Notifier, RedisNotifier
from docscan.services.pdf_service import PDFParser
from docscan.services.scheduler import JobScheduler
from docscan.services.search_service import SearchService
from docscan.services.webhook_service import WebhookService
from docscan.storage import MemoryRecordStore, RecordStore, RedisRecordStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a process needs to serve documents and run jobs."""

    store: RecordStore
    recognition: RecognitionService
    notifier: Notifier
    scheduler: JobScheduler
    documents: DocumentService
    search: SearchService
    redis_client: redis.Redis | None = None


def engine_options(config: Settings) -> dict:
    """Constructor options for the configured recognition engine."""
    if config.default_engine != "tesseract":
        return {}
    return {
        "tesseract_cmd": config.tesseract_cmd,
        "denoise_strength": config.denoise_strength,
        "binarization_method": config.binarization_method,
    }


def build_services(config: Settings | None = None) -> Services:
    """
    Build the record store, recognition service, scheduler and document
    service from settings.

    Raises:
        ValueError: If the configured engine is not registered.
    """
    config = config or settings

    if not RecognitionEngineRegistry.is_registered(config.default_engine):
        raise ValueError(
            f"Engine '{config.default_engine}' is not registered "
            f"(available: {RecognitionEngineRegistry.list_registered()})"
        )

    redis_client = None
    if config.storage_backend == "redis":
        redis_client = redis.Redis.from_url(config.redis_url)
        store: RecordStore = RedisRecordStore(redis_client)
        notifier: Notifier = RedisNotifier(redis_client, prefix=config.notification_prefix)
    else:
        store = MemoryRecordStore()
        notifier = NullNotifier()

    recognition = RecognitionService(
        engine_name=config.default_engine,
        timeout=config.recognition_timeout,
        engine_options=engine_options(config),
    )

    scheduler = JobScheduler(
        store,
        recognition,
        parser=PDFParser(),
        notifier=notifier,
        webhooks=WebhookService(timeout=config.webhook_timeout, max_retries=config.webhook_max_retries),
        max_concurrent=config.max_concurrent_jobs,
        idle_poll_interval=config.idle_poll_interval,
        low_quality_threshold=config.low_quality_threshold,
        max_page_retries=config.max_page_retries,
        stale_job_threshold=config.stale_job_threshold,
        shutdown_grace_period=config.shutdown_grace_period,
        default_language=config.default_language,
        user_jobs_limit=config.user_jobs_limit,
        debug=config.debug,
    )

    documents = DocumentService(
        store,
        scheduler,
        uploads_dir=config.uploads_dir,
        max_upload_size_mb=config.max_upload_size_mb,
        supported_languages=config.supported_languages,
        default_language=config.default_language,
    )

    logger.info(
        f"Services ready: storage={config.storage_backend}, engine={config.default_engine}, "
        f"max_concurrent_jobs={config.max_concurrent_jobs}"
    )
    return Services(
        store=store,
        recognition=recognition,
        notifier=notifier,
        scheduler=scheduler,
        documents=documents,
        search=SearchService(store, max_documents=config.search_max_documents),
        redis_client=redis_client,
    )
