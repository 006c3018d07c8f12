"""
Job scheduler.

Admits queued jobs up to a concurrency limit, runs each job's pages
through the page pipeline, tracks progress and keeps every document's
aggregate state in line with its pages.

Dispatch is event driven: enqueueing a job or finishing one wakes the
loop immediately. Polling at ``idle_poll_interval`` only covers jobs
enqueued by other processes sharing the record store.
"""

import asyncio
import logging
import traceback
import uuid
from datetime import datetime
from functools import partial

from docscan.config import settings
from docscan.ocr import RecognitionService
from docscan.schemas.document import Document, DocumentStatus
from docscan.schemas.job import (
    LIVE_JOB_STATUSES,
    FailedPage,
    Job,
    JobError,
    JobProgress,
    JobStatus,
    JobType,
    JobWithDocument,
)
from docscan.schemas.options import JobOptions
from docscan.services.aggregation import aggregate_document, summarize_job
from docscan.services.notifier import NullNotifier, Notifier
from docscan.services.page_pipeline import PageOutcome, PagePipeline
from docscan.services.pdf_service import PDFParser
from docscan.services.progress import estimate_progress
from docscan.services.webhook_service import WebhookService
from docscan.storage import NotFoundError, RecordStore
from docscan.utils.clock import utcnow

logger = logging.getLogger(__name__)

STALE_JOB_MESSAGE = "Job interrupted - worker may have crashed"


class JobValidationError(ValueError):
    """Raised when a job cannot be created from the given arguments."""


class JobScheduler:
    """
    Schedules OCR jobs against a record store.

    One instance per process. Settings not passed explicitly are taken
    from ``docscan.config.settings``.

    Args:
        store: Record store with documents, pages and jobs.
        recognition: Recognition service for image pages.
        parser: PDF parser used to materialize PDF pages.
        notifier: Receives ``job:update`` and ``document:update`` events.
        webhooks: Delivers job webhooks on terminal states, if given.
    """

    def __init__(
        self,
        store: RecordStore,
        recognition: RecognitionService,
        parser: PDFParser | None = None,
        notifier: Notifier | None = None,
        webhooks: WebhookService | None = None,
        *,
        max_concurrent: int | None = None,
        idle_poll_interval: float | None = None,
        low_quality_threshold: float | None = None,
        max_page_retries: int | None = None,
        stale_job_threshold: float | None = None,
        shutdown_grace_period: float | None = None,
        default_language: str | None = None,
        user_jobs_limit: int | None = None,
        debug: bool | None = None,
    ):
        self.store = store
        self.recognition = recognition
        self.notifier = notifier or NullNotifier()
        self.webhooks = webhooks

        self.max_concurrent = max_concurrent if max_concurrent is not None else settings.max_concurrent_jobs
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.idle_poll_interval = idle_poll_interval or settings.idle_poll_interval
        self.low_quality_threshold = (
            low_quality_threshold if low_quality_threshold is not None else settings.low_quality_threshold
        )
        self.max_page_retries = max_page_retries if max_page_retries is not None else settings.max_page_retries
        self.stale_job_threshold = (
            stale_job_threshold if stale_job_threshold is not None else settings.stale_job_threshold
        )
        self.shutdown_grace_period = (
            shutdown_grace_period if shutdown_grace_period is not None else settings.shutdown_grace_period
        )
        self.default_language = default_language or settings.default_language
        self.user_jobs_limit = user_jobs_limit or settings.user_jobs_limit
        self.debug = settings.debug if debug is None else debug

        self.pipeline = PagePipeline(store, recognition, parser, self.low_quality_threshold)

        self._active: dict[str, asyncio.Task] = {}
        self._active_documents: dict[str, str] = {}  # job id -> document id
        self._cancelled: set[str] = set()
        self._background: set[asyncio.Task] = set()
        self._dispatch_lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._loop_task: asyncio.Task | None = None
        self._running = False

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        document_id: str,
        user_id: str,
        job_type: JobType | str = JobType.OCR_FULL,
        options: JobOptions | dict | None = None,
        *,
        page_numbers: list[int] | None = None,
        priority: int = 0,
        max_retries: int | None = None,
        webhook_url: str | None = None,
    ) -> Job:
        """
        Create a queued job for a document.

        Language and preprocessing fall back to the document's defaults.

        Returns:
            The persisted job.

        Raises:
            NotFoundError: If the document does not exist.
            JobValidationError: If the type, options or page numbers are invalid.
        """
        document = self.store.documents.get(document_id)
        if document is None:
            raise NotFoundError(f"Document not found: {document_id}")

        try:
            job = Job(
                id=str(uuid.uuid4()),
                document_id=document_id,
                user_id=user_id,
                type=JobType(job_type),
                priority=priority,
                page_numbers=page_numbers or [],
                options=self._build_options(options, document),
                max_retries=self.max_page_retries if max_retries is None else max_retries,
                webhook_url=webhook_url,
            )
        except ValueError as e:
            raise JobValidationError(f"Invalid job: {e}") from e

        job = self.store.jobs.create(job)

        if document.status != DocumentStatus.PROCESSING:
            document.status = DocumentStatus.QUEUED
            document = self._save_document(document)

        logger.info(f"Queued job {job.id} ({job.type.value}, priority {job.priority}) for document {document_id}")

        self.notifier.job_updated(job)
        if document is not None:
            self.notifier.document_updated(document)
        self._wakeup.set()
        return job

    def _build_options(self, options: JobOptions | dict | None, document: Document) -> JobOptions:
        if isinstance(options, JobOptions):
            return options

        data = dict(options or {})
        if not data.get("language"):
            data["language"] = document.language or self.default_language
        if data.get("preprocessing") is None:
            data["preprocessing"] = document.preprocessing.model_dump()
        return JobOptions.model_validate(data)

    # ------------------------------------------------------------------
    # Dispatch loop
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Recover stale jobs and start the background dispatch loop."""
        if self._loop_task is not None:
            return

        self.recover_stale_jobs()
        self._running = True
        self._loop_task = asyncio.create_task(self._run_loop(), name="job-scheduler")
        logger.info(f"Job scheduler started (max {self.max_concurrent} concurrent jobs)")

    async def _run_loop(self) -> None:
        while self._running:
            self._wakeup.clear()
            try:
                await self.dispatch()
            except Exception as e:
                logger.exception(f"Dispatch failed: {e}")

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.idle_poll_interval)
            except asyncio.TimeoutError:
                pass

    async def dispatch(self) -> list[Job]:
        """
        Start queued jobs while slots are free.

        Jobs are claimed by priority, then enqueue order. A job whose
        document already has a running job stays queued.

        Returns:
            The jobs started by this call.
        """
        started = []
        async with self._dispatch_lock:
            while self._running_slots_free():
                busy_documents = set(self._active_documents.values())
                job = self.store.jobs.claim_next(exclude_document_ids=busy_documents)
                if job is None:
                    break
                self._launch(job)
                started.append(job)
        return started

    def _running_slots_free(self) -> bool:
        return len(self._active) < self.max_concurrent

    def _launch(self, job: Job) -> None:
        task = asyncio.create_task(self._run_job(job), name=f"job-{job.id}")
        self._active[job.id] = task
        self._active_documents[job.id] = job.document_id
        task.add_done_callback(partial(self._on_job_done, job.id))

        logger.info(f"Started job {job.id} for document {job.document_id}")
        self.notifier.job_updated(job)

        document = self.store.documents.get(job.document_id)
        if document is not None:
            document.status = DocumentStatus.PROCESSING
            document = self._save_document(document)
            if document is not None:
                self.notifier.document_updated(document)

    def _on_job_done(self, job_id: str, task: asyncio.Task) -> None:
        self._active.pop(job_id, None)
        self._active_documents.pop(job_id, None)
        self._cancelled.discard(job_id)

        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Job {job_id} task crashed: {task.exception()!r}")

        self._wakeup.set()

    async def drain(self) -> None:
        """Run jobs until the backlog is empty and nothing is in flight."""
        while True:
            await self.dispatch()
            if not self._active:
                break
            await asyncio.wait(list(self._active.values()), return_when=asyncio.FIRST_COMPLETED)

        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def stop(self, grace_period: float | None = None) -> None:
        """
        Stop the dispatch loop.

        In-flight jobs get ``grace_period`` seconds to finish. Jobs still
        running after that are interrupted and put back in the backlog.
        """
        grace_period = self.shutdown_grace_period if grace_period is None else grace_period

        self._running = False
        self._wakeup.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        tasks = list(self._active.values())
        if tasks:
            logger.info(f"Waiting up to {grace_period:g}s for {len(tasks)} running jobs")
            _, pending = await asyncio.wait(tasks, timeout=grace_period)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if self._background:
            await asyncio.wait(list(self._background), timeout=grace_period)

        logger.info("Job scheduler stopped")

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def _run_job(self, job: Job) -> None:
        try:
            await self._execute(job)
        except asyncio.CancelledError:
            self._requeue_interrupted(job.id)
            raise
        except Exception as e:
            # The claimed object is stale once pages have run
            current = self.store.jobs.get(job.id) or job
            if self._is_cancelled(job.id):
                # e.g. the document was deleted under a cancelled job
                logger.info(f"Cancelled job {job.id} stopped: {e}")
                self._close_cancelled(current)
                return
            logger.exception(f"Job {job.id} failed: {e}")
            self._fail_job(current, e)

    async def _execute(self, job: Job) -> None:
        document = self.store.documents.get(job.document_id)
        if document is None:
            raise NotFoundError("Document not found")

        pages = await self.pipeline.resolve_pages(document, job.page_numbers)
        total = len(pages)

        job.progress = JobProgress(current=0, total=total, percentage=0)
        job = self._save_running(job)

        outcomes: list[PageOutcome] = []
        for index, page in enumerate(pages, start=1):
            if self._is_cancelled(job.id):
                logger.info(f"Job {job.id} cancelled after {index - 1}/{total} pages")
                break

            outcome = await self.pipeline.process_page(page, job)
            outcomes.append(outcome)

            if outcome.attempts > 1:
                job.retry_count += outcome.attempts - 1
            if not outcome.success:
                job.result.failed_pages.append(FailedPage(page_number=outcome.page_number, error=outcome.error))
            job.result.processed_pages = sum(1 for o in outcomes if o.success)

            estimate = estimate_progress(job.started_at, index, total)
            job.progress = JobProgress(current=index, total=total, percentage=estimate.percentage)
            job.estimated_time_remaining = estimate.eta_seconds
            job = self._save_running(job)
            self.notifier.job_updated(job)

        self._finish_job(job, outcomes)

    def _is_cancelled(self, job_id: str) -> bool:
        """Check the local flag, then the stored status (another process may have cancelled)."""
        if job_id in self._cancelled:
            return True
        stored = self.store.jobs.get(job_id)
        if stored is not None and stored.status == JobStatus.CANCELLED:
            self._cancelled.add(job_id)
            return True
        return False

    def _save_running(self, job: Job) -> Job:
        # Never overwrite a cancellation with a progress update
        if self._is_cancelled(job.id):
            job.status = JobStatus.CANCELLED
        return self.store.jobs.update(job)

    def _finish_job(self, job: Job, outcomes: list[PageOutcome]) -> None:
        now = utcnow()
        cancelled = self._is_cancelled(job.id)

        job.result = summarize_job(outcomes, job.started_at, now)
        job.completed_at = now
        if cancelled:
            job.status = JobStatus.CANCELLED
            job.estimated_time_remaining = None
        else:
            job.status = JobStatus.COMPLETED
            job.progress.percentage = 100
            job.estimated_time_remaining = 0
        job = self.store.jobs.update(job)

        logger.info(
            f"Job {job.id} {job.status.value}: {job.result.processed_pages} pages processed, "
            f"{len(job.result.failed_pages)} failed, avg confidence {job.result.average_confidence:.2f}"
        )

        self._settle_document(job.document_id, finished_job_id=job.id)
        self.notifier.job_updated(job)
        self._schedule_webhook(job)

    def _fail_job(self, job: Job, error: Exception) -> None:
        now = utcnow()
        stack = None
        if self.debug:
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))

        job.status = JobStatus.FAILED
        job.error = JobError(message=str(error) or error.__class__.__name__, stack=stack, timestamp=now)
        job.completed_at = now
        job.estimated_time_remaining = None
        if job.started_at is not None:
            job.result.total_processing_time = max(int((now - job.started_at).total_seconds() * 1000), 0)
        job = self.store.jobs.update(job)

        # Pages that already succeeded keep the document partial
        document = self._settle_document(job.document_id, finished_job_id=job.id)
        if document is not None and document.processed_pages == 0:
            self._mark_document_failed(job.document_id)
        self.notifier.job_updated(job)
        self._schedule_webhook(job)

    def _close_cancelled(self, job: Job) -> None:
        job.status = JobStatus.CANCELLED
        job.completed_at = utcnow()
        job.estimated_time_remaining = None
        job = self.store.jobs.update(job)

        self._settle_document(job.document_id, finished_job_id=job.id)
        self.notifier.job_updated(job)
        self._schedule_webhook(job)

    def _requeue_interrupted(self, job_id: str) -> None:
        job = self.store.jobs.get(job_id)
        if job is None:
            return

        if job.status == JobStatus.CANCELLED:
            self._close_cancelled(job)
            return

        if job.status == JobStatus.PROCESSING:
            job.status = JobStatus.QUEUED
            job.started_at = None
            job.estimated_time_remaining = None
            self.store.jobs.update(job)
            logger.info(f"Job {job_id} interrupted by shutdown, returned to the backlog")

            document = self.store.documents.get(job.document_id)
            if document is not None:
                document.status = DocumentStatus.QUEUED
                self._save_document(document)

    def _schedule_webhook(self, job: Job) -> None:
        if self.webhooks is None or not job.webhook_url:
            return
        task = asyncio.create_task(self.webhooks.deliver(job), name=f"webhook-{job.id}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Document state
    # ------------------------------------------------------------------

    def _save_document(self, document: Document) -> Document | None:
        try:
            return self.store.documents.update(document)
        except NotFoundError:
            logger.warning(f"Document {document.id} was deleted while its job ran")
            return None

    def _settle_document(self, document_id: str, finished_job_id: str | None = None) -> Document | None:
        """Recompute a document's aggregate state from its pages."""
        document = self.store.documents.get(document_id)
        if document is None:
            return None

        pages = self.store.pages.list_for_document(document_id)
        aggregate_document(document, pages)

        waiting = [
            job
            for job in self.store.jobs.list_for_document(document_id)
            if job.id != finished_job_id and job.status in LIVE_JOB_STATUSES
        ]
        if any(job.status == JobStatus.PROCESSING for job in waiting):
            document.status = DocumentStatus.PROCESSING
        elif waiting:
            document.status = DocumentStatus.QUEUED

        document = self._save_document(document)
        if document is not None:
            self.notifier.document_updated(document)
        return document

    def _mark_document_failed(self, document_id: str) -> None:
        document = self.store.documents.get(document_id)
        if document is None:
            return
        document.status = DocumentStatus.FAILED
        document = self._save_document(document)
        if document is not None:
            self.notifier.document_updated(document)

    # ------------------------------------------------------------------
    # Queries and control
    # ------------------------------------------------------------------

    async def cancel(self, job_id: str) -> Job:
        """
        Cancel a job.

        A queued job is cancelled at once. A processing job is marked
        cancelled and stops before its next page; pages already processed
        keep their results. A finished job is returned unchanged.

        Raises:
            NotFoundError: If the job does not exist.
        """
        job = self.store.jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Job not found: {job_id}")

        if job.is_terminal:
            return job

        if job.status == JobStatus.QUEUED:
            job.status = JobStatus.CANCELLED
            job.completed_at = utcnow()
            job = self.store.jobs.update(job)
            logger.info(f"Cancelled queued job {job_id}")

            self.notifier.job_updated(job)
            self._settle_document(job.document_id, finished_job_id=job.id)
            self._schedule_webhook(job)
            return job

        job.status = JobStatus.CANCELLED
        job = self.store.jobs.update(job)
        # Jobs running in another process see the stored status instead
        if job_id in self._active:
            self._cancelled.add(job_id)
        logger.info(f"Cancellation requested for running job {job_id}")

        self.notifier.job_updated(job)
        return job

    def get_job(self, job_id: str) -> JobWithDocument | None:
        job = self.store.jobs.get(job_id)
        if job is None:
            return None
        return JobWithDocument(**job.model_dump(), document=self.store.documents.get(job.document_id))

    def list_user_jobs(
        self,
        user_id: str,
        status: JobStatus | None = None,
        limit: int | None = None,
    ) -> list[JobWithDocument]:
        """A user's jobs, most recent first, with their documents resolved."""
        jobs = self.store.jobs.list_for_user(user_id, status=status, limit=limit or self.user_jobs_limit)
        documents: dict[str, Document | None] = {}
        result = []
        for job in jobs:
            if job.document_id not in documents:
                documents[job.document_id] = self.store.documents.get(job.document_id)
            result.append(JobWithDocument(**job.model_dump(), document=documents[job.document_id]))
        return result

    def recover_stale_jobs(self, now: datetime | None = None) -> list[Job]:
        """
        Fail jobs left ``processing`` by a process that died.

        Only jobs not running in this process and older than
        ``stale_job_threshold`` seconds are touched.

        Returns:
            The jobs that were failed.
        """
        now = now or utcnow()
        recovered = []

        for job in self.store.jobs.list_by_status(JobStatus.PROCESSING):
            if job.id in self._active:
                continue

            started = job.started_at or job.updated_at
            age = (now - started).total_seconds()
            if age <= self.stale_job_threshold:
                continue

            logger.warning(f"Failing stale job {job.id} (processing for {age:.0f}s)")
            job.status = JobStatus.FAILED
            job.error = JobError(message=STALE_JOB_MESSAGE, timestamp=now)
            job.completed_at = now
            job.estimated_time_remaining = None
            job = self.store.jobs.update(job)

            self._mark_document_failed(job.document_id)
            self.notifier.job_updated(job)
            recovered.append(job)

        if recovered:
            logger.info(f"Recovered {len(recovered)} stale jobs")
        return recovered
