"""Tests for the job scheduler."""

import asyncio
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import FakeParser, FakeRecognition

from docscan.schemas.document import DocumentStatus, FileType
from docscan.schemas.job import Job, JobStatus, JobType
from docscan.schemas.page import PageStatus
from docscan.services.pdf_service import PDFProcessingError
from docscan.services.scheduler import STALE_JOB_MESSAGE, JobValidationError
from docscan.storage import NotFoundError
from docscan.utils.clock import utcnow


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("Condition not reached in time")
        await asyncio.sleep(0.005)


class TestEnqueue:
    """Tests for admitting jobs."""

    def test_enqueue_marks_document_queued(self, store, notifier, make_document, make_scheduler):
        document = make_document()
        scheduler = make_scheduler(FakeRecognition())

        job = asyncio.run(scheduler.enqueue(document.id, "user-1"))

        assert job.status == JobStatus.QUEUED
        assert job.options.language == "eng"
        assert store.documents.get(document.id).status == DocumentStatus.QUEUED
        assert notifier.job_events(job.id)[0]["status"] == "queued"

    def test_options_default_to_document(self, make_document, make_scheduler):
        """Language and preprocessing come from the document unless given."""
        document = make_document(language="deu", preprocessing={"deskew": True})
        scheduler = make_scheduler(FakeRecognition())

        job = asyncio.run(scheduler.enqueue(document.id, "user-1"))
        override = asyncio.run(scheduler.enqueue(document.id, "user-1", options={"language": "fra"}))

        assert job.options.language == "deu"
        assert job.options.preprocessing.deskew
        assert override.options.language == "fra"

    def test_unknown_document(self, make_scheduler):
        scheduler = make_scheduler(FakeRecognition())

        with pytest.raises(NotFoundError):
            asyncio.run(scheduler.enqueue("missing", "user-1"))

    def test_invalid_job_rejected(self, make_document, make_scheduler):
        """Bad job types, languages and page numbers are validation errors."""
        document = make_document()
        scheduler = make_scheduler(FakeRecognition())

        with pytest.raises(JobValidationError):
            asyncio.run(scheduler.enqueue(document.id, "user-1", "translate"))
        with pytest.raises(JobValidationError):
            asyncio.run(scheduler.enqueue(document.id, "user-1", options={"language": "ENG; rm"}))
        with pytest.raises(JobValidationError):
            asyncio.run(scheduler.enqueue(document.id, "user-1", page_numbers=[0]))

    def test_max_concurrent_must_be_positive(self, make_scheduler):
        with pytest.raises(ValueError):
            make_scheduler(FakeRecognition(), max_concurrent=0)


class TestExecution:
    """Tests for running jobs to completion."""

    def test_image_document_completes(self, store, make_document, make_scheduler):
        document = make_document()
        scheduler = make_scheduler(FakeRecognition())

        async def scenario():
            job = await scheduler.enqueue(document.id, "user-1")
            await scheduler.drain()
            return job

        job = store.jobs.get(asyncio.run(scenario()).id)
        stored = store.documents.get(document.id)

        assert job.status == JobStatus.COMPLETED
        assert job.progress.percentage == 100
        assert job.estimated_time_remaining == 0
        assert job.result.processed_pages == 1
        assert job.completed_at is not None
        assert stored.status == DocumentStatus.COMPLETED
        assert stored.average_confidence == 90.0
        assert stored.processing_progress == 100

    def test_progress_never_decreases(self, notifier, make_document, make_scheduler):
        """Every job update reports progress at or above the previous one."""
        document = make_document(pages=4)
        scheduler = make_scheduler(FakeRecognition())

        async def scenario():
            job = await scheduler.enqueue(document.id, "user-1")
            await scheduler.drain()
            return job

        job = asyncio.run(scenario())
        percentages = [event["progress"]["percentage"] for event in notifier.job_events(job.id)]

        assert percentages == sorted(percentages)
        assert percentages[-1] == 100
        assert 25 in percentages and 75 in percentages

    def test_mixed_confidences_leave_document_partial(self, store, make_document, make_scheduler):
        """Pages at 80, 40 and 90 give a partial document averaging 70."""
        document = make_document(pages=3)
        recognition = FakeRecognition(confidences={"page_1.png": 80.0, "page_2.png": 40.0, "page_3.png": 90.0})
        scheduler = make_scheduler(recognition)

        async def scenario():
            job = await scheduler.enqueue(document.id, "user-1")
            await scheduler.drain()
            return job

        job = store.jobs.get(asyncio.run(scenario()).id)
        stored = store.documents.get(document.id)

        assert stored.status == DocumentStatus.PARTIAL
        assert stored.average_confidence == 70.0
        assert stored.processed_pages == 3
        assert store.pages.get(document.id, 2).status == PageStatus.LOW_QUALITY
        assert job.status == JobStatus.COMPLETED
        assert job.result.average_confidence == 70.0

    def test_page_failure_does_not_stop_job(self, store, make_document, make_scheduler):
        """A failing page is recorded and the remaining pages still run."""
        document = make_document(pages=3)
        recognition = FakeRecognition(errors={"page_2.png": ["unreadable"]})
        scheduler = make_scheduler(recognition)

        async def scenario():
            job = await scheduler.enqueue(document.id, "user-1")
            await scheduler.drain()
            return job

        job = store.jobs.get(asyncio.run(scenario()).id)

        assert recognition.calls == ["page_1.png", "page_2.png", "page_3.png"]
        assert job.status == JobStatus.COMPLETED
        assert job.result.processed_pages == 2
        assert [(p.page_number, p.error) for p in job.result.failed_pages] == [(2, "unreadable")]
        assert store.pages.get(document.id, 2).status == PageStatus.FAILED
        assert store.documents.get(document.id).status == DocumentStatus.PARTIAL

    def test_all_pages_failed(self, store, make_document, make_scheduler):
        document = make_document(pages=1)
        scheduler = make_scheduler(FakeRecognition(errors={"page_1.png": ["unreadable"]}))

        async def scenario():
            await scheduler.enqueue(document.id, "user-1")
            await scheduler.drain()

        asyncio.run(scenario())

        assert store.documents.get(document.id).status == DocumentStatus.FAILED

    def test_page_retries_counted_on_job(self, store, make_document, make_scheduler):
        document = make_document(pages=1)
        scheduler = make_scheduler(FakeRecognition(errors={"page_1.png": ["flaky"]}), max_page_retries=1)

        async def scenario():
            job = await scheduler.enqueue(document.id, "user-1")
            await scheduler.drain()
            return job

        job = store.jobs.get(asyncio.run(scenario()).id)

        assert job.status == JobStatus.COMPLETED
        assert job.retry_count == 1
        assert store.pages.get(document.id, 1).retry_count == 1

    def test_pdf_text_not_recognized(self, store, make_document, make_scheduler):
        """PDF pages come from the text layer without recognition."""
        document = make_document(file_type=FileType.PDF)
        recognition = FakeRecognition()
        scheduler = make_scheduler(recognition, parser=FakeParser(["page one", "page two"]))

        async def scenario():
            job = await scheduler.enqueue(document.id, "user-1")
            await scheduler.drain()
            return job

        job = store.jobs.get(asyncio.run(scenario()).id)
        stored = store.documents.get(document.id)

        assert recognition.calls == []
        assert job.result.processed_pages == 2
        assert stored.total_pages == 2
        assert stored.status == DocumentStatus.COMPLETED
        assert stored.average_confidence == 100.0

    def test_missing_document_fails_job(self, store, make_document, make_scheduler):
        """A job whose document disappeared fails with an error."""
        document = make_document()
        scheduler = make_scheduler(FakeRecognition())

        async def scenario():
            job = await scheduler.enqueue(document.id, "user-1")
            store.documents.delete(document.id)
            await scheduler.drain()
            return job

        job = store.jobs.get(asyncio.run(scenario()).id)

        assert job.status == JobStatus.FAILED
        assert job.error.message == "Document not found"
        assert job.error.stack is None

    def test_failure_mid_job_keeps_progress(self, store, make_document, make_scheduler):
        """A store error on page 2 fails the job without losing page 1's progress."""
        document = make_document(pages=3)
        scheduler = make_scheduler(FakeRecognition())
        update_page = store.pages.update

        def flaky_update(page):
            if page.page_number == 2:
                raise ConnectionError("store unavailable")
            return update_page(page)

        store.pages.update = flaky_update

        async def scenario():
            job = await scheduler.enqueue(document.id, "user-1")
            await scheduler.drain()
            return job

        job = store.jobs.get(asyncio.run(scenario()).id)
        stored = store.documents.get(document.id)

        assert job.status == JobStatus.FAILED
        assert job.error.message == "store unavailable"
        assert job.progress.current == 1
        assert job.progress.total == 3
        assert job.result.processed_pages == 1
        assert store.pages.get(document.id, 1).status == PageStatus.COMPLETED
        assert stored.status == DocumentStatus.PARTIAL
        assert stored.processed_pages == 1

    def test_parser_failure_marks_document_failed(self, store, make_document, make_scheduler):
        document = make_document(file_type=FileType.PDF)
        parser = FakeParser([])
        parser.extract_text = MagicMock(side_effect=PDFProcessingError("broken xref"))
        scheduler = make_scheduler(FakeRecognition(), parser=parser)

        async def scenario():
            job = await scheduler.enqueue(document.id, "user-1")
            await scheduler.drain()
            return job

        job = store.jobs.get(asyncio.run(scenario()).id)

        assert job.status == JobStatus.FAILED
        assert store.documents.get(document.id).status == DocumentStatus.FAILED

    def test_reprocess_single_page(self, store, make_document, make_scheduler):
        """Reprocessing one page re-runs only that page and refreshes the document."""
        document = make_document(pages=2)
        recognition = FakeRecognition(confidences={"page_2.png": 40.0})
        scheduler = make_scheduler(recognition)

        async def scenario():
            await scheduler.enqueue(document.id, "user-1")
            await scheduler.drain()
            assert store.documents.get(document.id).status == DocumentStatus.PARTIAL

            recognition.confidences["page_2.png"] = 95.0
            job = await scheduler.enqueue(document.id, "user-1", JobType.REPROCESS, page_numbers=[2])
            await scheduler.drain()
            return job

        job = store.jobs.get(asyncio.run(scenario()).id)
        stored = store.documents.get(document.id)

        assert recognition.calls == ["page_1.png", "page_2.png", "page_2.png"]
        assert job.progress.total == 1
        assert store.pages.get(document.id, 2).confidence == 95.0
        assert stored.status == DocumentStatus.COMPLETED
        assert stored.average_confidence == 92.5

    def test_webhook_sent_on_completion(self, make_document, make_scheduler):
        """Jobs with a webhook URL are delivered once they finish."""
        document = make_document()
        webhooks = AsyncMock()
        scheduler = make_scheduler(FakeRecognition(), webhooks=webhooks)

        async def scenario():
            await scheduler.enqueue(document.id, "user-1", webhook_url="https://hooks.example.com/ocr")
            await scheduler.enqueue(make_document().id, "user-1")
            await scheduler.drain()

        asyncio.run(scenario())

        webhooks.deliver.assert_awaited_once()
        delivered = webhooks.deliver.await_args.args[0]
        assert delivered.status == JobStatus.COMPLETED
        assert delivered.webhook_url == "https://hooks.example.com/ocr"

    def test_full_job_skips_recognized_pages(self, make_document, make_scheduler):
        """A second full job leaves pages with text alone."""
        document = make_document(pages=2)
        recognition = FakeRecognition()
        scheduler = make_scheduler(recognition)

        async def scenario():
            await scheduler.enqueue(document.id, "user-1")
            await scheduler.drain()
            await scheduler.enqueue(document.id, "user-1")
            await scheduler.drain()

        asyncio.run(scenario())

        assert recognition.calls == ["page_1.png", "page_2.png"]


class TestDispatch:
    """Tests for admission order and concurrency."""

    def test_concurrency_limit(self, store, make_document, make_scheduler):
        """No more than max_concurrent jobs run at once."""
        documents = [make_document() for _ in range(5)]
        recognition = FakeRecognition(delay=0.02)
        scheduler = make_scheduler(recognition, max_concurrent=2)

        async def scenario():
            for document in documents:
                await scheduler.enqueue(document.id, "user-1")
            await scheduler.drain()

        asyncio.run(scenario())

        assert recognition.max_in_flight == 2
        assert all(job.status == JobStatus.COMPLETED for job in store.jobs.list_for_user("user-1"))

    def test_priority_order(self, store, make_document, make_scheduler):
        """Higher priority jobs start first."""
        low, high, mid = make_document(), make_document(), make_document()
        recognition = FakeRecognition()
        scheduler = make_scheduler(recognition, max_concurrent=1)

        async def scenario():
            await scheduler.enqueue(low.id, "user-1", priority=0)
            await scheduler.enqueue(high.id, "user-1", priority=5)
            await scheduler.enqueue(mid.id, "user-1", priority=1)
            await scheduler.drain()

        asyncio.run(scenario())

        order = [store.jobs.list_for_document(doc.id)[0].started_at for doc in (high, mid, low)]
        assert order == sorted(order)
        assert recognition.calls == [f"{high.id}.png", f"{mid.id}.png", f"{low.id}.png"]

    def test_concurrent_enqueue_respects_limit(self, store, make_document, make_scheduler):
        """Jobs enqueued together never exceed max_concurrent in the processing state."""
        documents = [make_document() for _ in range(6)]
        observed = []

        def record_state(name):
            observed.append((len(store.jobs.list_by_status(JobStatus.PROCESSING)), scheduler.active_count))

        recognition = FakeRecognition(delay=0.02, on_recognize=record_state)
        scheduler = make_scheduler(recognition, max_concurrent=2)

        async def scenario():
            await scheduler.start()
            jobs = await asyncio.gather(*(scheduler.enqueue(doc.id, "user-1") for doc in documents))
            await wait_until(
                lambda: all(store.jobs.get(job.id).status == JobStatus.COMPLETED for job in jobs)
            )
            await scheduler.stop()

        asyncio.run(scenario())

        assert len(observed) == 6
        assert max(processing for processing, _ in observed) == 2
        assert max(active for _, active in observed) == 2

    def test_priority_beats_enqueue_order(self, store, make_document, make_scheduler):
        """Dispatch order depends on priority alone; ties keep enqueue order."""
        first_low, first_high, second_low, second_high = (make_document() for _ in range(4))
        recognition = FakeRecognition()
        scheduler = make_scheduler(recognition, max_concurrent=1)

        async def scenario():
            await scheduler.enqueue(first_high.id, "user-1", priority=5)
            await scheduler.enqueue(first_low.id, "user-1", priority=1)
            await scheduler.enqueue(second_low.id, "user-1", priority=1)
            await scheduler.enqueue(second_high.id, "user-1", priority=5)
            await scheduler.drain()

        asyncio.run(scenario())

        expected = [first_high, second_high, first_low, second_low]
        assert recognition.calls == [f"{doc.id}.png" for doc in expected]

    def test_one_job_per_document_at_a_time(self, store, make_document, make_scheduler):
        """Jobs on the same document never overlap, even with free slots."""
        document = make_document(pages=1)
        recognition = FakeRecognition(delay=0.02)
        scheduler = make_scheduler(recognition, max_concurrent=3)

        async def scenario():
            await scheduler.enqueue(document.id, "user-1")
            await scheduler.enqueue(document.id, "user-1", JobType.REPROCESS)
            started = await scheduler.dispatch()
            assert len(started) == 1
            await scheduler.drain()

        asyncio.run(scenario())

        assert recognition.max_in_flight == 1
        assert len(recognition.calls) == 2
        assert all(job.status == JobStatus.COMPLETED for job in store.jobs.list_for_document(document.id))

    def test_start_processes_enqueued_jobs(self, store, make_document, make_scheduler):
        """The background loop picks up jobs as they are enqueued."""
        document = make_document()
        scheduler = make_scheduler(FakeRecognition())

        async def scenario():
            await scheduler.start()
            assert scheduler.is_running
            job = await scheduler.enqueue(document.id, "user-1")
            await wait_until(lambda: store.jobs.get(job.id).status == JobStatus.COMPLETED)
            await scheduler.stop()
            return job

        asyncio.run(scenario())

        assert not scheduler.is_running
        assert store.documents.get(document.id).status == DocumentStatus.COMPLETED


class TestCancel:
    """Tests for cancellation."""

    def test_cancel_queued_job(self, store, make_document, make_scheduler):
        """A queued job is cancelled without ever running."""
        document = make_document()
        recognition = FakeRecognition()
        scheduler = make_scheduler(recognition)

        async def scenario():
            job = await scheduler.enqueue(document.id, "user-1")
            cancelled = await scheduler.cancel(job.id)
            await scheduler.drain()
            return cancelled

        cancelled = asyncio.run(scenario())

        assert cancelled.status == JobStatus.CANCELLED
        assert cancelled.completed_at is not None
        assert recognition.calls == []
        assert store.jobs.get(cancelled.id).started_at is None
        assert store.documents.get(document.id).status == DocumentStatus.UPLOADED

    def test_cancel_finished_job_is_noop(self, store, make_document, make_scheduler):
        document = make_document()
        scheduler = make_scheduler(FakeRecognition())

        async def scenario():
            job = await scheduler.enqueue(document.id, "user-1")
            await scheduler.drain()
            return await scheduler.cancel(job.id)

        job = asyncio.run(scenario())

        assert job.status == JobStatus.COMPLETED
        assert store.jobs.get(job.id).status == JobStatus.COMPLETED

    def test_cancel_unknown_job(self, make_scheduler):
        scheduler = make_scheduler(FakeRecognition())

        with pytest.raises(NotFoundError):
            asyncio.run(scheduler.cancel("missing"))

    def test_cancel_job_running_elsewhere(self, store, make_document, make_scheduler):
        """A job processing in another process is cancelled through the store only."""
        document = make_document()
        scheduler = make_scheduler(FakeRecognition())

        async def scenario():
            job = await scheduler.enqueue(document.id, "user-1")
            store.jobs.claim_next()
            return await scheduler.cancel(job.id)

        job = asyncio.run(scenario())

        assert job.status == JobStatus.CANCELLED
        assert store.jobs.get(job.id).status == JobStatus.CANCELLED
        assert scheduler.active_count == 0
        assert not scheduler._cancelled

    def test_cancel_running_job_keeps_finished_pages(self, store, make_document, make_scheduler):
        """A running job stops before its next page; finished pages stay."""
        document = make_document(pages=3)
        recognition = FakeRecognition(delay=0.05)
        scheduler = make_scheduler(recognition)

        async def scenario():
            job = await scheduler.enqueue(document.id, "user-1")
            await scheduler.dispatch()
            await wait_until(lambda: recognition.in_flight == 1)
            await scheduler.cancel(job.id)
            await scheduler.drain()
            return job

        job = store.jobs.get(asyncio.run(scenario()).id)

        assert recognition.calls == ["page_1.png"]
        assert job.status == JobStatus.CANCELLED
        assert job.completed_at is not None
        assert store.pages.get(document.id, 1).status == PageStatus.COMPLETED
        assert store.pages.get(document.id, 2).status == PageStatus.PENDING
        assert store.documents.get(document.id).status == DocumentStatus.PARTIAL


class TestShutdownAndRecovery:
    """Tests for shutdown and stale job recovery."""

    def test_stop_requeues_running_jobs(self, store, make_document, make_scheduler):
        """Jobs still running after the grace period go back to the backlog."""
        document = make_document()
        recognition = FakeRecognition(delay=5.0)
        scheduler = make_scheduler(recognition)

        async def scenario():
            await scheduler.start()
            job = await scheduler.enqueue(document.id, "user-1")
            await wait_until(lambda: recognition.in_flight == 1)
            await scheduler.stop(grace_period=0.01)
            return job

        job = store.jobs.get(asyncio.run(scenario()).id)

        assert job.status == JobStatus.QUEUED
        assert job.started_at is None
        assert scheduler.active_count == 0
        assert store.documents.get(document.id).status == DocumentStatus.QUEUED
        assert store.jobs.claim_next().id == job.id

    def test_recover_stale_jobs(self, store, notifier, make_document, make_scheduler):
        """Jobs stuck in processing past the threshold are failed."""
        stale_document = make_document()
        fresh_document = make_document()
        now = utcnow()

        stale = store.jobs.create(Job(id=str(uuid.uuid4()), document_id=stale_document.id, user_id="user-1"))
        store.jobs.claim_next(started_at=now - timedelta(seconds=600))
        fresh = store.jobs.create(Job(id=str(uuid.uuid4()), document_id=fresh_document.id, user_id="user-1"))
        store.jobs.claim_next(started_at=now - timedelta(seconds=10))

        scheduler = make_scheduler(FakeRecognition(), stale_job_threshold=300)
        recovered = scheduler.recover_stale_jobs(now=now)

        assert [job.id for job in recovered] == [stale.id]
        failed = store.jobs.get(stale.id)
        assert failed.status == JobStatus.FAILED
        assert failed.error.message == STALE_JOB_MESSAGE
        assert store.documents.get(stale_document.id).status == DocumentStatus.FAILED
        assert store.jobs.get(fresh.id).status == JobStatus.PROCESSING


class TestQueries:
    """Tests for job lookups."""

    def test_get_job_includes_document(self, make_document, make_scheduler):
        document = make_document()
        scheduler = make_scheduler(FakeRecognition())

        job = asyncio.run(scheduler.enqueue(document.id, "user-1"))
        found = scheduler.get_job(job.id)

        assert found.document.id == document.id
        assert scheduler.get_job("missing") is None

    def test_list_user_jobs_by_status(self, make_document, make_scheduler):
        first, second = make_document(), make_document()
        scheduler = make_scheduler(FakeRecognition())

        async def scenario():
            job = await scheduler.enqueue(first.id, "user-1")
            await scheduler.enqueue(second.id, "user-1")
            await scheduler.cancel(job.id)
            return job

        cancelled = asyncio.run(scenario())

        listed = scheduler.list_user_jobs("user-1", status=JobStatus.CANCELLED)
        assert [job.id for job in listed] == [cancelled.id]
        assert len(scheduler.list_user_jobs("user-1")) == 2
        assert scheduler.list_user_jobs("nobody") == []
