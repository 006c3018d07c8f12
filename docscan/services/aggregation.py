"""
Job result summaries and document aggregate state.

Both are pure functions of the page outcomes so the scheduler can
recompute them at any point without extra bookkeeping.
"""

from datetime import datetime
from typing import Iterable

from docscan.schemas.document import Document, DocumentStatus
from docscan.schemas.job import FailedPage, JobResult
from docscan.schemas.page import Page, PageStatus
from docscan.services.page_pipeline import PageOutcome
from docscan.services.progress import round_half_up
from docscan.utils.clock import utcnow


def summarize_job(
    outcomes: Iterable[PageOutcome],
    started_at: datetime | None,
    now: datetime | None = None,
) -> JobResult:
    """
    Build a job result from the outcomes of the pages it handled.

    ``average_confidence`` is the mean over successful pages only, 0 when
    none succeeded.
    """
    outcomes = list(outcomes)
    successes = [outcome for outcome in outcomes if outcome.success]
    failures = [outcome for outcome in outcomes if not outcome.success]

    average = sum(outcome.confidence for outcome in successes) / len(successes) if successes else 0.0
    elapsed_ms = 0
    if started_at is not None:
        elapsed_ms = max(int(((now or utcnow()) - started_at).total_seconds() * 1000), 0)

    return JobResult(
        processed_pages=len(successes),
        failed_pages=[FailedPage(page_number=o.page_number, error=o.error or "Unknown error") for o in failures],
        average_confidence=round(average, 2),
        total_processing_time=elapsed_ms,
    )


def derive_document_status(pages: list[Page], total_pages: int) -> DocumentStatus:
    """
    Derive a document's status from the state of all its pages.

    - completed: every page is ``completed`` and all of them are processed
    - partial: at least one page succeeded (``low_quality`` counts)
    - failed: nothing succeeded and at least one page failed
    - uploaded: nothing was attempted yet
    """
    successes = sum(1 for page in pages if page.is_successful)

    if total_pages > 0 and successes >= total_pages and all(p.status == PageStatus.COMPLETED for p in pages):
        return DocumentStatus.COMPLETED
    if successes > 0:
        return DocumentStatus.PARTIAL
    if any(page.status == PageStatus.FAILED for page in pages):
        return DocumentStatus.FAILED
    return DocumentStatus.UPLOADED


def aggregate_document(document: Document, pages: list[Page]) -> Document:
    """
    Recompute a document's aggregate fields over all of its pages.

    Mutates and returns ``document``.
    """
    successes = sum(1 for page in pages if page.is_successful)

    document.processed_pages = min(successes, document.total_pages)
    if document.total_pages > 0:
        document.processing_progress = min(round_half_up(document.processed_pages / document.total_pages * 100), 100)
    else:
        document.processing_progress = 0
    document.average_confidence = round(sum(p.confidence for p in pages) / len(pages), 2) if pages else 0.0
    document.status = derive_document_status(pages, document.total_pages)
    return document
