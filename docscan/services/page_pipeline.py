"""
Page pipeline: materializes a document's pages and runs one page at a time
through recognition.

Page state machine::

    pending ──> processing ──> completed | low_quality | failed
                    ^                                     │
                    └──────────── reprocess ──────────────┘
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from docscan.ocr import RecognitionError, RecognitionService
from docscan.schemas.document import Document, FileType
from docscan.schemas.job import Job, JobType
from docscan.schemas.page import Page, PageSource, PageStatus
from docscan.services.pdf_service import PDFParser
from docscan.storage import DuplicateRecordError, RecordStore
from docscan.utils.clock import utcnow
from docscan.utils.thumbnails import create_thumbnail

logger = logging.getLogger(__name__)


@dataclass
class PageOutcome:
    """What happened to one page within a job."""

    page_number: int
    success: bool
    confidence: float = 0.0
    error: str | None = None
    skipped: bool = False
    attempts: int = 0


def new_page(document: Document, page_number: int, **fields) -> Page:
    return Page(
        id=str(uuid.uuid4()),
        document_id=document.id,
        page_number=page_number,
        language=document.language,
        **fields,
    )


class PagePipeline:
    """
    Turns documents into pages and pages into recognized text.

    Args:
        store: Record store holding documents and pages.
        recognition: Recognition service used for image pages.
        parser: PDF parser used to split PDFs into pages.
        low_quality_threshold: Pages recognized below this confidence are
            marked ``low_quality``.
    """

    def __init__(
        self,
        store: RecordStore,
        recognition: RecognitionService,
        parser: PDFParser | None = None,
        low_quality_threshold: float = 60.0,
    ):
        self.store = store
        self.recognition = recognition
        self.parser = parser or PDFParser()
        self.low_quality_threshold = low_quality_threshold

    async def resolve_pages(self, document: Document, page_numbers: list[int] | None = None) -> list[Page]:
        """
        Return the pages a job works on, creating them on first use.

        Args:
            document: The job's document.
            page_numbers: Restrict to these page numbers when non-empty.

        Returns:
            Pages in ascending page-number order.

        Raises:
            PDFProcessingError: If the PDF cannot be parsed.
        """
        pages = self.store.pages.list_for_document(document.id)
        if not pages:
            pages = await self.materialize(document)

        if page_numbers:
            wanted = set(page_numbers)
            pages = [page for page in pages if page.page_number in wanted]

        return sorted(pages, key=lambda page: page.page_number)

    async def materialize(self, document: Document) -> list[Page]:
        """
        Create the pages of a document that has none yet.

        An image becomes a single pending page. A PDF becomes one completed
        page per PDF page, carrying that page's embedded text.
        """
        if document.file_type == FileType.PDF:
            parsed = await asyncio.to_thread(self.parser.extract_text, document.file_path)
            logger.info(f"Document {document.id}: PDF text extracted from {parsed.total_pages} pages")

            document.total_pages = parsed.total_pages
            self.store.documents.update(document)

            now = utcnow()
            candidates = [
                new_page(
                    document,
                    number,
                    source=PageSource.PDF_TEXT,
                    image_path=document.file_path,
                    text=text,
                    confidence=100.0,
                    status=PageStatus.COMPLETED,
                    last_processed_at=now,
                )
                for number, text in enumerate(parsed.page_texts, start=1)
            ]
        else:
            candidates = [
                new_page(
                    document,
                    1,
                    source=PageSource.IMAGE,
                    image_path=document.file_path,
                    status=PageStatus.PENDING,
                )
            ]

        pages = []
        for page in candidates:
            try:
                pages.append(self.store.pages.create(page))
            except DuplicateRecordError:
                # Created concurrently; the stored page wins
                pages.append(self.store.pages.get(document.id, page.page_number))
        return pages

    def should_skip(self, page: Page, job: Job) -> bool:
        """
        Whether a page can be reported without running recognition.

        PDF text pages never go through recognition. Image pages that
        already hold usable text are skipped, except by reprocess jobs.
        """
        if page.source == PageSource.PDF_TEXT:
            return True
        if job.type == JobType.REPROCESS:
            return False
        return page.has_usable_text

    async def process_page(self, page: Page, job: Job) -> PageOutcome:
        """
        Run one page through recognition and persist the result.

        Recognition errors are retried up to ``job.max_retries`` more times.
        When attempts run out the page is marked failed; the error is
        reported in the outcome rather than raised.

        Returns:
            PageOutcome for the job's result.
        """
        if self.should_skip(page, job):
            logger.debug(f"Page {page.page_number} of {page.document_id} already has text, skipping recognition")
            return PageOutcome(
                page_number=page.page_number,
                success=True,
                confidence=page.confidence or 100.0,
                skipped=True,
            )

        page.status = PageStatus.PROCESSING
        page = self.store.pages.update(page)

        language = job.options.language
        last_error = "Unknown error"
        attempts = 0

        for attempt in range(job.max_retries + 1):
            attempts += 1
            try:
                if not page.image_path:
                    raise RecognitionError("Page has no image")
                result = await self.recognition.recognize(
                    Path(page.image_path), language, job.options.preprocessing
                )
            except RecognitionError as e:
                last_error = str(e)
                page.retry_count += 1
                logger.warning(
                    f"Page {page.page_number} of {page.document_id} failed "
                    f"(attempt {attempt + 1}/{job.max_retries + 1}): {last_error}"
                )
                continue

            page.text = result.text
            page.confidence = result.confidence
            page.words = result.words
            page.lines = result.lines
            page.language = language
            page.processing_time_ms = result.processing_time_ms
            page.status = (
                PageStatus.LOW_QUALITY if result.confidence < self.low_quality_threshold else PageStatus.COMPLETED
            )
            page.error_message = None
            page.last_processed_at = utcnow()
            if page.thumbnail_path is None:
                thumbnail = await asyncio.to_thread(create_thumbnail, page.image_path)
                page.thumbnail_path = str(thumbnail) if thumbnail else None
            self.store.pages.update(page)

            return PageOutcome(
                page_number=page.page_number,
                success=True,
                confidence=result.confidence,
                attempts=attempts,
            )

        page.status = PageStatus.FAILED
        page.error_message = last_error
        page.last_processed_at = utcnow()
        self.store.pages.update(page)

        return PageOutcome(
            page_number=page.page_number,
            success=False,
            error=last_error,
            attempts=attempts,
        )
