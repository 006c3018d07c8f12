"""
Record store interfaces for documents, pages and jobs.

The scheduler only talks to these abstractions; concrete backends live in
``memory.py`` (single process) and ``redis_store.py`` (shared between the
API and worker processes).
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from docscan.schemas.document import Document, DocumentStatus, FileType
from docscan.schemas.job import Job, JobStatus
from docscan.schemas.page import Page

DOCUMENT_SORT_FIELDS = {"created_at", "updated_at", "title", "average_confidence", "total_pages", "file_size"}


class NotFoundError(LookupError):
    """Raised when a referenced document, page or job does not exist."""


class DuplicateRecordError(Exception):
    """Raised when a record violates a uniqueness constraint."""


class DocumentStore(ABC):
    """Durable storage for documents."""

    @abstractmethod
    def create(self, document: Document) -> Document:
        """
        Persist a new document.

        Raises:
            DuplicateRecordError: If the id or the file hash is already stored.
        """

    @abstractmethod
    def get(self, document_id: str) -> Document | None:
        pass

    @abstractmethod
    def get_by_hash(self, file_hash: str) -> Document | None:
        pass

    @abstractmethod
    def update(self, document: Document) -> Document:
        """
        Save a document, stamping ``updated_at``.

        Raises:
            NotFoundError: If the document was deleted.
        """

    @abstractmethod
    def list(
        self,
        owner_id: str | None = None,
        status: DocumentStatus | None = None,
        file_type: FileType | None = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        descending: bool = True,
    ) -> tuple[list[Document], int]:
        """Return one page of matching documents and the total match count."""

    @abstractmethod
    def delete(self, document_id: str) -> bool:
        pass


class PageStore(ABC):
    """Durable storage for pages, unique per (document, page number)."""

    @abstractmethod
    def create(self, page: Page) -> Page:
        """
        Persist a new page.

        Raises:
            DuplicateRecordError: If the document already has this page number.
        """

    @abstractmethod
    def get(self, document_id: str, page_number: int) -> Page | None:
        pass

    @abstractmethod
    def list_for_document(self, document_id: str) -> list[Page]:
        """All pages of a document in ascending page-number order."""

    @abstractmethod
    def update(self, page: Page) -> Page:
        pass

    @abstractmethod
    def delete_for_document(self, document_id: str) -> int:
        pass


class JobStore(ABC):
    """Durable storage for jobs plus the queued backlog."""

    @abstractmethod
    def create(self, job: Job) -> Job:
        pass

    @abstractmethod
    def get(self, job_id: str) -> Job | None:
        pass

    @abstractmethod
    def update(self, job: Job) -> Job:
        """
        Save a job, stamping ``updated_at``.

        A job saved with status ``queued`` is (re)admitted to the backlog;
        any other status removes it.
        """

    @abstractmethod
    def claim_next(
        self,
        exclude_document_ids: Iterable[str] = (),
        started_at: datetime | None = None,
    ) -> Job | None:
        """
        Atomically take the next queued job and mark it ``processing``.

        Jobs are ordered by priority (highest first), then by enqueue order.
        Jobs whose document is in ``exclude_document_ids`` are passed over
        but stay queued.
        """

    @abstractmethod
    def list_for_user(self, user_id: str, status: JobStatus | None = None, limit: int = 50) -> list[Job]:
        """Most recent first."""

    @abstractmethod
    def list_for_document(self, document_id: str) -> list[Job]:
        pass

    @abstractmethod
    def list_by_status(self, status: JobStatus) -> list[Job]:
        pass


@dataclass
class RecordStore:
    """Bundle of the three stores the scheduler works against."""

    documents: DocumentStore
    pages: PageStore
    jobs: JobStore


def filter_documents(
    documents: Iterable[Document],
    owner_id: str | None = None,
    status: DocumentStatus | None = None,
    file_type: FileType | None = None,
    page: int = 1,
    limit: int = 20,
    sort_by: str = "created_at",
    descending: bool = True,
) -> tuple[list[Document], int]:
    """Filter, sort and paginate documents in memory."""
    if sort_by not in DOCUMENT_SORT_FIELDS:
        raise ValueError(f"Cannot sort documents by {sort_by!r}")

    matches = [
        doc
        for doc in documents
        if (owner_id is None or doc.owner_id == owner_id)
        and (status is None or doc.status == status)
        and (file_type is None or doc.file_type == file_type)
    ]
    matches.sort(key=lambda doc: (getattr(doc, sort_by), doc.id), reverse=descending)

    page = max(page, 1)
    limit = max(limit, 1)
    start = (page - 1) * limit
    return matches[start:start + limit], len(matches)
