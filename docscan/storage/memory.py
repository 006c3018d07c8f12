"""
In-process record store.

Keeps records in dictionaries guarded by one lock. Every read and write
works on deep copies so callers never share mutable state with the store,
the same way a networked backend would behave.
"""
import itertools
import threading
from datetime import datetime
from typing import Iterable

from docscan.schemas.document import Document, DocumentStatus, FileType
from docscan.schemas.job import Job, JobStatus
from docscan.schemas.page import Page
from docscan.storage.base import (
    DocumentStore,
    DuplicateRecordError,
    JobStore,
    NotFoundError,
    PageStore,
    RecordStore,
    filter_documents,
)
from docscan.utils.clock import utcnow


class MemoryDocumentStore(DocumentStore):
    def __init__(self, lock: threading.RLock):
        self._lock = lock
        self._documents: dict[str, Document] = {}

    def create(self, document: Document) -> Document:
        with self._lock:
            if document.id in self._documents:
                raise DuplicateRecordError(f"Document already exists: {document.id}")
            if any(doc.file_hash == document.file_hash for doc in self._documents.values()):
                raise DuplicateRecordError(f"Duplicate file hash: {document.file_hash}")
            self._documents[document.id] = document.model_copy(deep=True)
            return document.model_copy(deep=True)

    def get(self, document_id: str) -> Document | None:
        with self._lock:
            doc = self._documents.get(document_id)
            return doc.model_copy(deep=True) if doc else None

    def get_by_hash(self, file_hash: str) -> Document | None:
        with self._lock:
            for doc in self._documents.values():
                if doc.file_hash == file_hash:
                    return doc.model_copy(deep=True)
            return None

    def update(self, document: Document) -> Document:
        with self._lock:
            if document.id not in self._documents:
                raise NotFoundError(f"Document not found: {document.id}")
            document.updated_at = utcnow()
            self._documents[document.id] = document.model_copy(deep=True)
            return document.model_copy(deep=True)

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
        with self._lock:
            snapshot = [doc.model_copy(deep=True) for doc in self._documents.values()]
        return filter_documents(snapshot, owner_id, status, file_type, page, limit, sort_by, descending)

    def delete(self, document_id: str) -> bool:
        with self._lock:
            return self._documents.pop(document_id, None) is not None


class MemoryPageStore(PageStore):
    def __init__(self, lock: threading.RLock):
        self._lock = lock
        self._pages: dict[tuple[str, int], Page] = {}

    def create(self, page: Page) -> Page:
        key = (page.document_id, page.page_number)
        with self._lock:
            if key in self._pages:
                raise DuplicateRecordError(
                    f"Page {page.page_number} already exists for document {page.document_id}"
                )
            self._pages[key] = page.model_copy(deep=True)
            return page.model_copy(deep=True)

    def get(self, document_id: str, page_number: int) -> Page | None:
        with self._lock:
            page = self._pages.get((document_id, page_number))
            return page.model_copy(deep=True) if page else None

    def list_for_document(self, document_id: str) -> list[Page]:
        with self._lock:
            pages = [p.model_copy(deep=True) for (doc_id, _), p in self._pages.items() if doc_id == document_id]
        return sorted(pages, key=lambda p: p.page_number)

    def update(self, page: Page) -> Page:
        key = (page.document_id, page.page_number)
        with self._lock:
            if key not in self._pages:
                raise NotFoundError(f"Page {page.page_number} not found for document {page.document_id}")
            page.updated_at = utcnow()
            self._pages[key] = page.model_copy(deep=True)
            return page.model_copy(deep=True)

    def delete_for_document(self, document_id: str) -> int:
        with self._lock:
            keys = [key for key in self._pages if key[0] == document_id]
            for key in keys:
                del self._pages[key]
            return len(keys)


class MemoryJobStore(JobStore):
    def __init__(self, lock: threading.RLock):
        self._lock = lock
        self._jobs: dict[str, Job] = {}
        self._sequence: dict[str, int] = {}
        self._counter = itertools.count()

    def create(self, job: Job) -> Job:
        with self._lock:
            if job.id in self._jobs:
                raise DuplicateRecordError(f"Job already exists: {job.id}")
            self._jobs[job.id] = job.model_copy(deep=True)
            self._sequence[job.id] = next(self._counter)
            return job.model_copy(deep=True)

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def update(self, job: Job) -> Job:
        with self._lock:
            if job.id not in self._jobs:
                raise NotFoundError(f"Job not found: {job.id}")
            job.updated_at = utcnow()
            self._jobs[job.id] = job.model_copy(deep=True)
            return job.model_copy(deep=True)

    def claim_next(
        self,
        exclude_document_ids: Iterable[str] = (),
        started_at: datetime | None = None,
    ) -> Job | None:
        excluded = set(exclude_document_ids)
        with self._lock:
            candidates = [
                job
                for job in self._jobs.values()
                if job.status == JobStatus.QUEUED and job.document_id not in excluded
            ]
            if not candidates:
                return None

            job = min(candidates, key=lambda j: (-j.priority, self._sequence[j.id]))
            now = started_at or utcnow()
            job.status = JobStatus.PROCESSING
            job.started_at = now
            job.updated_at = now
            return job.model_copy(deep=True)

    def list_for_user(self, user_id: str, status: JobStatus | None = None, limit: int = 50) -> list[Job]:
        with self._lock:
            jobs = [
                job
                for job in self._jobs.values()
                if job.user_id == user_id and (status is None or job.status == status)
            ]
            jobs.sort(key=lambda j: (j.created_at, self._sequence[j.id]), reverse=True)
            return [job.model_copy(deep=True) for job in jobs[:limit]]

    def list_for_document(self, document_id: str) -> list[Job]:
        with self._lock:
            jobs = [job for job in self._jobs.values() if job.document_id == document_id]
            jobs.sort(key=lambda j: self._sequence[j.id])
            return [job.model_copy(deep=True) for job in jobs]

    def list_by_status(self, status: JobStatus) -> list[Job]:
        with self._lock:
            jobs = [job for job in self._jobs.values() if job.status == status]
            jobs.sort(key=lambda j: self._sequence[j.id])
            return [job.model_copy(deep=True) for job in jobs]


class MemoryRecordStore(RecordStore):
    """Record store kept in process memory."""

    def __init__(self):
        lock = threading.RLock()
        super().__init__(
            documents=MemoryDocumentStore(lock),
            pages=MemoryPageStore(lock),
            jobs=MemoryJobStore(lock),
        )
