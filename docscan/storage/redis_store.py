"""
Redis-backed record store.

Records are stored as JSON strings. Secondary indexes are Redis sets and
sorted sets. The queued backlog is a sorted set scored by ``-priority``
whose members are ``"<enqueue sequence>:<job id>"``; Redis orders equal
scores lexicographically, so a range read yields priority-desc, FIFO order.
Claiming a job is a ``ZREM`` of its member: only one process can win it.
"""
import logging
from datetime import datetime
from typing import Iterable

import redis

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

logger = logging.getLogger(__name__)

KEY_PREFIX = "docscan:"


class RedisDocumentStore(DocumentStore):
    DOCUMENT_PREFIX = f"{KEY_PREFIX}document:"
    HASH_PREFIX = f"{KEY_PREFIX}document_hash:"
    ALL_DOCUMENTS_KEY = f"{KEY_PREFIX}documents"
    OWNER_PREFIX = f"{KEY_PREFIX}owner_documents:"

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    def _document_key(self, document_id: str) -> str:
        return f"{self.DOCUMENT_PREFIX}{document_id}"

    def _hash_key(self, file_hash: str) -> str:
        return f"{self.HASH_PREFIX}{file_hash}"

    def create(self, document: Document) -> Document:
        if not self.redis.set(self._hash_key(document.file_hash), document.id, nx=True):
            raise DuplicateRecordError(f"Duplicate file hash: {document.file_hash}")

        if not self.redis.set(self._document_key(document.id), document.model_dump_json(), nx=True):
            self.redis.delete(self._hash_key(document.file_hash))
            raise DuplicateRecordError(f"Document already exists: {document.id}")

        pipe = self.redis.pipeline()
        pipe.sadd(self.ALL_DOCUMENTS_KEY, document.id)
        pipe.sadd(f"{self.OWNER_PREFIX}{document.owner_id}", document.id)
        pipe.execute()
        return document

    def get(self, document_id: str) -> Document | None:
        data = self.redis.get(self._document_key(document_id))
        if data is None:
            return None
        return Document.model_validate_json(data)

    def get_by_hash(self, file_hash: str) -> Document | None:
        document_id = self.redis.get(self._hash_key(file_hash))
        if document_id is None:
            return None
        return self.get(document_id.decode())

    def update(self, document: Document) -> Document:
        document.updated_at = utcnow()
        if not self.redis.set(self._document_key(document.id), document.model_dump_json(), xx=True):
            raise NotFoundError(f"Document not found: {document.id}")
        return document

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
        index_key = f"{self.OWNER_PREFIX}{owner_id}" if owner_id else self.ALL_DOCUMENTS_KEY
        ids = [member.decode() for member in self.redis.smembers(index_key)]
        documents = []
        if ids:
            for data in self.redis.mget([self._document_key(doc_id) for doc_id in ids]):
                if data is not None:
                    documents.append(Document.model_validate_json(data))
        return filter_documents(documents, owner_id, status, file_type, page, limit, sort_by, descending)

    def delete(self, document_id: str) -> bool:
        document = self.get(document_id)
        if document is None:
            return False

        pipe = self.redis.pipeline()
        pipe.delete(self._document_key(document_id))
        pipe.delete(self._hash_key(document.file_hash))
        pipe.srem(self.ALL_DOCUMENTS_KEY, document_id)
        pipe.srem(f"{self.OWNER_PREFIX}{document.owner_id}", document_id)
        pipe.execute()
        return True


class RedisPageStore(PageStore):
    PAGE_PREFIX = f"{KEY_PREFIX}page:"
    INDEX_PREFIX = f"{KEY_PREFIX}document_pages:"

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    def _page_key(self, document_id: str, page_number: int) -> str:
        return f"{self.PAGE_PREFIX}{document_id}:{page_number}"

    def _index_key(self, document_id: str) -> str:
        return f"{self.INDEX_PREFIX}{document_id}"

    def create(self, page: Page) -> Page:
        key = self._page_key(page.document_id, page.page_number)
        if not self.redis.set(key, page.model_dump_json(), nx=True):
            raise DuplicateRecordError(
                f"Page {page.page_number} already exists for document {page.document_id}"
            )
        self.redis.zadd(self._index_key(page.document_id), {str(page.page_number): page.page_number})
        return page

    def get(self, document_id: str, page_number: int) -> Page | None:
        data = self.redis.get(self._page_key(document_id, page_number))
        if data is None:
            return None
        return Page.model_validate_json(data)

    def list_for_document(self, document_id: str) -> list[Page]:
        numbers = self.redis.zrange(self._index_key(document_id), 0, -1)
        if not numbers:
            return []
        keys = [self._page_key(document_id, int(number)) for number in numbers]
        return [Page.model_validate_json(data) for data in self.redis.mget(keys) if data is not None]

    def update(self, page: Page) -> Page:
        page.updated_at = utcnow()
        key = self._page_key(page.document_id, page.page_number)
        if not self.redis.set(key, page.model_dump_json(), xx=True):
            raise NotFoundError(f"Page {page.page_number} not found for document {page.document_id}")
        return page

    def delete_for_document(self, document_id: str) -> int:
        numbers = self.redis.zrange(self._index_key(document_id), 0, -1)
        keys = [self._page_key(document_id, int(number)) for number in numbers]
        deleted = self.redis.delete(*keys) if keys else 0
        self.redis.delete(self._index_key(document_id))
        return deleted


class RedisJobStore(JobStore):
    JOB_PREFIX = f"{KEY_PREFIX}job:"
    USER_PREFIX = f"{KEY_PREFIX}user_jobs:"
    DOCUMENT_PREFIX = f"{KEY_PREFIX}document_jobs:"
    BACKLOG_KEY = f"{KEY_PREFIX}jobs:backlog"
    MEMBERS_KEY = f"{KEY_PREFIX}jobs:backlog_members"
    SEQUENCE_KEY = f"{KEY_PREFIX}jobs:sequence"

    # How far down the backlog a claim looks for a job whose document is free
    CLAIM_SCAN_LIMIT = 100

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    def _job_key(self, job_id: str) -> str:
        return f"{self.JOB_PREFIX}{job_id}"

    def _save(self, job: Job) -> None:
        self.redis.set(self._job_key(job.id), job.model_dump_json())

    def _sync_backlog(self, job: Job) -> None:
        """Keep the job's backlog membership in line with its status."""
        member = self.redis.hget(self.MEMBERS_KEY, job.id)
        if job.status == JobStatus.QUEUED:
            if member is None:
                sequence = self.redis.incr(self.SEQUENCE_KEY)
                member = f"{sequence:020d}:{job.id}".encode()
                self.redis.hset(self.MEMBERS_KEY, job.id, member)
            self.redis.zadd(self.BACKLOG_KEY, {member: -job.priority})
        elif member is not None:
            self.redis.zrem(self.BACKLOG_KEY, member)

    def create(self, job: Job) -> Job:
        if self.redis.exists(self._job_key(job.id)):
            raise DuplicateRecordError(f"Job already exists: {job.id}")

        self._save(job)
        pipe = self.redis.pipeline()
        pipe.zadd(f"{self.USER_PREFIX}{job.user_id}", {job.id: job.created_at.timestamp()})
        pipe.sadd(f"{self.DOCUMENT_PREFIX}{job.document_id}", job.id)
        pipe.execute()
        self._sync_backlog(job)
        return job

    def get(self, job_id: str) -> Job | None:
        data = self.redis.get(self._job_key(job_id))
        if data is None:
            return None
        return Job.model_validate_json(data)

    def update(self, job: Job) -> Job:
        if not self.redis.exists(self._job_key(job.id)):
            raise NotFoundError(f"Job not found: {job.id}")
        job.updated_at = utcnow()
        self._save(job)
        self._sync_backlog(job)
        return job

    def claim_next(
        self,
        exclude_document_ids: Iterable[str] = (),
        started_at: datetime | None = None,
    ) -> Job | None:
        excluded = set(exclude_document_ids)

        for member in self.redis.zrange(self.BACKLOG_KEY, 0, self.CLAIM_SCAN_LIMIT - 1):
            job_id = member.decode().split(":", 1)[1]
            job = self.get(job_id)

            if job is None or job.status != JobStatus.QUEUED:
                logger.warning(f"Dropping stale backlog entry for job {job_id}")
                self.redis.zrem(self.BACKLOG_KEY, member)
                continue

            if job.document_id in excluded:
                continue

            if self.redis.zrem(self.BACKLOG_KEY, member) == 0:
                # Claimed by another process between the read and the removal
                continue

            claimed = self._mark_claimed(job_id, started_at or utcnow())
            if claimed is None:
                logger.info(f"Job {job_id} was changed by another process before it could be claimed")
                continue
            return claimed

        return None

    def _mark_claimed(self, job_id: str, now: datetime) -> Job | None:
        """
        Flip a job to processing in a WATCH/MULTI transaction.

        A concurrent write to the job (a cancellation from the API process)
        restarts the transaction, which then sees the new status and gives
        the claim up.
        """
        key = self._job_key(job_id)

        def claim(pipe) -> Job | None:
            data = pipe.get(key)
            if data is None:
                return None
            job = Job.model_validate_json(data)
            if job.status != JobStatus.QUEUED:
                return None

            job.status = JobStatus.PROCESSING
            job.started_at = now
            job.updated_at = now
            pipe.multi()
            pipe.set(key, job.model_dump_json())
            return job

        return self.redis.transaction(claim, key, value_from_callable=True)

    def _load_many(self, job_ids: list[str]) -> list[Job]:
        if not job_ids:
            return []
        values = self.redis.mget([self._job_key(job_id) for job_id in job_ids])
        return [Job.model_validate_json(data) for data in values if data is not None]

    def list_for_user(self, user_id: str, status: JobStatus | None = None, limit: int = 50) -> list[Job]:
        ids = [job_id.decode() for job_id in self.redis.zrevrange(f"{self.USER_PREFIX}{user_id}", 0, -1)]
        jobs = []
        for job in self._load_many(ids):
            if status is None or job.status == status:
                jobs.append(job)
                if len(jobs) >= limit:
                    break
        return jobs

    def list_for_document(self, document_id: str) -> list[Job]:
        ids = [job_id.decode() for job_id in self.redis.smembers(f"{self.DOCUMENT_PREFIX}{document_id}")]
        return sorted(self._load_many(ids), key=lambda job: job.created_at)

    def list_by_status(self, status: JobStatus) -> list[Job]:
        jobs = []
        for key in self.redis.scan_iter(f"{self.JOB_PREFIX}*"):
            data = self.redis.get(key)
            if data is None:
                continue
            job = Job.model_validate_json(data)
            if job.status == status:
                jobs.append(job)
        return sorted(jobs, key=lambda job: job.created_at)


class RedisRecordStore(RecordStore):
    """Record store shared through Redis."""

    def __init__(self, redis_client: redis.Redis):
        super().__init__(
            documents=RedisDocumentStore(redis_client),
            pages=RedisPageStore(redis_client),
            jobs=RedisJobStore(redis_client),
        )
        self.redis = redis_client
