from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from docscan.schemas.document import Document
from docscan.schemas.options import JobOptions
from docscan.utils.clock import utcnow


class JobType(str, Enum):
    """Kind of work a job performs."""

    OCR_FULL = "ocr_full"
    OCR_PAGE = "ocr_page"
    REPROCESS = "reprocess"


class JobStatus(str, Enum):
    """Lifecycle status of a job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_JOB_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
LIVE_JOB_STATUSES = {JobStatus.QUEUED, JobStatus.PROCESSING}


class JobProgress(BaseModel):
    """Page-level progress of a running job."""

    current: int = 0
    total: int = 0
    percentage: int = 0


class FailedPage(BaseModel):
    """A page that could not be recognized within a job."""

    page_number: int
    error: str


class JobResult(BaseModel):
    """Summary of a finished job."""

    processed_pages: int = 0
    failed_pages: list[FailedPage] = Field(default_factory=list)
    average_confidence: float = 0.0
    total_processing_time: int = 0  # milliseconds


class JobError(BaseModel):
    """Details of a job-fatal error."""

    message: str
    stack: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class Job(BaseModel):
    """OCR job with status, progress and result."""

    id: str
    document_id: str
    user_id: str
    type: JobType = JobType.OCR_FULL
    status: JobStatus = JobStatus.QUEUED
    priority: int = 0
    progress: JobProgress = Field(default_factory=JobProgress)
    estimated_time_remaining: int | None = None  # seconds
    page_numbers: list[int] = Field(default_factory=list)
    options: JobOptions = Field(default_factory=JobOptions)
    result: JobResult = Field(default_factory=JobResult)
    error: JobError | None = None
    retry_count: int = 0
    max_retries: int = Field(default=0, ge=0)
    webhook_url: str | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @field_validator("page_numbers")
    @classmethod
    def _check_page_numbers(cls, value: list[int]) -> list[int]:
        if any(number < 1 for number in value):
            raise ValueError("Page numbers start at 1")
        return sorted(set(value))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


class JobWithDocument(Job):
    """Job with its referenced document resolved."""

    document: Document | None = None


class JobListResponse(BaseModel):
    """Response for the job listing endpoint."""

    jobs: list[JobWithDocument]


class CancelJobResponse(BaseModel):
    """Response after a cancellation request."""

    message: str
    job: Job
