from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from docscan.utils.clock import utcnow


class PageStatus(str, Enum):
    """Processing status of a single page."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    LOW_QUALITY = "low_quality"


SUCCESSFUL_PAGE_STATUSES = {PageStatus.COMPLETED, PageStatus.LOW_QUALITY}


class PageSource(str, Enum):
    """Where a page's text comes from."""

    IMAGE = "image"  # needs recognition
    PDF_TEXT = "pdf_text"  # embedded text layer, parsed directly


class BoundingBox(BaseModel):
    """Pixel bounding box, corners (x0, y0) and (x1, y1)."""

    x0: int = 0
    y0: int = 0
    x1: int = 0
    y1: int = 0


class Word(BaseModel):
    text: str
    bbox: BoundingBox = Field(default_factory=BoundingBox)
    confidence: float = 0.0


class Line(BaseModel):
    text: str
    bbox: BoundingBox = Field(default_factory=BoundingBox)
    confidence: float = 0.0
    words: list[int] = Field(default_factory=list)  # indices into Page.words


class Page(BaseModel):
    """One logical page of a document with its extracted text."""

    id: str
    document_id: str
    page_number: int = Field(ge=1)
    source: PageSource = PageSource.IMAGE
    image_path: str | None = None
    thumbnail_path: str | None = None

    text: str = ""
    confidence: float = Field(default=0.0, ge=0, le=100)
    words: list[Word] = Field(default_factory=list)
    lines: list[Line] = Field(default_factory=list)
    language: str = "eng"

    status: PageStatus = PageStatus.PENDING
    processing_time_ms: int = 0
    retry_count: int = 0
    error_message: str | None = None
    last_processed_at: datetime | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_successful(self) -> bool:
        return self.status in SUCCESSFUL_PAGE_STATUSES

    @property
    def has_usable_text(self) -> bool:
        return self.status == PageStatus.COMPLETED and bool(self.text)


class PageListResponse(BaseModel):
    pages: list[Page]
