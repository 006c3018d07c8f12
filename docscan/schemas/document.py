from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from docscan.schemas.options import PreprocessingOptions
from docscan.utils.clock import utcnow


class FileType(str, Enum):
    """Kind of source file a document was uploaded as."""

    PDF = "pdf"
    IMAGE = "image"


class DocumentStatus(str, Enum):
    """Aggregate processing status of a document."""

    UPLOADED = "uploaded"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"


class DocumentMetadata(BaseModel):
    """Descriptive metadata extracted from the source file."""

    title: str = ""
    author: str = ""
    creator: str = ""
    producer: str = ""
    created_at: str | None = None
    modified_at: str | None = None


class Document(BaseModel):
    """An uploaded document and its aggregate OCR state."""

    id: str
    owner_id: str
    title: str
    original_filename: str
    file_type: FileType
    mime_type: str = "application/octet-stream"
    file_size: int = 0
    file_path: str
    file_hash: str
    tags: list[str] = Field(default_factory=list)
    language: str = "eng"
    preprocessing: PreprocessingOptions = Field(default_factory=PreprocessingOptions)
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)

    total_pages: int = Field(default=1, ge=0)
    processed_pages: int = Field(default=0, ge=0)
    status: DocumentStatus = DocumentStatus.UPLOADED
    processing_progress: int = Field(default=0, ge=0, le=100)
    average_confidence: float = Field(default=0.0, ge=0, le=100)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class DocumentListResponse(BaseModel):
    """Paginated list of documents."""

    documents: list[Document]
    page: int
    limit: int
    total: int
    total_pages: int


class ReprocessRequest(BaseModel):
    """Request to reprocess some or all pages of a document."""

    page_numbers: list[int] = Field(default_factory=list)
    language: str | None = None
    preprocessing: PreprocessingOptions | None = None
    priority: int = 0


class DocumentUpdateRequest(BaseModel):
    """Editable document fields."""

    title: str | None = Field(default=None, min_length=1)
    tags: list[str] | None = None
