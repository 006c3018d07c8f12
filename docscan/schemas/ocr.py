from pydantic import BaseModel, Field

from docscan.schemas.document import Document
from docscan.schemas.job import JobStatus


class JobReference(BaseModel):
    id: str
    status: JobStatus


class DocumentSubmitResponse(BaseModel):
    """Response after uploading a document for OCR."""

    message: str = Field(default="Document submitted for processing")
    document: Document
    job: JobReference


class ReprocessResponse(BaseModel):
    """Response after requesting a reprocess job."""

    message: str = Field(default="Reprocessing job created")
    job: JobReference
