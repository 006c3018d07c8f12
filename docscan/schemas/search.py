from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from docscan.schemas.document import Document, DocumentStatus, FileType
from docscan.schemas.page import BoundingBox


class SearchFilters(BaseModel):
    """
    Restrictions applied on top of the text match.

    Document filters (file types, tags, statuses, upload dates) drop whole
    documents; page filters (confidence range, languages) drop single pages.
    Empty lists mean no restriction, and a document matches the tag filter
    if it has any of the tags.
    """

    file_types: list[FileType] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    statuses: list[DocumentStatus] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    min_confidence: float | None = Field(default=None, ge=0, le=100)
    max_confidence: float | None = Field(default=None, ge=0, le=100)
    date_from: datetime | None = None
    date_to: datetime | None = None

    @field_validator("date_from", "date_to")
    @classmethod
    def assume_utc(cls, value: datetime | None) -> datetime | None:
        """Dates without a timezone are read as UTC."""
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


SearchSort = Literal["date", "confidence", "matches"]


class AdvancedSearchRequest(SearchFilters):
    """Body of ``POST /search/advanced``."""

    query: str = Field(min_length=1)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    sort_by: SearchSort = "date"


class Highlight(BaseModel):
    """A recognised word containing one of the query terms."""

    text: str
    bbox: BoundingBox
    confidence: float


class PageMatch(BaseModel):
    page_number: int
    confidence: float
    snippet: str
    highlights: list[Highlight] = Field(default_factory=list)


class DocumentMatch(BaseModel):
    document: Document
    matching_pages: list[PageMatch]
    match_count: int


class SearchResponse(BaseModel):
    """Paginated documents whose page text matches a query."""

    query: str
    results: list[DocumentMatch]
    page: int
    limit: int
    total: int
    total_pages: int


class DocumentSearchResponse(BaseModel):
    """Paginated matching pages within one document."""

    query: str
    document_id: str
    title: str
    results: list[PageMatch]
    page: int
    limit: int
    total: int
    total_pages: int


class SuggestionsResponse(BaseModel):
    suggestions: list[str]
