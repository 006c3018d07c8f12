from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import ValidationError as PydanticValidationError

from docscan.api.deps import get_owned_document, get_services, get_user_id
from docscan.schemas.document import Document, FileType
from docscan.schemas.search import (
    AdvancedSearchRequest,
    DocumentSearchResponse,
    SearchFilters,
    SearchResponse,
    SearchSort,
    SuggestionsResponse,
)
from docscan.services.search_service import SearchQueryError
from docscan.worker.startup import Services

router = APIRouter(prefix="/search", tags=["Search"])


@router.get("", response_model=SearchResponse)
async def search(
    q: str = Query(default="", description="Terms to find in page text"),
    file_type: list[FileType] | None = Query(default=None),
    tags: list[str] | None = Query(default=None),
    min_confidence: float | None = Query(default=None, ge=0, le=100),
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    sort_by: SearchSort = Query(default="date"),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    """
    Search the text of the caller's documents.

    A page matches if it contains any of the query terms, ignoring case.
    Each result lists the document's matching pages with a snippet.
    """
    try:
        filters = SearchFilters(
            file_types=file_type or [],
            tags=tags or [],
            min_confidence=min_confidence,
            date_from=date_from,
            date_to=date_to,
        )
        return services.search.search(user_id, q, filters, page=page, limit=limit, sort_by=sort_by)
    except SearchQueryError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PydanticValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.errors()[0]["msg"])


@router.post("/advanced", response_model=SearchResponse)
async def advanced_search(
    request: AdvancedSearchRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    """Search with every filter, including statuses, languages and a confidence range."""
    filters = SearchFilters.model_validate(request.model_dump(include=set(SearchFilters.model_fields)))
    try:
        return services.search.search(
            user_id,
            request.query,
            filters,
            page=request.page,
            limit=request.limit,
            sort_by=request.sort_by,
        )
    except SearchQueryError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/suggestions", response_model=SuggestionsResponse)
async def suggestions(
    q: str = Query(default=""),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    """Tags and title words to complete a partial query."""
    return services.search.suggestions(user_id, q)


@router.get("/document/{document_id}", response_model=DocumentSearchResponse)
async def search_document(
    q: str = Query(default=""),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    document: Document = Depends(get_owned_document),
    services: Services = Depends(get_services),
):
    """Matching pages of one document with the positions of matching words."""
    try:
        return services.search.search_document(document, q, page=page, limit=limit)
    except SearchQueryError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
