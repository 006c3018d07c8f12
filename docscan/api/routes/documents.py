import json
from pathlib import Path
from typing import Literal

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse
from pydantic import ValidationError as PydanticValidationError

from docscan.api.deps import get_owned_document, get_services, get_user_id
from docscan.schemas.document import (
    Document,
    DocumentListResponse,
    DocumentStatus,
    DocumentUpdateRequest,
    FileType,
    ReprocessRequest,
)
from docscan.schemas.job import JobType
from docscan.schemas.ocr import DocumentSubmitResponse, JobReference, ReprocessResponse
from docscan.schemas.options import PreprocessingOptions
from docscan.schemas.page import Page, PageListResponse
from docscan.services.document_service import DuplicateDocumentError
from docscan.services.scheduler import JobValidationError
from docscan.utils.file_validation import ValidationError
from docscan.worker.startup import Services

router = APIRouter(prefix="/documents", tags=["Documents"])


def _parse_tags(raw: str | None) -> list[str]:
    """Accept a JSON list or a comma-separated string."""
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        parsed = raw.split(",")
    if not isinstance(parsed, list):
        raise ValidationError("Tags must be a list")
    return [str(tag).strip() for tag in parsed if str(tag).strip()]


def _parse_preprocessing(raw: str | None) -> PreprocessingOptions | None:
    if not raw:
        return None
    try:
        return PreprocessingOptions.model_validate_json(raw)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid preprocessing options: {e.errors()[0]['msg']}") from e


@router.post(
    "",
    response_model=DocumentSubmitResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_document(
    file: UploadFile = File(..., description="Image or PDF to process"),
    title: str | None = Form(default=None),
    language: str | None = Form(default=None, description="OCR language, e.g. 'eng' or 'eng+deu'"),
    tags: str | None = Form(default=None, description="JSON list or comma-separated tags"),
    preprocessing: str | None = Form(default=None, description="JSON preprocessing flags"),
    priority: int = Form(default=0),
    webhook_url: str | None = Form(default=None, description="Webhook URL for completion notification"),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    """
    Upload a document and queue it for OCR.

    PDFs are split into pages using their embedded text; images are
    recognized. Uploading content that is already stored returns 409.
    """
    try:
        document = services.documents.register_upload(
            file.file,
            filename=file.filename or "upload",
            owner_id=user_id,
            title=title,
            language=language,
            tags=_parse_tags(tags),
            preprocessing=_parse_preprocessing(preprocessing),
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid file: {e}")
    except DuplicateDocumentError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": "Duplicate file detected", "existing_document_id": e.existing.id},
        )

    try:
        job = await services.scheduler.enqueue(
            document.id,
            user_id,
            JobType.OCR_FULL,
            priority=priority,
            webhook_url=webhook_url,
        )
    except JobValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return DocumentSubmitResponse(
        message="File uploaded successfully",
        document=services.documents.get_document(document.id) or document,
        job=JobReference(id=job.id, status=job.status),
    )


@router.get("", response_model=DocumentListResponse)
async def list_documents(
    status_filter: DocumentStatus | None = Query(default=None, alias="status"),
    file_type: FileType | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    sort_by: str = Query(default="created_at"),
    sort_order: Literal["asc", "desc"] = Query(default="desc"),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    """List the caller's documents."""
    try:
        return services.documents.list_documents(
            owner_id=user_id,
            status=status_filter,
            file_type=file_type,
            page=page,
            limit=limit,
            sort_by=sort_by,
            descending=sort_order == "desc",
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/{document_id}", response_model=Document)
async def get_document(document: Document = Depends(get_owned_document)):
    return document


@router.patch("/{document_id}", response_model=Document)
async def update_document(
    request: DocumentUpdateRequest,
    document: Document = Depends(get_owned_document),
    services: Services = Depends(get_services),
):
    """Update a document's title or tags."""
    return services.documents.update_document(document, title=request.title, tags=request.tags)


@router.get("/{document_id}/pages", response_model=PageListResponse)
async def list_pages(
    document: Document = Depends(get_owned_document),
    services: Services = Depends(get_services),
):
    """All pages of a document in page order."""
    return PageListResponse(pages=services.documents.list_pages(document.id))


@router.get("/{document_id}/pages/{page_number}", response_model=Page)
async def get_page(
    page_number: int,
    document: Document = Depends(get_owned_document),
    services: Services = Depends(get_services),
):
    page = services.documents.get_page(document.id, page_number)
    if page is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Page not found")
    return page


@router.get("/{document_id}/pages/{page_number}/thumbnail")
async def get_page_thumbnail(
    page_number: int,
    document: Document = Depends(get_owned_document),
    services: Services = Depends(get_services),
):
    """The page's thumbnail image, available once the page has been recognized."""
    page = services.documents.get_page(document.id, page_number)
    if page is None or not page.thumbnail_path or not Path(page.thumbnail_path).exists():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Thumbnail not found")
    return FileResponse(page.thumbnail_path)


@router.post(
    "/{document_id}/reprocess",
    response_model=ReprocessResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def reprocess_document(
    request: ReprocessRequest,
    user_id: str = Depends(get_user_id),
    document: Document = Depends(get_owned_document),
    services: Services = Depends(get_services),
):
    """
    Queue a reprocess job for some or all pages of a document.

    Pages are recognized again even if they already hold text, except
    pages whose text came from the PDF itself.
    """
    out_of_range = [n for n in request.page_numbers if n < 1 or n > document.total_pages]
    if out_of_range:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Page numbers out of range: {out_of_range}",
        )

    options = {}
    if request.language:
        try:
            options["language"] = services.documents.validate_language(request.language)
        except ValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if request.preprocessing is not None:
        options["preprocessing"] = request.preprocessing.model_dump()

    try:
        job = await services.scheduler.enqueue(
            document.id,
            user_id,
            JobType.REPROCESS,
            options,
            page_numbers=request.page_numbers,
            priority=request.priority,
        )
    except JobValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return ReprocessResponse(job=JobReference(id=job.id, status=job.status))


@router.delete("/{document_id}")
async def delete_document(
    document: Document = Depends(get_owned_document),
    services: Services = Depends(get_services),
):
    """Delete a document and its pages, cancelling its live jobs."""
    await services.documents.delete_document(document)
    return {"message": "Document deleted successfully"}
