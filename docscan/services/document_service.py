"""
Document service.

This service handles:
- Registering uploads (validation, de-duplication by content hash, storage)
- Listing and reading documents and pages
- Cascading deletes that cancel the document's live jobs
"""

import logging
import math
import shutil
import uuid
from pathlib import Path
from typing import BinaryIO

from docscan.config import settings
from docscan.schemas.document import (
    Document,
    DocumentListResponse,
    DocumentMetadata,
    DocumentStatus,
    FileType,
)
from docscan.schemas.job import LIVE_JOB_STATUSES
from docscan.schemas.options import LANGUAGE_PATTERN, PreprocessingOptions
from docscan.schemas.page import Page
from docscan.services.pdf_service import get_pdf_info
from docscan.services.scheduler import JobScheduler
from docscan.storage import DuplicateRecordError, RecordStore
from docscan.utils.file_validation import (
    ValidationError,
    compute_file_hash,
    validate_file,
    validate_filename,
)

logger = logging.getLogger(__name__)


class DuplicateDocumentError(Exception):
    """Raised when an upload has the same content as a stored document."""

    def __init__(self, existing: Document):
        super().__init__(f"Duplicate file detected: {existing.id}")
        self.existing = existing


class DocumentService:
    """Manages documents and their pages on behalf of the API."""

    def __init__(
        self,
        store: RecordStore,
        scheduler: JobScheduler,
        uploads_dir: Path | None = None,
        max_upload_size_mb: int | None = None,
        supported_languages: list[str] | None = None,
        default_language: str | None = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.uploads_dir = uploads_dir or settings.uploads_dir
        self.max_upload_size_mb = max_upload_size_mb or settings.max_upload_size_mb
        self.supported_languages = supported_languages or settings.supported_languages
        self.default_language = default_language or settings.default_language

    def validate_language(self, language: str) -> str:
        """
        Check a language code such as ``eng`` or ``eng+deu``.

        Raises:
            ValidationError: If the code is malformed or unsupported.
        """
        if not LANGUAGE_PATTERN.match(language):
            raise ValidationError(f"Invalid language code: {language}")
        unsupported = [code for code in language.split("+") if code not in self.supported_languages]
        if unsupported:
            raise ValidationError(f"Unsupported language: {', '.join(unsupported)}")
        return language

    def register_upload(
        self,
        file_obj: BinaryIO,
        filename: str,
        owner_id: str,
        title: str | None = None,
        language: str | None = None,
        tags: list[str] | None = None,
        preprocessing: PreprocessingOptions | None = None,
    ) -> Document:
        """
        Validate and store an uploaded file as a new document.

        Args:
            file_obj: Uploaded file, positioned at its start.
            filename: Client-supplied filename.
            owner_id: Uploading user.
            title: Display title, defaults to the filename.
            language: Declared OCR language, defaults to the configured one.
            tags: Free-form tags.
            preprocessing: Default preprocessing for the document's jobs.

        Returns:
            The stored document with status ``uploaded``.

        Raises:
            ValidationError: If the file, filename or language is invalid.
            DuplicateDocumentError: If identical content is already stored.
        """
        safe_filename = validate_filename(filename)
        language = self.validate_language(language or self.default_language)
        validated = validate_file(file_obj, max_size_mb=self.max_upload_size_mb)
        file_hash = compute_file_hash(file_obj)

        existing = self.store.documents.get_by_hash(file_hash)
        if existing is not None:
            raise DuplicateDocumentError(existing)

        document_id = str(uuid.uuid4())
        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        file_path = self.uploads_dir / f"{document_id}{Path(safe_filename).suffix.lower()}"

        file_obj.seek(0)
        with open(file_path, "wb") as buffer:
            shutil.copyfileobj(file_obj, buffer)

        total_pages = 1
        metadata = DocumentMetadata()
        if validated.file_type == FileType.PDF:
            info = get_pdf_info(file_path)
            total_pages = info.get("pages") or 1
            metadata = DocumentMetadata(**{key: value for key, value in info.items() if key != "pages"})

        document = Document(
            id=document_id,
            owner_id=owner_id,
            title=title or safe_filename,
            original_filename=safe_filename,
            file_type=validated.file_type,
            mime_type=validated.mime_type,
            file_size=validated.size,
            file_path=str(file_path),
            file_hash=file_hash,
            tags=tags or [],
            language=language,
            preprocessing=preprocessing or PreprocessingOptions(),
            metadata=metadata,
            total_pages=total_pages,
        )

        try:
            document = self.store.documents.create(document)
        except DuplicateRecordError:
            file_path.unlink(missing_ok=True)
            existing = self.store.documents.get_by_hash(file_hash)
            if existing is None:
                raise
            raise DuplicateDocumentError(existing)

        logger.info(f"Registered document {document.id} ({document.file_type.value}, {document.total_pages} pages)")
        return document

    def get_document(self, document_id: str) -> Document | None:
        return self.store.documents.get(document_id)

    def update_document(self, document: Document, title: str | None = None, tags: list[str] | None = None) -> Document:
        if title is not None:
            document.title = title
        if tags is not None:
            document.tags = tags
        return self.store.documents.update(document)

    def list_documents(
        self,
        owner_id: str,
        status: DocumentStatus | None = None,
        file_type: FileType | None = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        descending: bool = True,
    ) -> DocumentListResponse:
        """
        List a user's documents.

        Raises:
            ValueError: If ``sort_by`` is not a sortable field.
        """
        documents, total = self.store.documents.list(
            owner_id=owner_id,
            status=status,
            file_type=file_type,
            page=page,
            limit=limit,
            sort_by=sort_by,
            descending=descending,
        )
        return DocumentListResponse(
            documents=documents,
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if limit else 0,
        )

    def list_pages(self, document_id: str) -> list[Page]:
        return self.store.pages.list_for_document(document_id)

    def get_page(self, document_id: str, page_number: int) -> Page | None:
        return self.store.pages.get(document_id, page_number)

    async def delete_document(self, document: Document) -> None:
        """
        Delete a document with its pages and file.

        Live jobs on the document are cancelled first; running ones stop
        before their next page.
        """
        for job in self.store.jobs.list_for_document(document.id):
            if job.status in LIVE_JOB_STATUSES:
                await self.scheduler.cancel(job.id)

        thumbnails = [page.thumbnail_path for page in self.store.pages.list_for_document(document.id) if page.thumbnail_path]
        deleted_pages = self.store.pages.delete_for_document(document.id)
        self.store.documents.delete(document.id)

        for path in [document.file_path, *thumbnails]:
            try:
                Path(path).unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to delete {path} for document {document.id}: {e}")

        logger.info(f"Deleted document {document.id} and {deleted_pages} pages")
