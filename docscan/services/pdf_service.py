"""
PDF parsing service.

This service handles:
- Direct text extraction, page by page (no rasterization or OCR)
- Document info extraction (page count, title, author, dates)
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)


class PDFProcessingError(Exception):
    """Raised when PDF processing fails."""

    pass


@dataclass
class PDFText:
    """Text extracted from a PDF."""

    total_pages: int
    text: str
    page_texts: list[str] = field(default_factory=list)


def _open(pdf_path: Path | str) -> fitz.Document:
    return fitz.open(str(pdf_path), filetype="pdf")


def extract_text(pdf_path: Path | str) -> PDFText:
    """
    Extract the embedded text of every page of a PDF.

    Args:
        pdf_path: Path to the PDF file.

    Returns:
        PDFText with the page count, the whole text and one text per page.

    Raises:
        PDFProcessingError: If the file cannot be parsed or has no pages.
    """
    logger.info(f"Extracting text from PDF: {pdf_path}")

    try:
        with _open(pdf_path) as doc:
            if doc.page_count == 0:
                raise PDFProcessingError("PDF has no pages")
            page_texts = [page.get_text("text").strip() for page in doc]
    except PDFProcessingError:
        raise
    except Exception as e:
        raise PDFProcessingError(f"Failed to extract text from PDF: {e}") from e

    text = "\n\n".join(page_texts)
    logger.info(f"PDF has {len(page_texts)} pages, extracted {len(text)} characters")

    return PDFText(total_pages=len(page_texts), text=text, page_texts=page_texts)


def get_pdf_info(pdf_path: Path | str) -> dict:
    """
    Extract page count and metadata from a PDF.

    Args:
        pdf_path: Path to the PDF file.

    Returns:
        Dictionary with ``pages``, ``title``, ``author``, ``creator``,
        ``producer``, ``created_at`` and ``modified_at``. Falls back to
        ``{"pages": 1}`` when the file can't be read.
    """
    try:
        with _open(pdf_path) as doc:
            metadata = doc.metadata or {}
            return {
                "pages": doc.page_count,
                "title": metadata.get("title", ""),
                "author": metadata.get("author", ""),
                "creator": metadata.get("creator", ""),
                "producer": metadata.get("producer", ""),
                "created_at": metadata.get("creationDate") or None,
                "modified_at": metadata.get("modDate") or None,
            }
    except Exception as e:
        logger.warning(f"Failed to extract PDF info: {e}")
        return {"pages": 1}


class PDFParser:
    """Document parser handed to the scheduler. Calls are blocking."""

    def extract_text(self, pdf_path: Path | str) -> PDFText:
        return extract_text(pdf_path)

    def get_pdf_info(self, pdf_path: Path | str) -> dict:
        return get_pdf_info(pdf_path)
