"""
Checks applied to uploaded documents before they are stored.

The declared content type of an upload is never trusted. Its size is
bounded, its type is read from the leading signature bytes and the file
is then opened with the library that will later decode it.
"""

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

import fitz  # PyMuPDF
from PIL import Image

from docscan.schemas.document import FileType

logger = logging.getLogger(__name__)

MAX_FILENAME_LENGTH = 255
HEADER_SIZE = 32

# Leading bytes of every accepted format, checked in order
SIGNATURES: list[tuple[bytes, FileType, str]] = [
    (b"%PDF-", FileType.PDF, "application/pdf"),
    (b"\x89PNG\r\n\x1a\n", FileType.IMAGE, "image/png"),
    (b"\xff\xd8\xff", FileType.IMAGE, "image/jpeg"),
    (b"GIF87a", FileType.IMAGE, "image/gif"),
    (b"GIF89a", FileType.IMAGE, "image/gif"),
    (b"II*\x00", FileType.IMAGE, "image/tiff"),
    (b"MM\x00*", FileType.IMAGE, "image/tiff"),
    (b"BM", FileType.IMAGE, "image/bmp"),
    (b"RIFF", FileType.IMAGE, "image/webp"),
]


class ValidationError(Exception):
    """An upload was rejected; the message is safe to show to clients."""


@dataclass
class ValidatedFile:
    file_type: FileType
    mime_type: str
    size: int


def detect_file_type_from_bytes(header: bytes) -> tuple[FileType, str] | None:
    """
    Identify a file from its first bytes.

    RIFF is a generic container, so it only counts as WebP when the
    form type at offset 8 says so.

    Returns:
        ``(file type, mime type)``, or None for anything unsupported.
    """
    for signature, file_type, mime_type in SIGNATURES:
        if not header.startswith(signature):
            continue
        if signature == b"RIFF" and header[8:12] != b"WEBP":
            return None
        return file_type, mime_type
    return None


def _file_size(file_obj: BinaryIO) -> int:
    file_obj.seek(0, 2)
    size = file_obj.tell()
    file_obj.seek(0)
    return size


def _check_decodable(file_obj: BinaryIO, file_type: FileType) -> None:
    """Open the upload with its decoder, raising ValidationError if that fails."""
    file_obj.seek(0)
    try:
        if file_type == FileType.PDF:
            with fitz.open(stream=file_obj.read(), filetype="pdf") as doc:
                if doc.page_count < 1:
                    raise ValueError("PDF has no pages")
                doc.load_page(0)
        else:
            with Image.open(file_obj) as img:
                img.verify()
    except Exception as e:
        logger.debug(f"Decoding {file_type.value} upload failed: {e}")
        label = "PDF" if file_type == FileType.PDF else "image"
        raise ValidationError(f"File is not a valid {label}") from e
    finally:
        file_obj.seek(0)


def validate_file(file_obj: BinaryIO, max_size_mb: int = 50) -> ValidatedFile:
    """
    Validate an uploaded document and work out what it is.

    Args:
        file_obj: Seekable binary stream holding the upload.
        max_size_mb: Largest accepted upload in megabytes.

    Returns:
        The detected file type, mime type and size in bytes.

    Raises:
        ValidationError: Empty, oversized, unrecognised or undecodable upload.
    """
    size = _file_size(file_obj)
    if size == 0:
        raise ValidationError("File is empty")
    if size > max_size_mb * 1024 * 1024:
        raise ValidationError(f"File too large: {size / 1024 / 1024:.1f}MB (max {max_size_mb}MB)")

    detected = detect_file_type_from_bytes(file_obj.read(HEADER_SIZE))
    file_obj.seek(0)
    if detected is None:
        raise ValidationError("Unknown or unsupported file type")

    file_type, mime_type = detected
    _check_decodable(file_obj, file_type)

    logger.info(f"Accepted {mime_type} upload of {size / 1024:.1f}KB")
    return ValidatedFile(file_type=file_type, mime_type=mime_type, size=size)


def validate_filename(filename: str) -> str:
    """
    Reduce a client supplied filename to a bare, safe name.

    Directory parts are dropped, so ``../../etc/scan.png`` becomes
    ``scan.png``. Hidden names and names containing ``..`` are rejected.
    """
    name = Path(filename).name if filename else ""
    if not name:
        raise ValidationError("Filename cannot be empty")
    if name.startswith(".") or ".." in name:
        raise ValidationError("Invalid filename pattern")
    if len(name) > MAX_FILENAME_LENGTH:
        raise ValidationError(f"Filename too long (max {MAX_FILENAME_LENGTH} characters)")
    return name


def compute_file_hash(file_obj: BinaryIO, chunk_size: int = 1024 * 1024) -> str:
    """SHA-256 of the file's content, leaving the file at its start."""
    digest = hashlib.sha256()
    file_obj.seek(0)
    for chunk in iter(lambda: file_obj.read(chunk_size), b""):
        digest.update(chunk)
    file_obj.seek(0)
    return digest.hexdigest()
