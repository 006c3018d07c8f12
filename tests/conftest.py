"""Pytest configuration and fixtures."""

import asyncio
import io
import uuid
from pathlib import Path

import pytest
from PIL import Image

from docscan.ocr import RecognitionError, RecognitionResult
from docscan.schemas.document import Document, FileType
from docscan.schemas.page import Page, PageSource, PageStatus
from docscan.services.notifier import Notifier
from docscan.services.pdf_service import PDFText
from docscan.services.scheduler import JobScheduler
from docscan.storage import MemoryRecordStore


class RecordingNotifier(Notifier):
    """Keeps every published event for inspection."""

    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def publish(self, topic: str, payload: dict) -> None:
        self.events.append((topic, payload))

    def job_events(self, job_id: str) -> list[dict]:
        return [payload for topic, payload in self.events if topic == "job:update" and payload["job_id"] == job_id]


class FakeRecognition:
    """
    Scripted stand-in for RecognitionService.

    Outcomes are keyed by image file name: ``confidences`` sets the
    confidence returned, ``errors`` holds messages raised in order before
    the page succeeds. ``on_recognize`` is called with the file name
    before each recognition.
    """

    engine_name = "fake"

    def __init__(
        self,
        confidences=None,
        errors=None,
        delay: float = 0.0,
        default_confidence: float = 90.0,
        on_recognize=None,
    ):
        self.confidences = dict(confidences or {})
        self.errors = {name: list(messages) for name, messages in (errors or {}).items()}
        self.delay = delay
        self.default_confidence = default_confidence
        self.on_recognize = on_recognize
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.is_loaded = True

    async def load(self) -> None:
        self.is_loaded = True

    async def unload(self) -> None:
        self.is_loaded = False

    async def recognize(self, image_path, language, preprocessing=None) -> RecognitionResult:
        name = Path(image_path).name
        self.calls.append(name)
        if self.on_recognize is not None:
            self.on_recognize(name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            pending_errors = self.errors.get(name)
            if pending_errors:
                raise RecognitionError(pending_errors.pop(0))
            return RecognitionResult(
                text=f"text of {name}",
                confidence=self.confidences.get(name, self.default_confidence),
                processing_time_ms=5,
            )
        finally:
            self.in_flight -= 1


class FakeParser:
    """PDF parser returning fixed page texts."""

    def __init__(self, page_texts: list[str]):
        self.page_texts = page_texts
        self.calls = 0

    def extract_text(self, pdf_path) -> PDFText:
        self.calls += 1
        return PDFText(
            total_pages=len(self.page_texts),
            text="\n\n".join(self.page_texts),
            page_texts=list(self.page_texts),
        )

    def get_pdf_info(self, pdf_path) -> dict:
        return {"pages": len(self.page_texts)}


def png_bytes(color=(255, 255, 255), size=(40, 20)) -> bytes:
    """A small PNG image in memory."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def set_page_text(store, document: Document, text: str, page_number: int = 1, **fields) -> Page:
    """Store recognized text on an existing page, as a finished job would."""
    page = store.pages.get(document.id, page_number)
    page.text = text
    page.status = fields.pop("status", PageStatus.COMPLETED)
    page.confidence = fields.pop("confidence", 90.0)
    for name, value in fields.items():
        setattr(page, name, value)
    return store.pages.update(page)


@pytest.fixture
def store():
    """Empty in-memory record store."""
    return MemoryRecordStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def recognition():
    """Fake recognition returning 90 for every page."""
    return FakeRecognition()


@pytest.fixture
def make_document(store, tmp_path):
    """
    Factory storing a document.

    With ``pages`` set, the document gets that many image pages up front,
    each with its own image file ``page_<n>.png``.
    """

    def _make(owner_id="user-1", pages: int = 0, file_type=FileType.IMAGE, **fields) -> Document:
        document_id = str(uuid.uuid4())
        source = tmp_path / f"{document_id}.{'pdf' if file_type == FileType.PDF else 'png'}"
        source.write_bytes(b"%PDF-1.4" if file_type == FileType.PDF else png_bytes())

        document = store.documents.create(
            Document(
                id=document_id,
                owner_id=owner_id,
                title=fields.pop("title", "Sample"),
                original_filename=source.name,
                file_type=file_type,
                file_path=str(source),
                file_hash=uuid.uuid4().hex,
                total_pages=max(pages, 1),
                **fields,
            )
        )

        for number in range(1, pages + 1):
            image = tmp_path / document_id / f"page_{number}.png"
            image.parent.mkdir(exist_ok=True)
            image.write_bytes(png_bytes())
            store.pages.create(
                Page(
                    id=str(uuid.uuid4()),
                    document_id=document_id,
                    page_number=number,
                    source=PageSource.IMAGE,
                    image_path=str(image),
                )
            )
        return document

    return _make


@pytest.fixture
def make_scheduler(store, notifier):
    """Factory building a scheduler over the shared store and notifier."""

    def _make(recognition, **overrides) -> JobScheduler:
        options = {
            "max_concurrent": 3,
            "idle_poll_interval": 0.05,
            "low_quality_threshold": 60.0,
            "max_page_retries": 0,
            "stale_job_threshold": 300,
            "shutdown_grace_period": 1.0,
            "default_language": "eng",
            "debug": False,
        }
        options.update(overrides)
        parser = options.pop("parser", None)
        return JobScheduler(store, recognition, parser=parser, notifier=notifier, **options)

    return _make
