import asyncio
import logging
import time
from pathlib import Path

from docscan.ocr.base import BaseRecognitionEngine, RecognitionResult
from docscan.ocr.registry import RecognitionEngineRegistry
from docscan.schemas.options import PreprocessingOptions
from docscan.schemas.page import BoundingBox, Line, Word

logger = logging.getLogger(__name__)


@RecognitionEngineRegistry.register
class MockRecognitionEngine(BaseRecognitionEngine):
    """
    Mock recognition engine for testing.

    Returns placeholder text with a configurable confidence and delay.
    Useful for running the API and worker without Tesseract installed.

    Options:
        confidence: Confidence reported for every page (default 93.0).
        delay: Seconds to sleep per page (default 0).
    """

    @property
    def name(self) -> str:
        return "mock"

    async def load(self) -> None:
        logger.info("Mock engine loaded")
        self._loaded = True

    async def unload(self) -> None:
        logger.info("Mock engine unloaded")
        self._loaded = False

    async def recognize(
        self,
        image_path: Path,
        language: str,
        preprocessing: PreprocessingOptions,
    ) -> RecognitionResult:
        self._ensure_loaded()

        if not image_path.exists():
            raise FileNotFoundError(f"Image not found: {image_path}")

        start = time.perf_counter()
        delay = self.options.get("delay", 0.0)
        if delay:
            await asyncio.sleep(delay)

        confidence = float(self.options.get("confidence", 93.0))
        first = f"Mock OCR result for image: {image_path.name}"
        second = "This is placeholder text that would be replaced by actual OCR output."

        words = [
            Word(text=token, bbox=BoundingBox(x0=10 + 60 * i, y0=10, x1=60 + 60 * i, y1=40), confidence=confidence)
            for i, token in enumerate(first.split())
        ]
        lines = [
            Line(
                text=first,
                bbox=BoundingBox(x0=10, y0=10, x1=510, y1=40),
                confidence=confidence,
                words=list(range(len(words))),
            ),
            Line(text=second, bbox=BoundingBox(x0=10, y0=50, x1=510, y1=80), confidence=confidence),
        ]

        return RecognitionResult(
            text=f"{first}\n{second}",
            confidence=confidence,
            words=words,
            lines=lines,
            processing_time_ms=int((time.perf_counter() - start) * 1000),
            metadata={"engine": "mock", "language": language},
        )
