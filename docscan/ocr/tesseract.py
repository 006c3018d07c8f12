import asyncio
import logging
import time
from pathlib import Path

import pytesseract

from docscan.ocr.base import BaseRecognitionEngine, RecognitionError, RecognitionResult
from docscan.ocr.preprocessing import create_pipeline, to_numpy
from docscan.ocr.registry import RecognitionEngineRegistry
from docscan.schemas.options import PreprocessingOptions
from docscan.schemas.page import BoundingBox, Line, Word

logger = logging.getLogger(__name__)


def parse_tesseract_data(data: dict) -> tuple[str, float, list[Word], list[Line]]:
    """
    Turn ``pytesseract.image_to_data`` output into words and lines.

    Words are grouped into lines by their (block, paragraph, line) numbers.
    Entries with empty text or a negative confidence (layout rows) are
    dropped.

    Args:
        data: Output of ``image_to_data`` with ``Output.DICT``.

    Returns:
        Tuple of (text, mean word confidence 0-100, words, lines).
    """
    words: list[Word] = []
    line_members: dict[tuple[int, int, int], list[int]] = {}

    for i, raw_text in enumerate(data.get("text", [])):
        text = (raw_text or "").strip()
        if not text:
            continue

        try:
            confidence = float(data["conf"][i])
        except (TypeError, ValueError):
            continue
        if confidence < 0:
            continue

        x, y = int(data["left"][i]), int(data["top"][i])
        w, h = int(data["width"][i]), int(data["height"][i])
        words.append(Word(text=text, bbox=BoundingBox(x0=x, y0=y, x1=x + w, y1=y + h), confidence=confidence))

        line_key = (int(data["block_num"][i]), int(data["par_num"][i]), int(data["line_num"][i]))
        line_members.setdefault(line_key, []).append(len(words) - 1)

    lines: list[Line] = []
    for key in sorted(line_members):
        indices = sorted(line_members[key], key=lambda idx: words[idx].bbox.x0)
        members = [words[idx] for idx in indices]
        lines.append(
            Line(
                text=" ".join(word.text for word in members),
                bbox=BoundingBox(
                    x0=min(word.bbox.x0 for word in members),
                    y0=min(word.bbox.y0 for word in members),
                    x1=max(word.bbox.x1 for word in members),
                    y1=max(word.bbox.y1 for word in members),
                ),
                confidence=round(sum(word.confidence for word in members) / len(members), 2),
                words=indices,
            )
        )

    confidence = round(sum(word.confidence for word in words) / len(words), 2) if words else 0.0
    text = "\n".join(line.text for line in lines)
    return text, confidence, words, lines


@RecognitionEngineRegistry.register
class TesseractRecognitionEngine(BaseRecognitionEngine):
    """
    Recognition engine backed by the Tesseract binary via pytesseract.

    Options:
        tesseract_cmd: Path to the tesseract executable. Uses PATH when unset.
        psm: Page segmentation mode (default 3, fully automatic).
        denoise_strength: Strength of the noise removal step.
        binarization_method: 'otsu' or 'adaptive'.
    """

    def __init__(self, **options):
        super().__init__(**options)
        self.pipeline = create_pipeline(
            denoise_strength=options.get("denoise_strength", 10),
            binarization_method=options.get("binarization_method", "adaptive"),
        )
        self.version: str | None = None

    @property
    def name(self) -> str:
        return "tesseract"

    async def load(self) -> None:
        tesseract_cmd = self.options.get("tesseract_cmd")
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

        try:
            version = await asyncio.to_thread(pytesseract.get_tesseract_version)
        except pytesseract.TesseractNotFoundError as e:
            raise RuntimeError("Tesseract executable not found") from e

        self.version = str(version)
        self._loaded = True
        logger.info(f"Tesseract {self.version} ready")

    async def unload(self) -> None:
        self._loaded = False

    async def recognize(
        self,
        image_path: Path,
        language: str,
        preprocessing: PreprocessingOptions,
    ) -> RecognitionResult:
        self._ensure_loaded()
        return await asyncio.to_thread(self._recognize_sync, image_path, language, preprocessing)

    def _recognize_sync(
        self,
        image_path: Path,
        language: str,
        preprocessing: PreprocessingOptions,
    ) -> RecognitionResult:
        if not image_path.exists():
            raise FileNotFoundError(f"Image not found: {image_path}")

        start = time.perf_counter()
        prepared = self.pipeline.process(to_numpy(image_path), preprocessing)

        psm = self.options.get("psm", 3)
        try:
            data = pytesseract.image_to_data(
                prepared.image,
                lang=language,
                config=f"--psm {psm}",
                output_type=pytesseract.Output.DICT,
            )
        except pytesseract.TesseractError as e:
            raise RecognitionError(f"Tesseract failed: {e.message}") from e

        text, confidence, words, lines = parse_tesseract_data(data)
        processing_time_ms = int((time.perf_counter() - start) * 1000)

        logger.debug(
            f"Recognized {image_path.name}: {len(words)} words, "
            f"confidence {confidence:.2f}, {processing_time_ms}ms"
        )

        return RecognitionResult(
            text=text,
            confidence=confidence,
            words=words,
            lines=lines,
            processing_time_ms=processing_time_ms,
            metadata={
                "engine": "tesseract",
                "preprocessing_steps": prepared.steps_applied,
            },
        )
