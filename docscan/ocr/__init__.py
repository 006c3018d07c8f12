# Import engines to register them
from docscan.ocr.base import BaseRecognitionEngine, RecognitionError, RecognitionResult
from docscan.ocr.manager import RecognitionService
from docscan.ocr.mock import MockRecognitionEngine
from docscan.ocr.registry import RecognitionEngineRegistry
from docscan.ocr.tesseract import TesseractRecognitionEngine

__all__ = [
    "BaseRecognitionEngine",
    "MockRecognitionEngine",
    "RecognitionEngineRegistry",
    "RecognitionError",
    "RecognitionResult",
    "RecognitionService",
    "TesseractRecognitionEngine",
]
