from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from docscan.schemas.options import PreprocessingOptions
from docscan.schemas.page import Line, Word


class RecognitionError(Exception):
    """Raised when an engine cannot recognize a page image."""


@dataclass
class RecognitionResult:
    """Result from recognizing one page image."""

    text: str
    confidence: float = 0.0  # 0-100
    words: list[Word] = field(default_factory=list)
    lines: list[Line] = field(default_factory=list)
    processing_time_ms: int = 0
    metadata: dict = field(default_factory=dict)


class BaseRecognitionEngine(ABC):
    """
    Abstract base class for recognition engines.

    All engine implementations must inherit from this class and implement
    the required methods for lifecycle management and recognition.
    """

    def __init__(self, **options):
        """
        Initialize the engine.

        Args:
            **options: Engine-specific options (e.g. ``tesseract_cmd``).
        """
        self.options = options
        self._loaded = False

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Unique identifier for this engine.

        Returns:
            Engine name (e.g., 'tesseract', 'mock').
        """
        pass

    @property
    def is_loaded(self) -> bool:
        """Check if the engine is ready to recognize."""
        return self._loaded

    @abstractmethod
    async def load(self) -> None:
        """
        Prepare the engine for recognition.

        Raises:
            RuntimeError: If the engine cannot be made ready.
        """
        pass

    @abstractmethod
    async def unload(self) -> None:
        """Release all resources held by the engine."""
        pass

    @abstractmethod
    async def recognize(
        self,
        image_path: Path,
        language: str,
        preprocessing: PreprocessingOptions,
    ) -> RecognitionResult:
        """
        Recognize the text on a page image.

        Args:
            image_path: Path to the image file to process.
            language: Tesseract-style language code, e.g. ``eng`` or ``eng+deu``.
            preprocessing: Image transforms to apply before recognition.

        Returns:
            RecognitionResult with text, confidence and layout.

        Raises:
            RuntimeError: If the engine is not loaded.
            FileNotFoundError: If the image file doesn't exist.
        """
        pass

    def _ensure_loaded(self) -> None:
        """Raise an error if the engine is not loaded."""
        if not self._loaded:
            raise RuntimeError(f"Engine '{self.name}' is not loaded. Call load() first.")
