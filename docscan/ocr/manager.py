import asyncio
import logging
from pathlib import Path

from docscan.ocr.base import BaseRecognitionEngine, RecognitionError, RecognitionResult
from docscan.ocr.registry import RecognitionEngineRegistry
from docscan.schemas.options import PreprocessingOptions

logger = logging.getLogger(__name__)


class RecognitionService:
    """
    Runs page recognition through one registered engine.

    This class handles:
    - Loading the engine lazily on first use
    - Bounding each recognition call with a timeout
    - Normalising every engine failure into a RecognitionError
    """

    def __init__(
        self,
        engine_name: str = "tesseract",
        timeout: float = 120.0,
        engine_options: dict | None = None,
    ):
        """
        Initialize the service.

        Args:
            engine_name: Registered engine to use.
            timeout: Seconds a single recognition may take.
            engine_options: Options passed to the engine constructor.
        """
        self.engine_name = engine_name
        self.timeout = timeout
        self.engine_options = engine_options or {}
        self._engine: BaseRecognitionEngine | None = None
        self._lock = asyncio.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._engine is not None and self._engine.is_loaded

    async def load(self) -> None:
        """
        Create and load the configured engine if it isn't loaded yet.

        Raises:
            ValueError: If the engine is not registered.
            RuntimeError: If loading fails.
        """
        async with self._lock:
            if self.is_loaded:
                return

            engine = RecognitionEngineRegistry.create_engine(self.engine_name, **self.engine_options)
            if engine is None:
                raise ValueError(f"No engine registered with name: {self.engine_name}")

            logger.info(f"Loading recognition engine: {self.engine_name}")
            await engine.load()
            self._engine = engine
            logger.info(f"Recognition engine loaded: {self.engine_name}")

    async def unload(self) -> None:
        async with self._lock:
            if self._engine is None:
                return
            await self._engine.unload()
            self._engine = None
            logger.info(f"Recognition engine unloaded: {self.engine_name}")

    async def recognize(
        self,
        image_path: Path | str,
        language: str,
        preprocessing: PreprocessingOptions | None = None,
    ) -> RecognitionResult:
        """
        Recognize the text on a page image.

        Args:
            image_path: Path to the page image.
            language: Language code passed to the engine.
            preprocessing: Image transforms to apply first.

        Returns:
            RecognitionResult with confidence on a 0-100 scale.

        Raises:
            RecognitionError: On any engine failure, missing image or timeout.
        """
        try:
            await self.load()
        except Exception as e:
            raise RecognitionError(f"Recognition engine unavailable: {e}") from e

        preprocessing = preprocessing or PreprocessingOptions()
        try:
            result = await asyncio.wait_for(
                self._engine.recognize(Path(image_path), language, preprocessing),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise RecognitionError(f"Recognition timed out after {self.timeout:g}s") from e
        except RecognitionError:
            raise
        except Exception as e:
            raise RecognitionError(str(e) or e.__class__.__name__) from e

        result.confidence = min(max(result.confidence, 0.0), 100.0)
        return result
