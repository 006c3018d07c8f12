"""
Preprocessing pipeline.

Runs the steps a job switched on, always in the same order, so that
rotation happens before deskewing and binarization comes last.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import numpy as np
from PIL import Image

from docscan.schemas.options import PreprocessingOptions
from .base import PreprocessingStep
from .steps import (
    BinarizationStep,
    DeskewStep,
    GrayscaleStep,
    NoiseRemovalStep,
    RotationStep,
)

logger = logging.getLogger(__name__)

ImageInput = Union[np.ndarray, Image.Image, Path, str]


@dataclass
class PipelineResult:
    image: np.ndarray
    steps_applied: list[str] = field(default_factory=list)
    error: Optional[str] = None
    """Message of the step failure that made the pipeline fall back to the input."""

    @property
    def was_modified(self) -> bool:
        return bool(self.steps_applied)


class PreprocessingPipeline:
    """
    Ordered chain of preprocessing steps.

    Args:
        steps: Steps to run, in order. Defaults to the chain built by
            :func:`create_pipeline`.
    """

    def __init__(self, steps: Optional[list[PreprocessingStep]] = None):
        self.steps = steps if steps is not None else default_steps()

    def process(self, image: ImageInput, options: PreprocessingOptions) -> PipelineResult:
        """
        Prepare an image for recognition.

        Preprocessing is best effort. If any step raises, the untouched
        input comes back with ``error`` set and the page is recognised as
        it was uploaded.
        """
        source = to_numpy(image)
        if not options.any_enabled:
            return PipelineResult(image=source)

        current = source
        applied = []
        for step in self.steps:
            try:
                output = step.run(current, options)
            except Exception as e:
                logger.warning(f"Preprocessing step '{step.name}' failed, recognising the original image: {e}")
                return PipelineResult(image=source, error=str(e))

            if output is not None:
                current = output
                applied.append(step.name)

        logger.debug(f"Preprocessing applied: {', '.join(applied) or 'nothing'}")
        return PipelineResult(image=current, steps_applied=applied)


def default_steps(denoise_strength: int = 10, binarization_method: str = "adaptive") -> list[PreprocessingStep]:
    return [
        RotationStep(),
        GrayscaleStep(),
        NoiseRemovalStep(strength=denoise_strength),
        DeskewStep(),
        BinarizationStep(method=binarization_method),
    ]


def create_pipeline(denoise_strength: int = 10, binarization_method: str = "adaptive") -> PreprocessingPipeline:
    """
    Build the standard pipeline.

    Args:
        denoise_strength: ``h`` parameter of the non-local means filter.
        binarization_method: ``"adaptive"`` or ``"otsu"``.
    """
    return PreprocessingPipeline(default_steps(denoise_strength, binarization_method))


def to_numpy(image: ImageInput) -> np.ndarray:
    """
    Load ``image`` as an array.

    Paths are opened with Pillow. Modes other than RGB and L (palette,
    RGBA, CMYK) are converted to RGB first.
    """
    if isinstance(image, np.ndarray):
        return image
    if isinstance(image, (str, Path)):
        with Image.open(image) as opened:
            return to_numpy(opened)
    if isinstance(image, Image.Image):
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        return np.array(image)
    raise TypeError(f"Unsupported image type: {type(image)}")
