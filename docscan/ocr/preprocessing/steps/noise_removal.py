"""
Noise removal step.
"""

import numpy as np
import cv2

from docscan.schemas.options import PreprocessingOptions
from ..base import PreprocessingStep


class NoiseRemovalStep(PreprocessingStep):
    """
    Removes noise from images using non-local means denoising.

    Uses OpenCV's fastNlMeansDenoising for grayscale images
    or fastNlMeansDenoisingColored for color images.
    """

    def __init__(self, strength: int = 10):
        self.strength = strength

    @property
    def name(self) -> str:
        return "noise_removal"

    def should_apply(self, image: np.ndarray, options: PreprocessingOptions) -> bool:
        return options.denoise

    def apply(self, image: np.ndarray, options: PreprocessingOptions) -> np.ndarray:
        if len(image.shape) == 2:
            return cv2.fastNlMeansDenoising(
                image,
                None,
                h=self.strength,
                templateWindowSize=7,
                searchWindowSize=21,
            )
        return cv2.fastNlMeansDenoisingColored(
            image,
            None,
            h=self.strength,
            hColor=self.strength,
            templateWindowSize=7,
            searchWindowSize=21,
        )
