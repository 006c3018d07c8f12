"""
Binarization/thresholding step.
"""

import numpy as np
import cv2

from docscan.schemas.options import PreprocessingOptions
from ..base import PreprocessingStep


class BinarizationStep(PreprocessingStep):
    """
    Converts image to binary (black and white) using thresholding.

    Supports two methods:
    - 'otsu': Otsu's automatic thresholding
    - 'adaptive': Adaptive gaussian thresholding
    """

    def __init__(self, method: str = "adaptive"):
        if method not in ("otsu", "adaptive"):
            raise ValueError(f"Unknown binarization method: {method}")
        self.method = method

    @property
    def name(self) -> str:
        return "binarization"

    def should_apply(self, image: np.ndarray, options: PreprocessingOptions) -> bool:
        if not options.binarize:
            return False

        # Already binary
        if len(image.shape) == 2 and len(np.unique(image)) <= 2:
            return False

        return True

    def apply(self, image: np.ndarray, options: PreprocessingOptions) -> np.ndarray:
        if len(image.shape) == 3:
            gray = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
        else:
            gray = image

        if self.method == "otsu":
            _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
            return binary

        height, width = gray.shape
        block_size = max(11, min(101, min(width, height) // 20))
        if block_size % 2 == 0:
            block_size += 1

        return cv2.adaptiveThreshold(
            gray,
            255,
            cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
            cv2.THRESH_BINARY,
            block_size,
            11,  # C constant
        )
