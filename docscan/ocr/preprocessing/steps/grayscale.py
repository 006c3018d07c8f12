"""
Grayscale conversion step.
"""

import numpy as np
import cv2

from docscan.schemas.options import PreprocessingOptions
from ..base import PreprocessingStep


class GrayscaleStep(PreprocessingStep):
    """
    Converts color images to grayscale.

    Runs ahead of denoising, deskewing and binarization since those
    operate on single-channel images. Rotation alone keeps the colors.
    """

    @property
    def name(self) -> str:
        return "grayscale"

    def should_apply(self, image: np.ndarray, options: PreprocessingOptions) -> bool:
        needs_gray = options.denoise or options.deskew or options.binarize
        return needs_gray and len(image.shape) == 3

    def apply(self, image: np.ndarray, options: PreprocessingOptions) -> np.ndarray:
        if len(image.shape) == 2:
            return image
        if image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_RGBA2GRAY)
        return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
