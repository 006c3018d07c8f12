"""
Deskew/rotation correction step.
"""

import numpy as np
import cv2

from docscan.schemas.options import PreprocessingOptions
from ..base import PreprocessingStep
from .rotation import rotate_image


def detect_skew(gray: np.ndarray) -> float:
    """
    Detect skew angle using Hough transform.

    Returns angle in degrees, 0.0 when no dominant lines are found.
    """
    edges = cv2.Canny(gray, 50, 150, apertureSize=3)
    lines = cv2.HoughLines(edges, 1, np.pi / 180, threshold=100)

    if lines is None or len(lines) == 0:
        return 0.0

    angles = []
    for line in lines[:50]:
        _, theta = line[0]
        # Relative to horizontal
        angle = np.degrees(theta) - 90
        if -45 < angle < 45:
            angles.append(angle)

    if not angles:
        return 0.0

    # Median is robust to outliers
    return float(np.median(angles))


class DeskewStep(PreprocessingStep):
    """
    Corrects small page skew.

    Detects the dominant text-line angle and rotates the image back to
    horizontal alignment.
    """

    def __init__(self, min_angle: float = 0.1):
        self.min_angle = min_angle
        self.last_angle: float = 0.0

    @property
    def name(self) -> str:
        return "deskew"

    def should_apply(self, image: np.ndarray, options: PreprocessingOptions) -> bool:
        return options.deskew

    def apply(self, image: np.ndarray, options: PreprocessingOptions) -> np.ndarray:
        gray = image if len(image.shape) == 2 else cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
        self.last_angle = detect_skew(gray)

        if abs(self.last_angle) < self.min_angle:
            return image

        return rotate_image(image, self.last_angle)
