"""
Explicit rotation step.
"""

import numpy as np
import cv2

from docscan.schemas.options import PreprocessingOptions
from ..base import PreprocessingStep


def rotate_image(image: np.ndarray, angle: float, background_color: int = 255) -> np.ndarray:
    """
    Rotate image by given angle, growing the canvas so nothing is cropped.

    Args:
        image: Input image.
        angle: Rotation angle in degrees (positive = counter-clockwise).
        background_color: Color to fill exposed areas.

    Returns:
        Rotated image.
    """
    height, width = image.shape[:2]
    center = (width // 2, height // 2)

    rotation_matrix = cv2.getRotationMatrix2D(center, angle, 1.0)

    # New bounding box size
    cos_angle = abs(rotation_matrix[0, 0])
    sin_angle = abs(rotation_matrix[0, 1])
    new_width = int(height * sin_angle + width * cos_angle)
    new_height = int(height * cos_angle + width * sin_angle)

    rotation_matrix[0, 2] += (new_width - width) / 2
    rotation_matrix[1, 2] += (new_height - height) / 2

    if len(image.shape) == 3:
        border_color = (background_color,) * image.shape[2]
    else:
        border_color = background_color

    return cv2.warpAffine(
        image,
        rotation_matrix,
        (new_width, new_height),
        flags=cv2.INTER_CUBIC,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=border_color,
    )


class RotationStep(PreprocessingStep):
    """Rotates the page by the requested number of degrees."""

    @property
    def name(self) -> str:
        return "rotate"

    def should_apply(self, image: np.ndarray, options: PreprocessingOptions) -> bool:
        return options.rotate % 360 != 0

    def apply(self, image: np.ndarray, options: PreprocessingOptions) -> np.ndarray:
        # Quarter turns are exact and keep the image sharp
        quarter_turns = {90: cv2.ROTATE_90_COUNTERCLOCKWISE, 180: cv2.ROTATE_180, 270: cv2.ROTATE_90_CLOCKWISE}
        angle = options.rotate % 360
        if angle in quarter_turns:
            return cv2.rotate(image, quarter_turns[angle])
        return rotate_image(image, angle)
