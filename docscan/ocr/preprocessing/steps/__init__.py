"""
Individual preprocessing steps.
"""

from .rotation import RotationStep, rotate_image
from .grayscale import GrayscaleStep
from .noise_removal import NoiseRemovalStep
from .deskew import DeskewStep, detect_skew
from .binarization import BinarizationStep

__all__ = [
    "RotationStep",
    "GrayscaleStep",
    "NoiseRemovalStep",
    "DeskewStep",
    "BinarizationStep",
    "detect_skew",
    "rotate_image",
]
