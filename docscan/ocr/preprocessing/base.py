"""
Base class for image preprocessing steps.
"""

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from docscan.schemas.options import PreprocessingOptions


class PreprocessingStep(ABC):
    """
    One image transformation in the preprocessing chain.

    A step is switched on by the job's preprocessing flags, and may still
    decline to run when the image does not need it (a binary image is not
    binarized twice).
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier reported in the recognition metadata."""

    @abstractmethod
    def should_apply(self, image: np.ndarray, options: PreprocessingOptions) -> bool:
        """Whether this step has anything to do for ``image``."""

    @abstractmethod
    def apply(self, image: np.ndarray, options: PreprocessingOptions) -> np.ndarray:
        """Return the transformed image. Never modifies ``image`` in place."""

    def run(self, image: np.ndarray, options: PreprocessingOptions) -> Optional[np.ndarray]:
        """
        Apply the step if it is wanted.

        Returns:
            The new image, or None when the step was skipped.
        """
        if not self.should_apply(image, options):
            return None
        return self.apply(image, options)
