"""
Image preprocessing module for recognition.

Provides a flag-driven preprocessing pipeline built from OpenCV steps.
"""

from .base import PreprocessingStep
from .pipeline import PipelineResult, PreprocessingPipeline, create_pipeline, to_numpy

__all__ = [
    "PreprocessingStep",
    "PipelineResult",
    "PreprocessingPipeline",
    "create_pipeline",
    "to_numpy",
]
