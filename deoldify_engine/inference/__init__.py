"""
Inference module for image colorization.

This module provides inference capabilities for the colorization engine,
including single image processing, batch processing and progress reporting.
"""

from .inference_wrapper import ColorizationInference
from .post_processor import ColorizationPostProcessor, tensor_to_image
from .progress import ProgressReporter

__all__ = ['ColorizationInference', 'ColorizationPostProcessor', 'tensor_to_image', 'ProgressReporter']
