"""
Custom exception hierarchy for the colorization engine.

This module defines specific exception classes for the failure classes the
engine distinguishes: model data errors, numeric shape errors, image I/O
errors and configuration errors.
"""

import logging
from typing import Optional, Any, Dict, Sequence


class ColorizationError(Exception):
    """Base exception class for all colorization-related errors."""

    def __init__(self, message: str, error_code: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}

        # Log the error when it's created
        logger = logging.getLogger(__name__)
        logger.error(f"{type(self).__name__}: {message}", extra={
            'error_code': error_code,
            'context': context
        })


# Model data errors
class ModelLoadError(ColorizationError):
    """Raised when a model file is missing or cannot be read."""

    def __init__(self, model_path: str, reason: Optional[str] = None):
        message = f"Failed to load model from: {model_path}"
        if reason:
            message += f". Reason: {reason}"
        super().__init__(message, error_code="MODEL_LOAD_FAILED")
        self.model_path = model_path


class WeightFormatError(ColorizationError):
    """Raised when a weight stream does not match the expected schedule."""

    def __init__(self, parameter: str, details: str,
                 expected_bytes: Optional[int] = None,
                 available_bytes: Optional[int] = None):
        message = f"Invalid weight data at '{parameter}': {details}"
        if expected_bytes is not None and available_bytes is not None:
            message += f" (expected {expected_bytes} bytes, got {available_bytes})"
        super().__init__(message, error_code="WEIGHT_FORMAT", context={
            'parameter': parameter,
            'expected_bytes': expected_bytes,
            'available_bytes': available_bytes
        })
        self.parameter = parameter
        self.expected_bytes = expected_bytes
        self.available_bytes = available_bytes


# Numeric errors
class ShapeMismatchError(ColorizationError):
    """Raised when an operator receives tensors of incompatible shapes."""

    def __init__(self, operation: str, *shapes: Sequence[int], details: Optional[str] = None):
        rendered = ", ".join(str(tuple(shape)) for shape in shapes)
        message = f"Shape mismatch in {operation}: {rendered}"
        if details:
            message += f". Details: {details}"
        super().__init__(message, error_code="SHAPE_MISMATCH")
        self.operation = operation
        self.shapes = tuple(tuple(shape) for shape in shapes)


# Image I/O errors
class ImageIOError(ColorizationError):
    """Base class for failures reading or writing images."""
    pass


class InvalidImageFormatError(ImageIOError):
    """Raised when unsupported image formats are provided."""

    def __init__(self, format_type: str, supported_formats: list):
        message = f"Unsupported image format: {format_type}. Supported formats: {supported_formats}"
        super().__init__(message, error_code="INVALID_FORMAT")
        self.format_type = format_type
        self.supported_formats = supported_formats


class ImageCorruptedError(ImageIOError):
    """Raised when image files cannot be properly decoded."""

    def __init__(self, image_path: str, details: Optional[str] = None):
        message = f"Image file is corrupted or unreadable: {image_path}"
        if details:
            message += f". Details: {details}"
        super().__init__(message, error_code="IMAGE_CORRUPTED")
        self.image_path = image_path


class ImageSaveError(ImageIOError):
    """Raised when a colorized image cannot be written."""

    def __init__(self, output_path: str, details: Optional[str] = None):
        message = f"Failed to save image to: {output_path}"
        if details:
            message += f". Details: {details}"
        super().__init__(message, error_code="IMAGE_SAVE_FAILED")
        self.output_path = output_path


class InvalidDimensionsError(ColorizationError):
    """Raised when an in-memory image has an unusable shape."""

    def __init__(self, dimensions: tuple, expected: str):
        message = f"Image dimensions {dimensions} are invalid, expected {expected}"
        super().__init__(message, error_code="INVALID_DIMENSIONS")
        self.dimensions = dimensions
        self.expected = expected


# Engine state errors
class EngineNotInitializedError(ColorizationError):
    """Raised when colorization is requested before a model is loaded."""

    def __init__(self, operation: str = "colorize"):
        message = f"Engine is not initialized; call initialize() before {operation}()"
        super().__init__(message, error_code="NOT_INITIALIZED")
        self.operation = operation


# Configuration Errors
class ConfigurationError(ColorizationError):
    """Raised when configuration validation fails."""

    def __init__(self, config_key: str, value: Any, expected_type: Optional[type] = None,
                 details: Optional[str] = None):
        message = f"Invalid configuration for '{config_key}': {value}"
        if expected_type is not None:
            message += f". Expected type: {expected_type.__name__}"
        if details:
            message += f". Details: {details}"
        super().__init__(message, error_code="INVALID_CONFIG")
        self.config_key = config_key
        self.value = value
        self.expected_type = expected_type
