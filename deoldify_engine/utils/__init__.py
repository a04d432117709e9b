# Utility functions and helpers

from .color_converter import ColorSpaceConverter
from .exceptions import (
    ColorizationError,
    ModelLoadError,
    WeightFormatError,
    ShapeMismatchError,
    ImageIOError,
    InvalidImageFormatError,
    ImageCorruptedError,
    ImageSaveError,
    InvalidDimensionsError,
    EngineNotInitializedError,
    ConfigurationError
)
from .logging_utils import (
    ColorizationLogger,
    get_logger,
    setup_logging,
    LoggingContext,
    log_function_call
)

__all__ = [
    'ColorSpaceConverter',
    'ColorizationError',
    'ModelLoadError',
    'WeightFormatError',
    'ShapeMismatchError',
    'ImageIOError',
    'InvalidImageFormatError',
    'ImageCorruptedError',
    'ImageSaveError',
    'InvalidDimensionsError',
    'EngineNotInitializedError',
    'ConfigurationError',
    'ColorizationLogger',
    'get_logger',
    'setup_logging',
    'LoggingContext',
    'log_function_call'
]
