# Data processing utilities

from .models import EngineConfig
from .preprocessor import ImagePreprocessor

__all__ = [
    'EngineConfig',
    'ImagePreprocessor'
]
