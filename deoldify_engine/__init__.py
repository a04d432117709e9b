"""
DeOldify colorization engine.

CPU inference for the stable and artistic DeOldify generators: weight
loading, the generator graph, and the image pipeline around it.
"""

from .data.models import EngineConfig
from .inference.inference_wrapper import ColorizationInference
from .models.architecture import STABLE, ARTISTIC, get_architecture

__version__ = "0.1.0"

__all__ = [
    'EngineConfig',
    'ColorizationInference',
    'STABLE',
    'ARTISTIC',
    'get_architecture'
]
