"""
Models package for image colorization.
"""

from .tensor import Tensor
from .architecture import (
    ArchitectureSpec,
    DecoderSpec,
    STABLE,
    ARTISTIC,
    get_architecture,
    build_weight_schedule,
    count_convolutions,
    parameter_count
)
from .weight_manager import WeightStore, expected_file_size, validate_model_file, export_state_dict
from .network import DeOldifyNetwork

__all__ = [
    'Tensor',
    'ArchitectureSpec',
    'DecoderSpec',
    'STABLE',
    'ARTISTIC',
    'get_architecture',
    'build_weight_schedule',
    'count_convolutions',
    'parameter_count',
    'WeightStore',
    'expected_file_size',
    'validate_model_file',
    'export_state_dict',
    'DeOldifyNetwork'
]
