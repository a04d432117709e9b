"""
Data models for the colorization engine.

This module contains the dataclass holding the engine's configuration
parameters.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, Any, Optional

from ..utils.exceptions import ConfigurationError


VARIANTS = ('stable', 'artistic')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


def _default_model_files() -> Dict[str, str]:
    # both precisions share one file name per variant
    return {'stable': 'Stable.model', 'artistic': 'Artistic.model'}


@dataclass
class EngineConfig:
    """
    Configuration parameters for the colorization engine.

    Attributes:
        models_dir: Directory containing the model files
        variant: Architecture to load, "stable" or "artistic"
        half: Whether model files store 16-bit floats
        render_size: Shorter side, in pixels, of the image fed to the network
        model_files: File name of each variant's model inside models_dir
        output_quality: JPEG/WebP quality used when saving results
        output_suffix: Suffix appended to file stems by batch colorization
        log_level: Logging level name
        log_dir: Optional directory for rotating log files
    """
    models_dir: str = 'models'
    variant: str = 'stable'
    half: bool = False
    render_size: int = 256
    model_files: Dict[str, str] = field(default_factory=_default_model_files)
    output_quality: int = 95
    output_suffix: str = '-color'
    log_level: str = 'INFO'
    log_dir: Optional[str] = None

    def __post_init__(self):
        """Validate EngineConfig after initialization."""
        self.validate()

    def validate(self):
        """Validate configuration parameters."""
        if not isinstance(self.models_dir, str) or not self.models_dir:
            raise ConfigurationError('models_dir', self.models_dir, str)

        if not isinstance(self.variant, str) or self.variant.lower() not in VARIANTS:
            raise ConfigurationError('variant', self.variant, str,
                                     details=f"must be one of {list(VARIANTS)}")
        self.variant = self.variant.lower()

        if not isinstance(self.half, bool):
            raise ConfigurationError('half', self.half, bool)

        # Smaller renders collapse below the encoder's total stride
        if not isinstance(self.render_size, int) or isinstance(self.render_size, bool) or self.render_size < 32:
            raise ConfigurationError('render_size', self.render_size, int,
                                     details="must be an integer of at least 32")

        if not isinstance(self.model_files, dict):
            raise ConfigurationError('model_files', self.model_files, dict)
        merged = _default_model_files()
        merged.update(self.model_files)
        for variant, file_name in merged.items():
            if variant not in VARIANTS:
                raise ConfigurationError('model_files', variant, str,
                                         details=f"unknown variant, expected one of {list(VARIANTS)}")
            if not isinstance(file_name, str) or not file_name:
                raise ConfigurationError(f'model_files.{variant}', file_name, str)
        self.model_files = merged

        if not isinstance(self.output_quality, int) or not 1 <= self.output_quality <= 100:
            raise ConfigurationError('output_quality', self.output_quality, int,
                                     details="must be between 1 and 100")

        if not isinstance(self.output_suffix, str):
            raise ConfigurationError('output_suffix', self.output_suffix, str)

        if not isinstance(self.log_level, str) or self.log_level.upper() not in LOG_LEVELS:
            raise ConfigurationError('log_level', self.log_level, str,
                                     details=f"must be one of {list(LOG_LEVELS)}")
        self.log_level = self.log_level.upper()

        if self.log_dir is not None and not isinstance(self.log_dir, str):
            raise ConfigurationError('log_dir', self.log_dir, str)

    def model_file(self, variant: Optional[str] = None) -> str:
        """File name of the model for ``variant`` (defaults to the configured one)."""
        return self.model_files[(variant or self.variant).lower()]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
