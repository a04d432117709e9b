"""
Configuration loading for the colorization engine.

Engine settings live in a JSON or YAML file, either at the top level or under
an ``engine:`` section so one file can also carry settings for other tools.
Values from the command line are layered on top through ``overrides``.
"""

import json
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, Union

from ..data.models import EngineConfig
from .exceptions import ConfigurationError

# Section holding engine settings when a file groups several sections
ENGINE_SECTION = 'engine'

PathLike = Union[str, Path]


def _dump_json(data: Dict[str, Any], stream) -> None:
    json.dump(data, stream, indent=2, ensure_ascii=False)


def _dump_yaml(data: Dict[str, Any], stream) -> None:
    yaml.safe_dump(data, stream, default_flow_style=False, sort_keys=False)


# suffix -> (format name, reader, writer, parse error type)
_FORMATS: Dict[str, tuple] = {
    '.json': ('JSON', json.load, _dump_json, json.JSONDecodeError),
    '.yaml': ('YAML', yaml.safe_load, _dump_yaml, yaml.YAMLError),
    '.yml': ('YAML', yaml.safe_load, _dump_yaml, yaml.YAMLError),
}


def _format_for(file_path: Path, expected: Optional[str] = None) -> tuple:
    fmt = _FORMATS.get(file_path.suffix.lower())
    if fmt is None or (expected is not None and fmt[0] != expected):
        wanted = expected or "JSON or YAML"
        raise ConfigurationError('config_file', str(file_path),
                                 details=f"expected a {wanted} file, got '{file_path.suffix}'")
    return fmt


def _read(file_path: PathLike, expected: Optional[str] = None) -> Dict[str, Any]:
    file_path = Path(file_path)
    name, reader, _, parse_error = _format_for(file_path, expected)

    if not file_path.is_file():
        raise ConfigurationError('config_file', str(file_path), details="file not found")

    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = reader(f)
    except parse_error as e:
        raise ConfigurationError('config_file', str(file_path), details=f"invalid {name}: {e}") from e
    except OSError as e:
        raise ConfigurationError('config_file', str(file_path), details=str(e)) from e

    # an empty YAML document parses to None
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError('config_file', str(file_path), dict,
                                 details="top level must be a mapping")
    return data


def _write(config_data: Dict[str, Any], file_path: PathLike, expected: str) -> None:
    file_path = Path(file_path)
    _, _, writer, _ = _format_for(file_path, expected)
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, 'w', encoding='utf-8') as f:
            writer(config_data, f)
    except OSError as e:
        raise ConfigurationError('config_file', str(file_path), details=f"cannot write: {e}") from e


def load_json_config(file_path: PathLike) -> Dict[str, Any]:
    """Read a JSON configuration file into a dictionary."""
    return _read(file_path, 'JSON')


def load_yaml_config(file_path: PathLike) -> Dict[str, Any]:
    """Read a YAML configuration file into a dictionary (empty for an empty file)."""
    return _read(file_path, 'YAML')


def load_config_file(file_path: PathLike) -> Dict[str, Any]:
    """
    Read a configuration file, choosing JSON or YAML from its suffix.

    Raises:
        ConfigurationError: If the suffix is unsupported, the file is missing
            or unparsable, or its top level is not a mapping
    """
    return _read(file_path)


def save_json_config(config_data: Dict[str, Any], file_path: PathLike) -> None:
    _write(config_data, file_path, 'JSON')


def save_yaml_config(config_data: Dict[str, Any], file_path: PathLike) -> None:
    _write(config_data, file_path, 'YAML')


def _engine_section(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    section = config_dict.get(ENGINE_SECTION, config_dict)
    if not isinstance(section, dict):
        raise ConfigurationError(ENGINE_SECTION, section, dict)
    return section


def create_engine_config_from_dict(config_dict: Dict[str, Any]) -> EngineConfig:
    """
    Build an EngineConfig from a settings dictionary.

    Settings may sit at the top level or under an ``engine`` section.
    Keys that are not EngineConfig fields are ignored, so a file shared with
    other tools still loads.

    Raises:
        ConfigurationError: If a value fails validation
    """
    engine_fields = set(EngineConfig.__dataclass_fields__)
    params = {key: value for key, value in _engine_section(config_dict).items()
              if key in engine_fields}
    return EngineConfig(**params)


def load_engine_config(file_path: Optional[PathLike] = None,
                       overrides: Optional[Dict[str, Any]] = None) -> EngineConfig:
    """
    Load the engine configuration.

    Args:
        file_path: JSON or YAML file, or None for the defaults
        overrides: Settings applied on top of the file; None values are
            skipped so unset command line flags keep the file's value

    Returns:
        EngineConfig instance

    Raises:
        ConfigurationError: If the file cannot be read or a value is invalid
    """
    settings: Dict[str, Any] = {}
    if file_path is not None:
        settings = _engine_section(load_config_file(file_path))
    if overrides:
        settings = merge_configs(settings, {k: v for k, v in overrides.items() if v is not None})
    return create_engine_config_from_dict(settings)


def merge_configs(base_config: Dict[str, Any], override_config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge two settings dictionaries, recursing into nested mappings such as
    ``model_files``; values in ``override_config`` win.
    """
    merged = dict(base_config)
    for key, value in override_config.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value
    return merged
