"""
Model weight management for the DeOldify generators.

Model files are a headerless concatenation of tensors in the order produced
by ``build_weight_schedule``. Values are little-endian IEEE-754 floats, 32 bit
by default or 16 bit for half-precision files, and are always widened to
float32 in memory. This module reads, writes and validates such files, and
converts PyTorch checkpoints into them.
"""

import os
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any, BinaryIO, Dict, Iterator, Optional, Tuple, Union
import logging

import numpy as np

from .architecture import ArchitectureSpec, build_weight_schedule, parameter_count
from .tensor import Tensor
from ..utils.exceptions import ModelLoadError, WeightFormatError
from ..utils.logging_utils import log_function_call

logger = logging.getLogger(__name__)

PathOrStream = Union[str, os.PathLike, BinaryIO]

_STATE_DICT_WRAPPERS = ("model", "model_state_dict", "state_dict")


def _value_dtype(half: bool) -> np.dtype:
    return np.dtype("<f2") if half else np.dtype("<f4")


def expected_file_size(spec: ArchitectureSpec, half: bool = False) -> int:
    """Exact size in bytes of a model file for ``spec`` at the given precision."""
    return parameter_count(spec) * _value_dtype(half).itemsize


class WeightStore(Mapping):
    """
    Read-only mapping from parameter name to ``Tensor``.

    A store is populated once, by ``load`` or directly from a mapping, and
    cannot be modified afterwards. ``tensor`` fetches an entry and checks its
    shape, which is how the network resolves its parameters.
    """

    def __init__(self, tensors: Mapping, spec: Optional[ArchitectureSpec] = None,
                 half: bool = False):
        converted = {}
        for name, value in tensors.items():
            converted[name] = value if isinstance(value, Tensor) else Tensor.from_array(value)
        self._tensors = MappingProxyType(converted)
        self.spec = spec
        self.half = half

    def __getitem__(self, name: str) -> Tensor:
        return self._tensors[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tensors)

    def __len__(self) -> int:
        return len(self._tensors)

    def __repr__(self) -> str:
        variant = self.spec.name if self.spec is not None else "custom"
        return f"WeightStore(variant={variant}, entries={len(self)}, half={self.half})"

    def tensor(self, name: str, shape: Optional[Tuple[int, ...]] = None) -> Tensor:
        """
        Fetch a parameter, optionally checking its shape.

        Raises:
            WeightFormatError: If the entry is missing or has another shape
        """
        if name not in self._tensors:
            raise WeightFormatError(name, "parameter missing from weight store")
        value = self._tensors[name]
        if shape is not None and tuple(value.shape) != tuple(shape):
            raise WeightFormatError(name, f"expected shape {tuple(shape)}, found {tuple(value.shape)}")
        return value

    @property
    def num_values(self) -> int:
        return sum(value.numel for value in self._tensors.values())

    @classmethod
    def load(cls, source: PathOrStream, spec: ArchitectureSpec, half: bool = False) -> "WeightStore":
        """
        Read a model file tensor by tensor following the weight schedule.

        Args:
            source: Path to a model file or a readable binary stream
            spec: Architecture whose schedule describes the file
            half: Whether values are stored as 16-bit floats

        Returns:
            Populated weight store

        Raises:
            ModelLoadError: If the file does not exist or cannot be opened
            WeightFormatError: If the data ends early or has trailing bytes
        """
        if hasattr(source, "read"):
            return cls._read_stream(source, spec, half, str(getattr(source, "name", "<stream>")))

        path = Path(source)
        if not path.is_file():
            raise ModelLoadError(str(path), "file not found")
        try:
            stream = open(path, "rb")
        except OSError as e:
            raise ModelLoadError(str(path), str(e)) from e

        with stream:
            store = cls._read_stream(stream, spec, half, str(path))
        logger.info(f"Loaded {len(store)} tensors ({store.num_values} values) from {path}")
        return store

    @classmethod
    def _read_stream(cls, stream: BinaryIO, spec: ArchitectureSpec, half: bool,
                     origin: str) -> "WeightStore":
        dtype = _value_dtype(half)
        tensors = {}
        consumed = 0

        for name, shape in build_weight_schedule(spec):
            count = int(np.prod(shape))
            expected = count * dtype.itemsize
            try:
                chunk = stream.read(expected)
            except OSError as e:
                raise ModelLoadError(origin, f"read failed at '{name}': {e}") from e
            if len(chunk) < expected:
                raise WeightFormatError(
                    name, f"stream ended after {consumed + len(chunk)} bytes",
                    expected_bytes=expected, available_bytes=len(chunk))
            values = np.frombuffer(chunk, dtype=dtype).astype(np.float32)
            tensors[name] = Tensor.from_array(values.reshape(shape))
            consumed += expected

        if stream.read(1):
            raise WeightFormatError(
                "<end of schedule>",
                f"unexpected trailing data after {consumed} bytes; "
                f"wrong variant or precision for {origin}?")

        return cls(tensors, spec=spec, half=half)

    @staticmethod
    def save(destination: PathOrStream, tensors: Mapping, spec: ArchitectureSpec,
             half: bool = False) -> int:
        """
        Write tensors in schedule order.

        Args:
            destination: Output path or writable binary stream
            tensors: Mapping of name to Tensor or array, must cover the schedule
            spec: Architecture defining the order
            half: Whether to store 16-bit floats

        Returns:
            Number of bytes written

        Raises:
            WeightFormatError: If an entry is missing or misshapen
        """
        dtype = _value_dtype(half)
        source = tensors if isinstance(tensors, WeightStore) else WeightStore(tensors)
        chunks = []
        for name, shape in build_weight_schedule(spec):
            value = source.tensor(name, shape)
            chunks.append(value.data.astype(dtype).tobytes())

        payload = b"".join(chunks)
        if hasattr(destination, "write"):
            destination.write(payload)
        else:
            path = Path(destination)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(payload)
            logger.info(f"Model weights saved to {path} ({len(payload)} bytes)")
        return len(payload)


def validate_model_file(path: Union[str, os.PathLike], spec: ArchitectureSpec,
                        half: bool = False) -> Dict[str, Any]:
    """
    Check a model file without loading it.

    Returns:
        Dictionary with ``valid``, ``file_exists``, ``size_valid``,
        ``expected_size``, ``actual_size`` and ``error`` entries
    """
    result = {
        'valid': False,
        'file_exists': False,
        'size_valid': False,
        'expected_size': expected_file_size(spec, half),
        'actual_size': None,
        'error': None
    }

    path = Path(path)
    if not path.is_file():
        result['error'] = f"File not found: {path}"
        return result

    result['file_exists'] = True
    result['actual_size'] = path.stat().st_size
    result['size_valid'] = result['actual_size'] == result['expected_size']
    if not result['size_valid']:
        result['error'] = (f"Size mismatch for {spec.name} "
                           f"({'half' if half else 'full'} precision): "
                           f"expected {result['expected_size']} bytes, found {result['actual_size']}")
    result['valid'] = result['size_valid']
    return result


def _unwrap_state_dict(checkpoint: Any) -> Mapping:
    for key in _STATE_DICT_WRAPPERS:
        if isinstance(checkpoint, Mapping) and key in checkpoint and isinstance(checkpoint[key], Mapping):
            return checkpoint[key]
    if isinstance(checkpoint, Mapping):
        return checkpoint
    raise WeightFormatError("<checkpoint>", f"unsupported checkpoint type {type(checkpoint).__name__}")


def _spectral_weight(state_dict: Mapping, name: str):
    # spectral-normalized layers keep weight_orig with power-iteration vectors u and v
    prefix = name[:-len("weight")]
    weight = state_dict[prefix + "weight_orig"].detach().cpu().float()
    u = state_dict[prefix + "weight_u"].detach().cpu().float()
    v = state_dict[prefix + "weight_v"].detach().cpu().float()
    sigma = u.dot(weight.reshape(weight.shape[0], -1).mv(v))
    return weight / sigma


def _squeeze_trailing(shape: Tuple[int, ...]) -> Tuple[int, ...]:
    dims = list(shape)
    while len(dims) > 1 and dims[-1] == 1:
        dims.pop()
    return tuple(dims)


@log_function_call
def export_state_dict(source: Any, spec: ArchitectureSpec,
                      output_path: Union[str, os.PathLike], half: bool = False) -> int:
    """
    Convert a PyTorch checkpoint into a flat model file.

    Args:
        source: Path to a ``.pth`` checkpoint or an in-memory state dict
        spec: Architecture the checkpoint was trained with
        output_path: Destination model file
        half: Whether to store 16-bit floats

    Returns:
        Number of bytes written

    Raises:
        ModelLoadError: If the checkpoint cannot be read
        WeightFormatError: If a scheduled entry is missing or misshapen
    """
    import torch

    if isinstance(source, (str, os.PathLike)):
        if not os.path.exists(source):
            raise ModelLoadError(str(source), "checkpoint not found")
        try:
            checkpoint = torch.load(source, map_location='cpu', weights_only=False)
        except Exception as e:
            raise ModelLoadError(str(source), str(e)) from e
    else:
        checkpoint = source

    state_dict = _unwrap_state_dict(checkpoint)
    tensors = {}
    for name, shape in build_weight_schedule(spec):
        if name in state_dict:
            value = state_dict[name].detach().cpu().float()
        elif name.endswith(".weight") and name[:-len("weight")] + "weight_orig" in state_dict:
            value = _spectral_weight(state_dict, name)
        else:
            raise WeightFormatError(name, "missing from checkpoint")

        if tuple(value.shape) != shape:
            # conv1d projections store (out, in, 1); compare without trailing unit dims
            if _squeeze_trailing(tuple(value.shape)) != _squeeze_trailing(shape):
                raise WeightFormatError(name, f"expected shape {shape}, found {tuple(value.shape)}")
            value = value.reshape(shape)
        tensors[name] = value.numpy()

    written = WeightStore.save(output_path, tensors, spec, half=half)
    logger.info(f"Exported {len(tensors)} tensors for {spec.name} model to {output_path}")
    return written
