"""
Dense float32 tensor used by the inference engine.

A Tensor owns a C-contiguous float32 buffer whose length always equals the
product of its shape. Layout is row-major with the last dimension varying
fastest, so a (C, H, W) feature map stores channel planes one after another.
"""

from typing import Iterable, Tuple, Union

import numpy as np

from ..utils.exceptions import ShapeMismatchError


ShapeLike = Union[int, Iterable[int]]


def _normalize_shape(shape: Tuple) -> Tuple[int, ...]:
    if len(shape) == 1 and not isinstance(shape[0], (int, np.integer)):
        shape = tuple(shape[0])
    dims = tuple(int(dim) for dim in shape)
    if not dims or any(dim <= 0 for dim in dims):
        raise ShapeMismatchError("tensor", dims, details="every dimension must be positive")
    return dims


class Tensor:
    """
    N-dimensional float32 array with an explicit shape.

    ``Tensor(64, 3, 7, 7)`` and ``Tensor((64, 3, 7, 7))`` both allocate a
    zero-filled tensor. Use ``Tensor.from_array`` to wrap existing data.
    """

    __slots__ = ("_data",)

    def __init__(self, *shape: ShapeLike):
        dims = _normalize_shape(shape)
        self._data = np.zeros(dims, dtype=np.float32)

    @classmethod
    def from_array(cls, array) -> "Tensor":
        """Wrap an array-like, copying only if dtype or layout require it."""
        data = np.ascontiguousarray(array, dtype=np.float32)
        if data.ndim == 0 or any(dim <= 0 for dim in data.shape):
            raise ShapeMismatchError("tensor", data.shape, details="every dimension must be positive")
        tensor = cls.__new__(cls)
        tensor._data = data
        return tensor

    @property
    def shape(self) -> Tuple[int, ...]:
        return self._data.shape

    @property
    def ndim(self) -> int:
        return self._data.ndim

    @property
    def numel(self) -> int:
        return int(self._data.size)

    @property
    def data(self) -> np.ndarray:
        """Backing buffer, shaped. Mutations are visible to the tensor."""
        return self._data

    def reshape(self, *shape: ShapeLike) -> "Tensor":
        """Return a tensor sharing this buffer under a new shape."""
        dims = _normalize_shape(shape)
        if int(np.prod(dims)) != self.numel:
            raise ShapeMismatchError("reshape", self.shape, dims)
        return Tensor.from_array(self._data.reshape(dims))

    def flat3d(self) -> "Tensor":
        """(C, H, W) -> (C, H*W). Shares the buffer."""
        if self.ndim != 3:
            raise ShapeMismatchError("flat3d", self.shape, details="expected rank 3")
        channels, height, width = self.shape
        return self.reshape(channels, height * width)

    def unflat3d(self, height: int, width: int) -> "Tensor":
        """(C, H*W) -> (C, H, W). Shares the buffer."""
        if self.ndim != 2 or self.shape[1] != height * width:
            raise ShapeMismatchError("unflat3d", self.shape, (height, width))
        return self.reshape(self.shape[0], height, width)

    def transpose2d(self) -> "Tensor":
        """Return a new contiguous (N, M) tensor from an (M, N) one."""
        if self.ndim != 2:
            raise ShapeMismatchError("transpose2d", self.shape, details="expected rank 2")
        return Tensor.from_array(self._data.T)

    def copy(self) -> "Tensor":
        return Tensor.from_array(self._data.copy())

    def numpy(self) -> np.ndarray:
        """Return a copy of the data as a numpy array."""
        return self._data.copy()

    def __repr__(self) -> str:
        return f"Tensor(shape={self.shape})"
