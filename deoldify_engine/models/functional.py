"""
Functional CNN operators over single-batch, channel-first tensors.

Every function here is a pure function of its arguments except those whose
name ends in an underscore. Those are in-place capable: they take ownership
of their first argument, mutate its buffer and return it. Callers must not
keep using a tensor after handing it to an in-place operator.
"""

from typing import Optional, Tuple, Union

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .tensor import Tensor
from ..utils.exceptions import ShapeMismatchError


IntPair = Union[int, Tuple[int, int]]

# Upper bound on the im2col buffer built per GEMM call, in float32 elements.
_IM2COL_CHUNK_ELEMENTS = 1 << 24


def _pair(value: IntPair) -> Tuple[int, int]:
    if isinstance(value, (tuple, list)):
        first, second = value
        return int(first), int(second)
    return int(value), int(value)


def _require_rank(x: Tensor, rank: int, operation: str) -> None:
    if x.ndim != rank:
        raise ShapeMismatchError(operation, x.shape, details=f"expected rank {rank}")


def _output_size(size: int, kernel: int, stride: int, padding: int, dilation: int) -> int:
    return (size + 2 * padding - dilation * (kernel - 1) - 1) // stride + 1


def _windows(padded: np.ndarray, kernel: Tuple[int, int], stride: Tuple[int, int],
             dilation: Tuple[int, int], out_size: Tuple[int, int]) -> np.ndarray:
    """Strided (C, outH, outW, kH, kW) view over a padded (C, H, W) array."""
    span_h = dilation[0] * (kernel[0] - 1) + 1
    span_w = dilation[1] * (kernel[1] - 1) + 1
    view = sliding_window_view(padded, (span_h, span_w), axis=(1, 2))
    view = view[:, ::stride[0], ::stride[1], ::dilation[0], ::dilation[1]]
    return view[:, :out_size[0], :out_size[1]]


def conv2d(x: Tensor,
           weight: Tensor,
           bias: Optional[Tensor] = None,
           padding: IntPair = 0,
           stride: IntPair = 1,
           dilation: IntPair = 1,
           groups: int = 1) -> Tensor:
    """
    2D cross-correlation of a (C, H, W) map with an (O, C/groups, kH, kW) kernel.

    Padding is zero-valued. Output size per axis is
    ``floor((in + 2*pad - dilation*(k-1) - 1) / stride) + 1``.

    Raises:
        ShapeMismatchError: On rank, channel or bias mismatches, or when the
            kernel does not fit the padded input.
    """
    _require_rank(x, 3, "conv2d")
    _require_rank(weight, 4, "conv2d")
    pad_h, pad_w = _pair(padding)
    stride_h, stride_w = _pair(stride)
    dil_h, dil_w = _pair(dilation)

    in_channels, in_h, in_w = x.shape
    out_channels, group_in, k_h, k_w = weight.shape
    if groups < 1 or in_channels != group_in * groups or out_channels % groups:
        raise ShapeMismatchError("conv2d", x.shape, weight.shape,
                                 details=f"input channels do not match weight (groups={groups})")
    if bias is not None and bias.shape != (out_channels,):
        raise ShapeMismatchError("conv2d", weight.shape, bias.shape, details="bias length")

    out_h = _output_size(in_h, k_h, stride_h, pad_h, dil_h)
    out_w = _output_size(in_w, k_w, stride_w, pad_w, dil_w)
    if out_h <= 0 or out_w <= 0:
        raise ShapeMismatchError("conv2d", x.shape, weight.shape,
                                 details="kernel larger than padded input")

    group_out = out_channels // groups
    out = np.empty((out_channels, out_h, out_w), dtype=np.float32)

    pointwise = (k_h == 1 and k_w == 1 and pad_h == 0 and pad_w == 0
                 and stride_h == 1 and stride_w == 1)
    if pointwise:
        flat = x.data.reshape(in_channels, in_h * in_w)
        for g in range(groups):
            w_g = weight.data[g * group_out:(g + 1) * group_out].reshape(group_out, group_in)
            x_g = flat[g * group_in:(g + 1) * group_in]
            out[g * group_out:(g + 1) * group_out] = (w_g @ x_g).reshape(group_out, out_h, out_w)
    else:
        padded = x.data
        if pad_h or pad_w:
            padded = np.pad(padded, ((0, 0), (pad_h, pad_h), (pad_w, pad_w)))
        windows = _windows(padded, (k_h, k_w), (stride_h, stride_w), (dil_h, dil_w), (out_h, out_w))

        patch = group_in * k_h * k_w
        rows = max(1, _IM2COL_CHUNK_ELEMENTS // (patch * out_w))
        for g in range(groups):
            w_g = weight.data[g * group_out:(g + 1) * group_out].reshape(group_out, patch)
            win_g = windows[g * group_in:(g + 1) * group_in]
            for start in range(0, out_h, rows):
                stop = min(start + rows, out_h)
                # (C, rows, outW, kH, kW) -> (C*kH*kW, rows*outW), matching the weight layout
                cols = win_g[:, start:stop].transpose(0, 3, 4, 1, 2).reshape(patch, -1)
                out[g * group_out:(g + 1) * group_out, start:stop] = (
                    (w_g @ cols).reshape(group_out, stop - start, out_w))

    if bias is not None:
        out += bias.data[:, None, None]
    return Tensor.from_array(out)


def batch_norm2d_(x: Tensor,
                  running_mean: Tensor,
                  running_var: Tensor,
                  weight: Tensor,
                  bias: Tensor,
                  eps: float = 1e-5) -> Tensor:
    """In-place inference batch norm: (x - mean) / sqrt(var + eps) * weight + bias."""
    _require_rank(x, 3, "batch_norm2d")
    channels = x.shape[0]
    for param in (running_mean, running_var, weight, bias):
        if param.shape != (channels,):
            raise ShapeMismatchError("batch_norm2d", x.shape, param.shape)

    data = x.data
    data -= running_mean.data[:, None, None]
    data /= np.sqrt(running_var.data + np.float32(eps))[:, None, None]
    data *= weight.data[:, None, None]
    data += bias.data[:, None, None]
    return x


def relu_(x: Tensor) -> Tensor:
    np.maximum(x.data, 0, out=x.data)
    return x


def add_(x: Tensor, other: Tensor) -> Tensor:
    """In-place x += other. Shapes must be identical."""
    if x.shape != other.shape:
        raise ShapeMismatchError("add", x.shape, other.shape)
    np.add(x.data, other.data, out=x.data)
    return x


def mul_scalar_(x: Tensor, scalar: float) -> Tensor:
    np.multiply(x.data, np.float32(scalar), out=x.data)
    return x


def sigmoid_(x: Tensor) -> Tensor:
    data = x.data
    with np.errstate(over="ignore"):
        np.negative(data, out=data)
        np.exp(data, out=data)
    data += 1
    np.reciprocal(data, out=data)
    return x


def max_pool2d(x: Tensor, kernel_size: IntPair, stride: IntPair,
               padding: IntPair = 0, dilation: IntPair = 1) -> Tensor:
    """Sliding-window max. Padded cells never win."""
    _require_rank(x, 3, "max_pool2d")
    kernel = _pair(kernel_size)
    strides = _pair(stride)
    pad_h, pad_w = _pair(padding)
    dilations = _pair(dilation)
    out_h = _output_size(x.shape[1], kernel[0], strides[0], pad_h, dilations[0])
    out_w = _output_size(x.shape[2], kernel[1], strides[1], pad_w, dilations[1])
    if out_h <= 0 or out_w <= 0:
        raise ShapeMismatchError("max_pool2d", x.shape, kernel)

    padded = np.pad(x.data, ((0, 0), (pad_h, pad_h), (pad_w, pad_w)), constant_values=-np.inf)
    windows = _windows(padded, kernel, strides, dilations, (out_h, out_w))
    return Tensor.from_array(windows.max(axis=(3, 4)))


def avg_pool2d(x: Tensor, kernel_size: IntPair, stride: IntPair,
               padding: IntPair = 0, count_include_pad: bool = False) -> Tensor:
    """
    Sliding-window mean.

    With ``count_include_pad=False`` each window is divided by the number of
    real (unpadded) cells it covers, so border outputs are not darkened by
    the zero padding.
    """
    _require_rank(x, 3, "avg_pool2d")
    kernel = _pair(kernel_size)
    strides = _pair(stride)
    pad_h, pad_w = _pair(padding)
    out_h = _output_size(x.shape[1], kernel[0], strides[0], pad_h, 1)
    out_w = _output_size(x.shape[2], kernel[1], strides[1], pad_w, 1)
    if out_h <= 0 or out_w <= 0:
        raise ShapeMismatchError("avg_pool2d", x.shape, kernel)

    pads = ((0, 0), (pad_h, pad_h), (pad_w, pad_w))
    windows = _windows(np.pad(x.data, pads), kernel, strides, (1, 1), (out_h, out_w))
    sums = windows.sum(axis=(3, 4), dtype=np.float32)

    if count_include_pad:
        sums /= np.float32(kernel[0] * kernel[1])
    else:
        ones = np.pad(np.ones((1,) + x.shape[1:], dtype=np.float32), pads)
        counts = _windows(ones, kernel, strides, (1, 1), (out_h, out_w)).sum(axis=(3, 4))
        sums /= counts
    return Tensor.from_array(sums)


def pixel_shuffle(x: Tensor, upscale_factor: int = 2) -> Tensor:
    """(C*r*r, H, W) -> (C, H*r, W*r), input channel c*r*r + i*r + j -> (c, h*r+i, w*r+j)."""
    _require_rank(x, 3, "pixel_shuffle")
    r = upscale_factor
    channels, height, width = x.shape
    if channels % (r * r):
        raise ShapeMismatchError("pixel_shuffle", x.shape,
                                 details=f"channels not divisible by {r * r}")
    out_channels = channels // (r * r)
    data = x.data.reshape(out_channels, r, r, height, width)
    data = data.transpose(0, 3, 1, 4, 2)
    return Tensor.from_array(data.reshape(out_channels, height * r, width * r))


def pixel_unshuffle(x: Tensor, downscale_factor: int = 2) -> Tensor:
    """Inverse of pixel_shuffle: (C, H*r, W*r) -> (C*r*r, H, W)."""
    _require_rank(x, 3, "pixel_unshuffle")
    r = downscale_factor
    channels, height, width = x.shape
    if height % r or width % r:
        raise ShapeMismatchError("pixel_unshuffle", x.shape,
                                 details=f"spatial size not divisible by {r}")
    data = x.data.reshape(channels, height // r, r, width // r, r)
    data = data.transpose(0, 2, 4, 1, 3)
    return Tensor.from_array(data.reshape(channels * r * r, height // r, width // r))


def center_crop2d(x: Tensor, height: int, width: int) -> Tensor:
    _require_rank(x, 3, "center_crop2d")
    _, in_h, in_w = x.shape
    if height > in_h or width > in_w:
        raise ShapeMismatchError("center_crop2d", x.shape, (height, width))
    if (height, width) == (in_h, in_w):
        return x
    top = (in_h - height) // 2
    left = (in_w - width) // 2
    return Tensor.from_array(x.data[:, top:top + height, left:left + width])


def restricted_cat2d(first: Tensor, second: Tensor) -> Tensor:
    """Concatenate along channels after centre-cropping both to the common H, W."""
    _require_rank(first, 3, "restricted_cat2d")
    _require_rank(second, 3, "restricted_cat2d")
    height = min(first.shape[1], second.shape[1])
    width = min(first.shape[2], second.shape[2])
    first = center_crop2d(first, height, width)
    second = center_crop2d(second, height, width)
    return Tensor.from_array(np.concatenate((first.data, second.data), axis=0))


def matmul(a: Tensor, b: Tensor) -> Tensor:
    _require_rank(a, 2, "matmul")
    _require_rank(b, 2, "matmul")
    if a.shape[1] != b.shape[0]:
        raise ShapeMismatchError("matmul", a.shape, b.shape)
    return Tensor.from_array(a.data @ b.data)


def softmax2d(x: Tensor, axis: int = 1) -> Tensor:
    """Softmax over one axis of a 2D matrix, stabilised by subtracting the max."""
    _require_rank(x, 2, "softmax2d")
    shifted = x.data - x.data.max(axis=axis, keepdims=True)
    np.exp(shifted, out=shifted)
    shifted /= shifted.sum(axis=axis, keepdims=True)
    return Tensor.from_array(shifted)
