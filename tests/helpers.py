"""
Shared fixtures: narrow architectures with the production depths.

The stage depths, block types and decoder kinds match the real variants,
so the graph topology and convolution counts are identical while the
channel widths stay small enough for quick CPU runs.
"""

import numpy as np

from deoldify_engine.models.architecture import ArchitectureSpec, DecoderSpec, build_weight_schedule

TINY_STABLE = ArchitectureSpec(
    name="stable",
    block_type="bottleneck",
    stem_channels=4,
    stage_depths=(3, 4, 23, 3),
    stage_widths=(2, 4, 4, 8),
    expansion=4,
    middle_channels=16,
    decoder_type="wide",
    decoders=(
        DecoderSpec(up_in=32, up_out=8, skip=16, out=8),
        DecoderSpec(up_in=8, up_out=8, skip=16, out=8),
        DecoderSpec(up_in=8, up_out=8, skip=8, out=8),
        DecoderSpec(up_in=8, up_out=4, skip=4, out=4),
    ),
)

TINY_ARTISTIC = ArchitectureSpec(
    name="artistic",
    block_type="basic",
    stem_channels=8,
    stage_depths=(3, 4, 6, 3),
    stage_widths=(8, 8, 16, 16),
    expansion=1,
    middle_channels=32,
    decoder_type="deep",
    decoders=(
        DecoderSpec(up_in=16, up_out=8, skip=16, out=16),
        DecoderSpec(up_in=16, up_out=8, skip=8, out=16),
        DecoderSpec(up_in=16, up_out=8, skip=8, out=12),
        DecoderSpec(up_in=12, up_out=6, skip=8, out=8),
    ),
)


def random_weights(spec, seed=0):
    """Deterministic weights for every schedule entry of ``spec``."""
    rng = np.random.default_rng(seed)
    tensors = {}
    for name, shape in build_weight_schedule(spec):
        if name.endswith("running_var"):
            value = np.abs(rng.standard_normal(shape)) + 0.5
        elif name.endswith("gamma"):
            value = np.full(shape, 0.5)
        else:
            value = rng.standard_normal(shape) * 0.1
        tensors[name] = value.astype(np.float32)
    return tensors


def gray_gradient(height, width):
    """uint8 RGB image whose three channels hold the same diagonal ramp."""
    ys, xs = np.mgrid[0:height, 0:width]
    ramp = (40 + 160 * (ys + xs) / max(height + width - 2, 1)).astype(np.uint8)
    return np.repeat(ramp[:, :, np.newaxis], 3, axis=2)
