"""
Parameter bundles and building blocks of the DeOldify generator.

Each bundle is a frozen dataclass holding the tensors one sub-module needs,
resolved once from a ``WeightStore``. Calling a bundle runs that sub-module.
Convolutions notify the progress reporter, if one is given, after they
finish.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from . import functional as F
from .architecture import (BLOCK_BOTTLENECK, DECODER_WIDE, ENCODER_NORM, ENCODER_PREFIX,
                           FINAL_SHUFFLE, HEAD, MIDDLE, REFINE, ArchitectureSpec,
                           build_weight_schedule)
from .tensor import Tensor


class ParameterResolver:
    """Fetches named tensors from a store, checking them against the schedule shapes."""

    def __init__(self, store, spec: ArchitectureSpec):
        self.store = store
        self.shapes = dict(build_weight_schedule(spec))

    def __call__(self, name: str) -> Tensor:
        return self.store.tensor(name, self.shapes.get(name))


def _advance(progress) -> None:
    if progress is not None:
        progress.advance()


@dataclass(frozen=True)
class Conv2dParams:
    weight: Tensor
    bias: Optional[Tensor] = None
    stride: int = 1
    padding: int = 0

    @classmethod
    def resolve(cls, fetch: ParameterResolver, prefix: str, stride: int = 1,
                padding: Optional[int] = None, bias: bool = False) -> "Conv2dParams":
        weight = fetch(f"{prefix}.weight")
        if padding is None:
            padding = weight.shape[2] // 2
        return cls(weight=weight,
                   bias=fetch(f"{prefix}.bias") if bias else None,
                   stride=stride,
                   padding=padding)

    @property
    def out_channels(self) -> int:
        return self.weight.shape[0]

    def __call__(self, x: Tensor, progress=None) -> Tensor:
        y = F.conv2d(x, self.weight, self.bias, padding=self.padding, stride=self.stride)
        _advance(progress)
        return y


@dataclass(frozen=True)
class BatchNormParams:
    weight: Tensor
    bias: Tensor
    running_mean: Tensor
    running_var: Tensor

    @classmethod
    def resolve(cls, fetch: ParameterResolver, prefix: str) -> "BatchNormParams":
        return cls(weight=fetch(f"{prefix}.weight"),
                   bias=fetch(f"{prefix}.bias"),
                   running_mean=fetch(f"{prefix}.running_mean"),
                   running_var=fetch(f"{prefix}.running_var"))

    def __call__(self, x: Tensor) -> Tensor:
        """Normalize ``x`` in place."""
        return F.batch_norm2d_(x, self.running_mean, self.running_var, self.weight, self.bias)


@dataclass(frozen=True)
class StemParams:
    conv: Conv2dParams
    bn: BatchNormParams

    def __call__(self, x: Tensor, progress=None) -> Tuple[Tensor, Tensor]:
        """Return the activated stem output (first skip) and its max-pooled version."""
        x1 = F.relu_(self.bn(self.conv(x, progress)))
        return x1, F.max_pool2d(x1, kernel_size=3, stride=2, padding=1)


@dataclass(frozen=True)
class ResidualBlockParams:
    """
    Bottleneck (three convs) or basic (two convs) residual block.

    ``downsample`` is the 1x1 projection applied to the shortcut when the
    block is strided or changes the channel count.
    """
    convs: Tuple[Conv2dParams, ...]
    norms: Tuple[BatchNormParams, ...]
    downsample: Optional[Tuple[Conv2dParams, BatchNormParams]] = None

    def __call__(self, x: Tensor, progress=None) -> Tensor:
        out = x
        last = len(self.convs) - 1
        for index, (conv, bn) in enumerate(zip(self.convs, self.norms)):
            out = bn(conv(out, progress))
            if index < last:
                F.relu_(out)

        if self.downsample is not None:
            conv, bn = self.downsample
            identity = bn(conv(x, progress))
        else:
            identity = x
        return F.relu_(F.add_(out, identity))


@dataclass(frozen=True)
class MiddleBlockParams:
    layers: Tuple[Tuple[Conv2dParams, BatchNormParams], ...]

    def __call__(self, x: Tensor, progress=None) -> Tensor:
        for conv, bn in self.layers:
            x = bn(F.relu_(conv(x, progress)))
        return x


@dataclass(frozen=True)
class ShuffleParams:
    """ICNR-style upsampler: 1x1 conv, bn, relu, pixel shuffle and a 2x2 blur."""
    conv: Conv2dParams
    bn: Optional[BatchNormParams] = None
    scale: int = 2

    def __call__(self, x: Tensor, progress=None) -> Tensor:
        y = self.conv(x, progress)
        if self.bn is not None:
            y = self.bn(y)
        y = F.pixel_shuffle(F.relu_(y), self.scale)
        return F.avg_pool2d(y, kernel_size=2, stride=1, padding=1)


@dataclass(frozen=True)
class AttentionParams:
    gamma: float
    query: Conv2dParams
    key: Conv2dParams
    value: Conv2dParams

    @classmethod
    def resolve(cls, fetch: ParameterResolver, prefix: str) -> "AttentionParams":
        return cls(gamma=float(fetch(f"{prefix}.gamma").data.reshape(-1)[0]),
                   query=Conv2dParams.resolve(fetch, f"{prefix}.query", padding=0),
                   key=Conv2dParams.resolve(fetch, f"{prefix}.key", padding=0),
                   value=Conv2dParams.resolve(fetch, f"{prefix}.value", padding=0))

    def __call__(self, x: Tensor, progress=None) -> Tensor:
        _, height, width = x.shape
        f = self.query(x, progress).flat3d()
        g = self.key(x, progress).flat3d()
        h = self.value(x, progress).flat3d()
        # normalize each column of f^T g over the query positions
        beta = F.softmax2d(F.matmul(f.transpose2d(), g), axis=0)
        o = F.mul_scalar_(F.matmul(h, beta), self.gamma)
        return F.add_(o.unflat3d(height, width), x)


@dataclass(frozen=True)
class DecoderBlockParams:
    """
    U-Net decoder block: upsample, merge the normalized skip, then one
    (wide) or two (deep) conv-relu-bn layers, optionally self-attention.
    """
    shuffle: ShuffleParams
    skip_bn: BatchNormParams
    layers: Tuple[Tuple[Conv2dParams, BatchNormParams], ...]
    attention: Optional[AttentionParams] = None

    def __call__(self, up_in: Tensor, skip: Tensor, progress=None) -> Tensor:
        """``skip`` is normalized in place and must not be reused by the caller."""
        up = self.shuffle(up_in, progress)
        x = F.relu_(F.restricted_cat2d(up, self.skip_bn(skip)))
        for conv, bn in self.layers:
            x = bn(F.relu_(conv(x, progress)))
        if self.attention is not None:
            x = self.attention(x, progress)
        return x


@dataclass(frozen=True)
class RefineParams:
    """Residual refinement: ``x + relu(conv2(relu(conv1(x))))``."""
    conv1: Conv2dParams
    conv2: Conv2dParams

    def __call__(self, x: Tensor, progress=None) -> Tensor:
        y = F.relu_(self.conv1(x, progress))
        y = F.relu_(self.conv2(y, progress))
        return F.add_(y, x)


@dataclass(frozen=True)
class NetworkParams:
    stem: StemParams
    stages: Tuple[Tuple[ResidualBlockParams, ...], ...]
    encoder_bn: BatchNormParams
    middle: MiddleBlockParams
    decoders: Tuple[DecoderBlockParams, ...]
    final_shuffle: ShuffleParams
    refine: RefineParams
    head: Conv2dParams


def resolve_network(spec: ArchitectureSpec, store) -> NetworkParams:
    """
    Resolve every parameter bundle of ``spec`` from ``store``.

    Raises:
        WeightFormatError: If a tensor is missing or has an unexpected shape
    """
    fetch = ParameterResolver(store, spec)

    stem = StemParams(conv=Conv2dParams.resolve(fetch, f"{ENCODER_PREFIX}.0", stride=2, padding=3),
                      bn=BatchNormParams.resolve(fetch, f"{ENCODER_PREFIX}.1"))

    stages = [[] for _ in spec.stage_depths]
    for stage, index, _, strided, projected in spec.block_layout():
        prefix = spec.block_prefix(stage, index)
        stride = 2 if strided else 1
        if spec.block_type == BLOCK_BOTTLENECK:
            strides = (1, stride, 1)
        else:
            strides = (stride, 1)
        convs = tuple(Conv2dParams.resolve(fetch, f"{prefix}.conv{n}", stride=s)
                      for n, s in enumerate(strides, start=1))
        norms = tuple(BatchNormParams.resolve(fetch, f"{prefix}.bn{n}")
                      for n in range(1, len(strides) + 1))
        downsample = None
        if projected:
            downsample = (Conv2dParams.resolve(fetch, f"{prefix}.downsample.0", stride=stride, padding=0),
                          BatchNormParams.resolve(fetch, f"{prefix}.downsample.1"))
        stages[stage].append(ResidualBlockParams(convs=convs, norms=norms, downsample=downsample))

    middle = MiddleBlockParams(layers=tuple(
        (Conv2dParams.resolve(fetch, f"{MIDDLE}.{n}.0"), BatchNormParams.resolve(fetch, f"{MIDDLE}.{n}.2"))
        for n in range(2)))

    decoders = []
    for index in range(len(spec.decoders)):
        prefix = spec.decoder_prefix(index)
        shuffle = ShuffleParams(conv=Conv2dParams.resolve(fetch, f"{prefix}.shuf.conv.0", padding=0),
                                bn=BatchNormParams.resolve(fetch, f"{prefix}.shuf.conv.1"))
        if spec.decoder_type == DECODER_WIDE:
            names = ["conv"]
        else:
            names = [f"conv{n}" for n in range(1, spec.convs_per_decoder + 1)]
        layers = tuple((Conv2dParams.resolve(fetch, f"{prefix}.{name}.0"),
                        BatchNormParams.resolve(fetch, f"{prefix}.{name}.2")) for name in names)
        attention = None
        if index == spec.attention_index:
            attention = AttentionParams.resolve(fetch, spec.attention_prefix())
        decoders.append(DecoderBlockParams(shuffle=shuffle,
                                           skip_bn=BatchNormParams.resolve(fetch, f"{prefix}.bn"),
                                           layers=layers,
                                           attention=attention))

    return NetworkParams(
        stem=stem,
        stages=tuple(tuple(blocks) for blocks in stages),
        encoder_bn=BatchNormParams.resolve(fetch, ENCODER_NORM),
        middle=middle,
        decoders=tuple(decoders),
        final_shuffle=ShuffleParams(conv=Conv2dParams.resolve(fetch, f"{FINAL_SHUFFLE}.conv.0",
                                                              padding=0, bias=True)),
        refine=RefineParams(conv1=Conv2dParams.resolve(fetch, f"{REFINE}.layers.0.0", bias=True),
                            conv2=Conv2dParams.resolve(fetch, f"{REFINE}.layers.1.0", bias=True)),
        # 1x1 kernel: unpadded as in fastai, padding would only add a border to crop
        head=Conv2dParams.resolve(fetch, HEAD, padding=0, bias=True),
    )
