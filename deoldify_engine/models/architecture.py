"""
Architecture descriptors for the two DeOldify network variants.

An ``ArchitectureSpec`` captures everything that differs between the
"stable" and "artistic" generators: encoder block type and depths, channel
widths, middle block width, decoder block kind and the decoder channel plan.
The ordered weight schedule of a model file is derived from the descriptor,
so the reader and the graph builder cannot drift apart.
"""

from dataclasses import dataclass
from typing import List, Tuple, Union

from ..utils.exceptions import ConfigurationError


Shape = Tuple[int, ...]
ScheduleEntry = Tuple[str, Shape]

BLOCK_BOTTLENECK = "bottleneck"
BLOCK_BASIC = "basic"
DECODER_WIDE = "wide"
DECODER_DEEP = "deep"

ENCODER_PREFIX = "layers.0"
ENCODER_NORM = "layers.1"
MIDDLE = "layers.3"
FIRST_DECODER_INDEX = 4
FINAL_SHUFFLE = "layers.8"
REFINE = "layers.10"
HEAD = "layers.11.0"


@dataclass(frozen=True)
class DecoderSpec:
    """
    Channel plan of one U-Net decoder block.

    Attributes:
        up_in: Channels of the incoming (coarser) decoder tensor.
        up_out: Channels after the pixel-shuffle sub-block.
        skip: Channels of the encoder skip tensor.
        out: Channels produced by the block.
    """
    up_in: int
    up_out: int
    skip: int
    out: int


@dataclass(frozen=True)
class ArchitectureSpec:
    """
    Fixed description of one generator variant.

    Attributes:
        name: Variant name ("stable" or "artistic").
        block_type: Encoder residual block, "bottleneck" or "basic".
        stem_channels: Output channels of the 7x7 stem convolution.
        stage_depths: Residual blocks per encoder stage.
        stage_widths: Inner width of the blocks in each stage.
        expansion: Ratio between a block's output and inner width.
        middle_channels: Widest channel count inside the middle block.
        decoder_type: "wide" (one conv) or "deep" (two convs) decoder blocks.
        decoders: Channel plans of the four decoder blocks, coarse to fine.
        attention_index: Which decoder block carries self-attention.
        attention_reduction: Channel reduction of query/key projections.
        input_channels: Channels of the normalized input image tensor.
        output_channels: Channels produced by the head convolution.
    """
    name: str
    block_type: str
    stem_channels: int
    stage_depths: Tuple[int, ...]
    stage_widths: Tuple[int, ...]
    expansion: int
    middle_channels: int
    decoder_type: str
    decoders: Tuple[DecoderSpec, ...]
    attention_index: int = 1
    attention_reduction: int = 8
    input_channels: int = 3
    output_channels: int = 3

    def __post_init__(self):
        if self.block_type not in (BLOCK_BOTTLENECK, BLOCK_BASIC):
            raise ConfigurationError("block_type", self.block_type, str)
        if self.decoder_type not in (DECODER_WIDE, DECODER_DEEP):
            raise ConfigurationError("decoder_type", self.decoder_type, str)
        if len(self.stage_depths) != len(self.stage_widths) or len(self.decoders) != len(self.stage_depths):
            raise ConfigurationError("stage_depths", self.stage_depths, tuple)
        if not 0 <= self.attention_index < len(self.decoders):
            raise ConfigurationError("attention_index", self.attention_index, int)

    @property
    def stage_out_channels(self) -> Tuple[int, ...]:
        return tuple(width * self.expansion for width in self.stage_widths)

    @property
    def encoder_channels(self) -> int:
        return self.stage_out_channels[-1]

    @property
    def convs_per_block(self) -> int:
        return 3 if self.block_type == BLOCK_BOTTLENECK else 2

    @property
    def convs_per_decoder(self) -> int:
        return 1 if self.decoder_type == DECODER_WIDE else 2

    @property
    def refine_channels(self) -> int:
        return self.decoders[-1].out + self.input_channels

    def block_layout(self):
        """
        Yield ``(stage, index, in_channels, strided, projected)`` for every
        encoder block. The first block of every stage after the first is
        strided; a block is projected when it is strided or changes width.
        """
        in_channels = self.stem_channels
        for stage, (depth, out_channels) in enumerate(zip(self.stage_depths, self.stage_out_channels)):
            for index in range(depth):
                strided = stage > 0 and index == 0
                projected = strided or in_channels != out_channels
                yield stage, index, in_channels, strided, projected
                in_channels = out_channels

    def block_prefix(self, stage: int, index: int) -> str:
        # stages sit after conv, bn, relu and max-pool in the encoder container
        return f"{ENCODER_PREFIX}.{stage + 4}.{index}"

    def decoder_prefix(self, index: int) -> str:
        return f"layers.{FIRST_DECODER_INDEX + index}"

    def attention_prefix(self) -> str:
        last_conv = "conv" if self.decoder_type == DECODER_WIDE else f"conv{self.convs_per_decoder}"
        return f"{self.decoder_prefix(self.attention_index)}.{last_conv}.3"


STABLE = ArchitectureSpec(
    name="stable",
    block_type=BLOCK_BOTTLENECK,
    stem_channels=64,
    stage_depths=(3, 4, 23, 3),
    stage_widths=(64, 128, 256, 512),
    expansion=4,
    middle_channels=4096,
    decoder_type=DECODER_WIDE,
    decoders=(
        DecoderSpec(up_in=2048, up_out=512, skip=1024, out=512),
        DecoderSpec(up_in=512, up_out=512, skip=512, out=512),
        DecoderSpec(up_in=512, up_out=512, skip=256, out=512),
        DecoderSpec(up_in=512, up_out=256, skip=64, out=256),
    ),
)

ARTISTIC = ArchitectureSpec(
    name="artistic",
    block_type=BLOCK_BASIC,
    stem_channels=64,
    stage_depths=(3, 4, 6, 3),
    stage_widths=(64, 128, 256, 512),
    expansion=1,
    middle_channels=1024,
    decoder_type=DECODER_DEEP,
    decoders=(
        DecoderSpec(up_in=512, up_out=256, skip=256, out=768),
        DecoderSpec(up_in=768, up_out=384, skip=128, out=768),
        DecoderSpec(up_in=768, up_out=384, skip=64, out=672),
        DecoderSpec(up_in=672, up_out=336, skip=64, out=300),
    ),
)

ARCHITECTURES = {spec.name: spec for spec in (STABLE, ARTISTIC)}


def get_architecture(variant: Union[str, bool]) -> ArchitectureSpec:
    """
    Resolve a variant selector to its descriptor.

    Args:
        variant: "stable" / "artistic", or a boolean where True means stable

    Raises:
        ConfigurationError: If the variant is unknown
    """
    if isinstance(variant, bool):
        return STABLE if variant else ARTISTIC
    if isinstance(variant, str) and variant.lower() in ARCHITECTURES:
        return ARCHITECTURES[variant.lower()]
    raise ConfigurationError("variant", variant, str)


def _conv(prefix: str, out_c: int, in_c: int, kernel: int, bias: bool = False) -> List[ScheduleEntry]:
    entries = [(f"{prefix}.bias", (out_c,))] if bias else []
    entries.append((f"{prefix}.weight", (out_c, in_c, kernel, kernel)))
    return entries


def _bn(prefix: str, channels: int) -> List[ScheduleEntry]:
    return [(f"{prefix}.{param}", (channels,))
            for param in ("weight", "bias", "running_mean", "running_var")]


def _encoder_schedule(spec: ArchitectureSpec) -> List[ScheduleEntry]:
    entries = _conv(f"{ENCODER_PREFIX}.0", spec.stem_channels, spec.input_channels, 7)
    entries += _bn(f"{ENCODER_PREFIX}.1", spec.stem_channels)

    for stage, index, in_c, strided, projected in spec.block_layout():
        prefix = spec.block_prefix(stage, index)
        width = spec.stage_widths[stage]
        out_c = spec.stage_out_channels[stage]
        if spec.block_type == BLOCK_BOTTLENECK:
            entries += _conv(f"{prefix}.conv1", width, in_c, 1) + _bn(f"{prefix}.bn1", width)
            entries += _conv(f"{prefix}.conv2", width, width, 3) + _bn(f"{prefix}.bn2", width)
            entries += _conv(f"{prefix}.conv3", out_c, width, 1) + _bn(f"{prefix}.bn3", out_c)
        else:
            entries += _conv(f"{prefix}.conv1", width, in_c, 3) + _bn(f"{prefix}.bn1", width)
            entries += _conv(f"{prefix}.conv2", out_c, width, 3) + _bn(f"{prefix}.bn2", out_c)
        if projected:
            entries += _conv(f"{prefix}.downsample.0", out_c, in_c, 1)
            entries += _bn(f"{prefix}.downsample.1", out_c)
    return entries


def _decoder_schedule(spec: ArchitectureSpec, index: int) -> List[ScheduleEntry]:
    decoder = spec.decoders[index]
    prefix = spec.decoder_prefix(index)
    shuffled = decoder.up_out * 4
    entries = _conv(f"{prefix}.shuf.conv.0", shuffled, decoder.up_in, 1)
    entries += _bn(f"{prefix}.shuf.conv.1", shuffled)
    entries += _bn(f"{prefix}.bn", decoder.skip)

    in_c = decoder.up_out + decoder.skip
    if spec.decoder_type == DECODER_WIDE:
        entries += _conv(f"{prefix}.conv.0", decoder.out, in_c, 3) + _bn(f"{prefix}.conv.2", decoder.out)
    else:
        for step in range(1, spec.convs_per_decoder + 1):
            entries += _conv(f"{prefix}.conv{step}.0", decoder.out, in_c, 3)
            entries += _bn(f"{prefix}.conv{step}.2", decoder.out)
            in_c = decoder.out

    if index == spec.attention_index:
        attention = spec.attention_prefix()
        reduced = decoder.out // spec.attention_reduction
        entries.append((f"{attention}.gamma", (1,)))
        entries += _conv(f"{attention}.query", reduced, decoder.out, 1)
        entries += _conv(f"{attention}.key", reduced, decoder.out, 1)
        entries += _conv(f"{attention}.value", decoder.out, decoder.out, 1)
    return entries


def build_weight_schedule(spec: ArchitectureSpec) -> List[ScheduleEntry]:
    """
    Ordered ``(name, shape)`` pairs exactly as stored in a model file.

    The order is the serialization order of the pretrained state dict: the
    encoder, its final batch norm, the middle block, each decoder block,
    then the final pixel shuffle, refine block and head. The last three
    store each bias before its weight.
    """
    entries = _encoder_schedule(spec)
    entries += _bn(ENCODER_NORM, spec.encoder_channels)
    entries += _conv(f"{MIDDLE}.0.0", spec.middle_channels, spec.encoder_channels, 3)
    entries += _bn(f"{MIDDLE}.0.2", spec.middle_channels)
    entries += _conv(f"{MIDDLE}.1.0", spec.encoder_channels, spec.middle_channels, 3)
    entries += _bn(f"{MIDDLE}.1.2", spec.encoder_channels)

    for index in range(len(spec.decoders)):
        entries += _decoder_schedule(spec, index)

    last = spec.decoders[-1].out
    refine = spec.refine_channels
    entries += _conv(f"{FINAL_SHUFFLE}.conv.0", last * 4, last, 1, bias=True)
    entries += _conv(f"{REFINE}.layers.0.0", refine, refine, 3, bias=True)
    entries += _conv(f"{REFINE}.layers.1.0", refine, refine, 3, bias=True)
    entries += _conv(HEAD, spec.output_channels, refine, 1, bias=True)
    return entries


def count_convolutions(spec: ArchitectureSpec) -> int:
    """Number of convolution calls in one forward pass (121 stable, 57 artistic)."""
    projections = sum(1 for *_, projected in spec.block_layout() if projected)
    encoder = 1 + sum(spec.stage_depths) * spec.convs_per_block + projections
    middle = 2
    decoders = len(spec.decoders) * (1 + spec.convs_per_decoder) + 3
    final = 1 + 2 + 1
    return encoder + middle + decoders + final


def parameter_count(spec: ArchitectureSpec) -> int:
    """Total number of scalar values stored in a model file."""
    total = 0
    for _, shape in build_weight_schedule(spec):
        size = 1
        for dim in shape:
            size *= dim
        total += size
    return total
