"""
DeOldify generator graph for single-image CPU inference.

The network is a ResNet-encoder U-Net: a stem and four residual stages
produce five skip tensors, a middle block widens and narrows the deepest
features, four pixel-shuffle decoder blocks climb back up merging the skips,
and a refine block plus 1x1 head map the result to three sigmoid channels.
"""

from typing import Dict, Tuple
import logging

from . import functional as F
from .architecture import ArchitectureSpec, count_convolutions
from .blocks import NetworkParams, resolve_network
from .tensor import Tensor
from ..utils.exceptions import ShapeMismatchError

logger = logging.getLogger(__name__)


def _conv_size(size: int, kernel: int, stride: int, padding: int) -> int:
    return (size + 2 * padding - kernel) // stride + 1


class DeOldifyNetwork:
    """
    Executable generator for one architecture variant.

    All parameters are resolved from the weight store when the network is
    built, so a missing or misshapen tensor fails here rather than halfway
    through a colorization.
    """

    def __init__(self, spec: ArchitectureSpec, store):
        """
        Args:
            spec: Architecture variant to build
            store: WeightStore holding every tensor of ``spec``'s schedule

        Raises:
            WeightFormatError: If the store does not match the architecture
        """
        self.spec = spec
        self.params: NetworkParams = resolve_network(spec, store)
        self.conv_count = count_convolutions(spec)
        logger.debug(f"Built {spec.name} network with {self.conv_count} convolutions")

    def forward(self, x: Tensor, progress=None) -> Tensor:
        """
        Run the generator on a normalized (3, H, W) image tensor.

        Args:
            x: Input tensor, not modified
            progress: Optional reporter advanced once per convolution

        Returns:
            (3, H, W) tensor with values in [0, 1]
        """
        if x.ndim != 3 or x.shape[0] != self.spec.input_channels:
            raise ShapeMismatchError("forward", x.shape,
                                     details=f"expected ({self.spec.input_channels}, H, W)")
        p = self.params

        x1, h = p.stem(x, progress)
        skips = [x1]
        for blocks in p.stages:
            for block in blocks:
                h = block(h, progress)
            skips.append(h)

        # encoder output is normalized in place; it is not used as a skip
        h = F.relu_(p.encoder_bn(skips.pop()))
        h = p.middle(h, progress)

        for decoder, skip in zip(p.decoders, reversed(skips)):
            h = decoder(h, skip, progress)

        y = p.final_shuffle(h, progress)
        y = F.restricted_cat2d(y, x)
        y = p.refine(y, progress)
        y = p.head(y, progress)
        return F.sigmoid_(y)

    __call__ = forward

    def expected_skip_sizes(self, height: int, width: int) -> Dict[str, Tuple[int, int]]:
        """
        Spatial size of every skip tensor for an input of ``height`` x ``width``.

        Keys are ``x1`` (stem) to ``x5`` (deepest stage). Every decoder
        upsamples to ``2 * size + 1`` before cropping onto the next skip.
        """
        size = (_conv_size(height, 7, 2, 3), _conv_size(width, 7, 2, 3))
        sizes = {"x1": size}
        size = tuple(_conv_size(s, 3, 2, 1) for s in size)
        for stage in range(len(self.spec.stage_depths)):
            if stage > 0:
                size = tuple(_conv_size(s, 3, 2, 1) for s in size)
            sizes[f"x{stage + 2}"] = size
        return sizes

    def get_model_info(self) -> dict:
        """
        Get information about the network architecture.

        Returns:
            Dictionary containing model information
        """
        total_params = sum(conv.weight.numel for conv in self._convolutions())
        return {
            'model_name': 'DeOldifyNetwork',
            'variant': self.spec.name,
            'encoder_block': self.spec.block_type,
            'decoder_block': self.spec.decoder_type,
            'encoder_blocks': sum(self.spec.stage_depths),
            'decoder_blocks': len(self.spec.decoders),
            'convolutions': self.conv_count,
            'convolution_weights': total_params,
        }

    def _convolutions(self):
        p = self.params
        yield p.stem.conv
        for blocks in p.stages:
            for block in blocks:
                yield from block.convs
                if block.downsample is not None:
                    yield block.downsample[0]
        for conv, _ in p.middle.layers:
            yield conv
        for decoder in p.decoders:
            yield decoder.shuffle.conv
            for conv, _ in decoder.layers:
                yield conv
            if decoder.attention is not None:
                yield from (decoder.attention.query, decoder.attention.key, decoder.attention.value)
        yield p.final_shuffle.conv
        yield from (p.refine.conv1, p.refine.conv2, p.head)
