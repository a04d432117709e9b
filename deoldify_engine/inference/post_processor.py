"""
Post-processing utilities for image colorization inference.

This module provides utilities for turning the generator output back into an
image, transferring its chroma onto the full-resolution original and saving
results in the supported output formats.
"""

import logging
from pathlib import Path
from typing import Union, Optional, Dict, Any, List
import numpy as np
import cv2
from PIL import Image

from ..data.preprocessor import IMAGENET_MEAN, IMAGENET_STD
from ..models.tensor import Tensor
from ..utils.color_converter import ColorSpaceConverter
from ..utils.exceptions import ImageSaveError, InvalidDimensionsError

logger = logging.getLogger(__name__)

# Output range of the generator's sigmoid head, mapped back from [0, 1].
Y_RANGE = (-3.0, 3.0)

_SAVE_FORMATS = {
    '.jpg': 'JPEG',
    '.jpeg': 'JPEG',
    '.png': 'PNG',
    '.webp': 'WEBP',
    '.bmp': 'BMP',
}


def tensor_to_image(tensor: Tensor) -> np.ndarray:
    """
    Convert the generator's (3, H, W) output to a uint8 RGB image.

    Each value ``v`` becomes ``((v * 6 - 3) * std + mean) * 255`` for its
    channel, clamped to [0, 255] and truncated.
    """
    if tensor.ndim != 3 or tensor.shape[0] != 3:
        raise InvalidDimensionsError(tensor.shape, "(3, H, W) tensor")

    low, high = Y_RANGE
    values = tensor.data * np.float32(high - low) + np.float32(low)
    std = np.asarray(IMAGENET_STD, dtype=np.float32).reshape(3, 1, 1)
    mean = np.asarray(IMAGENET_MEAN, dtype=np.float32).reshape(3, 1, 1)
    values = (values * std + mean) * np.float32(255.0)
    np.clip(values, 0.0, 255.0, out=values)
    return np.ascontiguousarray(values.astype(np.uint8).transpose(1, 2, 0))


class ColorizationPostProcessor:
    """
    Post-processing utilities for image colorization inference.

    This class handles the reconstruction of colorized images from the
    generator output, the chroma transfer onto the original image and saving
    output images.
    """

    def __init__(self,
                 color_converter: Optional[ColorSpaceConverter] = None,
                 output_config: Optional[Dict[str, Any]] = None):
        """
        Initialize the post-processor.

        Args:
            color_converter: ColorSpaceConverter instance for color space operations
            output_config: Configuration for output processing
        """
        self.color_converter = color_converter or ColorSpaceConverter()
        self.output_config = self._get_default_config()
        if output_config:
            self.output_config.update(output_config)

    def _get_default_config(self) -> Dict[str, Any]:
        """
        Get default output configuration.

        Returns:
            Default configuration dictionary
        """
        return {
            'output_quality': 95,
            'fallback_format': 'BMP',
        }

    def transfer_chroma(self, original: np.ndarray, colorized: np.ndarray) -> np.ndarray:
        """
        Put the colors of a low-resolution result under the original's luminance.

        Args:
            original: uint8 RGB source image (H, W, 3)
            colorized: uint8 RGB generator output of any size

        Returns:
            uint8 RGB image (H, W, 3)
        """
        height, width = original.shape[:2]
        if colorized.shape[:2] != (height, width):
            colorized = cv2.resize(colorized, (width, height), interpolation=cv2.INTER_LANCZOS4)
        return self.color_converter.mux(original, colorized)

    def save_image(self,
                   image: np.ndarray,
                   output_path: Union[str, Path],
                   quality_override: Optional[int] = None) -> Path:
        """
        Save image to file, choosing the format from the file extension.

        Unknown extensions are written as BMP.

        Args:
            image: RGB image array to save
            output_path: Path to save the image
            quality_override: Override quality setting (1-100 for JPEG and WebP)

        Returns:
            The path written

        Raises:
            ImageSaveError: If saving fails
        """
        output_path = Path(output_path)

        if image.dtype != np.uint8:
            image = np.clip(image, 0, 255).astype(np.uint8)

        if image.ndim != 3 or image.shape[2] != 3:
            raise ImageSaveError(str(output_path), f"invalid image shape for saving: {image.shape}")

        ext = output_path.suffix.lower()
        output_format = _SAVE_FORMATS.get(ext)
        if output_format is None:
            output_format = self.output_config['fallback_format']
            logger.warning(f"Unknown output extension '{ext}', saving {output_path} as {output_format}")

        quality = quality_override or self.output_config['output_quality']
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            pil_image = Image.fromarray(image)
            if output_format in ('JPEG', 'WEBP'):
                pil_image.save(output_path, output_format, quality=quality)
            elif output_format == 'PNG':
                pil_image.save(output_path, output_format, optimize=True)
            else:
                pil_image.save(output_path, output_format)
        except (OSError, ValueError) as e:
            raise ImageSaveError(str(output_path), str(e)) from e

        logger.info(f"Successfully saved image to {output_path}")
        return output_path

    def get_supported_formats(self) -> List[str]:
        """
        Get list of supported output extensions.

        Returns:
            List of extensions
        """
        return list(_SAVE_FORMATS)
