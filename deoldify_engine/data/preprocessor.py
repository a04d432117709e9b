"""
Image preprocessing module for the colorization engine.

This module provides the ImagePreprocessor class that handles image loading,
validation, resizing to the render resolution and conversion of the
luminance into the normalized tensor the generator expects.
"""

from pathlib import Path
from typing import Tuple, Union
import numpy as np
import cv2
from PIL import Image
import logging

from ..models.tensor import Tensor
from ..utils.exceptions import ImageCorruptedError, InvalidDimensionsError, InvalidImageFormatError

# Configure logging
logger = logging.getLogger(__name__)

IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)


class ImagePreprocessor:
    """
    Handles image preprocessing for the colorization pipeline.

    Images are scaled so that their shorter side equals ``render_size``.
    Only the luminance survives preprocessing: the three input channels of
    the generator all carry the same gray value, normalized per channel with
    the ImageNet statistics the encoder was trained with.
    """

    SUPPORTED_FORMATS = ('.jpg', '.jpeg', '.png', '.bmp', '.webp')

    def __init__(self, render_size: int = 256):
        """
        Initialize the ImagePreprocessor.

        Args:
            render_size: Length of the shorter side at which the network runs
        """
        if not isinstance(render_size, int) or render_size < 32:
            raise InvalidDimensionsError((render_size,), "render size of at least 32")
        self.render_size = render_size

    def validate_image(self, image_path: Union[str, Path]) -> bool:
        """
        Validate if an image file is supported and accessible.

        Args:
            image_path: Path to the image file

        Returns:
            bool: True if the image is valid and supported

        Raises:
            InvalidImageFormatError: If the image format is not supported
            ImageCorruptedError: If the image file is missing or corrupted
        """
        image_path = Path(image_path)

        # Check file extension
        if image_path.suffix.lower() not in self.SUPPORTED_FORMATS:
            raise InvalidImageFormatError(image_path.suffix, list(self.SUPPORTED_FORMATS))

        # Check if file exists
        if not image_path.is_file():
            raise ImageCorruptedError(str(image_path), "file not found")

        try:
            with Image.open(image_path) as img:
                # Verify the image can be loaded
                img.verify()
        except (IOError, OSError, SyntaxError) as e:
            raise ImageCorruptedError(str(image_path), str(e)) from e

        return True

    def load_image(self, image_path: Union[str, Path]) -> np.ndarray:
        """
        Load an image from file and convert to RGB format.

        Args:
            image_path: Path to the image file

        Returns:
            np.ndarray: uint8 image array in RGB format with shape (H, W, 3)

        Raises:
            InvalidImageFormatError: If the image format is not supported
            ImageCorruptedError: If the image file is corrupted
        """
        self.validate_image(image_path)

        try:
            # Load image using OpenCV (loads as BGR)
            image = cv2.imread(str(image_path), cv2.IMREAD_COLOR)
        except cv2.error as e:
            raise ImageCorruptedError(str(image_path), f"OpenCV error: {e}") from e

        if image is None:
            raise ImageCorruptedError(str(image_path), "OpenCV failed to decode image")

        image_rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        logger.info(f"Loaded image: {image_path}, shape: {image_rgb.shape}")
        return image_rgb

    def as_rgb_array(self, image) -> np.ndarray:
        """
        Coerce an in-memory image to a uint8 (H, W, 3) RGB array.

        Accepts PIL images and uint8 arrays shaped (H, W, 3) or (H, W).

        Raises:
            InvalidDimensionsError: For any other input
        """
        if isinstance(image, Image.Image):
            image = np.asarray(image.convert("RGB"))

        if not isinstance(image, np.ndarray) or image.dtype != np.uint8:
            raise InvalidDimensionsError(getattr(image, "shape", None), "uint8 array or PIL image")
        if image.ndim == 2:
            image = np.repeat(image[:, :, np.newaxis], 3, axis=2)
        if image.ndim != 3 or image.shape[2] != 3 or min(image.shape[:2]) == 0:
            raise InvalidDimensionsError(image.shape, "(H, W, 3) or (H, W)")
        return np.ascontiguousarray(image)

    def render_dimensions(self, height: int, width: int) -> Tuple[int, int]:
        """
        Size at which the network runs: shorter side ``render_size``, aspect kept.

        Returns:
            (height, width) tuple
        """
        if height <= 0 or width <= 0:
            raise InvalidDimensionsError((height, width), "positive height and width")
        if width < height:
            return self.render_size * height // width, self.render_size
        return self.render_size, self.render_size * width // height

    def resize_image(self, image: np.ndarray, target_size: Tuple[int, int]) -> np.ndarray:
        """
        Resize an image with Lanczos interpolation.

        Args:
            image: Input image array with shape (H, W, 3)
            target_size: Target size as (height, width)

        Returns:
            np.ndarray: Resized image array, or a copy if the size already matches

        Raises:
            InvalidDimensionsError: If target_size is invalid
        """
        target_height, target_width = target_size
        if target_height <= 0 or target_width <= 0:
            raise InvalidDimensionsError(tuple(target_size), "positive target size")

        current_height, current_width = image.shape[:2]
        if (current_height, current_width) == (target_height, target_width):
            return image.copy()

        resized = cv2.resize(image, (target_width, target_height), interpolation=cv2.INTER_LANCZOS4)
        logger.debug(f"Resized image from {current_width}x{current_height} to {target_width}x{target_height}")
        return resized

    def image_to_tensor(self, image: np.ndarray) -> Tensor:
        """
        Convert an RGB image to the generator's (3, H, W) input tensor.

        Each channel holds the luminance ``(R + G + B) / 765`` normalized by
        that channel's ImageNet mean and standard deviation.
        """
        image = self.as_rgb_array(image)
        gray = image.sum(axis=2, dtype=np.float32) / np.float32(765.0)

        channels = np.empty((3,) + gray.shape, dtype=np.float32)
        for c in range(3):
            channels[c] = (gray - np.float32(IMAGENET_MEAN[c])) / np.float32(IMAGENET_STD[c])
        return Tensor.from_array(channels)

    def preprocess(self, image) -> Tensor:
        """
        Complete preprocessing pipeline: resize to the render size and tensorize.

        Args:
            image: In-memory image accepted by ``as_rgb_array``

        Returns:
            Tensor: Normalized (3, H', W') input tensor
        """
        image = self.as_rgb_array(image)
        target = self.render_dimensions(*image.shape[:2])
        return self.image_to_tensor(self.resize_image(image, target))
