"""
Color space conversion utilities for image colorization.

This module converts between RGB and analog YUV (BT.601 weights) and
provides the chroma transfer used to put the network's colors under the
full-resolution luminance of the source photograph.
"""

import numpy as np

from .exceptions import InvalidDimensionsError


# Rows produce Y, U, V from R, G, B.
RGB_TO_YUV = np.array([
    [0.299, 0.587, 0.114],
    [-0.14713, -0.28886, 0.436],
    [0.615, -0.51499, -0.10001],
], dtype=np.float64)

# Rows produce R, G, B from Y, U, V.
YUV_TO_RGB = np.array([
    [1.0, 0.0, 1.139837398373983740],
    [1.0, -0.3946517043589703515, -0.5805986066674976801],
    [1.0, 2.032110091743119266, 0.0],
], dtype=np.float64)


class ColorSpaceConverter:
    """
    Handles conversions between RGB and YUV for chroma transfer.

    The model only produces a low-resolution color estimate. Keeping Y from
    the original image and taking U and V from the estimate restores the
    original detail while adopting the predicted colors.
    """

    @staticmethod
    def _check_rgb(image: np.ndarray, name: str = "image") -> None:
        if not isinstance(image, np.ndarray) or image.ndim != 3 or image.shape[2] != 3:
            shape = getattr(image, "shape", None)
            raise InvalidDimensionsError(shape, f"{name} with shape (H, W, 3)")

    def rgb_to_yuv(self, rgb_image: np.ndarray) -> np.ndarray:
        """
        Convert an RGB image to YUV.

        Args:
            rgb_image: Array with shape (H, W, 3) and values in [0, 255]

        Returns:
            float64 array with shape (H, W, 3); Y in [0, 255], U and V signed

        Raises:
            InvalidDimensionsError: If the input is not (H, W, 3)
        """
        self._check_rgb(rgb_image)
        return rgb_image.astype(np.float64) @ RGB_TO_YUV.T

    def yuv_to_rgb(self, yuv_image: np.ndarray) -> np.ndarray:
        """
        Convert YUV back to RGB, clamped to [0, 255] and truncated to uint8.

        Raises:
            InvalidDimensionsError: If the input is not (H, W, 3)
        """
        self._check_rgb(yuv_image)
        rgb = np.asarray(yuv_image, dtype=np.float64) @ YUV_TO_RGB.T
        return np.clip(rgb, 0.0, 255.0).astype(np.uint8)

    def luma(self, rgb_image: np.ndarray) -> np.ndarray:
        """Y channel of an RGB image as a float64 (H, W) array."""
        self._check_rgb(rgb_image)
        return rgb_image.astype(np.float64) @ RGB_TO_YUV[0]

    def mux(self, luma_source: np.ndarray, chroma_source: np.ndarray) -> np.ndarray:
        """
        Combine the luminance of one image with the chrominance of another.

        Args:
            luma_source: RGB image supplying Y
            chroma_source: RGB image of the same size supplying U and V

        Returns:
            uint8 RGB image with shape (H, W, 3)

        Raises:
            InvalidDimensionsError: If either input is not (H, W, 3) or sizes differ
        """
        self._check_rgb(luma_source, "luma source")
        self._check_rgb(chroma_source, "chroma source")
        if luma_source.shape != chroma_source.shape:
            raise InvalidDimensionsError(chroma_source.shape, f"shape {luma_source.shape}")

        yuv = self.rgb_to_yuv(chroma_source)
        yuv[:, :, 0] = self.luma(luma_source)
        return self.yuv_to_rgb(yuv)
