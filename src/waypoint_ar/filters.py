"""
Still-image transforms applied during capture post-processing.

- normalize_orientation: bake the device rotation into the pixel buffer
- apply_night_vision: fixed green, high-contrast color transform
"""

import logging
from typing import Optional

import cv2
import numpy as np

from .config import NightVisionConfig
from .errors import ImageProcessingFailed

logger = logging.getLogger(__name__)

# Rec. 709 luma weights, as used by CoreImage color controls
_LUMA_RGB = np.array([0.2125, 0.7154, 0.0721], dtype=np.float32)

_ROTATIONS = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def _check_bgr(image: np.ndarray) -> None:
    if not isinstance(image, np.ndarray) or image.ndim != 3 or image.shape[2] != 3 or image.size == 0:
        shape = getattr(image, "shape", None)
        raise ImageProcessingFailed("Expected a non-empty HxWx3 BGR image",
                                    details={"shape": shape})


def normalize_orientation(image: np.ndarray, rotation_degrees: int) -> np.ndarray:
    """
    Rotate pixels so buffer "up" matches the device's physical "up".

    Args:
        image: Decoded BGR image, orientation metadata ignored
        rotation_degrees: Clockwise rotation (0, 90, 180, 270)

    Returns:
        Upright image (the input itself when no rotation is needed)
    """
    rotation = rotation_degrees % 360
    if rotation == 0:
        return image
    if rotation not in _ROTATIONS:
        raise ImageProcessingFailed(f"Unsupported rotation: {rotation_degrees}")
    return cv2.rotate(image, _ROTATIONS[rotation])


def apply_night_vision(image: np.ndarray,
                       config: Optional[NightVisionConfig] = None) -> np.ndarray:
    """
    Night-vision look for a captured still.

    A color matrix boosts green and attenuates red and blue, then
    saturation, brightness and contrast are raised by fixed factors.

    Args:
        image: BGR uint8 image
        config: Transform constants

    Returns:
        New BGR uint8 image
    """
    config = config or NightVisionConfig()
    _check_bgr(image)

    matrix = np.asarray(config.color_matrix, dtype=np.float32)
    if matrix.shape != (3, 3):
        raise ImageProcessingFailed("Night-vision color matrix must be 3x3",
                                    details={"shape": matrix.shape})

    rgb = image[..., ::-1].astype(np.float32) / 255.0
    rgb = rgb @ matrix.T
    rgb = np.clip(rgb, 0.0, 1.0)

    # Color controls: saturation, then brightness and contrast around mid-gray
    luma = (rgb @ _LUMA_RGB)[..., None]
    rgb = luma + (rgb - luma) * config.saturation
    rgb = rgb + config.brightness
    rgb = (rgb - 0.5) * config.contrast + 0.5

    if not np.all(np.isfinite(rgb)):
        raise ImageProcessingFailed("Night-vision transform produced invalid pixels")
    out = np.clip(rgb * 255.0 + 0.5, 0, 255).astype(np.uint8)
    return np.ascontiguousarray(out[..., ::-1])


def tint_preview(frame: np.ndarray, strength: float = 0.2) -> np.ndarray:
    """Cheap green tint for the live viewfinder while night vision is selected."""
    green = np.zeros_like(frame)
    green[..., 1] = 255
    return cv2.addWeighted(frame, 1.0 - strength, green, strength, 0)
