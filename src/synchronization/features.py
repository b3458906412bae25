"""Corner detection on single grayscale frames."""

import logging
from typing import List, Tuple

import cv2
import numpy as np

from .errors import DetectionFailure
from .params import FEATURE_PARAMS

logger = logging.getLogger(__name__)


def frame_view(image: np.ndarray, width: int, height: int) -> np.ndarray:
    """Return a read-only, zero-copy view of a grayscale frame.

    Args:
        image: Grayscale frame (H, W) or (H, W, 1), uint8
        width: Expected frame width in pixels
        height: Expected frame height in pixels

    Returns:
        Non-writeable (H, W) view sharing memory with ``image``

    Raises:
        ValueError: If the frame does not match the given size or is not 8-bit
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Frame size must be positive, got {width}x{height}")

    if not isinstance(image, np.ndarray):
        raise ValueError(f"image must be a numpy array, got {type(image).__name__}")

    if image.ndim == 3 and image.shape[2] == 1:
        image = image[:, :, 0]

    if image.ndim != 2 or image.dtype != np.uint8:
        raise ValueError(f"Expected a single channel uint8 frame, got {image.dtype} {image.shape}")

    if image.shape != (height, width):
        raise ValueError(f"Frame is {image.shape[1]}x{image.shape[0]}, expected {width}x{height}")

    view = image.view()
    view.flags.writeable = False
    return view


def find_features(image: np.ndarray, width: int, height: int) -> List[Tuple[float, float]]:
    """Detect up to 200 Shi-Tomasi corners over the whole frame.

    Args:
        image: Grayscale frame (H, W)
        width: Frame width in pixels
        height: Frame height in pixels

    Returns:
        List of (x, y) sub-pixel corner positions in detector order

    Raises:
        DetectionFailure: If the frame is malformed or OpenCV fails
    """
    try:
        frame = frame_view(image, width, height)
        corners = cv2.goodFeaturesToTrack(frame, mask=None, **FEATURE_PARAMS)
    except (ValueError, cv2.error) as e:
        raise DetectionFailure(str(e)) from e

    if corners is None:
        return []

    return [(float(x), float(y)) for x, y in corners.reshape(-1, 2)]


def detect_features(image: np.ndarray, width: int, height: int) -> List[Tuple[float, float]]:
    """Like :func:`find_features`, but failures are logged and give an empty list."""
    try:
        return find_features(image, width, height)
    except DetectionFailure as e:
        logger.error("OpenCV error %s", e)
        return []
