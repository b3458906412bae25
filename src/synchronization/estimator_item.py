"""Per-frame estimator items used by the synchronization loop.

An item owns the features detected on one frame together with a read-only
view of that frame. Two items of the same kind can be matched against each
other to get point correspondences, and from those a relative camera
rotation. Every failure is logged and reported as ``None``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from scipy.spatial.transform import Rotation

from src.utils.camera import ComputeParams, undistort_points_for_optical_flow
from .errors import EstimationError
from .pose import find_rotation

logger = logging.getLogger(__name__)

Point = Tuple[float, float]
OpticalFlowPair = Optional[Tuple[List[Point], List[Point]]]
UndistortFn = Callable[[Sequence[Point], int, ComputeParams, Tuple[int, int]], List[Point]]

_EMPTY_IMAGE = np.empty((0, 0), dtype=np.uint8)
_EMPTY_IMAGE.flags.writeable = False


class EstimatorItem(ABC):
    """Features and image of one frame.

    Subclasses decide how features are detected and how two items are put
    into correspondence; pose recovery is shared.
    """

    def __init__(self, features: Sequence[Point], image: np.ndarray, size: Tuple[int, int]):
        self.features = tuple((float(x), float(y)) for x, y in features)
        # Shared with the caller, never written through
        self.image = np.asarray(image).view()
        self.image.flags.writeable = False
        self.size = (int(size[0]), int(size[1]))

    def get_features(self) -> Tuple[Point, ...]:
        """Detected (x, y) positions, in detector order."""
        return self.features

    def has_image(self) -> bool:
        w, h = self.size
        return self.image.size > 0 and w > 0 and h > 0

    @abstractmethod
    def _matched_features(self, next_item: "EstimatorItem") -> Tuple[List[Point], List[Point]]:
        """Correspondences between this item and ``next_item``.

        Called only when both items are of the same kind and still hold
        their images. May raise ``EstimationError`` or ``cv2.error``.
        """

    def optical_flow_to(self, to: "EstimatorItem") -> OpticalFlowPair:
        """Matched point pairs from this frame to ``to``, or None on failure."""
        if type(to) is not type(self):
            logger.warning(
                "Cannot match %s against %s", type(self).__name__, type(to).__name__
            )
            return None

        if not self.has_image() or not to.has_image():
            return None

        try:
            return self._matched_features(to)
        except (EstimationError, cv2.error) as e:
            logger.error("OpenCV error: %s", e)
            return None

    def estimate_pose(
        self,
        next_item: "EstimatorItem",
        params: ComputeParams,
        timestamp_us: int,
        next_timestamp_us: int,
        undistort: UndistortFn = undistort_points_for_optical_flow
    ) -> Optional[Rotation]:
        """Estimate the camera rotation between this frame and ``next_item``.

        Args:
            next_item: Item of the later frame
            params: Lens calibration passed to ``undistort``
            timestamp_us: Capture time of this frame
            next_timestamp_us: Capture time of the next frame
            undistort: Maps pixel points to normalized camera coordinates

        Returns:
            Rotation from this camera to the next one, or None
        """
        matched = self.optical_flow_to(next_item)
        if matched is None:
            return None

        pts1, pts2 = matched

        try:
            pts1 = undistort(pts1, timestamp_us, params, self.size)
            pts2 = undistort(pts2, next_timestamp_us, params, self.size)
            return find_rotation(pts1, pts2)
        except (EstimationError, cv2.error) as e:
            logger.error("OpenCV error: %s", e)
            return None

    def cleanup(self):
        """Release the frame. Features and size are kept."""
        self.image = _EMPTY_IMAGE
