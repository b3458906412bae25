"""AKAZE keypoints matched by binary descriptors.

Slower than optical flow but tolerant to large motion between the two
frames, since correspondences come from descriptor similarity rather than
local intensity tracking.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .errors import TrackingFailure
from .estimator_item import EstimatorItem, Point
from .features import frame_view
from .params import AKAZE_RATIO
from .tracker import filter_tracks

logger = logging.getLogger(__name__)


class AkazeItem(EstimatorItem):
    """Estimator item holding AKAZE keypoints and their descriptors."""

    def __init__(
        self,
        features: Sequence[Point],
        descriptors: Optional[np.ndarray],
        image: np.ndarray,
        size: Tuple[int, int]
    ):
        super().__init__(features, image, size)
        self.descriptors = descriptors

    @classmethod
    def detect_features(cls, timestamp_us: int, image: np.ndarray, width: int, height: int) -> "AkazeItem":
        """Detect AKAZE keypoints; failures give an item without features."""
        try:
            frame = frame_view(image, width, height)
            keypoints, descriptors = cv2.AKAZE_create().detectAndCompute(frame, None)
        except (ValueError, cv2.error) as e:
            logger.error("OpenCV error %s", e)
            return cls([], None, image, (width, height))

        if descriptors is None:
            return cls([], None, image, (width, height))

        return cls([kp.pt for kp in keypoints], descriptors, image, (width, height))

    def _matched_features(self, next_item: "AkazeItem") -> Tuple[List[Point], List[Point]]:
        if next_item.size != self.size:
            raise TrackingFailure(f"Frame size mismatch: {self.size} != {next_item.size}")

        if self.descriptors is None or next_item.descriptors is None:
            return [], []

        matcher = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=False)
        matches = matcher.knnMatch(self.descriptors, next_item.descriptors, k=2)

        # Lowe's ratio test
        good_matches = []
        for pair in matches:
            if len(pair) == 2 and pair[0].distance < AKAZE_RATIO * pair[1].distance:
                good_matches.append(pair[0])

        if len(good_matches) == 0:
            return [], []

        pts1 = np.float32([self.features[m.queryIdx] for m in good_matches])
        pts2 = np.float32([next_item.features[m.trainIdx] for m in good_matches])
        status = np.ones(len(good_matches), dtype=np.uint8)

        return filter_tracks(pts1, pts2, status, self.size)
