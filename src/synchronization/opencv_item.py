"""Shi-Tomasi corners tracked with pyramidal Lucas-Kanade optical flow."""

from typing import List, Tuple

import numpy as np

from .estimator_item import EstimatorItem, Point
from .features import detect_features
from .tracker import track_features


class OpenCVItem(EstimatorItem):
    """Estimator item backed by corner detection and sparse optical flow.

    Example:
        >>> a = OpenCVItem.detect_features(0, gray_a, width, height)
        >>> b = OpenCVItem.detect_features(33333, gray_b, width, height)
        >>> rotation = a.estimate_pose(b, params, 0, 33333)
    """

    @classmethod
    def detect_features(cls, timestamp_us: int, image: np.ndarray, width: int, height: int) -> "OpenCVItem":
        """Detect corners on ``image`` and keep a reference to it.

        Detection failures give an item without features.
        """
        return cls(detect_features(image, width, height), image, (width, height))

    def _matched_features(self, next_item: "OpenCVItem") -> Tuple[List[Point], List[Point]]:
        return track_features(self.image, next_item.image, self.features, self.size)
