"""Sparse Lucas-Kanade tracking of detected corners between two frames."""

from typing import List, Sequence, Tuple

import cv2
import numpy as np

from .errors import TrackingFailure
from .features import frame_view
from .params import LK_PARAMS

Points = List[Tuple[float, float]]


def filter_tracks(
    prev_points: np.ndarray,
    curr_points: np.ndarray,
    status: np.ndarray,
    size: Tuple[int, int]
) -> Tuple[Points, Points]:
    """Keep tracks that were found and stay inside both frames.

    Args:
        prev_points: Source points (N, 1, 2) or (N, 2)
        curr_points: Tracked points (N, 1, 2) or (N, 2)
        status: Track status array (1 = tracked, 0 = lost)
        size: Frame size (width, height)

    Returns:
        Tuple of index-aligned (points_a, points_b) lists
    """
    w, h = size
    prev_points = np.asarray(prev_points).reshape(-1, 2)
    curr_points = np.asarray(curr_points).reshape(-1, 2)
    status = np.asarray(status).reshape(-1)

    valid_prev = []
    valid_curr = []

    for i in range(len(status)):
        if status[i] != 1:
            continue

        p1 = prev_points[i]
        p2 = curr_points[i]

        if not (0 <= p1[0] < w and 0 <= p1[1] < h):
            continue

        if not (0 <= p2[0] < w and 0 <= p2[1] < h):
            continue

        valid_prev.append((float(p1[0]), float(p1[1])))
        valid_curr.append((float(p2[0]), float(p2[1])))

    return valid_prev, valid_curr


def track_features(
    image_a: np.ndarray,
    image_b: np.ndarray,
    features: Sequence[Tuple[float, float]],
    size: Tuple[int, int]
) -> Tuple[Points, Points]:
    """Track ``features`` from ``image_a`` into ``image_b``.

    Both frames must have the given size.

    Returns:
        Tuple of index-aligned (points_a, points_b) lists, possibly empty

    Raises:
        TrackingFailure: If a frame is malformed or does not match ``size``
        cv2.error: If OpenCV fails
    """
    w, h = size
    try:
        frame_a = frame_view(image_a, w, h)
        frame_b = frame_view(image_b, w, h)
    except ValueError as e:
        raise TrackingFailure(str(e)) from e

    if len(features) == 0:
        return [], []

    prev_points = np.array(features, dtype=np.float32).reshape(-1, 1, 2)

    curr_points, status, _ = cv2.calcOpticalFlowPyrLK(
        frame_a,
        frame_b,
        prev_points,
        None,
        **LK_PARAMS
    )
    if curr_points is None or status is None:
        raise TrackingFailure("Optical flow returned no points")

    return filter_tracks(prev_points, curr_points, status, size)
