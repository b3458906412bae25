"""Relative rotation recovery from matched, undistorted point pairs.

The points are expected in normalized camera coordinates, so the essential
matrix is estimated with an identity camera matrix and a very small RANSAC
threshold. The rotation from ``cv2.recoverPose`` is accepted only when at
least ``MIN_INLIERS`` correspondences survive the cheirality check.
"""

import logging
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np
from scipy.spatial.transform import Rotation

from .conversion import to_rotation
from .errors import EstimationError, InsufficientInliers
from .params import ESSENTIAL_PARAMS, MAX_TRIANGULATION_DISTANCE, MIN_INLIERS

logger = logging.getLogger(__name__)


def _as_points(points: Sequence[Tuple[float, float]]) -> np.ndarray:
    return np.ascontiguousarray(np.asarray(points, dtype=np.float64).reshape(-1, 2))


def find_rotation(
    points_a: Sequence[Tuple[float, float]],
    points_b: Sequence[Tuple[float, float]],
    min_inliers: int = MIN_INLIERS
) -> Rotation:
    """Compute the camera rotation between two sets of normalized points.

    Args:
        points_a: Undistorted points in the first frame (N, 2)
        points_b: Matching undistorted points in the second frame (N, 2)
        min_inliers: Minimum number of pose inliers to accept the estimate

    Returns:
        Rotation taking first-camera coordinates to second-camera coordinates

    Raises:
        InsufficientInliers: If fewer than ``min_inliers`` points support the model
        EstimationError: If the point sets are malformed or the geometry is degenerate
        cv2.error: If OpenCV fails numerically
    """
    pts_a = _as_points(points_a)
    pts_b = _as_points(points_b)

    if len(pts_a) != len(pts_b):
        raise EstimationError(f"Point count mismatch: {len(pts_a)} != {len(pts_b)}")

    # Not enough correspondences to ever reach the inlier floor
    if len(pts_a) < min_inliers:
        raise InsufficientInliers(len(pts_a), min_inliers)

    identity = np.eye(3, dtype=np.float64)

    E, mask = cv2.findEssentialMat(pts_a, pts_b, identity, **ESSENTIAL_PARAMS)
    if E is None or E.ndim != 2 or E.shape[0] < 3 or E.shape[1] != 3:
        raise EstimationError("Essential matrix not found")

    # Several stacked solutions can come back; keep the first
    E = np.ascontiguousarray(E[:3, :3])

    inliers, R, _, _, _ = cv2.recoverPose(
        E, pts_a, pts_b, identity,
        distanceThresh=MAX_TRIANGULATION_DISTANCE,
        mask=mask
    )
    if inliers < min_inliers:
        raise InsufficientInliers(int(inliers), min_inliers)

    return to_rotation(R)


def recover_rotation(
    points_a: Sequence[Tuple[float, float]],
    points_b: Sequence[Tuple[float, float]]
) -> Optional[Rotation]:
    """Like :func:`find_rotation` but logs failures and returns None instead."""
    try:
        return find_rotation(points_a, points_b)
    except (EstimationError, cv2.error) as e:
        logger.error("OpenCV error: %s", e)
        return None
