import bisect
import json
import os
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

import numpy as np
import cv2

# Required keys for camera parameters JSON
_REQUIRED_KEYS = ["camera_matrix", "dist_coeffs", "img_shape"]


@dataclass
class ComputeParams:
    """Lens calibration used to undistort tracked points.

    Attributes:
        camera_matrix: 3x3 intrinsic matrix at the calibration resolution
        dist_coeffs: 5 distortion coefficients [k1, k2, p1, p2, k3]
        calib_size: Calibration resolution (width, height)
        camera_matrix_overrides: Sorted (timestamp_us, 3x3 matrix) pairs for
            lenses whose intrinsics change during the recording (zoom)
    """
    camera_matrix: np.ndarray
    dist_coeffs: np.ndarray
    calib_size: Tuple[int, int]
    camera_matrix_overrides: List[Tuple[int, np.ndarray]] = field(default_factory=list)

    def __post_init__(self):
        self.camera_matrix_overrides = sorted(self.camera_matrix_overrides, key=lambda o: o[0])
        self._override_times = [t for t, _ in self.camera_matrix_overrides]

    def camera_matrix_at(self, timestamp_us: int) -> np.ndarray:
        """Intrinsics in effect at ``timestamp_us``.

        The latest override at or before the timestamp wins, otherwise the
        base camera matrix is used.
        """
        idx = bisect.bisect_right(self._override_times, timestamp_us)
        if idx == 0:
            return self.camera_matrix
        return self.camera_matrix_overrides[idx - 1][1]


def _validate_camera_matrix(camera_matrix, name="camera_matrix"):
    if (not isinstance(camera_matrix, list) or len(camera_matrix) != 3 or
            any(not isinstance(row, list) or len(row) != 3 for row in camera_matrix)):
        raise ValueError(f"{name} must be a 3x3 array")


def load_camera_params(path: str) -> ComputeParams:
    """Load camera parameters from JSON file.

    Args:
        path: Path to camera JSON file

    Returns:
        ComputeParams with the camera matrix, distortion coefficients,
        calibration size and optional per-timestamp camera matrices

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If required keys are missing or have invalid format
        json.JSONDecodeError: If the file is not valid JSON
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Camera parameters file not found: {path}")

    with open(path, 'r') as f:
        data = json.load(f)

    # Validate required keys
    missing_keys = [key for key in _REQUIRED_KEYS if key not in data]
    if missing_keys:
        raise ValueError(f"Missing required keys in camera parameters: {missing_keys}")

    _validate_camera_matrix(data["camera_matrix"])

    # Validate dist_coeffs - can be [[c1, c2, c3, c4, c5]] or [c1, c2, c3, c4, c5]
    dist_coeffs = data["dist_coeffs"]
    if not isinstance(dist_coeffs, (list, tuple)):
        raise ValueError("dist_coeffs must be a list or array")

    if len(dist_coeffs) == 1 and isinstance(dist_coeffs[0], (list, tuple)):
        if len(dist_coeffs[0]) != 5:
            raise ValueError("dist_coeffs must contain exactly 5 coefficients")
    elif len(dist_coeffs) != 5:
        raise ValueError("dist_coeffs must contain exactly 5 coefficients")

    # Validate img_shape is a tuple of 3 elements
    img_shape = data["img_shape"]
    if not isinstance(img_shape, (list, tuple)) or len(img_shape) != 3:
        raise ValueError("img_shape must contain exactly 3 elements (H, W, C)")

    overrides = []
    for entry in data.get("camera_matrix_overrides", []):
        if "timestamp_us" not in entry or "camera_matrix" not in entry:
            raise ValueError("camera_matrix_overrides entries need timestamp_us and camera_matrix")
        _validate_camera_matrix(entry["camera_matrix"], "camera_matrix_overrides.camera_matrix")
        overrides.append((int(entry["timestamp_us"]), np.array(entry["camera_matrix"], dtype=np.float64)))

    return ComputeParams(
        camera_matrix=np.array(data["camera_matrix"], dtype=np.float64),
        dist_coeffs=np.array(dist_coeffs, dtype=np.float64),
        calib_size=(int(img_shape[1]), int(img_shape[0])),
        camera_matrix_overrides=overrides
    )


def undistort_points_for_optical_flow(
    points: Sequence[Tuple[float, float]],
    timestamp_us: int,
    params: ComputeParams,
    frame_size: Tuple[int, int]
) -> List[Tuple[float, float]]:
    """Undistort pixel coordinates into normalized camera coordinates.

    The intrinsics are scaled from the calibration resolution to
    ``frame_size`` so proxies and downscaled frames can be used.

    Args:
        points: Pixel coordinates (x, y)
        timestamp_us: Capture time of the frame the points belong to
        params: Lens calibration
        frame_size: Size of the frame the points were tracked in (width, height)

    Returns:
        Index-aligned list of normalized (x, y) coordinates
    """
    if len(points) == 0:
        return []

    K = np.array(params.camera_matrix_at(timestamp_us), dtype=np.float64)
    calib_w, calib_h = params.calib_size
    frame_w, frame_h = frame_size
    if calib_w > 0 and calib_h > 0:
        K[0, :] *= frame_w / calib_w
        K[1, :] *= frame_h / calib_h

    pts = np.asarray(points, dtype=np.float64).reshape(-1, 1, 2)
    undistorted = cv2.undistortPoints(pts, K, params.dist_coeffs)

    return [(float(x), float(y)) for x, y in undistorted.reshape(-1, 2)]
