"""Frame-to-frame camera rotation estimators for gyro/video synchronization.

Each frame is turned into an estimator item holding its detected features.
Two items of the same kind produce point correspondences and, after lens
undistortion, the relative camera rotation between the two frames.
"""

import numpy as np

from .akaze_item import AkazeItem
from .backend import init
from .conversion import from_rotation, to_rotation
from .errors import (
    DetectionFailure,
    EstimationError,
    InsufficientInliers,
    InvalidMatrixType,
    TrackingFailure,
)
from .estimator_item import EstimatorItem, OpticalFlowPair
from .opencv_item import OpenCVItem
from .pose import find_rotation, recover_rotation

ESTIMATORS = {
    "opencv": OpenCVItem,
    "akaze": AkazeItem,
}


def detect(
    image: np.ndarray,
    width: int,
    height: int,
    backend: str = "opencv",
    timestamp_us: int = 0
) -> EstimatorItem:
    """Build an estimator item for one frame with the chosen backend.

    Raises:
        ValueError: If ``backend`` is unknown
    """
    if backend not in ESTIMATORS:
        raise ValueError(f"Unknown estimator backend: {backend}. Available: {list(ESTIMATORS)}")
    return ESTIMATORS[backend].detect_features(timestamp_us, image, width, height)


__all__ = [
    "AkazeItem",
    "DetectionFailure",
    "ESTIMATORS",
    "EstimationError",
    "EstimatorItem",
    "InsufficientInliers",
    "InvalidMatrixType",
    "OpenCVItem",
    "OpticalFlowPair",
    "TrackingFailure",
    "detect",
    "find_rotation",
    "from_rotation",
    "init",
    "recover_rotation",
    "to_rotation",
]
