"""Failure types raised inside the motion estimators.

None of these escape the public estimator API: they are logged and turned
into an empty or ``None`` result at the item boundary.
"""


class EstimationError(Exception):
    """Base class for all estimator failures."""


class DetectionFailure(EstimationError):
    """Feature detection failed or the frame had no usable geometry."""


class TrackingFailure(EstimationError):
    """Correspondence between two frames could not be established."""


class InsufficientInliers(EstimationError):
    """A rotation was found but too few correspondences support it."""

    def __init__(self, inliers: int, required: int):
        super().__init__(f"Model not found: {inliers} inliers, {required} required")
        self.inliers = inliers
        self.required = required


class InvalidMatrixType(EstimationError):
    """The matrix handed to the rotation adapter is not a 3x3 float64 matrix."""
