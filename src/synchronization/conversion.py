"""Conversion between OpenCV rotation matrices and scipy rotations."""

import numpy as np
from scipy.spatial.transform import Rotation

from .errors import InvalidMatrixType


def to_rotation(matrix: np.ndarray) -> Rotation:
    """Convert a 3x3 rotation matrix returned by OpenCV into a Rotation.

    The matrix is expected to be orthonormal (this is what ``cv2.recoverPose``
    returns). Its storage is checked, and reflections are rejected.

    Args:
        matrix: 3x3 float64 single channel matrix

    Returns:
        scipy Rotation built from the nine elements in row-major order

    Raises:
        InvalidMatrixType: If the matrix is not a 3x3 float64 array or has a
            non-positive determinant
    """
    if not isinstance(matrix, np.ndarray):
        raise InvalidMatrixType(f"Invalid matrix type: {type(matrix).__name__}")
    if matrix.dtype != np.float64 or matrix.shape != (3, 3):
        raise InvalidMatrixType(
            f"Invalid matrix type: expected float64 (3, 3), got {matrix.dtype} {matrix.shape}"
        )

    R = np.array([
        [matrix[0, 0], matrix[0, 1], matrix[0, 2]],
        [matrix[1, 0], matrix[1, 1], matrix[1, 2]],
        [matrix[2, 0], matrix[2, 1], matrix[2, 2]]
    ], dtype=np.float64)

    if np.linalg.det(R) <= 0:
        raise InvalidMatrixType("Invalid matrix type: not a rotation (non-positive determinant)")

    try:
        return Rotation.from_matrix(R)
    except ValueError as e:
        raise InvalidMatrixType(f"Invalid matrix type: not a rotation ({e})") from e


def from_rotation(rotation: Rotation) -> np.ndarray:
    """Inverse of :func:`to_rotation`, returns a contiguous 3x3 float64 matrix."""
    return np.ascontiguousarray(rotation.as_matrix(), dtype=np.float64)
