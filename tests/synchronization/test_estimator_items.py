"""Tests for the estimator items used by the synchronization loop."""

import logging
from concurrent.futures import ThreadPoolExecutor

import pytest
import numpy as np
import cv2
from unittest.mock import patch
from scipy.spatial.transform import Rotation

from src.synchronization import AkazeItem, EstimatorItem, OpenCVItem, detect
from src.synchronization.errors import EstimationError
from src.utils.camera import ComputeParams, undistort_points_for_optical_flow

WIDTH, HEIGHT = 320, 240


def make_textured_frame(shape=(HEIGHT, WIDTH), seed=0):
    rng = np.random.default_rng(seed)
    h, w = shape
    noise = rng.integers(0, 256, (h, w)).astype(np.uint8)
    frame = cv2.GaussianBlur(noise, (0, 0), 2)
    frame = cv2.normalize(frame, None, 0, 255, cv2.NORM_MINMAX)
    for _ in range(40):
        x, y = int(rng.integers(0, w - 20)), int(rng.integers(0, h - 20))
        cv2.rectangle(frame, (x, y), (x + int(rng.integers(8, 20)), y + int(rng.integers(8, 20))),
                      int(rng.integers(0, 256)), -1)
    return frame


def shift_frame(frame, dx, dy):
    h, w = frame.shape
    M = np.float32([[1, 0, dx], [0, 1, dy]])
    return cv2.warpAffine(frame, M, (w, h))


def project_pixels(K, rotation, translation, n=100, seed=0):
    """Pixel correspondences of random 3D points seen by two cameras."""
    rng = np.random.default_rng(seed)
    X = np.column_stack([
        rng.uniform(-2.0, 2.0, n),
        rng.uniform(-1.5, 1.5, n),
        rng.uniform(4.0, 10.0, n),
    ])
    X2 = X @ rotation.as_matrix().T + np.asarray(translation)

    def to_pixels(P):
        uv = (P / P[:, 2:]) @ K.T
        return [(float(u), float(v)) for u, v in uv[:, :2]]

    return to_pixels(X), to_pixels(X2)


class TestOpenCVItem:
    """Test suite for the optical flow estimator item."""

    @pytest.fixture
    def camera_matrix(self):
        return np.array([
            [300, 0, 160],
            [0, 300, 120],
            [0, 0, 1]
        ], dtype=np.float64)

    @pytest.fixture
    def params(self, camera_matrix):
        return ComputeParams(
            camera_matrix=camera_matrix,
            dist_coeffs=np.zeros(5),
            calib_size=(WIDTH, HEIGHT)
        )

    @pytest.fixture
    def frame(self):
        return make_textured_frame()

    @pytest.fixture
    def item(self, frame):
        return OpenCVItem.detect_features(0, frame, WIDTH, HEIGHT)

    def test_detect_features(self, item, frame):
        assert isinstance(item, EstimatorItem)
        assert 0 < len(item.get_features()) <= 200
        assert item.size == (WIDTH, HEIGHT)
        assert np.shares_memory(item.image, frame)
        assert not item.image.flags.writeable

    def test_get_features_is_stable(self, item):
        first = item.get_features()
        second = item.get_features()
        assert first is second
        assert first == second

    def test_detect_factory(self, frame):
        assert isinstance(detect(frame, WIDTH, HEIGHT), OpenCVItem)
        assert isinstance(detect(frame, WIDTH, HEIGHT, backend="akaze"), AkazeItem)
        with pytest.raises(ValueError):
            detect(frame, WIDTH, HEIGHT, backend="sift")

    def test_malformed_frame_gives_empty_item(self):
        item = OpenCVItem.detect_features(0, np.zeros((HEIGHT, WIDTH, 3), np.uint8), WIDTH, HEIGHT)
        assert item.get_features() == ()

    def test_optical_flow_to_shifted_frame(self, item, frame):
        next_item = OpenCVItem.detect_features(33333, shift_frame(frame, 3, 2), WIDTH, HEIGHT)

        pts_a, pts_b = item.optical_flow_to(next_item)

        assert len(pts_a) == len(pts_b) > 0
        for (x1, y1), (x2, y2) in zip(pts_a, pts_b):
            assert 0 <= x1 < WIDTH and 0 <= y1 < HEIGHT
            assert 0 <= x2 < WIDTH and 0 <= y2 < HEIGHT
        flow = np.array(pts_b) - np.array(pts_a)
        assert np.median(flow, axis=0) == pytest.approx(np.array([3.0, 2.0]), abs=0.2)

    def test_optical_flow_does_not_modify_features(self, item, frame):
        before = item.get_features()
        item.optical_flow_to(OpenCVItem.detect_features(1, shift_frame(frame, 1, 1), WIDTH, HEIGHT))
        assert item.get_features() == before

    def test_zero_motion(self, item, frame, params):
        """Identical frames: identity rotation or no result, never a false rotation."""
        other = OpenCVItem.detect_features(33333, frame.copy(), WIDTH, HEIGHT)

        pts_a, pts_b = item.optical_flow_to(other)
        assert np.allclose(pts_a, pts_b, atol=1e-3)

        rotation = item.estimate_pose(other, params, 0, 33333)
        assert rotation is None or rotation.magnitude() < 0.01

    def test_black_frame_has_no_correspondences(self, frame, params):
        black = OpenCVItem.detect_features(0, np.zeros((HEIGHT, WIDTH), np.uint8), WIDTH, HEIGHT)
        textured = OpenCVItem.detect_features(33333, frame, WIDTH, HEIGHT)

        assert black.get_features() == ()
        assert black.optical_flow_to(textured) == ([], [])
        assert black.estimate_pose(textured, params, 0, 33333) is None

    def test_textured_to_black_frame_gives_no_rotation(self, item, params):
        """A few LK tracks can survive into a blank frame, but never enough for a pose."""
        black = OpenCVItem.detect_features(33333, np.zeros((HEIGHT, WIDTH), np.uint8), WIDTH, HEIGHT)

        pts_a, pts_b = item.optical_flow_to(black)

        assert len(pts_a) == len(pts_b)
        for (x1, y1), (x2, y2) in zip(pts_a, pts_b):
            assert 0 <= x1 < WIDTH and 0 <= y1 < HEIGHT
            assert 0 <= x2 < WIDTH and 0 <= y2 < HEIGHT
        assert item.estimate_pose(black, params, 0, 33333) is None

    def test_estimate_pose_recovers_rotation(self, item, frame, params, camera_matrix):
        expected = Rotation.from_rotvec([0.01, 0.04, -0.02])
        matched = project_pixels(camera_matrix, expected, [0.4, -0.1, 0.05])
        other = OpenCVItem.detect_features(33333, frame, WIDTH, HEIGHT)

        with patch.object(OpenCVItem, "_matched_features", return_value=matched):
            rotation = item.estimate_pose(other, params, 0, 33333)

        assert rotation is not None
        assert (rotation.inv() * expected).magnitude() < 0.01

    def test_estimate_pose_passes_timestamps_to_undistort(self, item, frame, params, camera_matrix):
        matched = project_pixels(camera_matrix, Rotation.from_rotvec([0.0, 0.03, 0.0]), [0.5, 0.0, 0.0])
        other = OpenCVItem.detect_features(40000, frame, WIDTH, HEIGHT)
        calls = []

        def undistort(points, timestamp_us, calibration, frame_size):
            calls.append((len(points), timestamp_us, calibration, frame_size))
            return undistort_points_for_optical_flow(points, timestamp_us, calibration, frame_size)

        with patch.object(OpenCVItem, "_matched_features", return_value=matched):
            item.estimate_pose(other, params, 1000, 41000, undistort=undistort)

        assert calls == [
            (100, 1000, params, (WIDTH, HEIGHT)),
            (100, 41000, params, (WIDTH, HEIGHT)),
        ]

    def test_too_few_inliers(self, item, frame, params, camera_matrix):
        matched = project_pixels(camera_matrix, Rotation.from_rotvec([0.0, 0.03, 0.0]), [0.5, 0.0, 0.0])
        other = OpenCVItem.detect_features(33333, frame, WIDTH, HEIGHT)
        fake_pose = (12, np.eye(3), np.zeros((3, 1)), None, None)

        with patch.object(OpenCVItem, "_matched_features", return_value=matched), \
                patch("src.synchronization.pose.cv2.recoverPose", return_value=fake_pose):
            assert item.estimate_pose(other, params, 0, 33333) is None

    def test_undistort_failure_is_absorbed(self, item, frame, params):
        other = OpenCVItem.detect_features(33333, frame, WIDTH, HEIGHT)

        def undistort(points, timestamp_us, calibration, frame_size):
            raise EstimationError("calibration missing")

        assert item.estimate_pose(other, params, 0, 33333, undistort=undistort) is None

    def test_cleanup(self, item):
        features = item.get_features()
        size = item.size

        item.cleanup()

        assert item.image.size == 0
        assert item.get_features() == features
        assert item.size == size

        item.cleanup()

        assert item.image.size == 0
        assert item.get_features() == features
        assert item.size == size

    def test_cleanup_does_not_touch_caller_frame(self, item, frame):
        original = frame.copy()
        item.cleanup()
        assert np.array_equal(frame, original)

    @pytest.mark.parametrize("cleaned", ["first", "second", "both"])
    def test_estimate_pose_after_cleanup(self, frame, params, cleaned):
        a = OpenCVItem.detect_features(0, frame, WIDTH, HEIGHT)
        b = OpenCVItem.detect_features(33333, shift_frame(frame, 2, 1), WIDTH, HEIGHT)
        if cleaned in ("first", "both"):
            a.cleanup()
        if cleaned in ("second", "both"):
            b.cleanup()

        assert a.optical_flow_to(b) is None
        assert a.estimate_pose(b, params, 0, 33333) is None

    def test_variant_mismatch(self, item, frame, params, caplog):
        akaze = AkazeItem.detect_features(33333, frame, WIDTH, HEIGHT)

        with caplog.at_level(logging.WARNING, logger="src.synchronization.estimator_item"):
            assert item.optical_flow_to(akaze) is None
            assert item.estimate_pose(akaze, params, 0, 33333) is None

        assert "Cannot match OpenCVItem against AkazeItem" in caplog.text

    def test_size_mismatch_is_absorbed(self, item, caplog):
        small = OpenCVItem.detect_features(33333, make_textured_frame(shape=(120, 160)), 160, 120)

        with caplog.at_level(logging.ERROR, logger="src.synchronization.estimator_item"):
            assert item.optical_flow_to(small) is None

        assert "OpenCV error" in caplog.text

    def test_concurrent_reads(self, item, frame):
        other = OpenCVItem.detect_features(33333, shift_frame(frame, 2, 2), WIDTH, HEIGHT)
        expected = item.optical_flow_to(other)

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(lambda _: item.optical_flow_to(other), range(8)))

        assert all(r == expected for r in results)


class TestAkazeItem:
    """Test suite for the descriptor matching estimator item."""

    @pytest.fixture
    def frame(self):
        return make_textured_frame(seed=5)

    @pytest.fixture
    def item(self, frame):
        return AkazeItem.detect_features(0, frame, WIDTH, HEIGHT)

    def test_detect_features(self, item):
        assert len(item.get_features()) > 0
        assert item.descriptors is not None
        assert len(item.descriptors) == len(item.get_features())

    def test_black_frame(self):
        item = AkazeItem.detect_features(0, np.zeros((HEIGHT, WIDTH), np.uint8), WIDTH, HEIGHT)
        assert item.get_features() == ()
        assert item.descriptors is None

    def test_matches_shifted_frame(self, item, frame):
        other = AkazeItem.detect_features(33333, shift_frame(frame, 3, 2), WIDTH, HEIGHT)

        pts_a, pts_b = item.optical_flow_to(other)

        assert len(pts_a) == len(pts_b) > 0
        for (x1, y1), (x2, y2) in zip(pts_a, pts_b):
            assert 0 <= x1 < WIDTH and 0 <= y1 < HEIGHT
            assert 0 <= x2 < WIDTH and 0 <= y2 < HEIGHT
        flow = np.array(pts_b) - np.array(pts_a)
        assert np.median(flow, axis=0) == pytest.approx(np.array([3.0, 2.0]), abs=1.0)

    def test_no_descriptors_gives_empty_pairs(self, item):
        black = AkazeItem.detect_features(33333, np.zeros((HEIGHT, WIDTH), np.uint8), WIDTH, HEIGHT)
        assert item.optical_flow_to(black) == ([], [])

    def test_cleanup(self, item, frame):
        other = AkazeItem.detect_features(33333, frame, WIDTH, HEIGHT)
        features = item.get_features()

        item.cleanup()
        item.cleanup()

        assert item.get_features() == features
        assert item.optical_flow_to(other) is None
