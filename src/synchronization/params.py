"""Tunables for feature detection, tracking and pose recovery."""

import cv2

# Shi-Tomasi corner detection (full frame, no mask)
FEATURE_PARAMS = dict(
    maxCorners=200,
    qualityLevel=0.01,
    minDistance=10,
    blockSize=3,
    useHarrisDetector=False,
    k=0.04
)

# Pyramidal Lucas-Kanade optical flow
LK_PARAMS = dict(
    winSize=(21, 21),
    maxLevel=3,
    criteria=(cv2.TERM_CRITERIA_COUNT | cv2.TERM_CRITERIA_EPS, 30, 0.01),
    flags=0,
    minEigThreshold=1e-4
)

# Essential matrix RANSAC; points are normalized so the threshold is tiny
ESSENTIAL_PARAMS = dict(
    method=cv2.RANSAC,
    prob=0.999,
    threshold=0.0005,
    maxIters=1000
)

# Triangulated points further than this are treated as at infinity
MAX_TRIANGULATION_DISTANCE = 100000.0

# Minimum recoverPose inliers for a rotation to be accepted
MIN_INLIERS = 20

# Lowe ratio for descriptor matching
AKAZE_RATIO = 0.75
