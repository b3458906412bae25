#!/usr/bin/env python3
"""Frame-to-frame camera rotation from video: main entry point

Estimates the camera rotation between consecutive (sampled) video frames
with either backend:
  - opencv:  Shi-Tomasi corners → Lucas-Kanade tracking → essential matrix
  - akaze:   AKAZE descriptors → ratio-test matching → essential matrix

Usage:
    python main.py video.mp4 --camera config/camera.json
    python main.py video.mp4 --backend akaze --step 2 --workers 4
"""
import argparse
import logging
from concurrent.futures import ThreadPoolExecutor
from itertools import islice
from pathlib import Path

import cv2
import numpy as np

from src.synchronization import detect, init
from src.utils.camera import load_camera_params

logger = logging.getLogger("rotation-estimator")

# Used for timestamps when the container reports no frame rate
NOMINAL_FPS = 30.0


def read_frames(video_path, step):
    """Yield (timestamp_us, grayscale frame) for every ``step``-th frame."""
    cap = cv2.VideoCapture(video_path)
    if not cap.isOpened():
        raise IOError(f"Cannot open video file: {video_path}")

    fps = cap.get(cv2.CAP_PROP_FPS)
    if not fps or fps <= 0:
        logger.warning("No frame rate reported for %s, assuming %.1f fps", video_path, NOMINAL_FPS)
        fps = NOMINAL_FPS

    frame_idx = 0
    try:
        while True:
            ret, frame = cap.read()
            if not ret:
                break
            if frame_idx % step == 0:
                timestamp_us = int(round(frame_idx * 1e6 / fps))
                yield timestamp_us, cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
            frame_idx += 1
    finally:
        cap.release()


def estimate_rotations(frames, params, backend, pool, chunk_size):
    """Yield (ts_a, ts_b, rotation or None) for consecutive frames.

    Frames are consumed ``chunk_size`` at a time. Each item is released with
    ``cleanup()`` once its last pair has been estimated, so only the newest
    item is kept between chunks.
    """
    def build_item(entry):
        timestamp_us, gray = entry
        h, w = gray.shape
        return timestamp_us, detect(gray, w, h, backend=backend, timestamp_us=timestamp_us)

    def estimate(pair):
        (ts_a, item_a), (ts_b, item_b) = pair
        return ts_a, ts_b, item_a.estimate_pose(item_b, params, ts_a, ts_b)

    frames = iter(frames)
    previous = None
    try:
        while True:
            chunk = list(islice(frames, chunk_size))
            if not chunk:
                break

            items = list(pool.map(build_item, chunk))
            chain = items if previous is None else [previous] + items
            results = list(pool.map(estimate, zip(chain, chain[1:])))

            for _, item in chain[:-1]:
                item.cleanup()
            previous = chain[-1]

            for result in results:
                yield result
    finally:
        if previous is not None:
            previous[1].cleanup()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Frame-to-frame camera rotation estimation")
    parser.add_argument("video_path", help="Path to input video file")
    parser.add_argument("--camera", default="config/camera.json",
                        help="Camera parameters JSON (default: config/camera.json)")
    parser.add_argument("--backend", choices=["opencv", "akaze"], default="opencv",
                        help="Motion estimator backend (default: opencv)")
    parser.add_argument("--step", type=int, default=1,
                        help="Use every N-th frame (default: 1)")
    parser.add_argument("--workers", type=int, default=4,
                        help="Frame pairs estimated in parallel (default: 4)")
    parser.add_argument("--opencl", action="store_true",
                        help="Enable OpenCL if available")
    parser.add_argument("--verbose", action="store_true",
                        help="Debug logging")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    video_path = Path(args.video_path)
    if not video_path.exists():
        logger.error("Video not found: %s", args.video_path)
        return 1

    if args.step < 1 or args.workers < 1:
        logger.error("--step and --workers must be at least 1")
        return 1

    try:
        params = load_camera_params(args.camera)
    except (OSError, ValueError) as e:
        logger.error("Error loading camera parameters: %s", e)
        return 1

    init(use_opencl=args.opencl)

    logger.info("Processing %s with the %s backend", video_path, args.backend)

    pairs = 0
    estimated = 0
    try:
        with ThreadPoolExecutor(max_workers=args.workers) as pool:
            frames = read_frames(str(video_path), args.step)
            for ts_a, ts_b, rotation in estimate_rotations(frames, params, args.backend, pool, args.workers):
                pairs += 1
                if rotation is None:
                    print(f"{ts_a:>12d} -> {ts_b:>12d}  no result")
                    continue
                estimated += 1
                rotvec = np.degrees(rotation.as_rotvec())
                print(f"{ts_a:>12d} -> {ts_b:>12d}  "
                      f"rotvec [{rotvec[0]:+.3f}, {rotvec[1]:+.3f}, {rotvec[2]:+.3f}] deg")
    except IOError as e:
        logger.error("%s", e)
        return 1

    if pairs == 0:
        logger.error("Need at least two frames")
        return 1

    print(f"\n=== Results ===")
    print(f"Backend: {args.backend}")
    print(f"Frame pairs: {pairs}")
    print(f"Rotations estimated: {estimated}/{pairs} "
          f"({100 * estimated / pairs:.1f}%)")

    return 0


if __name__ == "__main__":
    exit(main())
