"""
Loading and preprocessing of per-camera calibration data.

Preprocessing turns a directory of images named ``<timestamp>.<ext>`` into
a directory of detection files named ``<timestamp>.csv``. Loading reads such
a directory back as a timestamp-sorted stream, optionally synchronized with
the streams of other cameras.
"""

import os
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .calib_target import CalibTarget
from .detection_record import DetectionRecord, DETECTION_EXT, save_detection, load_detection
from .errors import CalibDataError, CountMismatch, InputNotFound, ParseFailure
from .synchronization import sync_stereo, sync_multicam
from .target_detector import TargetDetector
from .utils import IMAGE_EXTENSIONS, list_files, parse_timestamp, pinhole_focal, pinhole_K

logger = logging.getLogger(__name__)


def preprocess_camera_data(target: CalibTarget,
                           image_dir: str,
                           camera_matrix: np.ndarray,
                           dist_coeffs: np.ndarray,
                           output_dir: str,
                           imshow: bool = False,
                           show_progress: bool = True,
                           detector: Optional[TargetDetector] = None) -> int:
    """
    Detect the calibration target in every image of a directory.

    One detection file is written per image. Images whose detection file
    already exists and loads cleanly are skipped, so an interrupted run can
    simply be restarted.

    Args:
        target: Calibration target geometry
        image_dir: Directory of images named by nanosecond timestamp
        camera_matrix: 3x3 camera intrinsic matrix
        dist_coeffs: Distortion coefficients
        output_dir: Directory the detection files are written to
        imshow: Show every detection in a window
        show_progress: Print a dot every 10 images
        detector: Detector to use, built from ``target`` when omitted

    Returns:
        Number of images that were detected (not skipped)

    Raises:
        InputNotFound: The image directory does not exist
        ParseFailure: An image name is not a timestamp
        WriteFailure: A detection file could not be written
    """
    image_paths = list_files(image_dir, IMAGE_EXTENSIONS)
    if detector is None:
        detector = TargetDetector(target)
    os.makedirs(output_dir, exist_ok=True)

    if show_progress:
        logger.info("Processing %d images in [%s] ...", len(image_paths), image_dir)

    processed = 0
    for i, image_file in enumerate(image_paths):
        if show_progress and i % 10 == 0:
            print(".", end="", flush=True)

        ts = parse_timestamp(image_file)
        save_path = os.path.join(output_dir, f"{ts}{DETECTION_EXT}")

        if os.path.exists(save_path):
            try:
                if load_detection(save_path, target).timestamp == ts:
                    continue
                logger.debug("Re-detecting [%s], cached detection has another timestamp",
                             image_file)
            except CalibDataError:
                logger.debug("Re-detecting [%s], cached detection is unreadable", image_file)

        image = cv2.imread(os.path.join(image_dir, image_file))
        if image is None:
            raise ParseFailure(f"Failed to read image: {os.path.join(image_dir, image_file)}")

        record = detector.detect(image, camera_matrix, dist_coeffs, timestamp=ts)
        save_detection(record, save_path)
        processed += 1

        if imshow:
            cv2.imshow("Target Detection", detector.draw(image, record))
            cv2.waitKey(1)

    if show_progress:
        print()
    if imshow:
        cv2.destroyAllWindows()

    return processed


def preprocess_camera_data_fov(target: CalibTarget,
                               image_dir: str,
                               image_size: Tuple[int, int],
                               lens_hfov: float,
                               lens_vfov: float,
                               output_dir: str,
                               imshow: bool = False,
                               show_progress: bool = True) -> int:
    """
    Same as ``preprocess_camera_data`` for a camera without intrinsics,
    approximated as an undistorted pinhole from its image size (width,
    height) and lens field of view in degrees.
    """
    fx = pinhole_focal(image_size[0], lens_hfov)
    fy = pinhole_focal(image_size[1], lens_vfov)
    cx = image_size[0] / 2.0
    cy = image_size[1] / 2.0
    camera_matrix = pinhole_K(fx, fy, cx, cy)
    dist_coeffs = np.zeros(4)

    return preprocess_camera_data(target, image_dir, camera_matrix, dist_coeffs,
                                  output_dir, imshow, show_progress)


def preprocess_stereo_data(target: CalibTarget,
                           cam0_image_dir: str,
                           cam1_image_dir: str,
                           cam0_image_size: Tuple[int, int],
                           cam1_image_size: Tuple[int, int],
                           cam0_lens_hfov: float,
                           cam0_lens_vfov: float,
                           cam1_lens_hfov: float,
                           cam1_lens_vfov: float,
                           cam0_output_dir: str,
                           cam1_output_dir: str) -> Tuple[int, int]:
    """
    Preprocess the image directories of a stereo pair in parallel.

    The two cameras are processed by independent tasks that share nothing
    but the read-only target; both finish before this returns. Only the
    first camera reports progress.

    Returns:
        Number of detected images per camera

    Raises:
        The first error raised by either task
    """
    jobs = [
        (cam0_image_dir, cam0_image_size, cam0_lens_hfov, cam0_lens_vfov, cam0_output_dir),
        (cam1_image_dir, cam1_image_size, cam1_lens_hfov, cam1_lens_vfov, cam1_output_dir),
    ]

    with ThreadPoolExecutor(max_workers=2) as executor:
        futures = [
            executor.submit(preprocess_camera_data_fov, target, image_dir, image_size,
                            hfov, vfov, output_dir, False, cam_idx == 0)
            for cam_idx, (image_dir, image_size, hfov, vfov, output_dir) in enumerate(jobs)
        ]
        # result() re-raises a task's exception after both have been joined
        counts = [future.result() for future in futures]

    return counts[0], counts[1]


def load_camera_calib_data(data_dir: str,
                           detected_only: bool = True,
                           target: Optional[CalibTarget] = None) -> List[DetectionRecord]:
    """
    Load the detections of one camera, sorted by timestamp.

    Args:
        data_dir: Directory of ``<timestamp>.csv`` detection files
        detected_only: Drop records where the target was not detected
        target: Target geometry shared by all loaded records

    Raises:
        InputNotFound: The directory does not exist
        ParseFailure: A detection file is malformed or its header timestamp
            differs from its file name, or two files carry the same timestamp
    """
    data_paths = list_files(data_dir, (DETECTION_EXT,))

    grids = []
    for data_file in data_paths:
        data_path = os.path.join(data_dir, data_file)
        try:
            grid = load_detection(data_path, target)
            ts = parse_timestamp(data_file)
            if grid.timestamp != ts:
                raise ParseFailure(
                    f"Timestamp {grid.timestamp} in {data_path} does not match its file name"
                )
        except ParseFailure:
            logger.error("Failed to load detection data [%s]!", data_path)
            raise
        if target is None:
            target = grid.target

        if grid.detected or not detected_only:
            grids.append(grid)

    grids.sort(key=lambda grid: grid.timestamp)
    for prev, grid in zip(grids, grids[1:]):
        if prev.timestamp == grid.timestamp:
            raise ParseFailure(f"Duplicate timestamp {grid.timestamp} in {data_dir}")

    logger.debug("Loaded %d detections from [%s]", len(grids), data_dir)
    return grids


def load_stereo_calib_data(cam0_data_dir: str,
                           cam1_data_dir: str
                           ) -> Tuple[List[DetectionRecord], List[DetectionRecord]]:
    """
    Load the detections of a stereo pair and keep only the timestamps and
    features seen by both cameras. Timestamps with no common feature are
    dropped.
    """
    grids0 = load_camera_calib_data(cam0_data_dir)
    grids1 = load_camera_calib_data(cam1_data_dir)

    cam0_grids, cam1_grids = sync_stereo(grids0, grids1, drop_empty=True)
    logger.info("Synchronized %d of %d/%d stereo detections",
                len(cam0_grids), len(grids0), len(grids1))

    return cam0_grids, cam1_grids


def load_multicam_calib_data(nb_cams: int,
                             data_dirs: Sequence[str]) -> Dict[int, List[DetectionRecord]]:
    """
    Load the detections of ``nb_cams`` cameras and keep only the timestamps
    observed by all of them, restricted to the features every camera saw.

    Returns:
        Dict mapping camera index -> synchronized detections

    Raises:
        CountMismatch: ``nb_cams`` differs from the number of directories
        InputNotFound: A directory does not exist
        ParseFailure: A detection file is malformed
    """
    if nb_cams != len(data_dirs):
        logger.error("nb_cams != data_dirs")
        raise CountMismatch(f"Expected {nb_cams} data dirs, got {len(data_dirs)}")

    streams = []
    for data_dir in data_dirs:
        try:
            streams.append(load_camera_calib_data(data_dir))
        except (InputNotFound, ParseFailure):
            logger.error("Failed to load calib data [%s]!", data_dir)
            raise

    synced = sync_multicam(streams)
    logger.info("Synchronized %d timestamps across %d cameras",
                len(synced[0]) if synced else 0, nb_cams)

    return {cam_idx: grids for cam_idx, grids in enumerate(synced)}
