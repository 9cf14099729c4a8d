"""
Utility functions for calibration data preprocessing.
"""

import os
import logging
from typing import Dict, Any, List, Sequence, Tuple

import cv2
import numpy as np
import yaml

from .errors import InputNotFound, ParseFailure

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.bmp', '.tif', '.tiff')


def load_camera_config(config_path: str) -> Dict[str, Any]:
    """Load camera configuration from YAML file."""
    if not os.path.isfile(config_path):
        raise InputNotFound(f"Config file not found: {config_path}")
    with open(config_path, 'r') as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ParseFailure(f"Invalid YAML in {config_path}: {e}") from e


def load_intrinsics(intrinsics_path: str) -> Dict[str, Any]:
    """
    Load camera intrinsics from a ROS camera info YAML file.

    Returns dict with:
        - camera_matrix: 3x3 numpy array
        - dist_coeffs: distortion coefficients
        - distortion_model: string
        - image_size: (width, height)
        - is_fisheye: bool
    """
    if not os.path.isfile(intrinsics_path):
        raise InputNotFound(f"Intrinsics file not found: {intrinsics_path}")

    with open(intrinsics_path, 'r') as f:
        content = f.read()
        # Some exporters prepend comment lines
        lines = content.split('\n')
        yaml_lines = [l for l in lines if not l.strip().startswith('#')]

    try:
        data = yaml.safe_load('\n'.join(yaml_lines))
        camera_matrix = np.array(data['camera_matrix']['data'], dtype=np.float64).reshape(3, 3)
        dist_coeffs = np.array(data['distortion_coefficients']['data'], dtype=np.float64)
        image_size = (int(data['image_width']), int(data['image_height']))
    except (yaml.YAMLError, KeyError, TypeError, ValueError) as e:
        raise ParseFailure(f"Invalid intrinsics file {intrinsics_path}: {e}") from e

    distortion_model = data.get('distortion_model', 'plumb_bob')

    # Common fisheye model names: equidistant, fisheye, kb4 (Kannala-Brandt)
    fisheye_models = ['equidistant', 'fisheye', 'kb4', 'kannala_brandt']
    is_fisheye = distortion_model.lower() in fisheye_models

    # OpenCV fisheye model requires exactly 4 distortion coefficients (k1, k2, k3, k4)
    if is_fisheye and len(dist_coeffs) > 4:
        logger.info("Truncating %d distortion coefficients to 4 for fisheye model",
                    len(dist_coeffs))
        dist_coeffs = dist_coeffs[:4]

    return {
        'camera_matrix': camera_matrix,
        'dist_coeffs': dist_coeffs,
        'distortion_model': distortion_model,
        'image_size': image_size,
        'camera_name': data.get('camera_name', 'unknown'),
        'is_fisheye': is_fisheye
    }


def pinhole_focal(image_width: float, fov_deg: float) -> float:
    """
    Focal length in pixels of a pinhole camera with the given field of view.

    Args:
        image_width: Image extent along the field of view axis, in pixels
        fov_deg: Field of view in degrees
    """
    return (image_width / 2.0) / np.tan(np.deg2rad(fov_deg) / 2.0)


def pinhole_K(fx: float, fy: float, cx: float, cy: float) -> np.ndarray:
    """Build a 3x3 pinhole camera matrix."""
    return np.array([
        [fx, 0.0, cx],
        [0.0, fy, cy],
        [0.0, 0.0, 1.0]
    ])


def list_files(directory: str, extensions: Sequence[str]) -> List[str]:
    """
    List the file names in a directory with one of the given extensions,
    sorted by name.

    Raises:
        InputNotFound: The directory does not exist
    """
    if not os.path.isdir(directory):
        logger.error("Dir [%s] does not exist!", directory)
        raise InputNotFound(f"Directory not found: {directory}")

    extensions = tuple(ext.lower() for ext in extensions)
    return sorted(
        f for f in os.listdir(directory)
        if f.lower().endswith(extensions) and os.path.isfile(os.path.join(directory, f))
    )


def parse_timestamp(path: str) -> int:
    """
    Parse the nanosecond timestamp encoded in a file name, e.g.
    ``1403709383937837056.png``.

    Raises:
        ParseFailure: The file stem is not an integer
    """
    stem = os.path.splitext(os.path.basename(path))[0]
    try:
        return int(stem)
    except ValueError as e:
        raise ParseFailure(f"File name is not a timestamp: {path}") from e


def reprojection_error(measured: np.ndarray, projected: np.ndarray) -> float:
    """RMSE between measured and projected image points."""
    measured = np.asarray(measured, dtype=np.float64).reshape(-1, 2)
    projected = np.asarray(projected, dtype=np.float64).reshape(-1, 2)
    if measured.shape != projected.shape:
        raise ValueError(f"Point count mismatch: {len(measured)} != {len(projected)}")
    if len(measured) == 0:
        return 0.0
    residuals = np.linalg.norm(measured - projected, axis=1)
    return float(np.sqrt(np.mean(residuals ** 2)))


def draw_calib_validation(image: np.ndarray,
                          measured: np.ndarray,
                          projected: np.ndarray,
                          measured_color: Tuple[int, int, int] = (0, 0, 255),
                          projected_color: Tuple[int, int, int] = (0, 255, 0)) -> np.ndarray:
    """
    Draw measured and projected points and the RMSE reprojection error.

    Args:
        image: Input image (BGR or grayscale)
        measured: (n, 2) measured image points
        projected: (n, 2) image points projected with the calibration
        measured_color: BGR colour of measured points
        projected_color: BGR colour of projected points

    Returns:
        BGR image with the overlay
    """
    if len(image.shape) == 2:
        image_rgb = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    else:
        image_rgb = image.copy()

    for p in np.asarray(measured).reshape(-1, 2):
        cv2.circle(image_rgb, (int(round(p[0])), int(round(p[1]))), 1,
                   measured_color, cv2.FILLED, cv2.LINE_8)

    for p in np.asarray(projected).reshape(-1, 2):
        cv2.circle(image_rgb, (int(round(p[0])), int(round(p[1]))), 1,
                   projected_color, cv2.FILLED, cv2.LINE_8)

    rmse = reprojection_error(measured, projected)
    text = f"RMSE Reprojection Error: {rmse:.2f}"
    cv2.putText(image_rgb, text, (0, 18), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 0, 255), 2)

    return image_rgb
