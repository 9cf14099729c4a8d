"""
Calibration target detection.
Supports AprilTag grids and ChArUco boards through OpenCV's ArUco module.
"""

import cv2
import numpy as np
from typing import Optional, Dict, Any

from .calib_target import CalibTarget
from .detection_record import DetectionRecord, Observation


# ArUco dictionary mapping
ARUCO_DICT_MAP = {
    "DICT_4X4_50": cv2.aruco.DICT_4X4_50,
    "DICT_4X4_100": cv2.aruco.DICT_4X4_100,
    "DICT_4X4_250": cv2.aruco.DICT_4X4_250,
    "DICT_4X4_1000": cv2.aruco.DICT_4X4_1000,
    "DICT_5X5_50": cv2.aruco.DICT_5X5_50,
    "DICT_5X5_100": cv2.aruco.DICT_5X5_100,
    "DICT_5X5_250": cv2.aruco.DICT_5X5_250,
    "DICT_5X5_1000": cv2.aruco.DICT_5X5_1000,
    "DICT_6X6_50": cv2.aruco.DICT_6X6_50,
    "DICT_6X6_100": cv2.aruco.DICT_6X6_100,
    "DICT_6X6_250": cv2.aruco.DICT_6X6_250,
    "DICT_6X6_1000": cv2.aruco.DICT_6X6_1000,
    "DICT_7X7_50": cv2.aruco.DICT_7X7_50,
    "DICT_7X7_100": cv2.aruco.DICT_7X7_100,
    "DICT_7X7_250": cv2.aruco.DICT_7X7_250,
    "DICT_7X7_1000": cv2.aruco.DICT_7X7_1000,
    "DICT_APRILTAG_16h5": cv2.aruco.DICT_APRILTAG_16h5,
    "DICT_APRILTAG_25h9": cv2.aruco.DICT_APRILTAG_25h9,
    "DICT_APRILTAG_36h10": cv2.aruco.DICT_APRILTAG_36h10,
    "DICT_APRILTAG_36h11": cv2.aruco.DICT_APRILTAG_36h11,
}

# Fewer image points than this counts as a failed detection
MIN_POINTS = 4


class TargetDetector:
    """
    Detects the calibration target in an image and produces a DetectionRecord.
    """

    def __init__(self, target: CalibTarget, detection_cfg: Optional[Dict[str, Any]] = None):
        """
        Initialize the target detector.

        Args:
            target: Calibration target geometry
            detection_cfg: Optional ArUco detector parameters
        """
        self.target = target

        dict_name = target.aruco_dictionary
        if dict_name not in ARUCO_DICT_MAP:
            raise ValueError(f"Unknown ArUco dictionary: {dict_name}")

        self.aruco_dict = cv2.aruco.getPredefinedDictionary(ARUCO_DICT_MAP[dict_name])

        self.detector_params = cv2.aruco.DetectorParameters()
        if detection_cfg:
            self._configure_detector_params(detection_cfg)

        if target.target_type == 'aprilgrid':
            self.board = cv2.aruco.GridBoard(
                (target.tag_cols, target.tag_rows),
                target.tag_size,
                target.tag_size * target.tag_spacing,
                self.aruco_dict
            )
            self.aruco_detector = cv2.aruco.ArucoDetector(self.aruco_dict, self.detector_params)

            # Tag ID -> its four corners in the target frame
            board_ids = np.asarray(self.board.getIds()).flatten()
            self._tag_points = {
                int(tag_id): np.asarray(obj, dtype=np.float64).reshape(4, 3)
                for tag_id, obj in zip(board_ids, self.board.getObjPoints())
            }
        else:
            self.board = cv2.aruco.CharucoBoard(
                (target.tag_cols, target.tag_rows),
                target.tag_size,
                target.tag_size * target.tag_spacing,
                self.aruco_dict
            )
            charuco_params = cv2.aruco.CharucoParameters()
            self.charuco_detector = cv2.aruco.CharucoDetector(
                self.board, charuco_params, self.detector_params
            )
            self._corner_points = np.asarray(self.board.getChessboardCorners(), dtype=np.float64)

    def _configure_detector_params(self, cfg: Dict[str, Any]):
        """Configure ArUco detector parameters from config."""
        param_map = {
            'adaptive_thresh_win_size_min': 'adaptiveThreshWinSizeMin',
            'adaptive_thresh_win_size_max': 'adaptiveThreshWinSizeMax',
            'adaptive_thresh_win_size_step': 'adaptiveThreshWinSizeStep',
            'adaptive_thresh_constant': 'adaptiveThreshConstant',
            'min_marker_perimeter_rate': 'minMarkerPerimeterRate',
            'max_marker_perimeter_rate': 'maxMarkerPerimeterRate',
            'min_distance_to_border': 'minDistanceToBorder',
            'corner_refinement_win_size': 'cornerRefinementWinSize',
            'corner_refinement_max_iterations': 'cornerRefinementMaxIterations',
        }

        for yaml_key, cv_attr in param_map.items():
            if yaml_key in cfg:
                setattr(self.detector_params, cv_attr, cfg[yaml_key])

        if 'corner_refinement_method' in cfg:
            method_map = {
                'CORNER_REFINE_NONE': cv2.aruco.CORNER_REFINE_NONE,
                'CORNER_REFINE_SUBPIX': cv2.aruco.CORNER_REFINE_SUBPIX,
                'CORNER_REFINE_CONTOUR': cv2.aruco.CORNER_REFINE_CONTOUR,
                'CORNER_REFINE_APRILTAG': cv2.aruco.CORNER_REFINE_APRILTAG,
            }
            method = cfg['corner_refinement_method']
            if method in method_map:
                self.detector_params.cornerRefinementMethod = method_map[method]

    def detect(self, image: np.ndarray,
               camera_matrix: Optional[np.ndarray] = None,
               dist_coeffs: Optional[np.ndarray] = None,
               timestamp: int = 0) -> DetectionRecord:
        """
        Detect the calibration target in an image.

        Args:
            image: Input image (BGR or grayscale)
            camera_matrix: 3x3 camera intrinsic matrix (optional, enables
                sub-pixel refinement)
            dist_coeffs: Distortion coefficients (optional)
            timestamp: Capture time in nanoseconds

        Returns:
            DetectionRecord, with ``detected`` False when the target was not found
        """
        if len(image.shape) == 3:
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        else:
            gray = image.copy()

        if self.target.target_type == 'aprilgrid':
            ids, corners = self._detect_tags(gray)
        else:
            ids, corners = self._detect_charuco(gray)

        record = DetectionRecord(timestamp=timestamp, target=self.target)
        if len(ids) == 0 or sum(len(c) for c in corners) < MIN_POINTS:
            return record

        if camera_matrix is not None and dist_coeffs is not None:
            stacked = np.vstack(corners).astype(np.float32).reshape(-1, 1, 2)
            stacked = cv2.cornerSubPix(
                gray, stacked,
                winSize=(5, 5),
                zeroZone=(-1, -1),
                criteria=(cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 30, 0.001)
            )
            stacked = stacked.reshape(-1, 2)
            k = self.target.points_per_feature
            corners = [stacked[i * k:(i + 1) * k] for i in range(len(ids))]

        for fid, kps in zip(ids, corners):
            record.observations[fid] = Observation(
                keypoints=np.asarray(kps, dtype=np.float64).reshape(-1, 2),
                object_points=self.get_object_points(fid),
            )
        record.detected = True

        return record

    def _detect_tags(self, gray: np.ndarray):
        marker_corners, marker_ids, _ = self.aruco_detector.detectMarkers(gray)
        if marker_ids is None:
            return [], []

        ids, corners = [], []
        for tag_corners, tag_id in zip(marker_corners, marker_ids.flatten()):
            # Markers from the same dictionary that are not part of this grid
            if int(tag_id) not in self._tag_points:
                continue
            ids.append(int(tag_id))
            corners.append(np.asarray(tag_corners).reshape(4, 2))
        return ids, corners

    def _detect_charuco(self, gray: np.ndarray):
        charuco_corners, charuco_ids, _, _ = self.charuco_detector.detectBoard(gray)
        if charuco_corners is None or charuco_ids is None:
            return [], []

        ids = [int(i) for i in charuco_ids.flatten()]
        corners = [c.reshape(1, 2) for c in np.asarray(charuco_corners)]
        return ids, corners

    def get_object_points(self, feature_id: int) -> np.ndarray:
        """Get the 3D target-frame coordinates of one feature's points."""
        if self.target.target_type == 'aprilgrid':
            return self._tag_points[feature_id].copy()
        return self._corner_points[feature_id].reshape(1, 3).copy()

    def draw(self, image: np.ndarray, record: DetectionRecord) -> np.ndarray:
        """Draw the detected features of a record on a copy of the image."""
        vis_image = image.copy() if len(image.shape) == 3 else cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        if not record.observations:
            return vis_image

        ids = np.array(record.ids, dtype=np.int32).reshape(-1, 1)
        if self.target.target_type == 'aprilgrid':
            corners = [
                record.observations[fid].keypoints.astype(np.float32).reshape(1, 4, 2)
                for fid in record.ids
            ]
            cv2.aruco.drawDetectedMarkers(vis_image, corners, ids)
        else:
            corners = record.keypoints().astype(np.float32).reshape(-1, 1, 2)
            cv2.aruco.drawDetectedCornersCharuco(vis_image, corners, ids)

        return vis_image

    def generate_board_image(self, pixels_per_meter: int = 2000,
                             margin_pixels: int = 50) -> np.ndarray:
        """
        Generate a printable target image.

        Args:
            pixels_per_meter: Resolution in pixels per meter
            margin_pixels: White margin around the target

        Returns:
            Target image as numpy array
        """
        t = self.target
        if t.target_type == 'aprilgrid':
            spacing = t.tag_size * t.tag_spacing
            width_m = t.tag_cols * t.tag_size + (t.tag_cols - 1) * spacing
            height_m = t.tag_rows * t.tag_size + (t.tag_rows - 1) * spacing
        else:
            width_m = t.tag_cols * t.tag_size
            height_m = t.tag_rows * t.tag_size

        board_w = int(width_m * pixels_per_meter)
        board_h = int(height_m * pixels_per_meter)

        board_img = self.board.generateImage((board_w, board_h))

        result = np.ones((board_h + 2 * margin_pixels, board_w + 2 * margin_pixels),
                         dtype=np.uint8) * 255
        result[margin_pixels:margin_pixels + board_img.shape[0],
               margin_pixels:margin_pixels + board_img.shape[1]] = board_img

        return result
