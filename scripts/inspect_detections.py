#!/usr/bin/env python3
"""
Inspect target detections.

Detects the calibration target in a single image and shows the result, or,
given a stored detection file, overlays its image points and the points
reprojected with the camera intrinsics.

Usage:
    python3 inspect_detections.py --target-config aprilgrid.yaml --image 1403709383937837056.png
    python3 inspect_detections.py --target-config aprilgrid.yaml --image 1403709383937837056.png \
        --detection grid0/cam0/1403709383937837056.csv --intrinsics cam0.yaml
"""

import argparse
import os
import sys

import cv2
import numpy as np

# Add package to path for standalone execution
try:
    from camera_calib_data.calib_target import load_calib_target
    from camera_calib_data.detection_record import load_detection
    from camera_calib_data.errors import CalibDataError
    from camera_calib_data.target_detector import TargetDetector
    from camera_calib_data.utils import load_intrinsics, draw_calib_validation
except ImportError:
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    from camera_calib_data.calib_target import load_calib_target
    from camera_calib_data.detection_record import load_detection
    from camera_calib_data.errors import CalibDataError
    from camera_calib_data.target_detector import TargetDetector
    from camera_calib_data.utils import load_intrinsics, draw_calib_validation


def project_detection(record, intrinsics):
    """Reproject a detection's target points through a PnP pose estimate."""
    object_points = record.object_points()
    image_points = record.keypoints()
    if object_points is None or len(object_points) < 4:
        return None

    K = intrinsics['camera_matrix']
    D = intrinsics['dist_coeffs']
    if intrinsics['is_fisheye']:
        undistorted = cv2.fisheye.undistortPoints(image_points.reshape(-1, 1, 2), K, D)
        success, rvec, tvec = cv2.solvePnP(object_points, undistorted.reshape(-1, 2),
                                           np.eye(3), None)
        if not success:
            return None
        projected, _ = cv2.fisheye.projectPoints(object_points.reshape(-1, 1, 3), rvec, tvec, K, D)
    else:
        success, rvec, tvec = cv2.solvePnP(object_points, image_points, K, D)
        if not success:
            return None
        projected, _ = cv2.projectPoints(object_points, rvec, tvec, K, D)

    return projected.reshape(-1, 2)


def main():
    parser = argparse.ArgumentParser(description='Inspect calibration target detections')
    parser.add_argument('--target-config', type=str, required=True,
                       help='Path to the calibration target YAML file')
    parser.add_argument('--target-prefix', type=str, default='',
                       help='Key prefix of the target parameters (default: none)')
    parser.add_argument('--image', '-i', type=str, required=True,
                       help='Image to inspect')
    parser.add_argument('--detection', '-d', type=str, default=None,
                       help='Stored detection file of the image')
    parser.add_argument('--intrinsics', type=str, default=None,
                       help='Camera intrinsics YAML, required with --detection')
    parser.add_argument('--output', '-o', type=str, default=None,
                       help='Save the visualization instead of showing it')
    args = parser.parse_args()

    image = cv2.imread(args.image)
    if image is None:
        print(f"  ✗ Could not load image: {args.image}")
        sys.exit(1)

    try:
        target = load_calib_target(args.target_config, args.target_prefix)
        detector = TargetDetector(target)

        if args.detection:
            if not args.intrinsics:
                print("ERROR: --intrinsics is required with --detection")
                sys.exit(1)
            record = load_detection(args.detection, target)
            intrinsics = load_intrinsics(args.intrinsics)
            projected = project_detection(record, intrinsics)
            if projected is None:
                print("  ✗ Pose estimation failed, showing detections only")
                vis = detector.draw(image, record)
            else:
                vis = draw_calib_validation(image, record.keypoints(), projected)
        else:
            record = detector.detect(image)
            vis = detector.draw(image, record)
    except CalibDataError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    print(f"  Image size: {image.shape[1]}x{image.shape[0]}")
    print(f"  Detected: {record.detected}")
    print(f"  Features: {record.num_observations} {record.ids}")

    if args.output:
        cv2.imwrite(args.output, vis)
        print(f"  Saved visualization to {args.output}")
    else:
        cv2.namedWindow('Target Detection', cv2.WINDOW_NORMAL)
        cv2.imshow('Target Detection', vis)
        print("\nPress any key to close...")
        cv2.waitKey(0)
        cv2.destroyAllWindows()


if __name__ == '__main__':
    main()
