#!/usr/bin/env python3
"""
Detect the calibration target in every camera's image directory.

Writes one detection file per image into each camera's output directory.
Already processed images are skipped, so the script can be re-run.

Usage:
    python3 preprocess_calib_data.py \
        --cameras-config /path/to/cameras.yaml \
        --target-config /path/to/aprilgrid.yaml \
        --target-prefix calib_target
"""

import argparse
import logging
import os
import sys

# Add package to path for standalone execution
try:
    from camera_calib_data.calib_target import load_calib_target
    from camera_calib_data.calib_data import (
        preprocess_camera_data, preprocess_camera_data_fov, preprocess_stereo_data
    )
    from camera_calib_data.errors import CalibDataError
    from camera_calib_data.utils import load_camera_config, load_intrinsics
except ImportError:
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    from camera_calib_data.calib_target import load_calib_target
    from camera_calib_data.calib_data import (
        preprocess_camera_data, preprocess_camera_data_fov, preprocess_stereo_data
    )
    from camera_calib_data.errors import CalibDataError
    from camera_calib_data.utils import load_camera_config, load_intrinsics


def has_fov(cam_config: dict) -> bool:
    return all(k in cam_config for k in ('image_size', 'lens_hfov', 'lens_vfov'))


def preprocess_camera(target, cam_name: str, cam_config: dict, intrinsics_dir: str,
                      imshow: bool) -> int:
    """Preprocess one camera from its config entry."""
    image_dir = cam_config['image_dir']
    output_dir = cam_config['output_dir']

    if 'intrinsics_file' in cam_config:
        intrinsics = load_intrinsics(os.path.join(intrinsics_dir, cam_config['intrinsics_file']))
        return preprocess_camera_data(target, image_dir,
                                      intrinsics['camera_matrix'], intrinsics['dist_coeffs'],
                                      output_dir, imshow)

    if has_fov(cam_config):
        return preprocess_camera_data_fov(target, image_dir, tuple(cam_config['image_size']),
                                          cam_config['lens_hfov'], cam_config['lens_vfov'],
                                          output_dir, imshow)

    raise ValueError(f"Camera {cam_name} needs intrinsics_file or image_size + lens FOV")


def main():
    parser = argparse.ArgumentParser(
        description='Detect the calibration target in per-camera image directories'
    )

    parser.add_argument('--cameras-config', type=str, required=True,
                       help='Path to cameras.yaml config file')
    parser.add_argument('--target-config', type=str, required=True,
                       help='Path to the calibration target YAML file')
    parser.add_argument('--target-prefix', type=str, default='',
                       help='Key prefix of the target parameters (default: none)')
    parser.add_argument('--intrinsics-dir', type=str, default='.',
                       help='Directory containing intrinsics YAML files (default: .)')
    parser.add_argument('--parallel', action='store_true',
                       help='Process a stereo pair given by image size and FOV in parallel')
    parser.add_argument('--imshow', action='store_true',
                       help='Show detections while processing')
    parser.add_argument('--verbose', '-v', action='store_true',
                       help='Verbose output')

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(levelname)s %(name)s: %(message)s')

    try:
        print("Loading configurations...")
        cameras = load_camera_config(args.cameras_config).get('cameras', {})
        target = load_calib_target(args.target_config, args.target_prefix)
    except CalibDataError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    if not cameras:
        print("ERROR: No cameras defined in config")
        sys.exit(1)

    print(f"\nTarget:\n{target}\n")

    cam_names = list(cameras)
    try:
        if args.parallel and len(cam_names) == 2 and all(has_fov(cameras[c]) for c in cam_names):
            cam0, cam1 = cameras[cam_names[0]], cameras[cam_names[1]]
            counts = preprocess_stereo_data(
                target,
                cam0['image_dir'], cam1['image_dir'],
                tuple(cam0['image_size']), tuple(cam1['image_size']),
                cam0['lens_hfov'], cam0['lens_vfov'],
                cam1['lens_hfov'], cam1['lens_vfov'],
                cam0['output_dir'], cam1['output_dir']
            )
            for cam_name, count in zip(cam_names, counts):
                print(f"  {cam_name}: {count} new detections")
        else:
            if args.parallel:
                print("WARNING: --parallel needs exactly two cameras given by image size and FOV")
            for cam_name in cam_names:
                print(f"Processing {cam_name} ...")
                count = preprocess_camera(target, cam_name, cameras[cam_name],
                                          args.intrinsics_dir, args.imshow)
                print(f"  {cam_name}: {count} new detections")
    except (CalibDataError, ValueError) as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    print("\n✓ Preprocessing complete!")


if __name__ == '__main__':
    main()
