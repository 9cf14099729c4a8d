#!/usr/bin/env python3
"""
Synchronize preprocessed detections of several cameras.

Keeps only the timestamps observed by every camera and, per timestamp, only
the target features every camera detected. The synchronized detections can
be written to a new directory per camera.

Usage:
    python3 sync_calib_data.py --data-dirs grid0/cam0 grid0/cam1 [grid0/cam2 ...] \
        --output-dir /path/to/synced
"""

import argparse
import logging
import os
import sys

import numpy as np

# Add package to path for standalone execution
try:
    from camera_calib_data.calib_data import (
        load_camera_calib_data, load_stereo_calib_data, load_multicam_calib_data
    )
    from camera_calib_data.detection_record import save_detection, DETECTION_EXT
    from camera_calib_data.errors import CalibDataError
    from camera_calib_data.synchronization import extract_common_calib_data
except ImportError:
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    from camera_calib_data.calib_data import (
        load_camera_calib_data, load_stereo_calib_data, load_multicam_calib_data
    )
    from camera_calib_data.detection_record import save_detection, DETECTION_EXT
    from camera_calib_data.errors import CalibDataError
    from camera_calib_data.synchronization import extract_common_calib_data


def main():
    parser = argparse.ArgumentParser(
        description='Synchronize per-camera calibration detections'
    )

    parser.add_argument('--data-dirs', type=str, nargs='+', required=True,
                       help='Detection directory of every camera, in camera order')
    parser.add_argument('--mode', choices=['stereo', 'common', 'multicam'], default=None,
                       help='stereo: drop timestamps without common features, '
                            'common: keep them, multicam: N cameras '
                            '(default: stereo for two dirs, multicam otherwise)')
    parser.add_argument('--output-dir', '-o', type=str, default=None,
                       help='Write synchronized detections to <output-dir>/cam<i>')
    parser.add_argument('--verbose', '-v', action='store_true',
                       help='Verbose output')

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(levelname)s %(name)s: %(message)s')

    mode = args.mode or ('stereo' if len(args.data_dirs) == 2 else 'multicam')
    if mode in ('stereo', 'common') and len(args.data_dirs) != 2:
        print(f"ERROR: mode '{mode}' needs exactly two data dirs")
        sys.exit(1)

    try:
        if mode == 'stereo':
            synced = list(load_stereo_calib_data(*args.data_dirs))
        elif mode == 'common':
            grids0 = load_camera_calib_data(args.data_dirs[0])
            grids1 = load_camera_calib_data(args.data_dirs[1])
            synced = list(extract_common_calib_data(grids0, grids1))
        else:
            calib_data = load_multicam_calib_data(len(args.data_dirs), args.data_dirs)
            synced = [calib_data[cam_idx] for cam_idx in range(len(args.data_dirs))]
    except CalibDataError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    print("\n" + "="*60)
    print("SYNCHRONIZATION SUMMARY")
    print("="*60)
    for cam_idx, (data_dir, grids) in enumerate(zip(args.data_dirs, synced)):
        avg = np.mean([g.num_observations for g in grids]) if grids else 0.0
        print(f"  cam{cam_idx} ({data_dir}): {len(grids)} detections, "
              f"avg {avg:.1f} common features")

    if args.output_dir:
        try:
            for cam_idx, grids in enumerate(synced):
                cam_dir = os.path.join(args.output_dir, f"cam{cam_idx}")
                for grid in grids:
                    save_detection(grid, os.path.join(cam_dir, f"{grid.timestamp}{DETECTION_EXT}"))
        except CalibDataError as e:
            print(f"ERROR: {e}")
            sys.exit(1)
        print(f"\n✓ Synchronized detections saved to: {args.output_dir}")


if __name__ == '__main__':
    main()
