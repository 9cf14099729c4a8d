#!/usr/bin/env python3
"""
Generate a printable image of the calibration target.

Usage:
    python3 generate_target.py --target-config config/aprilgrid.yaml \
        --target-prefix calib_target -o aprilgrid.png --dpi 300
"""

import argparse
import os
import sys

import cv2

# Add package to path for standalone execution
try:
    from camera_calib_data.calib_target import load_calib_target
    from camera_calib_data.errors import CalibDataError
    from camera_calib_data.target_detector import TargetDetector
except ImportError:
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    from camera_calib_data.calib_target import load_calib_target
    from camera_calib_data.errors import CalibDataError
    from camera_calib_data.target_detector import TargetDetector


def main():
    parser = argparse.ArgumentParser(
        description='Generate a printable calibration target image'
    )

    parser.add_argument('--target-config', type=str, required=True,
                       help='Path to the calibration target YAML file')
    parser.add_argument('--target-prefix', type=str, default='',
                       help='Key prefix of the target parameters (default: none)')
    parser.add_argument('--dpi', type=int, default=300,
                       help='Output resolution in DPI (default: 300)')
    parser.add_argument('--margin', type=float, default=20.0,
                       help='Margin around the target in mm (default: 20)')
    parser.add_argument('--output', '-o', type=str, default='calib_target.png',
                       help='Output image path (default: calib_target.png)')
    parser.add_argument('--no-info', action='store_true',
                       help='Do not add info text to the output')

    args = parser.parse_args()

    try:
        target = load_calib_target(args.target_config, args.target_prefix)
    except CalibDataError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    detector = TargetDetector(target)

    pixels_per_meter = args.dpi / 0.0254
    margin_px = int(args.margin * args.dpi / 25.4)
    target_img = detector.generate_board_image(int(pixels_per_meter), margin_px)

    if not args.no_info:
        target_img = cv2.cvtColor(target_img, cv2.COLOR_GRAY2BGR)
        info_text = (
            f"{target.target_type} | {target.tag_rows}x{target.tag_cols} | "
            f"Size: {target.tag_size * 1000:.1f}mm | Spacing: {target.tag_spacing} | "
            f"Dict: {target.aruco_dictionary}"
        )
        font = cv2.FONT_HERSHEY_SIMPLEX
        font_scale = args.dpi / 300.0
        thickness = max(1, int(args.dpi / 150))
        (_, text_height), _ = cv2.getTextSize(info_text, font, font_scale, thickness)
        cv2.putText(target_img, info_text, (margin_px, margin_px // 2 + text_height // 2),
                   font, font_scale, (0, 0, 0), thickness)

    if not cv2.imwrite(args.output, target_img):
        print(f"ERROR: Failed to write {args.output}")
        sys.exit(1)

    height, width = target_img.shape[:2]
    print(f"\nCalibration target generated: {args.output}")
    print(f"  Image resolution: {width} x {height} pixels @ {args.dpi} DPI")
    print("\nIMPORTANT: When printing, ensure:")
    print("  1. Print at 100% scale (no fit-to-page)")
    print("  2. Mount on rigid, flat surface")
    print(f"  3. Verify tag size with ruler: should be exactly {target.tag_size * 1000:.1f} mm")


if __name__ == '__main__':
    main()
