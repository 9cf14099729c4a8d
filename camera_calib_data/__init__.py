# camera_calib_data package
"""
Calibration data preparation for multi-camera systems.

This package detects a calibration target in per-camera image directories,
stores the detections, and aligns the detection streams of several cameras
in time so that every aligned group only holds target features observed by
all cameras.
"""

from .calib_target import CalibTarget, load_calib_target
from .detection_record import DetectionRecord, Observation, save_detection, load_detection
from .synchronization import intersect, sync_stereo, extract_common_calib_data, sync_multicam
from .calib_data import (
    preprocess_camera_data, preprocess_stereo_data,
    load_camera_calib_data, load_stereo_calib_data, load_multicam_calib_data,
)
from .errors import CalibDataError, InputNotFound, ParseFailure, CountMismatch, WriteFailure

__all__ = [
    'CalibTarget',
    'load_calib_target',
    'DetectionRecord',
    'Observation',
    'save_detection',
    'load_detection',
    'intersect',
    'sync_stereo',
    'extract_common_calib_data',
    'sync_multicam',
    'preprocess_camera_data',
    'preprocess_stereo_data',
    'load_camera_calib_data',
    'load_stereo_calib_data',
    'load_multicam_calib_data',
    'CalibDataError',
    'InputNotFound',
    'ParseFailure',
    'CountMismatch',
    'WriteFailure',
]
