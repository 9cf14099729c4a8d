#!/usr/bin/env python3
"""
Unit tests for detection persistence and calibration data loading.
"""

import unittest
import numpy as np
import os
import sys
import tempfile
from unittest import mock

# Add package to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from camera_calib_data.calib_target import CalibTarget
from camera_calib_data.detection_record import (
    DetectionRecord, Observation, save_detection, load_detection
)
from camera_calib_data.calib_data import (
    load_camera_calib_data,
    load_stereo_calib_data,
    load_multicam_calib_data,
)
from camera_calib_data.errors import (
    CalibDataError, InputNotFound, ParseFailure, CountMismatch, WriteFailure
)


TARGET = CalibTarget(tag_rows=6, tag_cols=6, tag_size=0.088, tag_spacing=0.3)


def make_record(ts, ids, detected=True):
    observations = {
        fid: Observation(
            keypoints=np.arange(8, dtype=np.float64).reshape(4, 2) + fid * 10.0,
            object_points=np.arange(12, dtype=np.float64).reshape(4, 3) * 0.01 + fid,
        )
        for fid in ids
    }
    return DetectionRecord(timestamp=ts, target=TARGET,
                           observations=observations, detected=detected)


def write_stream(data_dir, entries):
    for ts, ids in entries:
        save_detection(make_record(ts, ids, detected=bool(ids)),
                       os.path.join(data_dir, f"{ts}.csv"))


class TestDetectionRecord(unittest.TestCase):
    """Test the detection record helpers."""

    def test_ids_sorted(self):
        """Test feature IDs are listed in ascending order."""
        record = make_record(1, [5, 1, 3])
        self.assertEqual(record.ids, [1, 3, 5])
        self.assertEqual(record.num_observations, 3)

    def test_subset(self):
        """Test subset keeps only requested IDs and leaves the record alone."""
        record = make_record(1, [1, 2, 3])
        sub = record.subset([2, 3, 99])
        self.assertEqual(sub.ids, [2, 3])
        self.assertIs(sub.target, record.target)
        self.assertEqual(record.ids, [1, 2, 3])

    def test_stacked_points(self):
        """Test keypoints and object points stack in ID order."""
        record = make_record(1, [2, 1])
        self.assertEqual(record.keypoints().shape, (8, 2))
        self.assertEqual(record.object_points().shape, (8, 3))
        np.testing.assert_array_equal(record.keypoints()[:4],
                                      record.observations[1].keypoints)

    def test_stacked_points_empty(self):
        """Test stacking an empty record gives empty arrays."""
        record = DetectionRecord(timestamp=1, target=TARGET)
        self.assertEqual(record.keypoints().shape, (0, 2))
        self.assertEqual(record.object_points().shape, (0, 3))


class TestPersistence(unittest.TestCase):
    """Test saving and loading detection files."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.tmp_dir = self.tmp.name

    def tearDown(self):
        self.tmp.cleanup()

    def test_save_load(self):
        """Test a detection survives a save and load."""
        record = make_record(1403709383937837056, [0, 7, 35])
        path = os.path.join(self.tmp_dir, "1403709383937837056.csv")

        save_detection(record, path)
        loaded = load_detection(path)

        self.assertEqual(loaded.timestamp, 1403709383937837056)
        self.assertTrue(loaded.detected)
        self.assertEqual(loaded.target, TARGET)
        self.assertEqual(loaded.ids, [0, 7, 35])
        for fid in record.ids:
            np.testing.assert_array_almost_equal(
                loaded.observations[fid].keypoints, record.observations[fid].keypoints)
            np.testing.assert_array_almost_equal(
                loaded.observations[fid].object_points, record.observations[fid].object_points)

    def test_save_load_not_detected(self):
        """Test saving a record without detections."""
        record = DetectionRecord(timestamp=42, target=TARGET, detected=False)
        path = os.path.join(self.tmp_dir, "42.csv")

        save_detection(record, path)
        loaded = load_detection(path, TARGET)

        self.assertFalse(loaded.detected)
        self.assertEqual(loaded.observations, {})
        self.assertIs(loaded.target, TARGET)

    def test_save_load_without_object_points(self):
        """Test missing object points load back as None."""
        record = DetectionRecord(
            timestamp=5, target=TARGET, detected=True,
            observations={3: Observation(keypoints=np.ones((4, 2)))}
        )
        path = os.path.join(self.tmp_dir, "5.csv")

        save_detection(record, path)
        loaded = load_detection(path)

        self.assertIsNone(loaded.observations[3].object_points)
        self.assertIsNone(loaded.object_points())

    def test_save_creates_directory(self):
        """Test missing output directories are created."""
        path = os.path.join(self.tmp_dir, "nested", "cam0", "1.csv")
        save_detection(make_record(1, [1]), path)
        self.assertTrue(os.path.isfile(path))

    def test_save_failure(self):
        """Test an unwritable path raises WriteFailure."""
        blocker = os.path.join(self.tmp_dir, "blocker")
        with open(blocker, 'w') as f:
            f.write("not a directory")

        with self.assertRaises(WriteFailure):
            save_detection(make_record(1, [1]), os.path.join(blocker, "1.csv"))

    def test_load_missing_file(self):
        """Test loading a missing detection file."""
        with self.assertRaises(InputNotFound):
            load_detection(os.path.join(self.tmp_dir, "missing.csv"))

    def test_load_malformed_row(self):
        """Test a row with too few columns is rejected."""
        path = os.path.join(self.tmp_dir, "1.csv")
        save_detection(make_record(1, [1]), path)
        with open(path, 'a') as f:
            f.write("1,2,3\n")

        with self.assertRaises(ParseFailure):
            load_detection(path)

    def test_load_missing_header(self):
        """Test a file without header is rejected."""
        path = os.path.join(self.tmp_dir, "1.csv")
        with open(path, 'w') as f:
            f.write("0,0,1.0,2.0,0.0,0.0,0.0\n")

        with self.assertRaises(ParseFailure):
            load_detection(path)

    def rewrite(self, path, keep):
        with open(path, 'r') as f:
            lines = f.readlines()
        with open(path, 'w') as f:
            f.writelines(keep(lines))

    def test_load_truncated_rows(self):
        """Test a file missing its last rows is rejected."""
        path = os.path.join(self.tmp_dir, "1.csv")
        save_detection(make_record(1, [1, 2]), path)
        self.rewrite(path, lambda lines: lines[:-2])

        with self.assertRaises(ParseFailure):
            load_detection(path)

    def test_load_header_only(self):
        """Test a file cut after its header is rejected."""
        path = os.path.join(self.tmp_dir, "1.csv")
        save_detection(make_record(1, [1]), path)
        self.rewrite(path, lambda lines: [l for l in lines if l.startswith('#')])

        with self.assertRaises(ParseFailure):
            load_detection(path)

    def test_load_tag_with_too_few_corners(self):
        """Test a tag with missing corners is rejected."""
        path = os.path.join(self.tmp_dir, "1.csv")
        save_detection(make_record(1, [1, 2]), path)
        # Without a row count in the header only the per-tag check applies
        self.rewrite(path, lambda lines: [l for l in lines
                                          if not l.startswith('# num_rows')
                                          and not l.startswith('2,2,')
                                          and not l.startswith('2,3,')])

        with self.assertRaises(ParseFailure):
            load_detection(path)

    def test_load_duplicate_corner(self):
        """Test a repeated corner index is rejected."""
        path = os.path.join(self.tmp_dir, "1.csv")
        save_detection(make_record(1, [1]), path)
        self.rewrite(path, lambda lines: [
            l.replace('1,3,', '1,2,', 1) if l.startswith('1,3,') else l for l in lines
        ])

        with self.assertRaises(ParseFailure):
            load_detection(path)

    def test_load_corners_in_index_order(self):
        """Test corners are ordered by index, not by row order."""
        path = os.path.join(self.tmp_dir, "1.csv")
        record = make_record(1, [1])
        save_detection(record, path)
        self.rewrite(path, lambda lines: [l for l in lines if l.startswith('#')]
                     + [l for l in lines if not l.startswith('#')][::-1])

        loaded = load_detection(path)

        np.testing.assert_array_almost_equal(loaded.observations[1].keypoints,
                                             record.observations[1].keypoints)

    def test_save_failure_leaves_no_partial_file(self):
        """Test a failed save leaves no file behind."""
        path = os.path.join(self.tmp_dir, "1.csv")

        with mock.patch('camera_calib_data.detection_record.os.replace',
                        side_effect=OSError("disk full")):
            with self.assertRaises(WriteFailure):
                save_detection(make_record(1, [1]), path)

        self.assertEqual(os.listdir(self.tmp_dir), [])

    def test_failed_overwrite_keeps_previous_file(self):
        """Test a failed save keeps the previous detection intact."""
        path = os.path.join(self.tmp_dir, "1.csv")
        save_detection(make_record(1, [1]), path)

        with mock.patch('camera_calib_data.detection_record.os.replace',
                        side_effect=OSError("disk full")):
            with self.assertRaises(WriteFailure):
                save_detection(make_record(1, [2, 3]), path)

        self.assertEqual(os.listdir(self.tmp_dir), ["1.csv"])
        self.assertEqual(load_detection(path).ids, [1])


class TestLoadCalibData(unittest.TestCase):
    """Test loading and synchronizing detection directories."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.tmp_dir = self.tmp.name

    def tearDown(self):
        self.tmp.cleanup()

    def cam_dir(self, name, entries):
        data_dir = os.path.join(self.tmp_dir, name)
        os.makedirs(data_dir)
        write_stream(data_dir, entries)
        return data_dir

    def test_load_sorted_by_timestamp(self):
        """Test detections are sorted numerically by timestamp."""
        # Lexical order of the file names differs from numeric order
        data_dir = self.cam_dir("cam0", [(900, [1]), (1000, [2]), (95, [3])])

        grids = load_camera_calib_data(data_dir)

        self.assertEqual([g.timestamp for g in grids], [95, 900, 1000])
        self.assertTrue(all(g.target is grids[0].target for g in grids))

    def test_detected_only(self):
        """Test filtering of records without detections."""
        data_dir = self.cam_dir("cam0", [(1, [1]), (2, []), (3, [2])])

        self.assertEqual([g.timestamp for g in load_camera_calib_data(data_dir)], [1, 3])
        self.assertEqual(
            [g.timestamp for g in load_camera_calib_data(data_dir, detected_only=False)],
            [1, 2, 3]
        )

    def test_ignores_other_files(self):
        """Test files of other types are ignored."""
        data_dir = self.cam_dir("cam0", [(1, [1])])
        with open(os.path.join(data_dir, "notes.txt"), 'w') as f:
            f.write("calibration run")

        self.assertEqual(len(load_camera_calib_data(data_dir)), 1)

    def test_missing_dir(self):
        """Test loading a missing directory."""
        with self.assertRaises(InputNotFound):
            load_camera_calib_data(os.path.join(self.tmp_dir, "missing"))

    def test_malformed_file(self):
        """Test a malformed detection file aborts loading."""
        data_dir = self.cam_dir("cam0", [(1, [1])])
        with open(os.path.join(data_dir, "2.csv"), 'w') as f:
            f.write("# timestamp: not-a-number\n")

        with self.assertRaises(ParseFailure):
            load_camera_calib_data(data_dir)

    def test_duplicate_timestamps(self):
        """Test two files with the same timestamp are rejected."""
        data_dir = self.cam_dir("cam0", [(1, [1])])
        save_detection(make_record(1, [2]), os.path.join(data_dir, "0001.csv"))

        with self.assertRaises(ParseFailure):
            load_camera_calib_data(data_dir)

    def test_file_name_timestamp_mismatch(self):
        """Test the header timestamp must match the file name."""
        data_dir = self.cam_dir("cam0", [(1, [1])])
        save_detection(make_record(999, [2]), os.path.join(data_dir, "5.csv"))

        with self.assertRaises(ParseFailure):
            load_camera_calib_data(data_dir)

    def test_load_stereo(self):
        """Test loading and synchronizing a stereo pair."""
        cam0 = self.cam_dir("cam0", [(10, [1, 2, 3]), (20, [4]), (40, [1])])
        cam1 = self.cam_dir("cam1", [(10, [2, 3, 5]), (30, [6]), (40, [2])])

        grids0, grids1 = load_stereo_calib_data(cam0, cam1)

        self.assertEqual([(g.timestamp, g.ids) for g in grids0], [(10, [2, 3])])
        self.assertEqual([(g.timestamp, g.ids) for g in grids1], [(10, [2, 3])])

    def test_load_stereo_missing_dir(self):
        """Test a missing stereo directory."""
        cam0 = self.cam_dir("cam0", [(10, [1])])
        with self.assertRaises(InputNotFound):
            load_stereo_calib_data(cam0, os.path.join(self.tmp_dir, "missing"))

    def test_load_multicam(self):
        """Test loading and synchronizing three cameras."""
        dirs = [
            self.cam_dir("cam0", [(1, [1, 2, 3]), (2, [1])]),
            self.cam_dir("cam1", [(1, [2, 3, 4]), (2, [1])]),
            self.cam_dir("cam2", [(1, [2, 3])]),
        ]

        calib_data = load_multicam_calib_data(3, dirs)

        self.assertEqual(sorted(calib_data), [0, 1, 2])
        for cam_idx in range(3):
            self.assertEqual([(g.timestamp, g.ids) for g in calib_data[cam_idx]],
                             [(1, [2, 3])])

    def test_load_multicam_empty_camera(self):
        """Test a camera without detections empties every stream."""
        dirs = [
            self.cam_dir("cam0", [(5, [1, 2])]),
            self.cam_dir("cam1", [(5, [1, 2])]),
            self.cam_dir("cam2", []),
        ]

        calib_data = load_multicam_calib_data(3, dirs)

        self.assertEqual(calib_data, {0: [], 1: [], 2: []})

    def test_load_multicam_count_mismatch(self):
        """Test camera count must match the directory count."""
        dirs = [self.cam_dir("cam0", [(1, [1])])]

        with self.assertRaises(CountMismatch):
            load_multicam_calib_data(2, dirs)

    def test_load_multicam_missing_dir(self):
        """Test a missing camera directory."""
        dirs = [self.cam_dir("cam0", [(1, [1])]), os.path.join(self.tmp_dir, "missing")]

        with self.assertRaises(CalibDataError):
            load_multicam_calib_data(2, dirs)


if __name__ == '__main__':
    unittest.main()
