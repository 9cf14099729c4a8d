"""
Per-camera detection records and their CSV persistence.

A detection file is named ``<timestamp>.csv`` and looks like::

    # timestamp: 1403709383937837056
    # detected: true
    # target_type: aprilgrid
    # tag_rows: 6
    # ...
    # num_rows: 8
    # columns: feature_id,corner_idx,kp_x,kp_y,p_x,p_y,p_z
    0,0,102.53,88.10,0.0,0.0,0.0
    ...
"""

import os
import logging
import tempfile
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import numpy as np
import yaml

from .calib_target import CalibTarget
from .errors import InputNotFound, ParseFailure, WriteFailure

logger = logging.getLogger(__name__)

DETECTION_EXT = '.csv'
CSV_COLUMNS = 'feature_id,corner_idx,kp_x,kp_y,p_x,p_y,p_z'


@dataclass
class Observation:
    """Image points (and board points, when known) of one target feature."""
    keypoints: np.ndarray                        # (k, 2) pixel coordinates
    object_points: Optional[np.ndarray] = None   # (k, 3) target frame, meters


@dataclass
class DetectionRecord:
    """One camera's observation of the calibration target at one timestamp."""
    timestamp: int
    target: CalibTarget
    observations: Dict[int, Observation] = field(default_factory=dict)
    detected: bool = False

    @property
    def ids(self) -> List[int]:
        """Observed feature IDs in ascending order."""
        return sorted(self.observations)

    @property
    def num_observations(self) -> int:
        return len(self.observations)

    def subset(self, ids: Iterable[int]) -> 'DetectionRecord':
        """
        Return a new record restricted to the given feature IDs.

        IDs not observed by this record are ignored. The observation values
        are shared with this record, the mapping itself is new.
        """
        keep = set(ids)
        return DetectionRecord(
            timestamp=self.timestamp,
            target=self.target,
            observations={fid: obs for fid, obs in self.observations.items() if fid in keep},
            detected=self.detected,
        )

    def keypoints(self) -> np.ndarray:
        """All image points stacked in feature ID order, shape (n, 2)."""
        if not self.observations:
            return np.zeros((0, 2))
        return np.vstack([self.observations[fid].keypoints for fid in self.ids])

    def object_points(self) -> Optional[np.ndarray]:
        """All board points stacked in feature ID order, or None if unknown."""
        if not self.observations:
            return np.zeros((0, 3))
        points = [self.observations[fid].object_points for fid in self.ids]
        if any(p is None for p in points):
            return None
        return np.vstack(points)


def save_detection(record: DetectionRecord, save_path: str):
    """
    Write a detection record to a CSV file.

    Raises:
        WriteFailure: The file or its directory could not be written
    """
    lines = [
        f"# timestamp: {record.timestamp}",
        f"# detected: {'true' if record.detected else 'false'}",
    ]
    for key, value in record.target.to_dict().items():
        lines.append(f"# {key}: {value}")

    rows = []
    for fid in record.ids:
        obs = record.observations[fid]
        for corner_idx, kp in enumerate(obs.keypoints):
            if obs.object_points is not None:
                p = obs.object_points[corner_idx]
            else:
                p = (float('nan'),) * 3
            rows.append(
                f"{fid},{corner_idx},{kp[0]:.10f},{kp[1]:.10f},"
                f"{p[0]:.10f},{p[1]:.10f},{p[2]:.10f}"
            )
    lines.append(f"# num_rows: {len(rows)}")
    lines.append(f"# columns: {CSV_COLUMNS}")
    lines.extend(rows)

    # Written to a temp file first so an interrupted run never leaves a
    # truncated detection behind
    tmp_path = None
    try:
        out_dir = os.path.dirname(save_path)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        with tempfile.NamedTemporaryFile('w', dir=out_dir or '.', suffix='.tmp',
                                         prefix='.' + os.path.basename(save_path),
                                         delete=False) as f:
            tmp_path = f.name
            f.write('\n'.join(lines) + '\n')
        os.replace(tmp_path, save_path)
    except OSError as e:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.remove(tmp_path)
        logger.error("Failed to save detection [%s]: %s", save_path, e)
        raise WriteFailure(f"Failed to save detection {save_path}: {e}") from e


def load_detection(data_path: str, target: Optional[CalibTarget] = None) -> DetectionRecord:
    """
    Load a detection record from a CSV file.

    Args:
        data_path: Path to the detection file
        target: Target geometry to attach to the record. When omitted it is
            rebuilt from the file header.

    Raises:
        InputNotFound: The file does not exist
        ParseFailure: The header or a data row is malformed, the row count
            differs from the header, or a feature has missing or repeated
            corners
    """
    if not os.path.isfile(data_path):
        raise InputNotFound(f"Detection file not found: {data_path}")

    with open(data_path, 'r') as f:
        content = f.read()

    # Header lines are "# key: value", i.e. YAML once the comment mark is gone
    header_lines = []
    rows = []
    for line in content.split('\n'):
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith('#'):
            header_lines.append(stripped[1:].strip())
        else:
            rows.append(stripped)

    try:
        header = yaml.safe_load('\n'.join(header_lines)) or {}
    except yaml.YAMLError as e:
        raise ParseFailure(f"Invalid header in {data_path}: {e}") from e
    if not isinstance(header, dict) or 'timestamp' not in header:
        raise ParseFailure(f"Missing timestamp in {data_path}")

    try:
        timestamp = int(header['timestamp'])
        detected = bool(header.get('detected', False))
        num_rows = header.get('num_rows')
        if num_rows is not None:
            num_rows = int(num_rows)
        if target is None:
            target = CalibTarget(
                target_type=str(header.get('target_type', 'aprilgrid')),
                tag_rows=int(header['tag_rows']),
                tag_cols=int(header['tag_cols']),
                tag_size=float(header['tag_size']),
                tag_spacing=float(header['tag_spacing']),
                aruco_dictionary=str(header.get('aruco_dictionary') or ''),
            )
    except (KeyError, TypeError, ValueError) as e:
        raise ParseFailure(f"Invalid header in {data_path}: {e}") from e

    if num_rows is not None and num_rows != len(rows):
        raise ParseFailure(f"Expected {num_rows} data rows in {data_path}, found {len(rows)}")

    # feature_id -> corner_idx -> (keypoint, object point)
    corners: Dict[int, Dict[int, tuple]] = {}
    for line_no, row in enumerate(rows):
        values = row.split(',')
        if len(values) != 7:
            raise ParseFailure(f"Expected 7 columns at data row {line_no} of {data_path}")
        try:
            fid = int(values[0])
            corner_idx = int(values[1])
            kp = [float(v) for v in values[2:4]]
            p = [float(v) for v in values[4:7]]
        except ValueError as e:
            raise ParseFailure(f"Invalid data row {line_no} of {data_path}: {e}") from e
        feature = corners.setdefault(fid, {})
        if corner_idx in feature:
            raise ParseFailure(
                f"Duplicate corner {corner_idx} of feature {fid} in {data_path}"
            )
        feature[corner_idx] = (kp, p)

    observations = {}
    for fid, feature in corners.items():
        if sorted(feature) != list(range(target.points_per_feature)):
            raise ParseFailure(
                f"Feature {fid} in {data_path} has corners {sorted(feature)}, "
                f"expected {target.points_per_feature}"
            )
        kps = [feature[idx][0] for idx in sorted(feature)]
        object_points = np.array([feature[idx][1] for idx in sorted(feature)])
        if np.all(np.isnan(object_points)):
            object_points = None
        observations[fid] = Observation(np.array(kps), object_points)

    return DetectionRecord(
        timestamp=timestamp,
        target=target,
        observations=observations,
        detected=detected,
    )
