"""
Calibration target geometry and its YAML configuration.
"""

import os
import logging
from dataclasses import dataclass, asdict
from typing import Dict, Any

import yaml

from .errors import InputNotFound, ParseFailure

logger = logging.getLogger(__name__)


TARGET_TYPES = ('aprilgrid', 'charuco')

DEFAULT_DICTIONARIES = {
    'aprilgrid': 'DICT_APRILTAG_36h11',
    'charuco': 'DICT_6X6_250',
}


@dataclass(frozen=True)
class CalibTarget:
    """
    Geometry of the calibration target shared by every detection of a run.

    For an ``aprilgrid`` the features are the tags themselves: ``tag_rows`` x
    ``tag_cols`` square tags of side ``tag_size`` (meters), separated by
    ``tag_size * tag_spacing``. Every tag contributes four corners.

    For a ``charuco`` board ``tag_rows`` x ``tag_cols`` are the chessboard
    squares of side ``tag_size``, ``tag_spacing`` is the marker to square
    length ratio, and the features are the inner chessboard corners.
    """
    target_type: str = 'aprilgrid'
    tag_rows: int = 6
    tag_cols: int = 6
    tag_size: float = 0.088
    tag_spacing: float = 0.3
    aruco_dictionary: str = ''

    def __post_init__(self):
        if self.target_type not in TARGET_TYPES:
            raise ValueError(f"Unknown target type: {self.target_type}")
        if self.tag_rows <= 0 or self.tag_cols <= 0:
            raise ValueError(f"Invalid target size: {self.tag_rows}x{self.tag_cols}")
        if not self.aruco_dictionary:
            # Frozen dataclass, so bypass __setattr__ for the default
            object.__setattr__(self, 'aruco_dictionary',
                               DEFAULT_DICTIONARIES[self.target_type])

    @property
    def points_per_feature(self) -> int:
        """Number of image points stored for each feature ID."""
        return 4 if self.target_type == 'aprilgrid' else 1

    @property
    def num_features(self) -> int:
        """Number of feature IDs the target can produce."""
        if self.target_type == 'aprilgrid':
            return self.tag_rows * self.tag_cols
        return (self.tag_rows - 1) * (self.tag_cols - 1)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def __str__(self) -> str:
        return '\n'.join(f"{key}: {value}" for key, value in self.to_dict().items())


def _lookup(config: Dict[str, Any], key: str) -> Any:
    """Walk a dotted key path through nested mappings."""
    node = config
    for part in key.split('.'):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(key)
        node = node[part]
    return node


def load_calib_target(target_file: str, prefix: str = '') -> CalibTarget:
    """
    Load the calibration target geometry from a YAML file.

    Args:
        target_file: Path to the YAML file
        prefix: Optional dotted key prefix the target parameters live under,
            e.g. ``calib_target`` for ``calib_target: {tag_rows: 6, ...}``

    Returns:
        CalibTarget

    Raises:
        InputNotFound: The file does not exist
        ParseFailure: The file is not valid YAML or a parameter is missing
    """
    if not os.path.isfile(target_file):
        logger.error("Failed to load target file [%s]!", target_file)
        raise InputNotFound(f"Target file not found: {target_file}")

    try:
        with open(target_file, 'r') as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ParseFailure(f"Invalid YAML in target file {target_file}: {e}") from e

    parent = f"{prefix}." if prefix else ''

    params = {}
    try:
        for key in ('tag_rows', 'tag_cols', 'tag_size', 'tag_spacing'):
            params[key] = _lookup(config, parent + key)
    except KeyError as e:
        raise ParseFailure(f"Missing target parameter {e} in {target_file}") from e

    for key in ('target_type', 'aruco_dictionary'):
        try:
            params[key] = _lookup(config, parent + key)
        except KeyError:
            pass

    try:
        return CalibTarget(
            target_type=str(params.get('target_type', 'aprilgrid')),
            tag_rows=int(params['tag_rows']),
            tag_cols=int(params['tag_cols']),
            tag_size=float(params['tag_size']),
            tag_spacing=float(params['tag_spacing']),
            aruco_dictionary=str(params.get('aruco_dictionary', '')),
        )
    except (TypeError, ValueError) as e:
        raise ParseFailure(f"Invalid target parameters in {target_file}: {e}") from e
