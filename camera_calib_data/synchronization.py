"""
Time synchronization of per-camera detection streams.

Every stream is a list of DetectionRecords sorted by strictly increasing
timestamp. The synchronizers below join streams on equal timestamps and
restrict each joined group to the feature IDs seen by every camera, so that
index ``i`` of every output stream refers to the same instant and the same
target features.
"""

import logging
from typing import List, Sequence, Set, Tuple

from .detection_record import DetectionRecord

logger = logging.getLogger(__name__)


def common_ids(records: Sequence[DetectionRecord]) -> Set[int]:
    """Feature IDs observed by every record."""
    if not records:
        return set()
    ids = set(records[0].observations)
    for record in records[1:]:
        ids &= set(record.observations)
    return ids


def intersect(records: Sequence[DetectionRecord]) -> List[DetectionRecord]:
    """
    Keep only the feature IDs observed by all records.

    The records are assumed to share a timestamp; this is not checked.
    The inputs are left untouched and new records are returned in input
    order. An empty intersection yields records with no observations.
    """
    ids = common_ids(records)
    return [record.subset(ids) for record in records]


def sync_stereo(grids0: Sequence[DetectionRecord],
                grids1: Sequence[DetectionRecord],
                drop_empty: bool) -> Tuple[List[DetectionRecord], List[DetectionRecord]]:
    """
    Merge-join two detection streams on timestamp.

    Args:
        grids0: Stream of the first camera
        grids1: Stream of the second camera
        drop_empty: Discard timestamps whose intersection is empty

    Returns:
        Tuple of two index-aligned lists of intersected records
    """
    out0: List[DetectionRecord] = []
    out1: List[DetectionRecord] = []

    i = 0
    j = 0
    while i < len(grids0) and j < len(grids1):
        ts0 = grids0[i].timestamp
        ts1 = grids1[j].timestamp

        if ts0 > ts1:
            j += 1
            continue
        if ts0 < ts1:
            i += 1
            continue

        grid0, grid1 = intersect([grids0[i], grids1[j]])
        if grid0.observations or not drop_empty:
            out0.append(grid0)
            out1.append(grid1)

        i += 1
        j += 1

    return out0, out1


def extract_common_calib_data(grids0: Sequence[DetectionRecord],
                              grids1: Sequence[DetectionRecord]
                              ) -> Tuple[List[DetectionRecord], List[DetectionRecord]]:
    """
    Align two streams and keep only the features seen by both cameras.
    Timestamps without any common feature are kept with empty observations.
    """
    return sync_stereo(grids0, grids1, drop_empty=False)


def sync_multicam(streams: Sequence[Sequence[DetectionRecord]]) -> List[List[DetectionRecord]]:
    """
    Join N detection streams on timestamps observed by every camera.

    A timestamp missing from any stream is skipped entirely. When a camera's
    cursor has fallen out of step it is advanced until all cameras agree on
    the timestamp; if that runs any stream out of data, synchronization
    stops and the results gathered so far are returned.

    Args:
        streams: One timestamp-sorted stream per camera

    Returns:
        One list of intersected records per camera, all of equal length
    """
    nb_cams = len(streams)
    results: List[List[DetectionRecord]] = [[] for _ in range(nb_cams)]
    if nb_cams == 0:
        return results

    ts_count = {}
    for stream in streams:
        for record in stream:
            ts_count[record.timestamp] = ts_count.get(record.timestamp, 0) + 1

    cursors = [0] * nb_cams

    def at(cam_idx: int, ts: int) -> bool:
        idx = cursors[cam_idx]
        return idx < len(streams[cam_idx]) and streams[cam_idx][idx].timestamp == ts

    for ts in sorted(ts_count):
        # Not every camera saw the target here, step over it
        if ts_count[ts] != nb_cams:
            for cam_idx in range(nb_cams):
                if at(cam_idx, ts):
                    cursors[cam_idx] += 1
            continue

        # Catch up cameras whose cursor is not on this timestamp yet
        ready = [at(cam_idx, ts) for cam_idx in range(nb_cams)]
        while not all(ready):
            for cam_idx in range(nb_cams):
                if not ready[cam_idx]:
                    cursors[cam_idx] += 1
                if cursors[cam_idx] >= len(streams[cam_idx]):
                    logger.debug("Stream %d ran out of data at timestamp %d, "
                                 "stopping with %d synchronized timestamps",
                                 cam_idx, ts, len(results[0]))
                    return results
            ready = [at(cam_idx, ts) for cam_idx in range(nb_cams)]

        records = [streams[cam_idx][cursors[cam_idx]] for cam_idx in range(nb_cams)]
        for cam_idx, record in enumerate(intersect(records)):
            results[cam_idx].append(record)
            cursors[cam_idx] += 1

    return results
