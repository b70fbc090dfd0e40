"""Descriptor search between two frames for map initialization."""

from __future__ import annotations

import math
from typing import Callable, Iterable, Optional, Sequence

from slamgeom.orb_matcher import (
    TH_LOW,
    KeyPoint,
    RotationHistogram,
    descriptor_distance,
)

FeaturesInArea = Callable[[float, float, float, int, int], Iterable[int]]


class ORBMatcher:
    """Matches ORB keypoints between frames using a nearest-neighbour ratio test.

    ``nn_ratio`` is the largest allowed ratio between the best and the second
    best descriptor distance; ``check_orientation`` enables rejection of
    matches whose rotation disagrees with the dominant rotations.
    """

    def __init__(self, nn_ratio: float = 0.6, check_orientation: bool = True) -> None:
        self.nn_ratio = float(nn_ratio)
        self.check_orientation = bool(check_orientation)

    def search_for_initialization(
        self,
        keys1: Sequence[KeyPoint],
        descriptors1: Sequence,
        keys2: Sequence[KeyPoint],
        descriptors2: Sequence,
        prev_matched: Sequence[Sequence[float]],
        features_in_area: FeaturesInArea,
        window_size: float = 10,
    ) -> tuple[list[Optional[int]], list[tuple[float, float]]]:
        """Match keypoints of the first pyramid level of frame 1 into frame 2.

        ``prev_matched`` holds, for every keypoint of frame 1, the position in
        frame 2 around which to search. ``features_in_area(x, y, radius,
        min_level, max_level)`` yields the indices of frame 2 keypoints in
        that window.

        Returns the match of every frame 1 keypoint (a frame 2 index or
        ``None``) and the search positions updated to the matched keypoints.
        """
        if len(prev_matched) != len(keys1):
            raise ValueError("prev_matched must hold one position per keypoint of frame 1")
        if len(descriptors1) != len(keys1) or len(descriptors2) != len(keys2):
            raise ValueError("every keypoint needs a descriptor")

        matches12: list[Optional[int]] = [None] * len(keys1)
        matches21: list[Optional[int]] = [None] * len(keys2)
        matched_distance = [math.inf] * len(keys2)
        histogram = RotationHistogram() if self.check_orientation else None

        for i1, kp1 in enumerate(keys1):
            level = kp1.octave
            if level > 0:
                continue

            px, py = prev_matched[i1]
            candidates = list(features_in_area(px, py, window_size, level, level))
            if not candidates:
                continue

            d1 = descriptors1[i1]
            best_dist = best_dist2 = math.inf
            best_idx: Optional[int] = None

            for i2 in candidates:
                dist = descriptor_distance(d1, descriptors2[i2])
                if matched_distance[i2] <= dist:
                    continue
                if dist < best_dist:
                    best_dist2, best_dist, best_idx = best_dist, dist, i2
                elif dist < best_dist2:
                    best_dist2 = dist

            if best_idx is None or best_dist > TH_LOW:
                continue
            if not best_dist < best_dist2 * self.nn_ratio:
                continue

            previous = matches21[best_idx]
            if previous is not None:
                matches12[previous] = None
            matches12[i1] = best_idx
            matches21[best_idx] = i1
            matched_distance[best_idx] = best_dist

            if histogram is not None:
                histogram.add(kp1.angle, keys2[best_idx].angle, i1)

        if histogram is not None:
            for idx in histogram.rejected():
                matches12[idx] = None

        updated = [
            (keys2[m].x, keys2[m].y) if m is not None else (float(p[0]), float(p[1]))
            for p, m in zip(prev_matched, matches12)
        ]
        return matches12, updated