"""Descriptor matching restricted to shared vocabulary nodes."""

from __future__ import annotations

from typing import Mapping, Optional, Sequence

from slamgeom.orb_matcher import (
    TH_LOW,
    KeyPoint,
    RotationHistogram,
    check_dist_epipolar_line,
    descriptor_distance,
)

FeatureVector = Mapping[int, Sequence[int]]

_NO_DISTANCE = 256


def _shared_nodes(features1: FeatureVector, features2: FeatureVector) -> list[int]:
    """Vocabulary nodes present in both feature vectors, in ascending order."""
    return sorted(set(features1) & set(features2))


def _check_lengths(name: str, keys: Sequence, *others: Sequence) -> None:
    for other in others:
        if len(other) != len(keys):
            raise ValueError(f"{name}: every keypoint needs one entry in each per-keypoint sequence")


def match_by_bow(
    features1: FeatureVector,
    features2: FeatureVector,
    keys1: Sequence[KeyPoint],
    keys2: Sequence[KeyPoint],
    descriptors1: Sequence,
    descriptors2: Sequence,
    valid1: Sequence[bool],
    valid2: Sequence[bool],
    nn_ratio: float = 0.6,
    check_orientation: bool = True,
) -> list[Optional[int]]:
    """Match keypoints of two keyframes that fall in the same vocabulary node.

    ``features1`` and ``features2`` map a vocabulary node to the keypoint
    indices it holds. ``valid1``/``valid2`` flag the keypoints that carry a
    usable map point; only those take part. Every keypoint of the second view
    is matched at most once.

    Returns, for every keypoint of the first view, the index of its match in
    the second view or ``None``.
    """
    _check_lengths("first view", keys1, descriptors1, valid1)
    _check_lengths("second view", keys2, descriptors2, valid2)

    matches12: list[Optional[int]] = [None] * len(keys1)
    matched2 = [False] * len(keys2)
    histogram = RotationHistogram() if check_orientation else None

    for node in _shared_nodes(features1, features2):
        candidates2 = features2[node]
        for idx1 in features1[node]:
            if not valid1[idx1]:
                continue
            d1 = descriptors1[idx1]

            best_dist1 = best_dist2 = _NO_DISTANCE
            best_idx2: Optional[int] = None
            for idx2 in candidates2:
                if matched2[idx2] or not valid2[idx2]:
                    continue
                dist = descriptor_distance(d1, descriptors2[idx2])
                if dist < best_dist1:
                    best_dist2, best_dist1, best_idx2 = best_dist1, dist, idx2
                elif dist < best_dist2:
                    best_dist2 = dist

            if best_idx2 is None or not best_dist1 < TH_LOW:
                continue
            if not best_dist1 < nn_ratio * best_dist2:
                continue

            matches12[idx1] = best_idx2
            matched2[best_idx2] = True
            if histogram is not None:
                histogram.add(keys1[idx1].angle, keys2[best_idx2].angle, idx1)

    if histogram is not None:
        for idx1 in histogram.rejected():
            matches12[idx1] = None
    return matches12


def search_for_triangulation(
    features1: FeatureVector,
    features2: FeatureVector,
    keys1: Sequence[KeyPoint],
    keys2: Sequence[KeyPoint],
    descriptors1: Sequence,
    descriptors2: Sequence,
    right1: Sequence[float],
    right2: Sequence[float],
    epipole: Sequence[float],
    f12,
    level_sigma2: Sequence[float],
    scale_factors: Sequence[float],
    only_stereo: bool = False,
    check_orientation: bool = True,
) -> list[tuple[int, int]]:
    """Find pairs of untracked keypoints fulfilling the epipolar constraint.

    The feature vectors should list only keypoints without a map point.
    ``right1``/``right2`` hold the right-image coordinate of each keypoint,
    negative when it has no stereo measurement. ``epipole`` is the projection
    of the first camera centre into the second image, ``f12`` the fundamental
    matrix from view 1 to view 2, and ``level_sigma2`` and ``scale_factors``
    belong to the second view's image pyramid.

    Returns ``(index1, index2)`` pairs ordered by ``index1``.
    """
    _check_lengths("first view", keys1, descriptors1, right1)
    _check_lengths("second view", keys2, descriptors2, right2)
    ex, ey = (float(v) for v in epipole)

    matches12: list[Optional[int]] = [None] * len(keys1)
    histogram = RotationHistogram() if check_orientation else None

    for node in _shared_nodes(features1, features2):
        candidates2 = features2[node]
        for idx1 in features1[node]:
            stereo1 = right1[idx1] >= 0
            if only_stereo and not stereo1:
                continue
            kp1 = keys1[idx1]
            d1 = descriptors1[idx1]

            best_dist = TH_LOW
            best_idx2: Optional[int] = None
            for idx2 in candidates2:
                stereo2 = right2[idx2] >= 0
                if only_stereo and not stereo2:
                    continue
                dist = descriptor_distance(d1, descriptors2[idx2])
                if dist > TH_LOW or dist > best_dist:
                    continue

                kp2 = keys2[idx2]
                if not stereo1 and not stereo2:
                    dx = ex - kp2.x
                    dy = ey - kp2.y
                    if dx * dx + dy * dy < 100 * scale_factors[kp2.octave]:
                        continue

                if check_dist_epipolar_line(kp1, kp2, f12, level_sigma2):
                    best_idx2 = idx2
                    best_dist = dist

            if best_idx2 is None:
                continue
            matches12[idx1] = best_idx2
            if histogram is not None:
                histogram.add(kp1.angle, keys2[best_idx2].angle, idx1)

    if histogram is not None:
        for idx1 in histogram.rejected():
            matches12[idx1] = None

    return [(i1, i2) for i1, i2 in enumerate(matches12) if i2 is not None]