"""Building blocks for ORB descriptor matching."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Sized

import numpy as np

TH_HIGH = 100
TH_LOW = 50
HISTO_LENGTH = 30


@dataclass(frozen=True)
class KeyPoint:
    """An image keypoint: position, orientation in degrees and pyramid level."""

    x: float
    y: float
    angle: float = 0.0
    octave: int = 0


def descriptor_distance(a, b) -> int:
    """Hamming distance between two binary descriptors of equal length."""
    bytes_a = np.asarray(a, dtype=np.uint8).tobytes()
    bytes_b = np.asarray(b, dtype=np.uint8).tobytes()
    if len(bytes_a) != len(bytes_b):
        raise ValueError("descriptors must have the same length")
    diff = int.from_bytes(bytes_a, "little") ^ int.from_bytes(bytes_b, "little")
    return bin(diff).count("1")


def compute_three_maxima(
    histogram: Sequence[Sized],
) -> tuple[Optional[int], Optional[int], Optional[int]]:
    """Indices of the three fullest bins.

    The second and third are dropped (``None``) when they hold fewer than a
    tenth of the entries of the fullest bin.
    """
    max1 = max2 = max3 = 0
    ind1: Optional[int] = None
    ind2: Optional[int] = None
    ind3: Optional[int] = None

    for i, bin_ in enumerate(histogram):
        size = len(bin_)
        if size > max1:
            max3, max2, max1 = max2, max1, size
            ind3, ind2, ind1 = ind2, ind1, i
        elif size > max2:
            max3, max2 = max2, size
            ind3, ind2 = ind2, i
        elif size > max3:
            max3 = size
            ind3 = i

    if max2 < 0.1 * max1:
        ind2 = ind3 = None
    elif max3 < 0.1 * max1:
        ind3 = None
    return ind1, ind2, ind3


class RotationHistogram:
    """Histogram of keypoint rotation differences used to reject inconsistent matches."""

    def __init__(self) -> None:
        self.bins: list[list[int]] = [[] for _ in range(HISTO_LENGTH)]

    def add(self, angle1: float, angle2: float, index: int) -> int:
        """Record the match ``index`` with rotation ``angle1 - angle2``; return its bin."""
        rot = angle1 - angle2
        if rot < 0.0:
            rot += 360.0
        bin_ = math.floor(rot * (1.0 / HISTO_LENGTH) + 0.5)
        if bin_ == HISTO_LENGTH:
            bin_ = 0
        if not 0 <= bin_ < HISTO_LENGTH:
            raise ValueError(f"rotation {rot} falls outside the histogram")
        self.bins[bin_].append(index)
        return bin_

    def rejected(self) -> list[int]:
        """Indices recorded outside the three dominant bins, in bin order."""
        kept = set(compute_three_maxima(self.bins))
        return [
            index
            for i, bin_ in enumerate(self.bins)
            if i not in kept
            for index in bin_
        ]


def radius_by_viewing_cos(view_cos: float) -> float:
    """Search window radius for a given viewing-angle cosine."""
    return 2.5 if view_cos > 0.998 else 4.0


def check_dist_epipolar_line(
    kp1: KeyPoint, kp2: KeyPoint, f12, level_sigma2: Sequence[float]
) -> bool:
    """Whether ``kp2`` lies close enough to the epipolar line of ``kp1``."""
    f = np.asarray(f12, dtype=float)
    a = kp1.x * f[0, 0] + kp1.y * f[1, 0] + f[2, 0]
    b = kp1.x * f[0, 1] + kp1.y * f[1, 1] + f[2, 1]
    c = kp1.x * f[0, 2] + kp1.y * f[1, 2] + f[2, 2]

    num = a * kp2.x + b * kp2.y + c
    den = a * a + b * b
    if den == 0:
        return False
    return num * num / den < 3.84 * level_sigma2[kp2.octave]