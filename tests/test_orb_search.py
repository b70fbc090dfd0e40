import numpy as np
import pytest

from slamgeom.orb_matcher import KeyPoint
from slamgeom.orb_search import ORBMatcher


def make_area(keys):
    def features_in_area(x, y, r, min_level, max_level):
        return [
            i
            for i, kp in enumerate(keys)
            if abs(kp.x - x) < r and abs(kp.y - y) < r and min_level <= kp.octave <= max_level
        ]

    return features_in_area


def random_descriptors(n, seed=0):
    rng = np.random.default_rng(seed)
    return [rng.integers(0, 256, size=32, dtype=np.uint8) for _ in range(n)]


def flip_bits(desc, n):
    out = desc.copy()
    bits = np.unpackbits(out)
    bits[:n] ^= 1
    return np.packbits(bits)


def grid_keys(n, angle=0.0):
    return [KeyPoint(x=50.0 * i, y=20.0, angle=angle, octave=0) for i in range(n)]


def test_identical_frames_match_identity():
    keys = grid_keys(6)
    desc = random_descriptors(6)
    prev = [(k.x, k.y) for k in keys]
    matches, updated = ORBMatcher().search_for_initialization(
        keys, desc, keys, desc, prev, make_area(keys), 10
    )
    assert matches == list(range(6))
    assert updated == prev


def test_prev_matched_updated_to_matched_keypoint():
    keys1 = grid_keys(4)
    keys2 = [KeyPoint(x=k.x + 3.0, y=k.y - 2.0) for k in keys1]
    desc = random_descriptors(4, seed=1)
    prev = [(k.x, k.y) for k in keys1]
    matches, updated = ORBMatcher().search_for_initialization(
        keys1, desc, keys2, desc, prev, make_area(keys2), 10
    )
    assert matches == [0, 1, 2, 3]
    assert updated == [(k.x, k.y) for k in keys2]


def test_higher_octave_keypoints_are_skipped():
    keys1 = [KeyPoint(0.0, 0.0, octave=1), KeyPoint(100.0, 0.0)]
    keys2 = [KeyPoint(0.0, 0.0, octave=1), KeyPoint(100.0, 0.0)]
    desc = random_descriptors(2, seed=2)
    prev = [(0.0, 0.0), (100.0, 0.0)]
    matches, updated = ORBMatcher().search_for_initialization(
        keys1, desc, keys2, desc, prev, make_area(keys2), 10
    )
    assert matches == [None, 1]
    assert updated[0] == (0.0, 0.0)


def test_distance_above_threshold_is_rejected():
    keys = grid_keys(1)
    d1 = random_descriptors(1, seed=3)
    d2 = [flip_bits(d1[0], 60)]
    matches, _ = ORBMatcher().search_for_initialization(
        keys, d1, keys, d2, [(keys[0].x, keys[0].y)], make_area(keys), 10
    )
    assert matches == [None]


def test_distance_at_threshold_is_accepted():
    keys = grid_keys(1)
    d1 = random_descriptors(1, seed=4)
    d2 = [flip_bits(d1[0], 50)]
    matches, _ = ORBMatcher().search_for_initialization(
        keys, d1, keys, d2, [(keys[0].x, keys[0].y)], make_area(keys), 10
    )
    assert matches == [0]


def test_ambiguous_candidates_fail_ratio_test():
    keys1 = [KeyPoint(0.0, 0.0)]
    keys2 = [KeyPoint(0.0, 0.0), KeyPoint(1.0, 1.0)]
    base = random_descriptors(1, seed=5)[0]
    d2 = [flip_bits(base, 10), flip_bits(base, 12)]
    matches, updated = ORBMatcher().search_for_initialization(
        keys1, [base], keys2, d2, [(0.0, 0.0)], make_area(keys2), 10
    )
    assert matches == [None]
    assert updated == [(0.0, 0.0)]


def test_closer_descriptor_steals_match():
    keys1 = [KeyPoint(0.0, 0.0), KeyPoint(2.0, 0.0)]
    keys2 = [KeyPoint(1.0, 0.0)]
    target = random_descriptors(1, seed=6)[0]
    d1 = [flip_bits(target, 10), flip_bits(target, 5)]
    matches, _ = ORBMatcher().search_for_initialization(
        keys1, d1, keys2, [target], [(0.0, 0.0), (2.0, 0.0)], make_area(keys2), 10
    )
    assert matches == [None, 0]


def test_worse_later_candidate_does_not_steal():
    keys1 = [KeyPoint(0.0, 0.0), KeyPoint(2.0, 0.0)]
    keys2 = [KeyPoint(1.0, 0.0)]
    target = random_descriptors(1, seed=7)[0]
    d1 = [flip_bits(target, 5), flip_bits(target, 10)]
    matches, _ = ORBMatcher().search_for_initialization(
        keys1, d1, keys2, [target], [(0.0, 0.0), (2.0, 0.0)], make_area(keys2), 10
    )
    assert matches == [0, None]


def _rotation_setup():
    n = 21
    keys1 = grid_keys(n)
    keys2 = grid_keys(n)
    keys2[-1] = KeyPoint(keys2[-1].x, keys2[-1].y, angle=180.0)
    desc = random_descriptors(n, seed=8)
    prev = [(k.x, k.y) for k in keys1]
    return keys1, keys2, desc, prev


def test_inconsistent_rotation_rejected():
    keys1, keys2, desc, prev = _rotation_setup()
    matches, updated = ORBMatcher(0.6, True).search_for_initialization(
        keys1, desc, keys2, desc, prev, make_area(keys2), 10
    )
    assert matches[:-1] == list(range(20))
    assert matches[-1] is None
    assert updated[-1] == prev[-1]


def test_rotation_kept_without_orientation_check():
    keys1, keys2, desc, prev = _rotation_setup()
    matches, _ = ORBMatcher(0.6, False).search_for_initialization(
        keys1, desc, keys2, desc, prev, make_area(keys2), 10
    )
    assert matches == list(range(21))


def test_window_outside_any_keypoint_gives_no_match():
    keys = grid_keys(2)
    desc = random_descriptors(2, seed=9)
    matches, updated = ORBMatcher().search_for_initialization(
        keys, desc, keys, desc, [(1000.0, 1000.0), (keys[1].x, keys[1].y)], make_area(keys), 10
    )
    assert matches == [None, 1]
    assert updated[0] == (1000.0, 1000.0)


def test_matches_are_injective_on_random_data():
    rng = np.random.default_rng(10)
    keys1 = [KeyPoint(float(x), float(y)) for x, y in rng.uniform(0, 50, size=(40, 2))]
    keys2 = [KeyPoint(float(x), float(y)) for x, y in rng.uniform(0, 50, size=(40, 2))]
    base = random_descriptors(5, seed=11)
    d1 = [flip_bits(base[i % 5], int(rng.integers(0, 30))) for i in range(40)]
    d2 = [flip_bits(base[i % 5], int(rng.integers(0, 30))) for i in range(40)]
    prev = [(k.x, k.y) for k in keys1]
    matches, _ = ORBMatcher(0.9, False).search_for_initialization(
        keys1, d1, keys2, d2, prev, make_area(keys2), 15
    )
    found = [m for m in matches if m is not None]
    assert len(found) == len(set(found))


def test_mismatched_prev_matched_length_raises():
    keys = grid_keys(2)
    desc = random_descriptors(2, seed=12)
    with pytest.raises(ValueError):
        ORBMatcher().search_for_initialization(
            keys, desc, keys, desc, [(0.0, 0.0)], make_area(keys), 10
        )


def test_missing_descriptor_raises():
    keys = grid_keys(2)
    desc = random_descriptors(1, seed=13)
    with pytest.raises(ValueError):
        ORBMatcher().search_for_initialization(
            keys, desc, keys, desc, [(0.0, 0.0), (50.0, 20.0)], make_area(keys), 10
        )