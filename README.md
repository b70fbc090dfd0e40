# slamgeom

Geometric building blocks for feature-based visual SLAM, written on top of NumPy:
binary descriptor matching between frames and closed-form camera pose estimation.

## Modules

### `slamgeom.orb_matcher`

Small pieces shared by the matchers.

- `KeyPoint(x, y, angle=0.0, octave=0)`: a frozen dataclass for an image keypoint;
  `angle` is in degrees, `octave` is the pyramid level.
- `descriptor_distance(a, b)`: Hamming distance between two binary descriptors given as
  byte arrays of equal length. Raises `ValueError` when the lengths differ.
- `compute_three_maxima(histogram)`: indices of the three fullest bins of a sequence of
  sized bins. The second and third come back as `None` when they hold fewer than a tenth
  of the entries of the fullest bin.
- `RotationHistogram`: 30 bins of rotation differences. `add(angle1, angle2, index)`
  records a match under the bin of `angle1 - angle2` and returns that bin;
  `rejected()` lists the indices recorded outside the three dominant bins.
- `radius_by_viewing_cos(view_cos)`: search radius of 2.5 when the viewing-angle cosine
  is above 0.998, otherwise 4.0.
- `check_dist_epipolar_line(kp1, kp2, f12, level_sigma2)`: whether `kp2` lies close
  enough to the epipolar line of `kp1` under the fundamental matrix `f12`, scaled by the
  sigma² of `kp2`'s pyramid level.

Match thresholds are exposed as `TH_HIGH` (100), `TH_LOW` (50) and `HISTO_LENGTH` (30).

### `slamgeom.orb_search`

`ORBMatcher(nn_ratio=0.6, check_orientation=True)` with
`search_for_initialization(keys1, descriptors1, keys2, descriptors2, prev_matched,
features_in_area, window_size=10)`. Keypoints of level 0 in the first frame are
matched to keypoints of the second frame found by the `features_in_area(x, y, radius,
min_level, max_level)` callable around the positions in `prev_matched`. A nearest-neighbour
ratio test is applied, each second-frame keypoint keeps only its closest match, and,
with `check_orientation`, matches outside the dominant rotations are dropped. Returns the
match of every first-frame keypoint (an index or `None`) and the updated search positions.

### `slamgeom.orb_bow`

Matching restricted to shared vocabulary nodes. Feature vectors are mappings from a node
id to the keypoint indices it holds.

- `match_by_bow(features1, features2, keys1, keys2, descriptors1, descriptors2, valid1,
  valid2, nn_ratio=0.6, check_orientation=True)`: returns, for each keypoint of the first
  view, its match in the second view or `None`. Only keypoints flagged valid take part
  and each second-view keypoint is used once.
- `search_for_triangulation(features1, features2, keys1, keys2, descriptors1,
  descriptors2, right1, right2, epipole, f12, level_sigma2, scale_factors,
  only_stereo=False, check_orientation=True)`: returns `(index1, index2)` pairs of
  keypoints that satisfy the epipolar constraint, ordered by `index1`. Negative entries
  in `right1`/`right2` mark keypoints without a stereo measurement; monocular pairs too
  close to the epipole are skipped.

### `slamgeom.epnp`

- `EPnP(fu, fv, uc, vc)`: `compute_pose(points3d, points2d)` returns the world-to-camera
  rotation, translation and mean reprojection error in pixels, choosing the best of three
  approximations refined by Gauss-Newton. It raises `numpy.linalg.LinAlgError` for a
  degenerate configuration and `ValueError` for badly shaped input.
  `reprojection_error(points3d, points2d, rotation, translation)` gives the mean pixel
  distance for any pose.
- `qr_solve(a, b)`: least-squares solve by Householder QR; raises
  `numpy.linalg.LinAlgError` when the matrix is singular.
- `mat_to_quat(rotation)`: quaternion `[x, y, z, w]` of a 3x3 rotation matrix.
- `relative_error(r_true, t_true, r_est, t_est)`: relative rotation and translation error
  between two poses.

## Install

```
pip install .
```

Tests need the `test` extra:

```
pip install ".[test]"
pytest
```

## Example

```python
import numpy as np
from slamgeom.epnp import EPnP
from slamgeom.orb_matcher import descriptor_distance

fu = fv = 500.0
uc, vc = 320.0, 240.0

rng = np.random.default_rng(0)
points3d = rng.uniform([-1, -1, 4], [1, 1, 6], size=(20, 3))
points2d = np.column_stack([
    uc + fu * points3d[:, 0] / points3d[:, 2],
    vc + fv * points3d[:, 1] / points3d[:, 2],
])

solver = EPnP(fu, fv, uc, vc)
rotation, translation, error = solver.compute_pose(points3d, points2d)
# rotation is close to the identity, translation close to zero

a = np.zeros(32, dtype=np.uint8)
b = a.copy()
b[0] = 0xFF
assert descriptor_distance(a, b) == 8
```

## What the package does not do

It offers no camera model class, no RANSAC loop around the EPnP solver, and no
estimation of a similarity transform between two point sets. It holds no map, keyframes
or vocabulary: callers supply keypoints, descriptors, feature vectors and the
`features_in_area` lookup themselves. There is no command-line program.