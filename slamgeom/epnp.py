"""Efficient Perspective-n-Point (EPnP) camera pose estimation."""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np

_GAUSS_NEWTON_ITERATIONS = 5

# Pairs of control points, in the order used for the distance constraints.
_PAIRS = ((0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3))


def qr_solve(a, b) -> np.ndarray:
    """Solve ``a @ x = b`` in the least-squares sense with Householder QR.

    ``a`` must have at least as many rows as columns. Raises
    :class:`numpy.linalg.LinAlgError` when ``a`` is singular.
    """
    mat = np.array(a, dtype=float)
    rhs = np.array(b, dtype=float).reshape(-1)
    if mat.ndim != 2:
        raise ValueError("the system matrix must be two-dimensional")
    nr, nc = mat.shape
    if rhs.shape[0] != nr:
        raise ValueError("the right-hand side needs one value per row")
    if nc == 0 or nr < nc:
        raise ValueError("the system needs at least as many rows as columns")

    a1 = np.zeros(nc)
    a2 = np.zeros(nc)
    for k in range(nc):
        # The scan for the scaling factor stops one row short of the bottom.
        upper = max(nr - 1, k + 1)
        eta = float(np.max(np.abs(mat[k:upper, k])))
        if eta == 0:
            raise np.linalg.LinAlgError("the system matrix is singular")
        mat[k:, k] /= eta
        sigma = float(np.sqrt(np.sum(mat[k:, k] ** 2)))
        if mat[k, k] < 0:
            sigma = -sigma
        mat[k, k] += sigma
        a1[k] = sigma * mat[k, k]
        a2[k] = -eta * sigma
        for j in range(k + 1, nc):
            tau = float(mat[k:, k] @ mat[k:, j]) / a1[k]
            mat[k:, j] -= tau * mat[k:, k]

    # rhs <- Q^T rhs
    for j in range(nc):
        tau = float(mat[j:, j] @ rhs[j:]) / a1[j]
        rhs[j:] -= tau * mat[j:, j]

    # x = R^-1 rhs
    x = np.zeros(nc)
    x[nc - 1] = rhs[nc - 1] / a2[nc - 1]
    for i in range(nc - 2, -1, -1):
        total = float(mat[i, i + 1:] @ x[i + 1:])
        x[i] = (rhs[i] - total) / a2[i]
    return x


def mat_to_quat(rotation) -> np.ndarray:
    """Quaternion ``[x, y, z, w]`` of a 3x3 rotation matrix."""
    r = np.asarray(rotation, dtype=float)
    if r.shape != (3, 3):
        raise ValueError("a rotation must be a 3x3 matrix")
    tr = r[0, 0] + r[1, 1] + r[2, 2]

    if tr > 0.0:
        q = np.array([r[1, 2] - r[2, 1], r[2, 0] - r[0, 2], r[0, 1] - r[1, 0], tr + 1.0])
        n4 = q[3]
    elif r[0, 0] > r[1, 1] and r[0, 0] > r[2, 2]:
        q = np.array([
            1.0 + r[0, 0] - r[1, 1] - r[2, 2],
            r[1, 0] + r[0, 1],
            r[2, 0] + r[0, 2],
            r[1, 2] - r[2, 1],
        ])
        n4 = q[0]
    elif r[1, 1] > r[2, 2]:
        q = np.array([
            r[1, 0] + r[0, 1],
            1.0 + r[1, 1] - r[0, 0] - r[2, 2],
            r[2, 1] + r[1, 2],
            r[2, 0] - r[0, 2],
        ])
        n4 = q[1]
    else:
        q = np.array([
            r[2, 0] + r[0, 2],
            r[2, 1] + r[1, 2],
            1.0 + r[2, 2] - r[0, 0] - r[1, 1],
            r[0, 1] - r[1, 0],
        ])
        n4 = q[2]
    return q * (0.5 / np.sqrt(n4))


def relative_error(r_true, t_true, r_est, t_est) -> tuple[float, float]:
    """Relative rotation and translation errors between two poses."""
    q_true = mat_to_quat(r_true)
    q_est = mat_to_quat(r_est)
    norm_q = np.linalg.norm(q_true)
    rot_err = min(
        np.linalg.norm(q_true - q_est) / norm_q,
        np.linalg.norm(q_true + q_est) / norm_q,
    )
    tt = np.asarray(t_true, dtype=float).reshape(3)
    te = np.asarray(t_est, dtype=float).reshape(3)
    transl_err = np.linalg.norm(tt - te) / np.linalg.norm(tt)
    return float(rot_err), float(transl_err)


def _validate(points3d, points2d) -> tuple[np.ndarray, np.ndarray]:
    pws = np.asarray(points3d, dtype=float)
    us = np.asarray(points2d, dtype=float)
    if pws.ndim != 2 or pws.shape[1] != 3:
        raise ValueError("3D points must be given as an (n, 3) array")
    if us.ndim != 2 or us.shape[1] != 2:
        raise ValueError("image points must be given as an (n, 2) array")
    if pws.shape[0] != us.shape[0]:
        raise ValueError("every 3D point needs one image point")
    if pws.shape[0] == 0:
        raise ValueError("at least one correspondence is needed")
    return pws, us


def _control_points(pws: np.ndarray) -> np.ndarray:
    """Centroid plus three points along the principal axes of the cloud."""
    n = pws.shape[0]
    c0 = pws.mean(axis=0)
    centred = pws - c0
    u, s, _ = np.linalg.svd(centred.T @ centred)
    cws = np.empty((4, 3))
    cws[0] = c0
    for i in range(1, 4):
        cws[i] = c0 + np.sqrt(s[i - 1] / n) * u[:, i - 1]
    return cws


def _barycentric(pws: np.ndarray, cws: np.ndarray) -> np.ndarray:
    cc = (cws[1:] - cws[0]).T
    cc_inv = np.linalg.pinv(cc)
    alphas = np.empty((pws.shape[0], 4))
    alphas[:, 1:] = (pws - cws[0]) @ cc_inv.T
    alphas[:, 0] = 1.0 - alphas[:, 1:].sum(axis=1)
    return alphas


def _compute_l_6x10(ut: np.ndarray) -> np.ndarray:
    v = [ut[11 - i].reshape(4, 3) for i in range(4)]
    dv = [[v[i][a] - v[i][b] for a, b in _PAIRS] for i in range(4)]
    l_mat = np.empty((6, 10))
    for i in range(6):
        d0, d1, d2, d3 = dv[0][i], dv[1][i], dv[2][i], dv[3][i]
        l_mat[i] = [
            d0 @ d0,
            2.0 * d0 @ d1,
            d1 @ d1,
            2.0 * d0 @ d2,
            2.0 * d1 @ d2,
            d2 @ d2,
            2.0 * d0 @ d3,
            2.0 * d1 @ d3,
            2.0 * d2 @ d3,
            d3 @ d3,
        ]
    return l_mat


def _compute_rho(cws: np.ndarray) -> np.ndarray:
    return np.array([np.sum((cws[a] - cws[b]) ** 2) for a, b in _PAIRS])


def _lstsq(mat: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    return np.linalg.lstsq(mat, rhs, rcond=None)[0]


def _betas_approx_1(l_mat: np.ndarray, rho: np.ndarray) -> np.ndarray:
    b4 = _lstsq(l_mat[:, [0, 1, 3, 6]], rho)
    betas = np.empty(4)
    if b4[0] < 0:
        betas[0] = np.sqrt(-b4[0])
        betas[1:] = -b4[1:] / betas[0]
    else:
        betas[0] = np.sqrt(b4[0])
        betas[1:] = b4[1:] / betas[0]
    return betas


def _betas_approx_2(l_mat: np.ndarray, rho: np.ndarray) -> np.ndarray:
    b3 = _lstsq(l_mat[:, :3], rho)
    betas = np.zeros(4)
    if b3[0] < 0:
        betas[0] = np.sqrt(-b3[0])
        betas[1] = np.sqrt(-b3[2]) if b3[2] < 0 else 0.0
    else:
        betas[0] = np.sqrt(b3[0])
        betas[1] = np.sqrt(b3[2]) if b3[2] > 0 else 0.0
    if b3[1] < 0:
        betas[0] = -betas[0]
    return betas


def _betas_approx_3(l_mat: np.ndarray, rho: np.ndarray) -> np.ndarray:
    b5 = _lstsq(l_mat[:, :5], rho)
    betas = np.zeros(4)
    if b5[0] < 0:
        betas[0] = np.sqrt(-b5[0])
        betas[1] = np.sqrt(-b5[2]) if b5[2] < 0 else 0.0
    else:
        betas[0] = np.sqrt(b5[0])
        betas[1] = np.sqrt(b5[2]) if b5[2] > 0 else 0.0
    if b5[1] < 0:
        betas[0] = -betas[0]
    betas[2] = np.float64(b5[3]) / np.float64(betas[0])
    return betas


def _gauss_newton_system(
    l_mat: np.ndarray, rho: np.ndarray, betas: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    b0, b1, b2, b3 = betas
    a = np.empty((6, 4))
    for i, row in enumerate(l_mat):
        a[i, 0] = 2 * row[0] * b0 + row[1] * b1 + row[3] * b2 + row[6] * b3
        a[i, 1] = row[1] * b0 + 2 * row[2] * b1 + row[4] * b2 + row[7] * b3
        a[i, 2] = row[3] * b0 + row[4] * b1 + 2 * row[5] * b2 + row[8] * b3
        a[i, 3] = row[6] * b0 + row[7] * b1 + row[8] * b2 + 2 * row[9] * b3
    products = np.array([
        b0 * b0, b0 * b1, b1 * b1, b0 * b2, b1 * b2,
        b2 * b2, b0 * b3, b1 * b3, b2 * b3, b3 * b3,
    ])
    return a, rho - l_mat @ products


def _gauss_newton(l_mat: np.ndarray, rho: np.ndarray, betas: np.ndarray) -> np.ndarray:
    betas = betas.copy()
    for _ in range(_GAUSS_NEWTON_ITERATIONS):
        a, b = _gauss_newton_system(l_mat, rho, betas)
        try:
            betas += qr_solve(a, b)
        except np.linalg.LinAlgError:
            break
    return betas


class EPnP:
    """Pose of a calibrated camera from 3D-2D correspondences.

    ``fu``/``fv`` are the focal lengths and ``uc``/``vc`` the principal point.
    """

    def __init__(self, fu: float, fv: float, uc: float, vc: float) -> None:
        self.fu = float(fu)
        self.fv = float(fv)
        self.uc = float(uc)
        self.vc = float(vc)

    def _build_m(self, alphas: np.ndarray, us: np.ndarray) -> np.ndarray:
        n = alphas.shape[0]
        m = np.zeros((2 * n, 12))
        for i, (a, (u, v)) in enumerate(zip(alphas, us)):
            row1 = m[2 * i]
            row2 = m[2 * i + 1]
            row1[0::3] = a * self.fu
            row1[2::3] = a * (self.uc - u)
            row2[1::3] = a * self.fv
            row2[2::3] = a * (self.vc - v)
        return m

    def _r_and_t(
        self,
        ut: np.ndarray,
        betas: np.ndarray,
        alphas: np.ndarray,
        pws: np.ndarray,
        us: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray, float]:
        ccs = sum(betas[i] * ut[11 - i].reshape(4, 3) for i in range(4))
        pcs = alphas @ ccs
        if pcs[0, 2] < 0.0:
            pcs = -pcs

        pc0 = pcs.mean(axis=0)
        pw0 = pws.mean(axis=0)
        abt = (pcs - pc0).T @ (pws - pw0)
        u, _, vt = np.linalg.svd(abt)
        rotation = u @ vt
        if np.linalg.det(rotation) < 0:
            rotation[2] = -rotation[2]
        translation = pc0 - rotation @ pw0
        return rotation, translation, self.reprojection_error(pws, us, rotation, translation)

    def compute_pose(self, points3d, points2d) -> tuple[np.ndarray, np.ndarray, float]:
        """Estimate the world-to-camera pose.

        Returns the rotation, the translation and the mean reprojection error
        in pixels.
        """
        pws, us = _validate(points3d, points2d)
        cws = _control_points(pws)
        alphas = _barycentric(pws, cws)
        m = self._build_m(alphas, us)
        u, _, _ = np.linalg.svd(m.T @ m)
        ut = u.T

        l_mat = _compute_l_6x10(ut)
        rho = _compute_rho(cws)

        approximations: tuple[Callable[[np.ndarray, np.ndarray], np.ndarray], ...] = (
            _betas_approx_1,
            _betas_approx_2,
            _betas_approx_3,
        )
        candidates: list[Optional[tuple[np.ndarray, np.ndarray]]] = []
        errors: list[float] = []
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            for approx in approximations:
                betas = _gauss_newton(l_mat, rho, approx(l_mat, rho))
                if not np.all(np.isfinite(betas)):
                    candidates.append(None)
                    errors.append(float("nan"))
                    continue
                rotation, translation, error = self._r_and_t(ut, betas, alphas, pws, us)
                candidates.append((rotation, translation))
                errors.append(error)

        best = 0
        if errors[1] < errors[0]:
            best = 1
        if errors[2] < errors[best]:
            best = 2
        chosen = candidates[best]
        if chosen is None:
            raise np.linalg.LinAlgError("degenerate point configuration")
        return chosen[0], chosen[1], errors[best]

    def reprojection_error(self, points3d, points2d, rotation, translation) -> float:
        """Mean pixel distance between observed and reprojected points."""
        pws, us = _validate(points3d, points2d)
        r = np.asarray(rotation, dtype=float).reshape(3, 3)
        t = np.asarray(translation, dtype=float).reshape(3)
        pc = pws @ r.T + t
        inv_z = 1.0 / pc[:, 2]
        ue = self.uc + self.fu * pc[:, 0] * inv_z
        ve = self.vc + self.fv * pc[:, 1] * inv_z
        return float(np.mean(np.sqrt((us[:, 0] - ue) ** 2 + (us[:, 1] - ve) ** 2)))