"""
Projection matrices: composition, decomposition and homogeneous coordinates.

A 3x4 projection matrix factors as P = K [R | t] with K upper triangular
(intrinsics), R a rotation and t a translation. Decomposition uses an RQ
factorization built from three Givens rotations (Hartley & Zisserman A4.1.1).
"""

from typing import Tuple
import logging

import numpy as np
import scipy.linalg

from panogeo.core.errors import DegenerateProjection, NotPositiveDefinite, SingularCalibration
from panogeo.core.kernels import is_degenerate

logger = logging.getLogger(__name__)


def compose_projection(K: np.ndarray, R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """P = K [R | t]"""
    Rt = np.hstack([np.asarray(R, dtype=np.float64),
                    np.asarray(t, dtype=np.float64).reshape(3, 1)])
    return np.asarray(K, dtype=np.float64) @ Rt


def _givens_x(c: float, s: float) -> np.ndarray:
    return np.array([
        [1.0, 0.0, 0.0],
        [0.0, c, -s],
        [0.0, s, c]
    ])


def _givens_y(c: float, s: float) -> np.ndarray:
    return np.array([
        [c, 0.0, s],
        [0.0, 1.0, 0.0],
        [-s, 0.0, c]
    ])


def _givens_z(c: float, s: float) -> np.ndarray:
    return np.array([
        [c, -s, 0.0],
        [s, c, 0.0],
        [0.0, 0.0, 1.0]
    ])


def _rq(M: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Upper triangular K and rotation Q with K Q = M"""
    K = M.copy()
    Q = np.eye(3)

    # (row, col) to zero, the pair (c, s) before normalization, rotation builder
    steps = (
        ((2, 1), lambda K: (-K[2, 2], K[2, 1]), _givens_x),
        ((2, 0), lambda K: (K[2, 2], K[2, 0]), _givens_y),
        ((1, 0), lambda K: (-K[1, 1], K[1, 0]), _givens_z),
    )
    for (row, col), pair, givens in steps:
        if K[row, col] == 0:
            continue
        c, s = pair(K)
        norm = np.hypot(c, s)
        G = givens(c / norm, s / norm)
        K = K @ G
        Q = G.T @ Q
        K[row, col] = 0.0

    return K, Q


def decompose_projection(P: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Decompose a projection matrix into intrinsics, rotation and translation.

    Args:
        P: 3x4 projection matrix

    Returns:
        Tuple of (K, R, t) with K[2, 2] == 1, positive diagonal on K, det(R) == +1
        and compose_projection(K, R, t) equal to P up to scale

    Raises:
        SingularCalibration: the leading 3x3 block of P is singular
    """
    P = np.asarray(P, dtype=np.float64)
    if P.shape != (3, 4):
        raise ValueError(f"Projection matrix must be 3x4, got shape {P.shape}")

    M = P[:, :3]
    p = P[:, 3]
    if is_degenerate(M):
        raise SingularCalibration("Leading 3x3 block of the projection matrix is singular")

    # P is homogeneous; with det(M) < 0 no factorization has both a positive
    # diagonal K and det(R) = +1, so take -P instead
    if np.linalg.det(M) < 0:
        M, p = -M, -p

    K, R = _rq(M)

    if K[2, 2] < 0:
        K, R = -K, -R
    if K[1, 1] < 0:
        S = np.diag([1.0, -1.0, 1.0])
        K, R = K @ S, S @ R
    if K[0, 0] < 0:
        S = np.diag([-1.0, 1.0, 1.0])
        K, R = K @ S, S @ R

    try:
        t = scipy.linalg.solve(K, p)
    except (scipy.linalg.LinAlgError, ValueError) as e:
        raise SingularCalibration("Calibration matrix is singular") from e

    K = K / K[2, 2]
    logger.debug(f"Decomposed P: focal=({K[0, 0]:.3f}, {K[1, 1]:.3f}), "
                 f"principal point=({K[0, 2]:.3f}, {K[1, 2]:.3f})")
    return K, R, t


def intrinsics_from_absolute_conic(W: np.ndarray) -> np.ndarray:
    """
    Recover the intrinsics from the image of the absolute conic.

    W^-1 = K K^T, so K is an upper triangular Cholesky factor of W^-1. Reversing
    the row and column order turns scipy's lower triangular factor into an upper
    triangular one.

    Args:
        W: 3x3 symmetric positive definite conic

    Returns:
        Upper triangular K with positive diagonal

    Raises:
        SingularCalibration: W is not invertible
        NotPositiveDefinite: W^-1 has no Cholesky factorization
    """
    W = np.asarray(W, dtype=np.float64)
    if is_degenerate(W):
        raise SingularCalibration("Absolute conic is singular")

    try:
        dual = scipy.linalg.inv(W)
    except scipy.linalg.LinAlgError as e:
        raise SingularCalibration("Absolute conic is singular") from e

    flipped = dual[::-1, ::-1]
    try:
        L = scipy.linalg.cholesky(flipped, lower=True)
    except scipy.linalg.LinAlgError as e:
        raise NotPositiveDefinite("Inverse of the absolute conic is not positive definite") from e

    return L[::-1, ::-1]


def euclidean_to_homogeneous(X: np.ndarray) -> np.ndarray:
    """Append a row of ones to a DxN array of points (one point per column)"""
    X = np.asarray(X, dtype=np.float64)
    if X.ndim == 1:
        return np.append(X, 1.0)
    return np.vstack([X, np.ones((1, X.shape[1]))])


def homogeneous_to_euclidean(H: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    """
    Divide a (D+1)xN array of homogeneous points by their last coordinate.

    Raises:
        DegenerateProjection: a last coordinate is not finite, or has magnitude
            below eps relative to the point's other coordinates
    """
    H = np.asarray(H, dtype=np.float64)
    single = H.ndim == 1
    if single:
        H = H.reshape(-1, 1)

    w = H[-1]
    scale = np.maximum(np.max(np.abs(H[:-1]), axis=0), 1.0)
    not_finite = ~np.isfinite(w)
    if np.any(not_finite):
        columns = np.flatnonzero(not_finite).tolist()
        raise DegenerateProjection(f"Homogeneous coordinate is not finite for point(s) {columns}")
    zero = np.abs(w) <= eps * scale
    if np.any(zero):
        columns = np.flatnonzero(zero).tolist()
        raise DegenerateProjection(f"Homogeneous coordinate is zero for point(s) {columns}")

    X = H[:-1] / w
    return X[:, 0] if single else X


def project(P: np.ndarray, X: np.ndarray) -> np.ndarray:
    """Project 3xN world points with P, returning 2xN image points"""
    return homogeneous_to_euclidean(np.asarray(P) @ euclidean_to_homogeneous(X))


def depth(R: np.ndarray, t: np.ndarray, X: np.ndarray) -> float:
    """Depth of world point X in front of the camera (R, t)"""
    return float((np.asarray(R) @ np.asarray(X))[2] + np.asarray(t).reshape(3)[2])
