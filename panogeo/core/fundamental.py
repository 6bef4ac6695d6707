"""
Rank-2 parameterization of 3x3 matrices for nonlinear refinement.

A fundamental matrix F = U S V^T has exactly two nonzero singular values. The
9 parameters are

    p[0:4]  unnormalized quaternion u (x, y, z, w) for U
    p[4]    scalar s, second singular value 1 / (1 + s^2)
    p[5:9]  unnormalized quaternion v (x, y, z, w) for V^T

so every parameter vector maps to a rank-2 matrix and an optimizer can move
freely in R^9.
"""

from typing import Optional
import logging

import numpy as np
from scipy.optimize import least_squares
from scipy.spatial.transform import Rotation

from panogeo.core.errors import DegenerateInput

logger = logging.getLogger(__name__)


def _rotation(quaternion: np.ndarray) -> np.ndarray:
    if not np.all(np.isfinite(quaternion)) or np.linalg.norm(quaternion) == 0:
        raise DegenerateInput(f"Quaternion {quaternion} cannot be normalized")
    return Rotation.from_quat(quaternion).as_matrix()


def rank2_to_matrix(params) -> np.ndarray:
    """
    Build the rank-2 matrix U(u) diag(1, 1/(1+s^2), 0) V^T(v).

    Args:
        params: 9 parameters (u, s, v)

    Returns:
        3x3 matrix of rank 2 with largest singular value 1
    """
    p = np.asarray(params, dtype=np.float64)
    if p.shape != (9,):
        raise ValueError(f"Expected 9 parameters, got shape {p.shape}")

    # 1 / (1 + s^2) keeps the second singular value in (0, 1], below the first
    sigma = 1.0 / (1.0 + p[4] * p[4])
    S = np.diag([1.0, sigma, 0.0])
    return _rotation(p[:4]) @ S @ _rotation(p[5:])


def rank2_from_matrix(F: np.ndarray) -> np.ndarray:
    """
    Parameters of the closest rank-2 matrix to F (Frobenius sense), up to scale.

    U and V from the SVD are forced to be rotations by flipping their sign; F is
    only defined up to scale so the flip is harmless. The third singular value
    is discarded.

    Raises:
        DegenerateInput: the second singular value is zero or the SVD fails
    """
    F = np.asarray(F, dtype=np.float64)
    if F.shape != (3, 3):
        raise ValueError(f"Expected a 3x3 matrix, got shape {F.shape}")
    if not np.all(np.isfinite(F)):
        raise DegenerateInput("Matrix has non-finite entries")

    try:
        U, s, Vt = np.linalg.svd(F)
    except np.linalg.LinAlgError as e:
        raise DegenerateInput("SVD did not converge") from e

    if s[1] == 0:
        raise DegenerateInput("Second singular value is zero")

    if np.linalg.det(U) < 0:
        U = -U
    if np.linalg.det(Vt) < 0:
        Vt = -Vt

    u = Rotation.from_matrix(U).as_quat()
    v = Rotation.from_matrix(Vt).as_quat()
    u /= np.linalg.norm(u)
    v /= np.linalg.norm(v)

    scale = np.sqrt(max(s[0] / s[1] - 1.0, 0.0))
    return np.concatenate([u, [scale], v])


def epipolar_residuals(F: np.ndarray, x1: np.ndarray, x2: np.ndarray) -> np.ndarray:
    """
    Sampson distances of correspondences to the epipolar geometry F.

    Args:
        F: 3x3 fundamental matrix with x2^T F x1 = 0
        x1, x2: Nx2 matching points

    Returns:
        Array of N signed first-order geometric errors
    """
    h1 = np.column_stack([x1, np.ones(len(x1))])
    h2 = np.column_stack([x2, np.ones(len(x2))])
    Fx1 = h1 @ F.T
    Ftx2 = h2 @ F
    algebraic = np.sum(h2 * Fx1, axis=1)
    denom = Fx1[:, 0] ** 2 + Fx1[:, 1] ** 2 + Ftx2[:, 0] ** 2 + Ftx2[:, 1] ** 2
    return algebraic / np.sqrt(np.maximum(denom, np.finfo(float).tiny))


def refine_fundamental(
    F0: np.ndarray,
    x1: np.ndarray,
    x2: np.ndarray,
    max_nfev: Optional[int] = None
) -> np.ndarray:
    """
    Minimize the Sampson error over rank-2 matrices starting from F0.

    Args:
        F0: Initial 3x3 estimate (any rank)
        x1, x2: Nx2 matching points, N >= 8 recommended
        max_nfev: Optional cap on residual evaluations

    Returns:
        Refined rank-2 fundamental matrix with unit Frobenius norm
    """
    x1 = np.asarray(x1, dtype=np.float64)
    x2 = np.asarray(x2, dtype=np.float64)
    params = rank2_from_matrix(F0)

    def residuals(p):
        return epipolar_residuals(rank2_to_matrix(p), x1, x2)

    initial_cost = 0.5 * np.sum(residuals(params) ** 2)
    result = least_squares(residuals, params, method="lm" if len(x1) >= 9 else "trf",
                           max_nfev=max_nfev)

    params = result.x if result.cost <= initial_cost else params
    F = rank2_to_matrix(params)
    logger.debug(f"Fundamental refinement: cost {initial_cost:.6g} -> {min(result.cost, initial_cost):.6g} "
                 f"({result.nfev} evaluations)")
    return F / np.linalg.norm(F)
