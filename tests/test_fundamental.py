"""
Tests for the rank-2 parameterization and fundamental matrix refinement.
"""
import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from panogeo.core.errors import DegenerateInput
from panogeo.core.fundamental import (
    epipolar_residuals,
    rank2_from_matrix,
    rank2_to_matrix,
    refine_fundamental,
)


def _same_up_to_sign(A, B, atol=1e-9):
    return np.allclose(A, B, atol=atol) or np.allclose(A, -B, atol=atol)


@pytest.mark.parametrize("seed", range(20))
def test_to_matrix_is_rank_two(seed):
    params = np.random.default_rng(seed).normal(size=9)

    s = np.linalg.svd(rank2_to_matrix(params), compute_uv=False)

    assert s[2] < 1e-12
    assert 0 < s[1] <= s[0] + 1e-12
    assert s[0] == pytest.approx(1.0)
    assert s[1] == pytest.approx(1.0 / (1.0 + params[4] ** 2))


@pytest.mark.parametrize("seed", range(10))
def test_round_trip_recovers_matrix(seed):
    F = rank2_to_matrix(np.random.default_rng(seed).normal(size=9))

    F2 = rank2_to_matrix(rank2_from_matrix(F))

    assert _same_up_to_sign(F2, F)


def test_from_matrix_projects_to_rank_two(rng):
    M = rng.normal(size=(3, 3))
    U, s, Vt = np.linalg.svd(M)
    closest = U @ np.diag([s[0], s[1], 0.0]) @ Vt / s[0]

    assert _same_up_to_sign(rank2_to_matrix(rank2_from_matrix(M)), closest)


def test_from_matrix_degenerate_inputs():
    with pytest.raises(DegenerateInput):
        rank2_from_matrix(np.diag([1.0, 0.0, 0.0]))
    with pytest.raises(DegenerateInput):
        rank2_from_matrix(np.full((3, 3), np.nan))
    with pytest.raises(ValueError):
        rank2_from_matrix(np.eye(4))


def test_to_matrix_rejects_bad_parameters():
    with pytest.raises(DegenerateInput):
        rank2_to_matrix(np.zeros(9))
    with pytest.raises(ValueError):
        rank2_to_matrix(np.ones(8))


def _skew(t):
    return np.array([
        [0.0, -t[2], t[1]],
        [t[2], 0.0, -t[0]],
        [-t[1], t[0], 0.0]
    ])


@pytest.fixture
def stereo_pair(rng):
    """Two views of a random point cloud with half-pixel noise, and the true F"""
    K = np.array([[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])
    R = Rotation.from_rotvec([0.02, -0.1, 0.03]).as_matrix()
    t = np.array([1.0, 0.1, 0.05])

    X = np.column_stack([
        rng.uniform(-2, 2, 50),
        rng.uniform(-1.5, 1.5, 50),
        rng.uniform(4, 8, 50),
    ])
    h1 = X @ K.T
    h2 = (X @ R.T + t) @ K.T
    x1 = h1[:, :2] / h1[:, 2:] + rng.normal(0, 0.3, size=(50, 2))
    x2 = h2[:, :2] / h2[:, 2:] + rng.normal(0, 0.3, size=(50, 2))

    K_inv = np.linalg.inv(K)
    F = K_inv.T @ _skew(t) @ R @ K_inv
    return F / np.linalg.norm(F), x1, x2


def test_true_fundamental_has_small_residuals(stereo_pair):
    F, x1, x2 = stereo_pair
    assert np.sqrt(np.mean(epipolar_residuals(F, x1, x2) ** 2)) < 1.0


def test_refine_keeps_rank_two_and_reduces_error(stereo_pair, rng):
    F_true, x1, x2 = stereo_pair
    F0 = F_true * (1.0 + 0.01 * rng.normal(size=(3, 3)))
    start = rank2_to_matrix(rank2_from_matrix(F0))

    F = refine_fundamental(F0, x1, x2)

    s = np.linalg.svd(F, compute_uv=False)
    assert s[2] < 1e-10
    assert np.linalg.norm(F) == pytest.approx(1.0)

    refined_cost = np.sum(epipolar_residuals(F, x1, x2) ** 2)
    assert refined_cost <= np.sum(epipolar_residuals(start, x1, x2) ** 2)
    assert np.sqrt(refined_cost / len(x1)) < 1.0
