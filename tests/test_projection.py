"""
Tests for projection matrix composition, RQ decomposition and homogeneous coordinates.
"""
import cv2
import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from panogeo.core.errors import DegenerateProjection, NotPositiveDefinite, SingularCalibration
from panogeo.core.projection import (
    compose_projection,
    decompose_projection,
    depth,
    euclidean_to_homogeneous,
    homogeneous_to_euclidean,
    intrinsics_from_absolute_conic,
    project,
)


@pytest.fixture
def camera():
    K = np.array([[800.0, 2.0, 320.0], [0.0, 820.0, 240.0], [0.0, 0.0, 1.0]])
    R = Rotation.from_rotvec([0.1, -0.2, 0.3]).as_matrix()
    t = np.array([1.0, 2.0, 3.0])
    return K, R, t


def _same_up_to_scale(A, B):
    A = A / np.linalg.norm(A)
    B = B / np.linalg.norm(B)
    return np.allclose(A, B, atol=1e-9) or np.allclose(A, -B, atol=1e-9)


@pytest.mark.parametrize("scale", [1.0, 3.7, -2.0])
def test_decompose_recovers_camera(camera, scale):
    K, R, t = camera
    P = scale * compose_projection(K, R, t)

    K2, R2, t2 = decompose_projection(P)

    np.testing.assert_allclose(K2, K, rtol=1e-8, atol=1e-8)
    np.testing.assert_allclose(R2, R, atol=1e-10)
    np.testing.assert_allclose(t2, t, atol=1e-9)


@pytest.mark.parametrize("seed", range(20))
def test_decompose_random_projection(seed):
    P = np.random.default_rng(seed).normal(size=(3, 4))

    K, R, t = decompose_projection(P)

    assert K[2, 2] == 1.0
    assert K[0, 0] > 0 and K[1, 1] > 0
    assert K[1, 0] == 0 and K[2, 0] == 0 and K[2, 1] == 0
    np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-10)
    assert np.linalg.det(R) == pytest.approx(1.0)
    assert _same_up_to_scale(compose_projection(K, R, t), P)


def test_decompose_agrees_with_opencv(camera):
    K, R, t = camera
    P = compose_projection(K, R, t)

    K_ours, R_ours, t_ours = decompose_projection(P)
    K_cv, _, center_cv = cv2.decomposeProjectionMatrix(P)[:3]

    # the camera centre is convention free
    np.testing.assert_allclose(-R_ours.T @ t_ours, center_cv[:3, 0] / center_cv[3, 0], atol=1e-6)
    np.testing.assert_allclose(np.abs(K_ours), np.abs(K_cv / K_cv[2, 2]), rtol=1e-6, atol=1e-6)


def test_decompose_singular_projection():
    P = np.array([
        [1.0, 2.0, 3.0, 4.0],
        [2.0, 4.0, 6.0, 1.0],
        [0.0, 0.0, 1.0, 1.0]
    ])
    with pytest.raises(SingularCalibration):
        decompose_projection(P)


def test_decompose_rejects_wrong_shape():
    with pytest.raises(ValueError):
        decompose_projection(np.eye(3))


def test_intrinsics_from_absolute_conic(camera):
    K = camera[0]
    W = np.linalg.inv(K @ K.T)

    np.testing.assert_allclose(intrinsics_from_absolute_conic(W), K, rtol=1e-8, atol=1e-8)


def test_intrinsics_from_conic_failures():
    with pytest.raises(NotPositiveDefinite):
        intrinsics_from_absolute_conic(-np.eye(3))
    with pytest.raises(SingularCalibration):
        intrinsics_from_absolute_conic(np.zeros((3, 3)))


def test_homogeneous_conversions():
    H = np.array([[2.0, 4.0], [4.0, 8.0], [2.0, 4.0]])
    np.testing.assert_allclose(homogeneous_to_euclidean(H), [[1.0, 1.0], [2.0, 2.0]])
    np.testing.assert_allclose(homogeneous_to_euclidean(np.array([3.0, 6.0, 3.0])), [1.0, 2.0])

    X = np.array([[1.0, 2.0], [3.0, 4.0]])
    np.testing.assert_allclose(euclidean_to_homogeneous(X), [[1.0, 2.0], [3.0, 4.0], [1.0, 1.0]])
    np.testing.assert_allclose(euclidean_to_homogeneous(np.array([5.0, 6.0])), [5.0, 6.0, 1.0])


def test_point_at_infinity_is_degenerate():
    with pytest.raises(DegenerateProjection, match=r"is zero for point\(s\) \[1\]"):
        homogeneous_to_euclidean(np.array([[1.0, 2.0], [1.0, 2.0], [1.0, 0.0]]))


@pytest.mark.parametrize("w", [np.nan, np.inf])
def test_non_finite_homogeneous_coordinate(w):
    with pytest.raises(DegenerateProjection, match=r"not finite for point\(s\) \[0\]"):
        homogeneous_to_euclidean(np.array([[1.0, 2.0], [1.0, 2.0], [w, 1.0]]))


def test_project_and_depth(camera):
    K = camera[0]
    P = compose_projection(K, np.eye(3), np.zeros(3))
    X = np.array([[0.0], [0.0], [5.0]])

    np.testing.assert_allclose(project(P, X)[:, 0], [320.0, 240.0])
    assert depth(np.eye(3), np.zeros(3), X[:, 0]) == pytest.approx(5.0)
