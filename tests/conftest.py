"""
Shared fixtures for the panogeo test suite.
"""
import cv2
import numpy as np
import pytest

from panogeo.core.correspondences import InMemoryCorrespondenceProvider


def warp_points(H: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Map Nx2 points through H with OpenCV as an independent reference"""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 1, 2)
    return cv2.perspectiveTransform(pts, np.asarray(H, dtype=np.float64)).reshape(-1, 2)


def similarity(scale: float, angle: float, tx: float, ty: float) -> np.ndarray:
    c, s = scale * np.cos(angle), scale * np.sin(angle)
    return np.array([
        [c, -s, tx],
        [s, c, ty],
        [0.0, 0.0, 1.0]
    ])


@pytest.fixture
def rng():
    """Deterministic random source for test data"""
    return np.random.default_rng(12345)


@pytest.fixture
def warp():
    return warp_points


@pytest.fixture
def make_similarity():
    return similarity


@pytest.fixture
def panning_provider(rng):
    """
    Three 640x480 frames of a camera panning right by 50 pixels per frame.

    A feature at x in frame i appears at x - 50 in frame i + 1.
    """
    provider = InMemoryCorrespondenceProvider()
    for name in ("f0", "f1", "f2"):
        provider.add_image(name, 640, 480)

    for a, b in (("f0", "f1"), ("f1", "f2")):
        points_a = rng.uniform([60, 10], [630, 470], size=(40, 2))
        points_b = points_a - [50.0, 0.0]
        # a few gross mismatches
        points_b[:6] += rng.uniform(30, 90, size=(6, 2))
        provider.add_correspondences(a, b, points_a, points_b)
    return provider
