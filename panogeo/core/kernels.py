"""
Minimal-sample model solvers, residual metrics and point normalization.

A robust estimator is assembled from three pieces selected at runtime:
- ModelSolver: turns a (minimal) sample of correspondences into candidate 3x3 transforms
- ErrorMetric: scores one correspondence against a candidate
- Normalizer: conditions the sample before solving (Hartley normalization)

Solvers:
- AffineTwoPointSolver: rotation + uniform scale + translation from 2 points
- AffineThreePointSolver: general 6-DOF affine from 3 points
- HomographyFourPointSolver: 8-DOF homography (DLT) from 4 points
- PanoramicTwoPointSolver: rotating camera with unknown focal length from 2 points
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Tuple
import logging

import numpy as np

from panogeo.core.errors import DegenerateInput, FailedDecomposition

logger = logging.getLogger(__name__)

# Candidates worse conditioned than this are treated as singular
MAX_CONDITION_NUMBER = 1e12

# Relative tolerance for rank decisions on the solver design matrices
RANK_TOLERANCE = 1e-10


class ModelType(str, Enum):
    """Transform family fitted between two images"""
    AFFINE = "affine"
    AFFINE_FULL = "affine_full"
    HOMOGRAPHY = "homography"
    PANORAMIC = "panoramic"


def is_degenerate(H: np.ndarray, max_condition: float = MAX_CONDITION_NUMBER) -> bool:
    """True if H is non-finite or numerically singular"""
    if not np.all(np.isfinite(H)):
        return True
    cond = np.linalg.cond(H)
    return not np.isfinite(cond) or cond > max_condition


def denormalize(T1: np.ndarray, T2: np.ndarray, H: np.ndarray) -> np.ndarray:
    """Undo point normalization: H = T2^-1 * H * T1 (Hartley & Zisserman, p. 109)"""
    return np.linalg.inv(T2) @ H @ T1


class ModelSolver(ABC):
    """Computes candidate transforms mapping x1 points onto x2 points"""

    minimum_samples: int = 0
    supports_refit: bool = True

    @abstractmethod
    def solve(self, x1: np.ndarray, x2: np.ndarray) -> List[np.ndarray]:
        """
        Fit candidate models.

        Args:
            x1: Nx2 points in the first image (N >= minimum_samples)
            x2: Nx2 matching points in the second image

        Returns:
            List of 3x3 candidates, empty if the sample is degenerate
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class AffineTwoPointSolver(ModelSolver):
    """
    Closed-form 2-point affine solver.

    Two correspondences fix four parameters, so the fitted family is
    [[a, -b, tx], [b, a, ty], [0, 0, 1]]: rotation, uniform scale and
    translation. More than two points are solved in the least squares sense.
    """

    minimum_samples = 2

    def solve(self, x1: np.ndarray, x2: np.ndarray) -> List[np.ndarray]:
        n = len(x1)
        x, y = x1[:, 0], x1[:, 1]
        A = np.zeros((2 * n, 4))
        A[0::2] = np.column_stack([x, -y, np.ones(n), np.zeros(n)])
        A[1::2] = np.column_stack([y, x, np.zeros(n), np.ones(n)])
        b = x2.reshape(-1)

        if _rank(A) < 4:
            return []

        (a, bb, tx, ty), *_ = np.linalg.lstsq(A, b, rcond=None)
        return [np.array([
            [a, -bb, tx],
            [bb, a, ty],
            [0.0, 0.0, 1.0]
        ])]


class AffineThreePointSolver(ModelSolver):
    """Closed-form general affine solver (6 DOF) from 3 non-collinear points"""

    minimum_samples = 3

    def solve(self, x1: np.ndarray, x2: np.ndarray) -> List[np.ndarray]:
        n = len(x1)
        ones = np.ones(n)
        zeros = np.zeros((n, 3))
        A = np.zeros((2 * n, 6))
        A[0::2] = np.hstack([np.column_stack([x1, ones]), zeros])
        A[1::2] = np.hstack([zeros, np.column_stack([x1, ones])])
        b = x2.reshape(-1)

        if _rank(A) < 6:
            return []

        params, *_ = np.linalg.lstsq(A, b, rcond=None)
        return [np.vstack([params.reshape(2, 3), [0.0, 0.0, 1.0]])]


class HomographyFourPointSolver(ModelSolver):
    """
    Homography from 4 or more points via the Direct Linear Transform.

    Each correspondence contributes two rows to an (2N)x9 linear system whose
    null vector holds the homography entries.
    """

    minimum_samples = 4

    def solve(self, x1: np.ndarray, x2: np.ndarray) -> List[np.ndarray]:
        n = len(x1)
        x, y = x1[:, 0], x1[:, 1]
        u, v = x2[:, 0], x2[:, 1]
        ones, zeros = np.ones(n), np.zeros(n)

        A = np.zeros((2 * n, 9))
        A[0::2] = np.column_stack([-x, -y, -ones, zeros, zeros, zeros, u * x, u * y, u])
        A[1::2] = np.column_stack([zeros, zeros, zeros, -x, -y, -ones, v * x, v * y, v])

        _, s, Vt = np.linalg.svd(A)
        # A one-dimensional null space needs 8 significant singular values
        if s[7] <= RANK_TOLERANCE * s[0]:
            return []

        H = Vt[-1].reshape(3, 3)
        if abs(H[2, 2]) > np.finfo(float).eps:
            H = H / H[2, 2]
        else:
            H = H / np.linalg.norm(H)
        return [H]


class PanoramicTwoPointSolver(ModelSolver):
    """
    Two-point homography for a camera rotating about its optical center.

    The model is H = K R K^-1 with K = diag(f, f, 1) and an unknown focal
    length f shared by both views. Points must be expressed relative to the
    principal point. A rotation preserves the angle between the two viewing
    rays, which gives a cubic in f^2; every positive real root yields one
    candidate. The rotation is then recovered by aligning the rays
    (orthogonal Procrustes).
    """

    minimum_samples = 2
    supports_refit = False

    def solve(self, x1: np.ndarray, x2: np.ndarray) -> List[np.ndarray]:
        if len(x1) != 2:
            raise ValueError(f"Panoramic solver needs exactly 2 points, got {len(x1)}")

        candidates = []
        for focal in self.focal_lengths(x1, x2):
            R = self._rotation_from_rays(_rays(x1, focal), _rays(x2, focal))
            K = np.diag([focal, focal, 1.0])
            K_inv = np.diag([1.0 / focal, 1.0 / focal, 1.0])
            H = K @ R @ K_inv
            candidates.append(H / H[2, 2] if abs(H[2, 2]) > np.finfo(float).eps else H)
        return candidates

    @staticmethod
    def focal_lengths(x1: np.ndarray, x2: np.ndarray) -> List[float]:
        """Focal lengths for which both point pairs subtend the same angle"""
        a1, a2, a12 = x1[0] @ x1[0], x1[1] @ x1[1], x1[0] @ x1[1]
        b1, b2, b12 = x2[0] @ x2[0], x2[1] @ x2[1], x2[0] @ x2[1]

        # Work in units of the mean squared radius so the cubic is well scaled
        unit = np.mean([a1, a2, b1, b2])
        if not np.isfinite(unit) or unit <= 0:
            return []
        a1, a2, a12 = a1 / unit, a2 / unit, a12 / unit
        b1, b2, b12 = b1 / unit, b2 / unit, b12 / unit

        # (a12 + z)^2 (b1 + z)(b2 + z) = (b12 + z)^2 (a1 + z)(a2 + z), z = f^2;
        # the quartic terms cancel and leave a cubic
        lhs = np.polymul(np.polymul([1.0, a12], [1.0, a12]), np.polymul([1.0, b1], [1.0, b2]))
        rhs = np.polymul(np.polymul([1.0, b12], [1.0, b12]), np.polymul([1.0, a1], [1.0, a2]))
        coeffs = (lhs - rhs)[1:]

        scale = np.max(np.abs(coeffs))
        if not np.isfinite(scale):
            return []
        # Both pairs subtend the same angle for every f (static camera or a roll
        # about the optical axis); H does not depend on f, so any focal will do
        if scale <= RANK_TOLERANCE * np.max(np.abs(lhs)):
            return [float(np.sqrt(unit))]
        coeffs = coeffs / scale
        coeffs[np.abs(coeffs) < RANK_TOLERANCE] = 0.0
        if not np.any(coeffs[:-1]):
            return []

        focals = []
        for z in np.roots(coeffs):
            if abs(z.imag) > 1e-8 * max(1.0, abs(z.real)):
                continue
            if z.real > 0:
                focals.append(float(np.sqrt(z.real * unit)))
        return focals

    @staticmethod
    def _rotation_from_rays(rays1: np.ndarray, rays2: np.ndarray) -> np.ndarray:
        r1 = np.vstack([rays1, np.cross(rays1[0], rays1[1])])
        r2 = np.vstack([rays2, np.cross(rays2[0], rays2[1])])
        U, _, Vt = np.linalg.svd(r2.T @ r1)
        D = np.diag([1.0, 1.0, np.sign(np.linalg.det(U @ Vt))])
        return U @ D @ Vt


def _rays(points: np.ndarray, focal: float) -> np.ndarray:
    rays = np.column_stack([points, np.full(len(points), focal)])
    return rays / np.linalg.norm(rays, axis=1, keepdims=True)


def _rank(A: np.ndarray) -> int:
    s = np.linalg.svd(A, compute_uv=False)
    if s.size == 0 or s[0] == 0:
        return 0
    return int(np.sum(s > RANK_TOLERANCE * s[0]))


class Normalizer(ABC):
    """Conditions a point set before solving"""

    @abstractmethod
    def normalize(self, points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Args:
            points: Nx2 points

        Returns:
            Tuple of (normalized Nx2 points, 3x3 normalizing transform)
        """


class IsotropicNormalizer(Normalizer):
    """Moves the centroid to the origin and scales the mean distance to sqrt(2)"""

    def normalize(self, points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        centroid = points.mean(axis=0)
        centered = points - centroid
        mean_dist = np.mean(np.linalg.norm(centered, axis=1))
        if not np.isfinite(mean_dist) or mean_dist < np.finfo(float).eps:
            raise DegenerateInput("Cannot normalize coincident points")

        scale = np.sqrt(2.0) / mean_dist
        T = np.array([
            [scale, 0.0, -scale * centroid[0]],
            [0.0, scale, -scale * centroid[1]],
            [0.0, 0.0, 1.0]
        ])
        return centered * scale, T


class NormalizedSolver(ModelSolver):
    """Runs a solver on normalized samples and de-normalizes its candidates"""

    def __init__(self, solver: ModelSolver, normalizer: Normalizer = None):
        self.solver = solver
        self.normalizer = normalizer or IsotropicNormalizer()
        self.minimum_samples = solver.minimum_samples
        self.supports_refit = solver.supports_refit

    def solve(self, x1: np.ndarray, x2: np.ndarray) -> List[np.ndarray]:
        try:
            x1n, T1 = self.normalizer.normalize(x1)
            x2n, T2 = self.normalizer.normalize(x2)
        except DegenerateInput as e:
            logger.debug(f"Skipping degenerate sample: {e}")
            return []
        return [denormalize(T1, T2, H) for H in self.solver.solve(x1n, x2n)]

    def __repr__(self) -> str:
        return f"NormalizedSolver({self.solver!r})"


class ErrorMetric(ABC):
    """Residual of one correspondence under a candidate transform"""

    # Multiplier turning the squared pixel threshold into this metric's units
    threshold_scale: float = 1.0

    @abstractmethod
    def errors(self, H: np.ndarray, x1: np.ndarray, x2: np.ndarray) -> np.ndarray:
        """Vectorized residuals for Nx2 point arrays, shape (N,)"""

    def error(self, H: np.ndarray, p1, p2) -> float:
        """Residual for a single correspondence p1 <-> p2"""
        p1 = np.asarray(p1, dtype=np.float64).reshape(1, 2)
        p2 = np.asarray(p2, dtype=np.float64).reshape(1, 2)
        return float(self.errors(H, p1, p2)[0])


class AsymmetricError(ErrorMetric):
    """Squared distance between H * x1 and x2 (chi-squared with 2 DOF)"""

    def errors(self, H: np.ndarray, x1: np.ndarray, x2: np.ndarray) -> np.ndarray:
        return _transfer_errors(H, x1, x2)


class SymmetricError(ErrorMetric):
    """Forward plus backward transfer error (chi-squared with 4 DOF)"""

    threshold_scale = 2.0

    def errors(self, H: np.ndarray, x1: np.ndarray, x2: np.ndarray) -> np.ndarray:
        try:
            H_inv = np.linalg.inv(H)
        except np.linalg.LinAlgError as e:
            raise FailedDecomposition("Transform is singular, cannot compute backward error") from e
        if not np.all(np.isfinite(H_inv)):
            raise FailedDecomposition("Transform inverse is not finite")
        return _transfer_errors(H, x1, x2) + _transfer_errors(H_inv, x2, x1)


def _transfer_errors(H: np.ndarray, x1: np.ndarray, x2: np.ndarray) -> np.ndarray:
    mapped = x1 @ H[:, :2].T + H[:, 2]
    w = mapped[:, 2]
    with np.errstate(divide="ignore", invalid="ignore"):
        projected = mapped[:, :2] / w[:, None]
        errors = np.sum((x2 - projected) ** 2, axis=1)
    # Points sent to infinity can never be inliers
    errors[(np.abs(w) < np.finfo(float).tiny) | ~np.isfinite(errors)] = np.inf
    return errors


def create_solver(model, normalize: bool = True) -> ModelSolver:
    """
    Build the solver for a model type.

    Args:
        model: ModelType or its string value
        normalize: Wrap the solver in isotropic normalization. Ignored for the
            panoramic model, whose points must stay relative to the principal point.

    Returns:
        ModelSolver instance
    """
    model = ModelType(model)
    if model == ModelType.AFFINE:
        solver = AffineTwoPointSolver()
    elif model == ModelType.AFFINE_FULL:
        solver = AffineThreePointSolver()
    elif model == ModelType.HOMOGRAPHY:
        solver = HomographyFourPointSolver()
    else:
        return PanoramicTwoPointSolver()

    return NormalizedSolver(solver) if normalize else solver
