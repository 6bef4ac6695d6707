"""
Robust estimation of 2D transforms from outlier-contaminated correspondences.

Random Sample Consensus: repeatedly draw a minimal sample, solve for candidate
models, count the correspondences each candidate explains, and keep the
candidate with the largest consensus. The number of iterations adapts to the
best inlier ratio seen so far, bounded by a hard cap.
"""

from dataclasses import dataclass
from typing import Optional, Tuple
import logging

import numpy as np

from panogeo.core.correspondences import CorrespondenceSet
from panogeo.core.errors import InsufficientCorrespondences, NoConsensusFound
from panogeo.core.kernels import (
    AsymmetricError,
    ErrorMetric,
    ModelSolver,
    ModelType,
    Normalizer,
    NormalizedSolver,
    SymmetricError,
    create_solver,
    is_degenerate,
)

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_ITERATIONS = 100
DEFAULT_MAX_ITERATIONS = 4096


@dataclass
class RobustFit:
    """Outcome of a successful robust estimation"""
    transform: np.ndarray
    inliers: np.ndarray
    iterations: int
    inlier_ratio: float
    num_candidates: int

    @property
    def num_inliers(self) -> int:
        return len(self.inliers)


def iterations_required(
    min_samples: int,
    outliers_probability: float,
    inlier_ratio: float,
    max_iterations: int = DEFAULT_MAX_ITERATIONS
) -> int:
    """
    Number of trials needed so that the probability of never drawing an
    all-inlier minimal sample falls below ``outliers_probability``.

    Args:
        min_samples: Minimal sample size k
        outliers_probability: Accepted failure probability p in [0, 1)
        inlier_ratio: Observed inlier ratio of the best model
        max_iterations: Value returned when the bound is unbounded

    Returns:
        ceil(log(p) / log(1 - ratio^k)), capped at max_iterations
    """
    if inlier_ratio >= 1.0:
        return 0
    if outliers_probability <= 0.0:
        return max_iterations

    good_sample = inlier_ratio ** min_samples
    if good_sample <= 0.0:
        return max_iterations
    denominator = np.log1p(-good_sample)
    if denominator == 0.0:
        return max_iterations

    required = np.ceil(np.log(outliers_probability) / denominator)
    return int(min(max(required, 0), max_iterations))


class RobustEstimator:
    """Adaptive RANSAC over a ModelSolver and an ErrorMetric"""

    def __init__(
        self,
        solver: ModelSolver,
        metric: Optional[ErrorMetric] = None,
        normalizer: Optional[Normalizer] = None,
        max_error_2d: float = 1.0,
        outliers_probability: float = 1e-2,
        initial_iterations: int = DEFAULT_INITIAL_ITERATIONS,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        min_inliers: Optional[int] = None,
        refit: bool = True,
        rng=None
    ):
        """
        Initialize estimator

        Args:
            solver: Minimal-sample solver
            metric: Residual metric (asymmetric transfer error by default)
            normalizer: Optional normalizer applied to each sample before solving
            max_error_2d: Inlier threshold in pixels
            outliers_probability: Accepted probability of missing an all-inlier sample
            initial_iterations: Iteration bound until a consensus has been observed
            max_iterations: Hard iteration cap
            min_inliers: Minimum viable consensus (defaults to the minimal sample size)
            refit: Refit the best model on all of its inliers
            rng: numpy Generator or seed; each concurrent estimation needs its own
        """
        if max_error_2d <= 0:
            raise ValueError(f"max_error_2d must be positive, got {max_error_2d}")
        if not 0.0 <= outliers_probability < 1.0:
            raise ValueError(f"outliers_probability must be in [0, 1), got {outliers_probability}")

        self.solver = NormalizedSolver(solver, normalizer) if normalizer is not None else solver
        self.metric = metric or AsymmetricError()
        self.max_error_2d = max_error_2d
        self.outliers_probability = outliers_probability
        self.initial_iterations = initial_iterations
        self.max_iterations = max_iterations
        self.min_inliers = min_inliers if min_inliers is not None else self.solver.minimum_samples
        self.refit = refit
        self.rng = np.random.default_rng(rng)

    @classmethod
    def from_config(cls, config, rng=None) -> "RobustEstimator":
        """Build an estimator from an EstimationConfig"""
        return cls(
            solver=create_solver(config.model, normalize=config.normalize),
            metric=SymmetricError() if config.symmetric_error else AsymmetricError(),
            max_error_2d=config.max_error_2d,
            outliers_probability=config.outliers_probability,
            initial_iterations=config.initial_iterations,
            max_iterations=config.max_iterations,
            min_inliers=config.min_inliers,
            refit=config.refit,
            rng=rng,
        )

    @property
    def threshold(self) -> float:
        """Inlier threshold in the metric's residual units"""
        return self.metric.threshold_scale * self.max_error_2d ** 2

    def inliers(self, H: np.ndarray, correspondences: CorrespondenceSet) -> np.ndarray:
        """Indices of correspondences whose residual under H is below the threshold"""
        return self._inliers(H, correspondences.points_a, correspondences.points_b)

    def _inliers(self, H: np.ndarray, x1: np.ndarray, x2: np.ndarray) -> np.ndarray:
        return np.flatnonzero(self.metric.errors(H, x1, x2) < self.threshold)

    def estimate(self, correspondences: CorrespondenceSet) -> RobustFit:
        """
        Fit the transform mapping points_a onto points_b.

        Args:
            correspondences: Matched points, possibly with outliers

        Returns:
            RobustFit with the best transform and its inlier indices

        Raises:
            InsufficientCorrespondences: fewer points than the minimal sample
            NoConsensusFound: no candidate reached min_inliers
        """
        x1, x2 = correspondences.points_a, correspondences.points_b
        n = len(correspondences)
        k = self.solver.minimum_samples
        if n < k:
            raise InsufficientCorrespondences(n, k)

        best_H = None
        best_inliers = np.empty(0, dtype=np.intp)
        num_candidates = 0
        bound = self.initial_iterations
        iteration = 0

        while iteration < bound and iteration < self.max_iterations:
            iteration += 1
            sample = self.rng.choice(n, size=k, replace=False)

            for H in self.solver.solve(x1[sample], x2[sample]):
                if is_degenerate(H):
                    continue
                num_candidates += 1
                inliers = self._inliers(H, x1, x2)
                if len(inliers) <= len(best_inliers):
                    continue

                best_H, best_inliers = H, inliers
                if len(inliers) > k:
                    bound = iterations_required(
                        k, self.outliers_probability, len(inliers) / n, self.max_iterations
                    )
                    logger.debug(f"Iteration {iteration}: {len(inliers)}/{n} inliers, "
                                 f"iteration bound now {bound}")

        if best_H is None or len(best_inliers) < self.min_inliers:
            raise NoConsensusFound(len(best_inliers), self.min_inliers, iteration)

        if self.refit and self.solver.supports_refit and len(best_inliers) > k:
            best_H, best_inliers = self._refit(best_H, best_inliers, x1, x2)

        ratio = len(best_inliers) / n
        logger.info(f"Robust fit {self.solver!r}: {len(best_inliers)}/{n} inliers "
                    f"({100.0 * ratio:.1f}%) after {iteration} iterations")

        return RobustFit(
            transform=best_H,
            inliers=best_inliers,
            iterations=iteration,
            inlier_ratio=ratio,
            num_candidates=num_candidates,
        )

    def _refit(
        self,
        H: np.ndarray,
        inliers: np.ndarray,
        x1: np.ndarray,
        x2: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Least squares fit on the consensus set; kept only if it does not lose inliers"""
        for refined in self.solver.solve(x1[inliers], x2[inliers]):
            if is_degenerate(refined):
                continue
            refined_inliers = self._inliers(refined, x1, x2)
            if len(refined_inliers) >= len(inliers):
                logger.debug(f"Refit on {len(inliers)} inliers kept {len(refined_inliers)}")
                return refined, refined_inliers
        return H, inliers


def _robust_fit(model, x1, x2, max_error_2d, outliers_probability, rng, metric=None):
    estimator = RobustEstimator(
        solver=create_solver(model),
        metric=metric,
        max_error_2d=max_error_2d,
        outliers_probability=outliers_probability,
        rng=rng,
    )
    fit = estimator.estimate(CorrespondenceSet(x1, x2))
    return fit.transform, fit.inliers


def affine_from_correspondences_robust(
    x1: np.ndarray,
    x2: np.ndarray,
    max_error_2d: float = 1.0,
    outliers_probability: float = 1e-2,
    rng=None
) -> Tuple[np.ndarray, np.ndarray]:
    """Robust 2-point affine fit mapping x1 onto x2; returns (A, inlier indices)"""
    return _robust_fit(ModelType.AFFINE, x1, x2, max_error_2d, outliers_probability, rng)


def homography_from_correspondences_robust(
    x1: np.ndarray,
    x2: np.ndarray,
    max_error_2d: float = 1.0,
    outliers_probability: float = 1e-2,
    symmetric: bool = False,
    rng=None
) -> Tuple[np.ndarray, np.ndarray]:
    """Robust 4-point homography fit mapping x1 onto x2; returns (H, inlier indices)"""
    metric = SymmetricError() if symmetric else AsymmetricError()
    return _robust_fit(ModelType.HOMOGRAPHY, x1, x2, max_error_2d, outliers_probability, rng, metric)


def panoramic_homography_robust(
    x1: np.ndarray,
    x2: np.ndarray,
    max_error_2d: float = 1.0,
    outliers_probability: float = 1e-2,
    rng=None
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Robust 2-point homography for a purely rotating camera.

    Points must be relative to the principal point (e.g. image center).
    """
    return _robust_fit(ModelType.PANORAMIC, x1, x2, max_error_2d, outliers_probability, rng)
