"""
Error kinds raised by the geometry core.

Every failure is local to the computation that raised it; recovery (skip a
pair, substitute identity, abort) is left to the caller.
"""


class GeometryError(Exception):
    """Base class for all geometric estimation failures"""


class InsufficientCorrespondences(GeometryError):
    """Fewer correspondences than the minimal sample size"""

    def __init__(self, available: int, required: int):
        self.available = available
        self.required = required
        super().__init__(
            f"{available} correspondences available, at least {required} required"
        )


class NoConsensusFound(GeometryError):
    """Robust fitting never reached the minimum inlier count"""

    def __init__(self, best_inliers: int, required: int, iterations: int):
        self.best_inliers = best_inliers
        self.required = required
        self.iterations = iterations
        super().__init__(
            f"best model had {best_inliers} inliers after {iterations} iterations, "
            f"{required} required"
        )


class SingularCalibration(GeometryError):
    """A calibration matrix expected to be invertible was not"""


class NotPositiveDefinite(SingularCalibration):
    """A conic expected to be positive definite was not"""


class FailedDecomposition(GeometryError):
    """A transform could not be inverted or factored"""


class DegenerateInput(GeometryError):
    """Input that a parameterization or normalization cannot represent"""


class DegenerateProjection(GeometryError):
    """Homogeneous coordinate at (or numerically close to) zero"""


class ChainConsistencyError(GeometryError):
    """Internal inconsistency while composing a transform chain"""
