"""Geometry core: robust estimation, chaining, projection and parameterization"""

from panogeo.core.chain import (
    BoundingBox,
    ChainResult,
    PairEstimate,
    apply_failure_policy,
    build_mosaic_geometry,
    compose_chain,
    compute_global_bounding_box,
    estimate_pair,
    estimate_relative_transforms,
)
from panogeo.core.correspondences import CorrespondenceSet, InMemoryCorrespondenceProvider, MosaicSource
from panogeo.core.errors import (
    ChainConsistencyError,
    DegenerateInput,
    DegenerateProjection,
    FailedDecomposition,
    GeometryError,
    InsufficientCorrespondences,
    NoConsensusFound,
    NotPositiveDefinite,
    SingularCalibration,
)
from panogeo.core.fundamental import rank2_from_matrix, rank2_to_matrix, refine_fundamental
from panogeo.core.kernels import ModelType, create_solver
from panogeo.core.projection import (
    compose_projection,
    decompose_projection,
    intrinsics_from_absolute_conic,
)
from panogeo.core.robust import (
    RobustEstimator,
    RobustFit,
    affine_from_correspondences_robust,
    homography_from_correspondences_robust,
    panoramic_homography_robust,
)
