"""
Chaining of pairwise transforms into a common reference frame.

Convention: relative transform i maps coordinates of image i+1 into the frame
of image i. The absolute transform of image k maps image k into the frame of
the first image:

    absolute_1 = I
    absolute_k = absolute_{k-1} @ relative_{k-1} = relative_1 @ ... @ relative_{k-1}

The global bounding box is computed in the frame of the first image.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Hashable, List, Optional, Sequence, Tuple
import logging

import numpy as np

from panogeo.core.correspondences import CorrespondenceProvider, MosaicSource
from panogeo.core.errors import ChainConsistencyError, GeometryError
from panogeo.core.projection import homogeneous_to_euclidean
from panogeo.core.robust import RobustEstimator

logger = logging.getLogger(__name__)

PAIR_FAILURE_POLICIES = ("raise", "identity", "truncate")


@dataclass(frozen=True)
class BoundingBox:
    """Integer axis-aligned box (xmin, xmax, ymin, ymax)"""
    xmin: int
    xmax: int
    ymin: int
    ymax: int

    @property
    def width(self) -> int:
        return self.xmax - self.xmin

    @property
    def height(self) -> int:
        return self.ymax - self.ymin

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.xmin, self.xmax, self.ymin, self.ymax)

    def registration_transform(self) -> np.ndarray:
        """Translation moving (xmin, ymin) to the origin of the output raster"""
        return np.array([
            [1.0, 0.0, -self.xmin],
            [0.0, 1.0, -self.ymin],
            [0.0, 0.0, 1.0]
        ])


@dataclass
class ChainResult:
    """Absolute transforms of every image and the box covering all of them"""
    images: List[Hashable]
    absolutes: List[np.ndarray]
    bounding_box: BoundingBox

    def registered_transforms(self) -> List[np.ndarray]:
        """Absolute transforms followed by the registration translation"""
        reg = self.bounding_box.registration_transform()
        return [reg @ H for H in self.absolutes]


@dataclass
class PairEstimate:
    """
    Relative transform for one image pair, or the reason it could not be fit.

    ``transform`` maps coordinates of ``image_b`` into the frame of ``image_a``.
    """
    image_a: Hashable
    image_b: Hashable
    transform: Optional[np.ndarray] = None
    inliers: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=np.intp))
    num_correspondences: int = 0
    error: Optional[GeometryError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> np.ndarray:
        """The transform, or the failure raised"""
        if self.error is not None:
            raise self.error
        return self.transform


def _absolute_transforms(relatives: Sequence[np.ndarray]) -> List[np.ndarray]:
    absolute = np.eye(3)
    absolutes = [absolute]
    for relative in relatives:
        absolute = absolute @ np.asarray(relative, dtype=np.float64)
        absolutes.append(absolute)
    return absolutes


def _image_corners(width: int, height: int) -> np.ndarray:
    return np.array([
        [0.0, 0.0, width, width],
        [0.0, height, height, 0.0],
        [1.0, 1.0, 1.0, 1.0]
    ])


def _bounding_box(image_sizes: Sequence[Tuple[int, int]], absolutes: Sequence[np.ndarray]) -> BoundingBox:
    xmin = ymin = np.inf
    xmax = ymax = -np.inf

    for k, ((width, height), H) in enumerate(zip(image_sizes, absolutes)):
        corners = homogeneous_to_euclidean(H @ _image_corners(width, height))
        # Round outward so the integer box covers every mapped pixel
        corners = np.ceil(corners)
        xmin = min(xmin, corners[0].min())
        xmax = max(xmax, corners[0].max())
        ymin = min(ymin, corners[1].min())
        ymax = max(ymax, corners[1].max())
        logger.debug(f"Image {k}: x in [{corners[0].min():.0f}, {corners[0].max():.0f}], "
                     f"y in [{corners[1].min():.0f}, {corners[1].max():.0f}]")

    if not (xmin <= xmax and ymin <= ymax):
        raise ChainConsistencyError(f"Invalid bounding box ({xmin}, {xmax}, {ymin}, {ymax})")

    return BoundingBox(int(xmin), int(xmax), int(ymin), int(ymax))


def compute_global_bounding_box(
    image_sizes: Sequence[Tuple[int, int]],
    relatives: Sequence[np.ndarray]
) -> BoundingBox:
    """
    Bounding box, in the first image's frame, of all images mapped by the chain.

    Args:
        image_sizes: (width, height) of each of the N images
        relatives: N-1 relative transforms

    Returns:
        BoundingBox with integer bounds

    Raises:
        DegenerateProjection: a corner maps to infinity
        ChainConsistencyError: the box is empty
    """
    return compose_chain(relatives, image_sizes).bounding_box


def compose_chain(
    relatives: Sequence[np.ndarray],
    image_sizes: Sequence[Tuple[int, int]],
    images: Optional[Sequence[Hashable]] = None
) -> ChainResult:
    """
    Compose relative transforms into absolute ones and compute the global box.

    Args:
        relatives: N-1 relative transforms, relative i mapping image i+1 into image i
        image_sizes: (width, height) of each of the N images
        images: Optional identifiers of the N images (defaults to 0..N-1)

    Returns:
        ChainResult
    """
    if len(image_sizes) == 0:
        raise ValueError("At least one image is required")
    if len(image_sizes) != len(relatives) + 1:
        raise ValueError(f"{len(image_sizes)} images need {len(image_sizes) - 1} relative "
                         f"transforms, got {len(relatives)}")
    images = list(images) if images is not None else list(range(len(image_sizes)))
    if len(images) != len(image_sizes):
        raise ValueError(f"{len(images)} image identifiers for {len(image_sizes)} image sizes")

    absolutes = _absolute_transforms(relatives)
    bbox = _bounding_box(image_sizes, absolutes)
    logger.info(f"Chained {len(images)} images, bounding box {bbox.as_tuple()} "
                f"({bbox.width}x{bbox.height})")
    return ChainResult(images=images, absolutes=absolutes, bounding_box=bbox)


def estimate_pair(
    provider: CorrespondenceProvider,
    image_a: Hashable,
    image_b: Hashable,
    config,
    rng=None
) -> PairEstimate:
    """
    Estimate the transform mapping image_b into the frame of image_a.

    Geometric failures are returned in the PairEstimate, never raised.
    """
    correspondences = provider.get_correspondences(image_a, image_b)
    estimator = RobustEstimator.from_config(config, rng=rng)
    try:
        # points of image_b are the source, points of image_a the target
        fit = estimator.estimate(correspondences.swapped())
    except GeometryError as e:
        logger.warning(f"Pair ({image_a}, {image_b}): {type(e).__name__}: {e}")
        return PairEstimate(image_a, image_b, num_correspondences=len(correspondences), error=e)

    return PairEstimate(
        image_a,
        image_b,
        transform=fit.transform,
        inliers=fit.inliers,
        num_correspondences=len(correspondences),
    )


def estimate_relative_transforms(
    images: Sequence[Hashable],
    provider: CorrespondenceProvider,
    config
) -> List[PairEstimate]:
    """
    Estimate every adjacent pair of an ordered image sequence.

    Each pair gets its own random generator spawned from ``config.seed`` so the
    result does not depend on ``config.max_workers``.
    """
    pairs = list(zip(images[:-1], images[1:]))
    seeds = np.random.SeedSequence(config.seed).spawn(len(pairs))
    rngs = [np.random.default_rng(seed) for seed in seeds]

    logger.info(f"Estimating {len(pairs)} relative {config.model} transforms "
                f"with {config.max_workers} worker(s)")

    if config.max_workers <= 1 or len(pairs) <= 1:
        return [estimate_pair(provider, a, b, config, rng) for (a, b), rng in zip(pairs, rngs)]

    with ThreadPoolExecutor(max_workers=config.max_workers) as executor:
        futures = [
            executor.submit(estimate_pair, provider, a, b, config, rng)
            for (a, b), rng in zip(pairs, rngs)
        ]
        return [future.result() for future in futures]


def apply_failure_policy(
    images: Sequence[Hashable],
    estimates: Sequence[PairEstimate],
    policy: str = "raise"
) -> Tuple[List[Hashable], List[np.ndarray]]:
    """
    Turn pair estimates into a chain with one relative transform per adjacent pair.

    Args:
        images: N ordered image identifiers
        estimates: N-1 pair estimates
        policy: 'raise' re-raises the first failure, 'identity' substitutes an
            identity transform, 'truncate' ends the chain before the first failure

    Returns:
        Tuple of (images kept, relative transforms), len(images) == len(transforms) + 1
    """
    if policy not in PAIR_FAILURE_POLICIES:
        raise ValueError(f"Unknown pair failure policy {policy!r}")

    kept_images = [images[0]]
    relatives = []
    for image, estimate in zip(images[1:], estimates):
        if not estimate.ok:
            if policy == "raise":
                raise estimate.error
            if policy == "truncate":
                dropped = len(images) - len(kept_images)
                logger.warning(f"Chain truncated at pair ({estimate.image_a}, {estimate.image_b}); "
                               f"{dropped} image(s) dropped")
                break
            logger.warning(f"Substituting identity for pair ({estimate.image_a}, {estimate.image_b})")
            relatives.append(np.eye(3))
        else:
            relatives.append(estimate.transform)
        kept_images.append(image)

    return kept_images, relatives


def build_mosaic_geometry(
    images: Sequence[Hashable],
    provider: MosaicSource,
    config
) -> ChainResult:
    """
    Estimate, chain and bound an ordered image sequence.

    Args:
        images: Ordered image identifiers
        provider: Correspondences and image sizes for the sequence
        config: EstimationConfig

    Returns:
        ChainResult for the images kept by the failure policy
    """
    images = list(images)
    if not images:
        raise ValueError("No images to chain")
    if not isinstance(provider, MosaicSource):
        raise TypeError(f"{type(provider).__name__} must provide both correspondences and image sizes")

    estimates = estimate_relative_transforms(images, provider, config)
    kept, relatives = apply_failure_policy(images, estimates, config.on_pair_failure)
    sizes = [provider.get_image_size(image) for image in kept]
    return compose_chain(relatives, sizes, kept)
