"""
Point correspondences between two images and the providers that supply them.

Feature detection and match-file parsing live outside this package; the core
only depends on the small protocols defined here.
"""

import numpy as np
from dataclasses import dataclass
from typing import Dict, Hashable, Optional, Protocol, Sequence, Tuple, runtime_checkable
import logging

logger = logging.getLogger(__name__)


def _as_points(points, name: str) -> np.ndarray:
    arr = np.asarray(points, dtype=np.float64)
    if arr.size == 0:
        return np.zeros((0, 2), dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"{name} must be an Nx2 array, got shape {arr.shape}")
    return arr


@dataclass(frozen=True)
class CorrespondenceSet:
    """
    Matched points between image A and image B.

    Row i of ``points_a`` and row i of ``points_b`` depict the same feature.
    """
    points_a: np.ndarray
    points_b: np.ndarray
    image_a: Optional[Hashable] = None
    image_b: Optional[Hashable] = None

    def __post_init__(self):
        points_a = _as_points(self.points_a, "points_a")
        points_b = _as_points(self.points_b, "points_b")
        if len(points_a) != len(points_b):
            raise ValueError(
                f"Point sequences differ in length: {len(points_a)} != {len(points_b)}"
            )
        # frozen dataclass, so bypass __setattr__ for the normalized arrays
        object.__setattr__(self, "points_a", points_a)
        object.__setattr__(self, "points_b", points_b)

    def __len__(self) -> int:
        return len(self.points_a)

    def swapped(self) -> "CorrespondenceSet":
        """Same correspondences with the roles of the two images exchanged"""
        return CorrespondenceSet(self.points_b, self.points_a, self.image_b, self.image_a)

    def subset(self, indices: Sequence[int]) -> "CorrespondenceSet":
        """Correspondences at the given indices, in the given order"""
        idx = np.asarray(indices, dtype=np.intp)
        return CorrespondenceSet(
            self.points_a[idx], self.points_b[idx], self.image_a, self.image_b
        )


@runtime_checkable
class CorrespondenceProvider(Protocol):
    """Source of matched points for an image pair (matching/tracking subsystem)"""

    def get_correspondences(self, image_a: Hashable, image_b: Hashable) -> CorrespondenceSet:
        ...


@runtime_checkable
class ImageSizeProvider(Protocol):
    """Source of image dimensions (image I/O subsystem)"""

    def get_image_size(self, image: Hashable) -> Tuple[int, int]:
        ...


@runtime_checkable
class MosaicSource(CorrespondenceProvider, ImageSizeProvider, Protocol):
    """Everything needed to estimate and bound a chain of images"""


class InMemoryCorrespondenceProvider:
    """Dictionary-backed correspondence and image size provider"""

    def __init__(self):
        self._sizes: Dict[Hashable, Tuple[int, int]] = {}
        self._pairs: Dict[Tuple[Hashable, Hashable], CorrespondenceSet] = {}

    def add_image(self, image: Hashable, width: int, height: int):
        """Register an image with its size in pixels"""
        if width <= 0 or height <= 0:
            raise ValueError(f"Image {image!r} has invalid size {width}x{height}")
        self._sizes[image] = (int(width), int(height))

    def add_correspondences(self, image_a: Hashable, image_b: Hashable, points_a, points_b):
        """Register matched points between two images"""
        self._pairs[(image_a, image_b)] = CorrespondenceSet(points_a, points_b, image_a, image_b)
        logger.debug(f"Stored {len(points_a)} correspondences for ({image_a}, {image_b})")

    @property
    def images(self) -> list:
        """Registered images in insertion order"""
        return list(self._sizes)

    def get_image_size(self, image: Hashable) -> Tuple[int, int]:
        try:
            return self._sizes[image]
        except KeyError:
            raise KeyError(f"Unknown image {image!r}") from None

    def get_correspondences(self, image_a: Hashable, image_b: Hashable) -> CorrespondenceSet:
        if (image_a, image_b) in self._pairs:
            return self._pairs[(image_a, image_b)]
        if (image_b, image_a) in self._pairs:
            return self._pairs[(image_b, image_a)].swapped()
        return CorrespondenceSet(np.zeros((0, 2)), np.zeros((0, 2)), image_a, image_b)
