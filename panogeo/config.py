"""Configuration for relative transform estimation and chaining."""

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union
import logging

import yaml

from panogeo.core.chain import PAIR_FAILURE_POLICIES
from panogeo.core.kernels import ModelType

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Invalid configuration value or file"""


@dataclass
class EstimationConfig:
    """Parameters supplied by the driving application.

    Load from YAML with ``load_config`` or override fields directly.
    """

    # Model
    model: Literal["affine", "affine_full", "homography", "panoramic"] = "affine"
    """Transform family: 2-point affine, 3-point affine, 4-point homography or 2-point rotation"""

    # Robust fitting
    max_error_2d: float = 1.0
    """Maximum residual (pixels) for a correspondence to count as an inlier"""

    outliers_probability: float = 1e-2
    """Accepted probability of never drawing an all-inlier sample, in [0, 1)"""

    initial_iterations: int = 100
    """Iteration bound used until a first consensus has been observed"""

    max_iterations: int = 4096
    """Hard cap on sampling iterations"""

    min_inliers: Optional[int] = None
    """Minimum consensus size; None uses the solver's minimal sample size"""

    symmetric_error: bool = False
    """Score with forward plus backward transfer error"""

    normalize: bool = True
    """Isotropic normalization of samples (ignored by the panoramic model)"""

    refit: bool = True
    """Refit the winning model on all of its inliers"""

    seed: Optional[int] = None
    """Base seed; every image pair gets an independent generator derived from it"""

    # Chaining
    on_pair_failure: Literal["raise", "identity", "truncate"] = "raise"
    """What to do with a pair that cannot be fit"""

    max_workers: int = 1
    """Worker threads for per-pair estimation"""

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Raise ConfigError if any value is out of range"""
        try:
            self.model = ModelType(self.model).value
        except ValueError:
            raise ConfigError(f"Unknown model {self.model!r}, "
                              f"expected one of {[m.value for m in ModelType]}") from None
        if not self.max_error_2d > 0:
            raise ConfigError(f"max_error_2d must be positive, got {self.max_error_2d}")
        if not 0.0 <= self.outliers_probability < 1.0:
            raise ConfigError(f"outliers_probability must be in [0, 1), got {self.outliers_probability}")
        if self.initial_iterations < 1 or self.max_iterations < 1:
            raise ConfigError("Iteration bounds must be at least 1")
        if self.min_inliers is not None and self.min_inliers < 1:
            raise ConfigError(f"min_inliers must be at least 1, got {self.min_inliers}")
        if self.on_pair_failure not in PAIR_FAILURE_POLICIES:
            raise ConfigError(f"on_pair_failure must be one of {PAIR_FAILURE_POLICIES}, "
                              f"got {self.on_pair_failure!r}")
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1, got {self.max_workers}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EstimationConfig":
        """Build from a mapping, rejecting unknown keys"""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {unknown}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(path: Union[str, Path]) -> EstimationConfig:
    """Load an EstimationConfig from a YAML file"""
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read configuration {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration {path} must contain a mapping")

    config = EstimationConfig.from_dict(data)
    logger.info(f"Loaded configuration from {path}: model={config.model}, "
                f"max_error_2d={config.max_error_2d}")
    return config
