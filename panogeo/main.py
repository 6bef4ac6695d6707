#!/usr/bin/env python3
"""
panogeo - relative and absolute transforms for an ordered image sequence
Main entry point for the command-line driver
"""

import sys
import argparse
import logging
from pathlib import Path

import yaml

from panogeo.config import ConfigError, EstimationConfig, load_config
from panogeo.core.chain import build_mosaic_geometry
from panogeo.core.correspondences import InMemoryCorrespondenceProvider
from panogeo.core.errors import GeometryError
from panogeo.utils.logger import setup_logger

logger = logging.getLogger(__name__)


def load_job(path: Path) -> InMemoryCorrespondenceProvider:
    """
    Read a job file describing images and their correspondences.

    Expected layout:
        images: [{id, width, height}, ...]          # in chaining order
        pairs:  [{a, b, points_a: [[x, y], ...], points_b: [[x, y], ...]}, ...]
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            job = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read job file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    provider = InMemoryCorrespondenceProvider()
    try:
        for image in job.get("images", []):
            provider.add_image(image["id"], image["width"], image["height"])
        for pair in job.get("pairs", []):
            provider.add_correspondences(pair["a"], pair["b"], pair["points_a"], pair["points_b"])
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ConfigError(f"Malformed job file {path}: {e}") from e

    if len(provider.images) < 2:
        raise ConfigError(f"Job file {path} needs at least two images")
    return provider


def main(argv=None):
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="panogeo - chain pairwise image transforms into a common frame"
    )
    parser.add_argument(
        "job",
        type=str,
        help="YAML file listing images (id, width, height) and pair correspondences"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="YAML file with estimation parameters"
    )
    parser.add_argument(
        "--model",
        type=str,
        choices=["affine", "affine_full", "homography", "panoramic"],
        help="Override the transform model"
    )
    parser.add_argument(
        "--seed",
        type=int,
        help="Seed for reproducible sampling"
    )
    parser.add_argument(
        "--output",
        type=str,
        help="Write the result as YAML to this file instead of stdout"
    )
    parser.add_argument(
        "--log-file",
        type=str,
        help="Also write debug logs to this file"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    args = parser.parse_args(argv)
    setup_logger("panogeo", logging.DEBUG if args.verbose else logging.INFO, args.log_file, stream=sys.stderr)

    try:
        config = load_config(args.config) if args.config else EstimationConfig()
        if args.model:
            config.model = args.model
        if args.seed is not None:
            config.seed = args.seed
        config.validate()

        provider = load_job(Path(args.job))
        result = build_mosaic_geometry(provider.images, provider, config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except GeometryError as e:
        logger.error(f"Estimation failed: {type(e).__name__}: {e}")
        return 1

    report = {
        "model": config.model,
        "bounding_box": dict(zip(("xmin", "xmax", "ymin", "ymax"), result.bounding_box.as_tuple())),
        "transforms": [
            {"image": image, "absolute": H.tolist()}
            for image, H in zip(result.images, result.absolutes)
        ],
    }
    text = yaml.safe_dump(report, sort_keys=False)

    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
        logger.info(f"Wrote {len(result.images)} transforms to {args.output}")
    else:
        sys.stdout.write(text)

    return 0


if __name__ == "__main__":
    sys.exit(main())
