# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Command line entry point: ``macenko-norm SOURCE TARGET -o OUTPUT``."""

from __future__ import annotations

import argparse
import logging
import sys

import numpy as np
from PIL import Image

from macenko_norm.__about__ import __version__
from macenko_norm.config import DEGENERATE_POLICIES, NormalizationConfig
from macenko_norm.errors import MacenkoNormError
from macenko_norm.matching import PermutationMatcher
from macenko_norm.normalization import normalize

logger = logging.getLogger(__name__)


def _permutation(value: str) -> list[int]:
    try:
        return [int(part) for part in value.split(",")]
    except ValueError:
        msg = f"expected comma-separated integers such as 1,0,2, got {value!r}"
        raise argparse.ArgumentTypeError(msg) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="macenko-norm",
        description=(
            "Normalise the stain appearance of a source histology image "
            "to a target image with Macenko's method."
        ),
    )
    parser.add_argument("source", help="RGB source image to normalise")
    parser.add_argument("target", help="RGB reference image")
    parser.add_argument("-o", "--output", required=True, help="where to write the result")
    parser.add_argument(
        "--io", type=float, default=None, help="transmitted light intensity (default 255)"
    )
    parser.add_argument(
        "--beta",
        type=float,
        default=None,
        help="OD threshold for transparent pixels (default 0.15)",
    )
    parser.add_argument(
        "--alpha",
        type=float,
        default=None,
        help="tolerance for the pseudo-min and pseudo-max, in percent (default 1)",
    )
    parser.add_argument(
        "--degenerate-policy",
        choices=DEGENERATE_POLICIES,
        default=None,
        help="handling of source stains without signal (default zero)",
    )
    parser.add_argument(
        "--permutation",
        type=_permutation,
        default=None,
        help="reorder source stain channels, e.g. 1,0,2 swaps the first two",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="display source, target and result"
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="logging verbosity (default WARNING)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def read_image(path) -> np.ndarray:
    with Image.open(path) as im:
        return np.asarray(im.convert("RGB"))


def write_image(path, image: np.ndarray) -> None:
    Image.fromarray(image).save(path)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    try:
        matcher = PermutationMatcher(args.permutation) if args.permutation else None
        config = NormalizationConfig.from_optional(
            io=args.io,
            beta=args.beta,
            alpha=args.alpha,
            verbose=args.verbose,
            degenerate_policy=args.degenerate_policy,
        )
    except ValueError as exc:
        logger.error("Invalid parameters: %s", exc)
        return 1

    observers = []
    if config.verbose:
        from macenko_norm.visualize import show_comparison

        observers.append(show_comparison)

    try:
        source = read_image(args.source)
        target = read_image(args.target)
        normalized = normalize(
            source, target, config, matcher=matcher, observers=observers
        )
    except (OSError, ValueError, MacenkoNormError) as exc:
        logger.error("Normalization failed: %s", exc)
        return 1

    write_image(args.output, normalized)
    logger.info("Wrote %s", args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
