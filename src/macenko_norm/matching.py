# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Stain-column order between the source and the target.

Stain estimation does not guarantee that two images report their stains in
the same column order: hematoxylin may be column 0 for one image and
column 1 for the other.  Rescaling then pairs the wrong channels and the
normalised image gets visibly wrong colours.

The pipeline never reorders columns on its own.  A matcher makes the choice
explicit:

- :class:`IdentityMatcher` keeps the estimated order and logs a warning when
  a different order would align the stains better.
- :class:`PermutationMatcher` applies an order chosen by the user.
"""

from __future__ import annotations

import itertools
import logging
from typing import Protocol, Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

from macenko_norm.errors import DimensionMismatchError
from macenko_norm.stains import normalize_columns

logger = logging.getLogger(__name__)


def stain_similarity(a: ArrayLike, b: ArrayLike) -> NDArray[np.float64]:
    """Absolute cosine similarity between every column of *a* and of *b*.

    :param a: ``(3, K)`` stain matrix
    :type a: ArrayLike
    :param b: ``(3, K)`` stain matrix
    :type b: ArrayLike
    :return: ``(K, K)`` matrix; entry ``[i, j]`` compares ``a[:, i]`` with
        ``b[:, j]``
    :rtype: NDArray[np.float64]
    :raises DimensionMismatchError: If the stain counts differ.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        msg = f"stain matrices must have the same shape, got {a.shape} and {b.shape}"
        raise DimensionMismatchError(msg)
    return np.abs(normalize_columns(a).T @ normalize_columns(b))


def best_permutation(source_matrix: ArrayLike, target_matrix: ArrayLike) -> tuple[int, ...]:
    """Source column order that maximises similarity to the target columns.

    Only meant as a diagnostic; ties keep the identity order.
    """
    sim = stain_similarity(source_matrix, target_matrix)
    k = sim.shape[0]
    identity = tuple(range(k))
    best, best_score = identity, np.trace(sim)
    for order in itertools.permutations(range(k)):
        score = sum(sim[src, dst] for dst, src in enumerate(order))
        if score > best_score + 1e-9:
            best, best_score = order, score
    return best


class StainMatcher(Protocol):
    """Arranges source concentrations to follow the target's stain order."""

    def match(
        self,
        source_matrix: NDArray[np.float64],
        target_matrix: NDArray[np.float64],
        concentrations: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        ...


class IdentityMatcher:
    """Keep the estimated column order, but flag a suspected mismatch."""

    def match(self, source_matrix, target_matrix, concentrations):
        source_matrix = np.asarray(source_matrix)
        target_matrix = np.asarray(target_matrix)
        if source_matrix.shape == target_matrix.shape:
            order = best_permutation(source_matrix, target_matrix)
            if order != tuple(range(len(order))):
                logger.warning(
                    "Source stain columns look out of order relative to the "
                    "target (best match %s); colours may be wrong. Pass a "
                    "PermutationMatcher to reorder them.",
                    list(order),
                )
        return concentrations


class PermutationMatcher:
    """Reorder source concentration columns with a fixed permutation.

    ``PermutationMatcher([1, 0, 2])`` swaps the first two stains, e.g. when
    the source reported eosin before hematoxylin.

    :param order: new column order; a permutation of ``range(K)``
    :type order: Sequence[int]
    """

    def __init__(self, order: Sequence[int]):
        order = tuple(int(i) for i in order)
        if sorted(order) != list(range(len(order))):
            msg = f"order must be a permutation of 0..{len(order) - 1}, got {list(order)}"
            raise ValueError(msg)
        self.order = order

    def match(self, source_matrix, target_matrix, concentrations):
        concentrations = np.asarray(concentrations)
        if concentrations.shape[1] != len(self.order):
            msg = (
                f"permutation {list(self.order)} has {len(self.order)} entries but "
                f"the concentrations have {concentrations.shape[1]} stain channels"
            )
            raise DimensionMismatchError(msg)
        logger.debug("Reordering source stain channels as %s", list(self.order))
        return concentrations[:, list(self.order)]
