# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Stain models: stain-matrix estimation and colour deconvolution.

A stain model turns an RGB image into a **stain matrix** (``(3, K)``, one
unit-norm OD colour per column) and, given such a matrix, into a
**concentration matrix** (``(H*W, K)``, one row per pixel in row-major
order).

Two models are provided:

- :class:`MacenkoStainModel` estimates the matrix from the image itself
  (Macenko et al., ISBI 2009).
- :class:`FixedStainModel` always returns a known matrix, e.g. published
  H&E reference vectors.

Typical usage::

    from macenko_norm.stains import MacenkoStainModel
    from macenko_norm.config import NormalizationConfig

    model = MacenkoStainModel()
    config = NormalizationConfig()
    stain_matrix = model.estimate(im_rgb, config).unwrap()
    concentrations, stain_matrix = model.deconvolve(im_rgb, stain_matrix)
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray

from macenko_norm.config import NormalizationConfig
from macenko_norm.errors import StainEstimationError
from macenko_norm.optical_density import rgb_to_od

logger = logging.getLogger(__name__)

#: Reference OD colours of common stains (HistomicsTK convention).
stain_color_map = {
    "hematoxylin": [0.65, 0.70, 0.29],
    "eosin": [0.07, 0.99, 0.11],
    "dab": [0.27, 0.57, 0.78],
    "null": [0.0, 0.0, 0.0],
}

#: Relative singular-value cutoff for the least-squares deconvolution.
LSTSQ_RCOND = 1e-6

#: Negative concentrations above this value are treated as solver noise.
NEGATIVE_TOLERANCE = 1e-6

#: Stain vectors whose cross product is shorter than this are parallel.
PARALLEL_TOLERANCE = 1e-12


# ---------------------------------------------------------------------------
# Matrix helpers
# ---------------------------------------------------------------------------


def normalize_columns(a: ArrayLike) -> NDArray[np.float64]:
    """Scale a vector, or every column of a matrix, to unit L2 norm.

    Zero vectors (and zero columns) are returned unchanged instead of
    producing NaNs.

    :param a: 1-D vector or 2-D matrix
    :type a: ArrayLike
    :return: normalised copy of *a*
    :rtype: NDArray[np.float64]
    """
    a = np.asarray(a, dtype=np.float64)
    if a.ndim == 1:
        n = np.linalg.norm(a)
        return a / n if n != 0.0 else np.zeros_like(a)
    norms = np.linalg.norm(a, axis=0, keepdims=True)
    norms = np.where(norms == 0.0, 1.0, norms)
    return a / norms


def complement_stain_matrix(stain_matrix: ArrayLike) -> NDArray[np.float64]:
    """Return a ``(3, 3)`` matrix whose third column complements the first two.

    The third column is the normalised cross product of the first two
    columns.  It captures residual absorbance that neither stain explains.
    If the first two columns are (numerically) parallel the third column
    is zero.

    :param stain_matrix: ``(3, 2)`` or ``(3, 3)`` stain matrix
    :type stain_matrix: ArrayLike
    :return: ``(3, 3)`` stain matrix
    :rtype: NDArray[np.float64]
    :raises ValueError: If the matrix does not have 3 rows and 2 or 3 columns.
    """
    w = np.asarray(stain_matrix, dtype=np.float64)
    if w.ndim != 2 or w.shape[0] != 3 or w.shape[1] not in (2, 3):
        msg = f"stain_matrix must be (3, 2) or (3, 3), got {w.shape}"
        raise ValueError(msg)

    out = np.zeros((3, 3), dtype=np.float64)
    out[:, :2] = w[:, :2]
    cross = np.cross(w[:, 0], w[:, 1])
    if np.linalg.norm(cross) > PARALLEL_TOLERANCE:
        out[:, 2] = cross / np.linalg.norm(cross)
    return out


def find_stain_index(reference: ArrayLike, stain_matrix: ArrayLike) -> int:
    """Return the column of *stain_matrix* that best matches *reference*.

    Similarity is the absolute cosine between the reference colour and each
    column, so sign flips do not matter.

    :param reference: OD colour of the wanted stain, e.g.
        ``stain_color_map["hematoxylin"]``
    :type reference: ArrayLike
    :param stain_matrix: ``(3, K)`` stain matrix
    :type stain_matrix: ArrayLike
    :return: column index
    :rtype: int
    """
    dot_products = np.dot(
        normalize_columns(stain_matrix).T, normalize_columns(reference)
    )
    return int(np.argmax(np.abs(dot_products)))


# ---------------------------------------------------------------------------
# Estimation results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class StainEstimate:
    """Outcome of a stain-matrix estimation.

    Exactly one of *stain_matrix* and *reason* is set.
    """

    stain_matrix: NDArray[np.float64] | None = None
    reason: str | None = None

    @classmethod
    def success(cls, stain_matrix: ArrayLike) -> StainEstimate:
        return cls(stain_matrix=np.asarray(stain_matrix, dtype=np.float64))

    @classmethod
    def failure(cls, reason: str) -> StainEstimate:
        return cls(reason=reason)

    @property
    def ok(self) -> bool:
        return self.stain_matrix is not None

    def unwrap(self) -> NDArray[np.float64]:
        """Return the stain matrix or raise :class:`StainEstimationError`."""
        if self.stain_matrix is None:
            raise StainEstimationError(self.reason or "stain estimation failed")
        return self.stain_matrix


# ---------------------------------------------------------------------------
# Stain models
# ---------------------------------------------------------------------------


class StainModel(abc.ABC):
    """Estimates stain matrices and deconvolves images against them."""

    @abc.abstractmethod
    def estimate(self, image: ArrayLike, config: NormalizationConfig) -> StainEstimate:
        """Estimate the ``(3, K)`` stain matrix of an RGB image."""

    def deconvolve(
        self,
        image: ArrayLike,
        stain_matrix: ArrayLike,
        io: float = 255.0,
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Decompose an RGB image into per-pixel stain concentrations.

        Solves ``OD = C x Mᵀ`` for all pixels at once by least squares.  A
        two-column matrix is first completed with its cross-product
        complement, and every column is normalised, so the matrix actually
        used is returned alongside the concentrations.  Rank-deficient
        matrices (e.g. parallel stains) yield the minimum-norm solution.

        Negative values closer to zero than :data:`NEGATIVE_TOLERANCE` are
        solver noise and are set to zero.  Larger negatives are kept signed:
        they are needed for ``C x Mᵀ`` to reproduce the optical density,
        and the residual (complement) channel is signed by nature.

        :param image: RGB image with shape ``(H, W, 3)``
        :type image: ArrayLike
        :param stain_matrix: ``(3, K)`` stain matrix
        :type stain_matrix: ArrayLike
        :param io: transmitted light intensity
        :type io: float
        :return: ``(H*W, K')`` concentrations and the ``(3, K')`` stain
            matrix used, where ``K' = 3`` if ``K == 2`` else ``K``
        :rtype: tuple[NDArray[np.float64], NDArray[np.float64]]
        :raises ValueError: If the image or stain matrix shape is invalid.
        """
        image = np.asarray(image)
        if image.ndim != 3 or image.shape[2] != 3:
            msg = f"image must have shape (H, W, 3), got {image.shape}"
            raise ValueError(msg)
        w = np.asarray(stain_matrix, dtype=np.float64)
        if w.ndim != 2 or w.shape[0] != 3 or w.shape[1] < 1:
            msg = f"stain_matrix must be (3, K), got {w.shape}"
            raise ValueError(msg)

        if w.shape[1] == 2:
            w = complement_stain_matrix(w)
        w = normalize_columns(w)

        od = rgb_to_od(image, io=io).reshape(-1, 3)
        concentrations = np.linalg.lstsq(w, od.T, rcond=LSTSQ_RCOND)[0].T

        n_negative = int(np.count_nonzero(concentrations <= -NEGATIVE_TOLERANCE))
        if n_negative:
            logger.debug(
                "Keeping %d concentration value(s) at or below -%g",
                n_negative,
                NEGATIVE_TOLERANCE,
            )
        noise = (concentrations < 0.0) & (concentrations > -NEGATIVE_TOLERANCE)
        concentrations[noise] = 0.0
        return concentrations, w


class MacenkoStainModel(StainModel):
    """Stain matrix estimation with Macenko's method.

    1. Convert the image to OD and drop transparent pixels, i.e. pixels
       with any channel below ``config.beta``.
    2. Take the plane spanned by the two eigenvectors of the OD covariance
       with the largest eigenvalues.
    3. Project the remaining pixels onto that plane and measure their angle.
    4. The stain vectors are the directions at the ``alpha`` and
       ``100 - alpha`` angle percentiles (robust extremes).

    The vector with the larger red OD is placed first, which usually puts
    hematoxylin in column 0 and eosin in column 1.  The order is a heuristic
    only; see :mod:`macenko_norm.matching`.
    """

    #: Fewer tissue pixels than this and the covariance is undefined.
    min_tissue_pixels = 2

    def estimate(self, image: ArrayLike, config: NormalizationConfig) -> StainEstimate:
        image = np.asarray(image)
        if image.ndim != 3 or image.shape[2] != 3:
            msg = f"image must have shape (H, W, 3), got {image.shape}"
            raise ValueError(msg)

        od = rgb_to_od(image, io=config.io).reshape(-1, 3)
        tissue = od[np.all(od >= config.beta, axis=1)]
        if tissue.shape[0] < self.min_tissue_pixels:
            return StainEstimate.failure(
                f"only {tissue.shape[0]} pixel(s) reach the OD threshold "
                f"beta={config.beta}; no tissue to estimate stains from"
            )

        _, eigvecs = np.linalg.eigh(np.cov(tissue, rowvar=False))
        plane = eigvecs[:, [2, 1]]
        if plane[:, 0].sum() < 0:
            plane[:, 0] = -plane[:, 0]

        projected = tissue @ plane
        phi = np.arctan2(projected[:, 1], projected[:, 0])
        min_phi = np.percentile(phi, config.alpha)
        max_phi = np.percentile(phi, 100 - config.alpha)

        v_min = plane @ np.array([np.cos(min_phi), np.sin(min_phi)])
        v_max = plane @ np.array([np.cos(max_phi), np.sin(max_phi)])

        if v_min[0] > v_max[0]:
            stains = np.column_stack([v_min, v_max])
        else:
            stains = np.column_stack([v_max, v_min])
        stains = normalize_columns(stains)

        if not np.all(np.isfinite(stains)):
            return StainEstimate.failure("stain estimation produced non-finite vectors")

        logger.debug(
            "Estimated stain matrix from %d tissue pixel(s):\n%s",
            tissue.shape[0],
            stains,
        )
        return StainEstimate.success(stains)


class FixedStainModel(StainModel):
    """A stain model that always reports the same stain matrix.

    :param stain_matrix: ``(3, K)`` stain matrix; columns are normalised
    :type stain_matrix: ArrayLike
    """

    def __init__(self, stain_matrix: ArrayLike):
        w = np.asarray(stain_matrix, dtype=np.float64)
        if w.ndim != 2 or w.shape[0] != 3 or w.shape[1] < 1:
            msg = f"stain_matrix must be (3, K), got {w.shape}"
            raise ValueError(msg)
        self.stain_matrix = normalize_columns(w)

    @classmethod
    def from_names(cls, *names: str) -> FixedStainModel:
        """Build a model from :data:`stain_color_map` entries.

        >>> FixedStainModel.from_names("hematoxylin", "eosin").stain_matrix.shape
        (3, 2)
        """
        try:
            columns = [stain_color_map[name] for name in names]
        except KeyError as exc:
            msg = f"unknown stain {exc.args[0]!r}; known: {sorted(stain_color_map)}"
            raise ValueError(msg) from exc
        return cls(np.column_stack(columns))

    def estimate(self, image: ArrayLike, config: NormalizationConfig) -> StainEstimate:
        return StainEstimate.success(self.stain_matrix.copy())
