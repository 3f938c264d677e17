# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Macenko stain normalization of a source image to a target image.

The source's stain concentrations are rescaled channel by channel so that
their 99th percentiles match the target's, then re-rendered with the
*target* stain matrix:

    C_norm = C_source / p99(C_source) x p99(C_target)
    RGB    = Io x exp(-C_norm x M_targetᵀ)

Typical usage::

    from macenko_norm import normalize

    normalized = normalize(source_rgb, target_rgb)

or, to normalise many images to one target::

    from macenko_norm import MacenkoNormalizer

    normalizer = MacenkoNormalizer().fit(target_rgb)
    normalized = [normalizer.transform(im) for im in sources]
"""

from __future__ import annotations

import logging
import warnings
from typing import Callable, Iterable

import numpy as np
from numpy.typing import ArrayLike, NDArray

from macenko_norm.config import NormalizationConfig
from macenko_norm.errors import (
    DegenerateChannelError,
    DimensionMismatchError,
    GamutOverflowWarning,
    MissingInputError,
)
from macenko_norm.matching import IdentityMatcher, StainMatcher
from macenko_norm.optical_density import od_to_rgb
from macenko_norm.stains import MacenkoStainModel, StainModel

logger = logging.getLogger(__name__)

#: Called with ``(source, target, normalized)`` after each normalization.
Observer = Callable[[np.ndarray, np.ndarray, np.ndarray], None]

#: A source channel whose 99th percentile is at or below this has no signal.
DEGENERATE_PERCENTILE = 1e-12


def _validate_image(image: ArrayLike | None, name: str) -> np.ndarray:
    if image is None:
        msg = f"Please supply a {name} image."
        raise MissingInputError(msg)
    image = np.asarray(image)
    if image.size == 0:
        msg = f"The {name} image is empty, got shape {image.shape}"
        raise MissingInputError(msg)
    if image.ndim != 3 or image.shape[2] != 3:
        msg = f"The {name} image must have shape (H, W, 3), got {image.shape}"
        raise ValueError(msg)
    if not np.issubdtype(image.dtype, np.number) or np.issubdtype(
        image.dtype, np.complexfloating
    ):
        msg = f"The {name} image must be real-valued, got dtype {image.dtype}"
        raise ValueError(msg)
    if image.min() < 0 or image.max() > 255:
        msg = (
            f"The {name} image must have values in [0, 255], "
            f"got [{image.min()}, {image.max()}]"
        )
        raise ValueError(msg)
    return image


def _percentile99(concentrations: NDArray[np.float64]) -> NDArray[np.float64]:
    return np.percentile(concentrations, 99, axis=0)


def rescale_concentrations(
    source: ArrayLike,
    target: ArrayLike,
    policy: str = "zero",
) -> NDArray[np.float64]:
    """Rescale source concentrations into the target's dynamic range.

    Every stain channel is scaled independently so that its 99th percentile
    equals the target's 99th percentile for the same channel.  No clamping
    is applied to the result.

    :param source: ``(N, K)`` source concentrations
    :type source: ArrayLike
    :param target: ``(M, K)`` target concentrations
    :type target: ArrayLike
    :param policy: handling of a source channel with a zero 99th
        percentile: ``"zero"`` maps the channel to zero, ``"raise"`` raises
    :type policy: str
    :return: ``(N, K)`` rescaled concentrations
    :rtype: NDArray[np.float64]
    :raises DimensionMismatchError: If the stain counts differ.
    :raises DegenerateChannelError: If a channel is degenerate and *policy*
        is ``"raise"``.
    """
    source = np.asarray(source, dtype=np.float64)
    target = np.asarray(target, dtype=np.float64)
    if source.ndim != 2 or target.ndim != 2:
        msg = (
            "concentrations must be 2D (pixels, stains), "
            f"got {source.shape} and {target.shape}"
        )
        raise ValueError(msg)
    if source.shape[1] != target.shape[1]:
        msg = (
            f"source has {source.shape[1]} stain channel(s) but target has "
            f"{target.shape[1]}; rescaling is undefined"
        )
        raise DimensionMismatchError(msg)

    max_source = _percentile99(source)
    max_target = _percentile99(target)
    logger.debug("99th percentiles: source %s, target %s", max_source, max_target)

    degenerate = max_source <= DEGENERATE_PERCENTILE
    if np.any(degenerate):
        channels = np.flatnonzero(degenerate).tolist()
        if policy == "raise":
            raise DegenerateChannelError(channels)
        if policy != "zero":
            msg = f"unknown degenerate-channel policy {policy!r}"
            raise ValueError(msg)
        logger.warning(
            "Source stain channel(s) %s carry no signal; scaling them to zero",
            channels,
        )

    scale = np.zeros_like(max_source)
    np.divide(max_target, max_source, out=scale, where=~degenerate)
    return source * scale


def reconstruct_image(
    concentrations: ArrayLike,
    stain_matrix: ArrayLike,
    height: int,
    width: int,
    io: float = 255.0,
) -> NDArray[np.uint8]:
    """Render stain concentrations as an 8-bit RGB image.

    ``RGB = io x exp(-concentrations x stain_matrixᵀ)``, reshaped to
    ``(height, width, 3)`` in the row-major pixel order used for
    flattening.  Values outside ``[0, 255]`` are clamped, which is lossy by
    intent; a :class:`~macenko_norm.errors.GamutOverflowWarning` reports it.
    The result is truncated to ``uint8``.

    :param concentrations: ``(height*width, K)`` concentrations
    :type concentrations: ArrayLike
    :param stain_matrix: ``(3, K)`` stain matrix
    :type stain_matrix: ArrayLike
    :param height: image height
    :type height: int
    :param width: image width
    :type width: int
    :param io: transmitted light intensity
    :type io: float
    :return: ``(height, width, 3)`` image
    :rtype: NDArray[np.uint8]
    :raises DimensionMismatchError: If the stain counts differ.
    :raises ValueError: If the pixel count does not match ``height*width``.
    """
    concentrations = np.asarray(concentrations, dtype=np.float64)
    stain_matrix = np.asarray(stain_matrix, dtype=np.float64)
    if stain_matrix.ndim != 2 or stain_matrix.shape[0] != 3:
        msg = f"stain_matrix must be (3, K), got {stain_matrix.shape}"
        raise ValueError(msg)
    if concentrations.ndim != 2 or concentrations.shape[1] != stain_matrix.shape[1]:
        msg = (
            f"concentrations {concentrations.shape} do not match "
            f"stain_matrix {stain_matrix.shape}"
        )
        raise DimensionMismatchError(msg)
    if concentrations.shape[0] != height * width:
        msg = (
            f"cannot reshape {concentrations.shape[0]} pixel(s) "
            f"to ({height}, {width}, 3)"
        )
        raise ValueError(msg)

    rgb = od_to_rgb(concentrations @ stain_matrix.T, io=io)
    out_of_gamut = int(np.count_nonzero((rgb < 0.0) | (rgb > 255.0)))
    if out_of_gamut:
        warnings.warn(
            f"{out_of_gamut} reconstructed value(s) outside [0, 255] were clamped",
            GamutOverflowWarning,
            stacklevel=2,
        )
    rgb = np.clip(rgb, 0.0, 255.0)
    return rgb.reshape(height, width, 3).astype(np.uint8)


class MacenkoNormalizer:
    """Normalise images to the stain appearance of a fitted target.

    :param config: normalization parameters; defaults are used when omitted
    :type config: NormalizationConfig | None
    :param stain_model: estimator and deconvolver for both images
    :type stain_model: StainModel | None
    :param matcher: strategy for the source/target stain-column order
    :type matcher: StainMatcher | None
    """

    def __init__(
        self,
        config: NormalizationConfig | None = None,
        stain_model: StainModel | None = None,
        matcher: StainMatcher | None = None,
    ):
        self.config = config if config is not None else NormalizationConfig()
        self.stain_model = stain_model if stain_model is not None else MacenkoStainModel()
        self.matcher = matcher if matcher is not None else IdentityMatcher()
        self.stain_matrix = None
        self.target_concentrations = None

    @property
    def is_fitted(self) -> bool:
        return self.stain_matrix is not None

    def fit(self, target: ArrayLike) -> MacenkoNormalizer:
        """Estimate and deconvolve the target image."""
        return self._fit(_validate_image(target, "Target"))

    def _fit(self, target: np.ndarray) -> MacenkoNormalizer:
        stain_matrix = self.stain_model.estimate(target, self.config).unwrap()
        concentrations, stain_matrix = self.stain_model.deconvolve(
            target, stain_matrix, io=self.config.io
        )
        self.stain_matrix = stain_matrix
        self.target_concentrations = concentrations
        logger.debug("Fitted target stain matrix:\n%s", stain_matrix)
        return self

    def transform(self, source: ArrayLike) -> NDArray[np.uint8]:
        """Normalise *source* to the fitted target.

        :param source: RGB image with shape ``(H, W, 3)``
        :type source: ArrayLike
        :return: normalised ``uint8`` image with the source's shape
        :rtype: NDArray[np.uint8]
        :raises RuntimeError: If :meth:`fit` has not been called.
        """
        if not self.is_fitted:
            msg = "MacenkoNormalizer must be fitted before calling transform()."
            raise RuntimeError(msg)
        return self._transform(_validate_image(source, "Source"))

    def _transform(self, source: np.ndarray) -> NDArray[np.uint8]:
        h, w, _ = source.shape

        estimate = self.stain_model.estimate(source, self.config)
        if estimate.ok:
            source_matrix = estimate.stain_matrix
        else:
            logger.warning(
                "Source stain estimation failed (%s); deconvolving the source "
                "with the target stain matrix",
                estimate.reason,
            )
            source_matrix = self.stain_matrix

        concentrations, source_matrix = self.stain_model.deconvolve(
            source, source_matrix, io=self.config.io
        )
        concentrations = self.matcher.match(
            source_matrix, self.stain_matrix, concentrations
        )
        concentrations = rescale_concentrations(
            concentrations,
            self.target_concentrations,
            policy=self.config.degenerate_policy,
        )
        return reconstruct_image(concentrations, self.stain_matrix, h, w, io=self.config.io)


def normalize(
    source: ArrayLike,
    target: ArrayLike,
    config: NormalizationConfig | None = None,
    *,
    stain_model: StainModel | None = None,
    matcher: StainMatcher | None = None,
    observers: Iterable[Observer] = (),
) -> NDArray[np.uint8]:
    """Normalise the stain appearance of *source* to match *target*.

    :param source: RGB image to normalise, shape ``(H, W, 3)``
    :type source: ArrayLike
    :param target: reference RGB image, shape ``(H', W', 3)``
    :type target: ArrayLike
    :param config: normalization parameters; defaults to
        ``NormalizationConfig()`` (``io=255``, ``beta=0.15``, ``alpha=1``)
    :type config: NormalizationConfig | None
    :param stain_model: stain estimator/deconvolver, Macenko by default
    :type stain_model: StainModel | None
    :param matcher: stain-column order strategy, identity by default
    :type matcher: StainMatcher | None
    :param observers: callables invoked with ``(source, target, normalized)``
    :type observers: Iterable[Observer]
    :return: normalised ``uint8`` image with the source's shape
    :rtype: NDArray[np.uint8]
    :raises MissingInputError: If either image is missing or empty.
    :raises StainEstimationError: If the target stains cannot be estimated.
    :raises DimensionMismatchError: If the stain counts differ.
    """
    source = _validate_image(source, "Source")
    target = _validate_image(target, "Target")

    normalizer = MacenkoNormalizer(config, stain_model=stain_model, matcher=matcher)
    normalized = normalizer._fit(target)._transform(source)

    for observer in observers:
        observer(source, target, normalized)
    return normalized
