# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Exceptions and warnings raised by the normalization pipeline.

Input and shape errors also derive from :class:`ValueError`, so callers
that already guard against ``ValueError`` keep working.
"""


class MacenkoNormError(Exception):
    """Base class for all errors raised by :mod:`macenko_norm`."""


class MissingInputError(MacenkoNormError, ValueError):
    """The source or target image is absent or empty."""


class DimensionMismatchError(MacenkoNormError, ValueError):
    """Stain counts differ between two matrices that must agree."""


class DegenerateChannelError(MacenkoNormError, ValueError):
    """A source stain channel has no signal (zero 99th percentile).

    Only raised when the degenerate-channel policy is ``"raise"``.

    :param channels: indices of the degenerate channels
    :type channels: list[int]
    """

    def __init__(self, channels):
        self.channels = list(channels)
        super().__init__(
            f"stain channel(s) {self.channels} have a zero 99th percentile; "
            "the rescaling factor is undefined"
        )


class StainEstimationError(MacenkoNormError, RuntimeError):
    """A stain matrix could not be estimated from an image."""


class GamutOverflowWarning(UserWarning):
    """Reconstructed intensities left ``[0, 255]`` and were clamped."""
