# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Parameters of a normalization run.

All parameters are validated once, when the :class:`NormalizationConfig`
is built, so the numeric code downstream can trust them.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

#: Accepted values for :attr:`NormalizationConfig.degenerate_policy`.
DEGENERATE_POLICIES = ("zero", "raise")


@dataclass(frozen=True)
class NormalizationConfig:
    """Parameters shared by stain estimation, deconvolution and reconstruction.

    :param io: Transmitted light intensity used by the optical-density
        transform of both images.
    :type io: float
    :param beta: OD threshold below which a pixel is treated as transparent
        background and ignored by stain estimation.
    :type beta: float
    :param alpha: Tolerance, in percent, for the pseudo-min and pseudo-max
        stain angles.
    :type alpha: float
    :param verbose: Ask the boundary (CLI) to display the result.
    :type verbose: bool
    :param degenerate_policy: What to do with a source stain channel whose
        99th percentile is zero: ``"zero"`` scales it to zero, ``"raise"``
        raises :class:`~macenko_norm.errors.DegenerateChannelError`.
    :type degenerate_policy: str
    """

    io: float = 255.0
    beta: float = 0.15
    alpha: float = 1.0
    verbose: bool = False
    degenerate_policy: str = "zero"

    def __post_init__(self) -> None:
        if not self.io > 0:
            msg = f"io must be positive, got {self.io}"
            raise ValueError(msg)
        if not self.beta >= 0:
            msg = f"beta must be non-negative, got {self.beta}"
            raise ValueError(msg)
        if not 0 < self.alpha < 50:
            msg = f"alpha must be in (0, 50), got {self.alpha}"
            raise ValueError(msg)
        if self.degenerate_policy not in DEGENERATE_POLICIES:
            msg = (
                f"degenerate_policy must be one of {DEGENERATE_POLICIES}, "
                f"got {self.degenerate_policy!r}"
            )
            raise ValueError(msg)

    @classmethod
    def from_optional(cls, **kwargs: Any) -> NormalizationConfig:
        """Build a config, treating ``None`` (or an empty value) as unspecified.

        >>> NormalizationConfig.from_optional(io=None, beta=0.2).io
        255.0
        """
        known = {f.name for f in fields(cls)}
        unknown = set(kwargs) - known
        if unknown:
            msg = f"unknown configuration keys: {sorted(unknown)}"
            raise TypeError(msg)
        given = {k: v for k, v in kwargs.items() if not _is_unset(v)}
        return cls(**given)


def _is_unset(value: Any) -> bool:
    if value is None:
        return True
    try:
        return len(value) == 0
    except TypeError:
        return False
