# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""RGB ↔ optical density conversion.

Light transmitted through a stained slide follows the Beer-Lambert law, so
in optical-density (OD) space the contributions of different stains add
linearly:

    OD = -log((I + 1) / Io)        I = Io x exp(-OD)

Both directions compute in ``float64``, whatever the input dtype.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike, NDArray


def rgb_to_od(
    im_rgb: ArrayLike,
    io: float = 255.0,
    allow_negative: bool = False,
) -> NDArray[np.float64]:
    """Convert an RGB image or pixel matrix to optical density.

    :param im_rgb: Input RGB data.  May be a 3D image of shape ``(H, W, 3)``
        or a 2D matrix of shape ``(N, 3)``.  Values are expected in the
        range ``[0, 255]``.
    :type im_rgb: ArrayLike
    :param io: Transmitted light intensity.
    :type io: float
    :param allow_negative: If ``False`` (default), negative OD values
        (pixels brighter than ``io - 1``) are clamped to zero.
    :type allow_negative: bool
    :return: OD data with the same shape as the input.
    :rtype: NDArray[np.float64]
    :raises ValueError: If the input dimensionality is unsupported or *io*
        is not positive.
    """
    im_rgb = np.asarray(im_rgb, dtype=np.float64)
    if im_rgb.ndim not in (2, 3) or im_rgb.shape[-1] != 3:
        msg = f"im_rgb must have shape (H, W, 3) or (N, 3), got {im_rgb.shape}"
        raise ValueError(msg)
    if io <= 0:
        msg = f"io must be positive, got {io}"
        raise ValueError(msg)

    od = -np.log((im_rgb + 1.0) / io)
    if not allow_negative:
        od = np.maximum(od, 0.0)
    return od


def od_to_rgb(od: ArrayLike, io: float = 255.0) -> NDArray[np.float64]:
    """Convert optical density back to RGB intensity, ``io x exp(-od)``.

    No clamping is applied; callers decide how to bring the result into a
    displayable range.

    :param od: OD data of any shape.
    :type od: ArrayLike
    :param io: Transmitted light intensity.
    :type io: float
    :return: Intensities with the same shape as *od*.
    :rtype: NDArray[np.float64]
    """
    od = np.asarray(od, dtype=np.float64)
    return io * np.exp(-od)
