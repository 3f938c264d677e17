# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Side-by-side display of a normalization result.

:func:`show_comparison` matches the observer signature accepted by
:func:`macenko_norm.normalization.normalize`::

    normalize(source, target, observers=[show_comparison])
"""

from __future__ import annotations

import matplotlib.pyplot as plt
import numpy as np

TITLES = ("Source Image", "Target Image", "Normalised (Macenko)")


def plot_comparison(source, target, normalized):
    """Draw source, target and normalised images in one row.

    :return: the figure holding the three panels
    :rtype: matplotlib.figure.Figure
    """
    fig, axes = plt.subplots(1, 3, figsize=(12, 4))
    for ax, image, title in zip(axes, (source, target, normalized), TITLES):
        ax.imshow(np.asarray(image, dtype=np.uint8))
        ax.set_title(title)
        ax.axis("off")
    fig.tight_layout()
    return fig


def show_comparison(source, target, normalized) -> None:
    """Observer that shows :func:`plot_comparison` and blocks until closed."""
    plot_comparison(source, target, normalized)
    plt.show()
