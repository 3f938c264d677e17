# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Shared pytest fixtures and configuration for macenko_norm tests."""

import numpy as np
import pytest

HEMATOXYLIN = np.array([0.65, 0.70, 0.29])
EOSIN = np.array([0.07, 0.99, 0.11])


def synthesize_he(rng, rows=64, cols=64, strength=1.0, noise=0.0):
    """Render an 8-bit image from random H&E concentrations.

    :param strength: multiplier applied to every concentration
    :param noise: standard deviation of Gaussian OD noise
    :return: ``(rows, cols, 3)`` uint8 image
    """
    n = rows * cols
    c_h = rng.uniform(0.1, 1.0, n) * strength
    c_e = rng.uniform(0.1, 1.0, n) * strength
    od = np.outer(c_h, HEMATOXYLIN) + np.outer(c_e, EOSIN)
    if noise:
        od += rng.normal(0, noise, od.shape)
    od = np.clip(od, 0, None)
    rgb = 255.0 * np.exp(-od)
    return np.clip(np.rint(rgb), 0, 255).astype(np.uint8).reshape(rows, cols, 3)


@pytest.fixture
def rng():
    """Provide a seeded random number generator for reproducible tests.

    :return: numpy random generator with fixed seed
    :rtype: numpy.random.Generator
    """
    return np.random.default_rng(42)


@pytest.fixture
def he_like_image(rng):
    """128x128 uint8 image synthesised from H&E-like stain directions.

    Gives the estimator something meaningful to latch onto.
    """
    return synthesize_he(rng, 128, 128, noise=0.02)


@pytest.fixture
def clean_he_image(rng):
    """64x64 uint8 H&E-like image without OD noise."""
    return synthesize_he(rng)


@pytest.fixture
def known_stain_matrix():
    """Normalised ``(3, 2)`` H&E stain matrix (hematoxylin, eosin)."""
    return np.column_stack(
        [HEMATOXYLIN / np.linalg.norm(HEMATOXYLIN), EOSIN / np.linalg.norm(EOSIN)]
    )


@pytest.fixture
def gray_image():
    """The 2x2 gray image [[10, 50], [100, 200]] (all channels equal)."""
    values = np.array([[10, 50], [100, 200]], dtype=np.uint8)
    return np.repeat(values[:, :, None], 3, axis=2)


@pytest.fixture
def white_image():
    """A blank 16x16 slide: every pixel is 255."""
    return np.full((16, 16, 3), 255, dtype=np.uint8)
