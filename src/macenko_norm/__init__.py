# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Macenko stain normalization for histology images.

Normalises the colour appearance of a source image to a reference (target)
image: both images are separated into stain concentrations, the source
concentrations are rescaled to the target's 99th percentiles, and the result
is re-rendered with the target's stain colours.

Example::

    import numpy as np
    from macenko_norm import NormalizationConfig, normalize

    normalized = normalize(source_rgb, target_rgb, NormalizationConfig(beta=0.15))
"""

from macenko_norm.__about__ import __version__
from macenko_norm.config import NormalizationConfig
from macenko_norm.errors import (
    DegenerateChannelError,
    DimensionMismatchError,
    GamutOverflowWarning,
    MacenkoNormError,
    MissingInputError,
    StainEstimationError,
)
from macenko_norm.matching import IdentityMatcher, PermutationMatcher, stain_similarity
from macenko_norm.normalization import (
    MacenkoNormalizer,
    normalize,
    reconstruct_image,
    rescale_concentrations,
)
from macenko_norm.optical_density import od_to_rgb, rgb_to_od
from macenko_norm.stains import (
    FixedStainModel,
    MacenkoStainModel,
    StainEstimate,
    StainModel,
    complement_stain_matrix,
    find_stain_index,
    normalize_columns,
    stain_color_map,
)

__all__ = [
    "__version__",
    "DegenerateChannelError",
    "DimensionMismatchError",
    "FixedStainModel",
    "GamutOverflowWarning",
    "IdentityMatcher",
    "MacenkoNormError",
    "MacenkoNormalizer",
    "MacenkoStainModel",
    "MissingInputError",
    "NormalizationConfig",
    "PermutationMatcher",
    "StainEstimate",
    "StainEstimationError",
    "StainModel",
    "complement_stain_matrix",
    "find_stain_index",
    "normalize",
    "normalize_columns",
    "od_to_rgb",
    "reconstruct_image",
    "rescale_concentrations",
    "rgb_to_od",
    "stain_color_map",
    "stain_similarity",
]
