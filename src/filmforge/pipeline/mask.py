"""Soft mask of clipped highlights."""

from __future__ import annotations

import logging

import numpy as np
from scipy.special import expit

from filmforge.color.norms import euclidean_norm
from filmforge.config import CLIP_ARGUMENT_CUTOFF, MIN_CLIPPED_PIXELS

logger = logging.getLogger(__name__)

LN2 = np.float32(np.log(2.0))


def mask_clipped_pixels(
    image: np.ndarray,
    normalize: float,
    feathering: float,
) -> tuple[np.ndarray, int]:
    """Weight every pixel by how close it is to clipping.

    The weight is a base-2 logistic curve of the euclidean RGB norm,
    ``1 / (1 + 2^(feathering - norm * normalize))``, centered on the
    reconstruction threshold. Pixels whose sigmoid argument is below 4
    (opacity above ~5.9 %) are counted as clipped.

    Args:
        image: (H, W, >=3) float32 scene-linear buffer.
        normalize: Feathering divided by the reconstruction threshold.
        feathering: Steepness of the sigmoid.

    Returns:
        (mask, clipped_count) with mask (H, W) float32 in [0, 1].
    """
    norm = euclidean_norm(image)
    argument = np.float32(feathering) - norm * np.float32(normalize)

    # 1 / (1 + 2^a) == expit(-a * ln 2)
    mask = expit(-argument * LN2).astype(np.float32)
    clipped = int(np.count_nonzero(argument < CLIP_ARGUMENT_CUTOFF))

    logger.debug("Clip mask: %d clipped pixel(s) of %d", clipped, norm.size)
    return mask, clipped


def should_reconstruct(clipped: int) -> bool:
    """Reconstruction is only worth running above a few clipped pixels."""
    return clipped > MIN_CLIPPED_PIXELS


def display_mask(mask: np.ndarray, image: np.ndarray) -> np.ndarray:
    """Render the mask as a grey image, keeping the alpha of ``image``.

    Args:
        mask: (H, W) mask weights.
        image: (H, W, 4) buffer providing the alpha channel.

    Returns:
        (H, W, 4) float32 buffer with the mask in R, G and B.
    """
    out = np.empty(image.shape, dtype=np.float32)
    out[..., :3] = mask[..., None]
    out[..., 3] = image[..., 3]
    return out
