"""Multiscale highlight reconstruction with à-trous B-spline wavelets.

At every scale the current detail layer is blurred with a dilated B-spline
kernel. The difference is the high-frequency layer, which is blurred again
so that details from valid neighbours diffuse into clipped areas. Masked
pixels are then rebuilt from these layers:

    reconstructed += mask * (delta * (grey_HF + color_details)
                             + (grey_residual + color_residual) / scales)

Two variants exist. RGB works on the pixel values and favors sharp
details (max-abs texture, min residual). RATIOS works on chromaticity
ratios, expected to be smooth, and favors neutral colors (min-abs texture,
max residual). The blend coefficients are empirical.

Only two low-frequency buffers are kept: scale s reads the one written at
scale s - 1 and writes the other one.
"""

from __future__ import annotations

import logging
import math
import warnings
from typing import Callable, Optional

import numpy as np

from filmforge._numba_kernels.bspline import bspline_blur
from filmforge.color.norms import pixel_norm
from filmforge.config import FSIZE, MAX_NUM_SCALES, NORM_MIN
from filmforge.core.types import (
    ChromaPreservation,
    FilmicData,
    LuminanceTransform,
    ReconstructionVariant,
)
from filmforge.errors import ImageFormatError, ReconstructionWarning

logger = logging.getLogger(__name__)

Allocator = Callable[..., np.ndarray]


def get_scales(width: int, height: int, roi_scale: float = 1.0) -> int:
    """Number of wavelet scales for an image.

    The footprint of the B-spline filter at the coarsest scale,
    ``2^s * (FSIZE - 1) / 2 + 1`` pixels, should cover ``1 / FSIZE`` of the
    largest image dimension as seen by the processed buffer.

    Args:
        width: Full-resolution image width.
        height: Full-resolution image height.
        roi_scale: Full-resolution pixels per processed pixel.

    Returns:
        Scale count in [1, MAX_NUM_SCALES].
    """
    size = max(width, height) / max(roi_scale, 1e-6)
    argument = 2.0 * size / ((FSIZE - 1) * FSIZE) - 1.0
    scales = math.floor(math.log2(argument)) if argument > 0.0 else 1
    return int(min(max(scales, 1), MAX_NUM_SCALES))


def init_reconstruct(image: np.ndarray, mask: np.ndarray, reconstructed: np.ndarray) -> None:
    """Keep the valid part of the image: alpha blending by ``1 - mask``."""
    np.multiply(image, (1.0 - mask)[..., None], out=reconstructed)


def _signed_extremum(values: np.ndarray, largest: bool) -> np.ndarray:
    """Per-pixel channel value of largest (or smallest) magnitude, sign kept."""
    magnitude = np.abs(values)
    index = np.argmax(magnitude, axis=-1) if largest else np.argmin(magnitude, axis=-1)
    return np.take_along_axis(values, index[..., None], axis=-1)[..., 0]


def wavelets_detail_level(
    detail: np.ndarray,
    LF: np.ndarray,
    HF: np.ndarray,
    texture: np.ndarray,
    variant: ReconstructionVariant,
) -> None:
    """High-frequency layer and its texture extremum over the RGB channels."""
    np.subtract(detail[..., :3], LF[..., :3], out=HF[..., :3])
    HF[..., 3] = 0.0
    texture[...] = _signed_extremum(HF[..., :3], largest=(variant == ReconstructionVariant.RGB))


def wavelets_reconstruct(
    HF: np.ndarray,
    LF: np.ndarray,
    texture: np.ndarray,
    mask: np.ndarray,
    reconstructed: np.ndarray,
    variant: ReconstructionVariant,
    gamma: float,
    beta: float,
    delta: float,
    scales: int,
) -> None:
    """Accumulate the contribution of one scale into ``reconstructed``.

    Args:
        HF: (H, W, 4) re-blurred high frequencies.
        LF: (H, W, 4) low frequencies of the scale.
        texture: (H, W) signed texture extremum, before the re-blur.
        mask: (H, W) reconstruction weights.
        reconstructed: (H, W, 4) accumulator, updated in place.
        variant: RGB or RATIOS conventions.
        gamma: Structure vs. texture weight.
        beta: Grey vs. color weight.
        delta: Bloom vs. details weight.
        scales: Total number of scales.
    """
    gamma_comp = np.float32(1.0 - gamma)
    beta_comp = np.float32(1.0 - beta)
    gamma = np.float32(gamma)
    beta = np.float32(beta)
    delta = np.float32(delta)

    HF_c = HF[..., :3]
    LF_c = LF[..., :3]
    alpha = mask[..., None]

    # Flat texture term: transfers the sharpest channel to the clipped ones
    grey_texture = (gamma * texture)[..., None]

    # Flat details term: smoother, fills holes when the texture is ~0
    grey_details = _signed_extremum(HF_c, largest=True)[..., None]

    grey_HF = beta_comp * (gamma_comp * grey_details + grey_texture)

    if variant == ReconstructionVariant.RGB:
        grey_residual = beta_comp * np.min(LF_c, axis=-1, keepdims=True)
        texture_sign = np.float32(1.0)
    else:
        grey_residual = beta_comp * np.max(LF_c, axis=-1, keepdims=True)
        texture_sign = np.float32(-0.5)

    color_residual = LF_c * beta

    # fmin drops the NaN of 0 / 0 the same way the ratio saturates at 1
    with np.errstate(divide="ignore", invalid="ignore"):
        share = np.fmin(np.abs(HF_c / grey_details), np.float32(1.0))
    color_details = (HF_c * gamma_comp + texture_sign * share * grey_texture) * beta

    reconstructed[..., :3] += alpha * (
        delta * (grey_HF + color_details) + (grey_residual + color_residual) / np.float32(scales)
    )


def reconstruct_highlights(
    image: np.ndarray,
    mask: np.ndarray,
    reconstructed: np.ndarray,
    variant: ReconstructionVariant,
    data: FilmicData,
    scales: int,
    allocator: Allocator = np.empty,
) -> bool:
    """Rebuild masked pixels from the wavelet layers of their neighbourhood.

    All working buffers are allocated before anything is written. If an
    allocation fails, ``reconstructed`` is left untouched.

    Args:
        image: (H, W, 4) float32 input (noise-inpainted RGB or ratios).
        mask: (H, W) float32 reconstruction weights.
        reconstructed: (H, W, 4) float32 output buffer.
        variant: RGB or RATIOS conventions.
        data: Committed filmic parameters (balance weights).
        scales: Number of wavelet scales.
        allocator: Buffer factory with the signature of ``numpy.empty``.

    Returns:
        True on success, False if the working buffers could not be allocated.
    """
    if image.ndim != 3 or image.shape[2] != 4:
        raise ImageFormatError(f"Expected (H, W, 4) buffer, got shape {image.shape}")
    if reconstructed.shape != image.shape or mask.shape != image.shape[:2]:
        raise ImageFormatError(
            f"Mismatched buffers: image {image.shape}, mask {mask.shape}, "
            f"reconstructed {reconstructed.shape}"
        )

    variant = ReconstructionVariant(variant)
    height, width = image.shape[:2]

    LF_even = LF_odd = HF = texture = temp = None
    try:
        try:
            LF_even = allocator((height, width, 4), dtype=np.float32)
            LF_odd = allocator((height, width, 4), dtype=np.float32)
            HF = allocator((height, width, 4), dtype=np.float32)
            texture = allocator((height, width), dtype=np.float32)
            temp = allocator((height, width, 4), dtype=np.float32)
        except MemoryError:
            logger.warning(
                "Highlight reconstruction (%s) failed to allocate %dx%d buffers, skipped",
                variant.value, width, height,
            )
            warnings.warn(
                "highlight reconstruction failed to allocate memory and was skipped",
                ReconstructionWarning,
                stacklevel=2,
            )
            return False

        init_reconstruct(image, mask, reconstructed)

        gamma = data.reconstruct_structure_vs_texture
        beta = data.reconstruct_grey_vs_color
        delta = data.reconstruct_bloom_vs_details

        for s in range(scales):
            if s == 0:
                detail, LF = image, LF_odd
            elif s % 2 != 0:
                detail, LF = LF_odd, LF_even
            else:
                detail, LF = LF_even, LF_odd

            mult = 1 << s

            bspline_blur(detail, LF, temp, mult)
            wavelets_detail_level(detail, LF, HF, texture, variant)

            # Inpaint the high frequencies over the holes
            bspline_blur(HF, HF, temp, mult)

            wavelets_reconstruct(
                HF, LF, texture, mask, reconstructed, variant,
                gamma=gamma, beta=beta, delta=delta, scales=scales,
            )

        logger.debug("Reconstructed highlights (%s) over %d scale(s)", variant.value, scales)
        return True
    finally:
        del LF_even, LF_odd, HF, texture, temp


def compute_ratios(
    image: np.ndarray,
    method: ChromaPreservation = ChromaPreservation.EUCLIDEAN_NORM,
    work_profile: Optional[LuminanceTransform] = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Split an image into per-pixel norms and chromaticity ratios.

    Returns:
        (norms, ratios): (H, W) norms floored at NORM_MIN and (H, W, 4)
        ratios, alpha copied from the image.
    """
    norms = np.maximum(pixel_norm(image, method, work_profile), np.float32(NORM_MIN))
    ratios = np.empty(image.shape, dtype=np.float32)
    ratios[..., :3] = image[..., :3] / norms[..., None]
    ratios[..., 3] = image[..., 3]
    return norms.astype(np.float32, copy=False), ratios


def restore_ratios(ratios: np.ndarray, norms: np.ndarray) -> np.ndarray:
    """Multiply ratios back by their norms, in place."""
    ratios[..., :3] *= norms[..., None]
    return ratios


def refine_highlights(
    mask: np.ndarray,
    reconstructed: np.ndarray,
    data: FilmicData,
    scales: int,
    passes: int,
    allocator: Allocator = np.empty,
) -> bool:
    """Run the RATIOS variant ``passes`` times over a reconstructed image.

    Each pass splits the current result into euclidean norms and ratios,
    reconstructs the ratios in place of ``reconstructed`` and multiplies
    the norms back. This pulls stubborn magenta highlights towards neutral.

    Returns:
        True if every pass succeeded. On failure the remaining passes are
        skipped and ``reconstructed`` keeps the result of the last good pass.
    """
    for i in range(passes):
        norms, ratios = compute_ratios(reconstructed, ChromaPreservation.EUCLIDEAN_NORM)
        if not reconstruct_highlights(
            ratios, mask, reconstructed, ReconstructionVariant.RATIOS, data, scales, allocator
        ):
            logger.debug("Refinement stopped at pass %d of %d", i + 1, passes)
            return False
        restore_ratios(reconstructed, norms)

    return True
