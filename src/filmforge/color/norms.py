"""Achromatic norms of RGB pixels.

A norm collapses an RGB triple into one brightness value. The tone curve
is applied to that value alone when chrominance is preserved, and the
per-channel ratios ``rgb / norm`` carry the color.

Supported norms:
    max_rgb         max(R, G, B)
    luminance       Y row of the working profile (or fixed fallback weights)
    power_norm      (R^3 + G^3 + B^3) / (R^2 + G^2 + B^2)
    euclidean_norm  sqrt(R^2 + G^2 + B^2)

All functions accept arrays of shape (..., C) with C >= 3 and only read the
first three channels.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from filmforge.config import FALLBACK_LUMINANCE_WEIGHTS, POWER_NORM_EPSILON
from filmforge.core.types import ChromaPreservation, LuminanceTransform

FALLBACK_WEIGHTS = np.array(FALLBACK_LUMINANCE_WEIGHTS, dtype=np.float32)


def _linearize(rgb: np.ndarray, profile: LuminanceTransform) -> np.ndarray:
    """Apply the per-channel tone response of a non-linear profile.

    Values in [0, 1) go through the LUT, values >= 1 through the fitted
    ``a1 * (x * a0) ** a2`` extrapolation (or the LUT end value when no
    extrapolation coefficients are known).
    """
    lutsize = profile.luts.shape[1]
    positions = np.linspace(0.0, 1.0, lutsize, endpoint=False)
    linear = np.empty(rgb.shape, dtype=np.float64)

    for c in range(3):
        x = rgb[..., c].astype(np.float64)
        lut = profile.luts[c]
        inside = np.interp(x, positions, lut)
        if profile.unbounded_coeffs is not None:
            a0, a1, a2 = profile.unbounded_coeffs[c]
            outside = a1 * np.power(np.maximum(x * a0, 0.0), a2)
        else:
            outside = np.full_like(x, lut[-1])
        linear[..., c] = np.where(x < 1.0, inside, outside)

    return linear


def rgb_luminance(rgb: np.ndarray, profile: Optional[LuminanceTransform] = None) -> np.ndarray:
    """Luminance of RGB pixels in the working profile.

    Args:
        rgb: (..., >=3) RGB values.
        profile: Working profile transform. ``None`` uses the fallback weights.

    Returns:
        (...) luminance, float32.
    """
    rgb = np.asarray(rgb)[..., :3]
    if profile is None:
        return camera_rgb_luminance(rgb)

    if profile.nonlinear:
        rgb = _linearize(rgb, profile)

    return (rgb @ profile.matrix[1]).astype(np.float32)


def camera_rgb_luminance(rgb: np.ndarray) -> np.ndarray:
    """Luminance with the fixed weights used when no profile is known."""
    rgb = np.asarray(rgb, dtype=np.float32)[..., :3]
    return rgb @ FALLBACK_WEIGHTS


def power_norm(rgb: np.ndarray) -> np.ndarray:
    """Cubic-over-quadratic norm, biased towards the brightest channel."""
    rgb = np.asarray(rgb, dtype=np.float32)[..., :3]
    numerator = np.sum(np.abs(rgb) ** 3, axis=-1)
    denominator = np.sum(rgb * rgb, axis=-1)
    return numerator / np.maximum(denominator, POWER_NORM_EPSILON)


def euclidean_norm(rgb: np.ndarray) -> np.ndarray:
    rgb = np.asarray(rgb, dtype=np.float32)[..., :3]
    return np.sqrt(np.sum(rgb * rgb, axis=-1))


def max_rgb(rgb: np.ndarray) -> np.ndarray:
    rgb = np.asarray(rgb, dtype=np.float32)[..., :3]
    return np.max(rgb, axis=-1)


def pixel_norm(
    rgb: np.ndarray,
    method: ChromaPreservation,
    work_profile: Optional[LuminanceTransform] = None,
) -> np.ndarray:
    """Compute the achromatic norm of RGB pixels.

    Callers dividing by the result must guard it with ``max(norm, NORM_MIN)``.

    Args:
        rgb: (..., >=3) RGB values.
        method: Norm selector. ``NONE`` is not a norm and is rejected.
        work_profile: Profile used by the luminance norm.

    Returns:
        (...) float32 norm.

    Raises:
        ValueError: If ``method`` does not name a norm.
    """
    method = ChromaPreservation(method)

    if method == ChromaPreservation.MAX_RGB:
        return max_rgb(rgb)
    if method == ChromaPreservation.LUMINANCE:
        return rgb_luminance(rgb, work_profile)
    if method == ChromaPreservation.POWER_NORM:
        return power_norm(rgb)
    if method == ChromaPreservation.EUCLIDEAN_NORM:
        return euclidean_norm(rgb)

    raise ValueError(f"No pixel norm for chroma preservation '{method.value}'")
