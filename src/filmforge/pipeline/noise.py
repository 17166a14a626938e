"""Synthetic noise inpainting in clipped highlights.

Clipped areas are flat. Adding noise with the statistics of the sensor
gives the wavelet reconstruction some texture to diffuse, so that the
reconstructed highlights do not look smeared.
"""

from __future__ import annotations

import logging

import numpy as np

from filmforge.config import DEFAULT_NOISE_SEED
from filmforge.core.types import NoiseDistribution

logger = logging.getLogger(__name__)


def _gaussian_samples(rng: np.random.Generator, shape: tuple, flip: np.ndarray) -> np.ndarray:
    """Standard normal samples by Box-Muller, cosine or sine branch per element."""
    u1 = np.maximum(rng.random(shape, dtype=np.float32), np.finfo(np.float32).tiny)
    u2 = rng.random(shape, dtype=np.float32)
    radius = np.sqrt(-2.0 * np.log(u1))
    angle = np.float32(2.0 * np.pi) * u2
    return np.where(flip, radius * np.cos(angle), radius * np.sin(angle))


def uniform_noise(mu: np.ndarray, sigma: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    u = rng.random(mu.shape, dtype=np.float32)
    return mu + 2.0 * (u - 0.5) * sigma


def gaussian_noise(
    mu: np.ndarray,
    sigma: np.ndarray,
    rng: np.random.Generator,
    flip: np.ndarray,
) -> np.ndarray:
    return mu + sigma * _gaussian_samples(rng, mu.shape, flip)


def poissonian_noise(
    mu: np.ndarray,
    sigma: np.ndarray,
    rng: np.random.Generator,
    flip: np.ndarray,
) -> np.ndarray:
    """Poisson-like noise through the Anscombe transform.

    A gaussian sample is drawn in the variance-stabilized domain
    ``2 sqrt(x + 3/8)`` and mapped back with the algebraic inverse.
    """
    r = _gaussian_samples(rng, mu.shape, flip)
    x = r * sigma + 2.0 * np.sqrt(np.maximum(mu, 0.0) + 0.375)
    return x * x / 4.0 - 0.375


def inpaint_noise(
    image: np.ndarray,
    mask: np.ndarray,
    noise_level: float,
    threshold: float,
    distribution: NoiseDistribution = NoiseDistribution.POISSONIAN,
    seed: int = DEFAULT_NOISE_SEED,
) -> np.ndarray:
    """Blend synthetic noise into the masked pixels.

    Args:
        image: (H, W, 4) float32 scene-linear buffer.
        mask: (H, W) blend weights in [0, 1].
        noise_level: Noise amplitude relative to the threshold.
        threshold: Reconstruction threshold (linear).
        distribution: Statistical distribution of the noise.
        seed: Seed of the random generator. Same seed, same output.

    Returns:
        New (H, W, 4) float32 buffer. Alpha is copied unchanged.
    """
    distribution = NoiseDistribution(distribution)
    rng = np.random.default_rng(seed)

    rgb = image[..., :3].astype(np.float32)
    sigma = rgb * np.float32(noise_level / threshold)

    # Alternate the Box-Muller branch between channels: R and B use cos, G uses sin
    flip = np.broadcast_to(np.arange(3) % 2 == 0, rgb.shape)

    if distribution == NoiseDistribution.UNIFORM:
        noise = uniform_noise(rgb, sigma, rng)
    elif distribution == NoiseDistribution.GAUSSIAN:
        noise = gaussian_noise(rgb, sigma, rng, flip)
    else:
        noise = poissonian_noise(rgb, sigma, rng, flip)

    weight = mask[..., None].astype(np.float32)

    out = np.empty_like(image, dtype=np.float32)
    out[..., :3] = rgb * (1.0 - weight) + noise * weight
    out[..., 3] = image[..., 3]

    logger.debug(
        "Inpainted %s noise (level %.3f, threshold %.3f, seed %d)",
        distribution.value, noise_level, threshold, seed,
    )
    return out
