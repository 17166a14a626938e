"""Filmic tone mapping of scene-linear RGB to display RGB.

Each pixel goes through:

1. Log encoding relative to the grey, black and white exposures.
2. Desaturation near the curve extremes (toe and shoulder).
3. The 3-segment filmic spline.
4. The output power (display transfer function).

Chrominance is handled either per channel (``ChromaPreservation.NONE``)
or by tone mapping an achromatic norm and re-applying the RGB ratios.
The log encoding and desaturation formulas exist in two versions; one
``ColorScienceStrategy`` is selected per run and used for every pixel.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import numpy as np

from filmforge.color.norms import pixel_norm, rgb_luminance
from filmforge.config import LOG_V1_FLOOR, MIN_ROWS_PER_BAND, NORM_MIN
from filmforge.core.spline import evaluate_spline
from filmforge.core.types import (
    ChromaPreservation,
    ColorScience,
    FilmicData,
    LuminanceTransform,
)
from filmforge.errors import ImageFormatError

logger = logging.getLogger(__name__)


def linear_saturation(x: np.ndarray, luminance: np.ndarray, saturation: np.ndarray) -> np.ndarray:
    """Move ``x`` towards (saturation < 1) or away from its luminance."""
    return luminance + saturation * (x - luminance)


def _log_encode(x: np.ndarray, data: FilmicData) -> np.ndarray:
    x = np.maximum(np.asarray(x, dtype=np.float32), np.float32(NORM_MIN))
    return (np.log2(x / np.float32(data.grey_source)) - np.float32(data.black_source)) / np.float32(
        data.dynamic_range
    )


# ---------------------------------------------------------------------------
# Color science strategies
# ---------------------------------------------------------------------------

class ColorScienceStrategy:
    """Log encoding, desaturation and norm/ratio recombination of one version."""

    version: ColorScience

    def log_encode(self, x: np.ndarray, data: FilmicData) -> np.ndarray:
        raise NotImplementedError

    def desaturate(self, x: np.ndarray, data: FilmicData) -> np.ndarray:
        raise NotImplementedError

    def recombine(
        self,
        ratios: np.ndarray,
        log_norm: np.ndarray,
        data: FilmicData,
        work_profile: Optional[LuminanceTransform],
    ) -> np.ndarray:
        """Tone map the encoded norm and re-apply the (sanitized) ratios."""
        raise NotImplementedError

    def tone(self, x: np.ndarray, data: FilmicData) -> np.ndarray:
        """Spline, clip to [0, 1] and output power, for log-encoded values."""
        curve = np.clip(evaluate_spline(data.spline, x), 0.0, 1.0)
        return np.power(curve, np.float32(data.output_power))


class FilmicV1(ColorScienceStrategy):
    """First color science: hard floor of the log encoding, luminance blend."""

    version = ColorScience.V1

    def log_encode(self, x, data):
        return np.clip(_log_encode(x, data), np.float32(LOG_V1_FLOOR), np.float32(1.0))

    def desaturate(self, x, data):
        radius_toe = x
        radius_shoulder = 1.0 - x
        key_toe = np.exp(-0.5 * radius_toe * radius_toe / np.float32(data.sigma_toe))
        key_shoulder = np.exp(-0.5 * radius_shoulder * radius_shoulder / np.float32(data.sigma_shoulder))
        return 1.0 - np.clip((key_toe + key_shoulder) / np.float32(data.saturation), 0.0, 1.0)

    def recombine(self, ratios, log_norm, data, work_profile):
        desaturation = self.desaturate(log_norm, data)[..., None]
        norm = log_norm[..., None]

        scaled = ratios * norm
        lum = rgb_luminance(scaled, work_profile)[..., None]
        ratios = linear_saturation(scaled, lum, desaturation) / norm

        return ratios * self.tone(log_norm, data)[..., None]


class FilmicV2(ColorScienceStrategy):
    """Second color science: [0, 1] log encoding, blend to white, gamut mapping."""

    version = ColorScience.V2

    def log_encode(self, x, data):
        return np.clip(_log_encode(x, data), np.float32(0.0), np.float32(1.0))

    def desaturate(self, x, data):
        radius_toe = x
        radius_shoulder = 1.0 - x
        saturation = np.float32(data.saturation)
        sat2 = np.float32(0.5) / np.sqrt(saturation)
        key_toe = np.exp(-radius_toe * radius_toe / np.float32(data.sigma_toe) * sat2)
        key_shoulder = np.exp(-radius_shoulder * radius_shoulder / np.float32(data.sigma_shoulder) * sat2)
        return saturation - (key_toe + key_shoulder) * saturation

    def recombine(self, ratios, log_norm, data, work_profile):
        desaturation = self.desaturate(log_norm, data)[..., None]
        norm = self.tone(log_norm, data)[..., None]

        ratios = np.maximum(ratios + (1.0 - ratios) * (1.0 - desaturation), 0.0)
        out = ratios * norm

        # Gamut mapping: penalize the ratios by the amount of clipping
        max_pix = np.max(out, axis=-1, keepdims=True)
        penalize = max_pix > 1.0
        if np.any(penalize):
            penalized = np.clip(np.maximum(ratios + (1.0 - max_pix), 0.0) * norm, 0.0, 1.0)
            out = np.where(penalize, penalized, out)

        return out


_STRATEGIES = {
    ColorScience.V1: FilmicV1,
    ColorScience.V2: FilmicV2,
}


def get_strategy(version: ColorScience) -> ColorScienceStrategy:
    """Return the strategy object for a color science version."""
    try:
        return _STRATEGIES[ColorScience(version)]()
    except (KeyError, ValueError):
        raise ValueError(f"Unknown color science version: {version!r}") from None


# ---------------------------------------------------------------------------
# Chroma handling
# ---------------------------------------------------------------------------

def tonemap_split(
    rgb: np.ndarray,
    data: FilmicData,
    strategy: ColorScienceStrategy,
    work_profile: Optional[LuminanceTransform] = None,
) -> np.ndarray:
    """Tone map each channel independently.

    The desaturation is driven by the luminance of the log-encoded triple.

    Args:
        rgb: (..., 3) scene-linear RGB.
        data: Committed filmic parameters.
        strategy: Color science in use.
        work_profile: Profile used for the luminance of the encoded triple.

    Returns:
        (..., 3) float32 display RGB in [0, 1].
    """
    encoded = strategy.log_encode(rgb[..., :3], data)
    lum = rgb_luminance(encoded, work_profile)
    desaturation = strategy.desaturate(lum, data)

    desaturated = linear_saturation(encoded, lum[..., None], desaturation[..., None])
    return strategy.tone(desaturated, data).astype(np.float32, copy=False)


def tonemap_chroma(
    rgb: np.ndarray,
    data: FilmicData,
    strategy: ColorScienceStrategy,
    method: ChromaPreservation,
    work_profile: Optional[LuminanceTransform] = None,
) -> np.ndarray:
    """Tone map the pixel norm and re-apply the RGB ratios.

    Args:
        rgb: (..., 3) scene-linear RGB.
        data: Committed filmic parameters.
        strategy: Color science in use.
        method: Norm used to split brightness from chromaticity.
        work_profile: Profile used by the luminance norm.

    Returns:
        (..., 3) float32 display RGB.
    """
    rgb = np.asarray(rgb[..., :3], dtype=np.float32)
    norm = np.maximum(pixel_norm(rgb, method, work_profile), np.float32(NORM_MIN))
    ratios = rgb / norm[..., None]

    # Shift the ratios so none is negative
    min_ratios = np.min(ratios, axis=-1, keepdims=True)
    ratios = np.where(min_ratios < 0.0, ratios - min_ratios, ratios)

    log_norm = strategy.log_encode(norm, data)
    return strategy.recombine(ratios, log_norm, data, work_profile).astype(np.float32, copy=False)


# ---------------------------------------------------------------------------
# Image driver
# ---------------------------------------------------------------------------

def _row_bands(height: int, workers: int) -> list[tuple[int, int]]:
    n_bands = max(1, min(workers, height // MIN_ROWS_PER_BAND))
    edges = np.linspace(0, height, n_bands + 1).astype(int)
    return [(int(edges[i]), int(edges[i + 1])) for i in range(n_bands)]


def apply_filmic(
    image: np.ndarray,
    data: FilmicData,
    work_profile: Optional[LuminanceTransform] = None,
    workers: int = 1,
) -> np.ndarray:
    """Tone map a working image.

    Rows are split into bands that can be evaluated on a thread pool; each
    band writes a disjoint slice of the output.

    Args:
        image: (H, W, 4) float32 scene-linear buffer.
        data: Committed filmic parameters.
        work_profile: Working profile luminance transform.
        workers: Number of concurrent row bands.

    Returns:
        (H, W, 4) float32 display buffer, alpha copied from the input.
    """
    if image.ndim != 3 or image.shape[2] != 4:
        raise ImageFormatError(f"Expected (H, W, 4) buffer, got shape {image.shape}")

    strategy = get_strategy(data.version)
    method = ChromaPreservation(data.preserve_color)
    out = np.empty_like(image, dtype=np.float32)
    out[..., 3] = image[..., 3]

    def run_band(band: tuple[int, int]) -> None:
        start, stop = band
        rgb = image[start:stop, :, :3]
        if method == ChromaPreservation.NONE:
            out[start:stop, :, :3] = tonemap_split(rgb, data, strategy, work_profile)
        else:
            out[start:stop, :, :3] = tonemap_chroma(rgb, data, strategy, method, work_profile)

    bands = _row_bands(image.shape[0], workers)
    logger.debug(
        "Tone mapping %dx%d (%s, %s) in %d band(s)",
        image.shape[1], image.shape[0], method.value, strategy.version.value, len(bands),
    )

    if len(bands) > 1:
        # numpy releases the GIL inside the ufunc loops
        with ThreadPoolExecutor(max_workers=len(bands)) as pool:
            futures = [pool.submit(run_band, band) for band in bands]
            for future in futures:
                future.result()
    else:
        run_band(bands[0])

    return out
