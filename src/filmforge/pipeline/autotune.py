"""Automatic setting of the scene exposure anchors from image statistics.

All helpers are pure: they take the current parameters and sampled pixel
values and return updated parameters.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Optional

import numpy as np

from filmforge.color.norms import pixel_norm
from filmforge.config import (
    AUTO_BLACK_EV_RANGE,
    AUTO_WHITE_EV_RANGE,
    GREY_SOURCE_RANGE,
    NORM_MIN,
)
from filmforge.core.types import ChromaPreservation, LuminanceTransform, ToneParameters

logger = logging.getLogger(__name__)


def _norm(rgb, method: ChromaPreservation, work_profile: Optional[LuminanceTransform]) -> float:
    # NONE has no norm of its own; pickers then measure luminance
    if ChromaPreservation(method) == ChromaPreservation.NONE:
        method = ChromaPreservation.LUMINANCE
    value = pixel_norm(np.asarray(rgb, dtype=np.float32)[:3], method, work_profile)
    return max(float(value), NORM_MIN)


def _exposure(value: float, params: ToneParameters, bounds: tuple[float, float]) -> float:
    """EV of ``value`` relative to the source grey, clamped then widened by the safety margin."""
    ev = math.log2(value / (params.grey_point_source / 100.0))
    ev = min(max(ev, bounds[0]), bounds[1])
    return ev * (1.0 + params.security_factor / 100.0)


def auto_output_power(params: ToneParameters) -> ToneParameters:
    """Set the output power so the grey maps to the target grey.

    The grey sits at ``-black / dynamic_range`` on the log axis; the curve
    is assumed to be the identity there before the output power.
    """
    grey_log = -params.black_point_source / params.dynamic_range
    power = math.log(params.grey_point_target / 100.0) / math.log(grey_log)
    return replace(params, output_power=power)


def auto_grey(
    params: ToneParameters,
    picked_rgb,
    work_profile: Optional[LuminanceTransform] = None,
) -> ToneParameters:
    """Use the average of a picked area as the scene grey.

    The black and white exposures are both moved by the grey change in EV,
    in opposite directions: a brighter grey lowers white and raises black,
    so the dynamic range shrinks by twice the shift.

    Args:
        params: Current parameters.
        picked_rgb: Mean RGB of the picked area.
        work_profile: Profile used by the luminance norm.
    """
    grey = _norm(picked_rgb, params.preserve_color, work_profile) / 2.0
    grey_source = min(max(100.0 * grey, GREY_SOURCE_RANGE[0]), GREY_SOURCE_RANGE[1])
    shift = math.log2(params.grey_point_source / grey_source)

    updated = replace(
        params,
        grey_point_source=grey_source,
        black_point_source=params.black_point_source - shift,
        white_point_source=params.white_point_source + shift,
    )
    logger.debug("Auto grey: %.3f %% (shift %.2f EV)", grey_source, shift)
    return auto_output_power(updated)


def auto_black(
    params: ToneParameters,
    picked_min_rgb,
    work_profile: Optional[LuminanceTransform] = None,
) -> ToneParameters:
    """Use the darkest picked value as the black exposure."""
    black = _norm(picked_min_rgb, ChromaPreservation.MAX_RGB, work_profile)
    ev_min = max(_exposure(black, params, AUTO_BLACK_EV_RANGE), AUTO_BLACK_EV_RANGE[0])

    logger.debug("Auto black: %.2f EV", ev_min)
    return auto_output_power(replace(params, black_point_source=ev_min))


def auto_white(
    params: ToneParameters,
    picked_max_rgb,
    work_profile: Optional[LuminanceTransform] = None,
) -> ToneParameters:
    """Use the brightest picked value as the white exposure."""
    white = _norm(picked_max_rgb, ChromaPreservation.MAX_RGB, work_profile)
    ev_max = _exposure(white, params, AUTO_WHITE_EV_RANGE)

    logger.debug("Auto white: %.2f EV", ev_max)
    return auto_output_power(replace(params, white_point_source=ev_max))


def autotune(
    params: ToneParameters,
    mean_rgb,
    min_rgb,
    max_rgb,
    work_profile: Optional[LuminanceTransform] = None,
) -> ToneParameters:
    """Set grey (only with ``custom_grey``), black and white at once.

    Unlike :func:`auto_grey`, a new grey does not shift the other anchors:
    black and white are measured against it directly.
    """
    if params.custom_grey:
        grey = _norm(mean_rgb, params.preserve_color, work_profile) / 2.0
        params = replace(
            params,
            grey_point_source=min(max(100.0 * grey, GREY_SOURCE_RANGE[0]), GREY_SOURCE_RANGE[1]),
        )

    white = _norm(max_rgb, ChromaPreservation.MAX_RGB, work_profile)
    black = _norm(min_rgb, ChromaPreservation.MAX_RGB, work_profile)
    ev_max = _exposure(white, params, AUTO_WHITE_EV_RANGE)
    ev_min = max(_exposure(black, params, AUTO_BLACK_EV_RANGE), AUTO_BLACK_EV_RANGE[0])

    logger.info(
        "Autotune: grey %.2f %%, black %.2f EV, white %.2f EV",
        params.grey_point_source, ev_min, ev_max,
    )
    return auto_output_power(replace(params, black_point_source=ev_min, white_point_source=ev_max))


def sample_statistics(image: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Mean, per-channel minimum and per-channel maximum RGB of an image.

    Non-finite values are ignored.

    Args:
        image: (H, W, >=3) array.

    Returns:
        (mean_rgb, min_rgb, max_rgb), each (3,) float32.
    """
    rgb = np.asarray(image, dtype=np.float32)[..., :3].reshape(-1, 3)
    finite = np.all(np.isfinite(rgb), axis=1)
    if not np.any(finite):
        raise ValueError("Image has no finite pixels to sample")

    rgb = rgb[finite]
    return (
        rgb.mean(axis=0).astype(np.float32),
        rgb.min(axis=0).astype(np.float32),
        rgb.max(axis=0).astype(np.float32),
    )
