"""Filmic tone curve construction and evaluation.

The curve maps log-encoded scene values in [0, 1] to display values in
[0, 1] through three polynomial segments:

    x in [0, toe]         toe, cubic or quartic
    x in [toe, shoulder]  latitude, affine with slope = contrast
    x in [shoulder, 1]    shoulder, cubic or quartic

The toe and shoulder are fitted so that value, slope and curvature match
the latitude line at the knots, and the curve reaches the display black and
white at the ends (with a flat tangent there for the quartic "hard" type).
"""

from __future__ import annotations

import logging
from dataclasses import fields, replace

import numpy as np

from filmforge.config import (
    BALANCE_RANGE,
    BLACK_SOURCE_RANGE,
    CONTRAST_RANGE,
    CONTRAST_SAFETY,
    DEFAULT_GREY_DISPLAY,
    DEFAULT_GREY_SOURCE,
    FEATHER_RANGE,
    GREY_SOURCE_RANGE,
    GREY_TARGET_RANGE,
    KNOT_MARGIN,
    LATITUDE_RANGE,
    MAX_HIGH_QUALITY_PASSES,
    OUTPUT_POWER_RANGE,
    SATURATION_MIN,
    SATURATION_RANGE,
    WHITE_SOURCE_RANGE,
)
from filmforge.core.linalg import gauss_solve
from filmforge.core.types import CurveType, FilmicData, ToneParameters, ToneSpline

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Parameter sanitation
# ---------------------------------------------------------------------------

def _clip(value: float, bounds: tuple[float, float]) -> float:
    return float(min(max(value, bounds[0]), bounds[1]))


def sanitize_params(params: ToneParameters) -> ToneParameters:
    """Clamp parameters into their valid ranges.

    Out-of-range values are corrected silently (logged at DEBUG), since the
    caller is expected to keep parameters in range already.
    """
    clean = replace(
        params,
        grey_point_source=_clip(params.grey_point_source, GREY_SOURCE_RANGE),
        black_point_source=_clip(params.black_point_source, BLACK_SOURCE_RANGE),
        white_point_source=_clip(params.white_point_source, WHITE_SOURCE_RANGE),
        grey_point_target=_clip(params.grey_point_target, GREY_TARGET_RANGE),
        output_power=_clip(params.output_power, OUTPUT_POWER_RANGE),
        saturation=_clip(params.saturation, SATURATION_RANGE),
        reconstruct_feather=_clip(params.reconstruct_feather, FEATHER_RANGE),
        high_quality_reconstruction=int(
            min(max(params.high_quality_reconstruction, 0), MAX_HIGH_QUALITY_PASSES)
        ),
    )

    if clean != params:
        changed = [
            f.name for f in fields(ToneParameters)
            if getattr(clean, f.name) != getattr(params, f.name)
        ]
        logger.debug("Clamped out-of-range parameters: %s", ", ".join(changed))

    return clean


def display_grey(params: ToneParameters) -> float:
    """Display grey in the curve domain, i.e. before the output power."""
    if params.custom_grey:
        grey = min(
            max(params.grey_point_target, params.black_point_target),
            params.white_point_target,
        ) / 100.0
    else:
        grey = DEFAULT_GREY_DISPLAY
    return float(grey ** (1.0 / params.output_power))


def source_grey(params: ToneParameters) -> float:
    """Scene-linear grey used as the anchor of the log encoding."""
    if params.custom_grey:
        return params.grey_point_source / 100.0
    return DEFAULT_GREY_SOURCE


def safe_contrast(contrast: float, grey_display: float, grey_log: float) -> float:
    """Raise the contrast so the latitude line crosses x = 0 at or below 0."""
    if contrast < grey_display / grey_log:
        raised = CONTRAST_SAFETY * grey_display / grey_log
        logger.debug("Contrast %.4f too low, raised to %.4f", contrast, raised)
        return raised
    return contrast


# ---------------------------------------------------------------------------
# Polynomial fitting
# ---------------------------------------------------------------------------

def _monomial_row(x: float, degree: int, derivative: int = 0) -> np.ndarray:
    """Row of d^k/dx^k [1, x, x^2, ..., x^degree] evaluated at x."""
    k = np.arange(degree + 1)
    factor = np.ones(degree + 1)
    for d in range(derivative):
        factor *= k - d
    power = k - derivative
    return np.where(power >= 0, factor * float(x) ** np.maximum(power, 0), 0.0)


def _fit_polynomial(constraints: list[tuple[float, int, float]], degree: int) -> np.ndarray:
    """Fit c0..c4 from (x, derivative_order, value) constraints."""
    A = np.stack([_monomial_row(x, degree, d) for x, d, _ in constraints])
    b = np.array([v for _, _, v in constraints], dtype=np.float64)
    solution = gauss_solve(A, b)

    coeffs = np.zeros(5, dtype=np.float64)
    coeffs[: degree + 1] = solution
    return coeffs


def _fit_toe(curve: CurveType, knot_x: float, knot_y: float, black_y: float, slope: float) -> np.ndarray:
    if curve == CurveType.HARD:
        return _fit_polynomial(
            [
                (0.0, 0, black_y),  # position at black
                (0.0, 1, 0.0),  # flat tangent at black
                (knot_x, 0, knot_y),  # position at toe node
                (knot_x, 1, slope),  # slope at toe node
                (knot_x, 2, 0.0),  # no curvature at toe node
            ],
            degree=4,
        )
    return _fit_polynomial(
        [
            (0.0, 0, black_y),
            (knot_x, 0, knot_y),
            (knot_x, 1, slope),
            (knot_x, 2, 0.0),
        ],
        degree=3,
    )


def _fit_shoulder(curve: CurveType, knot_x: float, knot_y: float, white_y: float, slope: float) -> np.ndarray:
    if curve == CurveType.HARD:
        return _fit_polynomial(
            [
                (1.0, 0, white_y),  # position at white
                (1.0, 1, 0.0),  # flat tangent at white
                (knot_x, 0, knot_y),  # position at shoulder node
                (knot_x, 1, slope),  # slope at shoulder node
                (knot_x, 2, 0.0),  # no curvature at shoulder node
            ],
            degree=4,
        )
    return _fit_polynomial(
        [
            (1.0, 0, white_y),
            (knot_x, 0, knot_y),
            (knot_x, 1, slope),
            (knot_x, 2, 0.0),
        ],
        degree=3,
    )


def compute_spline(params: ToneParameters) -> ToneSpline:
    """Build the filmic curve from user parameters.

    Args:
        params: Tone parameters (sanitized or not).

    Returns:
        ToneSpline with 5 nodes and per-segment coefficients.
    """
    p = sanitize_params(params)

    grey_display = display_grey(p)
    dynamic_range = p.dynamic_range

    # Log-encoded positions of the scene anchors
    black_log = 0.0
    grey_log = abs(p.black_point_source) / dynamic_range
    white_log = 1.0

    # Display targets
    black_display = min(max(p.black_point_target, 0.0), p.grey_point_target) / 100.0
    white_display = min(max(p.white_point_target, p.grey_point_target), 100.0) / 100.0

    latitude = _clip(p.latitude, LATITUDE_RANGE) / 100.0  # fraction of dynamic range
    balance = _clip(p.balance, BALANCE_RANGE) / 100.0
    contrast = safe_contrast(_clip(p.contrast, CONTRAST_RANGE), grey_display, grey_log)

    toe_log = grey_log - latitude * abs(p.black_point_source / dynamic_range)
    shoulder_log = grey_log + latitude * abs(p.white_point_source / dynamic_range)

    # Shift the latitude along the contrast slope: negative balance compresses shadows
    slope_norm = np.sqrt(contrast * contrast + 1.0)
    shift = -2.0 * latitude * balance / slope_norm
    toe_log = min(max(toe_log + shift, KNOT_MARGIN), 1.0 - KNOT_MARGIN)
    shoulder_log = min(max(shoulder_log + shift, toe_log), 1.0 - KNOT_MARGIN)

    intercept = grey_display - contrast * grey_log
    toe_display = contrast * toe_log + intercept
    shoulder_display = contrast * shoulder_log + intercept

    nodes_x = np.array([black_log, toe_log, grey_log, shoulder_log, white_log], dtype=np.float64)
    nodes_y = np.array(
        [black_display, toe_display, grey_display, shoulder_display, white_display],
        dtype=np.float64,
    )

    latitude_coeffs = np.array([intercept, contrast, 0.0, 0.0, 0.0], dtype=np.float64)
    toe_coeffs = _fit_toe(p.shadows, toe_log, toe_display, black_display, contrast)
    shoulder_coeffs = _fit_shoulder(p.highlights, shoulder_log, shoulder_display, white_display, contrast)

    logger.debug(
        "Spline nodes x=%s y=%s (contrast %.4f)",
        np.round(nodes_x, 4), np.round(nodes_y, 4), contrast,
    )

    return ToneSpline(
        nodes_x=nodes_x,
        nodes_y=nodes_y,
        coefficients=np.stack([toe_coeffs, latitude_coeffs, shoulder_coeffs]),
        latitude_min=float(toe_log),
        latitude_max=float(shoulder_log),
    )


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def evaluate_segment(coeffs: np.ndarray, x, derivative: int = 0):
    """Evaluate one polynomial segment (or its derivative) at x."""
    c = np.asarray(coeffs, dtype=np.float64)
    for _ in range(derivative):
        c = c[1:] * np.arange(1, len(c))
    x = np.asarray(x, dtype=np.float64)
    result = np.zeros_like(x)
    for coeff in c[::-1]:
        result = result * x + coeff
    return result


def evaluate_spline(spline: ToneSpline, x: np.ndarray) -> np.ndarray:
    """Evaluate the 3-segment curve at log-encoded positions x.

    Args:
        spline: Curve to evaluate.
        x: Array of log-encoded values, usually in [0, 1].

    Returns:
        Curve values, same shape and dtype as x (float32 for non-float inputs).
    """
    x = np.asarray(x)
    dtype = x.dtype if np.issubdtype(x.dtype, np.floating) else np.float32

    toe = spline.toe.astype(dtype)
    lat = spline.latitude.astype(dtype)
    sh = spline.shoulder.astype(dtype)
    xf = x.astype(dtype, copy=False)

    def horner(c):
        return c[0] + xf * (c[1] + xf * (c[2] + xf * (c[3] + xf * c[4])))

    return np.where(
        xf < spline.latitude_min,
        horner(toe),
        np.where(xf > spline.latitude_max, horner(sh), horner(lat)),
    ).astype(dtype, copy=False)


# ---------------------------------------------------------------------------
# Commit
# ---------------------------------------------------------------------------

def commit_params(params: ToneParameters) -> FilmicData:
    """Derive the per-run scalars and the cached spline from user parameters."""
    p = sanitize_params(params)

    grey_source = source_grey(p)
    spline = compute_spline(p)

    saturation = max(2.0 * p.saturation / 100.0 + 1.0, SATURATION_MIN)
    sigma_toe = (spline.latitude_min / 3.0) ** 2
    sigma_shoulder = ((1.0 - spline.latitude_max) / 3.0) ** 2

    # Offset and rescale the balance sliders to blending weights: -100 -> 0, 100 -> 1
    def to_weight(value: float) -> float:
        return (value / 100.0 + 1.0) / 2.0

    return FilmicData(
        grey_source=grey_source,
        black_source=p.black_point_source,
        dynamic_range=p.dynamic_range,
        contrast=float(spline.latitude[1]),
        output_power=p.output_power,
        saturation=saturation,
        sigma_toe=sigma_toe,
        sigma_shoulder=sigma_shoulder,
        reconstruct_threshold=float(2.0 ** (p.white_point_source + p.reconstruct_threshold) * grey_source),
        reconstruct_feather=float(2.0 ** (12.0 / p.reconstruct_feather)),
        reconstruct_structure_vs_texture=to_weight(p.reconstruct_structure_vs_texture),
        reconstruct_bloom_vs_details=to_weight(p.reconstruct_bloom_vs_details),
        reconstruct_grey_vs_color=to_weight(p.reconstruct_grey_vs_color),
        preserve_color=p.preserve_color,
        version=p.version,
        high_quality_reconstruction=p.high_quality_reconstruction,
        noise_level=p.noise_level,
        noise_distribution=p.noise_distribution,
        noise_seed=p.noise_seed,
        spline=spline,
    )
