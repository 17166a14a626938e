"""Core data types and enums for FilmForge.

CRITICAL CONVENTION:
    Working image buffers have shape (H, W, 4), dtype float32, indexed as
    image[row, column, channel] with channels R, G, B, alpha/padding.
    Single-channel buffers (mask, norms, texture) have shape (H, W).
    This convention MUST be used consistently in ALL modules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

import numpy as np

from filmforge.config import DEFAULT_WORKERS


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ChromaPreservation(str, Enum):
    """Norm used to preserve chrominance, or NONE for per-channel mapping."""
    NONE = "none"
    MAX_RGB = "max_rgb"
    LUMINANCE = "luminance"
    POWER_NORM = "power_norm"
    EUCLIDEAN_NORM = "euclidean_norm"


class ColorScience(str, Enum):
    """Version of the log encoding and desaturation formulas."""
    V1 = "v1"
    V2 = "v2"


class CurveType(str, Enum):
    """Polynomial degree of the toe or shoulder segment."""
    HARD = "hard"  # quartic
    SOFT = "soft"  # cubic


class ReconstructionVariant(str, Enum):
    """Domain in which clipped highlights are reconstructed."""
    RGB = "rgb"
    RATIOS = "ratios"


class NoiseDistribution(str, Enum):
    """Statistical distribution of the noise inpainted in highlights."""
    UNIFORM = "uniform"
    GAUSSIAN = "gaussian"
    POISSONIAN = "poissonian"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ToneParameters:
    """User-facing parameters of the filmic stage.

    Percentages are in [0, 100], exposures in EV relative to the grey point.
    """
    # Scene (source) anchors
    grey_point_source: float = 18.45  # %
    black_point_source: float = -8.0  # EV
    white_point_source: float = 4.0  # EV
    security_factor: float = 0.0  # % of dynamic range added by auto-tuning

    # Display (target) anchors
    grey_point_target: float = 18.45  # %
    black_point_target: float = 0.0  # %
    white_point_target: float = 100.0  # %
    output_power: float = 4.0
    custom_grey: bool = False

    # Curve shape
    latitude: float = 33.0  # % of dynamic range
    contrast: float = 1.5
    saturation: float = 10.0  # %
    balance: float = 0.0  # %
    shadows: CurveType = CurveType.HARD
    highlights: CurveType = CurveType.HARD

    # Color handling
    preserve_color: ChromaPreservation = ChromaPreservation.POWER_NORM
    version: ColorScience = ColorScience.V2

    # Highlight reconstruction
    reconstruct_threshold: float = 3.0  # EV above white
    reconstruct_feather: float = 3.0
    reconstruct_bloom_vs_details: float = 100.0  # %
    reconstruct_grey_vs_color: float = 100.0  # %
    reconstruct_structure_vs_texture: float = 0.0  # %
    high_quality_reconstruction: int = 1

    # Noise inpainting
    noise_level: float = 0.1
    noise_distribution: NoiseDistribution = NoiseDistribution.POISSONIAN
    noise_seed: int = 1

    @property
    def dynamic_range(self) -> float:
        """White minus black exposure, in EV."""
        return self.white_point_source - self.black_point_source


@dataclass
class ToneSpline:
    """Piecewise-polynomial filmic curve in the log-encoded domain.

    Coefficient rows are ordered (toe, latitude, shoulder); columns hold
    c0..c4 so that segment(x) = c0 + c1 x + c2 x^2 + c3 x^3 + c4 x^4.
    """
    nodes_x: np.ndarray  # (5,) black, toe, grey, shoulder, white
    nodes_y: np.ndarray  # (5,) display values at the nodes
    coefficients: np.ndarray  # (3, 5) float64
    latitude_min: float
    latitude_max: float

    TOE = 0
    LATITUDE = 1
    SHOULDER = 2

    def __post_init__(self):
        if self.nodes_x.shape != (5,) or self.nodes_y.shape != (5,):
            raise ValueError("Spline needs exactly 5 control nodes")
        if self.coefficients.shape != (3, 5):
            raise ValueError(
                f"Spline coefficients shape {self.coefficients.shape} != expected (3, 5)"
            )
        for arr in (self.nodes_x, self.nodes_y, self.coefficients):
            arr.setflags(write=False)

    @property
    def toe(self) -> np.ndarray:
        return self.coefficients[self.TOE]

    @property
    def latitude(self) -> np.ndarray:
        return self.coefficients[self.LATITUDE]

    @property
    def shoulder(self) -> np.ndarray:
        return self.coefficients[self.SHOULDER]


@dataclass(frozen=True)
class FilmicData:
    """Runtime record committed from ToneParameters, shared by all pixels."""
    grey_source: float
    black_source: float
    dynamic_range: float
    contrast: float  # slope of the latitude segment, after clamping
    output_power: float
    saturation: float
    sigma_toe: float
    sigma_shoulder: float
    reconstruct_threshold: float
    reconstruct_feather: float
    reconstruct_structure_vs_texture: float  # gamma, in [0, 1]
    reconstruct_bloom_vs_details: float  # delta, in [0, 1]
    reconstruct_grey_vs_color: float  # beta, in [0, 1]
    preserve_color: ChromaPreservation
    version: ColorScience
    high_quality_reconstruction: int
    noise_level: float
    noise_distribution: NoiseDistribution
    noise_seed: int
    spline: ToneSpline


@dataclass
class LuminanceTransform:
    """RGB to luminance transform of the working color profile.

    When ``luts`` is given, each channel is first linearized through its
    lookup table on [0, 1) and through ``a1 * (x * a0) ** a2`` above 1
    (``unbounded_coeffs`` rows hold a0, a1, a2). The luminance is then the
    second row of ``matrix`` applied to the linear RGB.
    """
    matrix: np.ndarray  # (3, 3) RGB -> XYZ
    luts: Optional[np.ndarray] = None  # (3, lutsize)
    unbounded_coeffs: Optional[np.ndarray] = None  # (3, 3)

    def __post_init__(self):
        self.matrix = np.asarray(self.matrix, dtype=np.float64)
        if self.matrix.shape != (3, 3):
            raise ValueError(f"Profile matrix shape {self.matrix.shape} != expected (3, 3)")
        if self.luts is not None:
            self.luts = np.asarray(self.luts, dtype=np.float64)
            if self.luts.ndim != 2 or self.luts.shape[0] != 3 or self.luts.shape[1] < 2:
                raise ValueError(f"Profile LUT shape {self.luts.shape} must be (3, N >= 2)")
        if self.unbounded_coeffs is not None:
            self.unbounded_coeffs = np.asarray(self.unbounded_coeffs, dtype=np.float64)
            if self.unbounded_coeffs.shape != (3, 3):
                raise ValueError("Unbounded coefficients must have shape (3, 3)")

    @property
    def nonlinear(self) -> bool:
        return self.luts is not None


@dataclass
class PipelineConfig:
    """Configuration for one run of the filmic stage over an image."""
    params: ToneParameters = field(default_factory=ToneParameters)
    work_profile: Optional[LuminanceTransform] = None

    # Full-resolution pixels per processed pixel (>= 1 for downscaled previews)
    roi_scale: float = 1.0

    # Output options
    show_mask: bool = False
    fast: bool = False  # skip highlight reconstruction

    # Tone mapping row bands evaluated concurrently
    workers: int = DEFAULT_WORKERS


@dataclass
class PipelineResult:
    """Result from a full pipeline run."""
    output: np.ndarray  # (H, W, 4) float32
    mask: np.ndarray  # (H, W) float32
    tonemap_input: Optional[np.ndarray] = None  # buffer fed to the tone mapper
    clipped_pixels: int = 0
    reconstructed: bool = False
    diagnostics: dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Progress callback type
# ---------------------------------------------------------------------------

ProgressCallback = Callable[[str, float, str], None]
"""Callback signature: (stage_name, fraction_complete, message)."""

CancelCheck = Callable[[], bool]
"""Returns True if the operation should be cancelled."""
