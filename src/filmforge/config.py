"""Default configuration, constants, and limits for FilmForge."""

import numpy as np

# --- Security limits ---
MAX_IMAGE_DIMENSION = 16384  # 16K pixels per side
MAX_IMAGE_PIXELS = 100_000_000  # 100 megapixels

# --- Allowed file extensions ---
IMAGE_EXTENSIONS = frozenset({
    ".exr", ".tiff", ".tif", ".png", ".jpg", ".jpeg",
    ".dpx", ".hdr", ".bmp",
})
FLOAT_IMAGE_EXTENSIONS = frozenset({".exr", ".hdr"})  # written as float32, never quantized

# --- Working buffer layout ---
WORKING_CHANNELS = 4  # RGB + alpha/padding

# --- Numerical safety ---
NORM_MIN = 2.0 ** -16  # Norm floor before log2 and ratio division
POWER_NORM_EPSILON = 1e-12  # Denominator guard of the power norm
LOG_V1_FLOOR = 2.0 ** -16  # Lower clamp of the v1 log encoding

# --- Fallback luminance (camera RGB, D50) ---
FALLBACK_LUMINANCE_WEIGHTS = (0.2225045, 0.7168786, 0.0606169)

# --- Grey references ---
DEFAULT_GREY_SOURCE = 0.1845  # 18.45 % scene grey
DEFAULT_GREY_DISPLAY = 0.1845  # target grey before the output power is undone

# --- Parameter ranges used by the silent clamp ---
BLACK_SOURCE_RANGE = (-16.0, -0.1)  # EV
WHITE_SOURCE_RANGE = (0.0, 16.0)  # EV
GREY_SOURCE_RANGE = (0.001, 100.0)  # %
GREY_TARGET_RANGE = (0.1, 50.0)  # %
OUTPUT_POWER_RANGE = (1.0, 10.0)
LATITUDE_RANGE = (0.0, 100.0)  # % of dynamic range
BALANCE_RANGE = (-50.0, 50.0)  # %
CONTRAST_RANGE = (0.1, 2.0)
CONTRAST_SAFETY = 1.0001
FEATHER_RANGE = (0.25, 6.0)
SATURATION_RANGE = (-50.0, 200.0)  # %
SATURATION_MIN = 1e-4  # Floor of the normalized saturation factor
KNOT_MARGIN = 0.1  # Toe and shoulder knots stay in [0.1, 0.9]
MAX_HIGH_QUALITY_PASSES = 10

# --- Clipping mask ---
CLIP_ARGUMENT_CUTOFF = 4.0  # Sigmoid argument below which a pixel counts as clipped (~5.9 %)
MIN_CLIPPED_PIXELS = 9  # Reconstruction needs strictly more clipped pixels than this

# --- Wavelets ---
FSIZE = 5
MAX_NUM_SCALES = 12
BSPLINE_FILTER = np.array([1.0, 4.0, 6.0, 4.0, 1.0], dtype=np.float32) / 16.0

# --- Noise ---
DEFAULT_NOISE_SEED = 1

# --- Auto-tuning ---
AUTO_BLACK_EV_RANGE = (-16.0, -1.0)
AUTO_WHITE_EV_RANGE = (1.0, 16.0)

# --- Threading ---
DEFAULT_WORKERS = 1
MIN_ROWS_PER_BAND = 16
