"""Shared fixtures for FilmForge tests."""

from __future__ import annotations

import numpy as np
import pytest

from filmforge.core.types import (
    ChromaPreservation,
    LuminanceTransform,
    NoiseDistribution,
    PipelineConfig,
    ToneParameters,
)


def make_buffer(rgb: np.ndarray, alpha: float = 1.0) -> np.ndarray:
    """Wrap an (H, W, 3) array into the (H, W, 4) float32 working layout."""
    buffer = np.full(rgb.shape[:2] + (4,), alpha, dtype=np.float32)
    buffer[..., :3] = rgb
    return buffer


@pytest.fixture
def default_params():
    """Default tone parameters."""
    return ToneParameters()


@pytest.fixture
def default_data(default_params):
    """Committed runtime record for the default parameters."""
    from filmforge.core.spline import commit_params
    return commit_params(default_params)


@pytest.fixture
def grey_image():
    """16x16 image of 18.45 % grey with alpha 1."""
    return make_buffer(np.full((16, 16, 3), 0.1845, dtype=np.float32))


@pytest.fixture
def hdr_image():
    """32x24 random scene-linear image spanning ~14 EV around grey."""
    rng = np.random.default_rng(7)
    exposure = rng.uniform(-9.0, 5.0, size=(24, 32, 1)).astype(np.float32)
    tint = rng.uniform(0.6, 1.4, size=(24, 32, 3)).astype(np.float32)
    rgb = 0.1845 * np.exp2(exposure) * tint
    return make_buffer(rgb.astype(np.float32), alpha=0.75)


@pytest.fixture
def clipped_pixel_image():
    """256x256 image of 0.1 with one pixel at 10.0 in the center."""
    rgb = np.full((256, 256, 3), 0.1, dtype=np.float32)
    rgb[128, 128] = 10.0
    return make_buffer(rgb)


@pytest.fixture
def clipped_pixel_config():
    """Configuration that flags every pixel and only keeps the residual term.

    With feather 6 the sigmoid is shallow enough for the 0.1 background to
    count as clipped, so reconstruction runs; no noise is added.
    """
    params = ToneParameters(
        reconstruct_feather=6.0,
        reconstruct_threshold=-1.0,
        reconstruct_structure_vs_texture=-100.0,
        reconstruct_bloom_vs_details=-100.0,
        noise_level=0.0,
        noise_distribution=NoiseDistribution.UNIFORM,
    )
    return PipelineConfig(params=params)


@pytest.fixture
def split_params():
    """Per-channel tone mapping with neutral saturation."""
    return ToneParameters(preserve_color=ChromaPreservation.NONE, saturation=0.0)


@pytest.fixture
def srgb_profile():
    """Linear Rec.709 / sRGB primaries to XYZ (D65)."""
    return LuminanceTransform(
        matrix=np.array([
            [0.4124, 0.3576, 0.1805],
            [0.2126, 0.7152, 0.0722],
            [0.0193, 0.1192, 0.9505],
        ])
    )


@pytest.fixture
def random_rgb():
    """Random (500, 3) positive float32 colors."""
    rng = np.random.default_rng(42)
    return rng.uniform(0.01, 4.0, size=(500, 3)).astype(np.float32)


@pytest.fixture
def tmp_image_dir(tmp_path):
    """Temporary directory for test images."""
    d = tmp_path / "images"
    d.mkdir()
    return d


@pytest.fixture
def sample_png(tmp_image_dir):
    """Small 8-bit PNG on disk with a bright patch.

    Returns the file path.
    """
    from filmforge.io.image import save_image

    rng = np.random.default_rng(99)
    rgb = rng.uniform(0.05, 0.6, size=(48, 64, 3)).astype(np.float32)
    rgb[10:20, 10:20] = 1.0

    path = tmp_image_dir / "scene.png"
    save_image(rgb, path, bit_depth=8)
    return path
