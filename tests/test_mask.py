"""Tests for the clipped-highlight mask."""

from __future__ import annotations

import numpy as np
import pytest

from conftest import make_buffer
from filmforge.pipeline.mask import display_mask, mask_clipped_pixels, should_reconstruct


class TestMaskClippedPixels:
    """Tests for mask_clipped_pixels."""

    def test_range_and_dtype(self, hdr_image, default_data):
        normalize = default_data.reconstruct_feather / default_data.reconstruct_threshold
        mask, _ = mask_clipped_pixels(hdr_image, normalize, default_data.reconstruct_feather)

        assert mask.shape == hdr_image.shape[:2]
        assert mask.dtype == np.float32
        assert np.all(mask >= 0.0) and np.all(mask <= 1.0)

    def test_limits(self):
        rgb = np.zeros((1, 3, 3), dtype=np.float32)
        rgb[0, 1] = 1.0
        rgb[0, 2] = 100.0
        mask, clipped = mask_clipped_pixels(make_buffer(rgb), normalize=1.0, feathering=16.0)

        # Black pixel: 1 / (1 + 2^16)
        assert mask[0, 0] == pytest.approx(1.0 / (1.0 + 2.0 ** 16), rel=1e-4)
        assert mask[0, 2] == pytest.approx(1.0, abs=1e-6)
        assert clipped == 1

    def test_threshold_is_half_opacity(self):
        """A pixel whose norm equals the threshold gets weight 1/2."""
        threshold = 2.0
        feather = 8.0
        rgb = np.full((1, 1, 3), threshold / np.sqrt(3.0), dtype=np.float32)
        mask, _ = mask_clipped_pixels(make_buffer(rgb), feather / threshold, feather)
        assert mask[0, 0] == pytest.approx(0.5, abs=1e-5)

    def test_clipped_count_cutoff(self):
        """Pixels count as clipped when feathering - norm * normalize < 4."""
        norms = np.array([0.0, 3.9, 4.1, 10.0], dtype=np.float32)
        rgb = np.zeros((1, 4, 3), dtype=np.float32)
        rgb[0, :, 0] = norms
        _, clipped = mask_clipped_pixels(make_buffer(rgb), normalize=1.0, feathering=8.0)
        assert clipped == 2

    def test_ignores_alpha(self, grey_image):
        a, _ = mask_clipped_pixels(grey_image, 1.0, 3.0)
        other = grey_image.copy()
        other[..., 3] = 50.0
        b, _ = mask_clipped_pixels(other, 1.0, 3.0)
        np.testing.assert_array_equal(a, b)


class TestShouldReconstruct:

    @pytest.mark.parametrize("clipped, expected", [(0, False), (9, False), (10, True), (10_000, True)])
    def test_cutoff(self, clipped, expected):
        assert should_reconstruct(clipped) is expected


class TestDisplayMask:

    def test_layout(self, hdr_image):
        mask = np.linspace(0, 1, hdr_image.shape[0] * hdr_image.shape[1], dtype=np.float32)
        mask = mask.reshape(hdr_image.shape[:2])
        out = display_mask(mask, hdr_image)

        for c in range(3):
            np.testing.assert_array_equal(out[..., c], mask)
        np.testing.assert_array_equal(out[..., 3], hdr_image[..., 3])
