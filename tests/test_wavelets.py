"""Tests for the wavelet highlight reconstruction."""

from __future__ import annotations

import numpy as np
import pytest

from conftest import make_buffer
from filmforge.core.spline import commit_params
from filmforge.core.types import ReconstructionVariant, ToneParameters
from filmforge.core.wavelets import (
    compute_ratios,
    get_scales,
    reconstruct_highlights,
    refine_highlights,
    restore_ratios,
)
from filmforge.errors import ImageFormatError, ReconstructionWarning

VARIANTS = list(ReconstructionVariant)


def _failing_allocator(*args, **kwargs):
    raise MemoryError("simulated")


@pytest.fixture
def textured_image():
    rng = np.random.default_rng(13)
    rgb = rng.uniform(0.05, 3.0, size=(40, 48, 3)).astype(np.float32)
    return make_buffer(rgb)


@pytest.fixture
def blob_mask(textured_image):
    h, w = textured_image.shape[:2]
    yy, xx = np.mgrid[:h, :w]
    mask = np.exp(-((yy - h / 2) ** 2 + (xx - w / 2) ** 2) / 40.0)
    return mask.astype(np.float32)


class TestGetScales:

    @pytest.mark.parametrize(
        "roi_scale, expected",
        [(1.0, 5), (2.0, 4), (4.0, 3), (8.0, 2), (16.0, 1), (32.0, 1)],
    )
    def test_preview_scales(self, roi_scale, expected):
        assert get_scales(512, 512, roi_scale) == expected

    def test_uses_largest_dimension(self):
        assert get_scales(512, 16) == get_scales(16, 512) == 5

    def test_tiny_image(self):
        assert get_scales(3, 3) == 1

    def test_capped(self):
        assert get_scales(1_000_000, 10) == 12


class TestReconstructHighlights:
    """Tests for reconstruct_highlights."""

    @pytest.mark.parametrize("variant", VARIANTS)
    def test_zero_mask_keeps_image(self, textured_image, default_data, variant):
        mask = np.zeros(textured_image.shape[:2], dtype=np.float32)
        out = np.empty_like(textured_image)

        assert reconstruct_highlights(textured_image, mask, out, variant, default_data, 3)
        np.testing.assert_array_equal(out[..., :3], textured_image[..., :3])

    @pytest.mark.parametrize("variant", VARIANTS)
    @pytest.mark.parametrize("scales", [1, 4])
    def test_constant_image_conserved(self, default_data, variant, scales):
        """Fully masked flat areas are rebuilt at the same level."""
        image = make_buffer(np.full((32, 32, 3), 0.8, dtype=np.float32))
        mask = np.ones((32, 32), dtype=np.float32)
        out = np.empty_like(image)

        assert reconstruct_highlights(image, mask, out, variant, default_data, scales)
        np.testing.assert_allclose(out[..., :3], 0.8, rtol=1e-5)

    @pytest.mark.parametrize("variant", VARIANTS)
    def test_output_finite(self, textured_image, blob_mask, default_data, variant):
        out = np.empty_like(textured_image)
        reconstruct_highlights(textured_image, blob_mask, out, variant, default_data, 4)
        assert np.all(np.isfinite(out))

    def test_residual_only_is_local_average(self, textured_image, blob_mask):
        """With the detail terms off and full color weight, only the low frequencies remain."""
        data = commit_params(ToneParameters(
            reconstruct_bloom_vs_details=-100.0,
            reconstruct_grey_vs_color=100.0,
        ))
        out = np.empty_like(textured_image)
        reconstruct_highlights(textured_image, blob_mask, out, ReconstructionVariant.RGB, data, 3)

        center = out[20, 24, :3]
        assert np.all(center > 0.05) and np.all(center < 3.0)
        # Blurred content is flatter than the source
        assert out[15:25, 19:29, 0].std() < textured_image[15:25, 19:29, 0].std()

    def test_input_not_modified(self, textured_image, blob_mask, default_data):
        original = textured_image.copy()
        reconstruct_highlights(
            textured_image, blob_mask, np.empty_like(textured_image),
            ReconstructionVariant.RGB, default_data, 3,
        )
        np.testing.assert_array_equal(textured_image, original)

    def test_allocation_failure(self, textured_image, blob_mask, default_data):
        out = np.full_like(textured_image, 42.0)

        with pytest.warns(ReconstructionWarning):
            ok = reconstruct_highlights(
                textured_image, blob_mask, out, ReconstructionVariant.RGB,
                default_data, 3, allocator=_failing_allocator,
            )

        assert ok is False
        np.testing.assert_array_equal(out, 42.0)

    def test_mismatched_buffers(self, textured_image, default_data):
        with pytest.raises(ImageFormatError):
            reconstruct_highlights(
                textured_image, np.zeros((3, 3), dtype=np.float32), np.empty_like(textured_image),
                ReconstructionVariant.RGB, default_data, 2,
            )

    def test_wrong_layout(self, default_data):
        image = np.zeros((8, 8, 3), dtype=np.float32)
        with pytest.raises(ImageFormatError):
            reconstruct_highlights(
                image, np.zeros((8, 8), dtype=np.float32), np.empty_like(image),
                ReconstructionVariant.RGB, default_data, 2,
            )


class TestRatios:
    """Tests for the ratio split and the refinement passes."""

    def test_ratios_round_trip(self, textured_image):
        norms, ratios = compute_ratios(textured_image)

        np.testing.assert_allclose(np.linalg.norm(ratios[..., :3], axis=-1), 1.0, rtol=1e-5)
        np.testing.assert_array_equal(ratios[..., 3], textured_image[..., 3])

        restore_ratios(ratios, norms)
        np.testing.assert_allclose(ratios[..., :3], textured_image[..., :3], rtol=1e-5)

    def test_black_pixel_floored(self):
        image = make_buffer(np.zeros((2, 2, 3), dtype=np.float32))
        norms, ratios = compute_ratios(image)
        assert np.all(norms > 0.0)
        np.testing.assert_array_equal(ratios[..., :3], 0.0)

    def test_refine_grey_stays_grey(self, default_data):
        """Refinement only moves chromaticity: a neutral image keeps its values."""
        image = make_buffer(np.full((24, 24, 3), 1.5, dtype=np.float32))
        mask = np.ones((24, 24), dtype=np.float32)
        reconstructed = image.copy()

        assert refine_highlights(mask, reconstructed, default_data, scales=2, passes=2)
        np.testing.assert_allclose(reconstructed[..., :3], 1.5, rtol=1e-4)

    def test_refine_only_touches_masked_pixels(self, default_data):
        """A magenta hole is rebuilt; unmasked neutral pixels keep their values."""
        rgb = np.full((32, 32, 3), 1.0, dtype=np.float32)
        rgb[12:20, 12:20] = [2.0, 0.5, 2.0]
        image = make_buffer(rgb)
        mask = np.zeros((32, 32), dtype=np.float32)
        mask[12:20, 12:20] = 1.0

        reconstructed = image.copy()
        assert refine_highlights(mask, reconstructed, default_data, scales=3, passes=1)

        outside = mask == 0.0
        np.testing.assert_allclose(reconstructed[outside, :3], image[outside, :3], rtol=1e-5)
        assert np.all(np.isfinite(reconstructed))
        assert not np.allclose(reconstructed[16, 16, :3], image[16, 16, :3])

    def test_refine_zero_passes(self, textured_image, blob_mask, default_data):
        reconstructed = textured_image.copy()
        assert refine_highlights(blob_mask, reconstructed, default_data, 3, passes=0)
        np.testing.assert_array_equal(reconstructed, textured_image)

    def test_refine_allocation_failure(self, textured_image, blob_mask, default_data):
        reconstructed = textured_image.copy()
        with pytest.warns(ReconstructionWarning):
            ok = refine_highlights(
                blob_mask, reconstructed, default_data, 3, passes=2, allocator=_failing_allocator,
            )
        assert ok is False
        np.testing.assert_array_equal(reconstructed, textured_image)
