"""Tests for the synthetic noise inpainting."""

from __future__ import annotations

import numpy as np
import pytest

from filmforge.core.types import NoiseDistribution
from filmforge.pipeline.noise import (
    gaussian_noise,
    inpaint_noise,
    poissonian_noise,
    uniform_noise,
)

DISTRIBUTIONS = list(NoiseDistribution)


@pytest.fixture
def full_mask(hdr_image):
    return np.ones(hdr_image.shape[:2], dtype=np.float32)


class TestInpaintNoise:
    """Tests for inpaint_noise."""

    @pytest.mark.parametrize("distribution", DISTRIBUTIONS)
    def test_reproducible(self, hdr_image, full_mask, distribution):
        a = inpaint_noise(hdr_image, full_mask, 0.2, 2.0, distribution, seed=11)
        b = inpaint_noise(hdr_image, full_mask, 0.2, 2.0, distribution, seed=11)
        np.testing.assert_array_equal(a, b)

    def test_seed_changes_output(self, hdr_image, full_mask):
        a = inpaint_noise(hdr_image, full_mask, 0.2, 2.0, seed=1)
        b = inpaint_noise(hdr_image, full_mask, 0.2, 2.0, seed=2)
        assert not np.array_equal(a, b)

    @pytest.mark.parametrize("distribution", DISTRIBUTIONS)
    def test_zero_mask_is_identity(self, hdr_image, distribution):
        mask = np.zeros(hdr_image.shape[:2], dtype=np.float32)
        out = inpaint_noise(hdr_image, mask, 0.5, 1.0, distribution)
        np.testing.assert_array_equal(out, hdr_image)

    def test_zero_level_uniform_is_identity(self, hdr_image, full_mask):
        out = inpaint_noise(hdr_image, full_mask, 0.0, 1.0, NoiseDistribution.UNIFORM)
        np.testing.assert_allclose(out, hdr_image, rtol=1e-6)

    @pytest.mark.parametrize("distribution", DISTRIBUTIONS)
    def test_alpha_and_input_untouched(self, hdr_image, full_mask, distribution):
        original = hdr_image.copy()
        out = inpaint_noise(hdr_image, full_mask, 0.3, 1.0, distribution)

        np.testing.assert_array_equal(out[..., 3], hdr_image[..., 3])
        np.testing.assert_array_equal(hdr_image, original)
        assert out is not hdr_image

    def test_unmasked_pixels_untouched(self, hdr_image):
        mask = np.zeros(hdr_image.shape[:2], dtype=np.float32)
        mask[:, :10] = 1.0
        out = inpaint_noise(hdr_image, mask, 0.5, 1.0)
        np.testing.assert_array_equal(out[:, 10:], hdr_image[:, 10:])


class TestDistributions:
    """Statistics of the individual generators."""

    def test_uniform_bounds(self):
        rng = np.random.default_rng(5)
        mu = np.full((200, 200, 3), 2.0, dtype=np.float32)
        sigma = np.full_like(mu, 0.25)
        out = uniform_noise(mu, sigma, rng)

        assert np.all(np.abs(out - mu) <= 0.25 + 1e-6)
        assert abs(float(out.mean()) - 2.0) < 0.01

    def test_gaussian_statistics(self):
        rng = np.random.default_rng(5)
        mu = np.full((200, 200, 3), 1.0, dtype=np.float32)
        sigma = np.full_like(mu, 0.1)
        flip = np.broadcast_to(np.arange(3) % 2 == 0, mu.shape)
        out = gaussian_noise(mu, sigma, rng, flip)

        assert float(out.mean()) == pytest.approx(1.0, abs=0.005)
        assert float(out.std()) == pytest.approx(0.1, rel=0.05)

    def test_poissonian_is_centered(self):
        """The Anscombe round trip keeps the mean close to mu for small sigma."""
        rng = np.random.default_rng(5)
        mu = np.full((200, 200, 3), 4.0, dtype=np.float32)
        sigma = np.full_like(mu, 0.05)
        flip = np.broadcast_to(np.arange(3) % 2 == 0, mu.shape)
        out = poissonian_noise(mu, sigma, rng, flip)

        assert float(out.mean()) == pytest.approx(4.0, abs=0.01)
        assert float(out.std()) > 0.0
