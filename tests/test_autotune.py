"""Tests for the automatic exposure helpers."""

from __future__ import annotations

import numpy as np
import pytest

from filmforge.core.types import ChromaPreservation, ToneParameters
from filmforge.pipeline.autotune import (
    auto_black,
    auto_grey,
    auto_output_power,
    auto_white,
    autotune,
    sample_statistics,
)


class TestAutoHelpers:

    def test_output_power_default(self, default_params):
        tuned = auto_output_power(default_params)
        assert tuned.output_power == pytest.approx(np.log(0.1845) / np.log(8.0 / 12.0), rel=1e-9)
        assert tuned.output_power == pytest.approx(4.168, abs=1e-3)

    def test_grey_shifts_anchors(self, default_params):
        tuned = auto_grey(default_params, [0.738, 0.738, 0.738])

        assert tuned.grey_point_source == pytest.approx(36.9, rel=1e-5)
        assert tuned.black_point_source == pytest.approx(-7.0, abs=1e-5)
        assert tuned.white_point_source == pytest.approx(3.0, abs=1e-5)
        # One EV brighter grey takes one EV off each end
        assert tuned.dynamic_range == pytest.approx(10.0, abs=1e-5)

    def test_darker_grey_widens_range(self, default_params):
        tuned = auto_grey(default_params, [0.1845, 0.1845, 0.1845])

        assert tuned.grey_point_source == pytest.approx(9.225, rel=1e-5)
        assert tuned.black_point_source == pytest.approx(-9.0, abs=1e-5)
        assert tuned.white_point_source == pytest.approx(5.0, abs=1e-5)

    def test_grey_with_split_mode_uses_luminance(self):
        params = ToneParameters(preserve_color=ChromaPreservation.NONE)
        tuned = auto_grey(params, [0.4, 0.1, 0.1])

        luminance = 0.4 * 0.2225045 + 0.1 * 0.7168786 + 0.1 * 0.0606169
        assert tuned.grey_point_source == pytest.approx(100.0 * luminance / 2.0, rel=1e-5)
        assert tuned.grey_point_source == pytest.approx(8.34, abs=0.01)

    def test_grey_with_split_mode_uses_profile(self, srgb_profile):
        params = ToneParameters(preserve_color=ChromaPreservation.NONE)
        tuned = auto_grey(params, [0.4, 0.1, 0.1], work_profile=srgb_profile)

        luminance = 0.4 * 0.2126 + 0.1 * 0.7152 + 0.1 * 0.0722
        assert tuned.grey_point_source == pytest.approx(100.0 * luminance / 2.0, rel=1e-5)

    def test_black(self, default_params):
        tuned = auto_black(default_params, [0.1845 / 32.0] * 3)
        assert tuned.black_point_source == pytest.approx(-5.0, abs=1e-5)

    def test_black_with_security_margin(self):
        params = ToneParameters(security_factor=10.0)
        tuned = auto_black(params, [0.1845 / 32.0] * 3)
        assert tuned.black_point_source == pytest.approx(-5.5, abs=1e-5)

    def test_black_of_black_pixel_is_floored(self, default_params):
        tuned = auto_black(default_params, [0.0, 0.0, 0.0])
        assert tuned.black_point_source == pytest.approx(np.log2(2.0 ** -16 / 0.1845))
        assert np.isfinite(tuned.output_power)

    def test_white_uses_max_rgb(self, default_params):
        tuned = auto_white(default_params, [0.1, 0.1845 * 64.0, 0.2])
        assert tuned.white_point_source == pytest.approx(6.0, abs=1e-5)

    def test_white_updates_power(self, default_params):
        tuned = auto_white(default_params, [0.1845 * 64.0] * 3)
        assert tuned.output_power == pytest.approx(auto_output_power(tuned).output_power)
        assert tuned.output_power != default_params.output_power


class TestAutotune:

    def test_grey_kept_without_custom_grey(self, default_params):
        tuned = autotune(
            default_params,
            mean_rgb=[0.5, 0.5, 0.5],
            min_rgb=[0.1845 / 64.0] * 3,
            max_rgb=[0.1845 * 16.0] * 3,
        )
        assert tuned.grey_point_source == default_params.grey_point_source
        assert tuned.black_point_source == pytest.approx(-6.0, abs=1e-5)
        assert tuned.white_point_source == pytest.approx(4.0, abs=1e-5)

    def test_custom_grey_measured(self):
        params = ToneParameters(custom_grey=True)
        tuned = autotune(params, [0.2, 0.2, 0.2], [0.001] * 3, [5.0] * 3)

        assert tuned.grey_point_source == pytest.approx(10.0, rel=1e-5)
        # Black and white measured against the new grey without shifting
        assert tuned.white_point_source == pytest.approx(np.log2(5.0 / 0.1), abs=1e-5)

    def test_inputs_not_mutated(self, default_params):
        autotune(default_params, [0.2] * 3, [0.01] * 3, [4.0] * 3)
        assert default_params == ToneParameters()


class TestSampleStatistics:

    def test_statistics(self, hdr_image):
        mean, lo, hi = sample_statistics(hdr_image)
        rgb = hdr_image[..., :3].reshape(-1, 3)

        np.testing.assert_allclose(mean, rgb.mean(axis=0), rtol=1e-5)
        np.testing.assert_array_equal(lo, rgb.min(axis=0))
        np.testing.assert_array_equal(hi, rgb.max(axis=0))

    def test_non_finite_ignored(self, grey_image):
        image = grey_image.copy()
        image[0, 0, 0] = np.nan
        image[1, 1, 2] = np.inf

        mean, lo, hi = sample_statistics(image)
        np.testing.assert_allclose(hi, 0.1845)
        np.testing.assert_allclose(mean, 0.1845, rtol=1e-5)

    def test_all_nan_raises(self):
        with pytest.raises(ValueError, match="finite"):
            sample_statistics(np.full((2, 2, 3), np.nan, dtype=np.float32))
