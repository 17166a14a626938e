"""Pipeline runner: orchestrates all stages from scene-linear to display image.

This is the single entry point for the CLI and for library callers.
"""

from __future__ import annotations

import logging
import time
import warnings
from typing import Optional

import numpy as np

from filmforge.config import MAX_IMAGE_DIMENSION, MAX_IMAGE_PIXELS, WORKING_CHANNELS
from filmforge.core.spline import commit_params
from filmforge.core.tonemap import apply_filmic
from filmforge.core.types import (
    CancelCheck,
    PipelineConfig,
    PipelineResult,
    ProgressCallback,
    ReconstructionVariant,
)
from filmforge.core.wavelets import Allocator, get_scales, reconstruct_highlights, refine_highlights
from filmforge.errors import (
    ImageDimensionError,
    ImageFormatError,
    PipelineCancelledError,
    ReconstructionWarning,
    ValidationError,
)
from filmforge.pipeline.mask import display_mask, mask_clipped_pixels, should_reconstruct
from filmforge.pipeline.noise import inpaint_noise

logger = logging.getLogger(__name__)


def _check_cancel(cancel_check: Optional[CancelCheck]) -> None:
    """Raise if cancellation requested."""
    if cancel_check is not None and cancel_check():
        raise PipelineCancelledError("Pipeline cancelled by user")


def _emit_progress(
    callback: Optional[ProgressCallback],
    stage: str,
    fraction: float,
    message: str = "",
) -> None:
    """Emit progress update if callback is provided."""
    if callback is not None:
        callback(stage, fraction, message)


def validate_working_image(image: np.ndarray) -> None:
    """Reject buffers the engine cannot process.

    Raises:
        ImageFormatError: If the buffer is not (H, W, 4) floating point.
        ImageDimensionError: If the buffer is empty or too large.
    """
    if not isinstance(image, np.ndarray):
        raise ImageFormatError(f"Expected a numpy array, got {type(image).__name__}")
    if image.ndim != 3 or image.shape[2] != WORKING_CHANNELS:
        raise ImageFormatError(
            f"Expected (H, W, {WORKING_CHANNELS}) buffer, got shape {image.shape}"
        )
    if not np.issubdtype(image.dtype, np.floating):
        raise ImageFormatError(f"Expected floating point data, got {image.dtype}")

    h, w = image.shape[:2]
    if h == 0 or w == 0:
        raise ImageDimensionError(f"Empty image: {w}x{h}")
    if h > MAX_IMAGE_DIMENSION or w > MAX_IMAGE_DIMENSION:
        raise ImageDimensionError(
            f"Image dimensions {w}x{h} exceed maximum {MAX_IMAGE_DIMENSION}"
        )
    if h * w > MAX_IMAGE_PIXELS:
        raise ImageDimensionError(
            f"Image has {h * w:,} pixels, exceeding limit of {MAX_IMAGE_PIXELS:,}"
        )


def validate_config(config: PipelineConfig) -> None:
    """Reject run options that have no meaningful correction.

    Tone parameters are clamped silently when committed; these are not.
    """
    if not np.isfinite(config.roi_scale) or config.roi_scale <= 0.0:
        raise ValidationError(f"roi_scale must be positive, got {config.roi_scale}")
    if config.workers < 1:
        raise ValidationError(f"workers must be >= 1, got {config.workers}")


def run_pipeline(
    image: np.ndarray,
    config: PipelineConfig,
    progress_callback: Optional[ProgressCallback] = None,
    cancel_check: Optional[CancelCheck] = None,
    allocator: Allocator = np.empty,
) -> PipelineResult:
    """Run the complete filmic stage over one image.

    Stages:
        1. Commit: clamp parameters, build the tone curve
        2. Mask: weight clipped pixels
        3. Inpaint: add synthetic noise in the clipped areas
        4. Reconstruct: wavelet reconstruction in RGB
        5. Refine (optional): wavelet reconstruction passes on ratios
        6. Tone map: log encoding, curve and chroma handling

    Stages 3 to 5 only run when enough pixels are clipped and ``fast`` is
    off. If reconstruction cannot allocate its buffers, the noise-inpainted
    image is tone mapped instead.

    Args:
        image: (H, W, 4) scene-linear working buffer. Not modified.
        config: Run configuration.
        progress_callback: (stage_name, fraction, message) callback.
        cancel_check: Returns True if pipeline should be cancelled.
        allocator: Buffer factory for the reconstruction buffers.

    Returns:
        PipelineResult with the display image, the mask and diagnostics.

    Raises:
        ImageFormatError, ImageDimensionError: If the buffer cannot be processed.
        ValidationError: If roi_scale or workers is not positive.
        PipelineCancelledError: If cancel_check returns True between stages.
    """
    validate_working_image(image)
    validate_config(config)

    t_start = time.perf_counter()
    diagnostics = {}
    image = np.asarray(image, dtype=np.float32)
    height, width = image.shape[:2]
    roi_scale = config.roi_scale
    diagnostics["image_size"] = f"{width}x{height}"

    # ---------------------------------------------------------------
    # Stage 1: Commit parameters
    # ---------------------------------------------------------------
    _emit_progress(progress_callback, "commit", 0.0, "Building tone curve...")
    _check_cancel(cancel_check)

    t0 = time.perf_counter()
    data = commit_params(config.params)
    diagnostics["commit_time"] = time.perf_counter() - t0
    diagnostics["latitude"] = (data.spline.latitude_min, data.spline.latitude_max)

    _emit_progress(progress_callback, "commit", 1.0, "Tone curve ready")
    logger.info("Commit: %.2fs", diagnostics["commit_time"])

    # ---------------------------------------------------------------
    # Stage 2: Mask
    # ---------------------------------------------------------------
    _emit_progress(progress_callback, "mask", 0.0, "Detecting clipped pixels...")
    _check_cancel(cancel_check)

    t0 = time.perf_counter()
    normalize = data.reconstruct_feather / data.reconstruct_threshold
    mask, clipped = mask_clipped_pixels(image, normalize, data.reconstruct_feather)
    diagnostics["mask_time"] = time.perf_counter() - t0
    diagnostics["clipped_pixels"] = clipped

    _emit_progress(progress_callback, "mask", 1.0, f"{clipped} clipped pixel(s)")
    logger.info("Mask: %.2fs, %d clipped", diagnostics["mask_time"], clipped)

    if config.show_mask:
        diagnostics["total_time"] = time.perf_counter() - t_start
        logger.info("Mask display requested, tone mapping skipped")
        return PipelineResult(
            output=display_mask(mask, image),
            mask=mask,
            clipped_pixels=clipped,
            diagnostics=diagnostics,
        )

    tonemap_input = image
    reconstructed_ok = False

    if config.fast:
        diagnostics["reconstruction"] = "skipped (fast)"
        logger.debug("Fast mode, highlight reconstruction skipped")
    elif not should_reconstruct(clipped):
        diagnostics["reconstruction"] = "skipped (not enough clipped pixels)"
        logger.debug("Only %d clipped pixel(s), highlight reconstruction skipped", clipped)
    else:
        # -----------------------------------------------------------
        # Stage 3: Inpaint noise
        # -----------------------------------------------------------
        _emit_progress(progress_callback, "inpaint", 0.0, "Inpainting noise...")
        _check_cancel(cancel_check)

        t0 = time.perf_counter()
        # Don't amplify noise on downscaled previews
        noise_level = data.noise_level / max(roi_scale, 1.0)
        inpainted = inpaint_noise(
            image, mask, noise_level, data.reconstruct_threshold,
            data.noise_distribution, data.noise_seed,
        )
        diagnostics["inpaint_time"] = time.perf_counter() - t0

        _emit_progress(progress_callback, "inpaint", 1.0, "Noise inpainted")
        logger.info("Inpaint: %.2fs", diagnostics["inpaint_time"])

        # -----------------------------------------------------------
        # Stage 4: Reconstruct
        # -----------------------------------------------------------
        _emit_progress(progress_callback, "reconstruct", 0.0, "Reconstructing highlights...")
        _check_cancel(cancel_check)

        t0 = time.perf_counter()
        scales = get_scales(width * roi_scale, height * roi_scale, roi_scale)
        diagnostics["scales"] = scales

        reconstructed = None
        try:
            reconstructed = allocator(image.shape, dtype=np.float32)
        except MemoryError:
            logger.warning("Could not allocate the reconstruction buffer")
            warnings.warn(
                "highlight reconstruction failed to allocate memory and was skipped",
                ReconstructionWarning,
                stacklevel=2,
            )

        success = reconstructed is not None and reconstruct_highlights(
            inpainted, mask, reconstructed, ReconstructionVariant.RGB, data, scales, allocator
        )
        diagnostics["reconstruct_time"] = time.perf_counter() - t0

        _emit_progress(progress_callback, "reconstruct", 1.0,
                       f"{scales} scale(s)" if success else "Reconstruction skipped")
        logger.info("Reconstruct: %.2fs, %d scale(s)", diagnostics["reconstruct_time"], scales)

        # -----------------------------------------------------------
        # Stage 5: Refine (optional)
        # -----------------------------------------------------------
        if success and data.high_quality_reconstruction > 0:
            _emit_progress(progress_callback, "refine", 0.0, "Refining chromaticity...")
            _check_cancel(cancel_check)

            t0 = time.perf_counter()
            success = refine_highlights(
                mask, reconstructed, data, scales,
                data.high_quality_reconstruction, allocator,
            )
            diagnostics["refine_time"] = time.perf_counter() - t0
            diagnostics["refine_passes"] = data.high_quality_reconstruction

            _emit_progress(progress_callback, "refine", 1.0, "Refinement complete")
            logger.info("Refine: %.2fs, %d pass(es)", diagnostics["refine_time"],
                        data.high_quality_reconstruction)

        if success:
            tonemap_input = reconstructed
            reconstructed_ok = True
            diagnostics["reconstruction"] = "ok"
        else:
            tonemap_input = inpainted
            diagnostics["reconstruction"] = "failed (allocation)"
            logger.warning("Highlight reconstruction failed, tone mapping the inpainted image")

    # ---------------------------------------------------------------
    # Stage 6: Tone map
    # ---------------------------------------------------------------
    _emit_progress(progress_callback, "tonemap", 0.0, "Tone mapping...")
    _check_cancel(cancel_check)

    t0 = time.perf_counter()
    output = apply_filmic(tonemap_input, data, config.work_profile, workers=config.workers)
    output[..., 3] = image[..., 3]
    diagnostics["tonemap_time"] = time.perf_counter() - t0

    _emit_progress(progress_callback, "tonemap", 1.0, "Tone mapping complete")
    logger.info("Tone map: %.2fs", diagnostics["tonemap_time"])

    # ---------------------------------------------------------------
    # Done
    # ---------------------------------------------------------------
    total_time = time.perf_counter() - t_start
    diagnostics["total_time"] = total_time
    logger.info("Pipeline complete: %.2fs total", total_time)

    return PipelineResult(
        output=output,
        mask=mask,
        tonemap_input=tonemap_input,
        clipped_pixels=clipped,
        reconstructed=reconstructed_ok,
        diagnostics=diagnostics,
    )
