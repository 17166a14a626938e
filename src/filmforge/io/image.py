"""Image I/O abstraction layer.

Tries OpenImageIO first for professional format support (EXR, DPX, HDR),
falls back to imageio v3 for common formats (PNG, TIFF, JPEG).

Integer images are normalized to [0, 1]; floating point images are kept
as-is so that scene-linear HDR values above 1 survive loading.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import imageio.v3 as iio
import numpy as np

from filmforge.config import (
    FLOAT_IMAGE_EXTENSIONS,
    IMAGE_EXTENSIONS,
    MAX_IMAGE_DIMENSION,
    MAX_IMAGE_PIXELS,
    WORKING_CHANNELS,
)
from filmforge.errors import ImageDimensionError, ImageFormatError

logger = logging.getLogger(__name__)

# Optional professional backend
_HAS_OIIO = False
try:
    import OpenImageIO as oiio
    _HAS_OIIO = True
    logger.debug("OpenImageIO available")
except ImportError:
    pass


def validate_input_path(filepath: str | Path) -> Path:
    """Validate an input file path for security.

    Args:
        filepath: Path to validate.

    Returns:
        Resolved Path object.

    Raises:
        FileNotFoundError: If file does not exist.
        ImageFormatError: If extension is not allowed.
    """
    path = Path(filepath).resolve()

    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")

    if not path.is_file():
        raise ImageFormatError(f"Not a regular file: {path}")

    if path.suffix.lower() not in IMAGE_EXTENSIONS:
        raise ImageFormatError(
            f"Unsupported image format: {path.suffix}. "
            f"Supported: {', '.join(sorted(IMAGE_EXTENSIONS))}"
        )

    return path


def validate_output_path(filepath: str | Path) -> Path:
    """Validate an output file path.

    Raises:
        FileNotFoundError: If parent directory does not exist.
        PermissionError: If the parent directory is not writable.
        ImageFormatError: If extension is not allowed.
    """
    path = Path(filepath).resolve()

    if not path.parent.exists():
        raise FileNotFoundError(f"Output directory does not exist: {path.parent}")

    if not os.access(path.parent, os.W_OK):
        raise PermissionError(f"Cannot write to directory: {path.parent}")

    if path.suffix.lower() not in IMAGE_EXTENSIONS:
        raise ImageFormatError(f"Unsupported output format: {path.suffix}")

    return path


def _validate_dimensions(width: int, height: int) -> None:
    """Check image dimensions before memory allocation."""
    if width <= 0 or height <= 0:
        raise ImageDimensionError(f"Invalid image dimensions: {width}x{height}")
    if width > MAX_IMAGE_DIMENSION or height > MAX_IMAGE_DIMENSION:
        raise ImageDimensionError(
            f"Image dimension {max(width, height)} exceeds "
            f"maximum allowed {MAX_IMAGE_DIMENSION}"
        )
    if width * height > MAX_IMAGE_PIXELS:
        raise ImageDimensionError(
            f"Image has {width * height:,} pixels, exceeds "
            f"maximum allowed {MAX_IMAGE_PIXELS:,}"
        )


def _to_rgb_or_rgba(data: np.ndarray) -> np.ndarray:
    """Expand grey images to RGB, keep RGBA, reject other layouts."""
    if data.ndim == 2:
        return np.repeat(data[:, :, np.newaxis], 3, axis=2)
    if data.ndim == 3 and data.shape[2] == 1:
        return np.repeat(data, 3, axis=2)
    if data.ndim == 3 and data.shape[2] in (3, 4):
        return data
    raise ImageFormatError(f"Unsupported image shape: {data.shape}")


def _load_oiio(path: Path) -> tuple[np.ndarray, dict]:
    """Load image using OpenImageIO."""
    inp = oiio.ImageInput.open(str(path))
    if inp is None:
        raise ImageFormatError(f"OIIO failed to open: {path}\n{oiio.geterror()}")

    try:
        spec = inp.spec()
        _validate_dimensions(spec.width, spec.height)

        data = inp.read_image(oiio.FLOAT)
        if data is None:
            raise ImageFormatError(f"OIIO failed to read: {path}\n{oiio.geterror()}")

        data = _to_rgb_or_rgba(np.asarray(data, dtype=np.float32)[:, :, :4])

        metadata = {
            "width": spec.width,
            "height": spec.height,
            "channels": spec.nchannels,
            "format": str(spec.format),
            "backend": "oiio",
        }

        return data, metadata
    finally:
        inp.close()


def _load_imageio(path: Path) -> tuple[np.ndarray, dict]:
    """Load image using imageio v3."""
    raw = iio.imread(str(path))

    _validate_dimensions(raw.shape[1], raw.shape[0])

    if raw.dtype == np.uint8:
        data = raw.astype(np.float32) / 255.0
    elif raw.dtype == np.uint16:
        data = raw.astype(np.float32) / 65535.0
    elif np.issubdtype(raw.dtype, np.integer):
        data = raw.astype(np.float32) / np.iinfo(raw.dtype).max
    else:
        data = raw.astype(np.float32)

    data = _to_rgb_or_rgba(data)

    metadata = {
        "width": data.shape[1],
        "height": data.shape[0],
        "channels": raw.shape[2] if raw.ndim == 3 else 1,
        "format": str(raw.dtype),
        "backend": "imageio",
    }

    return data, metadata


def load_image(filepath: str | Path) -> tuple[np.ndarray, dict]:
    """Load an image file as a float32 array.

    Tries OpenImageIO first (better for professional formats), falls back
    to imageio v3.

    Args:
        filepath: Path to image file.

    Returns:
        (array, metadata): (H, W, 3) or (H, W, 4) float32 array and metadata dict.
    """
    path = validate_input_path(filepath)

    if _HAS_OIIO:
        try:
            logger.debug("Loading with OIIO: %s", path)
            return _load_oiio(path)
        except (ImageFormatError, OSError, RuntimeError) as e:
            logger.debug("OIIO failed, falling back to imageio: %s", e)

    logger.debug("Loading with imageio: %s", path)
    return _load_imageio(path)


def to_working_buffer(array: np.ndarray) -> np.ndarray:
    """Convert an RGB or RGBA image to the (H, W, 4) float32 working layout.

    A missing alpha plane is filled with 1.

    Raises:
        ImageFormatError: If the array is not (H, W, 3) or (H, W, 4).
    """
    if array.ndim != 3 or array.shape[2] not in (3, WORKING_CHANNELS):
        raise ImageFormatError(f"Expected (H, W, 3) or (H, W, 4) image, got {array.shape}")

    buffer = np.ones(array.shape[:2] + (WORKING_CHANNELS,), dtype=np.float32)
    buffer[..., :array.shape[2]] = array
    return np.ascontiguousarray(buffer)


def save_image(
    array: np.ndarray,
    filepath: str | Path,
    bit_depth: int = 16,
) -> Path:
    """Save the RGB channels of an image array to file.

    EXR and HDR files are written as float32; ``bit_depth`` only applies to
    the integer formats.

    Args:
        array: (H, W, >=3) float32 array in [0, 1].
        filepath: Output path.
        bit_depth: 8 or 16 bits per channel.

    Returns:
        Resolved output path.
    """
    path = validate_output_path(filepath)
    suffix = path.suffix.lower()
    rgb = np.asarray(array)[..., :3]

    if bit_depth not in (8, 16):
        raise ValueError(f"Unsupported bit depth: {bit_depth}")

    if suffix in FLOAT_IMAGE_EXTENSIONS:
        out = np.ascontiguousarray(rgb, dtype=np.float32)
    elif bit_depth == 16:
        out = (np.clip(rgb, 0.0, 1.0) * 65535 + 0.5).astype(np.uint16)
    else:
        out = (np.clip(rgb, 0.0, 1.0) * 255 + 0.5).astype(np.uint8)

    if _HAS_OIIO and suffix in (".exr", ".dpx", ".hdr"):
        pixel_type = {np.float32: oiio.FLOAT, np.uint16: oiio.UINT16, np.uint8: oiio.UINT8}[out.dtype.type]
        spec = oiio.ImageSpec(rgb.shape[1], rgb.shape[0], 3, pixel_type)
        out_file = oiio.ImageOutput.create(str(path))
        if out_file is None:
            raise ImageFormatError(f"Cannot create output: {oiio.geterror()}")
        out_file.open(str(path), spec)
        out_file.write_image(out)
        out_file.close()
    else:
        iio.imwrite(str(path), out)

    logger.info("Saved image: %s (%s)", path, out.dtype)
    return path
