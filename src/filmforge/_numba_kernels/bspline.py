"""Numba JIT-compiled à-trous B-spline blur.

The 5-tap kernel [1, 4, 6, 4, 1] / 16 is dilated by ``mult`` (holes of
``mult - 1`` pixels between taps) and applied separably, vertical pass
first. Out-of-image taps are clamped to the nearest edge row or column.

Rows are independent in both passes, so the kernels run in parallel over
rows with ``prange``; each iteration writes only its own output row.

Only the RGB channels are filtered. The fourth channel of the output is
set to zero.
"""

from __future__ import annotations

import numba
import numpy as np

from filmforge.config import BSPLINE_FILTER, FSIZE

_HALF = (FSIZE - 1) // 2


@numba.njit(parallel=True, cache=True)
def _blur_vertical(src: np.ndarray, dst: np.ndarray, kernel: np.ndarray, mult: int) -> None:
    height, width, _ = src.shape
    for i in numba.prange(height):
        for j in range(width):
            acc0 = 0.0
            acc1 = 0.0
            acc2 = 0.0
            for k in range(FSIZE):
                ii = i + mult * (k - _HALF)
                if ii < 0:
                    ii = 0
                elif ii > height - 1:
                    ii = height - 1
                w = kernel[k]
                acc0 += w * src[ii, j, 0]
                acc1 += w * src[ii, j, 1]
                acc2 += w * src[ii, j, 2]
            dst[i, j, 0] = acc0
            dst[i, j, 1] = acc1
            dst[i, j, 2] = acc2
            dst[i, j, 3] = 0.0


@numba.njit(parallel=True, cache=True)
def _blur_horizontal(src: np.ndarray, dst: np.ndarray, kernel: np.ndarray, mult: int) -> None:
    height, width, _ = src.shape
    for i in numba.prange(height):
        for j in range(width):
            acc0 = 0.0
            acc1 = 0.0
            acc2 = 0.0
            for k in range(FSIZE):
                jj = j + mult * (k - _HALF)
                if jj < 0:
                    jj = 0
                elif jj > width - 1:
                    jj = width - 1
                w = kernel[k]
                acc0 += w * src[i, jj, 0]
                acc1 += w * src[i, jj, 1]
                acc2 += w * src[i, jj, 2]
            dst[i, j, 0] = acc0
            dst[i, j, 1] = acc1
            dst[i, j, 2] = acc2
            dst[i, j, 3] = 0.0


def bspline_blur(
    src: np.ndarray,
    dst: np.ndarray,
    temp: np.ndarray,
    mult: int,
) -> np.ndarray:
    """Blur an (H, W, 4) buffer with the dilated B-spline kernel.

    ``dst`` may alias ``src`` since the vertical pass goes through ``temp``.

    Args:
        src: (H, W, 4) float32 input.
        dst: (H, W, 4) float32 output buffer.
        temp: (H, W, 4) float32 scratch buffer, distinct from both.
        mult: Dilation factor, 2^scale.

    Returns:
        ``dst``.
    """
    _blur_vertical(src, temp, BSPLINE_FILTER, int(mult))
    _blur_horizontal(temp, dst, BSPLINE_FILTER, int(mult))
    return dst


def bspline_blur_numpy(src: np.ndarray, mult: int) -> np.ndarray:
    """Vectorized NumPy version of :func:`bspline_blur`.

    Allocates its own output. Used to cross-check the compiled kernels.
    """
    height, width = src.shape[:2]
    offsets = mult * (np.arange(FSIZE) - _HALF)

    rows = np.clip(np.arange(height)[:, None] + offsets[None, :], 0, height - 1)
    vertical = np.zeros(src.shape[:2] + (3,), dtype=np.float32)
    for k in range(FSIZE):
        vertical += BSPLINE_FILTER[k] * src[rows[:, k], :, :3]

    cols = np.clip(np.arange(width)[:, None] + offsets[None, :], 0, width - 1)
    out = np.zeros(src.shape, dtype=np.float32)
    for k in range(FSIZE):
        out[..., :3] += BSPLINE_FILTER[k] * vertical[:, cols[:, k], :]

    return out
