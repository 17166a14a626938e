"""Gaussian elimination with partial pivoting for the small curve-fit systems.

The toe and shoulder fits only ever solve 4x4 or 5x5 dense systems, so a
direct elimination is used instead of a general linear-algebra backend.
"""

from __future__ import annotations

import numpy as np

from filmforge.errors import SingularMatrixError

PIVOT_TOLERANCE = 1e-14


def gauss_solve(A: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Solve A x = b by Gaussian elimination with partial pivoting.

    Args:
        A: (n, n) coefficient matrix. Not modified.
        b: (n,) right-hand side. Not modified.

    Returns:
        (n,) float64 solution vector.

    Raises:
        SingularMatrixError: If a pivot is (numerically) zero.
    """
    M = np.array(A, dtype=np.float64)
    x = np.array(b, dtype=np.float64)
    n = M.shape[0]

    if M.shape != (n, n) or x.shape != (n,):
        raise ValueError(f"Incompatible system shapes: A {M.shape}, b {x.shape}")

    # Forward elimination
    for k in range(n):
        pivot_row = k + int(np.argmax(np.abs(M[k:, k])))
        if abs(M[pivot_row, k]) < PIVOT_TOLERANCE:
            raise SingularMatrixError(f"Singular system: zero pivot in column {k}")

        if pivot_row != k:
            M[[k, pivot_row]] = M[[pivot_row, k]]
            x[[k, pivot_row]] = x[[pivot_row, k]]

        for i in range(k + 1, n):
            factor = M[i, k] / M[k, k]
            M[i, k:] -= factor * M[k, k:]
            x[i] -= factor * x[k]

    # Back substitution
    for k in range(n - 1, -1, -1):
        x[k] = (x[k] - M[k, k + 1:] @ x[k + 1:]) / M[k, k]

    return x
