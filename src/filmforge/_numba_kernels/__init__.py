"""Numba compiled kernels."""
