"""Core tone curve, tone mapping and wavelet reconstruction."""
