"""Pixel norms and luminance."""
