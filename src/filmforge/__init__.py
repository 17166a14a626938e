"""FilmForge: filmic tone mapping with wavelet highlight reconstruction."""

__version__ = "0.1.0"
