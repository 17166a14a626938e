"""Custom exception hierarchy for FilmForge."""


class FilmForgeError(Exception):
    """Base exception for all FilmForge errors."""


class ImageError(FilmForgeError):
    """Errors related to image loading or processing."""


class ImageFormatError(ImageError):
    """Unsupported or corrupted image format, or wrong channel layout."""


class ImageDimensionError(ImageError):
    """Image dimensions exceed limits or are mismatched."""


class SolverError(FilmForgeError):
    """Errors during the small dense linear solves of the curve fit."""


class SingularMatrixError(SolverError):
    """The curve constraint system has no unique solution."""


class ValidationError(FilmForgeError):
    """Input validation failures."""


class PipelineError(FilmForgeError):
    """Errors during pipeline execution."""


class PipelineCancelledError(PipelineError):
    """Pipeline was cancelled by the user."""


class ReconstructionWarning(UserWarning):
    """Highlight reconstruction was skipped after a recoverable failure."""
