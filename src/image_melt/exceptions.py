"""Custom exceptions for image-melt."""

from pathlib import Path
from typing import Optional


class MeltError(Exception):
    """Base exception for all flattening errors.

    ``phase`` names the run step that failed ("untar", "layers" or "merge")
    once the error has passed through melt_config; None before that.
    """

    phase: Optional[str] = None


class InvalidArgumentsError(MeltError):
    """Raised when required input or output paths are missing."""

    pass


class TempCreateError(MeltError):
    """Raised when a scratch directory cannot be created."""

    pass


class MetadataError(MeltError):
    """Base exception for layer-ordering metadata errors."""

    pass


class MetadataNotFoundError(MetadataError):
    """Raised when no supported metadata format is found in the image."""

    pass


class MetadataCorruptError(MetadataError):
    """Raised when metadata is present but cannot be turned into a layer order."""

    pass


class LayerError(MeltError):
    """Base exception for per-layer processing errors."""

    pass


class LayerUnpackError(LayerError):
    """Raised when a layer archive cannot be extracted."""

    pass


class LayerFoldError(LayerError):
    """Raised when a layer cannot be folded into the accumulator."""

    pass


class LayerPackError(LayerError):
    """Raised when the merged tree cannot be archived."""

    pass


class CleanupIncompleteError(MeltError):
    """Raised when some entries of a tree could not be deleted."""

    def __init__(self, message: str, failed: list[Path] | None = None) -> None:
        super().__init__(message)
        self.failed = failed or []
