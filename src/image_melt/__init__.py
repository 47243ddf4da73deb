"""image-melt - Flatten layered container image archives into a single layer."""

__version__ = "0.1.0"

from .core.merge import merge_layers
from .exceptions import (
    CleanupIncompleteError,
    InvalidArgumentsError,
    LayerFoldError,
    LayerPackError,
    LayerUnpackError,
    MeltError,
    MetadataCorruptError,
    MetadataNotFoundError,
    TempCreateError,
)
from .melt import melt_image
from .tar.manifest import resolve_layers
from .tar.models import Layer, LayerSequence

__all__ = [
    "melt_image",
    "merge_layers",
    "resolve_layers",
    "Layer",
    "LayerSequence",
    "MeltError",
    "InvalidArgumentsError",
    "TempCreateError",
    "MetadataNotFoundError",
    "MetadataCorruptError",
    "LayerUnpackError",
    "LayerFoldError",
    "LayerPackError",
    "CleanupIncompleteError",
]
