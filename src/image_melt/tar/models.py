"""Data models for image layers."""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence, Tuple

from ..exceptions import MetadataCorruptError


@dataclass(frozen=True)
class Layer:
    """One entry of an image's layer stack."""

    id: str
    archive_path: Path  # Path to the layer's tar payload
    parent_id: Optional[str] = None  # Only set for the graph format


class LayerSequence:
    """Layers in bottom-to-top application order.

    Construction fails with MetadataCorruptError for an empty stack or for
    duplicate layer ids, so every instance can be folded as-is.
    """

    def __init__(self, layers: Sequence[Layer]) -> None:
        layers = tuple(layers)
        if not layers:
            raise MetadataCorruptError("Image contains no layers")

        seen = set()
        for layer in layers:
            if layer.id in seen:
                raise MetadataCorruptError(f"Duplicate layer id: {layer.id}")
            seen.add(layer.id)

        self._layers: Tuple[Layer, ...] = layers

    def __iter__(self) -> Iterator[Layer]:
        return iter(self._layers)

    def __len__(self) -> int:
        return len(self._layers)

    def __getitem__(self, index: int) -> Layer:
        return self._layers[index]

    def __repr__(self) -> str:
        return f"LayerSequence({[layer.id for layer in self._layers]!r})"

    @property
    def ids(self) -> list[str]:
        """Layer ids in application order."""
        return [layer.id for layer in self._layers]
