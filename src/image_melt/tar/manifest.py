"""Layer order resolution from image metadata.

Two layouts are supported:

* flat: a top-level ``manifest.json`` whose ``"Layers"`` array lists the
  layer archives bottom to top.
* graph (legacy): one directory per layer holding a ``json`` descriptor
  with an ``id`` and an optional ``parent`` id, next to ``layer.tar``.

Descriptors are scanned for a few known markers instead of being parsed as
JSON; anything outside the expected shape is reported as corrupt.
"""

import asyncio
import logging
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional

import aiofiles

from ..exceptions import MetadataCorruptError, MetadataNotFoundError
from .models import Layer, LayerSequence

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
DESCRIPTOR_NAME = "json"
LAYER_ARCHIVE_NAME = "layer.tar"

LAYERS_MARKER = '"Layers":'
ID_MARKER = '"id":'
PARENT_MARKER = '"parent":'

# Metadata files are small; anything bigger is not one of ours
MAX_METADATA_BYTES = 16 * 1024 * 1024

FORMATS = ("auto", "flat", "graph")


def extract_field(marker: str, text: str) -> Optional[str]:
    """Return the quoted value following a field marker.

    Args:
        marker: Literal key marker, e.g. ``'"id":'``
        text: Descriptor text

    Returns:
        Text between the first quote after the marker and the next quote,
        or None if the marker does not occur

    Raises:
        MetadataCorruptError: If the marker is not followed by a quoted value
    """
    start = text.find(marker)
    if start < 0:
        return None

    open_quote = text.find('"', start + len(marker))
    if open_quote < 0:
        raise MetadataCorruptError(f"No value after {marker}")

    close_quote = text.find('"', open_quote + 1)
    if close_quote < 0:
        raise MetadataCorruptError(f"Unterminated value after {marker}")

    return text[open_quote + 1 : close_quote]


def extract_array(marker: str, text: str) -> List[str]:
    """Return the quoted strings of the array following a key marker.

    Raises:
        MetadataCorruptError: If the marker, the brackets or a closing quote
            is missing
    """
    start = text.find(marker)
    if start < 0:
        raise MetadataCorruptError(f"Key {marker} not found")

    pos = start + len(marker)
    while pos < len(text) and text[pos].isspace():
        pos += 1
    if pos >= len(text) or text[pos] != "[":
        raise MetadataCorruptError(f"Key {marker} is not followed by an array")

    end = text.find("]", pos)
    if end < 0:
        raise MetadataCorruptError(f"Array after {marker} is not closed")

    body = text[pos + 1 : end]
    items = []
    cursor = 0
    while True:
        open_quote = body.find('"', cursor)
        if open_quote < 0:
            break
        close_quote = body.find('"', open_quote + 1)
        if close_quote < 0:
            raise MetadataCorruptError(f"Unterminated string in {marker} array")
        items.append(body[open_quote + 1 : close_quote])
        cursor = close_quote + 1

    return items


async def read_metadata_text(path: Path) -> str:
    """Read a metadata file as text, bounded to MAX_METADATA_BYTES.

    Raises:
        MetadataNotFoundError: If the file cannot be read
        MetadataCorruptError: If the file is empty or too large
    """
    try:
        async with aiofiles.open(path, "rb") as f:
            data = await f.read(MAX_METADATA_BYTES + 1)
    except OSError as e:
        raise MetadataNotFoundError(f"Failed to read {path}: {e}") from e

    if not data:
        raise MetadataCorruptError(f"Empty metadata file: {path}")
    if len(data) > MAX_METADATA_BYTES:
        raise MetadataCorruptError(f"Metadata file too large: {path}")

    return data.decode("utf-8", errors="replace")


def find_manifest(image_root: Path) -> Optional[Path]:
    """Look for manifest.json in the top-level listing of an image."""
    for entry in image_root.iterdir():
        if entry.name == MANIFEST_NAME and entry.is_file():
            return entry
    return None


def _layer_id_from_archive(archive: str) -> str:
    path = PurePosixPath(archive)
    if path.name == LAYER_ARCHIVE_NAME and path.parent.name:
        return path.parent.name
    # OCI style blobs/sha256/<digest>
    return path.name or archive


def flat_layer_ids(archives: List[str]) -> List[str]:
    """Derive one unique id per manifest position.

    The same blob can be listed more than once (identical diffs such as the
    empty layer); repeats get their position appended, e.g. ``<digest>#3``.
    """
    ids = []
    seen = set()
    for index, archive in enumerate(archives):
        layer_id = _layer_id_from_archive(archive)
        if layer_id in seen:
            layer_id = f"{layer_id}#{index}"
        seen.add(layer_id)
        ids.append(layer_id)
    return ids


def _resolve_inside(image_root: Path, relative: str) -> Path:
    path = (image_root / relative).resolve()
    root = image_root.resolve()
    if path != root and root not in path.parents:
        raise MetadataCorruptError(f"Layer path escapes the image: {relative}")
    return path


def _locate_archives(image_root: Path, archives: List[str]) -> List[Path]:
    """Resolve manifest entries to existing archive paths (sync helper)."""
    paths = []
    for archive in archives:
        archive_path = _resolve_inside(image_root, archive)
        if not archive_path.is_file():
            raise MetadataCorruptError(f"Layer archive not found: {archive}")
        paths.append(archive_path)
    return paths


async def read_flat_manifest(
    image_root: Path, manifest: Optional[Path] = None
) -> LayerSequence:
    """Build the layer order from a flat manifest.json.

    Args:
        image_root: Directory the image archive was extracted into
        manifest: Already located manifest.json, looked up when omitted

    Raises:
        MetadataNotFoundError: If there is no manifest.json
        MetadataCorruptError: If the layer list cannot be extracted or
            names a missing archive
    """
    loop = asyncio.get_event_loop()
    if manifest is None:
        manifest = await loop.run_in_executor(None, find_manifest, image_root)
    if manifest is None:
        raise MetadataNotFoundError(f"{MANIFEST_NAME} not found in {image_root}")

    text = await read_metadata_text(manifest)
    archives = extract_array(LAYERS_MARKER, text)
    paths = await loop.run_in_executor(None, _locate_archives, image_root, archives)

    layers = [
        Layer(id=layer_id, archive_path=archive_path)
        for layer_id, archive_path in zip(flat_layer_ids(archives), paths)
    ]

    logger.info("Found %d layer(s) in %s", len(layers), MANIFEST_NAME)
    return LayerSequence(layers)


def find_descriptors(image_root: Path) -> List[Path]:
    """List the per-layer descriptors of a legacy image, sorted by directory."""
    descriptors = []
    for layer_dir in sorted(image_root.iterdir()):
        if not layer_dir.is_dir() or layer_dir.is_symlink():
            continue
        descriptor = layer_dir / DESCRIPTOR_NAME
        if descriptor.is_file():
            descriptors.append(descriptor)
    return descriptors


async def read_layer_graph(image_root: Path) -> Dict[str, Layer]:
    """Read every per-layer descriptor of a legacy image.

    Returns:
        Mapping of layer id to Layer

    Raises:
        MetadataNotFoundError: If no layer directory holds a descriptor
        MetadataCorruptError: If a descriptor has no id or ids repeat
    """
    loop = asyncio.get_event_loop()
    descriptors = await loop.run_in_executor(None, find_descriptors, image_root)

    layers: Dict[str, Layer] = {}
    for descriptor in descriptors:
        text = await read_metadata_text(descriptor)
        layer_id = extract_field(ID_MARKER, text)
        if not layer_id:
            raise MetadataCorruptError(f"No layer id in {descriptor}")
        if layer_id in layers:
            raise MetadataCorruptError(f"Duplicate layer id: {layer_id}")

        layers[layer_id] = Layer(
            id=layer_id,
            parent_id=extract_field(PARENT_MARKER, text) or None,
            archive_path=descriptor.parent / LAYER_ARCHIVE_NAME,
        )

    if not layers:
        raise MetadataNotFoundError(f"No layer descriptors found in {image_root}")

    logger.info("Found %d layer descriptor(s)", len(layers))
    return layers


def linearize_graph(layers: Dict[str, Layer]) -> LayerSequence:
    """Order a parent-pointer layer graph from the root ancestor down.

    Raises:
        MetadataCorruptError: If there is not exactly one root, a layer has
            more than one child, a parent is missing or the graph has a cycle
    """
    roots = [layer for layer in layers.values() if layer.parent_id is None]
    if len(roots) != 1:
        raise MetadataCorruptError(
            f"Expected exactly one root layer, found {len(roots)}"
        )

    children: Dict[str, List[str]] = {}
    for layer in layers.values():
        if layer.parent_id is not None:
            children.setdefault(layer.parent_id, []).append(layer.id)

    ordered = [roots[0]]
    current = roots[0]
    while current.id in children:
        child_ids = children[current.id]
        if len(child_ids) > 1:
            raise MetadataCorruptError(
                f"Layer {current.id} has {len(child_ids)} children"
            )
        current = layers[child_ids[0]]
        ordered.append(current)

    if len(ordered) != len(layers):
        # Whatever was not reached hangs off a missing parent or a cycle
        unreached = sorted(set(layers) - {layer.id for layer in ordered})
        raise MetadataCorruptError(
            f"Layers not reachable from root {roots[0].id}: {', '.join(unreached)}"
        )

    return LayerSequence(ordered)


async def resolve_layers(image_root: Path, layer_format: str = "auto") -> LayerSequence:
    """Resolve the layer application order of an extracted image.

    Args:
        image_root: Directory the image archive was extracted into
        layer_format: "flat", "graph" or "auto" to detect from the files present

    Returns:
        LayerSequence in bottom-to-top order

    Raises:
        MetadataNotFoundError: If no supported metadata is present
        MetadataCorruptError: If metadata is present but unusable
    """
    if layer_format not in FORMATS:
        raise ValueError(f"Unsupported layer format: {layer_format}")

    image_root = Path(image_root)
    manifest = None
    if layer_format == "auto":
        loop = asyncio.get_event_loop()
        manifest = await loop.run_in_executor(None, find_manifest, image_root)
        layer_format = "flat" if manifest is not None else "graph"
        logger.debug("Detected %s metadata in %s", layer_format, image_root)

    if layer_format == "flat":
        return await read_flat_manifest(image_root, manifest)

    graph = await read_layer_graph(image_root)
    return linearize_graph(graph)
