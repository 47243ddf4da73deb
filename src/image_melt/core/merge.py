"""Union merge of an ordered layer stack into one tree."""

import asyncio
import logging
from pathlib import Path
from typing import Union

from ..exceptions import CleanupIncompleteError, LayerFoldError, MeltError
from ..tar.archive import pack, untar
from ..tar.models import Layer, LayerSequence
from ..utils.fs import make_scratch, remove_tree, remove_tree_async
from ..utils.sync import sync_tree
from ..utils.whiteout import apply_whiteouts, purge_whiteouts as purge_tree_whiteouts

logger = logging.getLogger(__name__)


def fold_layer(layer_dir: Path, accumulator: Path) -> None:
    """Fold one extracted layer into the accumulator (sync helper).

    Whiteout targets are deleted from the accumulator first, then every
    other entry of the layer replaces whatever sits at the same path.
    Moved entries are removed from layer_dir.

    Raises:
        LayerFoldError: If a delete or a move fails
    """
    try:
        deleted = apply_whiteouts(layer_dir, accumulator)
        moved = sync_tree(layer_dir, accumulator)
    except OSError as e:
        raise LayerFoldError(f"Failed to fold {layer_dir}: {e}") from e

    logger.debug("Folded %s: %d moved, %d whited out", layer_dir, moved, deleted)


async def _fold(layer: Layer, scratch: Path, accumulator: Path) -> None:
    await untar(layer.archive_path, scratch)

    loop = asyncio.get_event_loop()
    await loop.run_in_executor(None, fold_layer, scratch, accumulator)

    try:
        await remove_tree_async(scratch, keep_root=True)
    except CleanupIncompleteError as e:
        raise LayerFoldError(f"Failed to reset scratch dir after {layer.id}: {e}") from e


def _cleanup(path: Path) -> None:
    try:
        remove_tree(path)
    except CleanupIncompleteError as e:
        # Logged only; the merge outcome stands
        logger.warning("%s", e)


async def merge_layers(
    layers: LayerSequence,
    output: Union[str, Path],
    scratch_prefix: Union[str, Path] = "/tmp",
    compress: bool = False,
    purge_whiteouts: bool = False,
) -> Path:
    """Flatten a layer stack into a single tar archive.

    Layers are folded strictly in sequence order; reordering changes the
    result because whiteouts and overwrites depend on what came before.

    Args:
        layers: Layers in bottom-to-top order
        output: Destination archive path
        scratch_prefix: Directory to create the accumulator and scratch dirs in
        compress: Compress the output with xz
        purge_whiteouts: Also strip markers left in the final tree

    Returns:
        Path of the written archive

    Raises:
        TempCreateError: If a scratch directory cannot be created
        LayerUnpackError: If a layer archive cannot be extracted
        LayerFoldError: If a layer cannot be folded in
        LayerPackError: If the output archive cannot be written
    """
    accumulator = make_scratch(scratch_prefix, "melt_")
    scratch = None
    try:
        scratch = make_scratch(scratch_prefix, "melt_")

        total = len(layers)
        for index, layer in enumerate(layers, start=1):
            logger.info("Folding layer %d/%d: %s", index, total, layer.id)
            await _fold(layer, scratch, accumulator)

        if purge_whiteouts:
            loop = asyncio.get_event_loop()
            await loop.run_in_executor(None, purge_tree_whiteouts, accumulator)

        return await pack(accumulator, output, compress)
    except MeltError:
        raise
    except OSError as e:
        raise LayerFoldError(f"Merge failed: {e}") from e
    finally:
        if scratch is not None:
            _cleanup(scratch)
        _cleanup(accumulator)
