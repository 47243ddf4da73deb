"""Scratch directory creation and cleanup."""

import asyncio
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional, Union

from ..exceptions import CleanupIncompleteError, TempCreateError

logger = logging.getLogger(__name__)

SCRATCH_MODE = 0o755


def make_scratch(prefix: Union[str, Path], name_prefix: str = "melt_") -> Path:
    """Create a uniquely named scratch directory.

    Args:
        prefix: Existing, writable directory to create the scratch dir in
        name_prefix: Leading part of the generated directory name

    Returns:
        Path of the new directory, mode 0755

    Raises:
        TempCreateError: If the directory cannot be created
    """
    try:
        path = Path(tempfile.mkdtemp(prefix=name_prefix, dir=str(prefix)))
    except OSError as e:
        raise TempCreateError(f"Failed to create scratch dir in {prefix}: {e}") from e

    try:
        os.chmod(path, SCRATCH_MODE)
    except OSError as e:
        os.rmdir(path)
        raise TempCreateError(f"Failed to set permissions on {path}: {e}") from e

    logger.debug("Created scratch dir %s", path)
    return path


def _remove_entries(directory: Path, exclude: Optional[str], failed: List[Path]) -> None:
    try:
        entries = list(os.scandir(directory))
    except OSError:
        failed.append(directory)
        return

    for entry in entries:
        if exclude is not None and entry.name == exclude:
            continue

        path = Path(entry.path)
        try:
            if entry.is_dir(follow_symlinks=False):
                _remove_entries(path, None, failed)
                os.rmdir(path)
            else:
                os.unlink(path)
        except OSError as e:
            logger.debug("Failed to remove %s: %s", path, e)
            failed.append(path)


def remove_tree(
    path: Union[str, Path], exclude: Optional[str] = None, keep_root: bool = False
) -> None:
    """Recursively delete a directory.

    Symlinks are removed, never followed. Deletion keeps going after an
    entry fails so one locked file does not leave its siblings behind.

    Args:
        path: Directory to delete; a missing path is a no-op
        exclude: Immediate child name to leave in place; the root then survives
        keep_root: Leave ``path`` itself behind, emptied

    Raises:
        CleanupIncompleteError: If any entry could not be deleted
    """
    path = Path(path)
    if not os.path.lexists(path):
        return

    failed: List[Path] = []
    _remove_entries(path, exclude, failed)

    if not keep_root and exclude is None:
        try:
            os.rmdir(path)
        except OSError:
            failed.append(path)

    if failed:
        raise CleanupIncompleteError(
            f"Failed to remove {len(failed)} entr{'y' if len(failed) == 1 else 'ies'} "
            f"under {path}",
            failed=failed,
        )


async def remove_tree_async(
    path: Union[str, Path], exclude: Optional[str] = None, keep_root: bool = False
) -> None:
    """Run remove_tree in the default executor."""
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(None, remove_tree, path, exclude, keep_root)


@asynccontextmanager
async def scratch_dir(
    prefix: Union[str, Path], name_prefix: str = "melt_", strict: bool = False
) -> AsyncIterator[Path]:
    """Yield a scratch directory that is deleted when the block exits.

    Cleanup failures are logged. With ``strict`` they are raised, but only
    when the block itself succeeded; an error from the block always wins.
    """
    path = make_scratch(prefix, name_prefix)
    succeeded = False
    try:
        yield path
        succeeded = True
    finally:
        try:
            await remove_tree_async(path)
        except CleanupIncompleteError as e:
            logger.warning("%s", e)
            if strict and succeeded:
                raise
