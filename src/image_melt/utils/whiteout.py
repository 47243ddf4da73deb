"""Whiteout marker handling.

A whiteout is an entry named ``.wh.<name>`` inside a layer. It means that
``<name>`` in the same directory of the layers below was deleted. Markers
never make it into a flattened tree.
"""

import logging
import os
import shutil
import stat
from pathlib import Path
from typing import Iterator, Optional, Tuple

logger = logging.getLogger(__name__)

WHITEOUT_PREFIX = ".wh."

# Targets that name no entry of their own directory
UNSAFE_TARGETS = (".", "..")


def whiteout_target(name: str) -> Optional[str]:
    """Return the name a whiteout marker deletes, or None for regular names.

    A bare ``.wh.`` is reserved and is not a marker.
    """
    if name.startswith(WHITEOUT_PREFIX) and len(name) > len(WHITEOUT_PREFIX):
        return name[len(WHITEOUT_PREFIX):]
    return None


def is_whiteout(name: str) -> bool:
    """Check if a filesystem entry name is a whiteout marker."""
    return whiteout_target(name) is not None


def iter_whiteouts(tree: Path) -> Iterator[Tuple[Path, str]]:
    """Yield (relative directory, target name) for every marker in a tree."""
    for dirpath, dirnames, filenames in os.walk(tree):
        rel_dir = Path(dirpath).relative_to(tree)
        for name in sorted(dirnames + filenames):
            target = whiteout_target(name)
            if target is not None:
                yield rel_dir, target


def delete_entry(path: Path) -> bool:
    """Delete a file, symlink or directory tree.

    Returns:
        True if something was deleted, False if nothing existed at path
    """
    if not os.path.lexists(path):
        return False

    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()
    return True


def real_parent(root: Path, rel_dir: Path) -> Optional[Path]:
    """Return root / rel_dir if every component is a real directory.

    Symlinks are not followed, so a link planted by a lower layer cannot
    steer a deletion outside root. Returns None otherwise.
    """
    current = root
    for part in rel_dir.parts:
        current = current / part
        try:
            mode = os.lstat(current).st_mode
        except (FileNotFoundError, NotADirectoryError):
            return None
        if not stat.S_ISDIR(mode):
            return None
    return current


def apply_whiteouts(layer_dir: Path, accumulator: Path) -> int:
    """Delete every whiteout target of a layer from the accumulator.

    Args:
        layer_dir: Extracted layer tree carrying the markers
        accumulator: Tree the markers apply to

    Returns:
        Number of entries deleted from the accumulator

    Raises:
        OSError: If a target exists but cannot be deleted
    """
    deleted = 0
    for rel_dir, target in iter_whiteouts(layer_dir):
        parent = real_parent(accumulator, rel_dir)
        if parent is None or target in UNSAFE_TARGETS:
            continue
        if delete_entry(parent / target):
            logger.debug("Whiteout removed %s", rel_dir / target)
            deleted += 1
    return deleted


def purge_whiteouts(tree: Path) -> int:
    """Delete all markers from a single tree together with their targets.

    Returns:
        Number of markers purged
    """
    purged = 0
    for rel_dir, target in list(iter_whiteouts(tree)):
        directory = real_parent(tree, rel_dir)
        if directory is None:
            continue
        if target not in UNSAFE_TARGETS:
            delete_entry(directory / target)
        if delete_entry(directory / f"{WHITEOUT_PREFIX}{target}"):
            purged += 1
    if purged:
        logger.info("Purged %d whiteout marker(s) from %s", purged, tree)
    return purged
