"""Move the contents of one tree over another.

This mirrors ``rsync -a --remove-source-files --exclude=.wh.*``: entries
keep their metadata, whatever already sits at the destination path is
replaced, and each source entry is deleted once it has been moved.
"""

import errno
import logging
import os
import shutil
from pathlib import Path

from .whiteout import delete_entry, is_whiteout

logger = logging.getLogger(__name__)


def _copy_dir_metadata(src: Path, dst: Path) -> None:
    shutil.copystat(src, dst, follow_symlinks=False)
    try:
        st = os.lstat(src)
        os.chown(dst, st.st_uid, st.st_gid, follow_symlinks=False)
    except PermissionError:
        # Unprivileged runs cannot restore foreign ownership
        pass


def _move_entry(src: Path, dst: Path) -> None:
    """Move a file or symlink to dst, replacing what is there."""
    if os.path.lexists(dst) and dst.is_dir() and not dst.is_symlink():
        shutil.rmtree(dst)

    try:
        os.replace(src, dst)
        return
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise

    # Different filesystems: copy then drop the source
    if os.path.lexists(dst):
        dst.unlink()
    if src.is_symlink():
        os.symlink(os.readlink(src), dst)
    else:
        shutil.copy2(src, dst, follow_symlinks=False)
    src.unlink()


def sync_tree(src: Path, dst: Path) -> int:
    """Move every non-whiteout entry of src to the same path under dst.

    Later calls win: a file in src replaces the file, symlink or whole
    directory found at the same path in dst, and a directory in src
    replaces a non-directory in dst. Directories are merged. Whiteout
    markers stay behind in src.

    Args:
        src: Tree to move from; emptied of everything but markers and dirs
        dst: Tree to move into

    Returns:
        Number of files and symlinks moved

    Raises:
        OSError: If any entry cannot be moved
    """
    moved = 0
    created = []
    for dirpath, dirnames, filenames in os.walk(src):
        current = Path(dirpath)
        target_dir = dst / current.relative_to(src)

        # Marker directories are never descended into
        dirnames[:] = [d for d in dirnames if not is_whiteout(d)]

        subdirs = []
        for name in dirnames:
            entry = current / name
            if entry.is_symlink():
                # os.walk lists symlinks to directories as dirs
                filenames.append(name)
                continue
            subdirs.append(name)
            target = target_dir / name
            if os.path.lexists(target) and (target.is_symlink() or not target.is_dir()):
                delete_entry(target)
            if not os.path.lexists(target):
                os.mkdir(target)
            created.append((entry, target))
        dirnames[:] = subdirs

        for name in filenames:
            if is_whiteout(name):
                continue
            _move_entry(current / name, target_dir / name)
            logger.debug("Moved %s", target_dir / name)
            moved += 1

    # Deepest first, so read-only modes do not block the moves above
    for entry, target in reversed(created):
        _copy_dir_metadata(entry, target)

    return moved
