"""Tar extraction and packing."""

import asyncio
import logging
import os
import tarfile
from pathlib import Path
from typing import Iterator, Union

from ..exceptions import LayerPackError, LayerUnpackError

logger = logging.getLogger(__name__)


def _extract(archive: Path, dest: Path) -> None:
    with tarfile.open(archive, "r:*") as tar:
        # "tar" keeps owners, modes and absolute symlinks but refuses
        # members that would land outside dest
        tar.extractall(path=dest, numeric_owner=True, filter="tar")


def untar_sync(archive: Union[str, Path], dest: Union[str, Path]) -> None:
    """Extract an archive into an existing directory (sync helper).

    Raises:
        LayerUnpackError: If the archive is missing, unreadable or corrupt
    """
    archive = Path(archive)
    dest = Path(dest)
    if not archive.is_file():
        raise LayerUnpackError(f"Archive not found: {archive}")

    try:
        _extract(archive, dest)
    except (tarfile.TarError, OSError, EOFError) as e:
        raise LayerUnpackError(f"Failed to extract {archive}: {e}") from e

    logger.debug("Extracted %s into %s", archive, dest)


async def untar(archive: Union[str, Path], dest: Union[str, Path]) -> None:
    """Extract an archive into an existing directory.

    Args:
        archive: Tar file, optionally gzip, bzip2 or xz compressed
        dest: Directory to extract into

    Raises:
        LayerUnpackError: If the archive cannot be extracted
    """
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(None, untar_sync, archive, dest)


def _iter_tree(root: Path) -> Iterator[Path]:
    """Yield every path under root, parents first, in sorted order."""
    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        # Symlinks to directories are listed as dirs but packed as links
        links = [d for d in dirnames if (current / d).is_symlink()]
        dirnames[:] = sorted(d for d in dirnames if d not in links)
        for name in sorted(filenames + links):
            yield current / name
        for name in dirnames:
            yield current / name


def pack_sync(source: Union[str, Path], output: Union[str, Path], compress: bool = False) -> Path:
    """Pack a directory's contents into a tar file (sync helper).

    The archive is written next to ``output`` under a temporary name and
    renamed into place only once it is complete.

    Raises:
        LayerPackError: If the archive cannot be written
    """
    source = Path(source)
    output = Path(output)
    partial = output.with_name(f".{output.name}.partial")
    mode = "w:xz" if compress else "w"

    try:
        with tarfile.open(partial, mode, format=tarfile.PAX_FORMAT) as tar:
            tar.add(source, arcname=".", recursive=False)
            for path in _iter_tree(source):
                tar.add(path, arcname=f"./{path.relative_to(source).as_posix()}", recursive=False)
        os.replace(partial, output)
    except (tarfile.TarError, OSError) as e:
        try:
            partial.unlink()
        except FileNotFoundError:
            pass
        raise LayerPackError(f"Failed to write {output}: {e}") from e

    logger.info("Wrote %s", output)
    return output


async def pack(source: Union[str, Path], output: Union[str, Path], compress: bool = False) -> Path:
    """Pack a directory's contents into a tar file.

    Args:
        source: Directory whose contents become the archive root
        output: Destination archive path
        compress: Compress with xz

    Returns:
        Path of the written archive

    Raises:
        LayerPackError: If the archive cannot be written
    """
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, pack_sync, source, output, compress)
