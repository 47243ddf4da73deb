"""Tests for moving a layer tree over the accumulator."""

import os

from image_melt.utils.sync import sync_tree
from tests.helpers import write_tree


def test_sync_moves_files_and_removes_sources(tmp_path):
    """Test files land at the same relative path and leave the source."""
    src = write_tree(tmp_path / "src", {"a.txt": "a", "dir/b.txt": "b"})
    dst = write_tree(tmp_path / "dst", {"old.txt": "old"})

    moved = sync_tree(src, dst)

    assert moved == 2
    assert (dst / "a.txt").read_text() == "a"
    assert (dst / "dir" / "b.txt").read_text() == "b"
    assert (dst / "old.txt").read_text() == "old"
    assert not (src / "a.txt").exists()
    assert not (src / "dir" / "b.txt").exists()


def test_sync_overwrites_existing_file(tmp_path):
    """Test the source wins over an existing destination file."""
    src = write_tree(tmp_path / "src", {"etc/hosts": "new"})
    dst = write_tree(tmp_path / "dst", {"etc/hosts": "old", "etc/passwd": "root"})

    sync_tree(src, dst)

    assert (dst / "etc" / "hosts").read_text() == "new"
    assert (dst / "etc" / "passwd").read_text() == "root"


def test_sync_skips_whiteouts(tmp_path):
    """Test markers are neither moved nor removed from the source."""
    src = write_tree(tmp_path / "src", {".wh.gone": b"", "sub/.wh.x": b"", "sub/y": "y"})
    dst = tmp_path / "dst"
    dst.mkdir()

    sync_tree(src, dst)

    assert not (dst / ".wh.gone").exists()
    assert not (dst / "sub" / ".wh.x").exists()
    assert (dst / "sub" / "y").read_text() == "y"
    assert (src / ".wh.gone").exists()


def test_sync_file_replaces_directory(tmp_path):
    """Test a file in the source replaces a whole directory."""
    src = write_tree(tmp_path / "src", {"path": "now a file"})
    dst = write_tree(tmp_path / "dst", {"path/inner.txt": "inner"})

    sync_tree(src, dst)

    assert (dst / "path").is_file()
    assert (dst / "path").read_text() == "now a file"


def test_sync_directory_replaces_file(tmp_path):
    """Test a directory in the source replaces a file."""
    src = write_tree(tmp_path / "src", {"path/inner.txt": "inner"})
    dst = write_tree(tmp_path / "dst", {"path": "was a file"})

    sync_tree(src, dst)

    assert (dst / "path").is_dir()
    assert (dst / "path" / "inner.txt").read_text() == "inner"


def test_sync_preserves_symlinks(tmp_path):
    """Test symlinks are moved as links, including links to directories."""
    src = write_tree(
        tmp_path / "src",
        {"usr/lib/libc.so": "libc", "lib": ("symlink", "usr/lib"), "sh": ("symlink", "bash")},
    )
    dst = tmp_path / "dst"
    dst.mkdir()

    sync_tree(src, dst)

    assert (dst / "lib").is_symlink()
    assert os.readlink(dst / "lib") == "usr/lib"
    assert os.readlink(dst / "sh") == "bash"
    assert (dst / "usr" / "lib" / "libc.so").read_text() == "libc"


def test_sync_directory_replaces_symlink(tmp_path):
    """Test a real directory in the source replaces a symlink in the destination."""
    outside = write_tree(tmp_path / "outside", {"keep.txt": "keep"})
    src = write_tree(tmp_path / "src", {"lib/new.so": "new"})
    dst = write_tree(tmp_path / "dst", {"lib": ("symlink", str(outside))})

    sync_tree(src, dst)

    assert not (dst / "lib").is_symlink()
    assert (dst / "lib" / "new.so").read_text() == "new"
    assert sorted(p.name for p in outside.iterdir()) == ["keep.txt"]


def test_sync_copies_directory_mode(tmp_path):
    """Test directory permissions follow the source."""
    src = write_tree(tmp_path / "src", {"private/key": "k"})
    os.chmod(src / "private", 0o700)
    dst = tmp_path / "dst"
    dst.mkdir()

    sync_tree(src, dst)

    assert os.stat(dst / "private").st_mode & 0o777 == 0o700
