"""Builders for synthetic image archives."""

import io
import json
import tarfile
from pathlib import Path
from typing import Dict, List, Optional, Union

# Layer content: path -> bytes for files, None for directories,
# ("symlink", target) for symlinks
LayerContent = Dict[str, Union[bytes, str, None, tuple]]


def _add_bytes(tar: tarfile.TarFile, name: str, data: bytes, mode: int = 0o644) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = mode
    tar.addfile(info, fileobj=io.BytesIO(data))


def build_layer_tar(content: LayerContent) -> bytes:
    """Build a layer tar in memory."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for name, value in content.items():
            if value is None:
                info = tarfile.TarInfo(name)
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
            elif isinstance(value, tuple):
                info = tarfile.TarInfo(name)
                info.type = tarfile.SYMTYPE
                info.linkname = value[1]
                tar.addfile(info)
            else:
                data = value.encode("utf-8") if isinstance(value, str) else value
                _add_bytes(tar, name, data)
    return buf.getvalue()


def build_flat_image(
    tar_path: Path,
    layers: Dict[str, LayerContent],
    manifest_layers: Optional[List[str]] = None,
) -> Path:
    """Create an image tar with a manifest.json listing layers in order.

    Args:
        tar_path: Where to write the image
        layers: Archive path (e.g. "a/layer.tar") -> layer content, in order
        manifest_layers: Override the "Layers" array written to the manifest
    """
    order = manifest_layers if manifest_layers is not None else list(layers)
    manifest = [
        {
            "Config": "config.json",
            "RepoTags": ["test/melt:latest"],
            "Layers": order,
        }
    ]

    with tarfile.open(tar_path, "w") as tar:
        _add_bytes(tar, "manifest.json", json.dumps(manifest).encode("utf-8"))
        _add_bytes(tar, "config.json", b'{"os":"linux","architecture":"amd64"}')
        for archive_path, content in layers.items():
            _add_bytes(tar, archive_path, build_layer_tar(content))

    return tar_path


def build_graph_image(
    tar_path: Path,
    layers: Dict[str, LayerContent],
    parents: Dict[str, Optional[str]],
) -> Path:
    """Create a legacy image tar with one directory per layer.

    Args:
        tar_path: Where to write the image
        layers: Layer id -> layer content
        parents: Layer id -> parent id (None for the root ancestor)
    """
    with tarfile.open(tar_path, "w") as tar:
        _add_bytes(tar, "repositories", b'{"test/melt":{"latest":"x"}}')
        for layer_id, content in layers.items():
            descriptor = {"id": layer_id}
            if parents.get(layer_id):
                descriptor["parent"] = parents[layer_id]
            _add_bytes(tar, f"{layer_id}/json", json.dumps(descriptor).encode("utf-8"))
            _add_bytes(tar, f"{layer_id}/VERSION", b"1.0")
            _add_bytes(tar, f"{layer_id}/layer.tar", build_layer_tar(content))

    return tar_path


def read_tar(tar_path: Path) -> Dict[str, Optional[bytes]]:
    """Map member names (without leading ./) to file bytes, None for non-files."""
    result: Dict[str, Optional[bytes]] = {}
    with tarfile.open(tar_path, "r:*") as tar:
        for member in tar.getmembers():
            name = member.name
            if name.startswith("./"):
                name = name[2:]
            if name in ("", "."):
                continue
            if member.isfile():
                result[name] = tar.extractfile(member).read()
            else:
                result[name] = None
    return result


def write_tree(root: Path, content: LayerContent) -> Path:
    """Materialize layer content as a directory tree."""
    root.mkdir(parents=True, exist_ok=True)
    for name, value in content.items():
        path = root / name
        if value is None:
            path.mkdir(parents=True, exist_ok=True)
        elif isinstance(value, tuple):
            path.parent.mkdir(parents=True, exist_ok=True)
            path.symlink_to(value[1])
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            data = value.encode("utf-8") if isinstance(value, str) else value
            path.write_bytes(data)
    return root


def leftover_scratch(prefix: Path) -> List[str]:
    """Names of entries still present under a scratch prefix."""
    return sorted(p.name for p in prefix.iterdir())
