"""Core types for image-melt."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from ..exceptions import InvalidArgumentsError
from ..tar.manifest import FORMATS

DEFAULT_TMP_PREFIX = "/tmp"
TMP_PREFIX_ENV = "MELT_TMPDIR"


def default_tmp_prefix() -> str:
    """Scratch prefix from MELT_TMPDIR, falling back to /tmp."""
    return os.environ.get(TMP_PREFIX_ENV) or DEFAULT_TMP_PREFIX


@dataclass
class MeltConfig:
    """Settings for one flattening run."""

    image: Union[str, Path]
    output: Union[str, Path]
    tmp_prefix: Union[str, Path] = field(default_factory=default_tmp_prefix)
    compress: bool = False
    purge_whiteouts: bool = False
    layer_format: str = "auto"

    def __post_init__(self) -> None:
        if not self.image:
            raise InvalidArgumentsError("An input image is required")
        if not self.output:
            raise InvalidArgumentsError("An output image is required")

        self.image = Path(self.image)
        self.output = Path(self.output)
        self.tmp_prefix = Path(self.tmp_prefix)

        if not self.image.is_file():
            raise InvalidArgumentsError(f"Input image not found: {self.image}")
        if self.layer_format not in FORMATS:
            raise InvalidArgumentsError(f"Unsupported layer format: {self.layer_format}")
