"""Test configuration and fixtures."""

import pytest

from tests.helpers import build_flat_image


@pytest.fixture
def scratch_prefix(tmp_path):
    """Isolated directory for scratch dirs created by a test."""
    prefix = tmp_path / "scratch"
    prefix.mkdir()
    return prefix


@pytest.fixture
def whiteout_image(tmp_path):
    """Two-layer image where the top layer deletes file.txt and adds new.txt."""
    return build_flat_image(
        tmp_path / "image.tar",
        {
            "a/layer.tar": {"file.txt": "hello"},
            "b/layer.tar": {".wh.file.txt": b"", "new.txt": "world"},
        },
    )


def pytest_configure(config):
    """Configure pytest markers and settings."""
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")
