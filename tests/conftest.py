# SPDX-License-Identifier: MIT
"""Shared pytest fixtures for kura tests."""

import pathlib

import pytest

from kura import config
from kura.storage import factory
from kura.storage.local import LocalFilesystem


@pytest.fixture(autouse=True)
def clear_config_cache():
    """Clear cached env lookups so each test sees its own environment."""
    config.get_max_list_items.cache_clear()
    config.get_chunk_size.cache_clear()
    factory.get_filesystem.cache_clear()
    yield
    config.get_max_list_items.cache_clear()
    config.get_chunk_size.cache_clear()
    factory.get_filesystem.cache_clear()


@pytest.fixture
def local_fs(tmp_path: pathlib.Path) -> LocalFilesystem:
    """LocalFilesystem rooted at a fresh temporary directory."""
    root = tmp_path / "root"
    root.mkdir()
    return LocalFilesystem(root)


@pytest.fixture
def make_tree(tmp_path: pathlib.Path):
    """Create files under ``tmp_path/root`` from a ``{relative_path: bytes}`` mapping."""

    def _make(files: dict[str, bytes]) -> pathlib.Path:
        root = tmp_path / "root"
        root.mkdir(exist_ok=True)
        for rel, data in files.items():
            target = root / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        return root

    return _make
