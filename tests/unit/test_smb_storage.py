# SPDX-License-Identifier: MIT
"""Unit tests for SMBFilesystem against a directory-backed fake smbclient."""

import errno
import os
import pathlib
import sys

import pytest

from kura.storage.protocol import Filesystem
from kura.storage.smb import SMBFilesystem, connect_smb


class FakeSMBClient:
    """Maps ``\\\\server\\share\\...`` UNC paths onto a local directory."""

    def __init__(self, root: pathlib.Path, server: str = "fileserver", share: str = "data") -> None:
        self.root = root
        self.prefix = f"\\\\{server}\\{share}"
        self.sessions_deleted: list[tuple[str, int]] = []
        self.unc_seen: list[str] = []

    def _path(self, unc: str) -> pathlib.Path:
        self.unc_seen.append(unc)
        assert unc.startswith(self.prefix), unc
        rest = unc[len(self.prefix) :].strip("\\")
        return self.root.joinpath(*rest.split("\\")) if rest else self.root

    def stat(self, path):
        return os.stat(self._path(path))

    def scandir(self, path):
        return os.scandir(self._path(path))

    def open_file(self, path, mode="r"):
        return open(self._path(path), mode)  # noqa: SIM115

    def makedirs(self, path, exist_ok=False):
        os.makedirs(self._path(path), exist_ok=exist_ok)

    def delete_session(self, server, port=445):
        self.sessions_deleted.append((server, port))


@pytest.fixture
def share_root(tmp_path):
    root = tmp_path / "share"
    root.mkdir()
    return root


@pytest.fixture
def client(share_root):
    return FakeSMBClient(share_root)


@pytest.fixture
def backend(client):
    return SMBFilesystem(client, "fileserver", "data", chunk_size=3)


async def _chunks(*parts):
    for part in parts:
        yield part


def _populate(root: pathlib.Path, files: dict[str, bytes]) -> None:
    for rel, data in files.items():
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)


@pytest.mark.unit
def test_smb_is_filesystem(backend):
    assert isinstance(backend, Filesystem)
    assert backend.requires_content_length is False


@pytest.mark.unit
def test_share_required(client):
    with pytest.raises(ValueError, match="share"):
        SMBFilesystem(client, "fileserver", "")


@pytest.mark.unit
async def test_aclose_deletes_session(client, backend):
    async with backend:
        pass
    assert client.sessions_deleted == [("fileserver", 445)]


@pytest.mark.unit
async def test_stat_uses_unc_paths(share_root, client, backend):
    _populate(share_root, {"reports/q1.csv": b"abc"})

    info = await backend.stat("reports/q1.csv")

    assert info.size_bytes == 3
    assert info.full_path == "reports/q1.csv"
    assert client.unc_seen[-1] == "\\\\fileserver\\data\\reports\\q1.csv"


@pytest.mark.unit
async def test_stat_missing(backend):
    with pytest.raises(FileNotFoundError, match="File not found"):
        await backend.stat("nope.csv")


@pytest.mark.unit
async def test_stat_maps_enoent_oserror(backend, mocker):
    mocker.patch.object(backend._client, "stat", side_effect=OSError(errno.ENOENT, "STATUS_OBJECT_NAME_NOT_FOUND"))
    with pytest.raises(FileNotFoundError):
        await backend.stat("x")


@pytest.mark.unit
async def test_path_traversal_rejected(backend):
    with pytest.raises(ValueError, match="path traversal"):
        await backend.stat("../other-share/secret")


@pytest.mark.unit
async def test_read(share_root, backend):
    _populate(share_root, {"a.bin": b"1234567"})

    stream = await backend.read("a.bin")

    assert [c async for c in stream] == [b"123", b"456", b"7"]


@pytest.mark.unit
async def test_read_dir_plain_and_glob(share_root, backend):
    _populate(share_root, {"r/a.csv": b"", "r/b.txt": b"", "r/2024/c.csv": b"", "r/2024/01/d.csv": b""})

    plain = await backend.read_dir("r")
    one_level = await backend.read_dir("r/*.csv")
    recursive = await backend.read_dir("r/**/*.csv")

    assert [f.full_path for f in plain] == ["r/2024", "r/a.csv", "r/b.txt"]
    assert [f.full_path for f in one_level] == ["r/a.csv"]
    assert sorted(f.full_path for f in recursive) == ["r/2024/01/d.csv", "r/2024/c.csv", "r/a.csv"]


@pytest.mark.unit
async def test_write_creates_parents(share_root, backend):
    info = await backend.write("out/x/y.txt", _chunks(b"hello", b" smb"))

    assert (share_root / "out/x/y.txt").read_bytes() == b"hello smb"
    assert info.size_bytes == 9
    assert info.name == "y.txt"


@pytest.mark.unit
def test_connect_smb_requires_extra(monkeypatch):
    monkeypatch.setitem(sys.modules, "smbclient", None)
    with pytest.raises(RuntimeError, match=r"kura\[smb\]"):
        connect_smb("fileserver", "data")
