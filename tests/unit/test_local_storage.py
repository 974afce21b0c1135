# SPDX-License-Identifier: MIT
"""Unit tests for LocalFilesystem."""

import pytest

from kura.storage.glob import list_files
from kura.storage.local import LocalFilesystem
from kura.storage.protocol import FileInfo, Filesystem, Listing


async def _read_all(fs, path):
    stream = await fs.read(path)
    return b"".join([chunk async for chunk in stream])


async def _chunks(*parts):
    for part in parts:
        yield part


# ------------------------------------------------------------------
# Protocol conformance
# ------------------------------------------------------------------


def test_local_filesystem_is_filesystem(tmp_path):
    """LocalFilesystem satisfies the Filesystem runtime protocol."""
    assert isinstance(LocalFilesystem(tmp_path), Filesystem)


@pytest.mark.unit
def test_local_does_not_require_content_length(local_fs):
    assert local_fs.requires_content_length is False


# ------------------------------------------------------------------
# read
# ------------------------------------------------------------------


@pytest.mark.unit
async def test_read_existing_file(make_tree):
    root = make_tree({"refs/hero.png": b"PNG_BYTES"})
    fs = LocalFilesystem(root)

    assert await _read_all(fs, "refs/hero.png") == b"PNG_BYTES"


@pytest.mark.unit
async def test_read_in_chunks(make_tree):
    root = make_tree({"big.bin": b"x" * 10})
    fs = LocalFilesystem(root, chunk_size=4)

    stream = await fs.read("big.bin")
    chunks = [chunk async for chunk in stream]

    assert chunks == [b"xxxx", b"xxxx", b"xx"]


@pytest.mark.unit
async def test_read_nonexistent_file(local_fs):
    with pytest.raises(FileNotFoundError, match="File not found"):
        await local_fs.read("nope.png")


@pytest.mark.unit
async def test_read_path_traversal(local_fs):
    with pytest.raises(ValueError, match="path traversal"):
        await local_fs.read("../../etc/passwd")


@pytest.mark.unit
async def test_read_rejects_symlink_outside_root(tmp_path, local_fs):
    outside = tmp_path / "secret.txt"
    outside.write_bytes(b"SECRET")
    (local_fs.root / "link.txt").symlink_to(outside)

    with pytest.raises(ValueError, match="path traversal"):
        await local_fs.read("link.txt")


# ------------------------------------------------------------------
# write
# ------------------------------------------------------------------


@pytest.mark.unit
async def test_write_creates_file_and_parents(local_fs):
    info = await local_fs.write("a/b/out.bin", _chunks(b"chunk1", b"chunk2", b"chunk3"))

    assert (local_fs.root / "a/b/out.bin").read_bytes() == b"chunk1chunk2chunk3"
    assert info.name == "out.bin"
    assert info.full_path == "a/b/out.bin"
    assert info.size_bytes == 18
    assert info.is_dir is False


@pytest.mark.unit
async def test_write_replaces_existing(make_tree):
    root = make_tree({"f.txt": b"old contents"})
    fs = LocalFilesystem(root)

    info = await fs.write("f.txt", _chunks(b"new"))

    assert (root / "f.txt").read_bytes() == b"new"
    assert info.size_bytes == 3


@pytest.mark.unit
async def test_write_path_traversal(local_fs):
    with pytest.raises(ValueError, match="path traversal"):
        await local_fs.write("../escape.bin", _chunks(b"BAD"))


@pytest.mark.unit
async def test_write_to_root_rejected(local_fs):
    with pytest.raises(ValueError, match="root"):
        await local_fs.write("", _chunks(b"BAD"))


# ------------------------------------------------------------------
# stat
# ------------------------------------------------------------------


@pytest.mark.unit
async def test_stat(make_tree):
    root = make_tree({"img/img.png": b"12345"})
    fs = LocalFilesystem(root)

    info = await fs.stat("img/img.png")

    assert info.name == "img.png"
    assert info.size_bytes == 5
    assert info.modified_timestamp > 0
    assert info.full_path == "img/img.png"


@pytest.mark.unit
async def test_stat_directory(make_tree):
    root = make_tree({"img/img.png": b"12345"})
    fs = LocalFilesystem(root)

    info = await fs.stat("img")

    assert info.is_dir is True


@pytest.mark.unit
async def test_stat_nonexistent(local_fs):
    with pytest.raises(FileNotFoundError, match="File not found"):
        await local_fs.stat("nope.png")


# ------------------------------------------------------------------
# read_dir
# ------------------------------------------------------------------


@pytest.mark.unit
async def test_read_dir_plain_directory(make_tree):
    root = make_tree({"refs/a.png": b"A", "refs/b.jpg": b"BB", "refs/sub/c.txt": b"CCC"})
    fs = LocalFilesystem(root)

    files = await fs.read_dir("refs")

    assert isinstance(files, Listing)
    assert {f.name for f in files} == {"a.png", "b.jpg", "sub"}
    assert {f.full_path for f in files} == {"refs/a.png", "refs/b.jpg", "refs/sub"}
    assert all(isinstance(f, FileInfo) for f in files)


@pytest.mark.unit
async def test_read_dir_root(make_tree):
    root = make_tree({"a.txt": b"A", "d/b.txt": b"B"})
    fs = LocalFilesystem(root)

    files = await fs.read_dir(".")

    assert {f.full_path for f in files} == {"a.txt", "d"}


@pytest.mark.unit
async def test_read_dir_missing_directory(local_fs):
    with pytest.raises(FileNotFoundError):
        await local_fs.read_dir("missing")


@pytest.mark.unit
async def test_read_dir_single_level_glob(make_tree):
    root = make_tree({"refs/cat_01.png": b"A", "refs/cat_02.png": b"B", "refs/dog_01.png": b"C"})
    fs = LocalFilesystem(root)

    files = await fs.read_dir("refs/cat*")

    assert {f.name for f in files} == {"cat_01.png", "cat_02.png"}


@pytest.mark.unit
async def test_read_dir_recursive_glob(make_tree):
    root = make_tree(
        {
            "logs/a.json": b"{}",
            "logs/2024/b.json": b"{}",
            "logs/2024/01/c.json": b"{}",
            "logs/2024/notes.txt": b"",
            "other/d.json": b"{}",
        }
    )
    fs = LocalFilesystem(root)

    files = await fs.read_dir("logs/**/*.json")

    assert sorted(f.full_path for f in files) == ["logs/2024/01/c.json", "logs/2024/b.json", "logs/a.json"]


@pytest.mark.unit
async def test_read_dir_brace_glob_walks(make_tree):
    root = make_tree({"conf/a.json": b"", "conf/b.yaml": b"", "conf/nested/c.yaml": b"", "conf/d.toml": b""})
    fs = LocalFilesystem(root)

    files = await fs.read_dir("conf/**/*.{json,yaml}")

    assert sorted(f.full_path for f in files) == ["conf/a.json", "conf/b.yaml", "conf/nested/c.yaml"]


@pytest.mark.unit
@pytest.mark.parametrize(
    ("pattern", "expected"),
    [
        ("/logs/**/*.json", ["logs/a/b.json", "logs/d/b.json"]),
        ("/logs/*/b.json", ["logs/a/b.json", "logs/d/b.json"]),
        ("/logs/{a,d}/*.json", ["logs/a/b.json", "logs/d/b.json"]),
        ("/logs/a", ["logs/a/b.json", "logs/a/c.txt"]),
    ],
)
async def test_read_dir_leading_slash_is_root_relative(make_tree, pattern, expected):
    root = make_tree({"logs/a/b.json": b"{}", "logs/a/c.txt": b"", "logs/d/b.json": b"{}"})
    fs = LocalFilesystem(root)

    files = await fs.read_dir(pattern)

    assert sorted(f.full_path for f in files) == expected


@pytest.mark.unit
async def test_read_dir_trailing_double_star(make_tree):
    root = make_tree({"logs/a.json": b"", "logs/x/b.json": b"", "other/c.json": b""})
    fs = LocalFilesystem(root)

    files = await fs.read_dir("logs/**")

    assert {f.full_path for f in files} == {"logs/a.json", "logs/x", "logs/x/b.json"}


@pytest.mark.unit
async def test_read_dir_glob_missing_base_is_empty(local_fs):
    assert await local_fs.read_dir("missing/*.json") == []


@pytest.mark.unit
async def test_glob_results_are_readable(make_tree):
    root = make_tree({"users/eu/u1.json": b'{"id": 1}', "users/us/u2.json": b'{"id": 2}'})
    fs = LocalFilesystem(root)

    listing = await list_files(fs, "users/*/*.json")

    contents = {f.full_path: await _read_all(fs, f.full_path) for f in listing}
    assert contents == {"users/eu/u1.json": b'{"id": 1}', "users/us/u2.json": b'{"id": 2}'}


# ------------------------------------------------------------------
# Lifecycle
# ------------------------------------------------------------------


@pytest.mark.unit
async def test_context_manager(tmp_path):
    async with LocalFilesystem(tmp_path) as fs:
        assert fs.root == tmp_path.resolve()
