# SPDX-License-Identifier: MIT
"""Local filesystem backend.

Paths are resolved under a root directory; anything that would escape the
root (``..`` segments, absolute paths, symlinks pointing outside) is rejected.
"""

from __future__ import annotations

import logging
import os
import pathlib
from collections.abc import AsyncIterable, AsyncIterator

import aiofiles
import aiofiles.os
import anyio

from ..config import DEFAULT_CHUNK_SIZE
from . import glob
from .protocol import FileInfo, Listing

logger = logging.getLogger("kura")


class LocalFilesystem:
    """Local-disk storage rooted at *root*.

    Args:
        root: Base directory.  Created on first write if missing.
        chunk_size: Read size used by :meth:`read`.
    """

    requires_content_length = False

    def __init__(self, root: str | os.PathLike[str], *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self._root = pathlib.Path(root).resolve()
        self._chunk_size = chunk_size

    @property
    def root(self) -> pathlib.Path:
        return self._root

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Nothing to release for local disk."""

    async def __aenter__(self) -> LocalFilesystem:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolve(self, path: str) -> pathlib.Path:
        """Translate a backend-relative path into a real path under the root.

        Raises:
            ValueError: If the path escapes the root.
        """
        rel = path.replace("\\", "/").strip("/")
        target = (self._root / rel).resolve()
        try:
            target.relative_to(self._root)
        except ValueError:
            raise ValueError(f"Invalid path: path traversal detected: {path}") from None
        return target

    def _relative(self, target: pathlib.Path) -> str:
        return target.relative_to(self._root).as_posix()

    def _info(self, target: pathlib.Path, st: os.stat_result) -> FileInfo:
        return FileInfo(
            name=target.name,
            size_bytes=st.st_size,
            modified_timestamp=st.st_mtime,
            is_dir=target.is_dir(),
            full_path=self._relative(target),
        )

    @staticmethod
    def _supports_native_glob(remainder: str) -> bool:
        # pathlib has no brace groups or escapes, and its "**" rules differ unless "**" is a non-final whole segment
        segments = remainder.split("/")
        if "{" in remainder or "\\" in remainder or segments[-1] == "**":
            return False
        return all(seg == "**" or "**" not in seg for seg in segments)

    def _glob(self, pattern: str) -> Listing:
        base, remainder = glob.split_pattern(pattern)
        start = self._resolve(base)
        results = Listing()
        if not start.is_dir():
            return results
        for candidate in sorted(start.glob(remainder)):
            # Security: stay within root
            try:
                candidate.resolve().relative_to(self._root)
            except ValueError:
                logger.debug("Skipping path outside root: %s", candidate)
                continue
            if not glob.match(pattern, self._relative(candidate)):
                continue
            results.append(self._info(candidate, candidate.stat()))
        return results

    async def _walk_entries(self, directory: str) -> list[FileInfo]:
        return await anyio.to_thread.run_sync(self._list_dir, directory)

    def _list_dir(self, path: str) -> Listing:
        target = self._resolve(path)
        if not target.exists():
            raise FileNotFoundError(f"No such file or directory: {path}")
        if not target.is_dir():
            return Listing([self._info(target, target.stat())])
        return Listing(self._info(child, child.stat()) for child in sorted(target.iterdir()))

    # ------------------------------------------------------------------
    # Metadata / listing
    # ------------------------------------------------------------------

    async def stat(self, path: str) -> FileInfo:
        target = self._resolve(path)
        try:
            st = await aiofiles.os.stat(target)
        except FileNotFoundError as e:
            raise FileNotFoundError(f"File not found: {path}") from e
        return self._info(target, st)

    async def read_dir(self, pattern: str) -> Listing:
        """List a directory, or run ``pathlib``'s native recursive glob.

        Glob hits are re-checked with :func:`glob.match` so results are
        identical to the walking and paginating backends.
        """
        glob.validate_pattern(pattern)
        pattern = glob.normalize_pattern(pattern).lstrip("/")
        if not glob.has_magic(pattern):
            return await anyio.to_thread.run_sync(self._list_dir, pattern)
        if self._supports_native_glob(glob.split_pattern(pattern)[1]):
            return await anyio.to_thread.run_sync(self._glob, pattern)
        return await glob.walk(self._walk_entries, pattern)

    # ------------------------------------------------------------------
    # Byte-level I/O
    # ------------------------------------------------------------------

    async def read(self, path: str) -> AsyncIterator[bytes]:
        target = self._resolve(path)
        try:
            f = await aiofiles.open(target, "rb")
        except FileNotFoundError as e:
            raise FileNotFoundError(f"File not found: {path}") from e
        return self._iter_file(f)

    async def _iter_file(self, f) -> AsyncIterator[bytes]:
        try:
            while chunk := await f.read(self._chunk_size):
                yield chunk
        finally:
            with anyio.CancelScope(shield=True):
                await f.close()

    async def write(self, path: str, data: AsyncIterable[bytes]) -> FileInfo:
        target = self._resolve(path)
        if target == self._root:
            raise ValueError(f"Invalid path: {path!r} is the root directory")
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
        async with aiofiles.open(target, "wb") as f:
            async for chunk in data:
                await f.write(chunk)
        logger.debug("Wrote %s", target)
        return await self.stat(self._relative(target))
