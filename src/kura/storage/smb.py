# SPDX-License-Identifier: MIT
"""SMB/CIFS backend.

Uses the functional ``smbclient`` API shipped with ``smbprotocol``.  Calls are
blocking and run in worker threads.  Paths are relative to the share root and
translated to UNC form (``\\\\server\\share\\dir\\file``) internally.
"""

from __future__ import annotations

import errno
import logging
import posixpath
import stat as stat_mod
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

import anyio

from ..config import DEFAULT_CHUNK_SIZE
from . import glob
from .protocol import FileInfo, Listing
from .streams import iter_blocking

logger = logging.getLogger("kura")

DEFAULT_PORT = 445


def connect_smb(
    server: str,
    share: str,
    *,
    port: int = DEFAULT_PORT,
    username: str | None = None,
    password: str | None = None,
) -> SMBFilesystem:
    """Register an SMB session and return an :class:`SMBFilesystem` for *share*.

    Raises:
        RuntimeError: If ``smbprotocol`` is not installed.
    """
    try:
        import smbclient
    except ImportError as exc:
        raise RuntimeError(
            "SMB storage backend requires extra dependencies. Install with: pip install 'kura[smb]'"
        ) from exc
    smbclient.register_session(server, username=username, password=password, port=port)
    logger.debug("Registered SMB session for \\\\%s\\%s (port %d)", server, share, port)
    return SMBFilesystem(smbclient, server, share, port=port)


def _is_missing(error: OSError) -> bool:
    return isinstance(error, FileNotFoundError) or error.errno == errno.ENOENT


class SMBFilesystem:
    """A single SMB share.

    Args:
        client: The ``smbclient`` module, or any object exposing ``stat``,
            ``scandir``, ``open_file``, ``makedirs`` and ``delete_session``.
        server: Host name or address of the file server.
        share: Share name.
        port: TCP port of the server.
    """

    requires_content_length = False

    def __init__(
        self,
        client: Any,
        server: str,
        share: str,
        *,
        port: int = DEFAULT_PORT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if not share.strip("\\/"):
            raise ValueError("SMB share name is required")
        self._client = client
        self._server = server
        self._share = share.strip("\\/")
        self._port = port
        self._chunk_size = chunk_size

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await anyio.to_thread.run_sync(lambda: self._client.delete_session(self._server, port=self._port))

    async def __aenter__(self) -> SMBFilesystem:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Internal helpers (run in worker threads)
    # ------------------------------------------------------------------

    def _unc(self, path: str) -> str:
        parts = [p for p in path.replace("\\", "/").split("/") if p and p != "."]
        if ".." in parts:
            raise ValueError(f"Invalid path: path traversal detected: {path}")
        return "\\".join([f"\\\\{self._server}", self._share, *parts])

    @staticmethod
    def _info(path: str, st: Any) -> FileInfo:
        return FileInfo(
            name=posixpath.basename(path),
            size_bytes=st.st_size,
            modified_timestamp=float(st.st_mtime),
            is_dir=stat_mod.S_ISDIR(st.st_mode),
            full_path=path,
        )

    def _stat(self, path: str) -> FileInfo:
        try:
            st = self._client.stat(self._unc(path))
        except OSError as e:
            if _is_missing(e):
                raise FileNotFoundError(f"File not found: {path}") from e
            raise
        return self._info(path.strip("/"), st)

    def _list_dir(self, path: str) -> Listing:
        info = self._stat(path)
        if not info.is_dir:
            return Listing([info])
        directory = path.strip("/")
        entries = sorted(self._client.scandir(self._unc(directory)), key=lambda e: e.name)
        return Listing(self._info(glob.join_path(directory, e.name), e.stat()) for e in entries)

    async def _walk_entries(self, directory: str) -> list[FileInfo]:
        return await anyio.to_thread.run_sync(self._list_dir, directory, abandon_on_cancel=True)

    # ------------------------------------------------------------------
    # Metadata / listing
    # ------------------------------------------------------------------

    async def stat(self, path: str) -> FileInfo:
        return await anyio.to_thread.run_sync(self._stat, path, abandon_on_cancel=True)

    async def read_dir(self, pattern: str) -> Listing:
        glob.validate_pattern(pattern)
        pattern = glob.normalize_pattern(pattern).strip("/")
        if not glob.has_magic(pattern):
            return await anyio.to_thread.run_sync(self._list_dir, pattern, abandon_on_cancel=True)
        return await glob.walk(self._walk_entries, pattern)

    # ------------------------------------------------------------------
    # Byte-level I/O
    # ------------------------------------------------------------------

    def _open(self, path: str, mode: str) -> Any:
        try:
            return self._client.open_file(self._unc(path), mode=mode)
        except OSError as e:
            if _is_missing(e):
                raise FileNotFoundError(f"File not found: {path}") from e
            raise

    async def read(self, path: str) -> AsyncIterator[bytes]:
        f = await anyio.to_thread.run_sync(self._open, path, "rb")
        return iter_blocking(f.read, f.close, self._chunk_size)

    async def write(self, path: str, data: AsyncIterable[bytes]) -> FileInfo:
        path = path.strip("/")
        if not path:
            raise ValueError("Invalid path: cannot write to the share root")
        parent = posixpath.dirname(path)
        if parent:
            await anyio.to_thread.run_sync(lambda: self._client.makedirs(self._unc(parent), exist_ok=True))
        f = await anyio.to_thread.run_sync(self._open, path, "wb")
        try:
            async for chunk in data:
                await anyio.to_thread.run_sync(f.write, chunk)
        finally:
            with anyio.CancelScope(shield=True):
                await anyio.to_thread.run_sync(f.close)
        logger.debug("Wrote %s", self._unc(path))
        return await self.stat(path)
