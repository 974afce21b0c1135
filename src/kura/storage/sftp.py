# SPDX-License-Identifier: MIT
"""SFTP backend built on paramiko.

paramiko is blocking, so each SFTP request runs in a worker thread.  Paths
are relative to the session's working directory.
"""

from __future__ import annotations

import logging
import posixpath
import stat as stat_mod
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

import anyio
import paramiko

from ..config import DEFAULT_CHUNK_SIZE
from . import glob
from .protocol import FileInfo, Listing
from .streams import iter_blocking

logger = logging.getLogger("kura")


def connect_sftp(
    host: str,
    port: int = 22,
    username: str | None = None,
    password: str | None = None,
    *,
    timeout: float = 30.0,
) -> SFTPFilesystem:
    """Open an SSH connection and return an :class:`SFTPFilesystem` over it.

    Unknown host keys are accepted.  This call blocks; wrap it in
    :func:`anyio.to_thread.run_sync` from async code.
    """
    ssh = paramiko.SSHClient()
    ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    ssh.connect(host, port=port, username=username, password=password, timeout=timeout)
    logger.debug("Connected to sftp://%s:%d as %s", host, port, username)
    return SFTPFilesystem(ssh.open_sftp(), ssh=ssh)


def _remote(path: str) -> str:
    if path == "/":
        return path
    return path.rstrip("/") or "."


class SFTPFilesystem:
    """Remote filesystem reached over SFTP.

    Args:
        client: An open ``paramiko.SFTPClient``.
        ssh: The owning ``paramiko.SSHClient``, closed by :meth:`aclose`.
        chunk_size: Read size used by :meth:`read`.
    """

    requires_content_length = False

    def __init__(
        self,
        client: paramiko.SFTPClient,
        *,
        ssh: paramiko.SSHClient | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._client = client
        self._ssh = ssh
        self._chunk_size = chunk_size

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await anyio.to_thread.run_sync(self._client.close)
        if self._ssh is not None:
            await anyio.to_thread.run_sync(self._ssh.close)

    async def __aenter__(self) -> SFTPFilesystem:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Internal helpers (run in worker threads)
    # ------------------------------------------------------------------

    @staticmethod
    def _info(path: str, attrs: Any) -> FileInfo:
        return FileInfo(
            name=posixpath.basename(path.rstrip("/")) or path,
            size_bytes=attrs.st_size or 0,
            modified_timestamp=float(attrs.st_mtime or 0),
            is_dir=stat_mod.S_ISDIR(attrs.st_mode or 0),
            full_path=path,
        )

    def _stat(self, path: str) -> FileInfo:
        try:
            attrs = self._client.stat(_remote(path))
        except FileNotFoundError as e:
            raise FileNotFoundError(f"File not found: {path}") from e
        return self._info(path, attrs)

    def _list_dir(self, path: str) -> Listing:
        info = self._stat(path)
        if not info.is_dir:
            return Listing([info])
        entries = sorted(self._client.listdir_attr(_remote(path)), key=lambda a: a.filename)
        return Listing(self._info(glob.join_path(path, a.filename), a) for a in entries)

    def _makedirs(self, directory: str) -> None:
        current = "/" if directory.startswith("/") else ""
        for part in directory.split("/"):
            if not part:
                continue
            current = glob.join_path(current, part)
            try:
                self._client.stat(current)
            except FileNotFoundError:
                self._client.mkdir(current)

    async def _walk_entries(self, directory: str) -> list[FileInfo]:
        return await anyio.to_thread.run_sync(self._list_dir, directory, abandon_on_cancel=True)

    # ------------------------------------------------------------------
    # Metadata / listing
    # ------------------------------------------------------------------

    async def stat(self, path: str) -> FileInfo:
        return await anyio.to_thread.run_sync(self._stat, path, abandon_on_cancel=True)

    async def read_dir(self, pattern: str) -> Listing:
        glob.validate_pattern(pattern)
        pattern = glob.normalize_pattern(pattern)
        if not glob.has_magic(pattern):
            return await anyio.to_thread.run_sync(self._list_dir, pattern, abandon_on_cancel=True)
        return await glob.walk(self._walk_entries, pattern)

    # ------------------------------------------------------------------
    # Byte-level I/O
    # ------------------------------------------------------------------

    async def read(self, path: str) -> AsyncIterator[bytes]:
        try:
            f = await anyio.to_thread.run_sync(self._client.open, _remote(path), "rb")
        except FileNotFoundError as e:
            raise FileNotFoundError(f"File not found: {path}") from e
        return iter_blocking(f.read, f.close, self._chunk_size)

    async def write(self, path: str, data: AsyncIterable[bytes]) -> FileInfo:
        path = path.rstrip("/")
        if not path:
            raise ValueError("Invalid path: cannot write to a directory root")
        await anyio.to_thread.run_sync(self._makedirs, posixpath.dirname(path))
        f = await anyio.to_thread.run_sync(self._client.open, path, "wb")
        try:
            async for chunk in data:
                await anyio.to_thread.run_sync(f.write, chunk)
        finally:
            with anyio.CancelScope(shield=True):
                await anyio.to_thread.run_sync(f.close)
        logger.debug("Wrote sftp path %s", path)
        return await self.stat(path)
