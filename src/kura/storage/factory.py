# SPDX-License-Identifier: MIT
"""Filesystem factory.

Maps a :class:`Connection` description onto the matching adapter, and builds
a process-wide default from ``KURA_CONNECTION_*`` environment variables.
"""

from __future__ import annotations

import atexit
import logging
from functools import lru_cache
from typing import Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

from ..config import get_connection_settings
from .local import LocalFilesystem
from .protocol import Filesystem

logger = logging.getLogger("kura")

ConnectionType = Literal["folder", "s3", "gcs", "sftp", "smb"]

_TRUE_VALUES = {"1", "true", "yes", "on"}


class Connection(BaseModel, frozen=True):
    """Where a filesystem lives and how to authenticate to it.

    ``properties`` holds the type-specific settings:

    ============  =========================================================
    ``folder``    ``path``
    ``s3``        ``bucket``, ``region``, ``usePathStyle``, ``sessionToken``
    ``gcs``       ``bucket``
    ``sftp``      ``port``
    ``smb``       ``share``, ``port``
    ============  =========================================================

    For S3 ``username``/``password`` are the access key pair; for GCS
    ``password`` is the bearer token.
    """

    type: ConnectionType
    url: str = ""
    username: str | None = None
    password: str | None = None
    properties: dict[str, str] = Field(default_factory=dict)

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, v: object) -> object:
        return v.strip().lower() if isinstance(v, str) else v

    def require(self, key: str) -> str:
        value = self.properties.get(key, "").strip()
        if not value:
            raise ValueError(f"{self.type} connection requires the {key!r} property")
        return value


def _port(conn: Connection, default: int) -> int:
    raw = conn.properties.get("port", "").strip()
    if not raw:
        return urlparse(conn.url if "//" in conn.url else f"//{conn.url}").port or default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"Invalid port for {conn.type} connection: {raw!r}") from e


def _host(conn: Connection) -> str:
    host = urlparse(conn.url if "//" in conn.url else f"//{conn.url}").hostname
    if not host:
        raise ValueError(f"{conn.type} connection requires a host in 'url', got {conn.url!r}")
    return host


def get_filesystem_for_connection(conn: Connection) -> Filesystem:
    """Build the adapter described by *conn*.

    SFTP and SMB connect eagerly, so this call blocks on the network for
    those types.

    Raises:
        RuntimeError: If the backend's optional dependencies are missing.
        ValueError: If a required setting is missing.
    """
    if conn.type == "folder":
        return LocalFilesystem(conn.properties.get("path") or conn.url.removeprefix("file://") or ".")

    if conn.type == "s3":
        try:
            from .s3 import connect_s3
        except ImportError as exc:
            raise RuntimeError(
                "S3 storage backend requires extra dependencies. Install with: pip install 'kura[s3]'"
            ) from exc
        return connect_s3(
            conn.require("bucket"),
            endpoint=conn.url or None,
            region=conn.properties.get("region"),
            access_key=conn.username,
            secret_key=conn.password,
            session_token=conn.properties.get("sessionToken"),
            use_path_style=conn.properties.get("usePathStyle", "").strip().lower() in _TRUE_VALUES,
        )

    if conn.type == "gcs":
        from .gcs import GCSFilesystem

        return GCSFilesystem(conn.require("bucket"), token=conn.password, endpoint=conn.url or None)

    if conn.type == "sftp":
        try:
            from .sftp import connect_sftp
        except ImportError as exc:
            raise RuntimeError(
                "SFTP storage backend requires extra dependencies. Install with: pip install 'kura[sftp]'"
            ) from exc
        return connect_sftp(_host(conn), _port(conn, 22), conn.username, conn.password)

    if conn.type == "smb":
        from .smb import DEFAULT_PORT, connect_smb

        return connect_smb(
            _host(conn),
            conn.require("share"),
            port=_port(conn, DEFAULT_PORT),
            username=conn.username,
            password=conn.password,
        )

    raise RuntimeError(f"Unknown connection type: {conn.type!r}")


@lru_cache(maxsize=1)
def get_filesystem() -> Filesystem:
    """Return the configured :class:`Filesystem` (cached singleton).

    Remote adapters are closed automatically at process exit via
    :func:`atexit`.

    Configuration
    -------------
    ``KURA_CONNECTION_TYPE``
        ``"folder"`` (default), ``"s3"``, ``"gcs"``, ``"sftp"`` or ``"smb"``.
    ``KURA_CONNECTION_URL`` / ``KURA_CONNECTION_USERNAME`` / ``KURA_CONNECTION_PASSWORD``
        Endpoint and credentials.
    ``KURA_CONNECTION_PROPERTIES``
        JSON object of type-specific settings (see :class:`Connection`).
    """
    conn = Connection(**get_connection_settings())
    fs = get_filesystem_for_connection(conn)
    if conn.type != "folder":
        _register_cleanup(fs)
    logger.info("Using %s filesystem (%s)", conn.type, type(fs).__name__)
    return fs


def _register_cleanup(fs: Filesystem) -> None:
    """Register an atexit handler that closes the adapter's connection."""

    def _cleanup() -> None:
        import asyncio

        try:
            loop = asyncio.get_running_loop()
            loop.create_task(fs.aclose())
        except RuntimeError:
            # No running loop
            asyncio.run(fs.aclose())
        logger.debug("Filesystem %s closed", type(fs).__name__)

    atexit.register(_cleanup)
