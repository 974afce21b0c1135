# SPDX-License-Identifier: MIT
"""Pluggable filesystems for kura.

Every backend (local disk, S3, GCS, SFTP, SMB) implements the same async
:class:`Filesystem` protocol, and :func:`list_files` resolves glob patterns
the same way on all of them.

Usage::

    from kura.storage import LocalFilesystem, list_files

    fs = LocalFilesystem("/srv/data")
    for info in await list_files(fs, "logs/**/*.json"):
        chunks = await fs.read(info.full_path)
"""

from .factory import Connection, get_filesystem, get_filesystem_for_connection
from .glob import list_files, match
from .local import LocalFilesystem
from .protocol import FileInfo, Filesystem, ListItemLimiter, Listing
from .streams import SizedStream

__all__ = [
    "Connection",
    "FileInfo",
    "Filesystem",
    "ListItemLimiter",
    "Listing",
    "LocalFilesystem",
    "SizedStream",
    "get_filesystem",
    "get_filesystem_for_connection",
    "list_files",
    "match",
]
