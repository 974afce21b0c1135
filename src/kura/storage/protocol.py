# SPDX-License-Identifier: MIT
"""Filesystem protocol and shared types.

Defines the interface that all storage backends must implement.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator, Iterable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class FileInfo:
    """Metadata about a stored file or directory.

    ``full_path`` is relative to the adapter's root and can be passed straight
    back to :meth:`Filesystem.stat` or :meth:`Filesystem.read`, which is what
    makes glob results addressable outside the listing that produced them.
    """

    name: str
    size_bytes: int
    modified_timestamp: float
    is_dir: bool = False
    full_path: str = ""


class Listing(list[FileInfo]):
    """Result of a directory or glob listing.

    ``truncated`` is set when an item cap stopped enumeration before the
    backend ran out of entries.  A truncated listing is not an error.
    """

    def __init__(self, items: Iterable[FileInfo] = (), *, truncated: bool = False) -> None:
        super().__init__(items)
        self.truncated = truncated


@runtime_checkable
class Filesystem(Protocol):
    """Protocol for pluggable storage backends.

    Paths are ``/``-separated and relative to the backend's root (bucket,
    base directory, share, or working directory).
    """

    requires_content_length: bool
    """Whether :meth:`write` needs the total length before the first byte is sent."""

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Release the backend connection."""
        ...

    # ------------------------------------------------------------------
    # Metadata / listing
    # ------------------------------------------------------------------

    async def stat(self, path: str) -> FileInfo:
        """Get file metadata.

        Raises:
            FileNotFoundError: If the path does not exist.
        """
        ...

    async def read_dir(self, pattern: str) -> Listing:
        """List a directory, or every entry matching a glob *pattern*."""
        ...

    # ------------------------------------------------------------------
    # Byte-level I/O
    # ------------------------------------------------------------------

    async def read(self, path: str) -> AsyncIterator[bytes]:
        """Open *path* and return its contents as a chunk stream.

        Raises:
            FileNotFoundError: If the path does not exist.
        """
        ...

    async def write(self, path: str, data: AsyncIterable[bytes]) -> FileInfo:
        """Write *data* to *path*, replacing any existing object.

        Returns:
            The post-write metadata of the destination, as reported by the backend.
        """
        ...


@runtime_checkable
class ListItemLimiter(Protocol):
    """Backends whose listings can be capped."""

    def set_max_list_items(self, max_items: int) -> None: ...
