# SPDX-License-Identifier: MIT
"""Exception hierarchy for kura.

Adapters raise :class:`FileNotFoundError` for missing paths and otherwise let
backend errors propagate.  The listing and ingestion layers wrap those errors
in the types below so callers always see the pattern or path involved.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .storage.protocol import FileInfo


class KuraError(Exception):
    """Base class for all kura errors."""


class PatternError(KuraError, ValueError):
    """A glob pattern is malformed."""

    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(f"invalid pattern {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason


class ListingError(KuraError):
    """Enumerating a backend failed."""

    def __init__(self, pattern: str, message: str) -> None:
        super().__init__(f"error listing {pattern!r}: {message}")
        self.pattern = pattern


class ArtifactError(KuraError):
    """Base class for ingestion failures.  ``path`` is the destination path."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(message)
        self.path = path


class SourceReadError(ArtifactError):
    """Reading the input stream failed mid-ingestion."""

    def __init__(self, path: str, cause: BaseException) -> None:
        super().__init__(path, f"error reading source for artifact({path}): {cause}")


class ArtifactWriteError(ArtifactError):
    """The destination backend rejected or did not complete the write."""

    def __init__(self, path: str, cause: BaseException | str) -> None:
        super().__init__(path, f"error writing artifact({path}): {cause}")


class ArtifactPersistError(ArtifactError):
    """The object was written but its metadata record could not be saved.

    ``info`` describes the object that now exists in storage without a
    matching record.
    """

    def __init__(self, path: str, info: FileInfo, cause: BaseException) -> None:
        super().__init__(path, f"error saving artifact({path}) metadata: {cause}")
        self.info = info
