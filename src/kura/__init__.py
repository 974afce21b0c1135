# SPDX-License-Identifier: MIT
"""kura: one async interface over local, object-store and network filesystems."""

from .artifacts import Artifact, ArtifactStore, InMemoryArtifactStore, save_artifact
from .exceptions import (
    ArtifactError,
    ArtifactPersistError,
    ArtifactWriteError,
    KuraError,
    ListingError,
    PatternError,
    SourceReadError,
)
from .storage import FileInfo, Filesystem, Listing, LocalFilesystem, get_filesystem, list_files

__all__ = [
    "Artifact",
    "ArtifactError",
    "ArtifactPersistError",
    "ArtifactStore",
    "ArtifactWriteError",
    "FileInfo",
    "Filesystem",
    "InMemoryArtifactStore",
    "KuraError",
    "ListingError",
    "Listing",
    "LocalFilesystem",
    "PatternError",
    "SourceReadError",
    "get_filesystem",
    "list_files",
    "save_artifact",
]
