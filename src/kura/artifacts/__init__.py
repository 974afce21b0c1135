# SPDX-License-Identifier: MIT
"""Artifact ingestion: checksum, content type and storage in one streaming pass.

Usage::

    from kura.artifacts import InMemoryArtifactStore, save_artifact
    from kura.storage import LocalFilesystem

    store = InMemoryArtifactStore()
    async with LocalFilesystem("/srv/data") as fs:
        artifact = await save_artifact(fs, "uploads/report.pdf", open("report.pdf", "rb"), store=store)
"""

from .length import UNKNOWN, ContentLength, resolve_content_length
from .models import Artifact
from .pipeline import save_artifact
from .sniff import MAX_SNIFF_BYTES, SniffBuffer, detect_content_type
from .store import ArtifactStore, InMemoryArtifactStore

__all__ = [
    "MAX_SNIFF_BYTES",
    "UNKNOWN",
    "Artifact",
    "ArtifactStore",
    "ContentLength",
    "InMemoryArtifactStore",
    "SniffBuffer",
    "detect_content_type",
    "resolve_content_length",
    "save_artifact",
]
