# SPDX-License-Identifier: MIT
"""Artifact metadata persistence."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import anyio

from .models import Artifact


@runtime_checkable
class ArtifactStore(Protocol):
    """Where artifact records are persisted.

    ``create`` is called exactly once per successful ingestion and must
    either store the whole record or raise.
    """

    async def create(self, artifact: Artifact) -> None: ...


class InMemoryArtifactStore:
    """Process-local :class:`ArtifactStore`, mainly for tests and scripts."""

    def __init__(self) -> None:
        self.artifacts: list[Artifact] = []
        self._lock = anyio.Lock()

    async def create(self, artifact: Artifact) -> None:
        async with self._lock:
            self.artifacts.append(artifact)

    def get(self, path: str) -> Artifact | None:
        """Most recent record for *path*, if any."""
        for artifact in reversed(self.artifacts):
            if artifact.path == path:
                return artifact
        return None

    def find_by_checksum(self, checksum: str) -> list[Artifact]:
        return [a for a in self.artifacts if a.checksum == checksum]
