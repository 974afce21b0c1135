# SPDX-License-Identifier: MIT
"""Artifact record."""

from __future__ import annotations

import re
from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

_SHA256_HEX = re.compile(r"[0-9a-f]{64}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Artifact(BaseModel, frozen=True):
    """Metadata for one stored object, produced by a successful ingestion.

    ``size`` and ``filename`` describe the object as the backend reports it
    after the write; ``checksum`` is the lowercase hex SHA-256 of the bytes
    read from the source.
    """

    path: str
    filename: str
    size: int = Field(ge=0)
    content_type: str
    checksum: str
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("checksum")
    @classmethod
    def _validate_checksum(cls, v: str) -> str:
        if not _SHA256_HEX.fullmatch(v):
            raise ValueError(f"Invalid SHA-256 checksum: {v!r}")
        return v
