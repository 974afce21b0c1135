# SPDX-License-Identifier: MIT
"""Bounded content sniffing.

Only the first :data:`MAX_SNIFF_BYTES` of a stream are kept for content-type
detection, so memory stays bounded no matter how large the artifact is.
Detection uses libmagic through ``python-magic``.
"""

from __future__ import annotations

import logging
from functools import lru_cache

import magic

logger = logging.getLogger("kura")

MAX_SNIFF_BYTES = 512 * 1024

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class SniffBuffer:
    """Append-only byte buffer that stops growing at *capacity*.

    Writes past capacity are accepted and dropped.
    """

    def __init__(self, capacity: int = MAX_SNIFF_BYTES) -> None:
        if capacity < 0:
            raise ValueError(f"capacity must be non-negative, got {capacity}")
        self.capacity = capacity
        self._buf = bytearray()

    def write(self, data: bytes) -> int:
        """Append as much of *data* as fits; return the number of bytes kept."""
        room = self.capacity - len(self._buf)
        if room <= 0:
            return 0
        kept = data[:room]
        self._buf.extend(kept)
        return len(kept)

    @property
    def full(self) -> bool:
        return len(self._buf) >= self.capacity

    def getvalue(self) -> bytes:
        return bytes(self._buf)

    def __len__(self) -> int:
        return len(self._buf)


@lru_cache(maxsize=1)
def _detector() -> magic.Magic:
    return magic.Magic(mime=True, mime_encoding=True)


def detect_content_type(data: bytes) -> str:
    """Guess a MIME type (with charset for text) from leading bytes.

    Blocking; call through a worker thread from async code.  An empty sample
    yields ``application/octet-stream``.
    """
    if not data:
        return DEFAULT_CONTENT_TYPE
    detected = _detector().from_buffer(data[:MAX_SNIFF_BYTES])
    if not detected:
        logger.debug("libmagic returned no type for %d bytes", len(data))
        return DEFAULT_CONTENT_TYPE
    return detected
