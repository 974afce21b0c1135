# SPDX-License-Identifier: MIT
"""Streaming artifact ingestion.

:func:`save_artifact` moves bytes from a source to a filesystem in a single
pass.  Every chunk is fed, in order, to a SHA-256 digest, to a bounded sniff
buffer for content-type detection, and to the destination's ``write``.
The artifact record is built only after the write has been confirmed by a
stat of the destination, and persisted exactly once.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import AsyncIterator

import anyio

from ..config import get_chunk_size
from ..exceptions import ArtifactPersistError, ArtifactWriteError, SourceReadError
from ..storage.protocol import FileInfo, Filesystem
from ..storage.streams import SizedStream, collect, iter_bytes
from .length import ContentLength, Source, close_source, iter_source, resolve_content_length
from .models import Artifact
from .sniff import SniffBuffer, detect_content_type
from .store import ArtifactStore

logger = logging.getLogger("kura")


class _FanOut:
    """Async chunk stream that tees every chunk into a digest and a sniff buffer.

    Errors raised by the source are wrapped in :class:`SourceReadError` and
    remembered, so they can be told apart from destination failures.
    """

    def __init__(self, chunks: AsyncIterator[bytes], path: str) -> None:
        self._chunks = chunks
        self._path = path
        self.digest = hashlib.sha256()
        self.sniff = SniffBuffer()
        self.bytes_read = 0
        self.exhausted = False
        self.source_error: SourceReadError | None = None

    def __aiter__(self) -> _FanOut:
        return self

    async def __anext__(self) -> bytes:
        try:
            chunk = await self._chunks.__anext__()
        except StopAsyncIteration:
            self.exhausted = True
            raise
        except Exception as e:
            self.source_error = SourceReadError(self._path, e)
            raise self.source_error from e
        self.digest.update(chunk)
        self.sniff.write(chunk)
        self.bytes_read += len(chunk)
        return chunk


async def _write(fs: Filesystem, path: str, fanout: _FanOut, length: ContentLength, chunk_size: int) -> FileInfo:
    if length.known:
        return await fs.write(path, SizedStream(fanout, length.value))
    if fs.requires_content_length:
        buf = await collect(fanout)
        logger.debug("Buffered %d bytes for %s (length unknown)", len(buf), path)
        return await fs.write(path, SizedStream(iter_bytes(buf, chunk_size), len(buf)))
    return await fs.write(path, fanout)


async def save_artifact(
    fs: Filesystem,
    path: str,
    content: Source,
    *,
    content_type: str | None = None,
    content_length: int | None = None,
    store: ArtifactStore | None = None,
    timeout: float | None = None,
    chunk_size: int | None = None,
) -> Artifact:
    """Write *content* to *path* on *fs* and return its artifact record.

    Args:
        fs: Destination filesystem.
        path: Destination path relative to the filesystem root.
        content: Bytes-like object, sync or async file-like object, or a sync
            or async iterable of byte chunks.  It is closed before returning.
        content_type: MIME type to record.  Detected from the first 512 KiB
            when omitted.
        content_length: Number of bytes *content* will yield.  Resolved from
            the source when omitted; when still unknown and the backend needs
            a length up front, the stream is buffered in memory first.
        store: Where to persist the record.  Called once, after the write.
        timeout: Seconds before the whole ingestion is abandoned.
        chunk_size: Read size for file-like sources.  Defaults to ``KURA_CHUNK_SIZE``.

    Raises:
        SourceReadError: Reading *content* failed.
        ArtifactWriteError: The destination write failed or stopped early.
        ArtifactPersistError: The object was written but *store* rejected the
            record.  The written object is left in place.
        TimeoutError: *timeout* elapsed.
    """
    try:
        with anyio.fail_after(timeout):
            return await _ingest(fs, path, content, content_type, content_length, store, chunk_size or get_chunk_size())
    finally:
        with anyio.CancelScope(shield=True):
            await close_source(content)


async def _ingest(
    fs: Filesystem,
    path: str,
    content: Source,
    content_type: str | None,
    content_length: int | None,
    store: ArtifactStore | None,
    chunk_size: int,
) -> Artifact:
    if content_length is not None:
        if content_length < 0:
            raise ValueError(f"content_length must be non-negative, got {content_length}")
        length = ContentLength(content_length)
    else:
        length = await resolve_content_length(content)

    fanout = _FanOut(iter_source(content, chunk_size), path)
    try:
        info = await _write(fs, path, fanout, length, chunk_size)
    except SourceReadError:
        raise
    except Exception as e:
        if fanout.source_error is not None:
            raise fanout.source_error from e
        raise ArtifactWriteError(path, e) from e

    if not fanout.exhausted:
        raise ArtifactWriteError(path, f"destination stopped after {fanout.bytes_read} bytes")
    if length.known and length.value != fanout.bytes_read:
        logger.warning(
            "Declared length %d for %s does not match %d bytes read", length.value, path, fanout.bytes_read
        )

    checksum = fanout.digest.hexdigest()
    if content_type is None:
        content_type = await anyio.to_thread.run_sync(detect_content_type, fanout.sniff.getvalue())

    artifact = Artifact(
        path=path,
        filename=info.name,
        size=info.size_bytes,
        content_type=content_type,
        checksum=checksum,
    )

    if store is not None:
        try:
            await store.create(artifact)
        except Exception as e:
            logger.warning("Stored %s but failed to save its metadata; object left in place", path)
            raise ArtifactPersistError(path, info, e) from e

    logger.info("Saved artifact %s (%d bytes, %s, sha256=%s)", path, artifact.size, content_type, checksum)
    return artifact
