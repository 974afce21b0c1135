# SPDX-License-Identifier: MIT
"""Byte-stream helpers shared by the backends and the ingestion pipeline."""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator, Callable
from typing import Any

import anyio
import anyio.from_thread

from ..config import DEFAULT_CHUNK_SIZE


class SizedStream:
    """An async chunk stream that knows its total length up front.

    Backends that must declare a length before sending (S3, GCS) check for
    ``content_length`` via :func:`content_length_of` and stream directly
    instead of buffering.
    """

    def __init__(self, chunks: AsyncIterable[bytes], content_length: int) -> None:
        if content_length < 0:
            raise ValueError(f"content_length must be non-negative, got {content_length}")
        self._chunks = chunks
        self.content_length = content_length

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._chunks.__aiter__()


def content_length_of(data: object) -> int | None:
    """Return the declared length of *data*, or ``None`` if it is unknown."""
    length = getattr(data, "content_length", None)
    if isinstance(length, int) and length >= 0:
        return length
    return None


async def iter_bytes(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Yield *data* in slices of at most *chunk_size* bytes."""
    view = memoryview(data)
    for start in range(0, len(view), chunk_size):
        yield bytes(view[start : start + chunk_size])


async def collect(chunks: AsyncIterable[bytes]) -> bytes:
    """Drain an async chunk stream into a single ``bytes`` object."""
    buf = bytearray()
    async for chunk in chunks:
        buf.extend(chunk)
    return bytes(buf)


async def iter_blocking(read: Callable[[int], bytes], close: Callable[[], Any], chunk_size: int) -> AsyncIterator[bytes]:
    """Stream a blocking file handle, running every read in a worker thread.

    The handle is closed when the stream is exhausted or closed early.
    """
    try:
        while True:
            chunk = await anyio.to_thread.run_sync(read, chunk_size, abandon_on_cancel=True)
            if not chunk:
                return
            yield chunk
    finally:
        with anyio.CancelScope(shield=True):
            await anyio.to_thread.run_sync(close)


class BlockingReader:
    """Blocking file-like view of an async chunk stream.

    Meant for SDKs that want a ``read()``-able body (boto3) and are invoked
    through :func:`anyio.to_thread.run_sync`.  Each ``read`` hops back onto
    the event loop to pull the next chunk, so bytes are consumed in order and
    never fully materialised.
    """

    def __init__(self, chunks: AsyncIterable[bytes]) -> None:
        self._iterator = chunks.__aiter__()
        self._pending = b""
        self._eof = False

    async def _next_chunk(self) -> bytes | None:
        try:
            return await self._iterator.__anext__()
        except StopAsyncIteration:
            return None

    def _fill(self, size: int) -> None:
        while not self._eof and (size < 0 or len(self._pending) < size):
            chunk = anyio.from_thread.run(self._next_chunk)
            if chunk is None:
                self._eof = True
            else:
                self._pending += chunk

    def read(self, size: int = -1) -> bytes:
        if size is None:
            size = -1
        self._fill(size)
        if size < 0:
            out, self._pending = self._pending, b""
        else:
            out, self._pending = self._pending[:size], self._pending[size:]
        return out

    def readable(self) -> bool:
        return True
