# SPDX-License-Identifier: MIT
"""Content-length resolution and source adaptation.

Ingestion accepts many kinds of sources.  :func:`resolve_content_length`
figures out, without consuming anything, whether the total length is known
up front; :func:`iter_source` turns any supported source into an async
chunk stream.
"""

from __future__ import annotations

import inspect
import io
import logging
import os
import stat
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from dataclasses import dataclass
from typing import Any

import anyio

from ..config import DEFAULT_CHUNK_SIZE

logger = logging.getLogger("kura")

Source = Any
"""Bytes-like, sync/async file-like, or sync/async iterable of byte chunks."""


@dataclass(frozen=True)
class ContentLength:
    """Total number of bytes a source will yield, if known."""

    value: int | None = None

    @property
    def known(self) -> bool:
        return self.value is not None


UNKNOWN = ContentLength()


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _non_negative(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return None


async def _from_seek(source: Any) -> int | None:
    seekable = getattr(source, "seekable", None)
    if seekable is not None and not await _maybe_await(seekable()):
        return None
    try:
        pos = await _maybe_await(source.tell())
        end = await _maybe_await(source.seek(0, os.SEEK_END))
        await _maybe_await(source.seek(pos, os.SEEK_SET))
    except (OSError, ValueError, io.UnsupportedOperation):
        return None
    if not isinstance(end, int):
        return None
    return _non_negative(end - pos)


async def _from_fileno(source: Any) -> int | None:
    try:
        fd = source.fileno()
        st = os.fstat(fd)
    except (OSError, ValueError, io.UnsupportedOperation, AttributeError):
        return None
    if not stat.S_ISREG(st.st_mode):
        return None
    tell = getattr(source, "tell", None)
    try:
        pos = await _maybe_await(tell()) if tell is not None else 0
    except (OSError, ValueError, io.UnsupportedOperation):
        return None
    return _non_negative(st.st_size - pos)


async def resolve_content_length(source: Source) -> ContentLength:
    """Work out the remaining length of *source* without reading it.

    Checked in order: bytes-like objects, an explicit ``content_length``
    attribute, :class:`io.BytesIO` buffers, a ``size`` attribute or method,
    regular files behind ``fileno()``, and finally any seekable stream
    (seek to the end and back).  Anything else is :data:`UNKNOWN`.
    """
    if isinstance(source, (bytes, bytearray, memoryview)):
        return ContentLength(memoryview(source).nbytes)

    explicit = _non_negative(getattr(source, "content_length", None))
    if explicit is not None:
        return ContentLength(explicit)

    if isinstance(source, io.BytesIO):
        return ContentLength(max(len(source.getbuffer()) - source.tell(), 0))

    size = getattr(source, "size", None)
    if callable(size):
        try:
            size = await _maybe_await(size())
        except TypeError:
            size = None
    if _non_negative(size) is not None:
        return ContentLength(size)

    if hasattr(source, "fileno"):
        length = await _from_fileno(source)
        if length is not None:
            return ContentLength(length)

    if hasattr(source, "seek") and hasattr(source, "tell"):
        length = await _from_seek(source)
        if length is not None:
            return ContentLength(length)

    return UNKNOWN


# ------------------------------------------------------------------
# Source adaptation
# ------------------------------------------------------------------


async def _iter_sync_reader(source: Any, chunk_size: int) -> AsyncIterator[bytes]:
    while chunk := await anyio.to_thread.run_sync(source.read, chunk_size, abandon_on_cancel=True):
        yield bytes(chunk)


async def _iter_async_reader(source: Any, chunk_size: int) -> AsyncIterator[bytes]:
    while chunk := await source.read(chunk_size):
        yield bytes(chunk)


_EXHAUSTED = object()


async def _iter_sync_chunks(source: Iterable[bytes]) -> AsyncIterator[bytes]:
    it = iter(source)
    while (chunk := await anyio.to_thread.run_sync(next, it, _EXHAUSTED, abandon_on_cancel=True)) is not _EXHAUSTED:
        if chunk:
            yield bytes(chunk)


async def _iter_memory(data: bytes | bytearray | memoryview, chunk_size: int) -> AsyncIterator[bytes]:
    view = memoryview(data).cast("B")
    for start in range(0, len(view), chunk_size):
        yield bytes(view[start : start + chunk_size])


def iter_source(source: Source, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Adapt *source* into an async stream of non-empty ``bytes`` chunks.

    Raises:
        TypeError: If *source* is not a supported kind of input.
    """
    if isinstance(source, (bytes, bytearray, memoryview)):
        return _iter_memory(source, chunk_size)
    read = getattr(source, "read", None)
    if read is not None:
        if inspect.iscoroutinefunction(read):
            return _iter_async_reader(source, chunk_size)
        return _iter_sync_reader(source, chunk_size)
    if isinstance(source, AsyncIterable):
        return _aiter_nonempty(source)
    if isinstance(source, Iterable) and not isinstance(source, str):
        return _iter_sync_chunks(source)
    raise TypeError(f"Unsupported content source: {type(source).__name__}")


async def _aiter_nonempty(source: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    async for chunk in source:
        if chunk:
            yield bytes(chunk)


async def close_source(source: Source) -> None:
    """Close *source* if it is closable.  Bytes-like sources are left alone."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        return
    if inspect.isgenerator(source) and source.gi_running:
        logger.debug("Source generator is still running in an abandoned worker thread; not closing it")
        return
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        await _maybe_await(aclose())
        return
    close = getattr(source, "close", None)
    if close is not None:
        await _maybe_await(close())
