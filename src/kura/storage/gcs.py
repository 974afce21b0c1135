# SPDX-License-Identifier: MIT
"""Google Cloud Storage backend.

Talks to the Cloud Storage JSON API over ``httpx``:

* ``objects.list`` (paginated) for listings
* ``objects.get`` for metadata, ``alt=media`` for streamed downloads
* ``uploadType=media`` uploads, which need a ``Content-Length``

Authentication is a bearer token supplied by the caller, either as a string
or as a provider called before every request.  Service-account key files are
not read here; wrap e.g. ``google.auth`` credentials in a provider that
refreshes them.  Omit the token for public buckets or a local emulator.
"""

from __future__ import annotations

import inspect
import logging
import posixpath
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from datetime import datetime
from typing import Any
from urllib.parse import quote

import anyio
import httpx

from ..config import DEFAULT_CHUNK_SIZE, get_max_list_items
from . import glob
from .protocol import FileInfo, Listing
from .streams import SizedStream, collect, content_length_of, iter_bytes

logger = logging.getLogger("kura")

DEFAULT_ENDPOINT = "https://storage.googleapis.com"

TokenProvider = Callable[[], str | None] | Callable[[], Awaitable[str | None]]


def _parse_timestamp(value: str | None) -> float:
    if not value:
        return 0.0
    return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()


class GCSFilesystem:
    """Google Cloud Storage bucket exposed as a flat key space.

    Args:
        bucket: Bucket name, optionally prefixed with ``gs://``.
        token: OAuth 2.0 access token sent as ``Authorization: Bearer``, or a
            callable returning one.  Sync callables run in a worker thread,
            coroutine functions are awaited.  Called once per request.
        endpoint: API root.  Override for emulators such as fake-gcs-server.
        client: Pre-built ``httpx.AsyncClient``; one is created when omitted.
        max_list_items: Cap on objects fetched by one listing.  Defaults to
            ``KURA_MAX_LIST_ITEMS``.
    """

    requires_content_length = True

    def __init__(
        self,
        bucket: str,
        *,
        token: str | TokenProvider | None = None,
        endpoint: str | None = None,
        client: httpx.AsyncClient | None = None,
        max_list_items: int | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.bucket = bucket.removeprefix("gs://").strip("/")
        if not self.bucket:
            raise ValueError("GCS bucket name is required")
        self._endpoint = (endpoint or DEFAULT_ENDPOINT).rstrip("/")
        self._token = token
        self._client = client or httpx.AsyncClient(timeout=300.0)
        self._max_objects = max_list_items or get_max_list_items()
        self._chunk_size = chunk_size

    def set_max_list_items(self, max_items: int) -> None:
        if max_items < 1:
            raise ValueError(f"max_items must be positive, got {max_items}")
        self._max_objects = max_items

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Close the underlying httpx client and release resources."""
        await self._client.aclose()

    async def __aenter__(self) -> GCSFilesystem:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # URL helpers
    # ------------------------------------------------------------------

    async def _headers(self) -> dict[str, str]:
        token = self._token
        if inspect.iscoroutinefunction(token):
            token = await token()
        elif callable(token):
            token = await anyio.to_thread.run_sync(token)
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    def _objects_url(self) -> str:
        return f"{self._endpoint}/storage/v1/b/{quote(self.bucket, safe='')}/o"

    def _object_url(self, path: str) -> str:
        return f"{self._objects_url()}/{quote(path, safe='')}"

    def _upload_url(self) -> str:
        return f"{self._endpoint}/upload/storage/v1/b/{quote(self.bucket, safe='')}/o"

    @staticmethod
    def _object_info(obj: dict[str, Any]) -> FileInfo:
        name = obj["name"]
        return FileInfo(
            name=posixpath.basename(name.rstrip("/")),
            size_bytes=int(obj.get("size", 0)),
            modified_timestamp=_parse_timestamp(obj.get("updated")),
            is_dir=name.endswith("/"),
            full_path=name,
        )

    async def _fetch_page(self, prefix: str, page_size: int, token: str | None) -> glob.Page:
        params: dict[str, Any] = {"prefix": prefix, "maxResults": page_size}
        if token:
            params["pageToken"] = token
        resp = await self._client.get(self._objects_url(), params=params, headers=await self._headers())
        resp.raise_for_status()
        payload = resp.json()
        items = [self._object_info(obj) for obj in payload.get("items", [])]
        next_token = payload.get("nextPageToken") or None
        logger.debug("gs://%s/%s: page of %d objects (more=%s)", self.bucket, prefix, len(items), next_token is not None)
        return glob.Page(items=items, next_token=next_token)

    # ------------------------------------------------------------------
    # Metadata / listing
    # ------------------------------------------------------------------

    async def stat(self, path: str) -> FileInfo:
        resp = await self._client.get(self._object_url(path), headers=await self._headers())
        if resp.status_code == 404:
            raise FileNotFoundError(f"Object not found: gs://{self.bucket}/{path}")
        resp.raise_for_status()
        return self._object_info(resp.json())

    async def read_dir(self, pattern: str) -> Listing:
        return await glob.paginate(self._fetch_page, pattern, max_items=self._max_objects)

    # ------------------------------------------------------------------
    # Byte-level I/O
    # ------------------------------------------------------------------

    async def read(self, path: str) -> AsyncIterator[bytes]:
        request = self._client.build_request(
            "GET", self._object_url(path), params={"alt": "media"}, headers=await self._headers()
        )
        resp = await self._client.send(request, stream=True)
        if resp.status_code == 404:
            await resp.aclose()
            raise FileNotFoundError(f"Object not found: gs://{self.bucket}/{path}")
        if resp.is_error:
            await resp.aclose()
            resp.raise_for_status()
        return self._iter_response(resp)

    async def _iter_response(self, resp: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in resp.aiter_bytes(self._chunk_size):
                yield chunk
        finally:
            with anyio.CancelScope(shield=True):
                await resp.aclose()

    async def write(self, path: str, data: AsyncIterable[bytes]) -> FileInfo:
        content_length = content_length_of(data)
        if content_length is None:
            # media uploads need the length before the body
            buf = await collect(data)
            content_length = len(buf)
            data = SizedStream(iter_bytes(buf, self._chunk_size), content_length)
            logger.debug("Buffered %d bytes for gs://%s/%s (length unknown)", content_length, self.bucket, path)

        headers = await self._headers()
        headers["Content-Type"] = "application/octet-stream"
        headers["Content-Length"] = str(content_length)
        resp = await self._client.post(
            self._upload_url(),
            params={"uploadType": "media", "name": path},
            headers=headers,
            content=data,
        )
        resp.raise_for_status()
        logger.debug("Wrote gs://%s/%s", self.bucket, path)
        return await self.stat(path)
