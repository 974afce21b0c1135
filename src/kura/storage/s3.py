# SPDX-License-Identifier: MIT
"""Amazon S3 (and S3-compatible) storage backend.

boto3 is synchronous, so every SDK call runs in a worker thread via
:func:`anyio.to_thread.run_sync`.  Streams with a declared length are piped
through ``upload_fileobj``, which reads a non-seekable body part by part;
anything else is buffered and sent with ``PutObject``, which needs a
``Content-Length``.
"""

from __future__ import annotations

import functools
import logging
import posixpath
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

import anyio
import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from botocore.exceptions import ClientError

from ..config import DEFAULT_CHUNK_SIZE, get_max_list_items
from . import glob
from .protocol import FileInfo, Listing
from .streams import BlockingReader, collect, content_length_of, iter_blocking

logger = logging.getLogger("kura")

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}

# Parts are read on the calling worker thread, where BlockingReader can reach the event loop
_STREAM_UPLOAD_CONFIG = TransferConfig(use_threads=False)


def connect_s3(
    bucket: str,
    *,
    endpoint: str | None = None,
    region: str | None = None,
    access_key: str | None = None,
    secret_key: str | None = None,
    session_token: str | None = None,
    use_path_style: bool = False,
) -> S3Filesystem:
    """Build an :class:`S3Filesystem` with its own boto3 client.

    Credentials left as ``None`` fall back to boto3's default chain
    (environment, shared config, instance profile).
    """
    config = Config(s3={"addressing_style": "path"}) if use_path_style else None
    client = boto3.client(
        "s3",
        endpoint_url=endpoint or None,
        region_name=region or None,
        aws_access_key_id=access_key or None,
        aws_secret_access_key=secret_key or None,
        aws_session_token=session_token or None,
        config=config,
    )
    return S3Filesystem(bucket, client=client)


def _is_not_found(error: ClientError) -> bool:
    return str(error.response.get("Error", {}).get("Code", "")) in _NOT_FOUND_CODES


class S3Filesystem:
    """S3 bucket exposed as a flat key space.

    Args:
        bucket: Bucket name, optionally prefixed with ``s3://``.
        client: A boto3 S3 client.
        max_list_items: Cap on keys fetched by one listing.  Defaults to
            ``KURA_MAX_LIST_ITEMS``.
    """

    requires_content_length = True

    def __init__(
        self,
        bucket: str,
        *,
        client: Any,
        max_list_items: int | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.bucket = bucket.removeprefix("s3://").strip("/")
        self._client = client
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
        """boto3 clients hold no resources that need explicit release."""

    async def __aenter__(self) -> S3Filesystem:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _call(self, method: str, **kwargs: Any) -> Any:
        fn = functools.partial(getattr(self._client, method), Bucket=self.bucket, **kwargs)
        return await anyio.to_thread.run_sync(fn, abandon_on_cancel=True)

    @staticmethod
    def _object_info(obj: dict[str, Any]) -> FileInfo:
        key = obj["Key"]
        modified = obj.get("LastModified")
        return FileInfo(
            name=posixpath.basename(key.rstrip("/")),
            size_bytes=int(obj.get("Size", 0)),
            modified_timestamp=modified.timestamp() if modified else 0.0,
            is_dir=key.endswith("/"),
            full_path=key,
        )

    async def _fetch_page(self, prefix: str, page_size: int, token: str | None) -> glob.Page:
        kwargs: dict[str, Any] = {"Prefix": prefix, "MaxKeys": page_size}
        if token:
            kwargs["ContinuationToken"] = token
        resp = await self._call("list_objects_v2", **kwargs)
        items = [self._object_info(obj) for obj in resp.get("Contents", [])]
        next_token = resp.get("NextContinuationToken") if resp.get("IsTruncated") else None
        logger.debug("s3://%s/%s: page of %d keys (more=%s)", self.bucket, prefix, len(items), next_token is not None)
        return glob.Page(items=items, next_token=next_token)

    # ------------------------------------------------------------------
    # Metadata / listing
    # ------------------------------------------------------------------

    async def stat(self, path: str) -> FileInfo:
        try:
            head = await self._call("head_object", Key=path)
        except ClientError as e:
            if _is_not_found(e):
                raise FileNotFoundError(f"Object not found: s3://{self.bucket}/{path}") from e
            raise
        modified = head.get("LastModified")
        return FileInfo(
            name=posixpath.basename(path),
            size_bytes=int(head.get("ContentLength", 0)),
            modified_timestamp=modified.timestamp() if modified else 0.0,
            is_dir=path.endswith("/"),
            full_path=path,
        )

    async def read_dir(self, pattern: str) -> Listing:
        """List keys under the pattern's literal prefix, filtering by glob.

        Stops after ``max_list_items`` keys; the result is then marked
        ``truncated``.
        """
        return await glob.paginate(self._fetch_page, pattern, max_items=self._max_objects)

    # ------------------------------------------------------------------
    # Byte-level I/O
    # ------------------------------------------------------------------

    async def read(self, path: str) -> AsyncIterator[bytes]:
        try:
            resp = await self._call("get_object", Key=path)
        except ClientError as e:
            if _is_not_found(e):
                raise FileNotFoundError(f"Object not found: s3://{self.bucket}/{path}") from e
            raise
        body = resp["Body"]
        return iter_blocking(body.read, body.close, self._chunk_size)

    async def write(self, path: str, data: AsyncIterable[bytes]) -> FileInfo:
        content_length = content_length_of(data)
        if content_length is not None:
            upload = functools.partial(
                self._client.upload_fileobj,
                BlockingReader(data),
                self.bucket,
                path,
                Config=_STREAM_UPLOAD_CONFIG,
            )
            await anyio.to_thread.run_sync(upload, abandon_on_cancel=True)
        else:
            # PutObject requires Content-Length up front
            body = await collect(data)
            content_length = len(body)
            logger.debug("Buffered %d bytes for s3://%s/%s (length unknown)", content_length, self.bucket, path)
            await self._call("put_object", Key=path, Body=body, ContentLength=content_length)

        logger.debug("Wrote s3://%s/%s (%d bytes)", self.bucket, path, content_length)
        return await self.stat(path)
