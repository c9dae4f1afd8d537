"""Durable object storage: streamed writes, direct saves and signed URLs.

Supabase Storage backs the production implementation. The synchronous
Supabase client runs in worker threads; streamed uploads go straight to the
Storage REST endpoint through ``httpx`` so that bytes flow as they arrive
instead of being collected in memory first.

A stream that fails part way leaves whatever the backend already accepted in
place. Readers must treat an object written by a failed stream as possibly
partial; nothing here cleans it up.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
import re
from datetime import timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Literal, Optional, Protocol
from urllib.parse import quote

import httpx
from supabase import Client, create_client

from ..errors import StorageError

logger = logging.getLogger(__name__)

SignedUrlAction = Literal["read", "write"]
ChunkConsumer = Callable[[AsyncIterator[bytes]], Awaitable[None]]

_END = object()


class WriteStream:
    """Bounded pipe from a producer to an upload task.

    ``write`` suspends while ``high_water_mark`` chunks are waiting, which is
    the drain signal: the producer only resumes once the consumer has taken a
    chunk. If the consumer dies, pending and later writes fail with
    ``StorageError`` instead of blocking forever.
    """

    def __init__(self, path: str, consumer: ChunkConsumer, *, high_water_mark: int = 16) -> None:
        if high_water_mark < 1:
            raise ValueError("high_water_mark must be at least 1")
        self.path = path
        self.bytes_written = 0
        self.drain_waits = 0
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=high_water_mark)
        self._ended = False
        self._destroyed = False
        self._task = asyncio.create_task(consumer(self._chunks()))

    async def _chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._queue.get()
            if chunk is _END:
                return
            yield chunk

    @property
    def closed(self) -> bool:
        return self._ended or self._destroyed

    async def write(self, chunk: bytes) -> None:
        if self.closed:
            raise StorageError(f"write after close on {self.path}")
        if not chunk:
            return
        if self._queue.full():
            self.drain_waits += 1
        await self._put(chunk)
        self.bytes_written += len(chunk)

    async def end(self) -> None:
        """Flush remaining chunks and wait for the backend to acknowledge."""

        if self._destroyed:
            raise StorageError(f"write stream for {self.path} was destroyed")
        if not self._ended:
            self._ended = True
            await self._put(_END)
        try:
            await self._task
        except asyncio.CancelledError:
            raise
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Error writing {self.path}: {exc}") from exc

    async def destroy(self, error: Optional[BaseException] = None) -> None:
        """Abort the upload. Bytes already sent stay wherever the backend put them."""

        if self._destroyed:
            return
        self._destroyed = True
        if error is not None:
            logger.warning("Destroying write stream for %s: %s", self.path, error)
        if not self._task.done():
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception as exc:  # already failing; the caller reports the original error
            logger.debug("Write stream consumer for %s ended with %s", self.path, exc)

    async def _put(self, item: Any) -> None:
        put = asyncio.ensure_future(self._queue.put(item))
        try:
            await asyncio.wait({put, self._task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            put.cancel()
            raise
        if not put.done():
            put.cancel()
        self._raise_if_consumer_stopped()

    def _raise_if_consumer_stopped(self) -> None:
        if not self._task.done():
            return
        if self._task.cancelled():
            raise StorageError(f"write stream for {self.path} was cancelled")
        exc = self._task.exception()
        if exc is not None:
            if isinstance(exc, StorageError):
                raise exc
            raise StorageError(f"Error writing {self.path}: {exc}") from exc
        if not self._ended:
            raise StorageError(f"upload for {self.path} finished before the stream ended")


class ObjectStore(Protocol):
    """Path-addressed blob storage used by the pipeline."""

    async def exists(self, path: str) -> bool:
        ...

    async def open_write_stream(self, path: str, *, content_type: str, cache_control: str) -> WriteStream:
        ...

    async def signed_url(self, path: str, *, action: SignedUrlAction = "read", expires_in: timedelta) -> str:
        ...

    async def save(self, path: str, data: bytes, *, content_type: str, cache_control: str) -> None:
        ...

    def public_url(self, path: str) -> str:
        ...


_MAX_AGE = re.compile(r"max-age=(\d+)")


def _max_age(cache_control: str, default: str = "3600") -> str:
    match = _MAX_AGE.search(cache_control)
    return match.group(1) if match else default


def _signed_url_from(result: Any) -> str:
    if isinstance(result, dict):
        for key in ("signedURL", "signedUrl", "signed_url"):
            value = result.get(key)
            if isinstance(value, str) and value:
                return value
    raise StorageError(f"storage did not return a signed URL: {result!r}")


class SupabaseObjectStore:
    """One Supabase Storage bucket."""

    def __init__(
        self,
        bucket: str,
        *,
        supabase_url: str,
        service_key: str,
        http: httpx.AsyncClient,
        client: Optional[Client] = None,
        high_water_mark: int = 16,
    ) -> None:
        self.bucket = bucket
        self._base_url = supabase_url.rstrip("/")
        self._service_key = service_key
        self._http = http
        self._client = client
        self._high_water_mark = high_water_mark

    def _ensure_client(self) -> Client:
        if self._client is None:
            self._client = create_client(self._base_url, self._service_key)
        return self._client

    async def _execute(self, description: str, fn: Callable[[Any], Any]) -> Any:
        try:
            return await asyncio.to_thread(lambda: fn(self._ensure_client().storage.from_(self.bucket)))
        except StorageError:
            raise
        except Exception as exc:
            logger.exception("Supabase storage %s failed for bucket %s", description, self.bucket)
            raise StorageError(f"{description} failed: {exc}") from exc

    def _object_url(self, path: str) -> str:
        return f"{self._base_url}/storage/v1/object/{self.bucket}/{quote(path)}"

    async def exists(self, path: str) -> bool:
        folder, name = posixpath.split(path)
        entries = await self._execute("list", lambda bucket: bucket.list(folder, {"search": name}))
        return any(isinstance(entry, dict) and entry.get("name") == name for entry in entries or [])

    async def open_write_stream(self, path: str, *, content_type: str, cache_control: str) -> WriteStream:
        headers = {
            "Authorization": f"Bearer {self._service_key}",
            "apikey": self._service_key,
            "Content-Type": content_type,
            "Cache-Control": cache_control,
            "x-upsert": "true",
        }
        url = self._object_url(path)

        async def upload(chunks: AsyncIterator[bytes]) -> None:
            response = await self._http.post(url, content=chunks, headers=headers)
            if response.is_error:
                raise StorageError(
                    f"Error writing to bucket {self.bucket} for {path}: "
                    f"{response.status_code} {response.text[:200]}"
                )

        logger.debug("Opening write stream to %s/%s", self.bucket, path)
        return WriteStream(path, upload, high_water_mark=self._high_water_mark)

    async def signed_url(self, path: str, *, action: SignedUrlAction = "read", expires_in: timedelta) -> str:
        if action == "read":
            seconds = int(expires_in.total_seconds())
            result = await self._execute(
                "create_signed_url", lambda bucket: bucket.create_signed_url(path, seconds)
            )
        elif action == "write":
            # Supabase fixes the lifetime of signed upload URLs server-side.
            result = await self._execute(
                "create_signed_upload_url", lambda bucket: bucket.create_signed_upload_url(path)
            )
        else:
            raise ValueError(f"unsupported signed URL action: {action}")
        url = _signed_url_from(result)
        if url.startswith("/"):
            url = f"{self._base_url}/storage/v1{url}"
        return url

    async def save(self, path: str, data: bytes, *, content_type: str, cache_control: str) -> None:
        # storage3 expects only the max-age seconds and builds the header itself.
        options = {"content-type": content_type, "cache-control": _max_age(cache_control), "upsert": "true"}
        await self._execute("upload", lambda bucket: bucket.upload(path, data, options))

    def public_url(self, path: str) -> str:
        return f"{self._base_url}/storage/v1/object/public/{self.bucket}/{quote(path)}"

