"""Copies generated assets into durable storage."""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Union

import httpx

from ..errors import PersistError, StorageError
from .object_store import ObjectStore

logger = logging.getLogger(__name__)

PUBLIC_CACHE_CONTROL = "public, max-age=3600"
PRIVATE_CACHE_CONTROL = "private, max-age=86400"


def style_slug(style: str) -> str:
    return re.sub(r"\s+", "-", style.strip().lower())


def avatar_path(subject_id: str, style: str) -> str:
    """Same subject and style always map to the same object, so a rerun overwrites it."""

    return f"coach-avatars/{subject_id}-{style_slug(style)}.png"


def selfie_path(subject_id: str, mime_type: str) -> str:
    extension = "jpg" if "jpeg" in mime_type.lower() or "jpg" in mime_type.lower() else "png"
    return f"{subject_id}/selfie.{extension}"


def generated_image_path(now_ms: int, suffix: str) -> str:
    """``suffix`` keeps two sends in the same millisecond from sharing an object."""

    return f"generated-{now_ms}-{suffix}.png"


def user_photo_candidates(recipient_id: str) -> list[str]:
    return [f"{recipient_id}/images/profile.{ext}" for ext in ("jpg", "jpeg", "png")]


class AssetPersister:
    """Writes assets into one ``ObjectStore`` and returns their durable URL."""

    def __init__(self, store: ObjectStore, http: httpx.AsyncClient, *, chunk_size: int = 64 * 1024) -> None:
        self._store = store
        self._http = http
        self._chunk_size = chunk_size

    @property
    def store(self) -> ObjectStore:
        return self._store

    async def persist(
        self,
        source: Union[bytes, str],
        destination: str,
        content_type: str = "image/png",
        *,
        cache_control: str = PUBLIC_CACHE_CONTROL,
    ) -> str:
        if isinstance(source, (bytes, bytearray, memoryview)):
            return await self.persist_bytes(
                bytes(source), destination, content_type=content_type, cache_control=cache_control
            )
        return await self.persist_from_url(
            source, destination, content_type=content_type, cache_control=cache_control
        )

    async def persist_bytes(
        self,
        data: bytes,
        destination: str,
        *,
        content_type: str,
        cache_control: str = PRIVATE_CACHE_CONTROL,
    ) -> str:
        """Write an in-memory payload directly; no streaming needed."""

        try:
            await self._store.save(destination, data, content_type=content_type, cache_control=cache_control)
        except StorageError as exc:
            raise PersistError(f"Error storing {destination}: {exc}") from exc
        logger.info("Stored %s bytes at %s", len(data), destination)
        return self._store.public_url(destination)

    async def persist_from_url(
        self,
        source_url: str,
        destination: str,
        *,
        content_type: str = "image/png",
        cache_control: str = PUBLIC_CACHE_CONTROL,
    ) -> str:
        """Stream ``source_url`` into ``destination`` chunk by chunk.

        Each chunk is handed to the store's write stream as it arrives. When
        the stream is saturated the read loop waits on ``write`` before
        pulling the next chunk, so memory stays bounded by the stream's high
        water mark regardless of asset size.
        """

        try:
            async with self._http.stream("GET", source_url) as response:
                if not response.is_success:
                    raise PersistError(
                        f"Failed to fetch image: {response.status_code} {response.reason_phrase}",
                        status_code=response.status_code,
                    )

                sink = await self._store.open_write_stream(
                    destination, content_type=content_type, cache_control=cache_control
                )
                try:
                    async for chunk in response.aiter_bytes(self._chunk_size):
                        await sink.write(chunk)
                    await sink.end()
                except BaseException as exc:
                    await sink.destroy(exc)
                    raise
        except PersistError:
            raise
        except asyncio.CancelledError:
            raise
        except (httpx.HTTPError, httpx.InvalidURL, StorageError) as exc:
            logger.error("Error saving image to bucket: %s (source=%s, destination=%s)", exc, source_url, destination)
            raise PersistError(f"Error saving {destination}: {exc}") from exc

        logger.info("Streamed %s bytes into %s (%s drain waits)", sink.bytes_written, destination, sink.drain_waits)
        return self._store.public_url(destination)
