from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, AsyncIterator, Callable, Mapping, Optional

import httpx
import pytest

from avatar_studio.errors import StorageError
from avatar_studio.services.catalog import build_default_catalog
from avatar_studio.services.container import ServiceContainer
from avatar_studio.services.invoker import ModelInvoker
from avatar_studio.services.object_store import WriteStream
from avatar_studio.services.persister import AssetPersister
from avatar_studio.services.pipeline import AvatarPipeline, ImageSender

IMAGE_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 512


class FakeProvider:
    """Scripted provider.

    ``script`` maps a style name (or, for models without a style field, a
    model id) to a list of outcomes consumed in order; the last one repeats.
    An outcome is either an exception to raise or a list of output URLs.
    """

    def __init__(self, script: Optional[Mapping[str, list[Any]]] = None, *, delays: Optional[Mapping[str, float]] = None):
        self.script = {key: list(value) for key, value in (script or {}).items()}
        self.delays = dict(delays or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._counter = 0

    def calls_for(self, key: str) -> list[dict[str, Any]]:
        return [payload for model_id, payload in self.calls if payload.get("style_name") == key or model_id == key]

    async def run(self, model_id: str, input: Mapping[str, Any]) -> list[str]:
        payload = dict(input)
        self.calls.append((model_id, payload))
        key = payload.get("style_name") or model_id
        if key in self.delays:
            await asyncio.sleep(self.delays[key])

        queue = self.script.get(key)
        if queue:
            outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        else:
            self._counter += 1
            outcome = [f"https://replicate.delivery/out/{self._counter}.png"]

        if isinstance(outcome, BaseException):
            raise outcome
        return list(outcome)


class MemoryObjectStore:
    """In-memory bucket with a deliberately slow streaming consumer."""

    def __init__(
        self,
        bucket: str = "memory",
        *,
        high_water_mark: int = 2,
        consumer_delay: float = 0.001,
        fail_save: bool = False,
        fail_sign: bool = False,
        fail_stream_after: Optional[int] = None,
    ) -> None:
        self.bucket = bucket
        self.high_water_mark = high_water_mark
        self.consumer_delay = consumer_delay
        self.fail_save = fail_save
        self.fail_sign = fail_sign
        self.fail_stream_after = fail_stream_after
        self.objects: dict[str, bytes] = {}
        self.metadata: dict[str, dict[str, str]] = {}
        self.streams: list[WriteStream] = []
        self.signed: list[tuple[str, str, timedelta]] = []

    async def exists(self, path: str) -> bool:
        return path in self.objects

    async def open_write_stream(self, path: str, *, content_type: str, cache_control: str) -> WriteStream:
        async def consume(chunks: AsyncIterator[bytes]) -> None:
            buffer = bytearray()
            async for chunk in chunks:
                await asyncio.sleep(self.consumer_delay)
                buffer.extend(chunk)
                if self.fail_stream_after is not None and len(buffer) >= self.fail_stream_after:
                    raise RuntimeError("bucket quota exceeded")
            self.objects[path] = bytes(buffer)
            self.metadata[path] = {"content_type": content_type, "cache_control": cache_control}

        stream = WriteStream(path, consume, high_water_mark=self.high_water_mark)
        self.streams.append(stream)
        return stream

    async def signed_url(self, path: str, *, action: str = "read", expires_in: timedelta) -> str:
        if self.fail_sign:
            raise StorageError("signing failed")
        self.signed.append((path, action, expires_in))
        return f"https://storage.test/sign/{self.bucket}/{path}?token=abc"

    async def save(self, path: str, data: bytes, *, content_type: str, cache_control: str) -> None:
        if self.fail_save:
            raise StorageError("bucket unavailable")
        self.objects[path] = data
        self.metadata[path] = {"content_type": content_type, "cache_control": cache_control}

    def public_url(self, path: str) -> str:
        return f"https://storage.test/public/{self.bucket}/{path}"


class FakeProfileStore:
    def __init__(self, users: Optional[Mapping[str, dict[str, Any]]] = None, *, enabled: bool = True) -> None:
        self.users = dict(users or {})
        self.enabled = enabled
        self.selections: list[dict[str, Any]] = []

    async def get_user_profile(self, phone_number: str) -> Optional[dict[str, Any]]:
        return self.users.get(phone_number)

    async def save_selected_avatar(self, **kwargs: Any) -> Optional[dict[str, Any]]:
        self.selections.append(kwargs)
        return {"id": kwargs["coach_id"], "avatar_url": kwargs["avatar_url"], "avatar_style": kwargs["avatar_style"]}


def _serve_outputs(request: httpx.Request) -> httpx.Response:
    if "missing" in request.url.path:
        return httpx.Response(404)
    return httpx.Response(200, content=IMAGE_BYTES, headers={"Content-Type": "image/png"})


async def _no_sleep(delay: float) -> None:
    return None


@dataclass
class Harness:
    provider: FakeProvider
    selfie_store: MemoryObjectStore
    asset_store: MemoryObjectStore
    photo_store: MemoryObjectStore
    http: httpx.AsyncClient
    pipeline: AvatarPipeline
    sender: ImageSender
    profiles: FakeProfileStore = field(default_factory=FakeProfileStore)

    def container(self) -> ServiceContainer:
        return ServiceContainer(
            avatar_pipeline=self.pipeline,
            image_sender=self.sender,
            profile_store=self.profiles,
            max_upload_bytes=4096,
        )


@pytest.fixture
def make_provider() -> Callable[..., FakeProvider]:
    return FakeProvider


@pytest.fixture
def make_store() -> Callable[..., MemoryObjectStore]:
    return MemoryObjectStore


@pytest.fixture
def make_harness() -> Callable[..., Harness]:
    def factory(
        provider: Optional[FakeProvider] = None,
        *,
        selfie_store: Optional[MemoryObjectStore] = None,
        asset_store: Optional[MemoryObjectStore] = None,
        photo_store: Optional[MemoryObjectStore] = None,
        profiles: Optional[FakeProfileStore] = None,
        max_attempts: int = 3,
        handler: Callable[[httpx.Request], httpx.Response] = _serve_outputs,
    ) -> Harness:
        provider = provider or FakeProvider()
        selfie_store = selfie_store or MemoryObjectStore("coach-content")
        asset_store = asset_store or MemoryObjectStore("generated-images")
        photo_store = photo_store or MemoryObjectStore("conversations")
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        catalog = build_default_catalog()
        invoker = ModelInvoker(provider, max_attempts=max_attempts, retry_delay=5.0, sleep=_no_sleep)
        assets = AssetPersister(asset_store, http, chunk_size=64)
        pipeline = AvatarPipeline(
            catalog=catalog,
            invoker=invoker,
            selfie_persister=AssetPersister(selfie_store, http),
            asset_persister=assets,
        )
        sender = ImageSender(
            catalog=catalog,
            invoker=invoker,
            asset_persister=assets,
            photo_store=photo_store,
            rng=random.Random(7),
            clock=lambda: 1_700_000_000.123,
        )
        return Harness(
            provider=provider,
            selfie_store=selfie_store,
            asset_store=asset_store,
            photo_store=photo_store,
            http=http,
            pipeline=pipeline,
            sender=sender,
            profiles=profiles or FakeProfileStore(),
        )

    return factory


@pytest.fixture
def make_profiles() -> Callable[..., FakeProfileStore]:
    return FakeProfileStore


@pytest.fixture
def image_bytes() -> bytes:
    return IMAGE_BYTES
