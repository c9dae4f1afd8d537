from __future__ import annotations

import asyncio
from datetime import timedelta
from types import SimpleNamespace

import httpx
import pytest
from storage3 import SyncStorageClient

from avatar_studio.errors import StorageError
from avatar_studio.services.object_store import SupabaseObjectStore, WriteStream


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


def test_write_stream_applies_backpressure() -> None:
    received = bytearray()

    async def slow_consumer(chunks):  # noqa: ANN001
        async for chunk in chunks:
            await asyncio.sleep(0.001)
            received.extend(chunk)

    async def scenario():
        stream = WriteStream("a.png", slow_consumer, high_water_mark=2)
        for index in range(20):
            await stream.write(bytes([index]) * 100)
        await stream.end()
        return stream

    stream = _run(scenario())

    assert len(received) == 2000
    assert stream.bytes_written == 2000
    assert stream.drain_waits > 0
    assert stream.closed


def test_consumer_failure_surfaces_instead_of_blocking() -> None:
    async def failing_consumer(chunks):  # noqa: ANN001
        async for _ in chunks:
            raise RuntimeError("connection reset")

    async def scenario():
        stream = WriteStream("a.png", failing_consumer, high_water_mark=1)
        for _ in range(10):
            await stream.write(b"x" * 10)
        await stream.end()

    with pytest.raises(StorageError, match="connection reset"):
        _run(asyncio.wait_for(scenario(), timeout=2))


def test_write_after_end_is_rejected() -> None:
    async def consumer(chunks):  # noqa: ANN001
        async for _ in chunks:
            pass

    async def scenario():
        stream = WriteStream("a.png", consumer)
        await stream.write(b"data")
        await stream.end()
        await stream.write(b"more")

    with pytest.raises(StorageError, match="write after close"):
        _run(scenario())


def test_destroy_cancels_upload() -> None:
    async def scenario():
        gate = asyncio.Event()

        async def stuck_consumer(chunks):  # noqa: ANN001
            async for _ in chunks:
                await gate.wait()

        stream = WriteStream("a.png", stuck_consumer, high_water_mark=1)
        await stream.write(b"first")
        await stream.destroy(RuntimeError("source dropped"))
        with pytest.raises(StorageError):
            await stream.end()
        return stream

    stream = _run(scenario())
    assert stream.closed


def _store(handler, client=None):  # noqa: ANN001
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SupabaseObjectStore(
        "generated-images",
        supabase_url="https://project.supabase.co/",
        service_key="service-key",
        http=http,
        client=client,
        high_water_mark=2,
    )


def test_streamed_upload_posts_to_storage_endpoint() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = request.content
        return httpx.Response(200, json={"Key": "generated-images/coach-avatars/c1-digital-art.png"})

    store = _store(handler)

    async def scenario():
        stream = await store.open_write_stream(
            "coach-avatars/c1-digital-art.png", content_type="image/png", cache_control="public, max-age=3600"
        )
        for _ in range(5):
            await stream.write(b"a" * 32)
        await stream.end()

    _run(scenario())

    assert seen["url"] == "https://project.supabase.co/storage/v1/object/generated-images/coach-avatars/c1-digital-art.png"
    assert seen["headers"]["x-upsert"] == "true"
    assert seen["headers"]["cache-control"] == "public, max-age=3600"
    assert seen["headers"]["authorization"] == "Bearer service-key"
    assert seen["body"] == b"a" * 160


def test_rejected_upload_raises_storage_error() -> None:
    store = _store(lambda request: httpx.Response(403, text="new row violates row-level security policy"))

    async def scenario():
        stream = await store.open_write_stream("x.png", content_type="image/png", cache_control="private")
        await stream.write(b"abc")
        await stream.end()

    with pytest.raises(StorageError, match="403"):
        _run(scenario())


class _FakeBucket:
    def __init__(self) -> None:
        self.uploads = []

    def create_signed_url(self, path, seconds):  # noqa: ANN001
        return {"signedURL": f"/object/sign/generated-images/{path}?token=t&ttl={seconds}"}

    def list(self, folder, options):  # noqa: ANN001
        return [{"name": "profile.jpg"}] if folder == "555/images" else []

    def upload(self, path, data, options):  # noqa: ANN001
        self.uploads.append((path, data, options))
        return {"Key": path}


def _fake_client(bucket):  # noqa: ANN001
    return SimpleNamespace(storage=SimpleNamespace(from_=lambda name: bucket))


def test_signed_url_is_absolute_and_carries_ttl() -> None:
    store = _store(lambda request: httpx.Response(500), client=_fake_client(_FakeBucket()))

    url = _run(store.signed_url("c1/selfie.jpg", expires_in=timedelta(hours=24)))

    assert url.startswith("https://project.supabase.co/storage/v1/object/sign/generated-images/c1/selfie.jpg")
    assert "ttl=86400" in url


def test_exists_and_save_use_bucket_client() -> None:
    bucket = _FakeBucket()
    store = _store(lambda request: httpx.Response(500), client=_fake_client(bucket))

    assert _run(store.exists("555/images/profile.jpg")) is True
    assert _run(store.exists("555/images/profile.png")) is False

    _run(store.save("c1/selfie.jpg", b"jpeg", content_type="image/jpeg", cache_control="private, max-age=86400"))
    path, data, options = bucket.uploads[0]
    assert (path, data) == ("c1/selfie.jpg", b"jpeg")
    assert options["upsert"] == "true"
    assert options["content-type"] == "image/jpeg"
    assert options["cache-control"] == "86400"


def test_client_errors_become_storage_errors() -> None:
    class Broken:
        def create_signed_url(self, path, seconds):  # noqa: ANN001
            raise RuntimeError("Object not found")

    store = _store(lambda request: httpx.Response(500), client=_fake_client(Broken()))

    with pytest.raises(StorageError, match="Object not found"):
        _run(store.signed_url("missing.png", expires_in=timedelta(minutes=15)))


def test_public_url() -> None:
    store = _store(lambda request: httpx.Response(500))
    assert (
        store.public_url("generated-1.png")
        == "https://project.supabase.co/storage/v1/object/public/generated-images/generated-1.png"
    )


def test_direct_save_sends_max_age_seconds_to_storage_api() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = request.read()
        return httpx.Response(200, json={"Key": "coach-content/c1/selfie.jpg", "Id": "1"})

    storage = SyncStorageClient(
        "https://project.supabase.co/storage/v1",
        {"apikey": "service-key", "Authorization": "Bearer service-key"},
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    store = _store(lambda request: httpx.Response(500), client=SimpleNamespace(storage=storage))

    _run(store.save("c1/selfie.jpg", b"jpeg", content_type="image/jpeg", cache_control="private, max-age=86400"))

    assert captured["url"].endswith("/object/generated-images/c1/selfie.jpg")
    assert b'name="cacheControl"\r\n\r\n86400\r\n' in captured["body"]
    assert b"private" not in captured["body"]
