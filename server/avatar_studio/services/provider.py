"""Replicate-backed image generation provider."""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Protocol

import replicate

from ..config import settings
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


class ImageProvider(Protocol):
    """Anything that can turn a model id plus input into output asset URLs."""

    async def run(self, model_id: str, input: Mapping[str, Any]) -> list[str]:
        ...


def _output_url(item: Any) -> str:
    url = getattr(item, "url", None)
    if callable(url):
        url = url()
    return str(url or item)


async def normalize_output(raw: Any) -> list[str]:
    """Flatten whatever the client returned into a list of URL strings."""

    if raw is None:
        return []
    if isinstance(raw, (str, bytes)):
        return [raw.decode() if isinstance(raw, bytes) else raw]
    if hasattr(raw, "__aiter__"):
        return [_output_url(item) async for item in raw]
    if isinstance(raw, (list, tuple)):
        return [_output_url(item) for item in raw if item is not None]
    return [_output_url(raw)]


class ReplicateProvider:
    """Calls Replicate models through the official async client."""

    def __init__(self, *, api_token: Optional[str] = None, client: Optional[replicate.Client] = None) -> None:
        if client is None:
            token = api_token or settings.replicate_api_token
            if not token:
                raise ConfigurationError("REPLICATE_API_TOKEN missing; image generation is unavailable")
            client = replicate.Client(api_token=token)
        self._client = client

    async def run(self, model_id: str, input: Mapping[str, Any]) -> list[str]:
        logger.debug("Submitting Replicate prediction for %s", model_id)
        raw = await self._client.async_run(model_id, input=dict(input))
        return await normalize_output(raw)
