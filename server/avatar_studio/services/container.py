"""Builds the long-lived collaborators the HTTP layer hands requests to."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import httpx
from fastapi import Request

from ..config import Settings
from ..errors import ConfigurationError
from .catalog import StyleCatalog, build_default_catalog
from .invoker import ModelInvoker
from .object_store import SupabaseObjectStore
from .persister import AssetPersister
from .pipeline import AvatarPipeline, ImageSender
from .profile_store import ProfileStore
from .provider import ImageProvider, ReplicateProvider

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    avatar_pipeline: AvatarPipeline
    image_sender: ImageSender
    profile_store: ProfileStore
    max_upload_bytes: int = 10 * 1024 * 1024
    http: Optional[httpx.AsyncClient] = None

    async def aclose(self) -> None:
        if self.http is not None:
            await self.http.aclose()


def build_container(
    config: Settings,
    *,
    provider: Optional[ImageProvider] = None,
    catalog: Optional[StyleCatalog] = None,
) -> ServiceContainer:
    """Wire Supabase buckets, the Replicate provider and both generation flows."""

    if not config.supabase_enabled:
        raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for asset storage")

    catalog = catalog or build_default_catalog()
    provider = provider or ReplicateProvider(api_token=config.replicate_api_token)
    http = httpx.AsyncClient(timeout=config.http_timeout_seconds, follow_redirects=True)

    def bucket(name: str) -> SupabaseObjectStore:
        return SupabaseObjectStore(
            name,
            supabase_url=config.supabase_url,
            service_key=config.supabase_service_role_key,
            http=http,
            high_water_mark=config.stream_high_water_mark,
        )

    invoker = ModelInvoker(
        provider, max_attempts=config.max_attempts, retry_delay=config.retry_delay_seconds
    )
    assets = AssetPersister(bucket(config.image_bucket), http, chunk_size=config.stream_chunk_size)
    selfies = AssetPersister(bucket(config.content_bucket), http, chunk_size=config.stream_chunk_size)

    logger.info(
        "Avatar studio ready: styles=%s image_bucket=%s content_bucket=%s",
        catalog.style_tags,
        config.image_bucket,
        config.content_bucket,
    )
    return ServiceContainer(
        avatar_pipeline=AvatarPipeline(
            catalog=catalog,
            invoker=invoker,
            selfie_persister=selfies,
            asset_persister=assets,
            selfie_url_ttl=timedelta(seconds=config.selfie_url_ttl_seconds),
        ),
        image_sender=ImageSender(
            catalog=catalog,
            invoker=invoker,
            asset_persister=assets,
            photo_store=bucket(config.conversation_bucket),
            photo_url_ttl=timedelta(seconds=config.user_photo_url_ttl_seconds),
        ),
        profile_store=ProfileStore(config),
        max_upload_bytes=config.max_upload_bytes,
        http=http,
    )


def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the container attached at startup."""

    return request.app.state.services
