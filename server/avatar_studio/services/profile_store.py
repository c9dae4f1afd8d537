"""Supabase helpers for the profile records the pipeline's callers keep."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from supabase import Client, create_client

from ..config import Settings, settings as default_settings
from ..errors import StorageError

logger = logging.getLogger(__name__)


class ProfileStore:
    """Lightweight wrapper around the Supabase client for profile lookups and updates."""

    def __init__(self, config: Optional[Settings] = None, *, client: Optional[Client] = None) -> None:
        self._settings = config or default_settings
        self._enabled = client is not None or self._settings.supabase_enabled
        self._client: Client | None = client
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        """Return whether Supabase credentials are configured."""

        return self._enabled

    def _ensure_client(self) -> Client:
        if not self._enabled:
            raise RuntimeError("Supabase credentials missing; profile store disabled")
        if self._client is None:
            self._client = create_client(self._settings.supabase_url, self._settings.supabase_service_role_key)
        return self._client

    async def _execute(self, fn: Callable[[Client], Any]) -> Any:
        if not self._enabled:
            return None

        async with self._lock:
            try:
                return await asyncio.to_thread(lambda: fn(self._ensure_client()))
            except Exception as exc:
                logger.exception("Supabase profile operation failed")
                raise StorageError(f"profile store operation failed: {exc}") from exc

    @staticmethod
    def _first_row(result: Any) -> Optional[dict[str, Any]]:
        data = getattr(result, "data", None)
        if isinstance(data, list):
            data = data[0] if data else None
        return data if isinstance(data, dict) else None

    async def get_user_profile(self, phone_number: str) -> Optional[dict[str, Any]]:
        """Return the ``user_profiles`` row for ``phone_number``, if any."""

        result = await self._execute(
            lambda client: client.table("user_profiles").select("*").eq("phone_number", phone_number).limit(1).execute()
        )
        return self._first_row(result)

    async def save_selected_avatar(
        self,
        *,
        coach_id: str,
        avatar_url: str,
        avatar_style: str,
        original_selfie_path: Optional[str] = None,
    ) -> Optional[dict[str, Any]]:
        """Record the avatar a coach picked and return the updated row."""

        payload = {
            "avatar_url": avatar_url,
            "avatar_style": avatar_style,
            "original_selfie_url": original_selfie_path,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        logger.info("Saving selected avatar for coach %s: %s", coach_id, avatar_style)
        result = await self._execute(
            lambda client: client.table("coach_profiles").update(payload).eq("id", coach_id).execute()
        )
        return self._first_row(result)
