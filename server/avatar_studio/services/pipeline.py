"""Top-level generation flows.

``AvatarPipeline`` stores a coach selfie, fans out one provider call per
requested style and persists whatever succeeds. ``ImageSender`` produces a
single image for one recipient with a primary model and a backup model.

Each run keeps its state in local variables and the request object it was
given. Two runs for the same subject and style write the same object path
and the last writer wins; there is no locking.
"""
from __future__ import annotations

import logging
import random
import time
import uuid
from datetime import timedelta
from typing import Callable, Optional, Sequence

from ..errors import AggregateFailure, InvalidRequestError, PersistError, ProviderError, StorageError
from ..models.generation import (
    GenerationOutcome,
    GenerationRequest,
    SingleImageResult,
    SourceAsset,
    SourceImage,
    require_http_url,
)
from .catalog import StyleCatalog, StyleChoice, select_random_style
from .invoker import AttemptRecorder, ModelInvoker
from .object_store import ObjectStore
from .persister import (
    PRIVATE_CACHE_CONTROL,
    AssetPersister,
    avatar_path,
    generated_image_path,
    selfie_path,
    user_photo_candidates,
)
from .variants import generate_variants

logger = logging.getLogger(__name__)


class AvatarPipeline:
    def __init__(
        self,
        *,
        catalog: StyleCatalog,
        invoker: ModelInvoker,
        selfie_persister: AssetPersister,
        asset_persister: AssetPersister,
        selfie_url_ttl: timedelta = timedelta(hours=24),
    ) -> None:
        self._catalog = catalog
        self._invoker = invoker
        self._selfie_persister = selfie_persister
        self._asset_persister = asset_persister
        self._selfie_url_ttl = selfie_url_ttl

    @property
    def style_tags(self) -> tuple[str, ...]:
        return self._catalog.style_tags

    async def run_avatar_pipeline(
        self,
        subject_id: str,
        image_bytes: bytes,
        mime_type: str,
        style_plan: Optional[Sequence[str]] = None,
    ) -> GenerationOutcome:
        """Generate avatars for ``subject_id`` from an uploaded selfie."""

        request = GenerationRequest.create(
            subject_id,
            SourceImage(data=image_bytes, mime_type=mime_type),
            self.style_tags if style_plan is None else style_plan,
        )
        return await self.run(request)

    async def run(self, request: GenerationRequest) -> GenerationOutcome:
        # Unknown styles are rejected before the selfie is uploaded.
        styles = {spec.tag: spec for spec in self._catalog.validate_plan(request.style_plan)}
        chains = {
            tag: [self._catalog.model(key) for key in request.model_selection.chain(spec.model_key)]
            for tag, spec in styles.items()
        }

        source_asset: Optional[SourceAsset] = None
        if isinstance(request.source_image, SourceImage):
            logger.info("Storing selfie for coach %s", request.subject_id)
            source_asset = await self._store_source(request.subject_id, request.source_image)
            input_url = source_asset.signed_url
        else:
            input_url = request.source_image

        logger.info(
            "Generating avatars for coach %s in %s styles", request.subject_id, len(request.style_plan)
        )

        async def generate_style(style: str, record: AttemptRecorder) -> str:
            spec = styles[style]
            chain = chains[style]
            for position, model in enumerate(chain):
                try:
                    output_url = await self._invoker.invoke(
                        model,
                        spec.prompt_template,
                        (input_url,),
                        style,
                        negative_prompt=spec.negative_prompt,
                        on_attempt=record,
                    )
                    break
                except ProviderError as exc:
                    if position == len(chain) - 1:
                        raise
                    logger.warning("%s failed on %s, falling back: %s", style, model.key, exc)
            return await self._asset_persister.persist_from_url(
                output_url, avatar_path(request.subject_id, style)
            )

        variants = await generate_variants(request.style_plan, generate_style)
        outcome = GenerationOutcome(source_asset=source_asset, variants=tuple(variants))

        if outcome.succeeded_count == 0:
            failures = {variant.style: variant.error for variant in variants if variant.error is not None}
            last_error = variants[-1].error if variants else None
            raise AggregateFailure("Failed to generate any avatars", failures) from last_error

        logger.info(
            "Successfully generated %s avatars for coach %s (failed: %s)",
            outcome.succeeded_count,
            request.subject_id,
            outcome.failed_styles,
        )
        return outcome

    async def _store_source(self, subject_id: str, image: SourceImage) -> SourceAsset:
        path = selfie_path(subject_id, image.mime_type)
        await self._selfie_persister.persist_bytes(
            image.data, path, content_type=image.mime_type, cache_control=PRIVATE_CACHE_CONTROL
        )
        try:
            signed = await self._selfie_persister.store.signed_url(
                path, action="read", expires_in=self._selfie_url_ttl
            )
        except StorageError as exc:
            raise PersistError(f"Error signing selfie URL for {path}: {exc}") from exc
        return SourceAsset(storage_path=path, signed_url=signed)


class ImageSender:
    """Single-image generation with a two-model fallback chain."""

    def __init__(
        self,
        *,
        catalog: StyleCatalog,
        invoker: ModelInvoker,
        asset_persister: AssetPersister,
        photo_store: ObjectStore,
        photo_url_ttl: timedelta = timedelta(minutes=15),
        backup_model: str = "backup",
        text_only_model: str = "realvis",
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        token_factory: Callable[[], str] = lambda: uuid.uuid4().hex[:8],
    ) -> None:
        self._catalog = catalog
        self._invoker = invoker
        self._asset_persister = asset_persister
        self._photo_store = photo_store
        self._photo_url_ttl = photo_url_ttl
        self._backup_model = backup_model
        self._text_only_model = text_only_model
        self._rng = rng or random.Random()
        self._clock = clock
        self._token_factory = token_factory

    async def find_user_photo(self, recipient_id: str) -> Optional[str]:
        """Signed URL for the recipient's profile photo, if one was uploaded."""

        try:
            for candidate in user_photo_candidates(recipient_id):
                if await self._photo_store.exists(candidate):
                    logger.info("Found user photo for %s at %s", recipient_id, candidate)
                    return await self._photo_store.signed_url(
                        candidate, action="read", expires_in=self._photo_url_ttl
                    )
        except StorageError as exc:
            logger.error("Error checking for user photo: %s", exc)
            return None
        logger.info("No user photo found for %s", recipient_id)
        return None

    async def send_image(
        self,
        recipient_id: str,
        prompt: str,
        source_image_ref: Optional[str] = None,
        *,
        use_user_photo: bool = True,
        choice: Optional[StyleChoice] = None,
    ) -> SingleImageResult:
        if not (recipient_id or "").strip() or not (prompt or "").strip():
            raise InvalidRequestError("recipient and prompt are required")
        if source_image_ref is not None:
            require_http_url(source_image_ref)

        photo_url = source_image_ref
        if photo_url is None and use_user_photo:
            photo_url = await self.find_user_photo(recipient_id)

        choice = choice or select_random_style(self._rng)
        if photo_url:
            model_key, style = choice.model_key, choice.style
        else:
            model_key, style = self._text_only_model, None

        logger.info(
            "Selected model configuration: model=%s style=%s has_photo=%s", model_key, style, bool(photo_url)
        )

        try:
            url = await self._generate_and_store(model_key, prompt, photo_url, style)
        except Exception as exc:
            backup = self._catalog.model(self._backup_model)
            if backup.requires_image and not photo_url:
                raise
            logger.warning("Error generating image with primary model, trying backup: %s", exc)
            url = await self._generate_and_store(self._backup_model, prompt, photo_url, style)
            model_key = self._backup_model

        return SingleImageResult(image_url=url, style_description=choice.description, model_key=model_key)

    async def _generate_and_store(
        self, model_key: str, prompt: str, photo_url: Optional[str], style: Optional[str]
    ) -> str:
        model = self._catalog.model(model_key)
        refs = (photo_url,) if photo_url else ()
        output_url = await self._invoker.invoke(model, prompt, refs, style)
        destination = generated_image_path(int(self._clock() * 1000), self._token_factory())
        return await self._asset_persister.persist_from_url(output_url, destination)
