"""Coach avatar endpoints."""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from ..errors import InvalidRequestError
from ..models import schemas
from ..services.container import ServiceContainer, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/avatars", tags=["avatars"])


@router.post("/generate", response_model=schemas.AvatarGenerationResponse)
async def generate_avatars(
    coach_id: Optional[str] = Form(default=None, alias="coachId"),
    selfie: Optional[UploadFile] = File(default=None),
    styles: Optional[List[str]] = Form(default=None),
    services: ServiceContainer = Depends(get_services),
) -> schemas.AvatarGenerationResponse:
    """Store the uploaded selfie and generate one avatar per requested style.

    Styles that fail are listed in ``failedStyles``; the request only fails
    when no style could be generated.
    """

    if not coach_id or not coach_id.strip():
        raise InvalidRequestError("coachId is required")
    if selfie is None:
        raise InvalidRequestError("Selfie image is required")

    content_type = (selfie.content_type or "").lower()
    if not content_type.startswith("image/"):
        raise InvalidRequestError("Only image files are allowed")

    data = await selfie.read(services.max_upload_bytes + 1)
    if not data:
        raise InvalidRequestError("Selfie image is empty")
    if len(data) > services.max_upload_bytes:
        raise InvalidRequestError(f"Selfie exceeds the {services.max_upload_bytes} byte upload limit")

    logger.info("Processing avatar generation for coach %s", coach_id)
    logger.info("File info: %s, %s, %s bytes", selfie.filename, content_type, len(data))

    outcome = await services.avatar_pipeline.run_avatar_pipeline(coach_id, data, content_type, styles or None)
    payload = outcome.to_payload()
    return schemas.AvatarGenerationResponse(
        coachId=coach_id,
        selfieStoragePath=payload["selfieStoragePath"],
        avatars=[schemas.AvatarVariant(**variant) for variant in payload["variants"]],
        failedStyles=payload["failedStyles"],
        message=f"Generated {outcome.succeeded_count} avatar options",
    )


@router.post("/selection", response_model=schemas.AvatarSelectionResponse)
async def save_selected_avatar(
    payload: schemas.AvatarSelectionRequest,
    services: ServiceContainer = Depends(get_services),
) -> schemas.AvatarSelectionResponse:
    """Record which generated avatar the coach chose."""

    coach = await services.profile_store.save_selected_avatar(
        coach_id=payload.coach_id,
        avatar_url=payload.selected_avatar_url,
        avatar_style=payload.avatar_style,
        original_selfie_path=payload.original_selfie_url,
    )
    return schemas.AvatarSelectionResponse(coach=coach)
