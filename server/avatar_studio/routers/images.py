"""Single-image generation endpoint."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..models import schemas
from ..services.container import ServiceContainer, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/images", tags=["images"])


@router.post(
    "/send",
    response_model=schemas.SendImageResponse,
    responses={404: {"model": schemas.ErrorResponse}},
)
async def send_user_image(
    payload: schemas.SendImageRequest,
    services: ServiceContainer = Depends(get_services),
):
    """Generate one image for the user behind ``phoneNumber``."""

    profiles = services.profile_store
    if profiles.enabled:
        user = await profiles.get_user_profile(payload.phone_number)
        if user is None:
            return JSONResponse(status_code=404, content={"error": "User not found"})

    result = await services.image_sender.send_image(
        payload.phone_number,
        payload.prompt,
        payload.source_image_ref,
        use_user_photo=payload.use_user_photo,
    )
    logger.info("Generated image for %s with %s", payload.phone_number, result.model_key)
    return schemas.SendImageResponse(imageUrl=result.image_url, styleDescription=result.style_description)
