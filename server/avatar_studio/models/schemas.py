"""Pydantic models describing request and response payloads."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AvatarVariant(BaseModel):
    style: str
    url: str


class AvatarGenerationResponse(_CamelModel):
    """Response returned after a multi-style avatar run."""

    success: bool = True
    coach_id: str = Field(..., alias="coachId")
    selfie_storage_path: Optional[str] = Field(default=None, alias="selfieStoragePath")
    avatars: List[AvatarVariant] = Field(default_factory=list)
    failed_styles: List[str] = Field(default_factory=list, alias="failedStyles")
    message: str = ""


class AvatarSelectionRequest(_CamelModel):
    """Coach picked one of the generated avatars."""

    coach_id: str = Field(..., min_length=1, alias="coachId")
    selected_avatar_url: str = Field(..., min_length=1, alias="selectedAvatarUrl")
    avatar_style: str = Field(..., min_length=1, alias="avatarStyle")
    original_selfie_url: Optional[str] = Field(default=None, alias="originalSelfieUrl")


class AvatarSelectionResponse(_CamelModel):
    success: bool = True
    coach: Optional[Dict[str, Any]] = None
    message: str = "Avatar saved successfully"


class SendImageRequest(_CamelModel):
    """Generate one image for one recipient."""

    phone_number: str = Field(..., min_length=1, alias="phoneNumber")
    prompt: str = Field(..., min_length=1, description="Scene description for the generated image")
    source_image_ref: Optional[str] = Field(default=None, alias="sourceImageRef")
    use_user_photo: bool = Field(default=True, alias="useUserPhoto")


class SendImageResponse(_CamelModel):
    success: bool = True
    image_url: str = Field(..., alias="imageUrl")
    style_description: str = Field(..., alias="styleDescription")


class ErrorResponse(BaseModel):
    error: str
