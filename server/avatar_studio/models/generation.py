"""Value types flowing through the generation pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union
from urllib.parse import urlparse

from ..errors import InvalidRequestError


def require_http_url(ref: str) -> str:
    """Reject image references the provider could not fetch."""

    parsed = urlparse(ref)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise InvalidRequestError("source image reference must be an http(s) URL")
    return ref


@dataclass(frozen=True, slots=True)
class SourceImage:
    """Uploaded image payload with its declared MIME type."""

    data: bytes = field(repr=False)
    mime_type: str


@dataclass(frozen=True, slots=True)
class ModelSelection:
    """Primary model key plus an ordered fallback chain.

    A ``None`` primary means "the model the style is catalogued with".
    """

    primary: Optional[str] = None
    fallbacks: tuple[str, ...] = ()

    def chain(self, default_key: str) -> tuple[str, ...]:
        return (self.primary or default_key, *self.fallbacks)


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """One inbound avatar request. Never persisted."""

    subject_id: str
    source_image: Union[SourceImage, str]
    style_plan: tuple[str, ...]
    model_selection: ModelSelection = ModelSelection()

    @classmethod
    def create(
        cls,
        subject_id: str,
        source_image: Union[SourceImage, str],
        style_plan: Any,
        model_selection: Optional[ModelSelection] = None,
    ) -> "GenerationRequest":
        """Validate inputs and build an immutable request."""

        subject = (subject_id or "").strip()
        if not subject:
            raise InvalidRequestError("subject id is required")

        if isinstance(source_image, SourceImage):
            if not source_image.data:
                raise InvalidRequestError("source image is empty")
            if not source_image.mime_type.lower().startswith("image/"):
                raise InvalidRequestError(f"unsupported source image type: {source_image.mime_type}")
        elif isinstance(source_image, str):
            require_http_url(source_image)
        else:
            raise InvalidRequestError("source image must be bytes or a URL")

        if isinstance(style_plan, str):
            raise InvalidRequestError("style plan must be a sequence of style tags")
        plan = tuple(style_plan or ())
        if not plan:
            raise InvalidRequestError("style plan must not be empty")
        for style in plan:
            if not isinstance(style, str) or not style.strip():
                raise InvalidRequestError("style tags must be non-blank strings")
        if len(set(plan)) != len(plan):
            raise InvalidRequestError("style plan contains duplicate styles")

        return cls(
            subject_id=subject,
            source_image=source_image,
            style_plan=plan,
            model_selection=model_selection or ModelSelection(),
        )


@dataclass(frozen=True, slots=True)
class Success:
    output_ref: str


@dataclass(frozen=True, slots=True)
class RetryableFailure:
    reason: str


@dataclass(frozen=True, slots=True)
class TerminalFailure:
    reason: str


InvocationOutcome = Union[Success, RetryableFailure, TerminalFailure]


@dataclass(frozen=True, slots=True)
class ModelInvocation:
    """One attempt of one style against one model."""

    model_id: str
    prompt_text: str
    input_refs: tuple[str, ...]
    attempt_number: int
    outcome: InvocationOutcome


class VariantStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class VariantResult:
    style: str
    status: VariantStatus
    durable_asset_ref: Optional[str] = None
    failure_reason: Optional[str] = None
    error: Optional[BaseException] = field(default=None, compare=False, repr=False)
    attempts: tuple[ModelInvocation, ...] = ()

    @classmethod
    def succeeded(cls, style: str, ref: str, attempts: tuple[ModelInvocation, ...] = ()) -> "VariantResult":
        return cls(style=style, status=VariantStatus.SUCCEEDED, durable_asset_ref=ref, attempts=attempts)

    @classmethod
    def failed(
        cls, style: str, error: BaseException, attempts: tuple[ModelInvocation, ...] = ()
    ) -> "VariantResult":
        reason = str(error) or type(error).__name__
        return cls(style=style, status=VariantStatus.FAILED, failure_reason=reason, error=error, attempts=attempts)

    @property
    def ok(self) -> bool:
        return self.status is VariantStatus.SUCCEEDED


@dataclass(frozen=True, slots=True)
class SourceAsset:
    """Durable location of the stored input image."""

    storage_path: str
    signed_url: str


@dataclass(frozen=True, slots=True)
class GenerationOutcome:
    source_asset: Optional[SourceAsset]
    variants: tuple[VariantResult, ...]

    @property
    def succeeded(self) -> list[VariantResult]:
        return [variant for variant in self.variants if variant.ok]

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)

    @property
    def failed_styles(self) -> list[str]:
        return [variant.style for variant in self.variants if not variant.ok]

    def to_payload(self) -> dict[str, Any]:
        """Wire shape consumed by the HTTP layer."""

        return {
            "selfieStoragePath": self.source_asset.storage_path if self.source_asset else None,
            "variants": [{"style": v.style, "url": v.durable_asset_ref} for v in self.succeeded],
            "failedStyles": self.failed_styles,
        }


@dataclass(frozen=True, slots=True)
class SingleImageResult:
    image_url: str
    style_description: str
    model_key: str
