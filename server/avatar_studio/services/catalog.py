"""Style and model catalogue.

Every style tag maps to a model key, a prompt template and a negative prompt.
The catalogue is validated when it is built so that a typo in a style table
fails at startup instead of producing a malformed provider request later.
"""
from __future__ import annotations

import random
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Sequence

from ..errors import ConfigurationError, InvalidRequestError


NEGATIVE_PROMPT_COMMON = (
    "nsfw, lowres, nudity, nude, naked, bad anatomy, bad hands, bad eyes, text, error, "
    "missing fingers, extra digit, fewer digits, cropped, worst quality, low quality, "
    "normal quality, jpeg artifacts, signature, watermark, username, blurry"
)
NEGATIVE_PROMPT_AVATAR = NEGATIVE_PROMPT_COMMON + ", casual clothes, gym clothes, workout clothes"
NEGATIVE_PROMPT_BACKUP = (
    "cgi, render, bad quality, bad eyes, bad hands, worst quality, text, signature, "
    "watermark, extra limbs, unaestheticXL_hk1, negativeXL_D"
)
NEGATIVE_PROMPT_UPBEAT = ", weak, frail, sad, nervous, anxious, dark, gloomy, skinny, thin"


@dataclass(frozen=True)
class ModelSpec:
    """How to address one provider model and shape its input."""

    key: str
    model_id: str
    requires_image: bool
    image_field: Optional[str] = "input_image"
    style_field: Optional[str] = None
    prompt_suffix: str = " perfect eyes, natural skin"
    negative_prompt: str = NEGATIVE_PROMPT_COMMON
    defaults: Mapping[str, Any] = field(default_factory=dict)

    def build_input(
        self,
        prompt: str,
        *,
        image_url: Optional[str] = None,
        style: Optional[str] = None,
        negative_prompt: Optional[str] = None,
    ) -> dict[str, Any]:
        if self.requires_image and not image_url:
            raise InvalidRequestError(f"model {self.key!r} requires an input image")

        payload: dict[str, Any] = dict(self.defaults)
        payload["prompt"] = prompt + self.prompt_suffix
        payload["negative_prompt"] = negative_prompt or self.negative_prompt
        payload["disable_safety_checker"] = True
        if image_url and self.image_field:
            payload[self.image_field] = image_url
        if style and self.style_field:
            payload[self.style_field] = style
        return payload


@dataclass(frozen=True)
class StyleSpec:
    tag: str
    model_key: str
    prompt_template: str
    negative_prompt: Optional[str] = None


@dataclass(frozen=True)
class StyleChoice:
    """Model/style pick for a single-image request."""

    model_key: str
    style: Optional[str]
    description: str


_PHOTOMAKER_DEFAULTS = {"num_steps": 50, "num_outputs": 1}

DEFAULT_MODELS: tuple[ModelSpec, ...] = (
    ModelSpec(
        key="style",
        model_id="tencentarc/photomaker-style:467d062309da518648ba89d226490e02b8ed09b5abc15026e54e31c5a8cd0769",
        requires_image=True,
        style_field="style_name",
        defaults={**_PHOTOMAKER_DEFAULTS, "style_strength_ratio": 35},
    ),
    ModelSpec(
        key="realistic",
        model_id="tencentarc/photomaker:ddfc2b08d209f9fa8c1eca692712918bd449f695dabb4a958da31802a9570fe4",
        requires_image=True,
        defaults=_PHOTOMAKER_DEFAULTS,
    ),
    ModelSpec(
        key="backup",
        model_id="grandlineai/instant-id-artistic:9cad10c7870bac9d6b587f406aef28208f964454abff5c4152f7dec9b0212a9a",
        requires_image=True,
        image_field="image",
        negative_prompt=NEGATIVE_PROMPT_BACKUP + NEGATIVE_PROMPT_UPBEAT,
    ),
    ModelSpec(
        key="realvis",
        model_id="lucataco/realvisxl-v2.0:7d6a2f9c4754477b12c14ed2a58f89bb85128edcdd581d24ce58b6926029de08",
        requires_image=False,
        image_field=None,
        negative_prompt=NEGATIVE_PROMPT_COMMON + NEGATIVE_PROMPT_UPBEAT,
        defaults={
            "width": 1024,
            "height": 1024,
            "scheduler": "DPMSolverMultistep",
            "lora_scale": 0.6,
            "num_outputs": 1,
            "guidance_scale": 7,
            "apply_watermark": True,
            "prompt_strength": 0.8,
            "num_inference_steps": 40,
        },
    ),
)

_AVATAR_SUFFIX = ", professional headshot, clean background,"

# "Disney Charactor" is the provider's own style name; do not correct the spelling.
AVATAR_STYLES: tuple[StyleSpec, ...] = (
    StyleSpec(
        tag="Digital Art",
        model_key="style",
        prompt_template="professional fitness coach portrait, digital art style, confident expression, "
        "business casual attire" + _AVATAR_SUFFIX,
        negative_prompt=NEGATIVE_PROMPT_AVATAR,
    ),
    StyleSpec(
        tag="Comic book",
        model_key="style",
        prompt_template="professional fitness coach portrait, comic book art style, heroic pose, "
        "confident expression" + _AVATAR_SUFFIX,
        negative_prompt=NEGATIVE_PROMPT_AVATAR,
    ),
    StyleSpec(
        tag="Disney Charactor",
        model_key="style",
        prompt_template="professional fitness coach portrait, Disney animation style, friendly expression, "
        "professional attire" + _AVATAR_SUFFIX,
        negative_prompt=NEGATIVE_PROMPT_AVATAR,
    ),
)

PHOTOMAKER_STYLES: tuple[str, ...] = (
    "Cinematic",
    "Disney Charactor",
    "Fantasy art",
    "Enhance",
    "Comic book",
    "Line art",
    "Digital Art",
)

REALISTIC_PROBABILITY = 0.3


class StyleCatalog:
    """Validated lookup of models and avatar styles."""

    def __init__(self, models: Iterable[ModelSpec], styles: Iterable[StyleSpec]) -> None:
        model_map: dict[str, ModelSpec] = {}
        for model in models:
            if not model.key or not model.model_id:
                raise ConfigurationError(f"model entry is incomplete: {model!r}")
            if model.key in model_map:
                raise ConfigurationError(f"duplicate model key: {model.key}")
            model_map[model.key] = model

        style_map: dict[str, StyleSpec] = {}
        for style in styles:
            if style.tag in style_map:
                raise ConfigurationError(f"duplicate style tag: {style.tag}")
            if style.model_key not in model_map:
                raise ConfigurationError(f"style {style.tag!r} references unknown model {style.model_key!r}")
            if not style.prompt_template.strip():
                raise ConfigurationError(f"style {style.tag!r} has an empty prompt template")
            style_map[style.tag] = style

        self._models = MappingProxyType(model_map)
        self._styles = MappingProxyType(style_map)

    @property
    def style_tags(self) -> tuple[str, ...]:
        return tuple(self._styles)

    def model(self, key: str) -> ModelSpec:
        try:
            return self._models[key]
        except KeyError:
            raise ConfigurationError(f"unknown model key: {key}") from None

    def resolve(self, tag: str) -> StyleSpec:
        try:
            return self._styles[tag]
        except KeyError:
            raise InvalidRequestError(
                f"unknown style {tag!r}; expected one of {', '.join(self._styles)}"
            ) from None

    def validate_plan(self, plan: Sequence[str]) -> list[StyleSpec]:
        return [self.resolve(tag) for tag in plan]


def build_default_catalog() -> StyleCatalog:
    return StyleCatalog(DEFAULT_MODELS, AVATAR_STYLES)


def select_random_style(rng: Optional[random.Random] = None) -> StyleChoice:
    """Pick the realistic model ~30% of the time, otherwise a random PhotoMaker style."""

    rng = rng or random.Random()
    if rng.random() < REALISTIC_PROBABILITY:
        return StyleChoice(model_key="realistic", style=None, description="Realistic")
    style = rng.choice(PHOTOMAKER_STYLES)
    return StyleChoice(model_key="style", style=style, description=style)
