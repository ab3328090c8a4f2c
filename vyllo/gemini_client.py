"""
gemini_client.py: Provider contracts and their Gemini implementations.

The pipeline only depends on the two protocols below. GeminiImageClient and
GeminiTextClient adapt google-genai to them and translate every provider
exception into the vyllo error taxonomy (see classify_error).
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, List, Optional, Protocol, Sequence, runtime_checkable

from google import genai
from google.genai import types

from .config import Settings
from .errors import (
    GenerationError,
    InvalidRequestError,
    NoImageReturnedError,
    RateLimitedError,
    UnavailableError,
)
from .types import GeneratedImage, ImageConfig, ImagePart, PromptPart

logger = logging.getLogger(__name__)

_RATE_LIMIT_MARKERS = ("429", "resource_exhausted", "quota", "rate limit", "ratelimitexceeded")
_MODEL_MISSING_MARKERS = ("not found", "not supported", "permission")


# ── Contracts ─────────────────────────────────────────────────────────────────

@runtime_checkable
class GenerationClient(Protocol):
    async def synthesize(
        self, parts: Sequence[PromptPart], image_config: ImageConfig
    ) -> GeneratedImage:
        """Return one image or raise a GenerationError subclass."""
        ...


@runtime_checkable
class TextCompletionClient(Protocol):
    async def complete(self, prompt: str) -> str:
        """Return the completion text or raise a GenerationError subclass."""
        ...


# ── Error classification ──────────────────────────────────────────────────────

def classify_error(exc: BaseException) -> GenerationError:
    """Map a provider / transport exception onto RateLimited, InvalidRequest or Unavailable."""
    if isinstance(exc, GenerationError):
        return exc

    code = getattr(exc, "code", None)
    status = str(getattr(exc, "status", "") or "")
    message = str(exc) or exc.__class__.__name__
    lowered = message.lower()

    if code == 429 or status == "RESOURCE_EXHAUSTED" or any(m in lowered for m in _RATE_LIMIT_MARKERS):
        return RateLimitedError(message)
    if isinstance(code, int) and 400 <= code < 500:
        return InvalidRequestError(message)
    return UnavailableError(message)


def _is_model_unavailable(exc: BaseException) -> bool:
    code = getattr(exc, "code", None)
    if code in (403, 404):
        return True
    lowered = str(exc).lower()
    return any(m in lowered for m in _MODEL_MISSING_MARKERS)


# ── Gemini adapters ───────────────────────────────────────────────────────────

def _to_gemini_part(part: PromptPart) -> types.Part:
    if isinstance(part, ImagePart):
        return types.Part.from_bytes(data=part.data, mime_type=part.mime_type)
    return types.Part.from_text(text=part)


def extract_image(response: Any) -> Optional[GeneratedImage]:
    """First inline image in a generate_content response, or None."""
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        if not content:
            continue
        for part in content.parts or []:
            inline = getattr(part, "inline_data", None)
            if inline and inline.data:
                data = inline.data
                if isinstance(data, str):
                    try:
                        data = base64.b64decode(data, validate=True)
                    except (binascii.Error, ValueError) as exc:
                        raise NoImageReturnedError(f"Undecodable inline image data: {exc}") from exc
                return GeneratedImage(data=data, mime_type=inline.mime_type or "image/png")
    return None


def _build_client(api_key: str, timeout_seconds: float) -> genai.Client:
    if not api_key:
        raise InvalidRequestError("GEMINI_API_KEY is not set")
    return genai.Client(
        api_key=api_key,
        http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)),
    )


class GeminiImageClient:
    """Image synthesis through Gemini multimodal models, with a model ladder."""

    def __init__(
        self,
        api_key: str = "",
        models: Sequence[str] = ("gemini-2.5-flash-image",),
        timeout_seconds: float = 90.0,
        client: Optional[genai.Client] = None,
    ) -> None:
        if not models:
            raise ValueError("at least one model is required")
        self.models: List[str] = list(models)
        self._client = client or _build_client(api_key, timeout_seconds)

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiImageClient":
        return cls(settings.gemini_api_key, settings.image_models, settings.request_timeout_seconds)

    async def synthesize(
        self, parts: Sequence[PromptPart], image_config: ImageConfig
    ) -> GeneratedImage:
        contents = [_to_gemini_part(p) for p in parts]
        config = types.GenerateContentConfig(
            response_modalities=["IMAGE", "TEXT"],
            image_config=types.ImageConfig(aspect_ratio=image_config.aspect_ratio.value),
        )

        last_exc: Optional[BaseException] = None
        for model in self.models:
            logger.info(
                "Synthesizing image: model=%s, ratio=%s, parts=%d",
                model, image_config.aspect_ratio.value, len(contents),
            )
            try:
                response = await self._client.aio.models.generate_content(
                    model=model, contents=contents, config=config,
                )
            except Exception as exc:
                if _is_model_unavailable(exc):
                    logger.info("Model %s unavailable (%s), trying next", model, exc)
                    last_exc = exc
                    continue
                raise classify_error(exc) from exc

            image = extract_image(response)
            if image is None:
                raise NoImageReturnedError(f"{model} returned no image data")
            return image

        raise UnavailableError(f"No image model available: {last_exc}") from last_exc


class GeminiTextClient:
    """Plain text completion (used for prompt rewriting)."""

    def __init__(
        self,
        api_key: str = "",
        model: str = "gemini-2.5-flash",
        timeout_seconds: float = 90.0,
        client: Optional[genai.Client] = None,
    ) -> None:
        self.model = model
        self._client = client or _build_client(api_key, timeout_seconds)

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiTextClient":
        return cls(settings.gemini_api_key, settings.text_model, settings.request_timeout_seconds)

    async def complete(self, prompt: str) -> str:
        try:
            response = await self._client.aio.models.generate_content(
                model=self.model, contents=prompt,
            )
        except Exception as exc:
            raise classify_error(exc) from exc
        return response.text or ""
