"""
generator.py: Batched design generation with backoff and background removal.

Each batch item:
  1. Build a GenerationRequest (prompt template per kind, optional reference)
  2. Synthesize through the retrying invoker (rate limits only)
  3. Matte the white background (sticker / print only)
  4. Wrap as a Design

Items run strictly one after another. This is backpressure against provider
rate limits; do not turn it into concurrent dispatch.
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional

from PIL import UnidentifiedImageError

from .errors import GenerationError, InvalidRequestError
from .gemini_client import GenerationClient, classify_error
from .matting import DEFAULT_THRESHOLD, remove_background
from .retry import RetryingInvoker
from .types import (
    AspectRatio,
    Design,
    DesignKind,
    GeneratedImage,
    GenerationOutcome,
    GenerationRequest,
    ImageConfig,
    ImagePart,
    PromptPart,
    StickerStyle,
)

logger = logging.getLogger(__name__)


# ── Prompt templates ──────────────────────────────────────────────────────────

def reference_instructions(style: StickerStyle, kind: DesignKind) -> str:
    """Prefix telling the provider to treat the attached image as reference, not content."""
    target = "vector sticker" if kind is DesignKind.STICKER else "fashion graphic print"
    return (
        "REFERENCE IMAGE INSTRUCTIONS:\n"
        "- Use the attached image as the PRIMARY VISUAL REFERENCE.\n"
        "- Adopt the composition, pose, or subject matter from the reference image, "
        f"but adapt it to match the requested STYLE [{style.value}].\n"
        f"- Do not just copy the image; creatively reimagine it as a {target}.\n\n"
    )


def sticker_prompt(prompt: str, style: StickerStyle) -> str:
    return (
        "Generate a single distinct die-cut sticker illustration.\n"
        f"Subject: {prompt}\n"
        f"Style: {style.value}\n\n"
        "Visual Requirements:\n"
        "- A SINGLE isolated sticker element centered on the canvas.\n"
        "- Strong, clear white outline (die-cut border) surrounding the subject.\n"
        "- Pure white background (flat lighting).\n"
        "- Vector-like quality, sharp details.\n"
        "- Margin of white space around edges."
    )


def print_prompt(prompt: str, style: StickerStyle) -> str:
    return (
        "Generate a professional graphic print design suitable for clothing "
        "(T-shirts, hoodies, streetwear).\n"
        f"Subject: {prompt}\n"
        f"Fashion Style/Aesthetic: {style.value}\n\n"
        "Visual Requirements:\n"
        "- Create a high-quality, standalone graphic placement print.\n"
        "- NO die-cut white borders (unlike stickers). This is for direct-to-garment printing.\n"
        "- Composition: Centralized, balanced, and aesthetically pleasing for apparel.\n"
        "- Background: Pure white (to be removed later).\n"
        "- Style execution: modern fashion trends, typography where the style calls for it, "
        "professional illustration technique matched to the requested style "
        "(bold and edgy for Streetwear, minimal and elegant for Luxury).\n"
        "- High contrast and vibrant colors, or stylized monochrome, depending on the style."
    )


def build_parts(request: GenerationRequest) -> List[PromptPart]:
    """Reference image first (if any), then the full text prompt."""
    text = ""
    parts: List[PromptPart] = []
    if request.reference_image is not None:
        parts.append(request.reference_image)
        text += reference_instructions(request.style, request.kind)

    if request.kind is DesignKind.STICKER:
        text += sticker_prompt(request.prompt, request.style)
    else:
        text += print_prompt(request.prompt, request.style)

    parts.append(text)
    return parts


# ── Orchestrator ──────────────────────────────────────────────────────────────

class ImageGenerationOrchestrator:
    def __init__(
        self,
        client: GenerationClient,
        invoker: Optional[RetryingInvoker] = None,
        matte_threshold: int = DEFAULT_THRESHOLD,
    ) -> None:
        self.client = client
        self.invoker = invoker or RetryingInvoker()
        self.matte_threshold = matte_threshold

    async def generate(
        self,
        prompt: str,
        style: StickerStyle,
        kind: DesignKind = DesignKind.STICKER,
        count: int = 1,
        reference_image: Optional[ImagePart] = None,
    ) -> List[Design]:
        """
        Generate count designs sequentially.

        Failed items are skipped as long as at least one item succeeds;
        if every item fails the last error is raised. Order is preserved.
        """
        if count < 1:
            raise InvalidRequestError(f"count must be at least 1, got {count}")

        request = GenerationRequest(
            prompt=prompt,
            style=style,
            kind=kind,
            reference_image=reference_image,
            aspect_ratio=AspectRatio.SQUARE,
        )

        designs: List[Design] = []
        errors: List[GenerationError] = []
        for i in range(count):
            t0 = time.monotonic()
            outcome = await self._attempt(request, label=f"design {i + 1}/{count}")
            if not outcome.ok:
                errors.append(outcome.error)
                logger.error("Error generating image %d/%d: %s", i + 1, count, outcome.error)
                continue

            designs.append(self._to_design(request, outcome.image))
            logger.info("Design %d/%d ready (%.1fs)", i + 1, count, time.monotonic() - t0)

        if not designs:
            raise errors[-1]

        if len(designs) < count:
            logger.warning("Batch partially failed: %d of %d design(s) generated", len(designs), count)
        return designs

    async def _attempt(self, request: GenerationRequest, label: str) -> GenerationOutcome:
        parts = build_parts(request)
        config = ImageConfig(aspect_ratio=request.aspect_ratio)
        try:
            image = await self.invoker.invoke(
                lambda: self.client.synthesize(parts, config), label=label
            )
        except Exception as exc:
            return GenerationOutcome(error=classify_error(exc))
        return GenerationOutcome(image=self._postprocess(request.kind, image))

    def _postprocess(self, kind: DesignKind, image: GeneratedImage) -> GeneratedImage:
        if not kind.is_graphic:
            return image
        try:
            return GeneratedImage(remove_background(image.data, self.matte_threshold), "image/png")
        except (UnidentifiedImageError, OSError) as exc:
            logger.warning("Background removal skipped, image could not be decoded: %s", exc)
            return image

    @staticmethod
    def _to_design(request: GenerationRequest, image: GeneratedImage) -> Design:
        return Design(
            prompt=request.prompt,
            style=request.style,
            kind=request.kind,
            image=image.data,
            mime_type=image.mime_type,
        )
