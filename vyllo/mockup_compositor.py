"""
mockup_compositor.py: Virtual try-on, a design printed onto a product photo.

Two modes, chosen by whether the user supplied a photo:

  Custom photo     → [design, photo, try-on directive]   aspect 1:1
                     The photo's subject, pose, lighting and background
                     are preserved exactly; only the graphic is applied.
  Generated scene  → [design, scene directive]           aspect 3:4
                     A photorealistic shot is synthesized from the
                     model description with the graphic printed on it.

Results are final photos and are never background-matted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .errors import InvalidRequestError
from .gemini_client import GenerationClient
from .retry import RetryingInvoker
from .types import (
    AspectRatio,
    Design,
    DesignKind,
    GeneratedImage,
    ImageConfig,
    ImagePart,
    PromptPart,
)

logger = logging.getLogger(__name__)

CUSTOM_MODEL_DESCRIPTION = "Custom uploaded model"


# ── Presets ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MockupPreset:
    id: str
    label: str
    prompt: str


MOCKUP_PRESETS: List[MockupPreset] = [
    MockupPreset("f-tee", "Woman Tee", "A trendy female model wearing a white streetwear t-shirt"),
    MockupPreset("m-tee", "Man Tee", "A stylish male model wearing a white regular fit t-shirt"),
    MockupPreset("hoodie", "Hoodie", "A model wearing a beige oversized hoodie, street style"),
    MockupPreset("tote", "Tote Bag", "A canvas tote bag hanging on a wooden chair, natural lighting"),
    MockupPreset("baby", "Baby Onesie", "A cute baby wearing a white onesie, soft lighting"),
    MockupPreset("cap", "Cap", "A baseball cap placed on a modern desk"),
]

_PRESET_INDEX: Dict[str, MockupPreset] = {
    key: preset
    for preset in MOCKUP_PRESETS
    for key in (preset.id, preset.label.lower())
}


def get_preset(key: str) -> Optional[MockupPreset]:
    """Look up a preset by id ("f-tee") or label ("Woman Tee"), case-insensitive."""
    return _PRESET_INDEX.get(key.strip().lower())


# ── Prompt builders ───────────────────────────────────────────────────────────

def custom_photo_prompt() -> str:
    return (
        "Task: Realistic Virtual Try-On / Product Compositing.\n\n"
        "Input 1: A graphic design/print.\n"
        "Input 2: A photo of a person or object (The Target).\n\n"
        "Instructions:\n"
        "1. Apply Input 1 (the graphic) onto the clothing or main surface of the subject in Input 2.\n"
        "2. PRESERVE the content, lighting, pose, and background of Input 2 exactly. "
        "Do not change the model or scene.\n"
        "3. The graphic must conform to the folds, lighting, and texture of the fabric in Input 2.\n"
        "4. Blend it realistically as if it was printed on the material.\n"
        "5. Output the final photo."
    )


def generated_scene_prompt(model_description: str) -> str:
    return (
        "Generate a high-quality, photorealistic fashion photography shot.\n\n"
        f"Target Scene Description: {model_description}\n\n"
        "Instructions:\n"
        '1. The "Subject" in the description MUST be wearing/using the product '
        "(e.g., t-shirt, hoodie, bag, cap).\n"
        "2. The INPUT IMAGE provided serves as a graphic print/decal. Apply this graphic onto the product.\n"
        "3. COMPOSITION: Ensure the graphic is clearly visible, centered, and follows the "
        "fabric folds/texture realistically.\n"
        '4. COLOR: If the description specifies a clothing color (e.g. "black hoodie"), use it. '
        "If not, default to white.\n"
        "5. LIGHTING: Use professional studio or lifestyle lighting as appropriate for the scene.\n"
        "6. Do NOT generate the graphic as a floating sticker; it must be printed ON the material."
    )


def build_mockup_request(
    design_image: ImagePart,
    model_description: str,
    custom_model_image: Optional[ImagePart] = None,
) -> Tuple[List[PromptPart], ImageConfig]:
    parts: List[PromptPart] = [design_image]
    if custom_model_image is not None:
        parts.append(custom_model_image)
        parts.append(custom_photo_prompt())
        return parts, ImageConfig(aspect_ratio=AspectRatio.SQUARE)

    if not model_description.strip():
        raise InvalidRequestError("A model description is required without a custom photo")
    parts.append(generated_scene_prompt(model_description))
    return parts, ImageConfig(aspect_ratio=AspectRatio.PORTRAIT)


# ── Compositor ────────────────────────────────────────────────────────────────

class MockupCompositor:
    def __init__(self, client: GenerationClient, invoker: Optional[RetryingInvoker] = None) -> None:
        self.client = client
        self.invoker = invoker or RetryingInvoker()

    async def composite(
        self,
        design_image: ImagePart,
        model_description: str,
        custom_model_image: Optional[ImagePart] = None,
    ) -> GeneratedImage:
        parts, config = build_mockup_request(design_image, model_description, custom_model_image)
        mode = "custom photo" if custom_model_image is not None else "generated scene"
        logger.info("Compositing mockup (%s, %s)", mode, config.aspect_ratio.value)
        return await self.invoker.invoke(
            lambda: self.client.synthesize(parts, config), label="mockup"
        )

    async def create_mockup(
        self,
        design: Design,
        model_description: str,
        custom_model_image: Optional[ImagePart] = None,
    ) -> Design:
        """Composite design and record the result as a new mockup Design."""
        image = await self.composite(design.as_image_part(), model_description, custom_model_image)
        return Design(
            prompt=model_description,
            style=design.style,
            kind=DesignKind.MOCKUP,
            image=image.data,
            mime_type=image.mime_type,
        )
