"""
types.py: Records passed between the generation pipeline and its callers.

Design and ConversationTurn are pydantic models so they serialize to JSON
for the history log (image bytes travel as base64). Request/response shapes
exchanged with the provider are plain dataclasses.
"""

from __future__ import annotations

import base64
import re
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .errors import GenerationError, InvalidRequestError

_DATA_URL_RE = re.compile(r"^data:(image/[a-z0-9.+-]+);base64,", re.IGNORECASE)

_MIME_BY_EXT = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}


# ── Enumerations ──────────────────────────────────────────────────────────────

class DesignKind(str, Enum):
    STICKER = "Sticker"
    FASHION = "Fashion Print"
    MOCKUP = "Virtual Try-On"

    @property
    def is_graphic(self) -> bool:
        """Sticker and print designs are isolated graphics on white."""
        return self is not DesignKind.MOCKUP

    @property
    def noun(self) -> str:
        return {
            DesignKind.STICKER: "sticker",
            DesignKind.FASHION: "fashion print",
            DesignKind.MOCKUP: "mockup",
        }[self]


class StickerStyle(str, Enum):
    KAWAII = "Kawaii / Cute"
    VINTAGE = "Vintage / Retro"
    PIXEL = "Pixel Art"
    HOLOGRAPHIC = "Holographic"
    WATERCOLOR = "Watercolor"
    POP_ART = "Pop Art"
    MINIMALIST = "Minimalist"
    THREE_D = "3D Clay Render"

    # Fashion
    STREETWEAR = "Streetwear / Urban"
    Y2K = "Y2K / Cyber"
    LUXURY = "Luxury / High-End"
    GOTHIC = "Gothic / Dark"
    ACID_GRAPHIC = "Acid Graphic / Rave"
    VAPORWAVE = "Vaporwave"
    COTTAGECORE = "Cottagecore"

    @classmethod
    def parse(cls, value: str) -> "StickerStyle":
        """Accept an enum name ("pop_art"), a value ("Pop Art") or a prefix ("kawaii")."""
        text = value.strip()
        try:
            return cls[text.upper().replace(" ", "_").replace("-", "_")]
        except KeyError:
            pass
        lowered = text.lower()
        for style in cls:
            if style.value.lower() == lowered or style.value.lower().startswith(lowered):
                return style
        raise ValueError(f"Unknown style: {value!r}")


class AspectRatio(str, Enum):
    SQUARE = "1:1"
    PORTRAIT = "3:4"


class ViewMode(str, Enum):
    DESIGN = "design"
    MOCKUP = "mockup"


# ── Provider request / response shapes ───────────────────────────────────────

@dataclass(frozen=True)
class ImagePart:
    """Raw image bytes attached to a synthesis request."""
    data: bytes
    mime_type: str = "image/png"

    @classmethod
    def from_data_url(cls, value: str) -> "ImagePart":
        match = _DATA_URL_RE.match(value)
        if not match:
            raise InvalidRequestError("Expected a base64 image data URL")
        return cls(base64.b64decode(value[match.end():]), match.group(1).lower())

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "ImagePart":
        p = Path(path)
        return cls(p.read_bytes(), _MIME_BY_EXT.get(p.suffix.lower(), "image/png"))


PromptPart = Union[str, ImagePart]


@dataclass(frozen=True)
class ImageConfig:
    aspect_ratio: AspectRatio = AspectRatio.SQUARE


@dataclass(frozen=True)
class GeneratedImage:
    data: bytes
    mime_type: str = "image/png"


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    style: StickerStyle
    kind: DesignKind
    reference_image: Optional[ImagePart] = None
    aspect_ratio: AspectRatio = AspectRatio.SQUARE

    def __post_init__(self) -> None:
        if not self.prompt or not self.prompt.strip():
            raise InvalidRequestError("Generation prompt must not be empty")
        if not isinstance(self.aspect_ratio, AspectRatio):
            raise InvalidRequestError(f"Unsupported aspect ratio: {self.aspect_ratio!r}")


@dataclass(frozen=True)
class GenerationOutcome:
    """Result of one request: an image or a classified error, never both."""
    image: Optional[GeneratedImage] = None
    error: Optional[GenerationError] = None

    def __post_init__(self) -> None:
        if (self.image is None) == (self.error is None):
            raise ValueError("GenerationOutcome needs exactly one of image / error")

    @property
    def ok(self) -> bool:
        return self.image is not None


# ── Persisted records ─────────────────────────────────────────────────────────

def _now_ms() -> int:
    return int(time.time() * 1000)


class Design(BaseModel):
    """A finalized asset. Never mutated: edits produce a new Design."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    prompt: str
    style: StickerStyle
    kind: DesignKind
    image: bytes = Field(repr=False)
    mime_type: str = "image/png"
    created_at: int = Field(default_factory=_now_ms)

    @field_validator("image", mode="before")
    @classmethod
    def _decode_image(cls, value):
        if isinstance(value, str):
            return base64.b64decode(value)
        return value

    @field_serializer("image", when_used="json")
    def _encode_image(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{base64.b64encode(self.image).decode('ascii')}"

    def as_image_part(self) -> ImagePart:
        return ImagePart(self.image, self.mime_type)


class ConversationTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Literal["user", "assistant"]
    text: str
    attachment: Optional[Design] = None
    related_prompt: Optional[str] = None

