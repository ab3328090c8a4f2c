from __future__ import annotations

import pytest

from conftest import FakeImageClient, make_png
from vyllo.errors import InvalidRequestError, RateLimitedError
from vyllo.mockup_compositor import (
    CUSTOM_MODEL_DESCRIPTION,
    MOCKUP_PRESETS,
    MockupCompositor,
    build_mockup_request,
    get_preset,
)
from vyllo.types import AspectRatio, Design, DesignKind, GeneratedImage, ImagePart, StickerStyle

DESIGN = ImagePart(b"design-png", "image/png")
PHOTO = ImagePart(b"photo-jpg", "image/jpeg")


def test_generated_scene_is_portrait_with_description():
    parts, config = build_mockup_request(DESIGN, "A model wearing a black hoodie")
    assert config.aspect_ratio is AspectRatio.PORTRAIT
    assert parts[0] == DESIGN
    assert len(parts) == 2
    assert "Target Scene Description: A model wearing a black hoodie" in parts[1]


def test_custom_photo_is_square_and_ordered():
    parts, config = build_mockup_request(DESIGN, CUSTOM_MODEL_DESCRIPTION, PHOTO)
    assert config.aspect_ratio is AspectRatio.SQUARE
    assert parts[:2] == [DESIGN, PHOTO]
    assert parts[2].startswith("Task: Realistic Virtual Try-On")


def test_description_required_without_photo():
    with pytest.raises(InvalidRequestError):
        build_mockup_request(DESIGN, "  ")


@pytest.mark.parametrize("key", ["hoodie", "HOODIE", "Hoodie", " hoodie "])
def test_preset_lookup_by_id_or_label(key):
    assert get_preset(key).id == "hoodie"


def test_preset_lookup_by_label_and_unknown():
    assert get_preset("woman tee").id == "f-tee"
    assert get_preset("spacesuit") is None
    assert len({p.id for p in MOCKUP_PRESETS}) == len(MOCKUP_PRESETS)


async def test_create_mockup_keeps_style_and_is_not_matted(invoker):
    white = make_png(box=(2, 2, 4, 4))
    client = FakeImageClient([GeneratedImage(white, "image/png")])
    design = Design(prompt="a red fox", style=StickerStyle.POP_ART, kind=DesignKind.STICKER, image=b"fox")

    mockup = await MockupCompositor(client, invoker).create_mockup(design, "A baseball cap placed on a modern desk")

    assert mockup.kind is DesignKind.MOCKUP
    assert mockup.style is StickerStyle.POP_ART
    assert mockup.prompt == "A baseball cap placed on a modern desk"
    assert mockup.image == white
    assert client.calls[0][0][0] == ImagePart(b"fox", "image/png")


async def test_composite_retries_rate_limits(invoker, sleep):
    client = FakeImageClient([RateLimitedError("429"), GeneratedImage(b"ok")])
    image = await MockupCompositor(client, invoker).composite(DESIGN, "A tote bag")
    assert image.data == b"ok"
    assert len(sleep.delays) == 1
