from __future__ import annotations

import pytest

from conftest import FakeImageClient, alpha_channel, make_png
from vyllo.errors import InvalidRequestError, RateLimitedError, UnavailableError
from vyllo.generator import ImageGenerationOrchestrator, build_parts
from vyllo.types import (
    AspectRatio,
    DesignKind,
    GeneratedImage,
    GenerationRequest,
    ImagePart,
    StickerStyle,
)


def png_image(**kwargs) -> GeneratedImage:
    return GeneratedImage(make_png(**kwargs))


async def test_partial_batch_keeps_successes_in_order(invoker):
    client = FakeImageClient([
        png_image(box=(1, 1, 3, 3)),
        UnavailableError("model overloaded"),
        png_image(box=(4, 4, 6, 6)),
    ])
    orchestrator = ImageGenerationOrchestrator(client, invoker)

    designs = await orchestrator.generate("a red fox", StickerStyle.KAWAII, count=3)

    assert len(designs) == 2
    assert len(client.calls) == 3
    assert alpha_channel(designs[0].image)[1, 1] == 255
    assert alpha_channel(designs[1].image)[4, 4] == 255
    assert all(d.prompt == "a red fox" and d.kind is DesignKind.STICKER for d in designs)
    assert len({d.id for d in designs}) == 2


async def test_all_items_failing_raises_last_error(invoker):
    client = FakeImageClient([UnavailableError("first"), InvalidRequestError("second")])
    orchestrator = ImageGenerationOrchestrator(client, invoker)

    with pytest.raises(InvalidRequestError, match="second"):
        await orchestrator.generate("a red fox", StickerStyle.KAWAII, count=2)


async def test_rate_limited_item_is_retried_before_success(invoker, sleep):
    client = FakeImageClient([RateLimitedError("429"), png_image()])
    orchestrator = ImageGenerationOrchestrator(client, invoker)

    designs = await orchestrator.generate("cat", StickerStyle.PIXEL)

    assert len(designs) == 1
    assert sleep.delays == [2.5]


async def test_graphic_designs_are_matted(invoker):
    client = FakeImageClient([png_image(width=6, height=6, box=(2, 2, 4, 4))])
    orchestrator = ImageGenerationOrchestrator(client, invoker)

    design = (await orchestrator.generate("cat", StickerStyle.KAWAII, DesignKind.FASHION))[0]

    alpha = alpha_channel(design.image)
    assert alpha[0, 0] == 0
    assert alpha[3, 3] == 255
    assert design.mime_type == "image/png"


async def test_undecodable_payload_is_kept_raw(invoker):
    client = FakeImageClient([GeneratedImage(b"raw-bytes", "image/webp")])
    orchestrator = ImageGenerationOrchestrator(client, invoker)

    design = (await orchestrator.generate("cat", StickerStyle.KAWAII))[0]

    assert design.image == b"raw-bytes"
    assert design.mime_type == "image/webp"


async def test_requests_are_square_and_reference_comes_first(invoker):
    client = FakeImageClient()
    orchestrator = ImageGenerationOrchestrator(client, invoker)
    reference = ImagePart(b"ref", "image/jpeg")

    await orchestrator.generate("my dog", StickerStyle.VINTAGE, reference_image=reference)

    parts, config = client.calls[0]
    assert config.aspect_ratio is AspectRatio.SQUARE
    assert parts[0] == reference
    assert parts[1].startswith("REFERENCE IMAGE INSTRUCTIONS:")
    assert "Subject: my dog" in parts[1]


@pytest.mark.parametrize("count", [0, -1])
async def test_count_must_be_positive(invoker, count):
    orchestrator = ImageGenerationOrchestrator(FakeImageClient(), invoker)
    with pytest.raises(InvalidRequestError):
        await orchestrator.generate("cat", StickerStyle.KAWAII, count=count)


async def test_empty_prompt_rejected_before_any_call(invoker):
    client = FakeImageClient()
    orchestrator = ImageGenerationOrchestrator(client, invoker)
    with pytest.raises(InvalidRequestError):
        await orchestrator.generate("   ", StickerStyle.KAWAII)
    assert client.calls == []


def test_sticker_and_print_templates_differ():
    sticker = build_parts(GenerationRequest("owl", StickerStyle.KAWAII, DesignKind.STICKER))
    fashion = build_parts(GenerationRequest("owl", StickerStyle.STREETWEAR, DesignKind.FASHION))

    assert len(sticker) == 1
    assert "die-cut sticker" in sticker[0]
    assert "clothing" in fashion[0]
    assert "Fashion Style/Aesthetic: Streetwear / Urban" in fashion[0]


async def test_unclassified_item_error_keeps_earlier_designs(invoker):
    client = FakeImageClient([png_image(), ValueError("Incorrect padding")])
    orchestrator = ImageGenerationOrchestrator(client, invoker)

    designs = await orchestrator.generate("cat", StickerStyle.KAWAII, count=2)

    assert len(designs) == 1
    assert len(client.calls) == 2


async def test_unclassified_errors_are_raised_classified_when_all_fail(invoker):
    client = FakeImageClient([RuntimeError("connection reset")])
    orchestrator = ImageGenerationOrchestrator(client, invoker)

    with pytest.raises(UnavailableError, match="connection reset"):
        await orchestrator.generate("cat", StickerStyle.KAWAII)
