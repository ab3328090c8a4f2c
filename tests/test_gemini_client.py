from __future__ import annotations

import base64
from types import SimpleNamespace

import pytest

from vyllo.errors import (
    InvalidRequestError,
    NoImageReturnedError,
    RateLimitedError,
    UnavailableError,
)
from vyllo.gemini_client import GeminiImageClient, GeminiTextClient, classify_error, extract_image
from vyllo.types import AspectRatio, ImageConfig, ImagePart


class ProviderError(Exception):
    def __init__(self, message, code=None, status=None):
        super().__init__(message)
        self.code = code
        self.status = status


def image_response(data=b"img", mime_type="image/png"):
    inline = SimpleNamespace(data=data, mime_type=mime_type)
    text_part = SimpleNamespace(inline_data=None, text="here you go")
    content = SimpleNamespace(parts=[text_part, SimpleNamespace(inline_data=inline)])
    return SimpleNamespace(candidates=[SimpleNamespace(content=content)])


class FakeModels:
    def __init__(self, results):
        self.results = list(results)
        self.calls = []

    async def generate_content(self, model, contents, config=None):
        self.calls.append((model, contents, config))
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


def fake_genai(results):
    models = FakeModels(results)
    return SimpleNamespace(aio=SimpleNamespace(models=models)), models


@pytest.mark.parametrize(
    "exc, expected",
    [
        (ProviderError("Too many requests", code=429), RateLimitedError),
        (ProviderError("x", status="RESOURCE_EXHAUSTED"), RateLimitedError),
        (RuntimeError("Quota exceeded for metric"), RateLimitedError),
        (ProviderError("bad prompt", code=400), InvalidRequestError),
        (ProviderError("internal", code=500), UnavailableError),
        (ConnectionError("reset by peer"), UnavailableError),
    ],
)
def test_classify_error(exc, expected):
    assert type(classify_error(exc)) is expected


def test_classify_error_passes_through_classified():
    err = InvalidRequestError("already classified")
    assert classify_error(err) is err


def test_extract_image_decodes_base64_strings():
    raw = b"\x89PNG..."
    image = extract_image(image_response(data=base64.b64encode(raw).decode()))
    assert image.data == raw


def test_extract_image_rejects_malformed_base64():
    with pytest.raises(NoImageReturnedError):
        extract_image(image_response(data="not*base64!"))


def test_extract_image_none_without_inline_data():
    empty = SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[]))])
    assert extract_image(empty) is None
    assert extract_image(SimpleNamespace(candidates=None)) is None


async def test_image_client_walks_model_ladder():
    client, models = fake_genai([ProviderError("model not found", code=404), image_response()])
    image_client = GeminiImageClient(models=["missing-model", "good-model"], client=client)

    image = await image_client.synthesize(
        [ImagePart(b"ref", "image/jpeg"), "draw a fox"], ImageConfig(AspectRatio.PORTRAIT)
    )

    assert image.data == b"img"
    assert [c[0] for c in models.calls] == ["missing-model", "good-model"]
    assert models.calls[1][2].image_config.aspect_ratio == "3:4"


async def test_image_client_classifies_rate_limit():
    client, _ = fake_genai([ProviderError("429 RESOURCE_EXHAUSTED", code=429)])
    with pytest.raises(RateLimitedError):
        await GeminiImageClient(models=["m"], client=client).synthesize(["fox"], ImageConfig())


async def test_image_client_without_image_payload():
    client, _ = fake_genai([SimpleNamespace(candidates=[])])
    with pytest.raises(NoImageReturnedError):
        await GeminiImageClient(models=["m"], client=client).synthesize(["fox"], ImageConfig())


async def test_image_client_all_models_missing():
    client, _ = fake_genai([ProviderError("not found", code=404)] * 2)
    with pytest.raises(UnavailableError):
        await GeminiImageClient(models=["a", "b"], client=client).synthesize(["fox"], ImageConfig())


async def test_text_client_returns_text():
    client, models = fake_genai([SimpleNamespace(text="a blue fox")])
    assert await GeminiTextClient(model="text-model", client=client).complete("rewrite") == "a blue fox"
    assert models.calls[0][:2] == ("text-model", "rewrite")


def test_missing_api_key_is_invalid_request():
    with pytest.raises(InvalidRequestError):
        GeminiTextClient(api_key="")
