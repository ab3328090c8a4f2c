"""Shared fixtures: scripted provider fakes and tiny PNG builders."""

from __future__ import annotations

import io
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pytest
from PIL import Image

from vyllo.conversation import ConversationController
from vyllo.generator import ImageGenerationOrchestrator
from vyllo.history import InMemoryHistoryStore
from vyllo.mockup_compositor import MockupCompositor
from vyllo.refiner import PromptRefiner
from vyllo.retry import RetryingInvoker, RetryPolicy
from vyllo.types import GeneratedImage, ImageConfig, PromptPart


def make_png(
    width: int = 8,
    height: int = 8,
    background: Tuple[int, int, int] = (255, 255, 255),
    box: Optional[Tuple[int, int, int, int]] = None,
    box_color: Tuple[int, int, int] = (200, 30, 30),
) -> bytes:
    """RGB PNG filled with background, optionally with a solid box (x0, y0, x1, y1) exclusive."""
    arr = np.zeros((height, width, 3), dtype=np.uint8)
    arr[:, :] = background
    if box is not None:
        x0, y0, x1, y1 = box
        arr[y0:y1, x0:x1] = box_color
    out = io.BytesIO()
    Image.fromarray(arr, "RGB").save(out, format="PNG")
    return out.getvalue()


def alpha_channel(png: bytes) -> np.ndarray:
    with Image.open(io.BytesIO(png)) as img:
        return np.array(img.convert("RGBA"))[:, :, 3]


ScriptItem = Union[GeneratedImage, BaseException]


class FakeImageClient:
    """Returns scripted images / raises scripted errors, recording every call."""

    def __init__(self, script: Sequence[ScriptItem] = ()) -> None:
        self.script: List[ScriptItem] = list(script)
        self.calls: List[Tuple[List[PromptPart], ImageConfig]] = []

    async def synthesize(self, parts: Sequence[PromptPart], image_config: ImageConfig) -> GeneratedImage:
        self.calls.append((list(parts), image_config))
        item = self.script.pop(0) if self.script else GeneratedImage(make_png(box=(2, 2, 6, 6)))
        if isinstance(item, BaseException):
            raise item
        return item


class FakeTextClient:
    def __init__(self, replies: Sequence[Union[str, BaseException]] = ()) -> None:
        self.replies = list(replies)
        self.prompts: List[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, BaseException):
            raise reply
        return reply


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def invoker(sleep: RecordingSleep) -> RetryingInvoker:
    return RetryingInvoker(RetryPolicy(base_delay=2.0, jitter=1.0, max_retries=3), sleep=sleep, rand=lambda a, b: 0.5)


@pytest.fixture
def image_client() -> FakeImageClient:
    return FakeImageClient()


@pytest.fixture
def text_client() -> FakeTextClient:
    return FakeTextClient()


@pytest.fixture
def history() -> InMemoryHistoryStore:
    return InMemoryHistoryStore()


@pytest.fixture
def controller(image_client, text_client, invoker, history) -> ConversationController:
    return ConversationController(
        orchestrator=ImageGenerationOrchestrator(image_client, invoker),
        refiner=PromptRefiner(text_client),
        compositor=MockupCompositor(image_client, invoker),
        history=history,
    )
