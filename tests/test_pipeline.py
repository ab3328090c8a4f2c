from __future__ import annotations

from conftest import FakeImageClient, FakeTextClient
from vyllo.config import Settings
from vyllo.history import InMemoryHistoryStore, JsonlHistoryStore
from vyllo.main import KIND_CHOICES, parse_args
from vyllo.pipeline import build_controller
from vyllo.types import DesignKind, StickerStyle


async def test_build_controller_wires_settings(tmp_path):
    settings = Settings(matte_threshold=200, max_retries=1, history_path=tmp_path / "h.jsonl")
    controller = build_controller(settings, image_client=FakeImageClient(), text_client=FakeTextClient())

    assert isinstance(controller.history, JsonlHistoryStore)
    assert controller.orchestrator.matte_threshold == 200
    assert controller.orchestrator.invoker.policy.max_retries == 1
    assert controller.compositor.invoker is controller.orchestrator.invoker

    designs = await controller.create("fox", StickerStyle.KAWAII)
    assert controller.history.load_all() == designs


def test_build_controller_uses_given_history():
    history = InMemoryHistoryStore()
    controller = build_controller(
        Settings(), history=history, image_client=FakeImageClient(), text_client=FakeTextClient()
    )
    assert controller.history is history


def test_cli_arguments():
    args = parse_args(["--prompt", "neon koi", "--kind", "print", "--style", "y2k", "--count", "2"])
    assert args.prompt == "neon koi"
    assert KIND_CHOICES[args.kind] is DesignKind.FASHION
    assert StickerStyle.parse(args.style) is StickerStyle.Y2K
    assert args.count == 2
    assert not args.list_history
