"""
pipeline.py: Wires settings, Gemini clients and the history log into a controller.

Used by both the terminal CLI (vyllo.main) and the Telegram bot.
"""

from __future__ import annotations

from typing import Optional

from .config import Settings
from .conversation import ConversationController
from .gemini_client import GeminiImageClient, GeminiTextClient, GenerationClient, TextCompletionClient
from .generator import ImageGenerationOrchestrator
from .history import HistoryStore, JsonlHistoryStore
from .mockup_compositor import MockupCompositor
from .refiner import PromptRefiner
from .retry import RetryingInvoker


def build_controller(
    settings: Settings,
    history: Optional[HistoryStore] = None,
    image_client: Optional[GenerationClient] = None,
    text_client: Optional[TextCompletionClient] = None,
) -> ConversationController:
    image_client = image_client or GeminiImageClient.from_settings(settings)
    text_client = text_client or GeminiTextClient.from_settings(settings)
    invoker = RetryingInvoker(settings.retry_policy())

    return ConversationController(
        orchestrator=ImageGenerationOrchestrator(image_client, invoker, settings.matte_threshold),
        refiner=PromptRefiner(text_client),
        compositor=MockupCompositor(image_client, invoker),
        history=history if history is not None else JsonlHistoryStore(settings.history_path),
    )
