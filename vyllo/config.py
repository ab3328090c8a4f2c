"""
config.py: Runtime settings read from the environment (.env supported).

Required:
    GEMINI_API_KEY=...            (GOOGLE_API_KEY accepted as fallback)

Optional:
    VYLLO_IMAGE_MODELS=gemini-2.5-flash-image,gemini-2.0-flash-exp-image-generation
    VYLLO_TEXT_MODEL=gemini-2.5-flash
    VYLLO_MATTE_THRESHOLD=230
    VYLLO_RETRY_BASE_SECONDS=2.0
    VYLLO_RETRY_JITTER_SECONDS=1.0
    VYLLO_MAX_RETRIES=3
    VYLLO_REQUEST_TIMEOUT_SECONDS=90
    VYLLO_HISTORY_PATH=outputs/history.jsonl
    VYLLO_OUTPUT_DIR=outputs
    TELEGRAM_BOT_TOKEN=...
    TELEGRAM_ALLOWED_CHAT_IDS=123456,789012
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Callable, FrozenSet, Mapping, Optional, Tuple, TypeVar

from dotenv import load_dotenv

from .retry import RetryPolicy

T = TypeVar("T")

DEFAULT_IMAGE_MODELS: Tuple[str, ...] = (
    "gemini-2.5-flash-image",
    "gemini-2.0-flash-exp-image-generation",
)
DEFAULT_TEXT_MODEL = "gemini-2.5-flash"
DEFAULT_MATTE_THRESHOLD = 230


@dataclass(frozen=True)
class Settings:
    gemini_api_key: str = ""
    image_models: Tuple[str, ...] = DEFAULT_IMAGE_MODELS
    text_model: str = DEFAULT_TEXT_MODEL
    matte_threshold: int = DEFAULT_MATTE_THRESHOLD
    retry_base_seconds: float = 2.0
    retry_jitter_seconds: float = 1.0
    max_retries: int = 3
    request_timeout_seconds: float = 90.0
    history_path: Path = Path("outputs/history.jsonl")
    output_dir: Path = Path("outputs")
    telegram_bot_token: str = ""
    telegram_allowed_chat_ids: FrozenSet[int] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not 0 <= self.matte_threshold <= 255:
            raise ValueError(f"matte_threshold must be within 0..255, got {self.matte_threshold}")
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if not self.image_models:
            raise ValueError("at least one image model is required")

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            base_delay=self.retry_base_seconds,
            jitter=self.retry_jitter_seconds,
            max_retries=self.max_retries,
        )

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env

        def read(name: str, parse: Callable[[str], T], default: T) -> T:
            raw = env.get(name, "").strip()
            if not raw:
                return default
            try:
                return parse(raw)
            except ValueError as exc:
                raise ValueError(f"Invalid value for {name}: {raw!r}") from exc

        models = tuple(m.strip() for m in env.get("VYLLO_IMAGE_MODELS", "").split(",") if m.strip())
        chat_ids = read(
            "TELEGRAM_ALLOWED_CHAT_IDS",
            lambda s: frozenset(int(c) for c in s.split(",") if c.strip()),
            frozenset(),
        )

        return cls(
            gemini_api_key=env.get("GEMINI_API_KEY") or env.get("GOOGLE_API_KEY") or "",
            image_models=models or DEFAULT_IMAGE_MODELS,
            text_model=env.get("VYLLO_TEXT_MODEL", "").strip() or DEFAULT_TEXT_MODEL,
            matte_threshold=read("VYLLO_MATTE_THRESHOLD", int, DEFAULT_MATTE_THRESHOLD),
            retry_base_seconds=read("VYLLO_RETRY_BASE_SECONDS", float, 2.0),
            retry_jitter_seconds=read("VYLLO_RETRY_JITTER_SECONDS", float, 1.0),
            max_retries=read("VYLLO_MAX_RETRIES", int, 3),
            request_timeout_seconds=read("VYLLO_REQUEST_TIMEOUT_SECONDS", float, 90.0),
            history_path=Path(env.get("VYLLO_HISTORY_PATH", "").strip() or "outputs/history.jsonl"),
            output_dir=Path(env.get("VYLLO_OUTPUT_DIR", "").strip() or "outputs"),
            telegram_bot_token=env.get("TELEGRAM_BOT_TOKEN", "").strip(),
            telegram_allowed_chat_ids=chat_ids,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_dotenv()
    return Settings.from_env()
