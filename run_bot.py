#!/usr/bin/env python3
"""
run_bot.py: Vyllo Telegram Bot entry point.

Usage:
    python run_bot.py

Required env vars (in .env):
    GEMINI_API_KEY=...
    TELEGRAM_BOT_TOKEN=...

Optional:
    TELEGRAM_ALLOWED_CHAT_IDS=123456,789012   # whitelist (leave empty = allow all)
    VYLLO_* settings, see vyllo/config.py
"""

from __future__ import annotations

import logging
import sys

from vyllo.config import get_settings

logging.basicConfig(
    format="%(asctime)s — %(levelname)s — %(name)s — %(message)s",
    level=logging.INFO,
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def main() -> None:
    try:
        settings = get_settings()
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)

    if not settings.telegram_bot_token:
        logger.error("TELEGRAM_BOT_TOKEN not set in environment / .env")
        sys.exit(1)

    if not settings.gemini_api_key:
        logger.error("GEMINI_API_KEY not set in environment / .env")
        sys.exit(1)

    logger.info("Starting Vyllo bot (image models: %s)", ", ".join(settings.image_models))
    logger.info("Polling for updates, press Ctrl+C to stop")

    from bot.telegram_bot import build_app
    app = build_app(settings)
    app.run_polling(drop_pending_updates=True)


if __name__ == "__main__":
    main()
