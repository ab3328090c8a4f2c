"""
telegram_bot.py: Vyllo Telegram Bot

Chat-driven sticker / print design with virtual try-on.

Flow per chat:
  /start             → welcome + style keyboard
  /style, /kind      → pick style / design kind (inline keyboards)
  photo (no design)  → stored as reference image for the next /new
  /new <prompt>      → generate a design (plain text works too before a design exists)
  free text          → edit the design, or the mockup when viewing one
  /mockup            → preset keyboard, or /mockup <description>
  photo (design)     → try the design on the uploaded photo
  /design            → back to editing the design
  /cancel            → close the session

Each chat owns one ConversationController kept in chat_data.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ChatAction
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from vyllo.config import Settings
from vyllo.conversation import ConversationController
from vyllo.errors import NoActiveDesignError, SessionBusyError, VylloError
from vyllo.gemini_client import GeminiImageClient, GeminiTextClient
from vyllo.history import JsonlHistoryStore
from vyllo.mockup_compositor import CUSTOM_MODEL_DESCRIPTION, MOCKUP_PRESETS, get_preset
from vyllo.pipeline import build_controller
from vyllo.types import ConversationTurn, DesignKind, ImagePart, StickerStyle, ViewMode

logger = logging.getLogger(__name__)

# ── Keyboards ─────────────────────────────────────────────────────────────────

def _rows(buttons: List[InlineKeyboardButton], width: int = 2) -> List[List[InlineKeyboardButton]]:
    return [buttons[i:i + width] for i in range(0, len(buttons), width)]


STYLE_KEYBOARD = InlineKeyboardMarkup(_rows([
    InlineKeyboardButton(style.value, callback_data=f"style:{style.name}") for style in StickerStyle
]))

KIND_KEYBOARD = InlineKeyboardMarkup([[
    InlineKeyboardButton("🏷 Sticker", callback_data=f"kind:{DesignKind.STICKER.name}"),
    InlineKeyboardButton("👕 Fashion Print", callback_data=f"kind:{DesignKind.FASHION.name}"),
]])

MOCKUP_KEYBOARD = InlineKeyboardMarkup(_rows([
    InlineKeyboardButton(preset.label, callback_data=f"mockup:{preset.id}") for preset in MOCKUP_PRESETS
], width=3))


# ── Context keys ──────────────────────────────────────────────────────────────

CONTROLLER_KEY = "controller"
STYLE_KEY = "style"
KIND_KEY = "kind"
REFERENCE_KEY = "reference"

SETTINGS_KEY = "settings"
IMAGE_CLIENT_KEY = "image_client"
TEXT_CLIENT_KEY = "text_client"
HISTORY_KEY = "history"

BUSY_TEXT = "⏳ Still working on your last request, one moment..."


# ── Helpers ───────────────────────────────────────────────────────────────────

def get_controller(context: ContextTypes.DEFAULT_TYPE) -> ConversationController:
    if CONTROLLER_KEY not in context.chat_data:
        bot_data = context.bot_data
        context.chat_data[CONTROLLER_KEY] = build_controller(
            bot_data[SETTINGS_KEY],
            history=bot_data[HISTORY_KEY],
            image_client=bot_data[IMAGE_CLIENT_KEY],
            text_client=bot_data[TEXT_CLIENT_KEY],
        )
    return context.chat_data[CONTROLLER_KEY]


def current_style(context: ContextTypes.DEFAULT_TYPE) -> StickerStyle:
    return context.chat_data.get(STYLE_KEY, StickerStyle.KAWAII)


def current_kind(context: ContextTypes.DEFAULT_TYPE) -> DesignKind:
    return context.chat_data.get(KIND_KEY, DesignKind.STICKER)


async def send_typing(update: Update) -> None:
    await update.effective_chat.send_action(ChatAction.UPLOAD_PHOTO)


async def send_turns(update: Update, turns: List[ConversationTurn]) -> None:
    """Deliver assistant turns: photo + caption when there is an attachment."""
    message = update.effective_message
    for turn in turns:
        if turn.role != "assistant":
            continue
        if turn.attachment is not None:
            await message.reply_photo(photo=turn.attachment.image, caption=turn.text[:1024])
        else:
            await message.reply_text(turn.text)


async def _download_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> Optional[ImagePart]:
    """Fetch a compressed photo or an image sent as a file into memory."""
    message = update.effective_message
    if message.photo:
        file = await context.bot.get_file(message.photo[-1].file_id)
        mime_type = "image/jpeg"
    elif message.document:
        file = await context.bot.get_file(message.document.file_id)
        mime_type = message.document.mime_type or "image/jpeg"
    else:
        return None
    data = await file.download_as_bytearray()
    return ImagePart(data=bytes(data), mime_type=mime_type)


async def _run(update: Update, controller: ConversationController, operation) -> bool:
    """
    Await a controller operation and send whatever it added to the transcript.

    create() opens a fresh session, so when the session object changes the
    whole new transcript is sent. Returns False if the operation was rejected.
    """
    session = controller.session
    before = len(controller.transcript)
    await send_typing(update)
    try:
        await operation
    except SessionBusyError:
        await update.effective_message.reply_text(BUSY_TEXT)
        return False
    except VylloError as exc:
        logger.warning("Request failed: %s", exc)
        await update.effective_message.reply_text(f"⚠️ {exc}")
        return False
    if controller.session is not session:
        before = 0
    await send_turns(update, controller.transcript[before:])
    return True


# ── Commands ──────────────────────────────────────────────────────────────────

async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(
        "👋 Welcome to Vyllo!\n\n"
        "Describe a sticker or print and I'll draw it. Send a photo first to use it as a reference.\n"
        "Commands: /new <prompt>, /style, /kind, /mockup, /design, /cancel\n\n"
        "Pick a style to begin:",
        reply_markup=STYLE_KEYBOARD,
    )


async def cmd_style(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(
        f"Current style: {current_style(context).value}", reply_markup=STYLE_KEYBOARD
    )


async def cmd_kind(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(
        f"Current kind: {current_kind(context).value}", reply_markup=KIND_KEYBOARD
    )


async def cmd_new(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    prompt = " ".join(context.args or []).strip()
    if not prompt:
        await update.message.reply_text("Usage: /new <what to draw>, e.g. /new a sleepy fox with a coffee")
        return
    await _create(update, context, prompt)


async def _create(update: Update, context: ContextTypes.DEFAULT_TYPE, prompt: str) -> None:
    controller = get_controller(context)
    style, kind = current_style(context), current_kind(context)
    reference = context.chat_data.get(REFERENCE_KEY)
    await update.effective_message.reply_text(f"🎨 Drawing a {kind.noun} ({style.value})...")
    if await _run(update, controller, controller.create(prompt, style, kind, 1, reference)):
        context.chat_data.pop(REFERENCE_KEY, None)


async def cmd_mockup(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    controller = get_controller(context)
    if controller.session is None:
        await update.message.reply_text("Create a design first with /new <prompt>.")
        return
    description = " ".join(context.args or []).strip()
    if not description:
        await update.message.reply_text("Choose a model, or send /mockup <description>:", reply_markup=MOCKUP_KEYBOARD)
        return
    preset = get_preset(description)
    await _run(update, controller, controller.try_on(preset.prompt if preset else description))


async def cmd_design(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    controller = get_controller(context)
    try:
        controller.set_view_mode(ViewMode.DESIGN)
    except NoActiveDesignError:
        await update.message.reply_text("No design yet. Try /new <prompt>.")
        return
    await update.message.reply_text("✏️ Now editing the design. Describe a change.")


async def cmd_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    controller = get_controller(context)
    try:
        controller.close()
    except SessionBusyError:
        await update.message.reply_text(BUSY_TEXT)
        return
    context.chat_data.pop(REFERENCE_KEY, None)
    await update.message.reply_text("👋 Session closed. Send /new <prompt> to start again.")


# ── Callbacks ─────────────────────────────────────────────────────────────────

async def on_style(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    style = StickerStyle[query.data.split(":", 1)[1]]
    context.chat_data[STYLE_KEY] = style
    await query.edit_message_text(f"✅ Style: {style.value}\n\nNow describe your design (or /kind to switch).")


async def on_kind(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    kind = DesignKind[query.data.split(":", 1)[1]]
    context.chat_data[KIND_KEY] = kind
    await query.edit_message_text(f"✅ Kind: {kind.value}")


async def on_mockup(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    preset = get_preset(query.data.split(":", 1)[1])
    if preset is None:
        return
    await query.edit_message_text(f"👕 {preset.label}")
    controller = get_controller(context)
    await _run(update, controller, controller.try_on(preset.prompt))


# ── Messages ──────────────────────────────────────────────────────────────────

async def on_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    text = (update.message.text or "").strip()
    if not text:
        return
    controller = get_controller(context)
    if controller.session is None:
        await _create(update, context, text)
        return
    await _run(update, controller, controller.handle_instruction(text))


async def on_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    photo = await _download_photo(update, context)
    if photo is None:
        return
    controller = get_controller(context)
    if controller.session is None:
        context.chat_data[REFERENCE_KEY] = photo
        await update.message.reply_text("📎 Reference saved. Now describe what to draw.")
        return
    await update.message.reply_text("🪄 Applying your design to this photo...")
    await _run(update, controller, controller.try_on(CUSTOM_MODEL_DESCRIPTION, photo))


# ── Error handler ─────────────────────────────────────────────────────────────

async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Exception while handling update:", exc_info=context.error)
    if isinstance(update, Update) and update.effective_message:
        await update.effective_message.reply_text("⚠️ Something went wrong. Try /cancel then /new.")


# ── App builder ───────────────────────────────────────────────────────────────

def build_app(settings: Settings) -> Application:
    # Updates run concurrently; each controller rejects overlapping operations itself.
    app = Application.builder().token(settings.telegram_bot_token).concurrent_updates(True).build()

    app.bot_data[SETTINGS_KEY] = settings
    app.bot_data[IMAGE_CLIENT_KEY] = GeminiImageClient.from_settings(settings)
    app.bot_data[TEXT_CLIENT_KEY] = GeminiTextClient.from_settings(settings)
    app.bot_data[HISTORY_KEY] = JsonlHistoryStore(settings.history_path)

    allowed = filters.ALL
    if settings.telegram_allowed_chat_ids:
        allowed = filters.Chat(chat_id=list(settings.telegram_allowed_chat_ids))

    for name, callback in (
        ("start", cmd_start),
        ("new", cmd_new),
        ("style", cmd_style),
        ("kind", cmd_kind),
        ("mockup", cmd_mockup),
        ("design", cmd_design),
        ("cancel", cmd_cancel),
    ):
        app.add_handler(CommandHandler(name, callback, filters=allowed))

    app.add_handler(CallbackQueryHandler(on_style, pattern="^style:"))
    app.add_handler(CallbackQueryHandler(on_kind, pattern="^kind:"))
    app.add_handler(CallbackQueryHandler(on_mockup, pattern="^mockup:"))

    app.add_handler(MessageHandler(allowed & (filters.PHOTO | filters.Document.IMAGE), on_photo))
    app.add_handler(MessageHandler(allowed & filters.TEXT & ~filters.COMMAND, on_text))

    app.add_error_handler(error_handler)
    return app
