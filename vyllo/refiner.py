"""
refiner.py: Rewrites a generation prompt from conversational feedback.

Never fails: if the text model errors, the instruction is appended to the
current prompt so the caller always has something to generate from.
"""

from __future__ import annotations

import logging

from .gemini_client import TextCompletionClient

logger = logging.getLogger(__name__)


def build_refine_prompt(current_prompt: str, user_instruction: str) -> str:
    return (
        "Task: Rewrite an image generation prompt based on user feedback.\n\n"
        f'Original Prompt: "{current_prompt}"\n'
        f'User Change Request: "{user_instruction}"\n\n'
        "Instructions:\n"
        "1. Keep the core subject and style of the Original Prompt unless the user "
        "explicitly asks to change it.\n"
        "2. Integrate the User Change Request naturally into the description.\n"
        "3. Return ONLY the new prompt string. Do not add explanations."
    )


def fallback_prompt(current_prompt: str, user_instruction: str) -> str:
    return current_prompt + " " + user_instruction


def _clean(text: str) -> str:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        text = text[1:-1].strip()
    return text


class PromptRefiner:
    def __init__(self, client: TextCompletionClient) -> None:
        self.client = client

    async def refine(self, current_prompt: str, user_instruction: str) -> str:
        try:
            raw = await self.client.complete(build_refine_prompt(current_prompt, user_instruction))
        except Exception as exc:
            logger.warning("Prompt refinement failed (%s), falling back to concatenation", exc)
            return fallback_prompt(current_prompt, user_instruction)

        refined = _clean(raw)
        if not refined:
            logger.info("Prompt refinement returned nothing, keeping current prompt")
            return current_prompt
        logger.debug("Refined prompt: %r → %r", current_prompt, refined)
        return refined
