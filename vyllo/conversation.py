"""
conversation.py: Chat-driven refinement of a design and its mockups.

State machine (one instruction at a time):

    IDLE ──instruction──▶ AWAITING_MOCKUP_EDIT   view = mockup and a mockup
      ▲                                          description is active
      │                ▶ AWAITING_DESIGN_EDIT    otherwise
      └──── reply appended (success or apology) ◀┘

All mutable state lives in an explicit Session owned by the controller and
passed to every step. The transcript is append-only; a failed edit adds an
apology and leaves the active images and prompts as they were.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional

from .errors import InvalidRequestError, NoActiveDesignError, SessionBusyError
from .generator import ImageGenerationOrchestrator
from .history import HistoryStore
from .mockup_compositor import MockupCompositor, get_preset
from .refiner import PromptRefiner
from .types import (
    ConversationTurn,
    Design,
    DesignKind,
    ImagePart,
    StickerStyle,
    ViewMode,
)

logger = logging.getLogger(__name__)

EDIT_FAILED_TEXT = "Sorry, I couldn't process that change. Please try again."
MOCKUP_FAILED_TEXT = "Sorry, I couldn't generate the mockup. Please try again."
DESIGN_UPDATED_TEXT = "Here is the updated version."


class ControllerState(str, Enum):
    IDLE = "idle"
    AWAITING_DESIGN_EDIT = "awaiting_design_edit"
    AWAITING_MOCKUP_EDIT = "awaiting_mockup_edit"


@dataclass
class Session:
    source: Design                  # item opened from history; supplies style / kind
    active_design: Design           # latest design image (replaced by design edits)
    design_prompt: str
    view_mode: ViewMode = ViewMode.DESIGN
    mockup: Optional[Design] = None
    mockup_prompt: str = ""
    transcript: List[ConversationTurn] = field(default_factory=list)
    state: ControllerState = ControllerState.IDLE

    @property
    def active_image(self) -> Design:
        """What the user is looking at right now."""
        if self.view_mode is ViewMode.MOCKUP and self.mockup is not None:
            return self.mockup
        return self.active_design


def select_edit_state(session: Session) -> ControllerState:
    if session.view_mode is ViewMode.MOCKUP and session.mockup_prompt:
        return ControllerState.AWAITING_MOCKUP_EDIT
    return ControllerState.AWAITING_DESIGN_EDIT


def greeting_text(design: Design) -> str:
    noun = "fashion print" if design.kind is DesignKind.FASHION else "sticker"
    return (
        f'Here is your {noun} design for "{design.prompt}"! \n'
        f"Style: {design.style.value}. \n\nNeed any changes?"
    )


def _assistant(text: str, attachment: Optional[Design] = None, related_prompt: Optional[str] = None) -> ConversationTurn:
    return ConversationTurn(role="assistant", text=text, attachment=attachment, related_prompt=related_prompt)


EditHandler = Callable[[Session, str], Awaitable[ConversationTurn]]


class ConversationController:
    def __init__(
        self,
        orchestrator: ImageGenerationOrchestrator,
        refiner: PromptRefiner,
        compositor: MockupCompositor,
        history: Optional[HistoryStore] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.refiner = refiner
        self.compositor = compositor
        self.history = history
        self.session: Optional[Session] = None
        self._busy = False
        self._edit_handlers: Dict[ControllerState, EditHandler] = {
            ControllerState.AWAITING_DESIGN_EDIT: self._edit_design,
            ControllerState.AWAITING_MOCKUP_EDIT: self._edit_mockup,
        }

    # ── Introspection ─────────────────────────────────────────────────────────

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def state(self) -> ControllerState:
        return self.session.state if self.session else ControllerState.IDLE

    @property
    def transcript(self) -> List[ConversationTurn]:
        return list(self.session.transcript) if self.session else []

    # ── Session lifecycle ─────────────────────────────────────────────────────

    async def create(
        self,
        prompt: str,
        style: StickerStyle,
        kind: DesignKind = DesignKind.STICKER,
        count: int = 1,
        reference_image: Optional[ImagePart] = None,
    ) -> List[Design]:
        """Generate a fresh batch, record it, and open the first design."""
        async with self._exclusive():
            designs = await self.orchestrator.generate(prompt, style, kind, count, reference_image)
        for design in designs:
            self._record(design)
        self.open_design(designs[0])
        return designs

    def open_design(self, design: Design) -> Session:
        if self._busy:
            raise SessionBusyError("An operation is still in flight")
        self.session = Session(
            source=design,
            active_design=design,
            design_prompt=design.prompt,
            transcript=[_assistant(greeting_text(design), attachment=design, related_prompt=design.prompt)],
        )
        logger.debug("Opened design %s (%s)", design.id, design.kind.value)
        return self.session

    def close(self) -> None:
        if self._busy:
            raise SessionBusyError("An operation is still in flight")
        self.session = None

    def set_view_mode(self, mode: ViewMode) -> None:
        session = self._require_session()
        if mode is ViewMode.MOCKUP and session.mockup is None:
            raise NoActiveDesignError("No mockup has been generated yet")
        session.view_mode = mode

    # ── Mockups ───────────────────────────────────────────────────────────────

    async def try_on(
        self,
        model_description: str,
        custom_model_image: Optional[ImagePart] = None,
    ) -> Optional[Design]:
        """Composite the active design; returns the mockup, or None after an apology turn."""
        session = self._require_session()
        async with self._exclusive():
            try:
                mockup = await self.compositor.create_mockup(
                    session.active_design, model_description, custom_model_image
                )
            except Exception as exc:
                logger.warning("Mockup generation failed: %s", exc)
                session.transcript.append(_assistant(MOCKUP_FAILED_TEXT))
                session.view_mode = ViewMode.DESIGN
                return None

            session.mockup = mockup
            session.mockup_prompt = model_description
            session.view_mode = ViewMode.MOCKUP
            self._record(mockup)
            session.transcript.append(_assistant(
                f"Here is a preview: {model_description}. \n\n"
                'You can chat with me to change the model (e.g., "Change to a black hoodie").',
                attachment=mockup,
            ))
            return mockup

    async def try_on_preset(self, key: str) -> Optional[Design]:
        preset = get_preset(key)
        if preset is None:
            raise InvalidRequestError(f"Unknown mockup preset: {key!r}")
        return await self.try_on(preset.prompt)

    # ── Chat ──────────────────────────────────────────────────────────────────

    async def handle_instruction(self, text: str) -> ConversationTurn:
        """
        Route a natural-language edit to the design or the mockup.

        Returns the assistant turn appended to the transcript. Raises
        SessionBusyError (without touching the transcript) if a previous
        instruction is still being processed.
        """
        text = text.strip()
        if not text:
            raise InvalidRequestError("Instruction must not be empty")
        session = self._require_session()

        async with self._exclusive():
            session.transcript.append(ConversationTurn(role="user", text=text))
            target = select_edit_state(session)
            self._transition(session, target)
            try:
                reply = await self._edit_handlers[target](session, text)
            except Exception as exc:
                logger.warning("Edit failed in %s: %s", target.value, exc)
                reply = _assistant(EDIT_FAILED_TEXT)
            session.transcript.append(reply)
            self._transition(session, ControllerState.IDLE)
            return reply

    async def _edit_mockup(self, session: Session, instruction: str) -> ConversationTurn:
        description = await self.refiner.refine(session.mockup_prompt, instruction)
        mockup = await self.compositor.create_mockup(session.active_design, description)

        session.mockup_prompt = description
        session.mockup = mockup
        session.view_mode = ViewMode.MOCKUP
        self._record(mockup)
        return _assistant(f"Updated model: {description}", attachment=mockup)

    async def _edit_design(self, session: Session, instruction: str) -> ConversationTurn:
        prompt = await self.refiner.refine(session.design_prompt, instruction)
        # The reference image from creation is deliberately not carried into edits.
        designs = await self.orchestrator.generate(
            prompt, session.source.style, session.source.kind, count=1
        )
        design = designs[0]

        session.design_prompt = prompt
        session.active_design = design
        session.view_mode = ViewMode.DESIGN
        self._record(design)
        return _assistant(DESIGN_UPDATED_TEXT, attachment=design, related_prompt=prompt)

    # ── Internals ─────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        if self._busy:
            raise SessionBusyError("An operation is still in flight")
        self._busy = True
        try:
            yield
        finally:
            self._busy = False

    def _require_session(self) -> Session:
        if self.session is None:
            raise NoActiveDesignError("Open or create a design first")
        return self.session

    @staticmethod
    def _transition(session: Session, state: ControllerState) -> None:
        logger.debug("Session state %s → %s", session.state.value, state.value)
        session.state = state

    def _record(self, design: Design) -> None:
        if self.history is None:
            return
        try:
            self.history.append(design)
        except OSError as exc:
            logger.error("Could not append %s to history: %s", design.id, exc)
