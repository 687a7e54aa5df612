"""Coaching session orchestration.

One user turn becomes one model request, and one model reply becomes state
changes applied through the store. Suggested plans are staged until the user
confirms them; suggested habits are added straight away.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..config import HISTORY_WINDOW
from ..models import AppState, CoachReply, Message, Sender, StagedPlan
from .ai_service import AIService, CoachAPIError
from .storage_service import StorageService

logger = logging.getLogger(__name__)

INTERRUPTION_TEXT = "Momentum interruption. Re-sending signal. Give it another shot, I'm still locked in."
IMAGE_ONLY_PROMPT = 'Analyze this image.'


class SessionBusyError(RuntimeError):
    """A model call is already in flight for this session."""


@dataclass
class CoachTurn:
    """Outcome of one exchange with the coach."""

    state: AppState
    reply: Message
    staged_plan: Optional[StagedPlan] = None
    habits_added: List[str] = field(default_factory=list)
    failed: bool = False


class CoachService:
    def __init__(
        self,
        storage: StorageService,
        ai_service: AIService,
        history_window: int = HISTORY_WINDOW,
    ) -> None:
        self._storage = storage
        self._ai = ai_service
        self._history_window = history_window
        self._staged_plan: Optional[StagedPlan] = None
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def staged_plan(self) -> Optional[StagedPlan]:
        return self._staged_plan

    def send_message(self, text: str, image: Optional[str] = None) -> Optional[CoachTurn]:
        """Send one user turn and record the coach's answer.

        Returns ``None`` for an empty turn (no text and no image). Raises
        :class:`SessionBusyError` while a previous turn is still waiting on the
        model.
        """

        text = text or ''
        if not text.strip() and not image:
            return None
        if self._busy:
            raise SessionBusyError('Wait for the coach to answer before sending again.')

        self._busy = True
        try:
            prior = self._storage.load().messages
            history = prior[-self._history_window:] if self._history_window > 0 else []
            user_message = Message(text=text, sender=Sender.USER, image=image or None)
            state = self._storage.add_message(user_message)

            try:
                reply = self._ai.generate_coach_response(
                    text if text.strip() else IMAGE_ONLY_PROMPT,
                    state.profile,
                    history,
                    image,
                )
            except CoachAPIError:
                logger.error('Coach reply failed; asking the user to resend', exc_info=True)
                notice = Message(text=INTERRUPTION_TEXT, sender=Sender.BOT)
                return CoachTurn(state=self._storage.add_message(notice), reply=notice, failed=True)

            return self._apply_reply(reply)
        finally:
            self._busy = False

    def start_session(self) -> Optional[CoachTurn]:
        """Greet a client whose conversation is still empty."""

        if self._busy or self._storage.load().messages:
            return None

        self._busy = True
        try:
            profile = self._storage.load().profile
            return self._apply_reply(self._ai.generate_initial_greeting(profile))
        finally:
            self._busy = False

    def confirm_plan(self, message_id: Optional[str] = None) -> Optional[AppState]:
        """Commit the staged plan to the dashboard.

        Returns ``None`` when nothing is staged, or when ``message_id`` names a
        plan that has since been replaced.
        """

        staged = self._staged_plan
        if staged is None:
            return None
        if message_id is not None and message_id != staged.message_id:
            logger.info('Ignoring confirmation for superseded plan from message %s', message_id)
            return None

        state = self._storage.update_current_plan(staged.plan)
        self._staged_plan = None
        return state

    def motivate(self) -> str:
        state = self._storage.load()
        return self._ai.generate_motivation(state.profile, state.current_plan)

    def reset(self) -> AppState:
        self._storage.clear()
        self._staged_plan = None
        return self._storage.load()

    def _apply_reply(self, reply: CoachReply) -> CoachTurn:
        bot_message = Message(text=reply.chat_response, sender=Sender.BOT)
        state = self._storage.add_message(bot_message)

        for title in reply.new_habits:
            state = self._storage.add_habit(title)

        if reply.suggested_plan:
            if self._staged_plan is not None:
                logger.info('Replacing staged plan from message %s', self._staged_plan.message_id)
            self._staged_plan = StagedPlan(message_id=bot_message.id, plan=list(reply.suggested_plan))

        return CoachTurn(
            state=state,
            reply=bot_message,
            staged_plan=self._staged_plan if reply.suggested_plan else None,
            habits_added=list(reply.new_habits),
        )
