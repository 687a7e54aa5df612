from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, List, Optional, Sequence

from google import genai
from google.genai import types

from ..config import DEFAULT_MODEL, GeminiConfig
from ..models import CoachReply, Message, Sender, UserProfile
from .reply_parser import ensure_text_contains_plan, parse_coach_reply

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MIME = 'image/jpeg'

STARTER_REPLY = CoachReply(
    chat_response="I'm hyped to start! Here's a starter plan. Does this look good to add to your dashboard?",
    suggested_plan=['Drink 3L Water', '10 Minute Walk'],
)
MOTIVATION_FALLBACK = "The top 1% don't wait for motivation. They just work. Let's go!"
MOTIVATION_EMPTY = 'You are built for this. Execute the plan.'


class CoachAPIError(RuntimeError):
    """The model call failed or produced nothing usable."""


class AIService:
    """Abstraction around the Gemini API for coaching turns.

    ``generate_coach_response`` raises :class:`CoachAPIError` so the caller
    can tell the user the turn was interrupted. The greeting and motivation
    helpers never raise; they fall back to canned text when Gemini is
    unavailable.
    """

    _HARM_CATEGORIES = (
        types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
    )

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        client: Optional[Any] = None,
    ) -> None:
        self._api_key = api_key
        self._text_model_id = model
        self.client: Optional[Any] = client if client is not None else self._configure_gemini(api_key)
        if self.client is not None:
            logger.info('Gemini client ready (model=%s)', self._text_model_id)
        else:
            logger.warning('Gemini API key missing; coach replies will use fallbacks')

    @classmethod
    def from_config(cls, config: GeminiConfig) -> 'AIService':
        return cls(api_key=config.api_key if config.is_valid else None, model=config.model)

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    # --- Public API -------------------------------------------------------

    def generate_coach_response(
        self,
        text: str,
        profile: UserProfile,
        history: Sequence[Message],
        image: Optional[str] = None,
    ) -> CoachReply:
        """Ask the coach for the next reply to ``text``.

        ``history`` is the bounded transcript that precedes ``text``, oldest
        first.
        """

        if self.client is None:
            raise CoachAPIError('Gemini client is not configured')

        parts = [types.Part.from_text(text=self._build_coach_prompt(text, profile, history))]
        if image:
            parts.append(self._image_part(image))

        config = types.GenerateContentConfig(
            safety_settings=self._safety_settings(),
            response_mime_type='application/json',
            response_schema=self._reply_schema(include_habits=True),
        )
        raw = self._generate(parts, config)
        return ensure_text_contains_plan(parse_coach_reply(raw))

    def generate_initial_greeting(self, profile: UserProfile) -> CoachReply:
        """Welcome a new client and propose a Day 1 plan."""

        if self.client is None:
            return STARTER_REPLY.model_copy(deep=True)

        config = types.GenerateContentConfig(
            safety_settings=self._safety_settings(),
            response_mime_type='application/json',
            response_schema=self._reply_schema(include_habits=False),
        )
        try:
            raw = self._generate([types.Part.from_text(text=self._build_greeting_prompt(profile))], config)
        except CoachAPIError:
            logger.warning('Initial greeting failed; using starter plan', exc_info=True)
            return STARTER_REPLY.model_copy(deep=True)

        reply = parse_coach_reply(raw).model_copy(update={'new_habits': []})
        return ensure_text_contains_plan(reply)

    def generate_motivation(self, profile: UserProfile, current_plan: Sequence[str]) -> str:
        """Return a short search-grounded pep talk about the current plan."""

        if self.client is None:
            return MOTIVATION_FALLBACK

        config = types.GenerateContentConfig(
            safety_settings=self._safety_settings(),
            tools=[types.Tool(google_search=types.GoogleSearch())],
        )
        try:
            raw = self._generate(
                [types.Part.from_text(text=self._build_motivation_prompt(profile, current_plan))],
                config,
                allow_empty=True,
            )
        except CoachAPIError:
            logger.warning('Motivation request failed', exc_info=True)
            return MOTIVATION_FALLBACK
        return raw or MOTIVATION_EMPTY

    # --- Helper methods -------------------------------------------------

    def _configure_gemini(self, api_key: Optional[str]) -> Optional[Any]:
        if not api_key:
            return None
        try:
            return genai.Client(api_key=api_key)
        except Exception as exc:  # pragma: no cover - external SDK
            logger.warning('Gemini integration disabled: %s', exc)
            return None

    def _safety_settings(self) -> List[types.SafetySetting]:
        return [
            types.SafetySetting(category=category, threshold=types.HarmBlockThreshold.BLOCK_ONLY_HIGH)
            for category in self._HARM_CATEGORIES
        ]

    @staticmethod
    def _reply_schema(include_habits: bool) -> types.Schema:
        string_list = types.Schema(type=types.Type.ARRAY, items=types.Schema(type=types.Type.STRING))
        properties = {
            'chatResponse': types.Schema(type=types.Type.STRING),
            'suggestedPlan': string_list,
        }
        if include_habits:
            properties['newHabits'] = string_list
        return types.Schema(type=types.Type.OBJECT, properties=properties)

    def _image_part(self, image: str) -> types.Part:
        """Build an inline image part from a data URL or bare base64 payload."""

        mime_type = DEFAULT_IMAGE_MIME
        payload = image
        if image.startswith('data:') and ',' in image:
            header, payload = image.split(',', 1)
            mime_type = header[len('data:'):].split(';', 1)[0] or DEFAULT_IMAGE_MIME
        try:
            data = base64.b64decode(payload)
        except (binascii.Error, ValueError) as exc:
            raise CoachAPIError('Attached image is not valid base64') from exc
        return types.Part.from_bytes(data=data, mime_type=mime_type)

    def _generate(
        self,
        parts: List[types.Part],
        config: types.GenerateContentConfig,
        allow_empty: bool = False,
    ) -> str:
        try:
            response = self.client.models.generate_content(
                model=self._text_model_id,
                contents=[types.Content(role='user', parts=parts)],
                config=config,
            )
        except Exception as exc:
            logger.warning('Gemini request failed: %s', exc)
            raise CoachAPIError(str(exc)) from exc

        text = self._response_text(response)
        if not text and not allow_empty:
            raise CoachAPIError('No text response from model')
        return text

    @staticmethod
    def _response_text(response: Any) -> str:
        if not response:
            return ''

        text = getattr(response, 'text', None)
        if text:
            return text.strip()

        candidates = getattr(response, 'candidates', None) or []
        for candidate in candidates:
            content = getattr(candidate, 'content', None)
            parts = getattr(content, 'parts', None) if content else None
            if not parts:
                continue
            assembled = ' '.join(getattr(part, 'text', '') for part in parts if getattr(part, 'text', ''))
            if assembled.strip():
                return assembled.strip()

        return ''

    def _build_coach_prompt(self, text: str, profile: UserProfile, history: Sequence[Message]) -> str:
        coach_name = profile.coach_name or 'CustomCoach'
        return (
            f"You are {coach_name}, an expert personal trainer.\n"
            f"CLIENT: {profile.name}, Goal: {profile.goal}\n\n"
            "CORE REQUIREMENTS:\n"
            "1. TENTATIVE PLANNING: If the user hasn't confirmed their plan yet, propose or edit it in 'suggestedPlan'.\n"
            "2. ASK PERMISSION: Always ask \"Anything to add or edit before we add it to your dashboard?\" "
            "when proposing a plan.\n"
            "3. MISSIONS VS HABITS: Put daily tasks (like \"Sleep 8 hours\", \"Drink water\", \"Push workout\") in "
            "'suggestedPlan'. Do NOT put these in 'newHabits' unless the user explicitly asks for a long-term "
            "habit tracker.\n"
            "4. HIGH ENERGY: Be intense and motivational.\n"
            "5. FORMAT: Always return JSON with keys chatResponse, suggestedPlan, newHabits.\n\n"
            "[CONVERSATION HISTORY]\n"
            f"{self._format_history(history)}\n\n"
            f"Client's New Input: {text}"
        )

    def _build_greeting_prompt(self, profile: UserProfile) -> str:
        coach_name = profile.coach_name or 'CustomCoach'
        return (
            f"You are {coach_name}. High-energy expert trainer.\n"
            f"CLIENT: {profile.name}, GOAL: {profile.goal}\n\n"
            "INSTRUCTIONS:\n"
            "1. Welcome the client with fire!\n"
            "2. PROPOSE a Day 1 plan in 'suggestedPlan'.\n"
            "3. CRITICAL: In 'chatResponse', ask: \"Here is the plan for the day, anything to add or edit before "
            "we add it to your dashboard?\"\n"
            "4. List the tasks clearly in your 'chatResponse'."
        )

    def _build_motivation_prompt(self, profile: UserProfile, current_plan: Sequence[str]) -> str:
        coach_name = profile.coach_name or 'CustomCoach'
        plan_summary = ', '.join(current_plan[:2]) if current_plan else 'your mission'
        return (
            f"You are {coach_name}.\n"
            f"Hype the user up! They need to finish: {plan_summary}.\n"
            f"GOAL: {profile.goal}\n\n"
            "INSTRUCTIONS:\n"
            "1. Use search grounding to find an intense, high-performer fact.\n"
            "2. Use structured markdown (### Headers, **Bold**)."
        )

    @staticmethod
    def _format_history(history: Sequence[Message]) -> str:
        lines = []
        for message in history:
            prefix = 'Client' if message.sender == Sender.USER else 'Coach'
            lines.append(f'{prefix}: {message.text}')
        return '\n'.join(lines) if lines else 'No prior context provided.'
