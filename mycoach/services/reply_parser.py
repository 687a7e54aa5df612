"""Tolerant reader for the coach model's semi-structured replies.

The model is asked for JSON but may wrap it in code fences, bury it in prose,
or ignore the format entirely. Parsing runs an ordered chain of fallible
parsers and the last one cannot fail, so callers always get a ``CoachReply``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..models import CoachReply

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r'^```[a-zA-Z]*\s*\n?|\n?\s*```$')

Parser = Callable[[str], Optional[Dict[str, Any]]]


def strip_code_fences(raw: str) -> str:
    cleaned = raw.strip()
    if cleaned.startswith('```'):
        return _FENCE_RE.sub('', cleaned).strip()
    return cleaned


def _parse_strict(text: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(strip_code_fences(text))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _parse_fragment(text: str) -> Optional[Dict[str, Any]]:
    start = text.find('{')
    end = text.rfind('}')
    if start == -1 or end == -1 or end <= start:
        return None
    try:
        parsed = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


PARSERS: Sequence[Parser] = (_parse_strict, _parse_fragment)


def _coerce_items(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    items = []
    for item in value:
        if item is None:
            continue
        text = str(item).strip()
        if text:
            items.append(text)
    return items


def parse_coach_reply(raw: str) -> CoachReply:
    """Turn a raw reply body into a ``CoachReply`` without ever raising."""

    text = raw or ''
    for parser in PARSERS:
        data = parser(text)
        if data is None:
            continue
        chat_response = data.get('chatResponse')
        return CoachReply(
            chat_response=chat_response if isinstance(chat_response, str) else '',
            suggested_plan=_coerce_items(data.get('suggestedPlan')),
            new_habits=_coerce_items(data.get('newHabits')),
        )

    logger.warning('Coach reply was not structured; treating it as plain text')
    return CoachReply(chat_response=text)


def ensure_text_contains_plan(reply: CoachReply) -> CoachReply:
    """Append the plan as a bullet list when the chat text does not mention it."""

    if not reply.suggested_plan:
        return reply

    first_item = reply.suggested_plan[0]
    probe = first_item.lower()[: min(10, len(first_item))]
    if probe in reply.chat_response.lower():
        return reply

    bullets = '\n'.join(f'• {item}' for item in reply.suggested_plan)
    text = f'{reply.chat_response.strip()}\n\n**Proposed Plan:**\n{bullets}'
    return reply.model_copy(update={'chat_response': text})
