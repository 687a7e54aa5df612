"""Bring stored documents written by older releases up to the current shape.

The stored document has no version field. Instead every load normalizes the
raw JSON: missing collections become empty, locale-formatted dates become ISO
dates, duplicated per-date records are folded together, records without an
id get one, and a legacy ``currentWeight`` without history is backfilled once.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Mapping, Optional

from .models import DEFAULT_COACH_NAME, new_id
from .utils.dates import parse_calendar_date

logger = logging.getLogger(__name__)

_COLLECTION_KEYS = ('messages', 'logs', 'currentPlan', 'habits')
_SENDERS = ('user', 'bot')


class CorruptDocumentError(ValueError):
    """Raised when the stored payload cannot be interpreted as a document."""


def migrate_document(raw: Any, today: date) -> Dict[str, Any]:
    """Return a copy of ``raw`` normalized to the current document shape."""

    if not isinstance(raw, Mapping):
        raise CorruptDocumentError(f'Expected a JSON object, got {type(raw).__name__}')

    document: Dict[str, Any] = dict(raw)

    for key in _COLLECTION_KEYS:
        if not isinstance(document.get(key), list):
            document[key] = []

    document['profile'] = _migrate_profile(document.get('profile'), today)
    document['logs'] = _migrate_logs(document['logs'])
    document['habits'] = [
        _migrate_habit(h) for h in document['habits']
        if isinstance(h, Mapping) and isinstance(h.get('title'), str)
    ]
    document['messages'] = [
        _with_id(m) for m in document['messages']
        if isinstance(m, Mapping) and isinstance(m.get('text'), str) and m.get('sender') in _SENDERS
    ]
    document['currentPlan'] = [str(task) for task in document['currentPlan'] if task is not None]

    last_update = parse_calendar_date(document.get('lastPlanUpdate'))
    document['lastPlanUpdate'] = (last_update or today).isoformat()
    return document


def _migrate_profile(raw: Any, today: date) -> Dict[str, Any]:
    profile: Dict[str, Any] = dict(raw) if isinstance(raw, Mapping) else {}
    profile.setdefault('coachName', DEFAULT_COACH_NAME)

    history = profile.get('weightHistory')
    profile['weightHistory'] = _migrate_weight_history(history if isinstance(history, list) else [])

    current_weight = profile.get('currentWeight')
    if current_weight and not profile['weightHistory']:
        # One-time backfill: once history has an entry this never runs again.
        profile['weightHistory'].append({'date': today.isoformat(), 'weight': current_weight})
        logger.info('Backfilled weight history from legacy currentWeight')

    return profile


def _migrate_weight_history(entries: List[Any]) -> List[Dict[str, Any]]:
    by_date: Dict[date, Dict[str, Any]] = {}
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        day = _coerce_date(entry.get('date'), 'weight entry')
        if day is None or entry.get('weight') is None:
            continue
        # A later sample for the same day replaces the earlier one.
        by_date[day] = {'date': day.isoformat(), 'weight': entry['weight']}
    return list(by_date.values())


def _migrate_logs(entries: List[Any]) -> List[Dict[str, Any]]:
    by_date: Dict[date, List[str]] = {}
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        day = _coerce_date(entry.get('date'), 'daily log')
        if day is None:
            continue
        tasks = by_date.setdefault(day, [])
        raw_tasks = entry.get('completedTasks')
        for task in raw_tasks if isinstance(raw_tasks, list) else []:
            if isinstance(task, str) and task not in tasks:
                tasks.append(task)
    return [{'date': day.isoformat(), 'completedTasks': tasks} for day, tasks in by_date.items()]


def _with_id(raw: Mapping[str, Any]) -> Dict[str, Any]:
    record = dict(raw)
    value = record.get('id')
    if isinstance(value, str) and value:
        return record
    record['id'] = str(value) if isinstance(value, int) and not isinstance(value, bool) else new_id()
    return record


def _migrate_habit(raw: Mapping[str, Any]) -> Dict[str, Any]:
    habit = _with_id(raw)
    dates: List[str] = []
    raw_dates = habit.get('datesCompleted')
    for value in raw_dates if isinstance(raw_dates, list) else []:
        day = _coerce_date(value, 'habit check-in')
        if day is not None and day.isoformat() not in dates:
            dates.append(day.isoformat())
    habit['datesCompleted'] = dates
    return habit


def _coerce_date(value: Any, what: str) -> Optional[date]:
    day = parse_calendar_date(value)
    if day is None:
        logger.warning('Dropping %s with unreadable date %r', what, value)
    return day
