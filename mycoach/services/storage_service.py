from __future__ import annotations

import json
import logging
from datetime import date, timezone, tzinfo
from typing import Any, Dict, Iterable, List, Mapping

from ..migrations import migrate_document
from ..models import AppState, DailyLog, Habit, Message, UserProfile, WeightEntry
from ..utils.dates import Clock, local_today, utc_now
from .storage_backends import StateSlot, StorageUnavailableError

logger = logging.getLogger(__name__)

__all__ = ['StorageService', 'StorageUnavailableError']


def _profile_field_names() -> Dict[str, str]:
    names: Dict[str, str] = {}
    for name, info in UserProfile.model_fields.items():
        names[name] = name
        if info.alias:
            names[info.alias] = name
    return names


_PROFILE_FIELDS = _profile_field_names()


class StorageService:
    """Owner of the single persisted application document.

    Every mutation loads the full document, applies one change, writes the
    full document back and returns it. Missing or malformed stored data never
    raises; it degrades to defaults. Failed writes are logged and swallowed,
    so the returned state may be ahead of what is on disk until the next
    successful save.
    """

    def __init__(
        self,
        slot: StateSlot,
        clock: Clock = utc_now,
        tz: tzinfo = timezone.utc,
    ) -> None:
        self._slot = slot
        self._clock = clock
        self._tz = tz

    def today(self) -> date:
        return local_today(self._clock, self._tz)

    # --- Document lifecycle ----------------------------------------------

    def load(self) -> AppState:
        today = self.today()
        try:
            raw = self._slot.read()
            if raw is None:
                return AppState.initial(today)
            stored = json.loads(raw)
            document = migrate_document(stored, today)
            state = AppState.model_validate(document)
        except (ValueError, RecursionError):
            # JSONDecodeError, UnicodeDecodeError, ValidationError and
            # CorruptDocumentError are all ValueErrors.
            logger.error('Failed to load state; starting from defaults', exc_info=True)
            return AppState.initial(today)

        if document != stored:
            # Persist upgrades so generated ids and backfills stay stable.
            logger.info('Stored state upgraded on load')
            self.save(state)
        return state

    def save(self, state: AppState) -> AppState:
        try:
            self._slot.write(json.dumps(state.to_document()))
        except Exception:
            logger.error('Failed to save state', exc_info=True)
        return state

    def clear(self) -> None:
        self._slot.delete()
        logger.info('Cleared stored state')

    # --- Profile ---------------------------------------------------------

    def update_profile(self, changes: Mapping[str, Any]) -> AppState:
        """Shallow-merge ``changes`` into the profile.

        Keys may be attribute names (``current_weight``) or document keys
        (``currentWeight``). A new, truthy current weight also records today's
        weight sample, replacing any sample already taken today.
        """

        unknown = sorted(key for key in changes if key not in _PROFILE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown profile field(s): {', '.join(unknown)}")
        updates = {_PROFILE_FIELDS[key]: value for key, value in changes.items()}

        state = self.load()
        previous_weight = state.profile.current_weight
        profile = UserProfile.model_validate({**state.profile.model_dump(), **updates})

        if 'current_weight' in updates and profile.current_weight and profile.current_weight != previous_weight:
            self._record_weight(profile.weight_history, profile.current_weight)

        state.profile = profile
        return self.save(state)

    def _record_weight(self, history: List[WeightEntry], weight: float) -> None:
        today = self.today()
        for entry in history:
            if entry.date == today:
                entry.weight = weight
                return
        history.append(WeightEntry(date=today, weight=weight))

    # --- Conversation and plan ------------------------------------------

    def add_message(self, message: Message) -> AppState:
        state = self.load()
        state.messages.append(message)
        return self.save(state)

    def update_current_plan(self, tasks: Iterable[str]) -> AppState:
        state = self.load()
        state.current_plan = [str(task) for task in tasks]
        state.last_plan_update = self.today()
        return self.save(state)

    def toggle_task_completion(self, task: str, completed: bool) -> AppState:
        state = self.load()
        today = self.today()
        log = state.log_for(today)
        if log is None:
            log = DailyLog(date=today)
            state.logs.append(log)

        if completed:
            if task not in log.completed_tasks:
                log.completed_tasks.append(task)
        else:
            log.completed_tasks = [t for t in log.completed_tasks if t != task]
        return self.save(state)

    # --- Habits ----------------------------------------------------------

    def add_habit(self, title: str) -> AppState:
        title = (title or '').strip()
        if not title:
            raise ValueError('Habit title cannot be empty.')

        state = self.load()
        state.habits.append(Habit(title=title, created_at=self._clock()))
        return self.save(state)

    def delete_habit(self, habit_id: str) -> AppState:
        state = self.load()
        remaining = [habit for habit in state.habits if habit.id != habit_id]
        if len(remaining) == len(state.habits):
            logger.warning('Habit %s not found; nothing deleted', habit_id)
        state.habits = remaining
        return self.save(state)

    def toggle_habit_check_in(self, habit_id: str) -> AppState:
        state = self.load()
        habit = state.habit(habit_id)
        if habit is None:
            logger.warning('Habit %s not found; check-in ignored', habit_id)
            return self.save(state)

        today = self.today()
        if today in habit.dates_completed:
            habit.dates_completed = [d for d in habit.dates_completed if d != today]
        else:
            habit.dates_completed.append(today)
        return self.save(state)
