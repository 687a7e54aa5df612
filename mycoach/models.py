"""Document models for the MyCoach application state."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_COACH_NAME = 'YourAICoach'
DEFAULT_AGE = 30


def new_id() -> str:
    return uuid4().hex


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Sender(str, Enum):
    USER = 'user'
    BOT = 'bot'


class _Document(BaseModel):
    """Base for every model stored in the application document.

    Attribute names are snake_case; the serialized document keeps the
    camelCase keys older installations already have on disk.
    """

    model_config = ConfigDict(populate_by_name=True)

    def to_document(self) -> dict:
        return self.model_dump(mode='json', by_alias=True, exclude_none=True)


class WeightEntry(_Document):
    date: dt.date
    weight: float


class UserProfile(_Document):
    name: str = ''
    age: int = DEFAULT_AGE
    gender: str = ''
    goal: str = ''
    coach_name: str = Field(default=DEFAULT_COACH_NAME, alias='coachName')
    current_weight: Optional[float] = Field(default=None, alias='currentWeight')
    target_weight: Optional[float] = Field(default=None, alias='targetWeight')
    weight_history: List[WeightEntry] = Field(default_factory=list, alias='weightHistory')
    onboarding_completed: bool = Field(default=False, alias='onboardingCompleted')


class Message(_Document):
    """One chat turn. Messages are appended and never edited afterwards."""

    id: str = Field(default_factory=new_id)
    text: str
    sender: Sender
    timestamp: dt.datetime = Field(default_factory=_utc_now)
    image: Optional[str] = None


class DailyLog(_Document):
    date: dt.date
    completed_tasks: List[str] = Field(default_factory=list, alias='completedTasks')


class Habit(_Document):
    id: str = Field(default_factory=new_id)
    title: str
    dates_completed: List[dt.date] = Field(default_factory=list, alias='datesCompleted')
    created_at: dt.datetime = Field(default_factory=_utc_now, alias='createdAt')


class AppState(_Document):
    """Root aggregate; exactly one exists per installation."""

    profile: UserProfile = Field(default_factory=UserProfile)
    messages: List[Message] = Field(default_factory=list)
    logs: List[DailyLog] = Field(default_factory=list)
    current_plan: List[str] = Field(default_factory=list, alias='currentPlan')
    habits: List[Habit] = Field(default_factory=list)
    last_plan_update: dt.date = Field(alias='lastPlanUpdate')

    @classmethod
    def initial(cls, today: dt.date) -> 'AppState':
        return cls(last_plan_update=today)

    def log_for(self, day: dt.date) -> Optional[DailyLog]:
        for log in self.logs:
            if log.date == day:
                return log
        return None

    def habit(self, habit_id: str) -> Optional[Habit]:
        for habit in self.habits:
            if habit.id == habit_id:
                return habit
        return None


class CoachReply(BaseModel):
    """Structured reply from the language model."""

    chat_response: str = ''
    suggested_plan: List[str] = Field(default_factory=list)
    new_habits: List[str] = Field(default_factory=list)


class StagedPlan(BaseModel):
    """A suggested plan waiting for the user to confirm it."""

    message_id: str
    plan: List[str]
