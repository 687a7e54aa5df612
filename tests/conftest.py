from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

from mycoach.services.ai_service import AIService
from mycoach.services.coach_service import CoachService
from mycoach.services.storage_backends import FileStateSlot
from mycoach.services.storage_service import StorageService

START = datetime(2026, 10, 17, 9, 30, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock the tests can move forward."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class _FakeModels:
    def __init__(self) -> None:
        self.replies: List[Any] = []
        self.calls: List[Dict[str, Any]] = []

    def generate_content(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(text=reply)


class FakeGeminiClient:
    """Stand-in for ``google.genai.Client`` that replays queued reply texts."""

    def __init__(self) -> None:
        self.models = _FakeModels()

    def queue(self, *replies: Any) -> None:
        self.models.replies.extend(replies)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def slot(tmp_path) -> FileStateSlot:
    return FileStateSlot(tmp_path, 'mycoach_data_v2')


@pytest.fixture
def storage(slot, clock) -> StorageService:
    return StorageService(slot, clock=clock)


@pytest.fixture
def gemini_client() -> FakeGeminiClient:
    return FakeGeminiClient()


@pytest.fixture
def ai_service(gemini_client) -> AIService:
    return AIService(client=gemini_client)


@pytest.fixture
def coach(storage, ai_service) -> CoachService:
    return CoachService(storage, ai_service)
