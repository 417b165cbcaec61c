"""Shared fixtures for the test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from app.main import app
from app.scheduler.events import EventBus
from app.scheduler.models import (
    Dream,
    DreamsDocument,
    GoalTemplate,
    Result,
    WeekDocument,
    WeekInstance,
    WeekSummary,
)
from app.scheduler.notifications import CollectingNotifier
from app.scheduler.router import get_clock, get_store

# Wednesday of 2025-W10 (Mon 2025-03-03 .. Sun 2025-03-09)
NOW = datetime(2025, 3, 5, 12, 0, tzinfo=timezone.utc)
WEEK = "2025-W10"
USER = "user-1"

WRITE_CALLS = ("save_week", "save_dreams", "archive_week")


# ---------------------------------------------------------------------------
# In-memory document store (no real Postgres needed)
# ---------------------------------------------------------------------------


class FakeStore:
    """DocumentStore kept as JSON documents, with call log and failure injection.

    Documents are stored serialized, so every read hands out fresh copies like
    a real remote store would.
    """

    def __init__(self) -> None:
        self.weeks: dict[tuple[str, str], dict[str, Any]] = {}
        self.dreams: dict[str, dict[str, Any]] = {}
        self.archives: dict[tuple[str, str], dict[str, Any]] = {}
        self.calls: list[str] = []
        self.fail: set[str] = set()
        self.raise_on: set[str] = set()
        self.yield_control = False

    async def _enter(self, name: str) -> Result | None:
        self.calls.append(name)
        if self.yield_control:
            await asyncio.sleep(0)
        if name in self.raise_on:
            raise ConnectionError(f"{name} unreachable")
        if name in self.fail:
            return Result.fail(f"{name} failed")
        return None

    # -- seeding / inspection -----------------------------------------------------

    def seed_week(self, user_id: str, week_id: str, goals: Sequence[dict | WeekInstance]) -> None:
        doc = WeekDocument(user_id=user_id, week_id=week_id, goals=list(goals))
        self.weeks[(user_id, week_id)] = doc.to_document()

    def seed_dreams(
        self,
        user_id: str,
        dream_book: Sequence[dict | Dream] = (),
        templates: Sequence[dict | GoalTemplate] = (),
    ) -> None:
        doc = DreamsDocument(
            user_id=user_id,
            dream_book=list(dream_book),
            weekly_goal_templates=list(templates),
        )
        self.dreams[user_id] = doc.to_document()

    def week_goals(self, user_id: str, week_id: str) -> list[WeekInstance]:
        raw = self.weeks.get((user_id, week_id))
        return WeekDocument.model_validate(raw).goals if raw else []

    def dreams_doc(self, user_id: str) -> DreamsDocument:
        raw = self.dreams.get(user_id)
        return DreamsDocument.model_validate(raw) if raw else DreamsDocument(user_id=user_id)

    def writes(self, name: str | None = None) -> int:
        names = (name,) if name else WRITE_CALLS
        return sum(1 for call in self.calls if call in names)

    # -- DocumentStore ------------------------------------------------------------

    async def get_current_week(self, user_id: str) -> Result:
        if (failed := await self._enter("get_current_week")) is not None:
            return failed
        keys = sorted(wid for uid, wid in self.weeks if uid == user_id)
        if not keys:
            return Result.ok(None)
        return Result.ok(WeekDocument.model_validate(self.weeks[(user_id, keys[-1])]))

    async def get_week(self, user_id: str, week_id: str) -> Result:
        if (failed := await self._enter("get_week")) is not None:
            return failed
        raw = self.weeks.get((user_id, week_id))
        return Result.ok(WeekDocument.model_validate(raw) if raw else None)

    async def save_week(self, user_id, week_id, goals, stats=None) -> Result:
        if (failed := await self._enter("save_week")) is not None:
            return failed
        doc = WeekDocument(user_id=user_id, week_id=week_id, goals=list(goals), stats=stats or {})
        self.weeks[(user_id, week_id)] = doc.to_document()
        return Result.ok(doc)

    async def get_dreams(self, user_id: str) -> Result:
        if (failed := await self._enter("get_dreams")) is not None:
            return failed
        return Result.ok(self.dreams_doc(user_id))

    async def save_dreams(self, user_id, dreams, templates) -> Result:
        if (failed := await self._enter("save_dreams")) is not None:
            return failed
        doc = DreamsDocument(
            user_id=user_id, dream_book=list(dreams), weekly_goal_templates=list(templates)
        )
        self.dreams[user_id] = doc.to_document()
        return Result.ok(doc)

    async def archive_week(self, user_id: str, week_id: str, summary: WeekSummary) -> Result:
        if (failed := await self._enter("archive_week")) is not None:
            return failed
        self.archives[(user_id, week_id)] = summary.to_document()
        return Result.ok(summary)


# ---------------------------------------------------------------------------
# Document builders (stored camelCase shape)
# ---------------------------------------------------------------------------


def make_goal(goal_id: str, **overrides: Any) -> dict[str, Any]:
    goal = {
        "id": goal_id,
        "title": f"Goal {goal_id}",
        "type": "consistency",
        "recurrence": "weekly",
        "frequency": 1,
        "active": True,
        "completed": False,
    }
    goal.update(overrides)
    return goal


def make_deadline_goal(goal_id: str, target_date: str, **overrides: Any) -> dict[str, Any]:
    goal = {
        "id": goal_id,
        "title": f"Deadline {goal_id}",
        "type": "deadline",
        "targetDate": target_date,
        "active": True,
        "completed": False,
    }
    goal.update(overrides)
    return goal


def make_dream(dream_id: str, goals: Sequence[dict] = (), **overrides: Any) -> dict[str, Any]:
    dream = {
        "id": dream_id,
        "title": f"Dream {dream_id}",
        "category": "Health",
        "progress": 0,
        "goals": list(goals),
    }
    dream.update(overrides)
    return dream


def make_template(template_id: str, dream_id: str | None = "d1", **overrides: Any) -> dict[str, Any]:
    template = {
        "id": template_id,
        "type": "weekly_goal_template",
        "goalType": "consistency",
        "title": f"Template {template_id}",
        "dreamId": dream_id,
        "dreamTitle": f"Dream {dream_id}" if dream_id else "",
        "recurrence": "weekly",
        "frequency": 1,
        "active": True,
    }
    template.update(overrides)
    return template


def make_instance(instance_id: str, template_id: str | None = None, **overrides: Any) -> dict[str, Any]:
    instance = {
        "id": instance_id,
        "templateId": template_id or instance_id,
        "type": "weekly_goal",
        "title": f"Instance {instance_id}",
        "dreamId": "d1",
        "weekId": WEEK,
        "completed": False,
        "skipped": False,
    }
    instance.update(overrides)
    return instance


def make_counter(instance_id: str, frequency: int = 3, count: int = 0, **overrides: Any) -> dict[str, Any]:
    return make_instance(
        instance_id,
        recurrence="weekly",
        frequency=frequency,
        completionCount=count,
        completionDates=[NOW.isoformat()] * count,
        **overrides,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def bus() -> EventBus:
    return EventBus()


@pytest.fixture()
def notifier() -> CollectingNotifier:
    return CollectingNotifier()


@pytest.fixture()
def clock():
    return lambda: NOW


@pytest.fixture()
def override_store(store, bus):
    """Override the FastAPI dependencies so no real DB is needed."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_clock] = lambda: (lambda: NOW)
    previous_bus = app.state.bus
    app.state.bus = bus
    yield store
    app.dependency_overrides.clear()
    app.state.bus = previous_bus


@pytest.fixture()
async def client(override_store):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
