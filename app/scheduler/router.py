"""Scheduler HTTP router — week loading, completion, rollover, repair."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import verify_api_key
from app.db import get_session
from app.scheduler.calendar_utils import Clock, parse_iso_week, utc_now
from app.scheduler.connector import DocumentStore, SqlDocumentStore
from app.scheduler.events import EventBus
from app.scheduler.exceptions import PersistenceError
from app.scheduler.models import (
    CompletionOutcome,
    GoalDraft,
    InstantiationOutcome,
    RepairReport,
    RolloverOutcome,
)
from app.scheduler.notifications import CollectingNotifier
from app.scheduler.repair import repair_legacy_templates
from app.scheduler.rollover import rollover_week
from app.scheduler.session import GoalBoard

router = APIRouter(
    prefix="/scheduler",
    tags=["scheduler"],
    dependencies=[Depends(verify_api_key)],
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


async def get_store(session: AsyncSession = Depends(get_session)) -> DocumentStore:
    return SqlDocumentStore(session)


def get_bus(request: Request) -> EventBus:
    return request.app.state.bus


def get_clock() -> Clock:
    return utc_now


def _week_param(week: str | None) -> str | None:
    if week is not None:
        parse_iso_week(week)
    return week


@asynccontextmanager
async def open_board(
    user_id: str,
    store: DocumentStore,
    bus: EventBus,
    clock: Clock,
    week: str | None,
) -> AsyncIterator[tuple[GoalBoard, CollectingNotifier]]:
    notifier = CollectingNotifier()
    board = GoalBoard(user_id, store, bus, notifier, clock=clock, week_id=_week_param(week))
    await board.mount()
    try:
        yield board, notifier
    finally:
        board.unmount()


def _finish(outcome: CompletionOutcome, notifier: CollectingNotifier) -> CompletionOutcome:
    """Attach toasts; a failed save becomes a 502 carrying the toast text."""
    if not outcome.ok and not outcome.cancelled:
        errors = notifier.texts("error")
        raise PersistenceError(errors[0] if errors else outcome.error or "Failed to save goal")
    outcome.notifications = notifier.drain()
    return outcome


# ---------------------------------------------------------------------------
# /scheduler/users/{user_id}/week
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}/week", response_model=InstantiationOutcome)
async def load_week(
    user_id: str,
    week: str | None = Query(default=None, description="ISO week (YYYY-Www); default current"),
    store: DocumentStore = Depends(get_store),
    bus: EventBus = Depends(get_bus),
    clock: Clock = Depends(get_clock),
) -> InstantiationOutcome:
    async with open_board(user_id, store, bus, clock, week) as (board, _):
        return board.last_load


# ---------------------------------------------------------------------------
# /scheduler/users/{user_id}/instances/{instance_id}/...
# ---------------------------------------------------------------------------


@router.post("/users/{user_id}/instances/{instance_id}/toggle", response_model=CompletionOutcome)
async def toggle_instance(
    user_id: str,
    instance_id: str,
    week: str | None = Query(default=None),
    store: DocumentStore = Depends(get_store),
    bus: EventBus = Depends(get_bus),
    clock: Clock = Depends(get_clock),
) -> CompletionOutcome:
    async with open_board(user_id, store, bus, clock, week) as (board, notifier):
        return _finish(await board.toggle(instance_id), notifier)


@router.post("/users/{user_id}/instances/{instance_id}/increment", response_model=CompletionOutcome)
async def increment_instance(
    user_id: str,
    instance_id: str,
    week: str | None = Query(default=None),
    store: DocumentStore = Depends(get_store),
    bus: EventBus = Depends(get_bus),
    clock: Clock = Depends(get_clock),
) -> CompletionOutcome:
    async with open_board(user_id, store, bus, clock, week) as (board, notifier):
        return _finish(await board.increment(instance_id), notifier)


@router.post("/users/{user_id}/instances/{instance_id}/decrement", response_model=CompletionOutcome)
async def decrement_instance(
    user_id: str,
    instance_id: str,
    week: str | None = Query(default=None),
    store: DocumentStore = Depends(get_store),
    bus: EventBus = Depends(get_bus),
    clock: Clock = Depends(get_clock),
) -> CompletionOutcome:
    async with open_board(user_id, store, bus, clock, week) as (board, notifier):
        return _finish(await board.decrement(instance_id), notifier)


@router.post("/users/{user_id}/instances/{instance_id}/skip", response_model=CompletionOutcome)
async def skip_instance(
    user_id: str,
    instance_id: str,
    confirm: bool = Query(default=False, description="Must be true to skip"),
    week: str | None = Query(default=None),
    store: DocumentStore = Depends(get_store),
    bus: EventBus = Depends(get_bus),
    clock: Clock = Depends(get_clock),
) -> CompletionOutcome:
    async with open_board(user_id, store, bus, clock, week) as (board, notifier):
        return _finish(await board.skip(instance_id, lambda _: confirm), notifier)


# ---------------------------------------------------------------------------
# /scheduler/users/{user_id}/goals
# ---------------------------------------------------------------------------


@router.post("/users/{user_id}/goals", response_model=CompletionOutcome)
async def add_goal(
    user_id: str,
    draft: GoalDraft,
    week: str | None = Query(default=None),
    store: DocumentStore = Depends(get_store),
    bus: EventBus = Depends(get_bus),
    clock: Clock = Depends(get_clock),
) -> CompletionOutcome:
    async with open_board(user_id, store, bus, clock, week) as (board, notifier):
        return _finish(await board.add_goal(draft), notifier)


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


@router.post("/users/{user_id}/rollover", response_model=RolloverOutcome)
async def rollover(
    user_id: str,
    target_week: str | None = Query(default=None, description="ISO week to roll into"),
    store: DocumentStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
) -> RolloverOutcome:
    return await rollover_week(store, user_id, _week_param(target_week), clock)


@router.post("/users/{user_id}/repair/templates", response_model=RepairReport)
async def repair_templates(
    user_id: str,
    store: DocumentStore = Depends(get_store),
) -> RepairReport:
    return await repair_legacy_templates(store, user_id)
