"""GoalBoard — one mounted view of a user's week.

Owns the local instance list and wires the engines together. The first mount
rolls a stale latest week forward to the current week. While mounted
it re-runs instantiation whenever ``goals-updated`` or ``dreams-updated``
fires for its user. Unmounting unsubscribes and closes the local state, so
saves still in flight finish without touching it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from app.config import settings
from app.scheduler.calendar_utils import Clock, utc_now
from app.scheduler.completion import CompletionEngine, Confirm
from app.scheduler.connector import DocumentStore
from app.scheduler.events import DREAMS_UPDATED, GOALS_UPDATED, EventBus
from app.scheduler.instantiation import InstantiationEngine
from app.scheduler.models import (
    CompletionOutcome,
    GoalDraft,
    InstantiationOutcome,
    RolloverOutcome,
    WeekInstance,
)
from app.scheduler.notifications import Notifier
from app.scheduler.optimistic import LocalState
from app.scheduler.parent_sync import ParentSync
from app.scheduler.rollover import rollover_week

logger = logging.getLogger(__name__)


class GoalBoard:
    def __init__(
        self,
        user_id: str,
        store: DocumentStore,
        bus: EventBus,
        notifier: Notifier,
        clock: Clock | None = None,
        week_id: str | None = None,
        auto_rollover: bool | None = None,
    ) -> None:
        self.user_id = user_id
        self.store = store
        self.bus = bus
        self.week_id = week_id
        self.auto_rollover = settings.auto_rollover if auto_rollover is None else auto_rollover
        self.state = LocalState()
        self.clock = clock = clock or utc_now
        self.instantiation = InstantiationEngine(store, clock)
        self.parent_sync = ParentSync(store, bus, clock)
        self.completion = CompletionEngine(
            store, self.state, notifier, self.parent_sync, clock=clock, bus=bus
        )
        self.last_load: InstantiationOutcome | None = None
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def mounted(self) -> bool:
        return bool(self._unsubscribers)

    @property
    def instances(self) -> list[WeekInstance]:
        return self.state.instances

    async def mount(self) -> InstantiationOutcome:
        if not self.mounted:
            if self.auto_rollover:
                await self.catch_up()
            for topic in (GOALS_UPDATED, DREAMS_UPDATED):
                self._unsubscribers.append(self.bus.subscribe(topic, self._on_refresh))
        return await self.reload()

    async def catch_up(self) -> RolloverOutcome | None:
        """Roll the latest stored week forward to the current week, if it is behind."""
        log_ctx = {"user_id": self.user_id}
        try:
            outcome = await rollover_week(self.store, self.user_id, clock=self.clock)
        except Exception:
            logger.exception("Catch-up rollover failed, loading without it", extra=log_ctx)
            return None
        if outcome.rolled:
            logger.info(
                "Caught up %s -> %s", outcome.from_week, outcome.to_week, extra=log_ctx
            )
        return outcome

    def unmount(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.state.close()

    async def reload(self) -> InstantiationOutcome:
        outcome = await self.instantiation.load_week(self.user_id, self.week_id)
        self.week_id = outcome.week_id
        self.state.set(outcome.instances)
        self.last_load = outcome
        return outcome

    async def _on_refresh(self, payload: Any) -> None:
        if isinstance(payload, dict) and payload.get("user_id") not in (None, self.user_id):
            return
        logger.debug("Refreshing board", extra={"user_id": self.user_id, "week_id": self.week_id})
        await self.reload()

    # -- interactions ---------------------------------------------------------------

    async def toggle(self, instance_id: str) -> CompletionOutcome:
        return await self.completion.toggle(self.user_id, instance_id)

    async def increment(self, instance_id: str) -> CompletionOutcome:
        return await self.completion.increment(self.user_id, instance_id)

    async def decrement(self, instance_id: str) -> CompletionOutcome:
        return await self.completion.decrement(self.user_id, instance_id)

    async def skip(self, instance_id: str, confirm: Confirm) -> CompletionOutcome:
        return await self.completion.skip(self.user_id, instance_id, confirm)

    async def add_goal(self, draft: GoalDraft) -> CompletionOutcome:
        return await self.completion.add_goal(self.user_id, draft, self.week_id)
