"""Completion engine — one instance, one interaction, one optimistic chain.

Policies, picked by instance shape:

* counter: ``recurrence`` and ``frequency`` set. Increment/decrement clamp
  ``completionCount`` to [0, frequency]; ``completed`` is count >= frequency.
* toggle: everything else. Flips ``completed``; deadline instances then run
  parent sync.
* skip: hides the instance for this week only; definitions are untouched.

Every mutation follows the same chain: compute the optimistic list, apply
it locally, re-fetch the week and apply the same change to the fresh array,
save, then confirm local state with the persisted instance or roll back and
raise an error toast. Toasts originate here and nowhere else.

Two interactions issued at the same time from two sessions are not
serialized: the later save wins.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Literal, Union

from app.scheduler.builders import build_dream_goal, build_manual_instance, new_goal_id
from app.scheduler.calendar_utils import Clock, current_iso_week, utc_now, weeks_until
from app.scheduler.connector import DocumentStore, mutate_latest_week
from app.scheduler.events import DREAMS_UPDATED, GOALS_UPDATED, EventBus
from app.scheduler.exceptions import InstanceNotFoundError, InvalidGoalError
from app.scheduler.models import (
    CompletionOutcome,
    DreamsDocument,
    GoalDraft,
    InstanceType,
    Result,
    WeekInstance,
)
from app.scheduler.notifications import Notifier
from app.scheduler.optimistic import LocalState, run_optimistic
from app.scheduler.parent_sync import ParentSync

logger = logging.getLogger(__name__)

Confirm = Callable[[WeekInstance], Union[bool, Awaitable[bool]]]
Change = Callable[[WeekInstance], WeekInstance]

SAVE_FAILED = "Failed to save goal. Please try again."
UNDO_FAILED = "Failed to undo goal. Please try again."
SKIP_FAILED = "Failed to skip goal. Please try again."
ADD_FAILED = "Failed to add goal. Please try again."
PARENT_SYNC_FAILED = "Goal saved, but its dream could not be updated."
DREAM_UPDATE_FAILED = "Goal added to this week, but its dream could not be updated."


# ---------------------------------------------------------------------------
# Pure policy helpers
# ---------------------------------------------------------------------------


def select_policy(instance: WeekInstance) -> Literal["counter", "toggle"]:
    if instance.recurrence is not None and instance.frequency:
        return "counter"
    return "toggle"


def toggled(instance: WeekInstance, completed: bool, now: datetime) -> WeekInstance:
    return instance.model_copy(
        update={"completed": completed, "completed_at": now if completed else None}
    )


def incremented(instance: WeekInstance, now: datetime) -> WeekInstance:
    frequency = instance.frequency or 1
    count = instance.completion_count or 0
    if count >= frequency:
        return instance
    count += 1
    completed = count >= frequency
    return instance.model_copy(
        update={
            "completion_count": count,
            "completion_dates": [*(instance.completion_dates or []), now],
            "completed": completed,
            "completed_at": (instance.completed_at or now) if completed else None,
        }
    )


def decremented(instance: WeekInstance) -> WeekInstance:
    count = instance.completion_count or 0
    if count <= 0:
        return instance
    count -= 1
    dates = list(instance.completion_dates or [])
    if dates:
        dates.pop()
    completed = count >= (instance.frequency or 1)
    return instance.model_copy(
        update={
            "completion_count": count,
            "completion_dates": dates,
            "completed": completed,
            "completed_at": instance.completed_at if completed else None,
        }
    )


def skipped(instance: WeekInstance, now: datetime) -> WeekInstance:
    return instance.model_copy(update={"skipped": True, "skipped_at": now})


def apply_change(
    goals: list[WeekInstance],
    instance_id: str,
    change: Change,
    missing: WeekInstance | None = None,
) -> list[WeekInstance]:
    """Replace `instance_id` with change(instance); append `missing` if absent."""
    updated: list[WeekInstance] = []
    found = False
    for goal in goals:
        if goal.id == instance_id:
            updated.append(change(goal))
            found = True
        else:
            updated.append(goal)
    if not found and missing is not None:
        updated.append(missing)
    return updated


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class CompletionEngine:
    def __init__(
        self,
        store: DocumentStore,
        state: LocalState,
        notifier: Notifier,
        parent_sync: ParentSync | None = None,
        clock: Clock | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self.store = store
        self.state = state
        self.notifier = notifier
        self.parent_sync = parent_sync
        self.clock = clock or utc_now
        self.bus = bus

    def _find(self, instance_id: str) -> WeekInstance:
        instance = self.state.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return instance

    async def _commit(
        self,
        user_id: str,
        instance: WeekInstance,
        optimistic: list[WeekInstance],
        change: Change,
        error_message: str,
    ) -> Result:
        fallback = self.state.instances

        async def persist() -> Result:
            return await mutate_latest_week(
                self.store,
                user_id,
                instance.week_id,
                lambda goals: apply_change(goals, instance.id, change, missing=change(instance)),
                fallback,
            )

        return await run_optimistic(self.state, optimistic, persist, self.notifier, error_message)

    @staticmethod
    def _persisted(result: Result, instance_id: str) -> WeekInstance | None:
        return next((g for g in result.data or [] if g.id == instance_id), None)

    async def _mutate(
        self,
        user_id: str,
        instance: WeekInstance,
        change: Change,
        error_message: str,
    ) -> CompletionOutcome:
        log_ctx = {"user_id": user_id, "instance_id": instance.id, "week_id": instance.week_id}
        optimistic = apply_change(self.state.instances, instance.id, change)
        result = await self._commit(user_id, instance, optimistic, change, error_message)
        if not result.success:
            logger.error("Goal update failed, reverted: %s", result.error, extra=log_ctx)
            return CompletionOutcome(ok=False, instance=instance, error=result.error)

        persisted = self._persisted(result, instance.id) or change(instance)
        self.state.replace(persisted)
        logger.debug("Goal updated", extra=log_ctx)
        return CompletionOutcome(ok=True, instance=persisted)

    # -- policies ----------------------------------------------------------------

    async def toggle(self, user_id: str, instance_id: str) -> CompletionOutcome:
        instance = self._find(instance_id)
        if select_policy(instance) == "counter":
            return await self.increment(user_id, instance_id)

        # Target value comes from what the user saw, not from the fresh copy
        target = not instance.completed
        now = self.clock()
        outcome = await self._mutate(
            user_id, instance, lambda g: toggled(g, target, now), SAVE_FAILED
        )
        if not outcome.ok or outcome.instance.type is not InstanceType.deadline:
            return outcome

        if self.parent_sync is None:
            return outcome
        sync = await self.parent_sync.sync(user_id, outcome.instance)
        outcome.parent_synced = sync.synced
        if sync.reason in ("write_failed", "dreams_unavailable"):
            self.notifier.warning(PARENT_SYNC_FAILED)
        return outcome

    async def increment(self, user_id: str, instance_id: str) -> CompletionOutcome:
        instance = self._find(instance_id)
        if select_policy(instance) != "counter":
            return await self.toggle(user_id, instance_id)
        if (instance.completion_count or 0) >= instance.frequency:
            return CompletionOutcome(ok=True, instance=instance)

        now = self.clock()
        return await self._mutate(user_id, instance, lambda g: incremented(g, now), SAVE_FAILED)

    async def decrement(self, user_id: str, instance_id: str) -> CompletionOutcome:
        instance = self._find(instance_id)
        if select_policy(instance) != "counter" or not instance.completion_count:
            return CompletionOutcome(ok=True, instance=instance)
        return await self._mutate(user_id, instance, decremented, UNDO_FAILED)

    async def skip(self, user_id: str, instance_id: str, confirm: Confirm) -> CompletionOutcome:
        instance = self._find(instance_id)
        answer = confirm(instance)
        if inspect.isawaitable(answer):
            answer = await answer
        if not answer:
            return CompletionOutcome(ok=False, instance=instance, cancelled=True)

        log_ctx = {"user_id": user_id, "instance_id": instance.id, "week_id": instance.week_id}
        now = self.clock()
        def change(goal: WeekInstance) -> WeekInstance:
            return skipped(goal, now)

        optimistic = [i for i in self.state.instances if i.id != instance.id]
        result = await self._commit(user_id, instance, optimistic, change, SKIP_FAILED)
        if not result.success:
            logger.error("Skip failed, reverted: %s", result.error, extra=log_ctx)
            return CompletionOutcome(ok=False, instance=instance, error=result.error)

        logger.info("Goal skipped for this week", extra=log_ctx)
        return CompletionOutcome(ok=True, instance=self._persisted(result, instance.id))

    # -- manual creation -----------------------------------------------------------

    async def add_goal(
        self,
        user_id: str,
        draft: GoalDraft,
        week_id: str | None = None,
    ) -> CompletionOutcome:
        now = self.clock()
        week_id = week_id or current_iso_week(now)
        log_ctx = {"user_id": user_id, "week_id": week_id}

        if (
            draft.consistency == "deadline"
            and draft.target_date is not None
            and weeks_until(draft.target_date, week_id) < 0
        ):
            logger.warning("Rejected deadline goal dated before %s", week_id, extra=log_ctx)
            raise InvalidGoalError(f"Target date {draft.target_date} is before week {week_id}")

        fetched = await self.store.get_dreams(user_id)
        if not fetched.success:
            logger.error("Add goal could not load dreams: %s", fetched.error, extra=log_ctx)
            self.notifier.error(ADD_FAILED)
            return CompletionOutcome(ok=False, error=fetched.error)
        doc: DreamsDocument = fetched.data

        dream = next((d for d in doc.dream_book if d.id == draft.dream_id), None)
        if draft.dream_id and dream is None:
            logger.warning("Dream %s not found, adding freestanding goal", draft.dream_id, extra=log_ctx)

        goal = build_dream_goal(draft, new_goal_id(now), week_id, now=now)
        instance = build_manual_instance(goal, dream, week_id, now=now)

        def append(goals: list[WeekInstance]) -> list[WeekInstance]:
            if any(g.id == instance.id for g in goals):
                return goals
            return [*goals, instance]

        fallback = self.state.instances

        async def persist() -> Result:
            return await mutate_latest_week(self.store, user_id, week_id, append, fallback)

        result = await run_optimistic(
            self.state, [*self.state.instances, instance], persist, self.notifier, ADD_FAILED
        )
        if not result.success:
            logger.error("Add goal failed, reverted: %s", result.error, extra=log_ctx)
            return CompletionOutcome(ok=False, error=result.error)

        logger.info("Goal added", extra={**log_ctx, "instance_id": instance.id})
        outcome = CompletionOutcome(ok=True, instance=instance)

        if dream is not None:
            dreams = [
                d.model_copy(update={"goals": [*d.goals, goal]}) if d.id == dream.id else d
                for d in doc.dream_book
            ]
            saved = await self.store.save_dreams(user_id, dreams, doc.weekly_goal_templates)
            outcome.parent_synced = saved.success
            if not saved.success:
                logger.error("Dream update after add failed: %s", saved.error, extra=log_ctx)
                self.notifier.warning(DREAM_UPDATE_FAILED)
            elif self.bus is not None:
                await self.bus.publish(DREAMS_UPDATED, {"user_id": user_id})

        if self.bus is not None:
            await self.bus.publish(GOALS_UPDATED, {"user_id": user_id})
        return outcome
