"""Parent sync — mirror a deadline instance's completion onto its definition.

Completing a deadline instance marks the owning dream goal (and the legacy
template that shadows it, if any) ``completed`` and ``inactive`` so the
eligibility filter never regenerates it. Both records go out in a single
``save_dreams`` call; two sequential writes would leave a window where the
template still looks open and the goal reappears next week.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from app.scheduler.calendar_utils import Clock, utc_now, weeks_until
from app.scheduler.connector import DocumentStore
from app.scheduler.events import DREAMS_UPDATED, EventBus
from app.scheduler.models import (
    COMPLETED_SENTINEL,
    Dream,
    DreamGoal,
    DreamsDocument,
    GoalTemplate,
    InstanceType,
    SyncOutcome,
    WeekInstance,
)

logger = logging.getLogger(__name__)


def _completion_changes(
    record: DreamGoal | GoalTemplate,
    completed: bool,
    now: datetime,
    week_id: str,
) -> dict[str, Any]:
    if completed:
        # Keep the first captured value when completing twice
        before = record.active_before_completion if record.completed else record.active
        return {
            "completed": True,
            "active": False,
            "completed_at": now,
            "weeks_remaining": COMPLETED_SENTINEL,
            "active_before_completion": before,
        }

    weeks_remaining = record.weeks_remaining
    if weeks_remaining == COMPLETED_SENTINEL:
        if record.target_date is not None:
            weeks_remaining = weeks_until(record.target_date, week_id)
        else:
            weeks_remaining = record.target_weeks
    restored = record.active_before_completion
    return {
        "completed": False,
        "active": True if restored is None else restored,
        "completed_at": None,
        "weeks_remaining": weeks_remaining,
        "active_before_completion": None,
    }


def synced_goal(goal: DreamGoal, completed: bool, now: datetime, week_id: str) -> DreamGoal:
    return goal.model_copy(update=_completion_changes(goal, completed, now, week_id))


def synced_template(template: GoalTemplate, completed: bool, now: datetime, week_id: str) -> GoalTemplate:
    return template.model_copy(update=_completion_changes(template, completed, now, week_id))


def _find_goal(doc: DreamsDocument, dream_id: str | None, goal_id: str) -> tuple[Dream, DreamGoal] | None:
    candidates = sorted(doc.dream_book, key=lambda d: d.id != dream_id)
    for dream in candidates:
        for goal in dream.goals:
            if goal.id == goal_id:
                return dream, goal
    return None


class ParentSync:
    def __init__(self, store: DocumentStore, bus: EventBus | None = None, clock: Clock | None = None) -> None:
        self.store = store
        self.bus = bus
        self.clock = clock or utc_now

    async def sync(self, user_id: str, instance: WeekInstance) -> SyncOutcome:
        if instance.type is not InstanceType.deadline:
            return SyncOutcome(reason="not_deadline")

        goal_id = instance.template_id or instance.id
        log_ctx = {"user_id": user_id, "instance_id": instance.id, "template_id": goal_id}

        fetched = await self.store.get_dreams(user_id)
        if not fetched.success:
            logger.error("Parent sync could not load dreams: %s", fetched.error, extra=log_ctx)
            return SyncOutcome(goal_id=goal_id, reason="dreams_unavailable")
        doc: DreamsDocument = fetched.data

        match = _find_goal(doc, instance.dream_id, goal_id)
        template = next(
            (t for t in doc.weekly_goal_templates if t.id == goal_id or t.goal_id == goal_id),
            None,
        )
        if match is None and template is not None and template.goal_id:
            match = _find_goal(doc, instance.dream_id, template.goal_id)
        if match is None and template is None:
            logger.warning("Parent goal not found, skipping sync", extra=log_ctx)
            return SyncOutcome(goal_id=goal_id, reason="goal_not_found")

        now = self.clock()
        dreams = list(doc.dream_book)
        if match is not None:
            owner, goal = match
            updated_goal = synced_goal(goal, instance.completed, now, instance.week_id)
            dreams = [
                dream.model_copy(
                    update={"goals": [updated_goal if g.id == goal.id else g for g in dream.goals]}
                )
                if dream.id == owner.id
                else dream
                for dream in dreams
            ]

        templates = list(doc.weekly_goal_templates)
        if template is not None:
            updated_template = synced_template(template, instance.completed, now, instance.week_id)
            templates = [updated_template if t.id == template.id else t for t in templates]

        saved = await self.store.save_dreams(user_id, dreams, templates)
        outcome = SyncOutcome(
            goal_id=match[1].id if match else None,
            template_id=template.id if template else None,
        )
        if not saved.success:
            logger.error("Parent sync write failed: %s", saved.error, extra=log_ctx)
            outcome.reason = "write_failed"
            return outcome

        logger.info(
            "Parent goal %s",
            "completed and deactivated" if instance.completed else "reopened",
            extra=log_ctx,
        )
        outcome.synced = True
        if self.bus is not None:
            await self.bus.publish(DREAMS_UPDATED, {"user_id": user_id})
        return outcome
