"""Instance builders — definitions in, fully populated records out.

Pure and total: no I/O, no exceptions for missing optional fields. Auto
instantiation and manual goal creation both go through `build_instance`, so
the two paths cannot drift apart in field shape.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from app.config import settings
from app.scheduler.calendar_utils import months_to_weeks, weeks_until
from app.scheduler.definitions import Definition, definition_for_goal
from app.scheduler.eligibility import resolve_weeks_remaining
from app.scheduler.models import (
    Dream,
    DreamGoal,
    GoalDraft,
    GoalKind,
    InstanceType,
    Recurrence,
    WeekInstance,
)


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def default_frequency(recurrence: Recurrence) -> int:
    if recurrence is Recurrence.monthly:
        return settings.default_monthly_frequency
    return settings.default_weekly_frequency


def new_goal_id(now: datetime | None = None) -> str:
    stamp = int(_now(now).timestamp() * 1000)
    return f"goal_{stamp}_{uuid.uuid4().hex[:9]}"


def build_instance(
    defn: Definition,
    week_id: str,
    current_week_id: str | None = None,
    *,
    now: datetime | None = None,
    instance_id: str | None = None,
) -> WeekInstance:
    """Materialize `defn` for `week_id`.

    Countdowns are computed relative to `current_week_id` (defaults to the
    target week). Recurring instances always start uncompleted; deadline
    instances read completion through from their parent.
    """
    reference_week = current_week_id or week_id
    base = dict(
        id=instance_id or f"{defn.id}_{week_id}",
        template_id=defn.id,
        title=defn.title,
        description=defn.description,
        dream_id=defn.dream_id,
        dream_title=defn.dream_title,
        dream_category=defn.dream_category,
        week_id=week_id,
        created_at=_now(now),
        skipped=False,
    )

    if defn.is_deadline:
        if defn.target_date is not None:
            weeks_remaining = weeks_until(defn.target_date, reference_week)
            target_weeks = weeks_remaining
        else:
            weeks_remaining = resolve_weeks_remaining(defn, reference_week)
            target_weeks = defn.target_weeks
        return WeekInstance(
            **base,
            type=InstanceType.deadline,
            completed=defn.completed,
            completed_at=defn.completed_at if defn.completed else None,
            target_date=defn.target_date,
            target_weeks=target_weeks,
            weeks_remaining=weeks_remaining,
        )

    recurrence = defn.recurrence or Recurrence.weekly
    if recurrence is Recurrence.monthly and defn.target_months:
        target_weeks = months_to_weeks(defn.target_months)
    else:
        target_weeks = defn.target_weeks
    weeks_remaining = resolve_weeks_remaining(defn, reference_week)
    if weeks_remaining is None:
        weeks_remaining = target_weeks

    return WeekInstance(
        **base,
        type=InstanceType.weekly_goal,
        completed=False,
        completed_at=None,
        recurrence=recurrence,
        frequency=defn.frequency or default_frequency(recurrence),
        completion_count=0,
        completion_dates=[],
        target_weeks=target_weeks,
        target_months=defn.target_months if recurrence is Recurrence.monthly else None,
        weeks_remaining=weeks_remaining,
    )


def build_dream_goal(
    draft: GoalDraft,
    goal_id: str,
    current_week_id: str,
    *,
    now: datetime | None = None,
) -> DreamGoal:
    """Goal definition stored in `dream.goals` for a manually added goal."""
    created = _now(now)

    if draft.consistency == "deadline":
        if draft.target_date is not None:
            weeks = weeks_until(draft.target_date, current_week_id)
        else:
            weeks = draft.target_weeks
        return DreamGoal(
            id=goal_id,
            title=draft.title,
            description=draft.description,
            type=GoalKind.deadline,
            target_date=draft.target_date,
            target_weeks=weeks,
            weeks_remaining=weeks,
            created_at=created,
            start_date=created,
        )

    recurrence = Recurrence(draft.consistency)
    if recurrence is Recurrence.monthly and draft.target_months:
        target_weeks = months_to_weeks(draft.target_months)
    else:
        target_weeks = draft.target_weeks
    return DreamGoal(
        id=goal_id,
        title=draft.title,
        description=draft.description,
        type=GoalKind.consistency,
        recurrence=recurrence,
        frequency=draft.frequency or default_frequency(recurrence),
        target_weeks=target_weeks,
        target_months=draft.target_months if recurrence is Recurrence.monthly else None,
        weeks_remaining=target_weeks,
        created_at=created,
        start_date=created,
    )


def build_manual_instance(
    goal: DreamGoal,
    dream: Dream | None,
    week_id: str,
    *,
    now: datetime | None = None,
) -> WeekInstance:
    """Instance for a manually added goal: id and templateId are both the goal id."""
    defn = definition_for_goal(goal, dream)
    return build_instance(defn, week_id, week_id, now=now, instance_id=goal.id)
