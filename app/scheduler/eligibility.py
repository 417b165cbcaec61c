"""Eligibility filter — which definitions still need an instance this week.

Rules run in a fixed order and stop at the first match:

1. owning dream no longer exists (orphaned template)
2. ``active is False``
3. ``completed``
4. skipped this week (a skip sits out one week and never stops a goal)
5. deadline whose target date has passed or whose weeks remaining is negative
6. consistency goal explicitly expired (absent countdown = open-ended) or
   without a recurrence
7. an instance already exists for this week

Every function here is pure. Exclusions are logged at DEBUG with their reason.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from app.scheduler.calendar_utils import months_to_weeks, weeks_until
from app.scheduler.definitions import Definition
from app.scheduler.models import COMPLETED_SENTINEL, InstanceType, WeekInstance

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Countdown resolution
# ---------------------------------------------------------------------------


def resolve_weeks_remaining(defn: Definition, week_id: str) -> int | None:
    """Weeks left for `defn` as seen from `week_id`.

    Deadline: a target date already behind `week_id` is final. Otherwise the
    cached countdown unless absent or the completion sentinel, in which case the
    target date wins, then target_weeks; -1 when nothing is known.
    Consistency: cached, then target_weeks, then target_months; None = open-ended.
    """
    cached = defn.weeks_remaining
    if defn.is_deadline:
        if defn.target_date is not None and weeks_until(defn.target_date, week_id) < 0:
            return -1
        if cached is not None and cached != COMPLETED_SENTINEL:
            return cached
        if cached == COMPLETED_SENTINEL and defn.target_date is not None:
            return weeks_until(defn.target_date, week_id)
        if defn.target_weeks is not None:
            return defn.target_weeks
        if defn.target_date is not None:
            return weeks_until(defn.target_date, week_id)
        return -1

    if cached is not None:
        return cached
    if defn.target_weeks is not None:
        return defn.target_weeks
    if defn.target_months:
        return months_to_weeks(defn.target_months)
    return None


# ---------------------------------------------------------------------------
# Existing-instance lookups
# ---------------------------------------------------------------------------


def skipped_template_ids(instances: Iterable[WeekInstance]) -> set[str]:
    """templateIds skipped this week. Must be built from the freshly fetched set."""
    return {i.template_id for i in instances if i.skipped and i.template_id}


def instance_exists(defn_id: str, week_id: str, instances: Iterable[WeekInstance]) -> bool:
    composite = f"{defn_id}_{week_id}"
    return any(
        i.id == defn_id or i.template_id == defn_id or i.id == composite
        for i in instances
    )


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


def exclusion_reason(
    defn: Definition,
    week_id: str,
    existing: Sequence[WeekInstance],
    skipped_ids: set[str],
    dream_ids: set[str],
) -> str | None:
    """First rule that excludes `defn`, or None when it needs an instance."""
    if not defn.dream_id or defn.dream_id not in dream_ids:
        return "orphaned"
    if defn.active is False:
        return "inactive"
    if defn.completed:
        return "completed"
    if defn.identities & skipped_ids:
        return "skipped_this_week"

    weeks_remaining = resolve_weeks_remaining(defn, week_id)
    if defn.is_deadline:
        if weeks_remaining is None or weeks_remaining < 0:
            return "deadline_passed"
    else:
        if weeks_remaining is not None and weeks_remaining < 0:
            return "expired"
        if defn.recurrence is None:
            return "no_recurrence"

    if any(instance_exists(ident, week_id, existing) for ident in defn.identities):
        return "instance_exists"
    return None


def dedupe_definitions(defns: Iterable[Definition]) -> list[Definition]:
    """Drop later definitions sharing an id (or template goal_id) with an earlier one."""
    seen: set[str] = set()
    unique: list[Definition] = []
    for defn in defns:
        if defn.identities & seen:
            logger.debug(
                "Duplicate definition dropped",
                extra={"template_id": defn.id, "source": defn.source},
            )
            continue
        seen |= defn.identities
        unique.append(defn)
    return unique


def select_eligible(
    defns: Iterable[Definition],
    existing: Sequence[WeekInstance],
    skipped_ids: set[str],
    dream_ids: set[str],
    week_id: str,
) -> list[Definition]:
    eligible: list[Definition] = []
    for defn in dedupe_definitions(defns):
        reason = exclusion_reason(defn, week_id, existing, skipped_ids, dream_ids)
        if reason is not None:
            logger.debug(
                "Definition excluded: %s",
                reason,
                extra={"template_id": defn.id, "week_id": week_id, "title": defn.title},
            )
            continue
        eligible.append(defn)
    return eligible


def visible_instances(instances: Iterable[WeekInstance], week_id: str) -> list[WeekInstance]:
    """UI-facing list: no skipped instances, no deadlines that have passed."""
    visible: list[WeekInstance] = []
    for instance in instances:
        if instance.skipped:
            continue
        if instance.type is InstanceType.deadline:
            if instance.target_date is not None:
                remaining = weeks_until(instance.target_date, week_id)
            else:
                remaining = instance.weeks_remaining
            if remaining is not None and remaining < 0:
                continue
        visible.append(instance)
    return visible
