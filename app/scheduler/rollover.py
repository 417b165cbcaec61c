"""Weekly rollover — archive finished weeks and open the target week.

1. load the user's latest week document; nothing to do when there is none
   or it is not behind the target
2. archive every week from it up to (not including) the target: the
   document's own week gets real totals and a score, missed weeks empty ones
3. advance cached countdowns in one ``save_dreams``
4. create the target week document and run instantiation for it

Re-running for the same target is a no-op: once the target document exists
it is the latest week and step 1 stops.
"""

from __future__ import annotations

import logging

from app.config import settings
from app.scheduler.calendar_utils import (
    Clock,
    current_iso_week,
    months_to_weeks,
    parse_iso_week,
    utc_now,
    week_range,
    week_start,
    weeks_between,
    weeks_until,
)
from app.scheduler.connector import DocumentStore
from app.scheduler.eligibility import skipped_template_ids
from app.scheduler.instantiation import InstantiationEngine
from app.scheduler.models import (
    COMPLETED_SENTINEL,
    DreamGoal,
    DreamsDocument,
    GoalKind,
    GoalTemplate,
    InstanceType,
    Recurrence,
    RolloverOutcome,
    WeekDocument,
    WeekInstance,
    WeekSummary,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def instance_points(instance: WeekInstance) -> int:
    if not instance.completed:
        return 0
    if instance.recurrence is Recurrence.monthly or instance.type is InstanceType.monthly_goal:
        return settings.score_monthly
    if instance.type is InstanceType.deadline:
        return settings.score_deadline
    return settings.score_weekly


def summarize_week(doc: WeekDocument) -> WeekSummary:
    start, end = week_range(doc.week_id)
    return WeekSummary(
        week_id=doc.week_id,
        total_goals=len(doc.goals),
        completed_goals=sum(1 for g in doc.goals if g.completed),
        skipped_goals=sum(1 for g in doc.goals if g.skipped),
        score=sum(instance_points(g) for g in doc.goals),
        week_start_date=start,
        week_end_date=end,
    )


def empty_summary(week_id: str) -> WeekSummary:
    start, end = week_range(week_id)
    return WeekSummary(week_id=week_id, week_start_date=start, week_end_date=end)


# ---------------------------------------------------------------------------
# Countdowns
# ---------------------------------------------------------------------------


def advanced(
    record: DreamGoal | GoalTemplate,
    kind: GoalKind,
    elapsed: int,
    target_week: str,
) -> DreamGoal | GoalTemplate:
    """Countdown of `record` after `elapsed` weeks; exhausted goals go inactive."""
    if record.completed:
        return record

    if kind is GoalKind.deadline:
        if record.target_date is not None:
            remaining = weeks_until(record.target_date, target_week)
        elif record.weeks_remaining is not None and record.weeks_remaining != COMPLETED_SENTINEL:
            remaining = max(-1, record.weeks_remaining - elapsed)
        else:
            return record
    else:
        current = record.weeks_remaining
        if current is None:
            current = record.target_weeks
        if current is None and record.target_months:
            current = months_to_weeks(record.target_months)
        if current is None:
            return record
        remaining = max(-1, current - elapsed)

    update: dict = {"weeks_remaining": remaining}
    if remaining < 0:
        update["active"] = False
    return record.model_copy(update=update)


def advance_countdowns(
    doc: DreamsDocument,
    instances: list[WeekInstance],
    elapsed: int,
    target_week: str,
) -> DreamsDocument | None:
    """Dreams document with countdowns advanced, or None when nothing changed.

    Only definitions that had an instance in the rolled week move; a skipped
    instance freezes its definition's countdown.
    """
    instantiated = {i.template_id for i in instances if i.template_id}
    skipped = skipped_template_ids(instances)
    changed = False

    def step(
        record: DreamGoal | GoalTemplate,
        kind: GoalKind,
        ids: set[str],
    ) -> DreamGoal | GoalTemplate:
        nonlocal changed
        if not ids & instantiated or ids & skipped:
            return record
        updated = advanced(record, kind, elapsed, target_week)
        if updated is not record:
            changed = True
        return updated

    templates = [
        step(t, t.goal_type, {t.id, t.goal_id} - {None}) for t in doc.weekly_goal_templates
    ]
    dreams = [
        dream.model_copy(update={"goals": [step(g, g.type, {g.id}) for g in dream.goals]})
        for dream in doc.dream_book
    ]
    if not changed:
        return None
    return DreamsDocument(user_id=doc.user_id, dream_book=dreams, weekly_goal_templates=templates)


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


async def rollover_week(
    store: DocumentStore,
    user_id: str,
    target_week_id: str | None = None,
    clock: Clock | None = None,
) -> RolloverOutcome:
    clock = clock or utc_now
    target = target_week_id or current_iso_week(clock())
    parse_iso_week(target)
    log_ctx = {"user_id": user_id, "week_id": target}

    latest = await store.get_current_week(user_id)
    if not latest.success:
        logger.error("Rollover could not load current week: %s", latest.error, extra=log_ctx)
        return RolloverOutcome(to_week=target, message=f"Failed to load current week: {latest.error}")

    doc: WeekDocument | None = latest.data
    if doc is None:
        return RolloverOutcome(to_week=target, message="No week document to roll over")
    if week_start(doc.week_id) >= week_start(target):
        return RolloverOutcome(from_week=doc.week_id, to_week=target, message="Already up to date")

    weeks = weeks_between(doc.week_id, target)
    archived: list[str] = []
    for week_id in weeks:
        summary = summarize_week(doc) if week_id == doc.week_id else empty_summary(week_id)
        result = await store.archive_week(user_id, week_id, summary)
        if not result.success:
            logger.error("Archiving %s failed: %s", week_id, result.error, extra=log_ctx)
            return RolloverOutcome(
                from_week=doc.week_id,
                to_week=target,
                archived=archived,
                message=f"Failed to archive {week_id}",
            )
        archived.append(week_id)

    dreams = await store.get_dreams(user_id)
    if dreams.success:
        advanced_doc = advance_countdowns(dreams.data, doc.goals, len(weeks), target)
        if advanced_doc is not None:
            saved = await store.save_dreams(
                user_id, advanced_doc.dream_book, advanced_doc.weekly_goal_templates
            )
            if not saved.success:
                logger.error("Countdown update failed: %s", saved.error, extra=log_ctx)
    else:
        logger.error("Rollover could not load dreams: %s", dreams.error, extra=log_ctx)

    existing = await store.get_week(user_id, target)
    if existing.success and existing.data is None:
        created = await store.save_week(user_id, target, [])
        if not created.success:
            logger.error("Could not create %s: %s", target, created.error, extra=log_ctx)

    outcome = await InstantiationEngine(store, clock).load_week(user_id, target)
    logger.info("Rolled over %s -> %s", doc.week_id, target, extra=log_ctx)
    return RolloverOutcome(
        rolled=True,
        from_week=doc.week_id,
        to_week=target,
        archived=archived,
        goals_count=len(outcome.goals),
        message=f"Archived {len(archived)} week(s)",
    )
