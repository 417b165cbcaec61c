"""Instantiation engine — expand a week document with the instances it is missing.

Flow per load:

1. resolve the week id (clock, configured timezone)
2. fetch the week document; a failed fetch degrades to an empty list and
   no write happens, so an unreadable document is never overwritten
3. collect skipped templateIds from the freshly fetched set
4. filter templates + dream goals through the eligibility rules
5. build the new instances
6. save ``existing + new`` once, or skip the write when nothing is new
7. hide skipped and expired instances from the returned list

The engine never raises for persistence problems: every failure is logged
and reported through `InstantiationOutcome.error`.
"""

from __future__ import annotations

import logging

from app.scheduler.builders import build_instance
from app.scheduler.calendar_utils import Clock, current_iso_week, parse_iso_week, utc_now
from app.scheduler.connector import DocumentStore
from app.scheduler.definitions import definitions_from
from app.scheduler.eligibility import select_eligible, skipped_template_ids, visible_instances
from app.scheduler.models import DreamsDocument, InstantiationOutcome, WeekDocument, WeekInstance

logger = logging.getLogger(__name__)


class InstantiationEngine:
    def __init__(self, store: DocumentStore, clock: Clock | None = None) -> None:
        self.store = store
        self.clock = clock or utc_now

    async def load_week(self, user_id: str, week_id: str | None = None) -> InstantiationOutcome:
        """Load `week_id` (default: current week), creating missing instances.

        Raises InvalidWeekIdError for a malformed `week_id`; nothing else escapes.
        """
        week_id = week_id or current_iso_week(self.clock())
        parse_iso_week(week_id)
        log_ctx = {"user_id": user_id, "week_id": week_id}

        try:
            return await self._load(user_id, week_id, log_ctx)
        except Exception as exc:
            logger.exception("Week load failed", extra=log_ctx)
            return InstantiationOutcome(week_id=week_id, error=str(exc) or exc.__class__.__name__)

    async def _load(self, user_id: str, week_id: str, log_ctx: dict) -> InstantiationOutcome:
        fetched = await self.store.get_week(user_id, week_id)
        if not fetched.success:
            logger.warning("Week fetch failed, showing empty week: %s", fetched.error, extra=log_ctx)
            return InstantiationOutcome(week_id=week_id, error=fetched.error)

        doc: WeekDocument | None = fetched.data
        existing: list[WeekInstance] = list(doc.goals) if doc else []
        stats = doc.stats if doc else None

        dreams_result = await self.store.get_dreams(user_id)
        if not dreams_result.success:
            logger.warning(
                "Dreams fetch failed, showing persisted instances: %s",
                dreams_result.error,
                extra=log_ctx,
            )
            return self._outcome(week_id, existing, error=dreams_result.error)

        dreams_doc: DreamsDocument = dreams_result.data
        skipped = skipped_template_ids(existing)
        dream_ids = {dream.id for dream in dreams_doc.dream_book}
        eligible = select_eligible(
            definitions_from(dreams_doc), existing, skipped, dream_ids, week_id
        )

        if not eligible:
            logger.debug("No new instances needed", extra=log_ctx)
            return self._outcome(week_id, existing)

        now = self.clock()
        new_instances = [build_instance(defn, week_id, week_id, now=now) for defn in eligible]
        goals = existing + new_instances

        saved = await self.store.save_week(user_id, week_id, goals, stats)
        if not saved.success:
            # Nothing changed remotely; the next load retries deterministically
            logger.error("Failed to save new instances: %s", saved.error, extra=log_ctx)
            return self._outcome(week_id, existing, error=saved.error)

        created = [instance.id for instance in new_instances]
        logger.info("Created %d goal instance(s)", len(created), extra=log_ctx)
        return self._outcome(week_id, goals, created=created, saved=True)

    @staticmethod
    def _outcome(
        week_id: str,
        goals: list[WeekInstance],
        *,
        created: list[str] | None = None,
        saved: bool = False,
        error: str | None = None,
    ) -> InstantiationOutcome:
        return InstantiationOutcome(
            week_id=week_id,
            instances=visible_instances(goals, week_id),
            goals=goals,
            created=created or [],
            saved=saved,
            error=error,
        )
