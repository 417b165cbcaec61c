"""One-off repair for legacy templates saved without a dreamId.

Templates carry the dream title they were created under; the repair links
them back by title and writes every fix in one ``save_dreams``. Runs on
demand, never from instantiation.
"""

from __future__ import annotations

import logging

from app.scheduler.connector import DocumentStore
from app.scheduler.exceptions import PersistenceError
from app.scheduler.models import DreamsDocument, RepairReport

logger = logging.getLogger(__name__)


async def repair_legacy_templates(store: DocumentStore, user_id: str) -> RepairReport:
    fetched = await store.get_dreams(user_id)
    if not fetched.success:
        raise PersistenceError(f"Failed to load dreams: {fetched.error}")
    doc: DreamsDocument = fetched.data

    by_title = {dream.title.strip(): dream for dream in doc.dream_book if dream.title}
    report = RepairReport()
    templates = []
    for template in doc.weekly_goal_templates:
        if template.dream_id:
            templates.append(template)
            continue
        report.total += 1
        dream = by_title.get(template.dream_title.strip())
        if dream is None:
            logger.warning(
                "No dream titled %r for template",
                template.dream_title,
                extra={"user_id": user_id, "template_id": template.id},
            )
            report.errors += 1
            templates.append(template)
            continue
        templates.append(
            template.model_copy(
                update={
                    "dream_id": dream.id,
                    "dream_category": template.dream_category or dream.category,
                }
            )
        )
        report.fixed += 1

    if report.fixed:
        saved = await store.save_dreams(user_id, doc.dream_book, templates)
        if not saved.success:
            raise PersistenceError(f"Failed to save repaired templates: {saved.error}")
        logger.info(
            "Repaired %d legacy template(s)", report.fixed, extra={"user_id": user_id}
        )
    return report
