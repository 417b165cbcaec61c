"""Document store — async access to week_documents, dream_documents and past_weeks.

Both shared resources are read in full, mutated in memory and written in
full; there is no field-level patch API. Every call returns a `Result` and
never raises: database errors are logged and returned as failures.

Tables (JSONB payload columns):
    week_documents(user_id, week_id, goals, stats, updated_at)   PK (user_id, week_id)
    dream_documents(user_id, dream_book, weekly_goal_templates, updated_at)   PK user_id
    past_weeks(user_id, week_id, summary, archived_at)   PK (user_id, week_id)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from typing import Any, Protocol

from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.scheduler.models import (
    Dream,
    DreamsDocument,
    GoalTemplate,
    Result,
    WeekDocument,
    WeekInstance,
    WeekSummary,
)

logger = logging.getLogger(__name__)

# A stored document that no longer parses is reported like a database error.
READ_ERRORS = (SQLAlchemyError, ValidationError, json.JSONDecodeError)


class DocumentStore(Protocol):
    async def get_current_week(self, user_id: str) -> Result: ...

    async def get_week(self, user_id: str, week_id: str) -> Result: ...

    async def save_week(
        self,
        user_id: str,
        week_id: str,
        goals: Sequence[WeekInstance],
        stats: dict[str, Any] | None = None,
    ) -> Result: ...

    async def get_dreams(self, user_id: str) -> Result: ...

    async def save_dreams(
        self,
        user_id: str,
        dreams: Sequence[Dream],
        templates: Sequence[GoalTemplate],
    ) -> Result: ...

    async def archive_week(self, user_id: str, week_id: str, summary: WeekSummary) -> Result: ...


def _json(value: Any) -> str:
    return json.dumps(value, default=str)


def _load(value: Any) -> Any:
    # asyncpg hands JSONB back as text unless a codec is registered
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def _documents(items: Sequence[Any]) -> list[dict[str, Any]]:
    return [item.to_document() for item in items]


class SqlDocumentStore:
    """DocumentStore over Postgres using raw SQL and JSONB bind parameters."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _fetch_one(self, query: str, params: dict[str, Any]) -> dict[str, Any] | None:
        result = await self._session.execute(text(query), params)
        row = result.fetchone()
        if row is None:
            return None
        return dict(zip(result.keys(), row))

    async def _write(self, query: str, params: dict[str, Any]) -> None:
        try:
            await self._session.execute(text(query), params)
            await self._session.commit()
        except SQLAlchemyError:
            await self._session.rollback()
            raise

    def _week_from_row(self, user_id: str, row: dict[str, Any]) -> WeekDocument:
        return WeekDocument(
            user_id=user_id,
            week_id=row["week_id"],
            goals=_load(row.get("goals")) or [],
            stats=_load(row.get("stats")) or {},
        )

    # -- week documents ------------------------------------------------------

    async def get_current_week(self, user_id: str) -> Result:
        """Latest week document for the user (ISO ids sort chronologically)."""
        try:
            row = await self._fetch_one(
                "SELECT week_id, goals, stats FROM week_documents "
                "WHERE user_id = :user_id ORDER BY week_id DESC LIMIT 1",
                {"user_id": user_id},
            )
            doc = self._week_from_row(user_id, row) if row else None
        except READ_ERRORS as exc:
            logger.error("get_current_week failed: %s", exc, extra={"user_id": user_id})
            return Result.fail(str(exc))
        return Result.ok(doc)

    async def get_week(self, user_id: str, week_id: str) -> Result:
        try:
            row = await self._fetch_one(
                "SELECT week_id, goals, stats FROM week_documents "
                "WHERE user_id = :user_id AND week_id = :week_id",
                {"user_id": user_id, "week_id": week_id},
            )
            doc = self._week_from_row(user_id, row) if row else None
        except READ_ERRORS as exc:
            logger.error(
                "get_week failed: %s", exc, extra={"user_id": user_id, "week_id": week_id}
            )
            return Result.fail(str(exc))
        return Result.ok(doc)

    async def save_week(
        self,
        user_id: str,
        week_id: str,
        goals: Sequence[WeekInstance],
        stats: dict[str, Any] | None = None,
    ) -> Result:
        """Replace the whole goals array of (user_id, week_id)."""
        doc = WeekDocument(user_id=user_id, week_id=week_id, goals=list(goals), stats=stats or {})
        payload = doc.to_document()
        try:
            await self._write(
                "INSERT INTO week_documents (user_id, week_id, goals, stats, updated_at) "
                "VALUES (:user_id, :week_id, CAST(:goals AS JSONB), CAST(:stats AS JSONB), now()) "
                "ON CONFLICT (user_id, week_id) DO UPDATE SET "
                "goals = EXCLUDED.goals, stats = EXCLUDED.stats, updated_at = now()",
                {
                    "user_id": user_id,
                    "week_id": week_id,
                    "goals": _json(payload["goals"]),
                    "stats": _json(payload["stats"]),
                },
            )
        except SQLAlchemyError as exc:
            logger.error(
                "save_week failed: %s", exc, extra={"user_id": user_id, "week_id": week_id}
            )
            return Result.fail(str(exc))
        return Result.ok(doc)

    # -- dream documents -----------------------------------------------------

    async def get_dreams(self, user_id: str) -> Result:
        """Dream book plus legacy templates. Empty document when none is stored."""
        try:
            row = await self._fetch_one(
                "SELECT dream_book, weekly_goal_templates FROM dream_documents "
                "WHERE user_id = :user_id",
                {"user_id": user_id},
            )
            if row is None:
                doc = DreamsDocument(user_id=user_id)
            else:
                doc = DreamsDocument(
                    user_id=user_id,
                    dream_book=_load(row.get("dream_book")) or [],
                    weekly_goal_templates=_load(row.get("weekly_goal_templates")) or [],
                )
        except READ_ERRORS as exc:
            logger.error("get_dreams failed: %s", exc, extra={"user_id": user_id})
            return Result.fail(str(exc))
        return Result.ok(doc)

    async def save_dreams(
        self,
        user_id: str,
        dreams: Sequence[Dream],
        templates: Sequence[GoalTemplate],
    ) -> Result:
        """Write dream book and templates together in one statement."""
        doc = DreamsDocument(
            user_id=user_id,
            dream_book=list(dreams),
            weekly_goal_templates=list(templates),
        )
        try:
            await self._write(
                "INSERT INTO dream_documents (user_id, dream_book, weekly_goal_templates, updated_at) "
                "VALUES (:user_id, CAST(:dream_book AS JSONB), CAST(:templates AS JSONB), now()) "
                "ON CONFLICT (user_id) DO UPDATE SET "
                "dream_book = EXCLUDED.dream_book, "
                "weekly_goal_templates = EXCLUDED.weekly_goal_templates, "
                "updated_at = now()",
                {
                    "user_id": user_id,
                    "dream_book": _json(_documents(doc.dream_book)),
                    "templates": _json(_documents(doc.weekly_goal_templates)),
                },
            )
        except SQLAlchemyError as exc:
            logger.error("save_dreams failed: %s", exc, extra={"user_id": user_id})
            return Result.fail(str(exc))
        return Result.ok(doc)

    # -- history ---------------------------------------------------------------

    async def archive_week(self, user_id: str, week_id: str, summary: WeekSummary) -> Result:
        try:
            await self._write(
                "INSERT INTO past_weeks (user_id, week_id, summary, archived_at) "
                "VALUES (:user_id, :week_id, CAST(:summary AS JSONB), now()) "
                "ON CONFLICT (user_id, week_id) DO UPDATE SET summary = EXCLUDED.summary",
                {"user_id": user_id, "week_id": week_id, "summary": _json(summary.to_document())},
            )
        except SQLAlchemyError as exc:
            logger.error(
                "archive_week failed: %s", exc, extra={"user_id": user_id, "week_id": week_id}
            )
            return Result.fail(str(exc))
        return Result.ok(summary)


# ---------------------------------------------------------------------------
# Re-fetch-then-mutate-then-save
# ---------------------------------------------------------------------------


async def mutate_latest_week(
    store: DocumentStore,
    user_id: str,
    week_id: str,
    mutate: Callable[[list[WeekInstance]], list[WeekInstance]],
    fallback: Sequence[WeekInstance] = (),
) -> Result:
    """Apply `mutate` to the authoritative goals array and save it whole.

    `fallback` is mutated only when the week document does not exist yet. A
    failed re-fetch aborts without writing so a stale array is never saved
    back. On success `data` is the saved goals list.
    """
    fetched = await store.get_week(user_id, week_id)
    if not fetched.success:
        logger.warning(
            "Re-fetch failed, not writing: %s",
            fetched.error,
            extra={"user_id": user_id, "week_id": week_id},
        )
        return Result.fail(fetched.error or "Failed to load latest week")

    doc: WeekDocument | None = fetched.data
    if doc is None:
        latest = [instance.model_copy(deep=True) for instance in fallback]
        stats = None
    else:
        latest = list(doc.goals)
        stats = doc.stats

    goals = mutate(latest)
    saved = await store.save_week(user_id, week_id, goals, stats)
    if not saved.success:
        return Result.fail(saved.error or "Failed to save week")
    return Result.ok(goals)
