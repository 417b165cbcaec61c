"""Scheduler documents and outcomes — Pydantic v2 models.

Stored documents use camelCase keys (``templateId``, ``weekId``, ...). Every
document model accepts both the alias and the field name, and keeps unknown
keys so whole-array writes never drop fields owned by other features.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

TEMPLATE_TYPE = "weekly_goal_template"

# weeksRemaining written on completion; forces a recompute on reactivation
COMPLETED_SENTINEL = -1


class GoalKind(str, Enum):
    deadline = "deadline"
    consistency = "consistency"


class Recurrence(str, Enum):
    weekly = "weekly"
    monthly = "monthly"


class InstanceType(str, Enum):
    weekly_goal = "weekly_goal"
    monthly_goal = "monthly_goal"  # legacy rollover shape, read-only
    deadline = "deadline"


def _coerce_date(value: Any) -> Any:
    # "2025-12-19" and "2025-12-19T00:00:00.000Z" both appear in stored documents
    if isinstance(value, str):
        if not value.strip():
            return None
        return value[:10]
    if isinstance(value, datetime):
        return value.date()
    return value


class DocumentModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    @field_validator("target_date", mode="before", check_fields=False)
    @classmethod
    def coerce_target_date(cls, value: Any) -> Any:
        return _coerce_date(value)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Dream document
# ---------------------------------------------------------------------------


class DreamGoal(DocumentModel):
    id: str
    title: str = ""
    description: str = ""
    type: GoalKind = GoalKind.consistency
    recurrence: Recurrence | None = None
    frequency: int | None = None
    target_weeks: int | None = None
    target_months: int | None = None
    target_date: date | None = None
    weeks_remaining: int | None = None
    active: bool = True
    completed: bool = False
    completed_at: datetime | None = None
    active_before_completion: bool | None = None
    created_at: datetime | None = None
    start_date: datetime | None = None


class GoalTemplate(DocumentModel):
    """Legacy standalone recurrence definition stored beside the dream book."""

    id: str
    type: Literal["weekly_goal_template"] = TEMPLATE_TYPE
    goal_id: str | None = None
    goal_type: GoalKind = GoalKind.consistency
    title: str = ""
    description: str = ""
    dream_id: str | None = None
    dream_title: str = ""
    dream_category: str = ""
    recurrence: Recurrence | None = Recurrence.weekly
    frequency: int | None = None
    target_weeks: int | None = None
    target_months: int | None = None
    target_date: date | None = None
    weeks_remaining: int | None = None
    active: bool = True
    completed: bool = False
    completed_at: datetime | None = None
    active_before_completion: bool | None = None


class Dream(DocumentModel):
    id: str
    title: str = ""
    category: str = ""
    progress: int = Field(default=0, ge=0, le=100)
    goals: list[DreamGoal] = Field(default_factory=list)
    notes: list[dict[str, Any]] = Field(default_factory=list)
    history: list[dict[str, Any]] = Field(default_factory=list)
    completed: bool = False


class DreamsDocument(DocumentModel):
    user_id: str
    dream_book: list[Dream] = Field(default_factory=list)
    weekly_goal_templates: list[GoalTemplate] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Week document
# ---------------------------------------------------------------------------


class WeekInstance(DocumentModel):
    id: str
    template_id: str
    type: InstanceType = InstanceType.weekly_goal
    title: str = ""
    description: str = ""
    dream_id: str | None = None
    dream_title: str = ""
    dream_category: str = ""
    week_id: str
    created_at: datetime | None = None
    completed: bool = False
    completed_at: datetime | None = None
    skipped: bool = False
    skipped_at: datetime | None = None
    recurrence: Recurrence | None = None
    frequency: int | None = None
    completion_count: int | None = None
    completion_dates: list[datetime] | None = None
    target_weeks: int | None = None
    target_months: int | None = None
    target_date: date | None = None
    weeks_remaining: int | None = None


class WeekDocument(DocumentModel):
    user_id: str
    week_id: str
    goals: list[WeekInstance] = Field(default_factory=list)
    stats: dict[str, Any] = Field(default_factory=dict)


class WeekSummary(DocumentModel):
    week_id: str
    total_goals: int = 0
    completed_goals: int = 0
    skipped_goals: int = 0
    score: int = 0
    week_start_date: date | None = None
    week_end_date: date | None = None


class Milestone(DocumentModel):
    target_weeks: int | None = None
    streak_weeks: int | None = None
    end_on_dream_complete: bool = False


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


class GoalDraft(DocumentModel):
    """Manual goal creation form."""

    title: str
    description: str = ""
    dream_id: str | None = None
    consistency: Literal["weekly", "monthly", "deadline"] = "weekly"
    frequency: int | None = Field(default=None, ge=1)
    target_weeks: int | None = Field(default=None, ge=0)
    target_months: int | None = Field(default=None, ge=0)
    target_date: date | None = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value

    @model_validator(mode="after")
    def deadline_needs_target(self) -> GoalDraft:
        if self.consistency == "deadline" and self.target_date is None and self.target_weeks is None:
            raise ValueError("deadline goals need a target date")
        return self


# ---------------------------------------------------------------------------
# Persistence result + engine outcomes
# ---------------------------------------------------------------------------


class Result(BaseModel):
    """Response shape of every persistence call."""

    success: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> Result:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> Result:
        return cls(success=False, error=error)


class InstantiationOutcome(BaseModel):
    week_id: str
    instances: list[WeekInstance] = Field(default_factory=list)
    goals: list[WeekInstance] = Field(default_factory=list)
    created: list[str] = Field(default_factory=list)
    saved: bool = False
    error: str | None = None


class SyncOutcome(BaseModel):
    synced: bool = False
    goal_id: str | None = None
    template_id: str | None = None
    reason: str | None = None


class CompletionOutcome(BaseModel):
    ok: bool
    instance: WeekInstance | None = None
    error: str | None = None
    cancelled: bool = False
    parent_synced: bool | None = None
    notifications: list[str] = Field(default_factory=list)


class RolloverOutcome(BaseModel):
    rolled: bool = False
    from_week: str | None = None
    to_week: str | None = None
    archived: list[str] = Field(default_factory=list)
    goals_count: int = 0
    message: str = ""


class RepairReport(BaseModel):
    fixed: int = 0
    errors: int = 0
    total: int = 0
