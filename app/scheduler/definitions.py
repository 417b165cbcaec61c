"""Recurrence sources — one tagged union over the two ways a goal can recur.

Standalone templates (the legacy flow) and inline dream goals (the current
flow) both describe "this goal needs an instance every week". `normalize`
folds either shape into a `Definition` so the eligibility filter and the
instance builder never branch on where a goal came from.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import date, datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from app.scheduler.models import (
    Dream,
    DreamGoal,
    DreamsDocument,
    GoalKind,
    GoalTemplate,
    Recurrence,
)


class TemplateSource(BaseModel):
    kind: Literal["template"] = "template"
    template: GoalTemplate


class DreamGoalSource(BaseModel):
    kind: Literal["dreamGoal"] = "dreamGoal"
    goal: DreamGoal
    dream: Dream


RecurrenceSource = Annotated[
    Union[TemplateSource, DreamGoalSource],
    Field(discriminator="kind"),
]


class Definition(BaseModel):
    """Source-independent view of a recurring or deadline goal."""

    id: str
    source: Literal["template", "dreamGoal"]
    kind: GoalKind
    goal_id: str | None = None  # template -> dream goal join
    title: str = ""
    description: str = ""
    dream_id: str | None = None
    dream_title: str = ""
    dream_category: str = ""
    recurrence: Recurrence | None = None
    frequency: int | None = None
    target_weeks: int | None = None
    target_months: int | None = None
    target_date: date | None = None
    weeks_remaining: int | None = None
    active: bool = True
    completed: bool = False
    completed_at: datetime | None = None

    @property
    def identities(self) -> set[str]:
        """Every id this definition is known by."""
        ids = {self.id}
        if self.goal_id:
            ids.add(self.goal_id)
        return ids

    @property
    def is_deadline(self) -> bool:
        return self.kind is GoalKind.deadline


def normalize(source: TemplateSource | DreamGoalSource) -> Definition:
    if isinstance(source, TemplateSource):
        t = source.template
        return Definition(
            id=t.id,
            source="template",
            kind=t.goal_type,
            goal_id=t.goal_id,
            title=t.title,
            description=t.description,
            dream_id=t.dream_id,
            dream_title=t.dream_title,
            dream_category=t.dream_category,
            recurrence=None if t.goal_type is GoalKind.deadline else t.recurrence,
            frequency=t.frequency,
            target_weeks=t.target_weeks,
            target_months=t.target_months,
            target_date=t.target_date,
            weeks_remaining=t.weeks_remaining,
            active=t.active,
            completed=t.completed,
            completed_at=t.completed_at,
        )

    return definition_for_goal(source.goal, source.dream)


def definition_for_goal(goal: DreamGoal, dream: Dream | None) -> Definition:
    """Definition of an inline goal. `dream` is None for freestanding manual goals."""
    return Definition(
        id=goal.id,
        source="dreamGoal",
        kind=goal.type,
        title=goal.title,
        description=goal.description,
        dream_id=dream.id if dream else None,
        dream_title=dream.title if dream else "",
        dream_category=dream.category if dream else "",
        recurrence=None if goal.type is GoalKind.deadline else goal.recurrence,
        frequency=goal.frequency,
        target_weeks=goal.target_weeks,
        target_months=goal.target_months,
        target_date=goal.target_date,
        weeks_remaining=goal.weeks_remaining,
        active=goal.active,
        completed=goal.completed,
        completed_at=goal.completed_at,
    )


def sources_from(dreams_doc: DreamsDocument) -> Iterator[TemplateSource | DreamGoalSource]:
    """Templates first, then inline dream goals in dream-book order."""
    for template in dreams_doc.weekly_goal_templates:
        yield TemplateSource(template=template)
    for dream in dreams_doc.dream_book:
        for goal in dream.goals:
            yield DreamGoalSource(goal=goal, dream=dream)


def definitions_from(dreams_doc: DreamsDocument) -> list[Definition]:
    return [normalize(source) for source in sources_from(dreams_doc)]
