"""Tests for the instance builders — pure, no store involved."""

from __future__ import annotations

from datetime import date

import pytest

from app.scheduler.builders import (
    build_dream_goal,
    build_instance,
    build_manual_instance,
    new_goal_id,
)
from app.scheduler.definitions import definitions_from
from app.scheduler.models import (
    Dream,
    DreamGoal,
    DreamsDocument,
    GoalDraft,
    GoalKind,
    InstanceType,
    Recurrence,
)

from tests.conftest import NOW, USER, WEEK, make_deadline_goal, make_dream, make_goal, make_template


def _def(raw_goal: dict):
    doc = DreamsDocument(user_id=USER, dream_book=[make_dream("d1", [raw_goal])])
    return definitions_from(doc)[0]


class TestBuildInstance:
    def test_weekly_template_shape(self):
        doc = DreamsDocument(
            user_id=USER,
            dream_book=[make_dream("d1")],
            weekly_goal_templates=[make_template("T1", frequency=3)],
        )
        instance = build_instance(definitions_from(doc)[0], WEEK, now=NOW)

        assert instance.id == "T1_2025-W10"
        assert instance.template_id == "T1"
        assert instance.type is InstanceType.weekly_goal
        assert instance.week_id == WEEK
        assert instance.created_at == NOW
        assert instance.frequency == 3
        assert instance.completion_count == 0
        assert instance.completion_dates == []
        assert instance.completed is False
        assert instance.skipped is False

    def test_recurring_instance_never_born_completed(self):
        instance = build_instance(_def(make_goal("g1", completed=True)), WEEK, now=NOW)
        assert instance.completed is False
        assert instance.completed_at is None

    @pytest.mark.parametrize("recurrence,expected", [("weekly", 1), ("monthly", 2)])
    def test_default_frequency(self, recurrence, expected):
        instance = build_instance(_def(make_goal("g1", recurrence=recurrence, frequency=None)), WEEK)
        assert instance.frequency == expected

    def test_monthly_converts_months_to_weeks(self):
        defn = _def(make_goal("g1", recurrence="monthly", targetMonths=6, frequency=None))
        instance = build_instance(defn, WEEK)
        assert instance.recurrence is Recurrence.monthly
        assert instance.target_weeks == 26
        assert instance.weeks_remaining == 26
        assert instance.target_months == 6

    def test_weekly_passes_target_weeks_through(self):
        instance = build_instance(_def(make_goal("g1", targetWeeks=12)), WEEK)
        assert instance.target_weeks == 12
        assert instance.weeks_remaining == 12
        assert instance.target_months is None

    def test_cached_countdown_kept(self):
        instance = build_instance(_def(make_goal("g1", targetWeeks=12, weeksRemaining=5)), WEEK)
        assert instance.weeks_remaining == 5

    def test_deadline_three_weeks_out(self):
        instance = build_instance(_def(make_deadline_goal("G2", "2025-03-24")), WEEK)
        assert instance.type is InstanceType.deadline
        assert instance.weeks_remaining == 3
        assert instance.target_weeks == 3
        assert instance.target_date == date(2025, 3, 24)
        assert instance.frequency is None
        assert instance.completion_count is None

    def test_deadline_reads_parent_completion(self):
        defn = _def(make_deadline_goal("G2", "2025-03-24", completed=True, completedAt=NOW.isoformat()))
        instance = build_instance(defn, WEEK)
        assert instance.completed is True
        assert instance.completed_at == NOW

    def test_deadline_without_date_uses_cached_countdown(self):
        instance = build_instance(_def(make_deadline_goal("G2", None, weeksRemaining=4)), WEEK)
        assert instance.weeks_remaining == 4

    def test_countdown_relative_to_current_week(self):
        defn = _def(make_deadline_goal("G2", "2025-03-24"))
        instance = build_instance(defn, "2025-W11", current_week_id=WEEK)
        assert instance.id == "G2_2025-W11"
        assert instance.weeks_remaining == 3

    def test_explicit_instance_id(self):
        instance = build_instance(_def(make_goal("g1")), WEEK, instance_id="g1")
        assert instance.id == instance.template_id == "g1"

    def test_dream_back_reference(self):
        instance = build_instance(_def(make_goal("g1")), WEEK)
        assert instance.dream_id == "d1"
        assert instance.dream_title == "Dream d1"
        assert instance.dream_category == "Health"


class TestBuildDreamGoal:
    def test_weekly(self):
        draft = GoalDraft(title="Stretch", consistency="weekly", targetWeeks=12, frequency=3)
        goal = build_dream_goal(draft, "goal_1", WEEK, now=NOW)
        assert goal.type is GoalKind.consistency
        assert goal.recurrence is Recurrence.weekly
        assert (goal.target_weeks, goal.weeks_remaining, goal.frequency) == (12, 12, 3)
        assert goal.active and not goal.completed
        assert goal.start_date == NOW

    def test_monthly(self):
        draft = GoalDraft(title="Budget review", consistency="monthly", targetMonths=3)
        goal = build_dream_goal(draft, "goal_1", WEEK)
        assert goal.recurrence is Recurrence.monthly
        assert goal.target_weeks == 13
        assert goal.frequency == 2

    def test_deadline(self):
        draft = GoalDraft(title="Submit thesis", consistency="deadline", targetDate="2025-03-24")
        goal = build_dream_goal(draft, "goal_1", WEEK)
        assert goal.type is GoalKind.deadline
        assert goal.recurrence is None
        assert goal.weeks_remaining == 3


class TestManualInstance:
    def test_id_equals_template_id(self):
        goal = DreamGoal(id="goal_1", title="Read", recurrence="weekly", frequency=2)
        dream = make_dream("d1")
        instance = build_manual_instance(goal, Dream.model_validate(dream), WEEK, now=NOW)
        assert instance.id == "goal_1"
        assert instance.template_id == "goal_1"
        assert instance.dream_id == "d1"
        assert instance.frequency == 2

    def test_freestanding(self):
        goal = DreamGoal(id="goal_2", title="Call mom", recurrence="weekly")
        instance = build_manual_instance(goal, None, WEEK)
        assert instance.dream_id is None
        assert instance.frequency == 1

    def test_shape_matches_auto_instantiation(self):
        raw = make_goal("g1", frequency=2, targetWeeks=8)
        auto = build_instance(_def(raw), WEEK, now=NOW)
        manual = build_manual_instance(
            DreamGoal.model_validate(raw), Dream.model_validate(make_dream("d1")), WEEK, now=NOW
        )
        assert set(auto.model_dump()) == set(manual.model_dump())
        assert auto.model_dump(exclude={"id"}) == manual.model_dump(exclude={"id"})


def test_new_goal_id_is_unique():
    ids = {new_goal_id(NOW) for _ in range(50)}
    assert len(ids) == 50
    assert all(i.startswith("goal_") for i in ids)
