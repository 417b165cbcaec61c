"""Tests for weekly rollover: archiving, scoring and countdowns."""

from __future__ import annotations

import pytest

from app.scheduler.models import DreamGoal, GoalKind, WeekDocument, WeekInstance
from app.scheduler.rollover import (
    advance_countdowns,
    advanced,
    instance_points,
    rollover_week,
    summarize_week,
)

from tests.conftest import USER, WEEK, make_deadline_goal, make_dream, make_goal, make_instance


def _goals(store):
    return {g.id: g for dream in store.dreams_doc(USER).dream_book for g in dream.goals}


class TestScoring:
    @pytest.mark.parametrize(
        "raw,points",
        [
            (make_instance("w", completed=True, recurrence="weekly"), 3),
            (make_instance("m", completed=True, recurrence="monthly"), 5),
            (make_instance("legacy", completed=True, type="monthly_goal"), 5),
            (make_instance("d", completed=True, type="deadline"), 5),
            (make_instance("open", recurrence="weekly"), 0),
        ],
    )
    def test_instance_points(self, raw, points):
        assert instance_points(WeekInstance.model_validate(raw)) == points

    def test_summary(self):
        doc = WeekDocument(
            user_id=USER,
            week_id=WEEK,
            goals=[
                make_instance("a", completed=True, recurrence="weekly"),
                make_instance("b", completed=True, type="deadline"),
                make_instance("c"),
                make_instance("d", skipped=True),
            ],
        )
        summary = summarize_week(doc)
        assert (summary.total_goals, summary.completed_goals, summary.skipped_goals) == (4, 2, 1)
        assert summary.score == 8
        assert str(summary.week_start_date) == "2025-03-03"
        assert str(summary.week_end_date) == "2025-03-09"


class TestCountdowns:
    def test_completed_record_untouched(self):
        goal = DreamGoal.model_validate(make_goal("g1", completed=True, weeksRemaining=4))
        assert advanced(goal, GoalKind.consistency, 1, "2025-W11") is goal

    def test_exhausted_goal_goes_inactive(self):
        goal = DreamGoal.model_validate(make_goal("g1", weeksRemaining=0))
        result = advanced(goal, GoalKind.consistency, 1, "2025-W11")
        assert (result.weeks_remaining, result.active) == (-1, False)

    def test_floor_is_minus_one(self):
        goal = DreamGoal.model_validate(make_goal("g1", weeksRemaining=1))
        assert advanced(goal, GoalKind.consistency, 5, "2025-W15").weeks_remaining == -1

    def test_monthly_without_cache_uses_converted_months(self):
        goal = DreamGoal.model_validate(make_goal("g1", recurrence="monthly", targetMonths=3))
        assert advanced(goal, GoalKind.consistency, 1, "2025-W11").weeks_remaining == 12

    def test_deadline_recomputed_from_date(self):
        goal = DreamGoal.model_validate(make_deadline_goal("G2", "2025-03-24", weeksRemaining=3))
        assert advanced(goal, GoalKind.deadline, 1, "2025-W11").weeks_remaining == 2

    def test_open_ended_goal_unchanged(self):
        goal = DreamGoal.model_validate(make_goal("g1"))
        assert advanced(goal, GoalKind.consistency, 1, "2025-W11") is goal

    def test_nothing_instantiated_means_no_change(self, store):
        store.seed_dreams(USER, [make_dream("d1", [make_goal("g1", weeksRemaining=4)])])
        assert advance_countdowns(store.dreams_doc(USER), [], 1, "2025-W11") is None


class TestRolloverWeek:
    @pytest.mark.asyncio
    async def test_archives_scores_and_opens_next_week(self, store, clock):
        store.seed_week(
            USER,
            WEEK,
            [
                make_instance("a", completed=True, recurrence="weekly"),
                make_instance("b", completed=True, recurrence="monthly"),
                make_instance("c"),
            ],
        )
        store.seed_dreams(USER, [make_dream("d1", [make_goal("g1")])])

        outcome = await rollover_week(store, USER, "2025-W11", clock)

        assert outcome.rolled is True
        assert (outcome.from_week, outcome.to_week) == (WEEK, "2025-W11")
        assert outcome.archived == [WEEK]
        archived = store.archives[(USER, WEEK)]
        assert archived["score"] == 8
        assert archived["completedGoals"] == 2
        assert [g.id for g in store.week_goals(USER, "2025-W11")] == ["g1_2025-W11"]
        assert outcome.goals_count == 1

    @pytest.mark.asyncio
    async def test_missed_weeks_get_empty_summaries(self, store, clock):
        store.seed_week(USER, WEEK, [make_instance("a", completed=True, recurrence="weekly")])

        outcome = await rollover_week(store, USER, "2025-W13", clock)

        assert outcome.archived == ["2025-W10", "2025-W11", "2025-W12"]
        assert store.archives[(USER, "2025-W11")]["score"] == 0
        assert store.archives[(USER, "2025-W12")]["totalGoals"] == 0
        assert store.archives[(USER, "2025-W10")]["score"] == 3

    @pytest.mark.asyncio
    async def test_across_year_end(self, store, clock):
        store.seed_week(USER, "2026-W52", [])
        outcome = await rollover_week(store, USER, "2027-W01", clock)
        assert outcome.archived == ["2026-W52", "2026-W53"]

    @pytest.mark.asyncio
    async def test_countdowns_advance_for_instantiated_goals(self, store, clock):
        store.seed_dreams(
            USER,
            [
                make_dream(
                    "d1",
                    [
                        make_goal("g1", targetWeeks=10, weeksRemaining=10),
                        make_goal("g2", targetWeeks=5, weeksRemaining=5),
                        make_goal("g3", targetWeeks=4, weeksRemaining=0),
                        make_deadline_goal("G2", "2025-03-24", weeksRemaining=3),
                    ],
                )
            ],
        )
        store.seed_week(
            USER,
            WEEK,
            [
                make_instance("g1_2025-W10", "g1"),
                make_instance("g2_2025-W10", "g2", skipped=True),
                make_instance("g3_2025-W10", "g3"),
                make_instance("G2_2025-W10", "G2", type="deadline"),
            ],
        )

        await rollover_week(store, USER, "2025-W11", clock)

        goals = _goals(store)
        assert goals["g1"].weeks_remaining == 9
        assert goals["g2"].weeks_remaining == 5
        assert (goals["g3"].weeks_remaining, goals["g3"].active) == (-1, False)
        assert goals["G2"].weeks_remaining == 2
        new_week = {g.template_id: g for g in store.week_goals(USER, "2025-W11")}
        assert set(new_week) == {"g1", "g2", "G2"}
        assert new_week["g1"].weeks_remaining == 9

    @pytest.mark.asyncio
    async def test_second_run_is_noop(self, store, clock):
        store.seed_week(USER, WEEK, [make_instance("a")])
        store.seed_dreams(USER, [make_dream("d1", [make_goal("g1", weeksRemaining=6)])])
        await rollover_week(store, USER, "2025-W11", clock)
        writes = store.writes()

        outcome = await rollover_week(store, USER, "2025-W11", clock)

        assert outcome.rolled is False
        assert outcome.message == "Already up to date"
        assert store.writes() == writes

    @pytest.mark.asyncio
    async def test_target_defaults_to_current_week(self, store, clock):
        store.seed_week(USER, "2025-W09", [])
        outcome = await rollover_week(store, USER, clock=clock)
        assert outcome.to_week == WEEK
        assert outcome.rolled

    @pytest.mark.asyncio
    async def test_no_week_document(self, store, clock):
        outcome = await rollover_week(store, USER, "2025-W11", clock)
        assert outcome.rolled is False
        assert store.writes() == 0

    @pytest.mark.asyncio
    async def test_archive_failure_stops_before_countdowns(self, store, clock):
        store.seed_week(USER, WEEK, [])
        store.seed_dreams(USER, [make_dream("d1", [make_goal("g1", weeksRemaining=6)])])
        store.fail.add("archive_week")

        outcome = await rollover_week(store, USER, "2025-W11", clock)

        assert outcome.rolled is False
        assert outcome.message == "Failed to archive 2025-W10"
        assert store.writes("save_dreams") == 0
        assert store.week_goals(USER, "2025-W11") == []
