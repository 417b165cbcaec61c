"""Scheduler error taxonomy.

Engines convert persistence failures into Result/outcome objects; these
exceptions only cross the HTTP boundary and the pure calendar helpers.
"""

from __future__ import annotations


class SchedulerError(Exception):
    """Base exception for scheduler errors surfaced over HTTP."""

    def __init__(self, message: str, code: str = "scheduler_error", status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class InstanceNotFoundError(SchedulerError):
    def __init__(self, instance_id: str) -> None:
        super().__init__(
            f"Goal instance not found: {instance_id}",
            code="instance_not_found",
            status_code=404,
        )
        self.instance_id = instance_id


class InvalidWeekIdError(SchedulerError, ValueError):
    def __init__(self, week_id: str) -> None:
        super().__init__(
            f"Invalid ISO week id: {week_id!r} (expected YYYY-Www)",
            code="invalid_week_id",
            status_code=422,
        )
        self.week_id = week_id


class PersistenceError(SchedulerError):
    def __init__(self, message: str) -> None:
        super().__init__(message, code="persistence_failed", status_code=502)


class InvalidGoalError(SchedulerError):
    def __init__(self, message: str) -> None:
        super().__init__(message, code="invalid_goal", status_code=422)
