"""Optimistic update protocol: apply locally, commit remotely, roll back on failure.

`LocalState` stands in for the rendered instance list. Writes after `close()`
(the view went away while a save was in flight) are dropped, not errors.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable

from app.scheduler.models import Result, WeekInstance
from app.scheduler.notifications import Notifier

logger = logging.getLogger(__name__)

Persist = Callable[[], Awaitable[Result]]


class LocalState:
    def __init__(self, instances: Iterable[WeekInstance] = ()) -> None:
        self._instances: list[WeekInstance] = list(instances)
        self._closed = False

    @property
    def instances(self) -> list[WeekInstance]:
        return list(self._instances)

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, instance_id: str) -> WeekInstance | None:
        return next((i for i in self._instances if i.id == instance_id), None)

    def set(self, instances: Iterable[WeekInstance]) -> bool:
        if self._closed:
            logger.debug("Ignoring state update after close")
            return False
        self._instances = list(instances)
        return True

    def replace(self, instance: WeekInstance) -> bool:
        """Swap in `instance` by id; no-op when it is not rendered."""
        if self.get(instance.id) is None:
            return False
        return self.set(instance if i.id == instance.id else i for i in self._instances)

    def close(self) -> None:
        self._closed = True


class OptimisticUpdate:
    def __init__(self, state: LocalState, optimistic: Iterable[WeekInstance]) -> None:
        self.state = state
        self.snapshot = state.instances
        self.optimistic = list(optimistic)

    def apply(self) -> None:
        self.state.set(self.optimistic)

    async def commit(self, persist: Persist) -> Result:
        try:
            return await persist()
        except Exception as exc:
            # A store that raises instead of returning a failed Result
            logger.exception("Persist raised")
            return Result.fail(str(exc) or exc.__class__.__name__)

    def rollback(self) -> None:
        self.state.set(self.snapshot)


async def run_optimistic(
    state: LocalState,
    optimistic: Iterable[WeekInstance],
    persist: Persist,
    notifier: Notifier,
    error_message: str,
) -> Result:
    """apply -> commit -> rollback + error toast when the commit fails."""
    update = OptimisticUpdate(state, optimistic)
    update.apply()
    result = await update.commit(persist)
    if not result.success:
        logger.warning("Persist failed, rolling back: %s", result.error)
        update.rollback()
        notifier.error(error_message)
    return result
