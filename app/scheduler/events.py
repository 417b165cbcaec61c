"""In-process pub/sub for cross-component refresh signals.

Topics are plain strings. Delivery is fire-and-forget: a failing handler is
logged and never reaches the publisher or the other subscribers. One bus is
built per application and passed by reference (``app.state.bus``).
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Union

logger = logging.getLogger(__name__)

GOALS_UPDATED = "goals-updated"
DREAMS_UPDATED = "dreams-updated"

Handler = Callable[[Any], Union[None, Awaitable[None]]]


class EventBus:
    """Multi-subscriber topic bus. Handlers may be sync or async."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Handler]] = {}

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register `handler`; returns a callable that unsubscribes it."""
        self._subscribers.setdefault(topic, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._subscribers.get(topic)
            if not handlers:
                return
            try:
                handlers.remove(handler)
            except ValueError:
                pass
            if not handlers:
                del self._subscribers[topic]

        return unsubscribe

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))

    async def publish(self, topic: str, payload: Any = None) -> None:
        # Snapshot: handlers may unsubscribe while being notified
        for handler in list(self._subscribers.get(topic, [])):
            try:
                outcome = handler(payload)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Event handler failed", extra={"topic": topic})
