"""User-visible toasts.

The completion engine is the only producer. Over HTTP a CollectingNotifier
gathers the toasts of one request and the router returns them; background
sessions use LoggingNotifier.
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def error(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def success(self, message: str) -> None: ...


class CollectingNotifier:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def warning(self, message: str) -> None:
        self.messages.append(("warning", message))

    def success(self, message: str) -> None:
        self.messages.append(("success", message))

    def texts(self, level: str | None = None) -> list[str]:
        return [text for lvl, text in self.messages if level is None or lvl == level]

    def drain(self) -> list[str]:
        texts = self.texts()
        self.messages.clear()
        return texts


class LoggingNotifier:
    def error(self, message: str) -> None:
        logger.error("toast: %s", message)

    def warning(self, message: str) -> None:
        logger.warning("toast: %s", message)

    def success(self, message: str) -> None:
        logger.info("toast: %s", message)
