"""Typed observer hooks for answer and save-state notifications."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Generic, ParamSpec

logger = logging.getLogger(__name__)

P = ParamSpec("P")


class EventHook(Generic[P]):
    """Ordered list of subscribers called synchronously on ``emit``.

    A subscriber that raises is logged and skipped; the remaining
    subscribers still run.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._subscribers: list[Callable[P, Any]] = []

    def subscribe(self, callback: Callable[P, Any]) -> Callable[[], None]:
        """Register ``callback`` and return a function that removes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, *args: P.args, **kwargs: P.kwargs) -> None:
        for callback in list(self._subscribers):
            try:
                callback(*args, **kwargs)
            except Exception:
                logger.exception("Subscriber of %s raised", self._name)

    def clear(self) -> None:
        self._subscribers.clear()

    def __len__(self) -> int:
        return len(self._subscribers)
