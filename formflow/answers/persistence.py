"""Remote persistence interface consumed by the answer cache.

This module defines the contract between the answer cache and whatever
store durably keeps the answers, plus an in-memory implementation used for
local runs and tests.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

from .types import BatchItem

logger = logging.getLogger(__name__)


class AnswerPersistence(ABC):
    """Base interface for the remote answer store.

    Each batch is a full upsert of the listed answers, so repeating a batch
    is harmless.
    """

    @abstractmethod
    async def save_answers_batch(self, response_id: str, items: list[BatchItem]) -> bool:
        """Durably store all ``items`` for ``response_id``.

        Args:
            response_id: Owning form session (response) identifier
            items: Question id / value pairs to upsert

        Returns:
            True if the whole batch was stored, False otherwise. Partial
            success is reported as failure.
        """

    async def update_progress(self, response_id: str, progress_pct: int) -> bool:
        """Record the session's progress percentage. Optional."""
        return True

    async def complete_response(self, response_id: str, exit_key: str | None = None) -> bool:
        """Mark the session finished. Optional."""
        return True


class InMemoryAnswerPersistence(AnswerPersistence):
    """Process-local answer store.

    ``latency_seconds`` delays each batch to imitate a network round-trip.
    """

    def __init__(self, *, latency_seconds: float = 0.0) -> None:
        self._latency = latency_seconds
        self.responses: dict[str, dict[str, Any]] = {}
        self.progress: dict[str, int] = {}
        self.completed: dict[str, str | None] = {}
        self.batches: list[tuple[str, list[BatchItem]]] = []

    async def save_answers_batch(self, response_id: str, items: list[BatchItem]) -> bool:
        if self._latency > 0:
            await asyncio.sleep(self._latency)
        self.batches.append((response_id, list(items)))
        stored = self.responses.setdefault(response_id, {})
        for item in items:
            stored[item.question_id] = item.value
        logger.debug("Stored %d answers for response %s", len(items), response_id)
        return True

    async def update_progress(self, response_id: str, progress_pct: int) -> bool:
        self.progress[response_id] = progress_pct
        return True

    async def complete_response(self, response_id: str, exit_key: str | None = None) -> bool:
        self.completed[response_id] = exit_key
        return True
