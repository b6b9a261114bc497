from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class AnswerRecord:
    """Session copy of one answer and its persistence state.

    Edits replace the record object in the cache instead of mutating it, so
    a flush can tell whether a record changed after its snapshot was taken.
    """

    question_uid: str
    question_id: str
    value: Any
    is_dirty: bool = False
    is_saving: bool = False
    last_saved: datetime | None = None
    error: str | None = None


@dataclass(slots=True, frozen=True)
class SeedAnswer:
    """Previously saved answer used to resume a session."""

    question_uid: str
    question_id: str
    value: Any


@dataclass(slots=True, frozen=True)
class BatchItem:
    """One (question id, value) pair of a batch upsert."""

    question_id: str
    value: Any


@dataclass(slots=True, frozen=True)
class AnswerCacheConfig:
    response_id: str
    autosave_interval_ms: int = 2000

    @property
    def autosave_enabled(self) -> bool:
        return self.autosave_interval_ms > 0
