"""Session answer cache with coalesced background persistence.

The cache owns the in-session copy of every answer. Edits only touch memory
and mark the record dirty; a recurring autosave tick flushes all dirty
records to the remote store in one batch.

Flush discipline:
1. The dirty snapshot is taken and marked saving with no await in between,
   so two batches are never outstanding at once.
2. Edits made while a batch is in flight replace the record object, and the
   completion only marks clean the record objects it snapshotted.
3. A failed batch leaves its records dirty with ``error`` set; the next tick
   retries them unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from .events import EventHook
from .persistence import AnswerPersistence
from .types import AnswerCacheConfig, AnswerRecord, BatchItem, SeedAnswer

logger = logging.getLogger(__name__)

BATCH_SAVE_FAILED = "Batch save failed"
BATCH_SAVE_CANCELLED = "Batch save cancelled"


class AnswerCache:
    """Authoritative in-session answer map with debounced batch saves."""

    def __init__(self, config: AnswerCacheConfig, persistence: AnswerPersistence) -> None:
        self._config = config
        self._persistence = persistence
        self._answers: dict[str, AnswerRecord] = {}
        self._autosave_task: asyncio.Task[None] | None = None
        self._inflight: asyncio.Future[bool] | None = None
        self._destroyed = False

        self.answer_changed: EventHook[[str, Any]] = EventHook("answer_changed")
        self.save_state_changed: EventHook[[bool, bool]] = EventHook("save_state_changed")

    @property
    def response_id(self) -> str:
        return self._config.response_id

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the autosave loop on the running event loop.

        Does nothing when the interval is disabled or the loop already runs.
        """
        if self._destroyed:
            raise RuntimeError("AnswerCache has been destroyed")
        if self._autosave_task is not None or not self._config.autosave_enabled:
            return
        self._autosave_task = asyncio.get_running_loop().create_task(
            self._autosave_loop(), name=f"autosave:{self._config.response_id}"
        )
        logger.info(
            "Autosave started for response %s every %dms",
            self._config.response_id,
            self._config.autosave_interval_ms,
        )

    def destroy(self) -> None:
        """Stop autosave, drop all records and detach observers.

        Safe to call repeatedly. A batch already in flight is not aborted;
        its completion finds the map empty and changes nothing.
        """
        if self._destroyed:
            return
        logger.info("Destroying answer cache for response %s", self._config.response_id)
        self._destroyed = True
        if self._autosave_task is not None:
            self._autosave_task.cancel()
            self._autosave_task = None
        self._answers.clear()
        self.answer_changed.clear()
        self.save_state_changed.clear()

    async def save_and_destroy(self) -> bool:
        """Flush pending edits once more, then tear down."""
        success = await self.save_all()
        self.destroy()
        return success

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def initialize_answers(self, existing: Iterable[SeedAnswer]) -> None:
        """Load previously saved answers as clean records."""
        if self._destroyed:
            logger.warning("initialize_answers called on a destroyed cache; ignoring")
            return
        now = datetime.now()
        count = 0
        for seed in existing:
            self._answers[seed.question_uid] = AnswerRecord(
                question_uid=seed.question_uid,
                question_id=seed.question_id,
                value=seed.value,
                last_saved=now,
            )
            count += 1
        logger.info("Initialized %d saved answers for response %s", count, self._config.response_id)
        self._notify_state_change()

    def update_answer(self, question_uid: str, question_id: str, value: Any) -> None:
        """Record a local edit; it is persisted by the next flush."""
        if self._destroyed:
            logger.warning("update_answer(%s) on a destroyed cache; ignoring", question_uid)
            return
        existing = self._answers.get(question_uid)
        self._answers[question_uid] = AnswerRecord(
            question_uid=question_uid,
            question_id=question_id,
            value=value,
            is_dirty=True,
            is_saving=existing.is_saving if existing else False,
            last_saved=existing.last_saved if existing else None,
            error=None,
        )
        logger.debug("Answer %s updated locally", question_uid)
        self.answer_changed.emit(question_uid, value)
        self._notify_state_change()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_answer(self, question_uid: str) -> Any:
        record = self._answers.get(question_uid)
        return record.value if record else None

    def get_record(self, question_uid: str) -> AnswerRecord | None:
        return self._answers.get(question_uid)

    def get_all_answers(self) -> dict[str, Any]:
        return {uid: record.value for uid, record in self._answers.items()}

    def get_unsaved_answers(self) -> list[AnswerRecord]:
        return [record for record in self._answers.values() if record.is_dirty]

    def has_unsaved_changes(self) -> bool:
        return any(record.is_dirty for record in self._answers.values())

    def is_saving(self) -> bool:
        return self._inflight is not None

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def on_answer_change(self, callback: Callable[[str, Any], Any]) -> Callable[[], None]:
        return self.answer_changed.subscribe(callback)

    def on_save_state_change(self, callback: Callable[[bool, bool], Any]) -> Callable[[], None]:
        return self.save_state_changed.subscribe(callback)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save_all(self) -> bool:
        """Flush every dirty record in one batch.

        Waits for a batch already in flight before taking its own snapshot.
        Never raises; failures are stored on the records.

        Returns:
            True if nothing was pending or the batch was stored.
        """
        while self._inflight is not None:
            await asyncio.shield(self._inflight)

        # From here to the first await the snapshot and the saving marks
        # happen in one uninterrupted step.
        snapshot = self.get_unsaved_answers()
        if not snapshot:
            logger.debug("No unsaved answers for response %s", self._config.response_id)
            return True

        for record in snapshot:
            record.is_saving = True
            record.error = None
        inflight: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._inflight = inflight
        self._notify_state_change()

        items = [BatchItem(question_id=r.question_id, value=r.value) for r in snapshot]
        logger.info("Saving %d answers for response %s", len(items), self._config.response_id)

        success = False
        error: str | None = BATCH_SAVE_CANCELLED
        try:
            success = bool(
                await self._persistence.save_answers_batch(self._config.response_id, items)
            )
            error = None if success else BATCH_SAVE_FAILED
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            logger.error(
                "Batch save for response %s raised: %s", self._config.response_id, error, exc_info=True
            )
        finally:
            self._finish_flush(snapshot, success, error)
            self._inflight = None
            if not inflight.done():
                inflight.set_result(success)
            self._notify_state_change()

        if success:
            logger.info("Batch save for response %s succeeded", self._config.response_id)
        else:
            logger.warning(
                "Batch save for response %s failed: %s; %d answers stay dirty",
                self._config.response_id,
                error,
                len(snapshot),
            )
        return success

    def _finish_flush(self, snapshot: list[AnswerRecord], success: bool, error: str | None) -> None:
        now = datetime.now()
        for record in snapshot:
            current = self._answers.get(record.question_uid)
            if current is record:
                record.is_saving = False
                if success:
                    record.is_dirty = False
                    record.last_saved = now
                    record.error = None
                else:
                    record.error = error
            elif current is not None:
                # Edited during the flight: keep the newer value dirty
                current.is_saving = False
                if success:
                    current.last_saved = now

    async def _autosave_loop(self) -> None:
        interval = self._config.autosave_interval_ms / 1000.0
        while not self._destroyed:
            await asyncio.sleep(interval)
            if self._destroyed:
                break
            if self.has_unsaved_changes() and not self.is_saving():
                logger.debug("Autosave tick for response %s", self._config.response_id)
                # Shielded so destroy() stops the loop without aborting the request
                await asyncio.shield(self.save_all())

    def _notify_state_change(self) -> None:
        self.save_state_changed.emit(self.is_saving(), self.has_unsaved_changes())
