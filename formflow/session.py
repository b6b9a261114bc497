"""Form session orchestration.

Wires user input to the answer cache and the navigation engine, and their
outputs to the question being displayed. One FormSession lives for one
response; it owns both collaborators and tears them down at the end.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from formflow.answers.cache import AnswerCache
from formflow.answers.persistence import AnswerPersistence
from formflow.answers.types import AnswerCacheConfig, SeedAnswer
from formflow.navigation.constants import MAX_PROGRESS, MIN_PROGRESS
from formflow.navigation.engine import NavigationEngine, NextAction
from formflow.navigation.ir import FormDefinition, Question, ResponseItem
from formflow.settings import get_settings

logger = logging.getLogger(__name__)


class FormSessionError(Exception):
    """Raised when the session is driven out of order."""


class RequiredAnswerMissing(FormSessionError):
    """Raised when advancing past a required question without an answer."""


class FormSession:
    """Drives one user through a form: display, answer, navigate, finish."""

    def __init__(
        self,
        form: FormDefinition,
        persistence: AnswerPersistence,
        response_id: str,
        *,
        autosave_interval_ms: int | None = None,
    ) -> None:
        if autosave_interval_ms is None:
            autosave_interval_ms = get_settings().autosave_interval_ms
        self._form = form
        self._persistence = persistence
        self._response_id = response_id
        self._engine = NavigationEngine(form.questions, form.branching_rules)
        self._cache = AnswerCache(
            AnswerCacheConfig(response_id=response_id, autosave_interval_ms=autosave_interval_ms),
            persistence,
        )
        self._current: Question | None = None
        self._history: list[Question] = []
        self._started = False
        self._finished = False
        self.exit_key: str | None = None

    @property
    def form(self) -> FormDefinition:
        return self._form

    @property
    def response_id(self) -> str:
        return self._response_id

    @property
    def engine(self) -> NavigationEngine:
        return self._engine

    @property
    def cache(self) -> AnswerCache:
        return self._cache

    @property
    def current_question(self) -> Question | None:
        return self._current

    @property
    def is_finished(self) -> bool:
        return self._finished

    async def start(self, existing: Iterable[ResponseItem] = ()) -> NextAction:
        """Load saved answers, start autosave and move to the first question."""
        if self._started:
            raise FormSessionError("Session already started")
        self._started = True

        items = list(existing)
        self._engine = NavigationEngine(self._form.questions, self._form.branching_rules, items)
        seeds: list[SeedAnswer] = []
        for item in items:
            question = self._engine.question_by_id(item.question_id)
            if question is None:
                continue
            seeds.append(
                SeedAnswer(
                    question_uid=question.uid,
                    question_id=question.id,
                    value=self._engine.get_answer(question.uid),
                )
            )
        self._cache.initialize_answers(seeds)
        self._cache.start()

        action = self._engine.get_next_action()
        if action.should_exit:
            await self._finish(action.exit_key)
            return action
        self._current = self._engine.question_by_id(action.next_question_id or "")
        logger.info("Session %s started at %s", self._response_id, self._current.uid if self._current else None)
        return action

    def answer(self, value: Any) -> None:
        """Record an edit of the current question in both engine and cache.

        ``None`` clears the answer: an unanswered question stays absent, an
        answered one is set to the empty value of its type.
        """
        question = self._require_current()
        if value is None:
            if self._engine.get_answer(question.uid) is None:
                return
            value = [] if question.is_multi_valued else ""
        self._engine.update_answer(question.uid, value)
        self._cache.update_answer(question.uid, question.id, value)

    def current_answer(self) -> Any:
        question = self._require_current()
        return self._engine.get_answer(question.uid)

    def can_proceed(self) -> bool:
        """Optional questions can always be left; required ones need a non-blank answer."""
        question = self._require_current()
        if not question.required:
            return True
        return question.uid in self._engine.get_answered_questions()

    async def advance(self) -> NextAction:
        """Leave the current question and move to whatever comes next.

        On an exit decision the pending answers get a final save, the cache
        is torn down and the response is marked complete.
        """
        question = self._require_current()
        if not self.can_proceed():
            raise RequiredAnswerMissing(f"Question {question.uid} requires an answer")

        action = self._engine.get_next_action(question.uid)
        if action.should_exit:
            await self._finish(action.exit_key)
            return action

        next_question = self._engine.question_by_id(action.next_question_id or "")
        if next_question is None:
            # The engine only returns catalog ids; a miss means an unusable state
            logger.error("Next question %s not found, finishing session", action.next_question_id)
            await self._finish(None)
            return NextAction(should_exit=True)

        self._history.append(question)
        self._current = next_question
        if not await self._persistence.update_progress(self._response_id, self.progress()):
            logger.warning("Progress update failed for session %s", self._response_id)
        return action

    def back(self) -> Question | None:
        """Return to the previously displayed question, if any."""
        self._require_current()
        if not self._history:
            return None
        self._current = self._history.pop()
        return self._current

    def progress(self) -> int:
        if self._finished:
            return MAX_PROGRESS if self.exit_key else MIN_PROGRESS
        return self._engine.calculate_progress(self._current.uid if self._current else None)

    def position(self) -> tuple[int, int]:
        """Return (1-based catalog position of the current question, total questions)."""
        question = self._require_current()
        questions = self._engine.questions
        return questions.index(question) + 1, len(questions)

    def exit_message(self, exit_key: str | None = None) -> str | None:
        key = exit_key or self.exit_key
        if not key:
            return None
        return self._form.exit_map.get(key)

    async def abandon(self) -> None:
        """End the session without a final save."""
        logger.info("Session %s abandoned", self._response_id)
        self._cache.destroy()
        self._current = None
        self._finished = True

    async def _finish(self, exit_key: str | None) -> None:
        self._finished = True
        self.exit_key = exit_key
        self._current = None
        if not await self._cache.save_and_destroy():
            logger.warning("Final save failed for session %s; last edits may be lost", self._response_id)
        if not await self._persistence.complete_response(self._response_id, exit_key):
            logger.warning("Completing session %s failed", self._response_id)
        logger.info("Session %s finished with exit key %s", self._response_id, exit_key)

    def _require_current(self) -> Question:
        if self._finished:
            raise FormSessionError("Session is finished")
        if self._current is None:
            raise FormSessionError("Session has not started")
        return self._current
