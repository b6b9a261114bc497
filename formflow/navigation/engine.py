"""Conditional navigation over a questionnaire catalog.

The engine is a pure decision function over the catalog, the rule set and
the answers it has been told about. It holds no remote-write capability:
callers persist answers through the answer cache themselves.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .constants import DEFAULT_EXIT_KEY, MAX_PROGRESS, MIN_PROGRESS
from .ir import BranchingRule, Question, ResponseItem
from .normalize import decode_stored_value, is_blank
from .operators import DEFAULT_OPERATORS, OperatorFunction, evaluate_rule

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class NextAction:
    """What the form should show after the current question."""

    next_question_id: str | None = None
    exit_key: str | None = None
    should_exit: bool = False


class NavigationEngine:
    """Decides the next question from branching rules and recorded answers."""

    def __init__(
        self,
        questions: Iterable[Question],
        rules: Iterable[BranchingRule],
        answers: Iterable[ResponseItem] = (),
        *,
        operators: dict[str, OperatorFunction] | None = None,
    ) -> None:
        self._questions: list[Question] = sorted(questions, key=lambda q: q.order)
        self._operators = operators or DEFAULT_OPERATORS
        self._by_uid: dict[str, Question] = {q.uid: q for q in self._questions}
        self._by_id: dict[str, Question] = {q.id: q for q in self._questions}
        self._index_by_uid: dict[str, int] = {q.uid: i for i, q in enumerate(self._questions)}

        # Rules grouped per source question; sorted() is stable so equal orders
        # keep their catalog sequence.
        self._rules_by_question: dict[str, list[BranchingRule]] = {}
        for rule in sorted(rules, key=lambda r: r.order):
            decoded = rule.model_copy(update={"value": decode_stored_value(rule.value)})
            self._rules_by_question.setdefault(rule.question_id, []).append(decoded)

        self._answers: dict[str, Any] = {}
        for item in answers:
            question = self._by_id.get(item.question_id)
            if question is None:
                logger.debug("Ignoring stored answer for unknown question %s", item.question_id)
                continue
            self._answers[question.uid] = decode_stored_value(item.value)

    @property
    def questions(self) -> list[Question]:
        return list(self._questions)

    def question_by_uid(self, uid: str) -> Question | None:
        return self._by_uid.get(uid)

    def question_by_id(self, question_id: str) -> Question | None:
        return self._by_id.get(question_id)

    def rules_for(self, question_id: str) -> list[BranchingRule]:
        """Get the rules attached to a question, in evaluation order."""
        return list(self._rules_by_question.get(question_id, []))

    def get_next_action(self, current_question_uid: str | None = None) -> NextAction:
        """Return the next question to show, or an exit decision.

        Rules on the current question are tried in ascending order and the
        first match wins. Without a match the flow moves to the next question
        in catalog order, exiting with the default key after the last one.
        """
        if not current_question_uid:
            if not self._questions:
                logger.info("Empty catalog, exiting immediately")
                return NextAction(should_exit=True)
            return NextAction(next_question_id=self._questions[0].id)

        current = self._by_uid.get(current_question_uid)
        if current is None:
            logger.warning("Current question %s not in catalog, exiting", current_question_uid)
            return NextAction(should_exit=True)

        answer = self._answers.get(current.uid)
        for rule in self._rules_by_question.get(current.id, []):
            matches = evaluate_rule(rule, answer, self._operators)
            logger.debug(
                "Rule %s on %s: operator=%s value=%r answer=%r matches=%s",
                rule.id,
                current.uid,
                rule.operator,
                rule.value,
                answer,
                matches,
            )
            if not matches:
                continue
            if rule.exits:
                logger.info("Rule %s matched on %s, exiting with %s", rule.id, current.uid, rule.exit_key)
                return NextAction(exit_key=rule.exit_key, should_exit=True)
            if rule.target_question_id not in self._by_id:
                logger.warning(
                    "Rule %s targets unknown question %s; treating as no match",
                    rule.id,
                    rule.target_question_id,
                )
                continue
            logger.info("Rule %s matched on %s, jumping to %s", rule.id, current.uid, rule.target_question_id)
            return NextAction(next_question_id=rule.target_question_id, exit_key=rule.exit_key)

        index = self._index_by_uid[current.uid]
        if index < len(self._questions) - 1:
            return NextAction(next_question_id=self._questions[index + 1].id)

        return NextAction(exit_key=DEFAULT_EXIT_KEY, should_exit=True)

    def update_answer(self, question_uid: str, value: Any) -> None:
        self._answers[question_uid] = value

    def get_answer(self, question_uid: str) -> Any:
        return self._answers.get(question_uid)

    def calculate_progress(self, current_question_uid: str | None = None) -> int:
        """Position-based progress percentage of the current question.

        This follows catalog position, so branching can move it backwards.
        """
        if not current_question_uid:
            return MIN_PROGRESS
        index = self._index_by_uid.get(current_question_uid)
        if index is None:
            return MIN_PROGRESS
        # int(x + 0.5) rounds halves up; round() would round them to even
        return min(MAX_PROGRESS, int(MAX_PROGRESS * (index + 1) / len(self._questions) + 0.5))

    def get_answered_questions(self) -> list[str]:
        """Get uids whose recorded value is present (non-blank)."""
        return [uid for uid, value in self._answers.items() if not is_blank(value)]

    def is_complete(self) -> bool:
        """True when every required question has a recorded answer key.

        Only presence is checked: a required question recorded with a blank
        value still counts. ``get_answered_questions`` is the stricter check.
        """
        return all(q.uid in self._answers for q in self._questions if q.required)
