from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .constants import (
    OP_EQUALS,
    OP_GREATER_THAN,
    OP_IN,
    OP_IS_EMPTY,
    OP_IS_NOT_EMPTY,
    OP_LESS_THAN,
    OP_NOT_EQUALS,
    OP_NOT_IN,
)
from .ir import BranchingRule
from .normalize import is_blank, to_number

logger = logging.getLogger(__name__)

# (answer, rule value) -> matches. The answer is never None here.
OperatorFunction = Callable[[Any, Any], bool]


def op_equals(answer: Any, expected: Any) -> bool:
    return answer == expected


def op_not_equals(answer: Any, expected: Any) -> bool:
    return answer != expected


def op_in(answer: Any, expected: Any) -> bool:
    return isinstance(expected, list) and answer in expected


def op_not_in(answer: Any, expected: Any) -> bool:
    return isinstance(expected, list) and answer not in expected


def op_greater_than(answer: Any, expected: Any) -> bool:
    left = to_number(answer)
    right = to_number(expected)
    if left is None or right is None:
        return False
    return left > right


def op_less_than(answer: Any, expected: Any) -> bool:
    left = to_number(answer)
    right = to_number(expected)
    if left is None or right is None:
        return False
    return left < right


def op_is_empty(answer: Any, _expected: Any) -> bool:
    return is_blank(answer)


def op_is_not_empty(answer: Any, _expected: Any) -> bool:
    return not is_blank(answer)


DEFAULT_OPERATORS: dict[str, OperatorFunction] = {
    OP_EQUALS: op_equals,
    OP_NOT_EQUALS: op_not_equals,
    OP_IN: op_in,
    OP_NOT_IN: op_not_in,
    OP_GREATER_THAN: op_greater_than,
    OP_LESS_THAN: op_less_than,
    OP_IS_EMPTY: op_is_empty,
    OP_IS_NOT_EMPTY: op_is_not_empty,
}


def evaluate_rule(
    rule: BranchingRule,
    answer: Any,
    registry: dict[str, OperatorFunction] | None = None,
) -> bool:
    """Return True if ``rule`` matches the recorded ``answer``.

    A missing answer only satisfies ``is_empty``. Unknown operators and
    operand errors evaluate to no match; evaluation never raises.
    """
    operators = registry if registry is not None else DEFAULT_OPERATORS
    if answer is None:
        return rule.operator == OP_IS_EMPTY

    fn = operators.get(rule.operator)
    if fn is None:
        logger.warning(
            "Unknown operator %r on rule %s (question %s); treating as no match",
            rule.operator,
            rule.id,
            rule.question_id,
        )
        return False

    try:
        return bool(fn(answer, rule.value))
    except Exception as exc:
        logger.warning(
            "Operator %s failed on rule %s: %s; treating as no match",
            rule.operator,
            rule.id,
            exc,
        )
        return False
