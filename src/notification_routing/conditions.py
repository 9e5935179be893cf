"""PRD-175: Notification Routing & Escalation - Condition Evaluation.

Pure predicate evaluation of a notification against route conditions.
Every ConditionOperator has exactly one comparator in _COMPARATORS; the
module refuses to import if one is missing.
"""

import logging
import re
from collections.abc import Sequence
from typing import Any, Callable

from src.notification_routing.config import ConditionOperator, LogicalJoiner
from src.notification_routing.exceptions import ConditionEvaluationError
from src.notification_routing.models import Notification, RouteCondition

logger = logging.getLogger(__name__)


def _text(value: Any) -> str:
    return str(value).lower()


def _number(operator: ConditionOperator, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConditionEvaluationError(operator.value, f"not a number: {value!r}") from exc


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (Sequence, set, frozenset)) and not isinstance(
        value, (str, bytes)
    )


def _equals(actual: Any, expected: Any) -> bool:
    return actual == expected


def _not_equals(actual: Any, expected: Any) -> bool:
    return actual != expected


def _contains(actual: Any, expected: Any) -> bool:
    return _text(expected) in _text(actual)


def _not_contains(actual: Any, expected: Any) -> bool:
    return _text(expected) not in _text(actual)


def _starts_with(actual: Any, expected: Any) -> bool:
    return _text(actual).startswith(_text(expected))


def _ends_with(actual: Any, expected: Any) -> bool:
    return _text(actual).endswith(_text(expected))


def _greater_than(actual: Any, expected: Any) -> bool:
    op = ConditionOperator.GREATER_THAN
    return _number(op, actual) > _number(op, expected)


def _less_than(actual: Any, expected: Any) -> bool:
    op = ConditionOperator.LESS_THAN
    return _number(op, actual) < _number(op, expected)


def _between(actual: Any, expected: Any) -> bool:
    op = ConditionOperator.BETWEEN
    if not isinstance(expected, (list, tuple)) or len(expected) != 2:
        raise ConditionEvaluationError(op.value, f"expects a [low, high] pair, got {expected!r}")
    low, high = expected
    return _number(op, low) <= _number(op, actual) <= _number(op, high)


def _in(actual: Any, expected: Any) -> bool:
    return _is_sequence(expected) and actual in expected


def _not_in(actual: Any, expected: Any) -> bool:
    return _is_sequence(expected) and actual not in expected


def _is_null(actual: Any, expected: Any) -> bool:
    return False


def _is_not_null(actual: Any, expected: Any) -> bool:
    return True


def _regex(actual: Any, expected: Any) -> bool:
    try:
        pattern = re.compile(str(expected), re.IGNORECASE)
    except re.error as exc:
        raise ConditionEvaluationError(
            ConditionOperator.REGEX.value, f"invalid pattern {expected!r}: {exc}"
        ) from exc
    return pattern.search(str(actual)) is not None


# Comparators for a present field; absent fields are handled in evaluate()
_COMPARATORS: dict[ConditionOperator, Callable[[Any, Any], bool]] = {
    ConditionOperator.EQUALS: _equals,
    ConditionOperator.NOT_EQUALS: _not_equals,
    ConditionOperator.CONTAINS: _contains,
    ConditionOperator.NOT_CONTAINS: _not_contains,
    ConditionOperator.STARTS_WITH: _starts_with,
    ConditionOperator.ENDS_WITH: _ends_with,
    ConditionOperator.GREATER_THAN: _greater_than,
    ConditionOperator.LESS_THAN: _less_than,
    ConditionOperator.BETWEEN: _between,
    ConditionOperator.IN: _in,
    ConditionOperator.NOT_IN: _not_in,
    ConditionOperator.IS_NULL: _is_null,
    ConditionOperator.IS_NOT_NULL: _is_not_null,
    ConditionOperator.REGEX: _regex,
}

_uncovered = set(ConditionOperator) - set(_COMPARATORS)
if _uncovered:
    raise RuntimeError(
        f"Condition operators without a comparator: {sorted(o.value for o in _uncovered)}"
    )


def evaluate(notification: Notification, condition: RouteCondition) -> bool:
    """Evaluate a single condition against a notification.

    Never raises: evaluation errors (bad numeric cast, invalid pattern,
    malformed operand) are logged and evaluate to False.

    Args:
        notification: The notification under test.
        condition: The condition to apply.

    Returns:
        True if the condition holds.
    """
    actual = notification.get_field(condition.field)
    if actual is None:
        return condition.operator == ConditionOperator.IS_NULL

    comparator = _COMPARATORS[condition.operator]
    try:
        return bool(comparator(actual, condition.value))
    except (ConditionEvaluationError, TypeError, ValueError) as exc:
        logger.debug(
            "Condition on %s evaluated to False: %s",
            condition.field.value,
            exc,
        )
        return False


def evaluate_conditions(
    notification: Notification, conditions: Sequence[RouteCondition]
) -> bool:
    """Fold a condition list left to right.

    The first condition seeds the result. Each later condition is combined
    with the accumulated result using its own joiner (OR, else AND).

    Args:
        notification: The notification under test.
        conditions: Ordered conditions of one route.

    Returns:
        True for an empty list, otherwise the folded result.
    """
    if not conditions:
        return True

    result = evaluate(notification, conditions[0])
    for condition in conditions[1:]:
        outcome = evaluate(notification, condition)
        if condition.logical_joiner == LogicalJoiner.OR:
            result = result or outcome
        else:
            result = result and outcome
    return result
