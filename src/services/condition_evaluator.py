"""Evaluation of branch conditions against an instance context."""

import logging
from typing import Any, Iterable

from models.definition import Condition
from services.template_resolver import MISSING, resolve_path

logger = logging.getLogger(__name__)


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (list, tuple, set)):
        return expected in actual
    if isinstance(actual, str):
        return str(expected) in actual
    if isinstance(actual, dict):
        return expected in actual
    return False


def _in(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, (list, tuple, set)):
        return False
    return actual in expected


def _compare(operator: str, actual: Any, expected: Any) -> bool:
    if operator == "equals":
        return actual == expected
    if operator == "not_equals":
        return actual != expected
    if operator == "greater_than":
        return actual > expected
    if operator == "less_than":
        return actual < expected
    if operator == "contains":
        return _contains(actual, expected)
    if operator == "in":
        return _in(actual, expected)
    if operator == "not_in":
        return isinstance(expected, (list, tuple, set)) and actual not in expected
    raise ValueError(f"Unknown operator: {operator}")


def evaluate_condition(condition: Condition, context: dict[str, Any]) -> bool:
    """Evaluate a single condition. A missing field never satisfies an ordering."""
    actual = resolve_path(context, condition.field)
    if actual is MISSING:
        actual = None

    try:
        return _compare(condition.operator, actual, condition.value)
    except TypeError:
        logger.debug(
            f"Incomparable values for {condition.field} {condition.operator}: "
            f"{actual!r} vs {condition.value!r}"
        )
        return False


def evaluate_conditions(
    conditions: Iterable[Condition | dict[str, Any]] | None,
    context: dict[str, Any],
) -> bool:
    """Fold a condition list left to right.

    Each condition after the first is combined with the running result using
    its own ``logic`` (AND when omitted). An empty list is true.
    """
    if not conditions:
        return True

    result: bool | None = None
    for raw in conditions:
        condition = raw if isinstance(raw, Condition) else Condition.model_validate(raw)
        value = evaluate_condition(condition, context)
        if result is None:
            result = value
        elif condition.logic == "OR":
            result = result or value
        else:
            result = result and value
    return bool(result)
