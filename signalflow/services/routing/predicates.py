from __future__ import annotations

import logging
from typing import Any, Callable, Iterable


logger = logging.getLogger(__name__)

_MISSING = object()


def resolve_path(payload: Any, path: str) -> Any:
    # Dotted lookup through nested mappings; anything unreachable resolves to _MISSING.
    current = payload
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _compare(value: Any, expected: Any, op: Callable[[float, float], bool]) -> bool:
    # Ordering only applies to numbers; strings, bools and None never compare.
    if not _is_number(value) or not _is_number(expected):
        return False
    return op(float(value), float(expected))


def _contains(value: Any, expected: Any) -> bool:
    if isinstance(value, str):
        return isinstance(expected, str) and expected in value
    if isinstance(value, list):
        return expected in value
    return False


def _in(value: Any, expected: Any) -> bool:
    if not isinstance(expected, (list, tuple)) or value is _MISSING:
        return False
    return value in expected


_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": lambda value, expected: value is not _MISSING and value == expected,
    "neq": lambda value, expected: value is _MISSING or value != expected,
    "contains": _contains,
    "gt": lambda value, expected: _compare(value, expected, lambda a, b: a > b),
    "gte": lambda value, expected: _compare(value, expected, lambda a, b: a >= b),
    "lt": lambda value, expected: _compare(value, expected, lambda a, b: a < b),
    "lte": lambda value, expected: _compare(value, expected, lambda a, b: a <= b),
    "in": _in,
    "exists": lambda value, expected: (value is not _MISSING) == bool(expected),
}

SUPPORTED_OPERATORS = tuple(_OPERATORS)


def _evaluate_condition(condition: Any, payload: dict[str, Any]) -> bool:
    if not isinstance(condition, dict):
        return False
    path = condition.get("path")
    operator = _OPERATORS.get(condition.get("operator"))
    if not isinstance(path, str) or not path or operator is None:
        return False
    # "exists" without a value asserts presence.
    expected = condition.get("value", True if condition.get("operator") == "exists" else None)
    return operator(resolve_path(payload, path), expected)


def evaluate_predicate(conditions: Iterable[Any] | None, payload: Any) -> bool:
    # Total: malformed predicates, odd payloads and evaluation errors all mean "no match".
    if conditions is None:
        return True
    if not isinstance(conditions, list) or not isinstance(payload, dict):
        return False
    try:
        return all(_evaluate_condition(condition, payload) for condition in conditions)
    except Exception as exc:  # noqa: BLE001 - predicate evaluation never raises
        logger.debug("route_predicate_evaluation_failed error=%s", type(exc).__name__)
        return False
