"""
Condition Evaluator

Pure predicate deciding whether a step (or a trigger) applies to a
journey's data bag. Every declared key must be present and strictly equal:
no type coercion, so True never matches 1 and "5" never matches 5.
"""

from typing import Any, Dict, Optional

_MISSING = object()


def _strict_equal(expected: Any, actual: Any) -> bool:
    # bool is an int subclass; keep them apart
    if isinstance(expected, bool) or isinstance(actual, bool):
        return type(expected) is type(actual) and expected == actual

    if isinstance(expected, (int, float)) and isinstance(actual, (int, float)):
        return expected == actual

    if type(expected) is not type(actual):
        return False

    if isinstance(expected, dict):
        if expected.keys() != actual.keys():
            return False
        return all(_strict_equal(v, actual[k]) for k, v in expected.items())

    if isinstance(expected, (list, tuple)):
        if len(expected) != len(actual):
            return False
        return all(_strict_equal(e, a) for e, a in zip(expected, actual))

    return expected == actual


def matches(conditions: Optional[Dict[str, Any]], data: Optional[Dict[str, Any]]) -> bool:
    """True when every condition key is present in data with an equal value"""
    if not conditions:
        return True

    data = data or {}
    for field, expected in conditions.items():
        actual = data.get(field, _MISSING)
        if actual is _MISSING:
            return False
        if not _strict_equal(expected, actual):
            return False
    return True


__all__ = ["matches"]
