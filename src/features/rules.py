"""Segment rule matching against an evaluation context."""
from __future__ import annotations

import operator
import re
from typing import Any, Callable, Mapping

from src.features.models import (
    AllRule,
    AnyRule,
    Condition,
    ConditionOperator,
    EvaluationContext,
    NotRule,
    SegmentRule,
)


class _Missing:
    """Sentinel for attributes absent from the context."""

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()

# Longer subjects never match a "matches" condition
MAX_MATCH_LENGTH = 1024


def _walk(value: Any, path: str) -> Any:
    """Follow a dotted path through nested mappings and lists."""
    current = value
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return MISSING
    return MISSING if current is None else current


def resolve_attribute(context: EvaluationContext, path: str) -> Any:
    """
    Look up a dotted attribute path in the context.

    Supported roots: ``id``, ``user.*``, ``page.url``, ``geo.*`` and
    ``request.headers.<name>`` (case-insensitive). Geo fields answer to both
    their edge name and their snake_case name. Anything else, and any ``None``
    value, resolves to MISSING.
    """
    root, _, rest = path.partition(".")

    if root == "id":
        return context.subject_id if not rest and context.subject_id else MISSING

    if root == "user":
        return _walk(context.user, rest) if rest else MISSING

    if root == "page":
        if rest != "url" or context.page is None or context.page.url is None:
            return MISSING
        return context.page.url

    if root == "geo":
        if not rest:
            return MISSING
        return _walk(context.geo.attributes(), rest)

    if root == "request":
        section, _, name = rest.partition(".")
        if section != "headers" or not name:
            return MISSING
        return context.request.headers.get(name.lower(), MISSING)

    return MISSING


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _same_type(left: Any, right: Any) -> bool:
    # bool is an int subclass; keep them apart so True never equals 1
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool)
    if _is_number(left) and _is_number(right):
        return True
    return type(left) is type(right)


def _equals(left: Any, right: Any) -> bool:
    return _same_type(left, right) and left == right


def _ordered(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(actual: Any, expected: Any) -> bool:
        if _is_number(actual) and _is_number(expected):
            return compare(actual, expected)
        if isinstance(actual, str) and isinstance(expected, str):
            return compare(actual, expected)
        return False

    return check


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return isinstance(expected, str) and expected in actual
    if isinstance(actual, list):
        return any(_equals(item, expected) for item in actual)
    return False


def _matches(actual: Any, pattern: Any) -> bool:
    if not isinstance(actual, str) or not isinstance(pattern, str) or len(actual) > MAX_MATCH_LENGTH:
        return False
    try:
        return re.search(pattern, actual) is not None
    except re.error:
        return False


_COMPARATORS: dict[ConditionOperator, Callable[[Any, Any], bool]] = {
    ConditionOperator.EQ: _equals,
    ConditionOperator.NEQ: lambda a, e: _same_type(a, e) and a != e,
    ConditionOperator.IN: lambda a, e: isinstance(e, list) and any(_equals(a, v) for v in e),
    ConditionOperator.NOT_IN: lambda a, e: isinstance(e, list) and not any(_equals(a, v) for v in e),
    ConditionOperator.GT: _ordered(operator.gt),
    ConditionOperator.GTE: _ordered(operator.ge),
    ConditionOperator.LT: _ordered(operator.lt),
    ConditionOperator.LTE: _ordered(operator.le),
    ConditionOperator.CONTAINS: _contains,
    ConditionOperator.STARTS_WITH: lambda a, e: isinstance(a, str) and isinstance(e, str) and a.startswith(e),
    ConditionOperator.ENDS_WITH: lambda a, e: isinstance(a, str) and isinstance(e, str) and a.endswith(e),
    ConditionOperator.MATCHES: _matches,
}


def condition_matches(condition: Condition, context: EvaluationContext) -> bool:
    """Evaluate one leaf; missing attributes and type mismatches are False."""
    actual = resolve_attribute(context, condition.attribute)

    if condition.operator is ConditionOperator.EXISTS:
        present = actual is not MISSING
        return present if condition.value is None else present is condition.value

    if actual is MISSING:
        return False

    return _COMPARATORS[condition.operator](actual, condition.value)


def matches(rule: SegmentRule, context: EvaluationContext) -> bool:
    """Evaluate a segment rule tree against the context."""
    if isinstance(rule, Condition):
        return condition_matches(rule, context)
    if isinstance(rule, AllRule):
        return all(matches(child, context) for child in rule.rules)
    if isinstance(rule, AnyRule):
        return any(matches(child, context) for child in rule.rules)
    if isinstance(rule, NotRule):
        return not matches(rule.rule, context)
    return False
