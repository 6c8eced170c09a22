from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from ..rules.models import Condition, MatchMode, Operator, is_number

_MISSING = object()


@dataclass(frozen=True)
class ConditionOutcome:
    fact_key: str
    operator: str
    expected: Any
    actual: Any
    matched: bool
    reason: str


@dataclass(frozen=True)
class MatchOutcome:
    matched: bool
    conditions: tuple[ConditionOutcome, ...]

    @property
    def matched_count(self) -> int:
        return sum(1 for c in self.conditions if c.matched)


def _strict_equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    if is_number(actual) and is_number(expected):
        return actual == expected
    return type(actual) is type(expected) and actual == expected


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool))


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (list, tuple)):
        return any(_strict_equals(item, expected) for item in actual)
    if isinstance(actual, str) and isinstance(expected, str):
        return expected in actual
    return False


def evaluate_condition(condition: Condition, facts: Mapping[str, Any]) -> ConditionOutcome:
    """Evaluate one condition. Type mismatches and absent keys are non-matches."""
    actual = facts.get(condition.fact_key, _MISSING)
    op = condition.operator
    expected = condition.value

    if actual is _MISSING:
        return ConditionOutcome(
            condition.fact_key, op.value, expected, None, False, "fact not present"
        )

    if op == Operator.EQUALS:
        matched = _strict_equals(actual, expected)
    elif op == Operator.NOT_EQUALS:
        matched = not _strict_equals(actual, expected)
    elif op == Operator.IN:
        matched = _is_scalar(actual) and any(_strict_equals(actual, v) for v in expected)
    elif op == Operator.NOT_IN:
        matched = _is_scalar(actual) and not any(_strict_equals(actual, v) for v in expected)
    elif op == Operator.GREATER_THAN:
        matched = is_number(actual) and is_number(expected) and actual > expected
    elif op == Operator.LESS_THAN:
        matched = is_number(actual) and is_number(expected) and actual < expected
    elif op == Operator.CONTAINS:
        matched = _contains(actual, expected)
    else:  # pragma: no cover - operators are closed at write time
        matched = False

    if isinstance(actual, (list, tuple)):
        actual = tuple(actual)
    reason = "satisfied" if matched else "not satisfied"
    return ConditionOutcome(condition.fact_key, op.value, expected, actual, matched, reason)


def match_conditions(
    conditions: Sequence[Condition],
    match_mode: MatchMode,
    facts: Mapping[str, Any],
) -> MatchOutcome:
    if not isinstance(facts, Mapping):
        facts = {}
    outcomes = tuple(evaluate_condition(c, facts) for c in conditions)
    if match_mode == MatchMode.ANY:
        matched = any(o.matched for o in outcomes)
    else:
        matched = bool(outcomes) and all(o.matched for o in outcomes)
    return MatchOutcome(matched=matched, conditions=outcomes)
