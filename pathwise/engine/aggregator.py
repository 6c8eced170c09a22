from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from ..rules.models import ActionType, PublishedRule
from .models import AppliedRule, Recommendation

_LIST_FIELDS = {
    ActionType.RECOMMEND_SKILL: "skills",
    ActionType.RECOMMEND_RESOURCE: "resources",
    ActionType.RECOMMEND_PROJECT: "projects",
}


@dataclass(frozen=True)
class _Entry:
    value: str
    priority: int
    weight: float
    order: int

    def sort_key(self) -> tuple:
        return (-self.priority, -self.weight, self.order)


def aggregate(
    matched: Sequence[PublishedRule],
    contributions: Sequence[float],
) -> Recommendation:
    """Merge the actions of matched rules, given in evaluation order.

    List entries are deduplicated by value, keeping the strongest occurrence,
    and ordered by priority, then weight, then evaluation order.
    """
    entries: dict[str, dict[str, _Entry]] = {name: {} for name in _LIST_FIELDS.values()}
    score = 0.0
    warnings: list[str] = []
    applied: list[AppliedRule] = []
    order = 0

    for rule, contribution in zip(matched, contributions):
        for action in rule.version.actions:
            if action.type == ActionType.ADD_SCORE:
                score += float(action.value)
            elif action.type == ActionType.ADD_WARNING:
                if action.value not in warnings:
                    warnings.append(action.value)
            else:
                bucket = entries[_LIST_FIELDS[action.type]]
                entry = _Entry(action.value, rule.priority, action.weight, order)
                current = bucket.get(entry.value)
                if current is None or entry.sort_key() < current.sort_key():
                    bucket[entry.value] = entry
            order += 1
        applied.append(
            AppliedRule(name=rule.name, priority=rule.priority, contribution=round(contribution, 4))
        )

    def _ordered(field_name: str) -> list[str]:
        return [e.value for e in sorted(entries[field_name].values(), key=_Entry.sort_key)]

    return Recommendation(
        skills=_ordered("skills"),
        resources=_ordered("resources"),
        projects=_ordered("projects"),
        score=round(score, 4),
        warnings=warnings,
        applied_rules=applied,
    )
