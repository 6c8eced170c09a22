from __future__ import annotations

from dataclasses import dataclass, field

from ..rules.models import PublishedRule
from .matcher import ConditionOutcome, MatchOutcome


@dataclass(frozen=True)
class TraceStep:
    """One rule evaluation. Timing is excluded from equality."""

    step: int
    rule_id: str
    rule_name: str
    version: int
    priority: int
    matched: bool
    effects: tuple[str, ...]
    conditions: tuple[ConditionOutcome, ...]
    eval_time_ms: float = field(default=0.0, compare=False)


class TraceRecorder:
    """Collects trace steps for a single ``infer`` call."""

    def __init__(self) -> None:
        self._steps: list[TraceStep] = []

    def record(self, rule: PublishedRule, outcome: MatchOutcome, elapsed_ms: float) -> TraceStep:
        effects: tuple[str, ...] = ()
        if outcome.matched:
            effects = tuple(
                f"{action.type.value}: {action.value} (weight {action.weight:g})"
                for action in rule.version.actions
            )
        step = TraceStep(
            step=len(self._steps) + 1,
            rule_id=rule.rule_id,
            rule_name=rule.name,
            version=rule.version.version,
            priority=rule.priority,
            matched=outcome.matched,
            effects=effects,
            conditions=outcome.conditions,
            eval_time_ms=round(elapsed_ms, 4),
        )
        self._steps.append(step)
        return step

    @property
    def steps(self) -> list[TraceStep]:
        return list(self._steps)
