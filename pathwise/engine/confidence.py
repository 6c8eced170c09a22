from __future__ import annotations

from dataclasses import dataclass

from ..rules.models import PublishedRule
from .config import DEFAULT_CONFIDENCE_CONFIG, ConfidenceConfig


@dataclass(frozen=True)
class ConfidenceScore:
    confidence: float
    level: str
    coverage: float
    base: float


def rule_weight(rule: PublishedRule, config: ConfidenceConfig = DEFAULT_CONFIDENCE_CONFIG) -> float:
    """Priority-scaled mean action weight; zero for a rule without actions."""
    actions = rule.version.actions
    if not actions:
        return 0.0
    mean_weight = sum(a.weight for a in actions) / len(actions)
    return config.priority_factor(rule.priority) * mean_weight


def confidence_level(value: float, config: ConfidenceConfig = DEFAULT_CONFIDENCE_CONFIG) -> str:
    if value >= config.high_threshold:
        return "high"
    if value >= config.medium_threshold:
        return "medium"
    return "low"


def score_confidence(
    matched_weight: float,
    evaluated_weight: float,
    rules_matched: int,
    rules_evaluated: int,
    config: ConfidenceConfig = DEFAULT_CONFIDENCE_CONFIG,
) -> ConfidenceScore:
    coverage = rules_matched / max(rules_evaluated, 1)
    base = matched_weight / evaluated_weight if evaluated_weight > 0 else 0.0
    base = min(1.0, max(0.0, base))

    adjusted = base
    if rules_matched >= config.match_count_threshold:
        adjusted *= config.match_count_boost
    if coverage > config.coverage_threshold:
        adjusted *= config.coverage_boost
    adjusted = min(1.0, max(0.0, adjusted))

    return ConfidenceScore(
        confidence=round(adjusted, 4),
        level=confidence_level(adjusted, config),
        coverage=round(coverage, 4),
        base=round(base, 4),
    )
