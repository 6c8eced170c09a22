from __future__ import annotations

import logging
import time
from typing import Any, Mapping

from .aggregator import aggregate
from .cache import CacheManager
from .config import DEFAULT_CONFIDENCE_CONFIG, ConfidenceConfig
from .confidence import rule_weight, score_confidence
from .matcher import match_conditions
from .models import InferenceMetadata, InferenceResult
from .trace import TraceRecorder

logger = logging.getLogger(__name__)


class RuleEngine:
    def __init__(
        self,
        cache: CacheManager,
        config: ConfidenceConfig = DEFAULT_CONFIDENCE_CONFIG,
    ) -> None:
        self._cache = cache
        self._config = config

    def infer(self, domain_id: str, facts: Mapping[str, Any] | None) -> InferenceResult:
        """Evaluate the domain's published rules against ``facts``.

        The result depends only on the cached snapshot and the facts. Facts
        that are missing, mistyped or not a mapping at all lead to non-matches,
        never to an exception. An unknown domain raises ``DomainNotFoundError``.
        """
        if not isinstance(facts, Mapping):
            facts = {}
        snapshot = self._cache.get(domain_id)

        # sorted() is stable, so equal priorities keep snapshot order
        rules = sorted(snapshot.rules, key=lambda r: -r.priority)

        recorder = TraceRecorder()
        matched_rules = []
        contributions = []
        matched_weight = 0.0
        evaluated_weight = 0.0

        for rule in rules:
            start = time.perf_counter()
            outcome = match_conditions(rule.version.conditions, rule.version.match_mode, facts)
            elapsed_ms = (time.perf_counter() - start) * 1000

            recorder.record(rule, outcome, elapsed_ms)
            rule.metrics.record(outcome.matched, elapsed_ms)

            weight = rule_weight(rule, self._config)
            evaluated_weight += weight
            if outcome.matched:
                matched_rules.append(rule)
                contributions.append(weight)
                matched_weight += weight
            logger.debug(
                "Rule %s v%d matched=%s in %.3fms",
                rule.name, rule.version.version, outcome.matched, elapsed_ms,
            )

        recommendation = aggregate(matched_rules, contributions)
        score = score_confidence(
            matched_weight,
            evaluated_weight,
            rules_matched=len(matched_rules),
            rules_evaluated=len(rules),
            config=self._config,
        )

        return InferenceResult(
            recommendation=recommendation,
            trace=recorder.steps,
            metadata=InferenceMetadata(
                confidence=score.confidence,
                confidence_level=score.level,
                coverage=score.coverage,
                rules_evaluated=len(rules),
                rules_matched=len(matched_rules),
            ),
        )
