from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone

from ..engine.inference import RuleEngine
from ..rules.errors import ProfileNotFoundError
from .models import HarnessDiff, HarnessReport, HarnessRun, TestProfile

logger = logging.getLogger(__name__)

MAX_RUN_HISTORY = 50


class TestHarness:
    __test__ = False

    def __init__(self, engine: RuleEngine) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        self._profiles: dict[str, TestProfile] = {}

    def save_profile(self, profile: TestProfile) -> TestProfile:
        with self._lock:
            self._profiles[profile.id] = profile
        return profile

    def get_profile(self, profile_id: str) -> TestProfile:
        profile = self._profiles.get(profile_id)
        if profile is None:
            raise ProfileNotFoundError(profile_id)
        return profile

    def list_profiles(self, domain_id: str | None = None) -> list[TestProfile]:
        with self._lock:
            profiles = list(self._profiles.values())
        if domain_id is not None:
            profiles = [p for p in profiles if p.domain_id == domain_id]
        return profiles

    def run(self, profile: TestProfile) -> HarnessReport:
        """Run ``profile`` through the engine and diff matched rules against its expectations."""
        start = time.perf_counter()
        result = self._engine.infer(profile.domain_id, profile.facts)
        elapsed_ms = (time.perf_counter() - start) * 1000

        matched = [step.rule_name for step in result.trace if step.matched]
        matched_set = set(matched)
        expected_set = set(profile.expected_rules)
        diff = HarnessDiff(
            missing=[name for name in profile.expected_rules if name not in matched_set],
            unexpected=[name for name in matched if name not in expected_set],
        )
        matched_expected = len(expected_set & matched_set)
        executed_at = datetime.now(timezone.utc)

        run = HarnessRun(
            executed_at=executed_at,
            rules_evaluated=result.metadata.rules_evaluated,
            rules_matched=result.metadata.rules_matched,
            matched_expected=matched_expected,
            missing=diff.missing,
            unexpected=diff.unexpected,
            confidence=result.metadata.confidence,
            accuracy=round(matched_expected / len(expected_set), 4) if expected_set else 1.0,
            execution_time_ms=round(elapsed_ms, 3),
        )
        with self._lock:
            profile.usage_count += 1
            profile.last_used = executed_at
            profile.test_results.append(run)
            del profile.test_results[:-MAX_RUN_HISTORY]

        passed = not diff.missing and not diff.unexpected
        logger.info(
            "Test profile %s: %d/%d expected rules matched, %d unexpected",
            profile.name, matched_expected, len(expected_set), len(diff.unexpected),
        )
        return HarnessReport(
            profile_name=profile.name,
            matched=matched,
            diff=diff,
            confidence=result.metadata.confidence,
            rules_evaluated=result.metadata.rules_evaluated,
            rules_matched=result.metadata.rules_matched,
            executed_at=executed_at,
            passed=passed,
        )
