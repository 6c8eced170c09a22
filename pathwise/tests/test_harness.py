from __future__ import annotations

import pytest

from conftest import DOMAIN_ID
from pathwise.harness.models import TestProfile
from pathwise.harness.runner import TestHarness
from pathwise.rules.errors import ProfileNotFoundError


def _profile(facts, expected):
    return TestProfile(name="junior grad", domain_id=DOMAIN_ID, facts=facts, expected_rules=expected)


def test_exact_expectations_give_empty_diff(engine, worked_example):
    harness = TestHarness(engine)
    profile = _profile({"educationLevel": "bachelors", "experienceLevel": "junior"}, ["rule_a", "rule_b"])

    report = harness.run(profile)

    assert report.passed
    assert report.diff.missing == []
    assert report.diff.unexpected == []
    assert report.matched == ["rule_a", "rule_b"]
    assert report.rules_evaluated == 2


def test_diff_reports_missing_and_unexpected(engine, worked_example):
    harness = TestHarness(engine)
    profile = _profile({"experienceLevel": "mid"}, ["rule_a"])

    report = harness.run(profile)

    assert not report.passed
    assert report.diff.missing == ["rule_a"]
    assert report.diff.unexpected == ["rule_b"]


def test_run_updates_usage_and_history(engine, worked_example):
    harness = TestHarness(engine)
    profile = _profile({"educationLevel": "bachelors"}, ["rule_a", "rule_b"])

    harness.run(profile)
    harness.run(profile)

    assert profile.usage_count == 2
    assert profile.last_used is not None
    assert len(profile.test_results) == 2
    assert profile.test_results[-1].accuracy == 0.5
    assert profile.test_results[-1].missing == ["rule_b"]


def test_saved_profiles(engine):
    harness = TestHarness(engine)
    saved = harness.save_profile(_profile({}, []))

    assert harness.get_profile(saved.id) is saved
    assert harness.list_profiles(DOMAIN_ID) == [saved]
    assert harness.list_profiles("other") == []
    with pytest.raises(ProfileNotFoundError):
        harness.get_profile("missing")
