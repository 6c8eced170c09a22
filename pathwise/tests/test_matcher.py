from __future__ import annotations

import math

import pytest

from pathwise.engine.matcher import evaluate_condition, match_conditions
from pathwise.rules.models import Condition, MatchMode


def _cond(key, operator, value):
    return Condition(fact_key=key, operator=operator, value=value)


# ── Operators ────────────────────────────────────────────────────────────


def test_equals_is_strict_about_type():
    cond = _cond("years", "equals", 5)
    assert evaluate_condition(cond, {"years": 5}).matched
    assert evaluate_condition(cond, {"years": 5.0}).matched
    assert not evaluate_condition(cond, {"years": "5"}).matched


def test_equals_does_not_confuse_bool_and_int():
    cond = _cond("remote", "equals", True)
    assert evaluate_condition(cond, {"remote": True}).matched
    assert not evaluate_condition(cond, {"remote": 1}).matched


def test_not_equals():
    cond = _cond("goal", "not_equals", "management")
    assert evaluate_condition(cond, {"goal": "engineering"}).matched
    assert not evaluate_condition(cond, {"goal": "management"}).matched


def test_in_and_not_in():
    in_cond = _cond("level", "in", ["junior", "mid"])
    not_in_cond = _cond("level", "not_in", ["junior", "mid"])
    assert evaluate_condition(in_cond, {"level": "junior"}).matched
    assert not evaluate_condition(in_cond, {"level": "senior"}).matched
    assert evaluate_condition(not_in_cond, {"level": "senior"}).matched
    assert not evaluate_condition(not_in_cond, {"level": "mid"}).matched


def test_in_rejects_list_shaped_fact():
    cond = _cond("level", "in", ["junior", "mid"])
    assert not evaluate_condition(cond, {"level": ["junior"]}).matched


@pytest.mark.parametrize("fact", ["10", None, True, [10], {"v": 10}, math.nan])
def test_numeric_comparison_fails_closed(fact):
    assert not evaluate_condition(_cond("hours", "greater_than", 5), {"hours": fact}).matched
    assert not evaluate_condition(_cond("hours", "less_than", 5), {"hours": fact}).matched


def test_numeric_comparison():
    assert evaluate_condition(_cond("hours", "greater_than", 5), {"hours": 10}).matched
    assert evaluate_condition(_cond("hours", "less_than", 5), {"hours": 2.5}).matched
    assert not evaluate_condition(_cond("hours", "greater_than", 5), {"hours": 5}).matched


def test_contains_depends_on_fact_shape():
    cond = _cond("interests", "contains", "cloud")
    assert evaluate_condition(cond, {"interests": ["web", "cloud"]}).matched
    assert evaluate_condition(cond, {"interests": "cloud computing"}).matched
    assert not evaluate_condition(cond, {"interests": ["web"]}).matched
    assert not evaluate_condition(cond, {"interests": 42}).matched


def test_absent_fact_is_non_match():
    outcome = evaluate_condition(_cond("missing", "not_equals", "x"), {})
    assert not outcome.matched
    assert outcome.reason == "fact not present"


# ── Match modes ──────────────────────────────────────────────────────────


def test_match_mode_all_and_any():
    conditions = [
        _cond("educationLevel", "equals", "bachelors"),
        _cond("hours", "greater_than", 10),
    ]
    facts = {"educationLevel": "bachelors", "hours": 4}

    all_outcome = match_conditions(conditions, MatchMode.ALL, facts)
    any_outcome = match_conditions(conditions, MatchMode.ANY, facts)

    assert not all_outcome.matched
    assert any_outcome.matched
    assert any_outcome.matched_count == 1
    assert [c.fact_key for c in all_outcome.conditions] == ["educationLevel", "hours"]


@pytest.mark.parametrize("facts", [None, "text", 42, ["a"], {"educationLevel": None}])
def test_malformed_facts_never_raise(facts):
    outcome = match_conditions([_cond("educationLevel", "equals", "bachelors")], MatchMode.ALL, facts)
    assert outcome.matched is False
