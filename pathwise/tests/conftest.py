from __future__ import annotations

import pytest

from pathwise.engine.cache import CacheManager
from pathwise.engine.inference import RuleEngine
from pathwise.rules.models import Domain
from pathwise.rules.store import RuleStore

DOMAIN_ID = "software"


def make_draft(
    title: str,
    *,
    priority: int = 5,
    conditions: list | None = None,
    actions: list | None = None,
    match_mode: str = "all",
) -> dict:
    return {
        "title": title,
        "match_mode": match_mode,
        "conditions": conditions
        or [{"fact_key": "educationLevel", "operator": "equals", "value": "bachelors"}],
        "actions": actions
        if actions is not None
        else [{"type": "recommendSkill", "value": "Python", "weight": 1.0}],
        "explanation": f"{title} explanation",
        "priority": priority,
    }


@pytest.fixture
def store() -> RuleStore:
    return RuleStore([Domain(id=DOMAIN_ID, name="Software Engineering")])


@pytest.fixture
def cache(store) -> CacheManager:
    cache = CacheManager(store)
    store.add_listener(cache.reload)
    return cache


@pytest.fixture
def engine(cache) -> RuleEngine:
    return RuleEngine(cache)


@pytest.fixture
def publish(store):
    """Create a rule from a draft and publish its first version."""

    def _publish(title: str, **kwargs):
        rule = store.create_rule(DOMAIN_ID, make_draft(title, **kwargs), "author")
        store.publish_version(rule.id, 1, "author")
        return rule

    return _publish


@pytest.fixture
def worked_example(publish):
    rule_a = publish(
        "Rule A",
        priority=8,
        conditions=[{"fact_key": "educationLevel", "operator": "equals", "value": "bachelors"}],
        actions=[{"type": "recommendSkill", "value": "Docker", "weight": 0.9}],
    )
    rule_b = publish(
        "Rule B",
        priority=5,
        match_mode="any",
        conditions=[{"fact_key": "experienceLevel", "operator": "in", "value": ["junior", "mid"]}],
        actions=[{"type": "recommendResource", "value": "Docker Guide", "weight": 0.6}],
    )
    return rule_a, rule_b
