from __future__ import annotations

import json

from fastapi.testclient import TestClient

from pathwise import app as app_module
from pathwise.app import app
from pathwise.llm.config import LLMConfig, RetryPolicy
from pathwise.llm.refinement import RefinementService

client = TestClient(app)

SECTIONS = {
    "prioritySkills": "- Docker fundamentals first",
    "learningResources": "- The official Docker Guide",
    "practiceProjects": "- Containerize a small web API",
    "timeline": "Weeks 1-4 basics, weeks 5-8 deployment",
    "whyThisPath": "Backend roles lean heavily on containers.",
    "assumptions": "Assumes ten hours a week of study time.",
}


class ScriptedProvider:
    available = True

    def __init__(self, replies):
        self.replies = list(replies)

    async def complete(self, messages, *, max_tokens, temperature, json_mode=False):
        return self.replies.pop(0)


def _create_domain(domain_id="app-domain"):
    resp = client.post("/domains", json={"id": domain_id, "name": "Backend Engineering"})
    assert resp.status_code == 200
    return domain_id


def _create_rule(domain_id, title="Docker Basics", priority=8):
    resp = client.post("/rules", json={
        "domain_id": domain_id,
        "title": title,
        "conditions": [{"fact_key": "educationLevel", "operator": "equals", "value": "bachelors"}],
        "actions": [{"type": "recommendSkill", "value": "Docker", "weight": 0.9}],
        "explanation": "Graduates should learn containers.",
        "priority": priority,
    })
    assert resp.status_code == 201
    return resp.json()


# ── Public endpoints ─────────────────────────────────────────────────────


def test_health():
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert "available" in resp.json()["llm"]


def test_infer_unknown_domain_404():
    resp = client.post("/domains/nowhere/infer", json={"facts": {}})
    assert resp.status_code == 404


# ── Rule lifecycle ───────────────────────────────────────────────────────


def test_rule_lifecycle_over_http():
    domain_id = _create_domain("lifecycle")
    rule = _create_rule(domain_id)
    rule_id = rule["id"]
    assert rule["status"] == "draft"
    assert rule["versions"][0]["is_published"] is False

    facts = {"facts": {"educationLevel": "bachelors"}}
    assert client.post(f"/domains/{domain_id}/infer", json=facts).json()["metadata"]["rules_evaluated"] == 0

    resp = client.post(f"/rules/{rule_id}/publish", json={})
    assert resp.status_code == 200
    assert resp.json()["published_version"] == 1

    result = client.post(f"/domains/{domain_id}/infer", json=facts).json()
    assert result["recommendation"]["skills"] == ["Docker"]
    assert result["trace"][0]["rule_name"] == "docker_basics"

    resp = client.put(f"/rules/{rule_id}", json={"priority": 9, "expected_version": 1})
    assert resp.status_code == 200
    assert resp.json()["current_version"] == 2

    resp = client.put(f"/rules/{rule_id}", json={"priority": 3, "expected_version": 1})
    assert resp.status_code == 409

    client.post(f"/rules/{rule_id}/publish", json={"version": 2})
    resp = client.post(f"/rules/{rule_id}/rollback", json={"version": 1})
    assert resp.status_code == 200
    assert resp.json()["published_version"] == 1

    resp = client.get(f"/rules/{rule_id}")
    assert resp.json()["metrics"]["total_executions"] == 1

    resp = client.delete(f"/rules/{rule_id}")
    assert resp.json()["status"] == "archived"
    result = client.post(f"/domains/{domain_id}/infer", json=facts).json()
    assert result["metadata"]["rules_evaluated"] == 0


def test_invalid_rule_rejected_at_the_edge():
    domain_id = _create_domain("invalid")
    resp = client.post("/rules", json={
        "domain_id": domain_id,
        "title": "Bad",
        "conditions": [{"fact_key": "level", "operator": "in", "value": "junior"}],
        "explanation": "bad",
        "priority": 5,
    })
    assert resp.status_code == 422


def test_rollback_not_allowed_400():
    domain_id = _create_domain("rollback")
    rule_id = _create_rule(domain_id)["id"]
    client.post(f"/rules/{rule_id}/publish", json={})
    resp = client.post(f"/rules/{rule_id}/rollback", json={"version": 1})
    assert resp.status_code == 400


def test_unknown_rule_404():
    assert client.get("/rules/missing").status_code == 404


def test_cache_reload_and_stats():
    domain_id = _create_domain("cache")
    rule_id = _create_rule(domain_id)["id"]
    client.post(f"/rules/{rule_id}/publish", json={})

    resp = client.post("/admin/reload-cache", json={"domain_id": domain_id})
    assert resp.json()["domains"] == {domain_id: 1}

    stats = client.get("/cache/stats").json()
    assert domain_id in stats["domains"]
    assert "hit_rate" in stats


# ── Refinement ───────────────────────────────────────────────────────────


def test_refinement_fallback_then_retry(monkeypatch):
    domain_id = _create_domain("refine")
    rule_id = _create_rule(domain_id)["id"]
    client.post(f"/rules/{rule_id}/publish", json={})

    service = RefinementService(
        provider=ScriptedProvider(["not json", json.dumps(SECTIONS), "Begin with the Docker fundamentals section."]),
        config=LLMConfig(api_key="test-key", enabled=True),
        policy=RetryPolicy(max_attempts=1, backoff_base=0.0, jitter=0.0),
    )
    monkeypatch.setattr(app_module, "refinement_service", service)

    resp = client.post("/refinements", json={
        "domain_id": domain_id,
        "facts": {"educationLevel": "bachelors"},
        "user_profile": {"educationLevel": "bachelors"},
        "session_id": "web-1",
    })
    body = resp.json()
    assert body["llm_status"] == "failed"
    assert body["payload"]["skills"] == ["Docker"]
    assert "roadmap" not in body["payload"]

    body = client.post("/refinements/web-1/retry").json()
    assert body["llm_status"] == "success"
    assert body["payload"]["roadmap"]["timeline"].startswith("Weeks 1-4")

    resp = client.post("/refinements/web-1/clarify", json={"question": "Where do I begin?"})
    assert resp.status_code == 200
    assert resp.json()["confidence"] == "medium"


def test_refinement_unknown_session_404():
    assert client.post("/refinements/nope/retry").status_code == 404


# ── Test profiles ────────────────────────────────────────────────────────


def test_run_saved_test_profile():
    domain_id = _create_domain("profiles")
    rule_id = _create_rule(domain_id)["id"]
    client.post(f"/rules/{rule_id}/publish", json={})

    saved = client.post("/test-profiles", json={
        "name": "graduate",
        "domain_id": domain_id,
        "facts": {"educationLevel": "bachelors"},
        "expected_rules": ["docker_basics"],
    }).json()

    report = client.post("/test-profiles/run", json={"profile_id": saved["id"]}).json()
    assert report["passed"] is True
    assert report["matched"] == ["docker_basics"]

    assert client.post("/test-profiles/run", json={"profile_id": "missing"}).status_code == 404
    assert client.post("/test-profiles/run", json={}).status_code == 400
