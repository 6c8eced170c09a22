from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from .engine.cache import CacheManager
from .engine.inference import RuleEngine
from .engine.models import InferenceRequest, InferenceResult
from .harness.models import HarnessReport, TestProfile
from .harness.runner import TestHarness
from .llm.models import ClarificationRequest, ClarificationResult, RefinementResult
from .llm.refinement import RefinementService, SessionNotFoundError
from .rules.errors import (
    ConcurrentModificationError,
    DomainNotFoundError,
    PathwiseError,
    ProfileNotFoundError,
    RuleNotFoundError,
    VersionNotFoundError,
)
from .rules.models import (
    Domain,
    PublishRequest,
    Rule,
    RollbackRequest,
    RuleCreateRequest,
    RuleUpdateRequest,
    VersionDraft,
    VersionUpdate,
)
from .rules.store import RuleStore


app = FastAPI(title="Pathwise Recommendation API", version="1.0.0")

rule_store = RuleStore()
rule_cache = CacheManager(rule_store)
rule_store.add_listener(rule_cache.reload)
rule_engine = RuleEngine(rule_cache)
refinement_service = RefinementService()
test_harness = TestHarness(rule_engine)

_NOT_FOUND = (
    DomainNotFoundError,
    RuleNotFoundError,
    VersionNotFoundError,
    SessionNotFoundError,
    ProfileNotFoundError,
)


class RefinementCreateRequest(BaseModel):
    domain_id: str
    facts: dict[str, Any] = Field(default_factory=dict)
    user_profile: dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = None


class ReloadRequest(BaseModel):
    domain_id: Optional[str] = None


class ProfileRunRequest(BaseModel):
    profile_id: Optional[str] = None
    profile: Optional[TestProfile] = None


def _http_error(exc: PathwiseError) -> HTTPException:
    if isinstance(exc, _NOT_FOUND):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConcurrentModificationError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _rule_view(rule: Rule) -> dict:
    view = rule.model_dump(mode="json", exclude={"versions", "publish_events"})
    view["versions"] = rule.version_history()
    view["metrics"] = rule.metrics_snapshot().model_dump()
    return view


def _refinement_view(result: RefinementResult) -> dict:
    return {**result.model_dump(mode="json"), "payload": result.payload}


# ── Public endpoints ─────────────────────────────────────────────────────


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "llm": refinement_service.health()}


@app.post("/domains/{domain_id}/infer", response_model=InferenceResult)
def infer(domain_id: str, body: InferenceRequest) -> InferenceResult:
    try:
        return rule_engine.infer(domain_id, body.facts)
    except PathwiseError as exc:
        raise _http_error(exc) from exc


# ── Refinement endpoints ─────────────────────────────────────────────────


@app.post("/refinements")
async def create_refinement(body: RefinementCreateRequest) -> dict:
    try:
        domain = rule_store.get_domain(body.domain_id)
        result = await run_in_threadpool(rule_engine.infer, body.domain_id, body.facts)
    except PathwiseError as exc:
        raise _http_error(exc) from exc

    refined = await refinement_service.refine(
        result.recommendation,
        result.trace,
        body.user_profile,
        domain.name,
        body.session_id,
    )
    return _refinement_view(refined)


@app.get("/refinements/{session_id}")
def get_refinement(session_id: str) -> dict:
    try:
        return _refinement_view(refinement_service.get_result(session_id))
    except PathwiseError as exc:
        raise _http_error(exc) from exc


@app.post("/refinements/{session_id}/retry")
async def retry_refinement(session_id: str) -> dict:
    try:
        result = await refinement_service.retry(session_id)
    except PathwiseError as exc:
        raise _http_error(exc) from exc
    return _refinement_view(result)


@app.post("/refinements/{session_id}/clarify", response_model=ClarificationResult)
async def clarify(session_id: str, body: ClarificationRequest) -> ClarificationResult:
    try:
        return await refinement_service.clarify(body.question, session_id=session_id)
    except PathwiseError as exc:
        raise _http_error(exc) from exc


# ── Admin endpoints ──────────────────────────────────────────────────────


@app.post("/domains", response_model=Domain)
def create_domain(body: Domain) -> Domain:
    return rule_store.register_domain(body)


@app.post("/rules", status_code=201)
def create_rule(body: RuleCreateRequest) -> dict:
    draft = VersionDraft.model_validate(body.model_dump(exclude={"domain_id", "actor"}))
    try:
        rule = rule_store.create_rule(body.domain_id, draft, body.actor)
    except PathwiseError as exc:
        raise _http_error(exc) from exc
    return _rule_view(rule)


@app.get("/rules/{rule_id}")
def get_rule(rule_id: str) -> dict:
    try:
        return _rule_view(rule_store.get(rule_id))
    except PathwiseError as exc:
        raise _http_error(exc) from exc


@app.put("/rules/{rule_id}")
def update_rule(rule_id: str, body: RuleUpdateRequest) -> dict:
    update = VersionUpdate.model_validate(
        body.model_dump(exclude={"actor", "expected_version"}, exclude_unset=True)
    )
    try:
        rule_store.create_version(
            rule_id, update, body.actor, expected_version=body.expected_version,
        )
        return _rule_view(rule_store.get(rule_id))
    except PathwiseError as exc:
        raise _http_error(exc) from exc


@app.post("/rules/{rule_id}/publish")
def publish_rule(rule_id: str, body: PublishRequest) -> dict:
    try:
        rule_store.publish_version(
            rule_id, body.version, body.actor, expected_version=body.expected_version,
        )
        return _rule_view(rule_store.get(rule_id))
    except PathwiseError as exc:
        raise _http_error(exc) from exc


@app.post("/rules/{rule_id}/rollback")
def rollback_rule(rule_id: str, body: RollbackRequest) -> dict:
    try:
        rule_store.rollback_to_version(rule_id, body.version, body.actor)
        return _rule_view(rule_store.get(rule_id))
    except PathwiseError as exc:
        raise _http_error(exc) from exc


@app.delete("/rules/{rule_id}")
def archive_rule(rule_id: str, actor: str = "admin") -> dict:
    try:
        return _rule_view(rule_store.archive_rule(rule_id, actor))
    except PathwiseError as exc:
        raise _http_error(exc) from exc


@app.post("/admin/reload-cache")
def reload_cache(body: Optional[ReloadRequest] = None) -> dict:
    try:
        if body is not None and body.domain_id:
            snapshots = [rule_cache.reload(body.domain_id)]
        else:
            snapshots = rule_cache.reload_all()
    except PathwiseError as exc:
        raise _http_error(exc) from exc
    return {
        "status": "reloaded",
        "domains": {s.domain_id: len(s.rules) for s in snapshots},
    }


@app.get("/cache/stats")
def cache_stats() -> dict:
    return rule_cache.stats()


@app.post("/test-profiles", response_model=TestProfile, status_code=201)
def save_test_profile(body: TestProfile) -> TestProfile:
    try:
        rule_store.get_domain(body.domain_id)
    except PathwiseError as exc:
        raise _http_error(exc) from exc
    return test_harness.save_profile(body)


@app.post("/test-profiles/run", response_model=HarnessReport)
def run_test_profile(body: ProfileRunRequest) -> HarnessReport:
    try:
        if body.profile_id:
            profile = test_harness.get_profile(body.profile_id)
        elif body.profile is not None:
            profile = body.profile
        else:
            raise HTTPException(status_code=400, detail="profile_id or profile is required")
        return test_harness.run(profile)
    except PathwiseError as exc:
        raise _http_error(exc) from exc
