from __future__ import annotations

import asyncio
import json
import logging
import re
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Sequence

import groq
from pydantic import ValidationError

from ..engine.models import Recommendation
from ..engine.trace import TraceStep
from ..rules.errors import PathwiseError
from .config import DEFAULT_LLM_CONFIG, DEFAULT_RETRY_POLICY, LLMConfig, RetryPolicy
from .groq_client import CompletionProvider, EmptyCompletionError, GroqProvider
from .models import (
    ClarificationResult,
    FailureReason,
    LLMStatus,
    RefinementFailure,
    RefinementRequest,
    RefinementResult,
    RefinementState,
)
from .prompts import (
    build_clarification_messages,
    build_refinement_messages,
    sanitize_profile,
    sanitize_string,
)
from .store import RefinementStore

logger = logging.getLogger(__name__)

CLARIFICATION_FALLBACK_ANSWER = (
    "I apologize, but I'm unable to provide a detailed clarification at this time "
    "due to system limitations. Please refer to your original recommendation or "
    "contact support for assistance."
)
SHORT_QUESTION_ANSWER = (
    "Your question is too short or contains invalid characters. "
    "Please rephrase your question."
)
MIN_QUESTION_LENGTH = 3
MIN_SECTION_LENGTH = 10
MIN_ANSWER_LENGTH = 10

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)
# Request timeout, conflict and rate limit are worth another attempt
_RETRYABLE_CLIENT_STATUSES = frozenset({408, 409, 429})
_UNAVAILABLE = RefinementFailure(
    reason=FailureReason.UNAVAILABLE,
    message="LLM provider disabled or not configured",
)


class SessionNotFoundError(PathwiseError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Refinement session '{session_id}' not found")
        self.session_id = session_id


class InvalidResponseError(ValueError):
    """A completion that does not have the expected shape."""


class RefinementCycle:
    """State of one refinement cycle.

    NOT_ATTEMPTED -> ATTEMPTING -> SUCCESS | FALLBACK. Both end states are
    terminal; a retry starts a new cycle.
    """

    _TRANSITIONS = {
        RefinementState.NOT_ATTEMPTED: frozenset({RefinementState.ATTEMPTING}),
        RefinementState.ATTEMPTING: frozenset({RefinementState.SUCCESS, RefinementState.FALLBACK}),
        RefinementState.SUCCESS: frozenset(),
        RefinementState.FALLBACK: frozenset(),
    }

    def __init__(self) -> None:
        self.state = RefinementState.NOT_ATTEMPTED
        self.attempts = 0

    def _move(self, target: RefinementState) -> None:
        if target not in self._TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal refinement transition {self.state.value} -> {target.value}")
        self.state = target

    def begin(self) -> None:
        self._move(RefinementState.ATTEMPTING)

    def record_attempt(self) -> int:
        if self.state != RefinementState.ATTEMPTING:
            raise RuntimeError(f"Cannot attempt from state {self.state.value}")
        self.attempts += 1
        return self.attempts

    def succeed(self) -> None:
        self._move(RefinementState.SUCCESS)

    def fall_back(self) -> None:
        self._move(RefinementState.FALLBACK)


@dataclass
class _AttemptOutcome:
    value: Any
    attempts: int
    failure: Optional[RefinementFailure]


def classify_error(exc: BaseException) -> tuple[FailureReason, bool]:
    """Map an attempt error to a failure reason and whether it is worth retrying."""
    if isinstance(exc, (asyncio.TimeoutError, groq.APITimeoutError)):
        return FailureReason.TIMEOUT, True
    if isinstance(exc, groq.APIConnectionError):
        return FailureReason.TRANSPORT, True
    if isinstance(exc, groq.RateLimitError):
        return FailureReason.RATE_LIMITED, True
    if isinstance(exc, (groq.AuthenticationError, groq.PermissionDeniedError)):
        return FailureReason.AUTHENTICATION, False
    if isinstance(exc, groq.APIStatusError):
        status = exc.status_code
        if status >= 500:
            return FailureReason.SERVER_ERROR, True
        if status in _RETRYABLE_CLIENT_STATUSES:
            return FailureReason.RATE_LIMITED if status == 429 else FailureReason.TRANSPORT, True
        return FailureReason.BAD_REQUEST, False
    if isinstance(exc, EmptyCompletionError):
        return FailureReason.EMPTY_RESPONSE, True
    if isinstance(exc, InvalidResponseError):
        return FailureReason.INVALID_RESPONSE, True
    return FailureReason.UNKNOWN, True


def parse_roadmap(content: str, sections: Sequence[str]) -> dict[str, str]:
    """Pull the JSON object out of ``content`` and check every section is present."""
    match = _JSON_OBJECT_RE.search(content)
    if not match:
        raise InvalidResponseError("No JSON object in completion")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise InvalidResponseError(f"Malformed JSON in completion: {exc}") from exc
    if not isinstance(parsed, dict):
        raise InvalidResponseError("Completion is not a JSON object")

    roadmap: dict[str, str] = {}
    for section in sections:
        value = parsed.get(section)
        if not isinstance(value, str) or len(value.strip()) < MIN_SECTION_LENGTH:
            raise InvalidResponseError(f"Missing or too short section: {section}")
        roadmap[section] = sanitize_string(value, 2000)
    return roadmap


def _parse_answer(content: str) -> str:
    answer = sanitize_string(content, 1000)
    if len(answer) < MIN_ANSWER_LENGTH:
        raise InvalidResponseError("Answer too short for a meaningful clarification")
    return answer


class RefinementService:
    def __init__(
        self,
        provider: CompletionProvider | None = None,
        config: LLMConfig = DEFAULT_LLM_CONFIG,
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        store: RefinementStore | None = None,
    ) -> None:
        self._config = config
        self._provider = provider if provider is not None else GroqProvider(config)
        self._policy = policy
        self._store = store if store is not None else RefinementStore()

    @property
    def store(self) -> RefinementStore:
        return self._store

    # ── Refinement ────────────────────────────────────────────────────

    async def refine(
        self,
        recommendation: Recommendation,
        trace: Sequence[TraceStep] = (),
        user_profile: Mapping[str, Any] | None = None,
        domain_name: str | None = None,
        session_id: str | None = None,
    ) -> RefinementResult:
        """
        Turn a base recommendation into a sectioned roadmap.

        Failures never escape: the result carries the unmodified base
        recommendation with ``llm_status`` set to ``failed`` (attempts were
        made) or ``fallback`` (the provider is off). Cancellation of the
        calling task still propagates.
        """
        request = RefinementRequest(
            session_id=session_id or uuid.uuid4().hex,
            recommendation=recommendation,
            trace=list(trace),
            user_profile=dict(user_profile) if isinstance(user_profile, Mapping) else {},
            domain_name=domain_name,
        )
        return await self._run_cycle(request)

    async def retry(self, session_id: str) -> RefinementResult:
        """Start a fresh cycle from the session's stored inputs, replacing its outcome."""
        record = self._store.get(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        logger.info("Retrying refinement for session %s", session_id)
        return await self._run_cycle(record.request)

    def get_result(self, session_id: str) -> RefinementResult:
        record = self._store.get(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        return record.result

    async def _run_cycle(self, request: RefinementRequest) -> RefinementResult:
        cycle = RefinementCycle()
        start = time.perf_counter()
        cycle.begin()

        if not self._provider.available:
            cycle.fall_back()
            logger.warning("LLM unavailable, returning base recommendation for session %s", request.session_id)
            result = self._result(request, cycle, start, LLMStatus.FALLBACK, error=_UNAVAILABLE)
            self._store.save(request, result)
            return result

        sections = self._config.sections_for(request.domain_name)
        messages = build_refinement_messages(
            request.recommendation,
            request.trace,
            sanitize_profile(request.user_profile),
            request.domain_name,
            sections,
            self._config.max_context_length,
        )
        outcome = await self._attempt(
            cycle,
            messages,
            json_mode=True,
            parse=lambda content: parse_roadmap(content, sections),
            operation=f"refine:{request.session_id}",
        )

        if outcome.failure is None:
            cycle.succeed()
            result = self._result(request, cycle, start, LLMStatus.SUCCESS, roadmap=outcome.value)
            logger.info(
                "Refined session %s in %.0fms after %d attempt(s)",
                request.session_id, result.latency_ms, cycle.attempts,
            )
        else:
            cycle.fall_back()
            result = self._result(request, cycle, start, LLMStatus.FAILED, error=outcome.failure)
            logger.warning(
                "Refinement failed for session %s (%s), returning base recommendation",
                request.session_id, outcome.failure.reason.value,
            )

        self._store.save(request, result)
        return result

    def _result(
        self,
        request: RefinementRequest,
        cycle: RefinementCycle,
        start: float,
        status: LLMStatus,
        roadmap: dict[str, str] | None = None,
        error: RefinementFailure | None = None,
    ) -> RefinementResult:
        return RefinementResult(
            session_id=request.session_id,
            recommendation=request.recommendation,
            roadmap=roadmap,
            llm_status=status,
            state=cycle.state,
            latency_ms=round((time.perf_counter() - start) * 1000, 2),
            retry_count=max(cycle.attempts - 1, 0),
            error=error,
        )

    # ── Clarification ─────────────────────────────────────────────────

    async def clarify(
        self,
        question: str,
        context: Mapping[str, Any] | None = None,
        *,
        session_id: str | None = None,
    ) -> ClarificationResult:
        """
        Answer a follow-up question about a recommendation.

        ``context`` may carry ``user_profile``, ``domain_name``, ``roadmap`` and
        ``recommendation``; with ``session_id`` they come from the stored session.
        """
        if session_id is not None:
            context = self._session_context(session_id)
        if not isinstance(context, Mapping):
            context = {}
        start = time.perf_counter()

        cleaned = sanitize_string(question, self._config.max_question_length)
        if len(cleaned) < MIN_QUESTION_LENGTH:
            return ClarificationResult(answer=SHORT_QUESTION_ANSWER, confidence="low")

        cycle = RefinementCycle()
        cycle.begin()
        if not self._provider.available:
            cycle.fall_back()
            logger.warning("LLM unavailable for clarification")
            return ClarificationResult(
                answer=CLARIFICATION_FALLBACK_ANSWER,
                confidence="low",
                fallback=True,
                error=_UNAVAILABLE,
            )

        recommendation = context.get("recommendation")
        if isinstance(recommendation, Mapping):
            try:
                recommendation = Recommendation.model_validate(recommendation)
            except ValidationError:
                logger.warning("Ignoring malformed recommendation in clarification context")
                recommendation = None
        messages = build_clarification_messages(
            cleaned,
            sanitize_profile(context.get("user_profile")),
            context.get("domain_name"),
            context.get("roadmap"),
            recommendation if isinstance(recommendation, Recommendation) else None,
            self._config.max_context_length,
        )
        outcome = await self._attempt(
            cycle, messages, json_mode=False, parse=_parse_answer, operation="clarify",
        )
        latency_ms = round((time.perf_counter() - start) * 1000, 2)

        if outcome.failure is not None:
            cycle.fall_back()
            logger.warning("Clarification failed (%s), returning fallback answer", outcome.failure.reason.value)
            return ClarificationResult(
                answer=CLARIFICATION_FALLBACK_ANSWER,
                confidence="low",
                fallback=True,
                latency_ms=latency_ms,
                error=outcome.failure,
            )
        cycle.succeed()
        return ClarificationResult(answer=outcome.value, confidence="medium", latency_ms=latency_ms)

    def _session_context(self, session_id: str) -> dict[str, Any]:
        record = self._store.get(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        return {
            "user_profile": record.request.user_profile,
            "domain_name": record.request.domain_name,
            "roadmap": record.result.roadmap,
            "recommendation": record.request.recommendation,
        }

    # ── Attempts ──────────────────────────────────────────────────────

    async def _attempt(
        self,
        cycle: RefinementCycle,
        messages: list[dict[str, str]],
        *,
        json_mode: bool,
        parse: Callable[[str], Any],
        operation: str,
    ) -> _AttemptOutcome:
        failure: RefinementFailure | None = None
        while cycle.attempts < self._policy.max_attempts:
            attempt = cycle.record_attempt()
            try:
                content = await asyncio.wait_for(
                    self._provider.complete(
                        messages,
                        max_tokens=self._config.max_tokens,
                        temperature=self._config.temperature,
                        json_mode=json_mode,
                    ),
                    timeout=self._policy.per_attempt_timeout,
                )
                return _AttemptOutcome(value=parse(content), attempts=attempt, failure=None)
            except Exception as exc:
                reason, retryable = classify_error(exc)
                failure = RefinementFailure(reason=reason, message=str(exc) or reason.value, attempts=attempt)
                logger.warning(
                    "LLM attempt %d/%d for %s failed (%s)",
                    attempt, self._policy.max_attempts, operation, reason.value,
                    exc_info=True,
                )
                if not retryable:
                    break
            if cycle.attempts < self._policy.max_attempts:
                await asyncio.sleep(self._policy.delay_for(attempt))
        return _AttemptOutcome(value=None, attempts=cycle.attempts, failure=failure)

    def health(self) -> dict[str, Any]:
        return {
            "provider": type(self._provider).__name__,
            "available": self._provider.available,
            "model": getattr(self._provider, "model", None),
            "max_attempts": self._policy.max_attempts,
            "per_attempt_timeout": self._policy.per_attempt_timeout,
            "sessions": len(self._store.session_ids()),
        }
