from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..engine.models import Recommendation
from ..engine.trace import TraceStep


class LLMStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    FALLBACK = "fallback"


class RefinementState(str, Enum):
    NOT_ATTEMPTED = "not_attempted"
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    FALLBACK = "fallback"


class FailureReason(str, Enum):
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    EMPTY_RESPONSE = "empty_response"
    INVALID_RESPONSE = "invalid_response"
    AUTHENTICATION = "authentication"
    BAD_REQUEST = "bad_request"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class RefinementFailure(BaseModel):
    reason: FailureReason
    message: str
    attempts: int = 0


class RefinementRequest(BaseModel):
    session_id: Optional[str] = None
    recommendation: Recommendation
    trace: list[TraceStep] = Field(default_factory=list)
    user_profile: dict[str, Any] = Field(default_factory=dict)
    domain_name: Optional[str] = None


class RefinementResult(BaseModel):
    session_id: str
    recommendation: Recommendation
    roadmap: Optional[dict[str, str]] = None
    llm_status: LLMStatus
    state: RefinementState
    latency_ms: float = 0.0
    retry_count: int = 0
    error: Optional[RefinementFailure] = None

    @property
    def payload(self) -> dict[str, Any]:
        """The refined roadmap merged into the base on success, else the base alone."""
        base = self.recommendation.model_dump()
        if self.llm_status == LLMStatus.SUCCESS and self.roadmap:
            return {**base, "roadmap": dict(self.roadmap)}
        return base


class ClarificationRequest(BaseModel):
    question: str


class ClarificationResult(BaseModel):
    answer: str
    confidence: str
    fallback: bool = False
    latency_ms: float = 0.0
    error: Optional[RefinementFailure] = None
