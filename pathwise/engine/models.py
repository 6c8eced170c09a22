from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from .trace import TraceStep


class InferenceRequest(BaseModel):
    facts: dict[str, Any] = Field(default_factory=dict)


class AppliedRule(BaseModel):
    name: str
    priority: int
    contribution: float


class Recommendation(BaseModel):
    skills: list[str] = Field(default_factory=list)
    resources: list[str] = Field(default_factory=list)
    projects: list[str] = Field(default_factory=list)
    score: float = 0.0
    warnings: list[str] = Field(default_factory=list)
    applied_rules: list[AppliedRule] = Field(default_factory=list)


class InferenceMetadata(BaseModel):
    confidence: float = Field(..., ge=0.0, le=1.0)
    confidence_level: str
    coverage: float
    rules_evaluated: int
    rules_matched: int


class InferenceResult(BaseModel):
    recommendation: Recommendation
    trace: list[TraceStep] = Field(default_factory=list)
    metadata: InferenceMetadata
