from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ProfileCategory(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EDGE_CASE = "edge_case"
    REGRESSION = "regression"


class HarnessDiff(BaseModel):
    missing: list[str] = Field(default_factory=list)
    unexpected: list[str] = Field(default_factory=list)


class HarnessRun(BaseModel):
    executed_at: datetime
    rules_evaluated: int
    rules_matched: int
    matched_expected: int
    missing: list[str] = Field(default_factory=list)
    unexpected: list[str] = Field(default_factory=list)
    confidence: float
    accuracy: float
    execution_time_ms: float


class TestProfile(BaseModel):
    __test__ = False

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = Field(..., min_length=1)
    description: str = ""
    domain_id: str
    facts: dict[str, Any] = Field(default_factory=dict)
    expected_rules: list[str] = Field(default_factory=list)
    category: ProfileCategory = ProfileCategory.BEGINNER
    usage_count: int = 0
    last_used: Optional[datetime] = None
    test_results: list[HarnessRun] = Field(default_factory=list)


class HarnessReport(BaseModel):
    profile_name: str
    matched: list[str]
    diff: HarnessDiff
    confidence: float
    rules_evaluated: int
    rules_matched: int
    executed_at: datetime
    passed: bool
