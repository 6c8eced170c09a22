from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .metrics import MetricsSnapshot, RuleMetrics

Scalar = Union[str, int, float, bool]


class Operator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    IN = "in"
    NOT_IN = "not_in"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"


LIST_OPERATORS = frozenset({Operator.IN, Operator.NOT_IN})
NUMERIC_OPERATORS = frozenset({Operator.GREATER_THAN, Operator.LESS_THAN})


class MatchMode(str, Enum):
    ALL = "all"
    ANY = "any"


class ActionType(str, Enum):
    RECOMMEND_SKILL = "recommendSkill"
    RECOMMEND_RESOURCE = "recommendResource"
    RECOMMEND_PROJECT = "recommendProject"
    ADD_SCORE = "addScore"
    ADD_WARNING = "addWarning"


class RuleStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class PublishKind(str, Enum):
    PUBLISH = "publish"
    ROLLBACK = "rollback"


def is_number(value: Any) -> bool:
    """True for real ints and floats; bools and NaN do not count."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not (isinstance(value, float) and math.isnan(value))


class Domain(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)


class Condition(BaseModel):
    model_config = ConfigDict(frozen=True)

    fact_key: str = Field(..., min_length=1)
    operator: Operator
    value: Union[Scalar, tuple[Scalar, ...]]
    description: str = ""

    @model_validator(mode="after")
    def _check_value_shape(self) -> "Condition":
        if self.operator in LIST_OPERATORS:
            if not isinstance(self.value, tuple) or not self.value:
                raise ValueError(f"'{self.operator.value}' requires a non-empty list value")
        elif isinstance(self.value, tuple):
            raise ValueError(f"'{self.operator.value}' requires a scalar value")
        elif self.operator in NUMERIC_OPERATORS and not is_number(self.value):
            raise ValueError(f"'{self.operator.value}' requires a numeric value")
        return self


class Action(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ActionType
    value: Union[str, int, float]
    weight: float = Field(default=1.0, ge=0.0, le=1.0)
    description: str = ""

    @model_validator(mode="after")
    def _check_value_type(self) -> "Action":
        if self.type == ActionType.ADD_SCORE:
            if not is_number(self.value):
                raise ValueError("addScore requires a numeric value")
        elif not isinstance(self.value, str) or not self.value.strip():
            raise ValueError(f"{self.type.value} requires a non-empty string value")
        return self


class VersionDraft(BaseModel):
    """Author-supplied content for a new rule or a new version."""

    title: str = Field(..., min_length=1, max_length=200)
    match_mode: MatchMode = MatchMode.ALL
    conditions: list[Condition] = Field(..., min_length=1)
    actions: list[Action] = Field(default_factory=list)
    explanation: str = Field(..., min_length=1)
    priority: int = Field(..., ge=1, le=10)


class VersionUpdate(BaseModel):
    """Partial edit; omitted fields are carried over from the current version."""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    match_mode: MatchMode | None = None
    conditions: list[Condition] | None = Field(default=None, min_length=1)
    actions: list[Action] | None = None
    explanation: str | None = Field(default=None, min_length=1)
    priority: int | None = Field(default=None, ge=1, le=10)


class RuleVersion(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: int = Field(..., ge=1)
    title: str
    match_mode: MatchMode
    conditions: tuple[Condition, ...]
    actions: tuple[Action, ...]
    explanation: str
    priority: int = Field(..., ge=1, le=10)
    created_by: str
    created_at: datetime


class PublishEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: int
    kind: PublishKind
    actor: str
    at: datetime


class Rule(BaseModel):
    """Rule aggregate: lifecycle metadata over an append-only version arena.

    ``current_version`` and ``published_version`` are 1-based indices into
    ``versions``; version records themselves are never rewritten.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    domain_id: str
    name: str
    title: str
    priority: int
    status: RuleStatus = RuleStatus.DRAFT
    is_active: bool = False
    current_version: int = 1
    published_version: int | None = None
    last_published_at: datetime | None = None
    last_published_by: str | None = None
    versions: tuple[RuleVersion, ...] = ()
    publish_events: tuple[PublishEvent, ...] = ()
    created_by: str
    updated_by: str
    created_at: datetime
    updated_at: datetime
    metrics: RuleMetrics = Field(default_factory=RuleMetrics, exclude=True)

    def get_version(self, number: int) -> RuleVersion | None:
        if 1 <= number <= len(self.versions):
            return self.versions[number - 1]
        return None

    @property
    def latest(self) -> RuleVersion:
        return self.versions[self.current_version - 1]

    @property
    def published(self) -> RuleVersion | None:
        if self.published_version is None:
            return None
        return self.get_version(self.published_version)

    def is_published(self, number: int) -> bool:
        return self.published_version == number

    def published_at(self, number: int) -> datetime | None:
        for event in reversed(self.publish_events):
            if event.version == number:
                return event.at
        return None

    def version_history(self) -> list[dict[str, Any]]:
        """Newest-first view of every version with its publication state."""
        history = []
        for version in reversed(self.versions):
            entry = version.model_dump()
            entry["is_published"] = self.is_published(version.version)
            entry["published_at"] = self.published_at(version.version)
            history.append(entry)
        return history

    def metrics_snapshot(self) -> MetricsSnapshot:
        return self.metrics.snapshot()


@dataclass(frozen=True)
class PublishedRule:
    """Read-only view of a rule's published version, as held by the cache."""

    rule_id: str
    name: str
    domain_id: str
    priority: int
    version: RuleVersion
    metrics: RuleMetrics = field(compare=False, repr=False)


# ── Request bodies ──────────────────────────────────────────────────────


class RuleCreateRequest(VersionDraft):
    domain_id: str = Field(..., min_length=1)
    actor: str = "admin"


class RuleUpdateRequest(VersionUpdate):
    actor: str = "admin"
    expected_version: int | None = Field(default=None, ge=1)


class PublishRequest(BaseModel):
    version: int | None = Field(default=None, ge=1)
    actor: str = "admin"
    expected_version: int | None = Field(default=None, ge=1)


class RollbackRequest(BaseModel):
    version: int = Field(..., ge=1)
    actor: str = "admin"
