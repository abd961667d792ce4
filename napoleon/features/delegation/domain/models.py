"""
Domain models for delegation recommendations and delegated tasks.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from napoleon.features.prioritization.domain import clamp_score, normalize_priority

DelegationStatus = Literal["pending", "accepted", "in_progress", "completed", "escalated", "rejected"]
AvailabilityStatus = Literal["available", "busy", "away", "offline"]

# status -> statuses it may move to
DELEGATION_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"accepted", "escalated", "rejected"}),
    "accepted": frozenset({"in_progress", "escalated", "rejected"}),
    "in_progress": frozenset({"completed", "escalated"}),
    "completed": frozenset(),
    "escalated": frozenset(),
    "rejected": frozenset(),
}
ACTIVE_STATUSES: frozenset[str] = frozenset({"pending", "accepted", "in_progress"})


class InvalidDelegationTransition(Exception):
    """Raised when a delegated task is moved to a status it cannot reach."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move delegation task from {current} to {target}")
        self.current = current
        self.target = target
        self.recoverable = False


class Availability(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: AvailabilityStatus = "available"
    timezone: str = "UTC"
    current_load: float = 0.0  # percent of capacity in use

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() in ("available", "busy", "away", "offline"):
            return value.strip().lower()
        return "offline"

    @field_validator("current_load", mode="before")
    @classmethod
    def _clamp_load(cls, value: Any) -> float:
        try:
            return clamp_score(float(value))
        except (TypeError, ValueError):
            return 0.0


class Workload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    current: int = 0
    capacity: int = 10


class DelegationHistory(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total_tasks: int = 0
    completion_rate: float = 0.0  # percent
    avg_response_time: float = 0.0  # minutes
    avg_quality_score: float = 0.0

    @field_validator("completion_rate", mode="before")
    @classmethod
    def _clamp_rate(cls, value: Any) -> float:
        try:
            return clamp_score(float(value))
        except (TypeError, ValueError):
            return 0.0


class TeamMember(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    user_id: str
    name: str
    email: str
    role: str = ""
    department: str = ""
    skills: list[str] = Field(default_factory=list)
    availability: Availability = Field(default_factory=Availability)
    workload: Workload = Field(default_factory=Workload)
    delegation_history: DelegationHistory = Field(default_factory=DelegationHistory)
    is_active: bool = True

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("skills", mode="before")
    @classmethod
    def _skills(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(s) for s in value if s]


class DelegationCondition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["sender", "subject", "content", "priority", "platform", "time"]
    operator: Literal[
        "equals", "not_equals", "contains", "in", "not_in", "greater_than", "less_than"
    ]
    value: Any = None


class DelegationRule(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    user_id: str
    name: str
    description: str = ""
    is_active: bool = True
    priority: int = 0
    conditions: list[DelegationCondition] = Field(default_factory=list)
    delegate_to: str | None = None
    approval_required: bool = False

    @field_validator("id", "user_id", "delegate_to", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        return str(value) if value is not None else value


class DelegationTask(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    user_id: str
    message_id: str
    delegated_to: str
    delegated_by: str
    status: DelegationStatus = "pending"
    priority: str = "medium"
    due_date: datetime | None = None
    instructions: str = ""
    context: dict[str, Any] = Field(default_factory=dict)
    response: str | None = None
    feedback: str | None = None
    completed_at: datetime | None = None
    escalated_at: datetime | None = None
    created_at: datetime | None = None

    @field_validator("id", "user_id", "message_id", "delegated_to", "delegated_by", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value: Any) -> str:
        return normalize_priority(value)

    def transition(self, target: str) -> None:
        if target not in DELEGATION_TRANSITIONS.get(self.status, frozenset()):
            raise InvalidDelegationTransition(self.status, target)
        self.status = target


@dataclass(slots=True)
class ScoredCandidate:
    member: TeamMember
    score: float


@dataclass(slots=True)
class DelegationOpportunity:
    should_delegate: bool
    confidence: float
    suggested_delegates: list[ScoredCandidate]
    reasoning: list[str]
    estimated_minutes: int
    business_impact: str
    suggested_role: str | None = None
    matched_rule_id: str | None = None


@dataclass(slots=True)
class DelegationAnalytics:
    total_tasks: int
    active_tasks: int
    completed_tasks: int
    avg_completion_hours: float
    team_utilization: float
    member_task_counts: dict[str, int] = field(default_factory=dict)
