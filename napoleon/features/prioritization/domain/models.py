"""
Domain models for the message prioritization feature.

Records that cross a trust boundary (store rows, LLM JSON) are pydantic
models so every field is validated and normalized on the way in.
Values computed in-process are plain slotted dataclasses.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Priority = Literal["critical", "high", "medium", "low"]
Platform = Literal["gmail", "slack", "teams"]
MessageStatus = Literal["unread", "read", "archived", "snoozed"]
ActionStatus = Literal["pending", "in_progress", "completed", "cancelled"]
Impact = Literal["low", "medium", "high", "critical"]
ActionCategory = Literal["strategic", "relationship", "operational", "market", "administrative"]
Confidentiality = Literal["public", "internal", "confidential", "restricted"]

PRIORITY_LEVELS: tuple[str, ...] = ("critical", "high", "medium", "low")
IMPACT_LEVELS: tuple[str, ...] = ("low", "medium", "high", "critical")
ACTION_CATEGORIES: tuple[str, ...] = (
    "strategic",
    "relationship",
    "operational",
    "market",
    "administrative",
)
CONFIDENTIALITY_LEVELS: tuple[str, ...] = ("public", "internal", "confidential", "restricted")

# Aliases seen in LLM output and older rows that map onto the canonical tiers
_PRIORITY_ALIASES = {"urgent": "critical", "minimal": "low", "normal": "medium"}


def normalize_priority(value: Any, default: str = "medium") -> str:
    """Map any priority-ish value onto critical/high/medium/low."""
    if not isinstance(value, str):
        return default
    cleaned = value.strip().lower()
    cleaned = _PRIORITY_ALIASES.get(cleaned, cleaned)
    return cleaned if cleaned in PRIORITY_LEVELS else default


def normalize_choice(value: Any, allowed: tuple[str, ...], default: str) -> str:
    if not isinstance(value, str):
        return default
    cleaned = value.strip().lower()
    return cleaned if cleaned in allowed else default


def tier_for_score(score: float) -> str:
    """Priority tier thresholds: critical >=80, high >=60, medium >=40."""
    if score >= 80:
        return "critical"
    if score >= 60:
        return "high"
    if score >= 40:
        return "medium"
    return "low"


def clamp_score(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))


def coerce_str_list(value: Any) -> list[str]:
    """LLM list fields: keep strings, drop nulls, wrap a lone string."""
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None and str(item).strip()]


# =================================================================
# STORE RECORDS
# =================================================================


class Message(BaseModel):
    """A normalized message from any connected platform."""

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    platform: Platform = "gmail"
    sender_email: str
    sender_name: str | None = None
    subject: str | None = None
    content: str = ""
    message_date: datetime | None = None
    priority_score: int = 0
    ai_summary: str | None = None
    is_vip: bool = False
    status: MessageStatus = "unread"

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("platform", mode="before")
    @classmethod
    def _normalize_platform(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            # Outlook mail arrives through the Teams connector
            return {"email": "gmail", "outlook": "teams"}.get(value, value)
        return value

    @field_validator("priority_score", mode="before")
    @classmethod
    def _clamp_priority_score(cls, value: Any) -> int:
        try:
            return int(clamp_score(float(value)))
        except (TypeError, ValueError):
            return 0

    @field_validator("content", mode="before")
    @classmethod
    def _content_not_null(cls, value: Any) -> str:
        return value or ""

    @property
    def priority_tier(self) -> str:
        return tier_for_score(self.priority_score)

    @property
    def sender_display(self) -> str:
        return self.sender_name or self.sender_email

    def searchable_text(self) -> str:
        """Lowercased body plus subject, the haystack for keyword rules."""
        return f"{self.content} {self.subject or ''}".lower()


class VipContact(BaseModel):
    """A sender the user marked (or a rule classified) as important."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    user_id: str
    email: str
    name: str | None = None
    priority_level: int = 5
    relationship_type: str | None = "vip"
    notes: str | None = None

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("priority_level", mode="before")
    @classmethod
    def _clamp_level(cls, value: Any) -> int:
        try:
            return int(clamp_score(int(value), 1, 10))
        except (TypeError, ValueError):
            return 5


class VipCondition(BaseModel):
    type: Literal["email_domain", "email_address", "sender_name", "keyword"]
    operator: Literal["equals", "contains", "starts_with", "ends_with", "regex"]
    value: str
    case_sensitive: bool = False


class VipAction(BaseModel):
    type: Literal["set_priority_level", "set_relationship", "add_note"]
    value: str | int


class VipRule(BaseModel):
    """Automatic VIP classification rule: all conditions must hold."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    user_id: str
    name: str
    description: str = ""
    conditions: list[VipCondition] = Field(default_factory=list)
    actions: list[VipAction] = Field(default_factory=list)
    is_active: bool = True
    priority: int = 0

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        return str(value) if value is not None else value


# =================================================================
# LLM EXTRACTION RECORDS (camelCase on the wire)
# =================================================================


class _LLMRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ActionItem(_LLMRecord):
    title: str = Field(min_length=1)
    description: str = ""
    category: ActionCategory = "operational"
    priority: Priority = "medium"
    estimated_duration: str = "30min"
    delegation_possible: bool = False
    suggested_delegate: str | None = None
    due_date: date | None = None
    dependencies: list[str] = Field(default_factory=list)
    stakeholders: list[str] = Field(default_factory=list)
    business_impact: Impact = "medium"
    calendar_blocking_needed: bool = False
    follow_up_required: bool = False
    confidentiality_level: Confidentiality = "internal"
    status: ActionStatus = "pending"

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value: Any) -> str:
        return normalize_priority(value)

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, value: Any) -> str:
        return normalize_choice(value, ACTION_CATEGORIES, "operational")

    @field_validator("business_impact", mode="before")
    @classmethod
    def _normalize_impact(cls, value: Any) -> str:
        return normalize_choice(value, IMPACT_LEVELS, "medium")

    @field_validator("confidentiality_level", mode="before")
    @classmethod
    def _normalize_confidentiality(cls, value: Any) -> str:
        return normalize_choice(value, CONFIDENTIALITY_LEVELS, "internal")

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> str:
        return normalize_choice(
            value, ("pending", "in_progress", "completed", "cancelled"), "pending"
        )

    @field_validator("dependencies", "stakeholders", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return coerce_str_list(value)

    @field_validator("due_date", mode="before")
    @classmethod
    def _parse_due_date(cls, value: Any) -> Any:
        if isinstance(value, (date, datetime)):
            return value
        if not isinstance(value, str) or not value.strip():
            return None
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None

    @field_validator("estimated_duration", "description", mode="before")
    @classmethod
    def _strings(cls, value: Any) -> Any:
        return "" if value is None else str(value)


class MeetingRequest(_LLMRecord):
    type: Literal["in_person", "video_call", "phone_call"] = "video_call"
    duration: str = "30min"
    attendees: list[str] = Field(default_factory=list)
    suggested_agenda: list[str] = Field(default_factory=list)
    preparation_needed: list[str] = Field(default_factory=list)
    urgency: str = "medium"

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> str:
        return normalize_choice(value, ("in_person", "video_call", "phone_call"), "video_call")

    @field_validator("attendees", "suggested_agenda", "preparation_needed", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return coerce_str_list(value)


class DecisionRequired(_LLMRecord):
    decision_topic: str = Field(min_length=1)
    options: list[str] = Field(default_factory=list)
    impact_level: Impact = "medium"
    deadline: str | None = None
    additional_info_needed: list[str] = Field(default_factory=list)
    stakeholder_input_required: list[str] = Field(default_factory=list)

    @field_validator("impact_level", mode="before")
    @classmethod
    def _normalize_impact(cls, value: Any) -> str:
        return normalize_choice(value, IMPACT_LEVELS, "medium")

    @field_validator("options", "additional_info_needed", "stakeholder_input_required", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return coerce_str_list(value)


class CommunicationNeeded(_LLMRecord):
    type: Literal["email", "call", "meeting", "presentation"] = "email"
    recipient: str = ""
    purpose: str = ""
    urgency: str = "medium"
    talking_points: list[str] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> str:
        return normalize_choice(value, ("email", "call", "meeting", "presentation"), "email")

    @field_validator("talking_points", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return coerce_str_list(value)


# =================================================================
# COMPUTED RESULTS
# =================================================================


@dataclass(slots=True)
class VipResult:
    is_vip: bool
    boost: int
    relationship: str
    is_board_member: bool
    is_investor: bool

    @classmethod
    def standard(cls) -> "VipResult":
        return cls(
            is_vip=False,
            boost=0,
            relationship="standard",
            is_board_member=False,
            is_investor=False,
        )


@dataclass(slots=True)
class PriorityAnalysis:
    base_score: int
    final_score: int
    tier: str
    reasoning: str
    urgency_indicators: list[str]
    vip_boost: int
    recommended_response_time: str
    escalation_required: bool
    strategic_weight: float = 0.0
    competitive_sensitivity: str = "medium"


@dataclass(slots=True)
class ExecutiveSummary:
    summary: str
    key_points: list[str]
    business_impact: str
    decision_required: bool
    estimated_response_time: str
    stakeholder_level: str
    strategic_category: str


@dataclass(slots=True)
class ExtractionResult:
    action_items: list[ActionItem] = field(default_factory=list)
    meeting_requests: list[MeetingRequest] = field(default_factory=list)
    decisions_required: list[DecisionRequired] = field(default_factory=list)
    communications_needed: list[CommunicationNeeded] = field(default_factory=list)
    source: str = "llm"
    tokens_used: int = 0

    @classmethod
    def empty(cls, source: str = "fallback") -> "ExtractionResult":
        return cls(source=source)


@dataclass(slots=True)
class ProcessingMetrics:
    processing_time_ms: int
    tokens_used: int
    cost: float
    model: str
    prompt_version: str


@dataclass(slots=True)
class AnalysisResult:
    message_id: str
    executive_summary: ExecutiveSummary
    priority_analysis: PriorityAnalysis
    extraction: ExtractionResult
    processing_metrics: ProcessingMetrics
    used_fallback: bool = False

    @property
    def action_items(self) -> list[ActionItem]:
        return self.extraction.action_items

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "executive_summary": {
                "summary": self.executive_summary.summary,
                "key_points": self.executive_summary.key_points,
                "business_impact": self.executive_summary.business_impact,
                "decision_required": self.executive_summary.decision_required,
                "estimated_response_time": self.executive_summary.estimated_response_time,
                "stakeholder_level": self.executive_summary.stakeholder_level,
                "strategic_category": self.executive_summary.strategic_category,
            },
            "priority_analysis": {
                "score": self.priority_analysis.base_score,
                "final_score": self.priority_analysis.final_score,
                "tier": self.priority_analysis.tier,
                "reasoning": self.priority_analysis.reasoning,
                "urgency_indicators": self.priority_analysis.urgency_indicators,
                "vip_boost": self.priority_analysis.vip_boost,
                "recommended_response_time": self.priority_analysis.recommended_response_time,
                "escalation_required": self.priority_analysis.escalation_required,
                "strategic_weight": self.priority_analysis.strategic_weight,
                "competitive_sensitivity": self.priority_analysis.competitive_sensitivity,
            },
            "action_items": [i.model_dump(mode="json") for i in self.extraction.action_items],
            "meeting_requests": [m.model_dump(mode="json") for m in self.extraction.meeting_requests],
            "decisions_required": [
                d.model_dump(mode="json") for d in self.extraction.decisions_required
            ],
            "communications_needed": [
                c.model_dump(mode="json") for c in self.extraction.communications_needed
            ],
            "processing_metrics": {
                "processing_time_ms": self.processing_metrics.processing_time_ms,
                "tokens_used": self.processing_metrics.tokens_used,
                "cost": self.processing_metrics.cost,
                "model": self.processing_metrics.model,
                "prompt_version": self.processing_metrics.prompt_version,
            },
            "used_fallback": self.used_fallback,
        }


@dataclass(slots=True)
class BatchResult:
    processed: int
    failed: int
    rate_limited: bool
    batch_id: str | None = None
    skipped: int = 0


@dataclass(slots=True)
class AIProcessingMetrics:
    total_messages: int
    successful_processing: int
    failed_processing: int
    avg_processing_time_ms: int
    total_tokens_used: int
    total_cost: float
    vip_boosts: int
    fallback_usage: int
    timestamp: datetime


@dataclass(slots=True)
class DailyDigest:
    total_messages: int
    high_priority_count: int
    vip_messages_count: int
    action_items_count: int
    top_priority_messages: list[Message]
