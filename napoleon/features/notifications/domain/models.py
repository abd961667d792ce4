"""
Domain models for smart notifications.

Preferences, rules and notifications are stored as rows with JSON columns
and validated with pydantic on load. Decision results are dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from napoleon.features.prioritization.domain import PRIORITY_LEVELS, clamp_score, normalize_priority

NotificationStatus = Literal["pending", "scheduled", "delivered", "read", "dismissed", "failed"]
NotificationType = Literal[
    "message_received",
    "priority_alert",
    "vip_communication",
    "deadline_reminder",
    "delegation_update",
    "system_alert",
]

CHANNELS: tuple[str, ...] = ("push", "email", "sms", "slack", "teams")

# status -> statuses it may move to
NOTIFICATION_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"scheduled", "delivered", "dismissed", "failed"}),
    "scheduled": frozenset({"delivered", "dismissed", "failed"}),
    "delivered": frozenset({"read", "dismissed", "failed"}),
    "read": frozenset(),
    "dismissed": frozenset(),
    "failed": frozenset(),
}

# Intelligence weights
CONTEXTUAL_WEIGHT = 0.25
URGENCY_WEIGHT = 0.35
BUSINESS_WEIGHT = 0.30
PREFERENCE_WEIGHT = 0.10


class InvalidNotificationTransition(Exception):
    """Raised when a notification is moved to a status it cannot reach."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move notification from {current} to {target}")
        self.current = current
        self.target = target
        self.recoverable = False


# =================================================================
# PREFERENCES
# =================================================================


class ChannelSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool = False
    target: str | None = None  # push token, address, phone number or webhook URL

    @model_validator(mode="before")
    @classmethod
    def _target_aliases(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("target"):
            for key in ("webhook", "token", "address", "number"):
                if data.get(key):
                    return {**data, "target": data[key]}
        return data


class PriorityChannelConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    immediate_delivery: bool = False
    channels: list[str] = Field(default_factory=list)


class DoNotDisturb(BaseModel):
    """Quiet window in the user's timezone; no window means always quiet while enabled."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = False
    start: time | None = None
    end: time | None = None
    timezone: str = "UTC"


class BatchDelivery(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool = False
    interval_minutes: int = 15
    max_batch_size: int = 5


def default_priority_configs() -> dict[str, PriorityChannelConfig]:
    return {
        "critical": PriorityChannelConfig(
            enabled=True, immediate_delivery=True, channels=["push", "email", "sms"]
        ),
        "high": PriorityChannelConfig(enabled=True, immediate_delivery=True, channels=["push", "email"]),
        "medium": PriorityChannelConfig(enabled=True, immediate_delivery=False, channels=["push"]),
        "low": PriorityChannelConfig(enabled=False, immediate_delivery=False, channels=[]),
    }


def default_channel_settings() -> dict[str, ChannelSettings]:
    return {
        "push": ChannelSettings(enabled=True),
        "email": ChannelSettings(enabled=True),
        "sms": ChannelSettings(enabled=False),
        "slack": ChannelSettings(enabled=False),
        "teams": ChannelSettings(enabled=False),
    }


class NotificationPreferences(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    channels: dict[str, ChannelSettings] = Field(default_factory=default_channel_settings)
    batch_delivery: BatchDelivery = Field(default_factory=BatchDelivery)
    do_not_disturb: DoNotDisturb = Field(default_factory=DoNotDisturb)
    priorities: dict[str, PriorityChannelConfig] = Field(default_factory=default_priority_configs)

    @field_validator("user_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("channels", "batch_delivery", "do_not_disturb", "priorities", mode="before")
    @classmethod
    def _null_to_default(cls, value: Any, info) -> Any:
        if value is not None:
            return value
        return {
            "channels": default_channel_settings,
            "batch_delivery": BatchDelivery,
            "do_not_disturb": DoNotDisturb,
            "priorities": default_priority_configs,
        }[info.field_name]()

    @field_validator("priorities", mode="after")
    @classmethod
    def _canonical_tiers(cls, value: dict[str, PriorityChannelConfig]) -> dict[str, PriorityChannelConfig]:
        defaults = default_priority_configs()
        canonical: dict[str, PriorityChannelConfig] = {}
        for key, config in value.items():
            tier = normalize_priority(key, default="")
            if tier and tier not in canonical:
                canonical[tier] = config
        return {tier: canonical.get(tier, defaults[tier]) for tier in PRIORITY_LEVELS}

    @classmethod
    def default(cls, user_id: str) -> "NotificationPreferences":
        return cls(user_id=user_id)

    def tier_config(self, tier: str) -> PriorityChannelConfig:
        return self.priorities[normalize_priority(tier)]


# =================================================================
# RULES
# =================================================================


class NotificationTrigger(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["new_message", "high_priority", "vip_sender", "keyword_match"]
    metadata: dict[str, Any] = Field(default_factory=dict)


class NotificationCondition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["platform", "sender", "subject", "priority", "time"]
    operator: Literal["equals", "contains", "in", "not_in", "greater_than", "less_than"]
    value: Any = None


class NotificationAction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    delay_minutes: int | None = None


class NotificationRule(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    name: str
    description: str = ""
    is_active: bool = True
    priority: int = 0
    triggers: list[NotificationTrigger] = Field(default_factory=list)
    conditions: list[NotificationCondition] = Field(default_factory=list)
    actions: list[NotificationAction] = Field(default_factory=list)

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @property
    def channels(self) -> list[str]:
        """Distinct action channels in rule order."""
        return list(dict.fromkeys(action.type for action in self.actions))


# =================================================================
# NOTIFICATIONS
# =================================================================


class SmartNotification(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    user_id: str
    message_id: str | None = None
    type: NotificationType = "message_received"
    title: str
    content: str
    priority: str = "medium"
    channels: list[str] = Field(default_factory=list)
    status: NotificationStatus = "pending"
    intelligence_data: dict[str, float] = Field(default_factory=dict)
    scheduled_for: datetime | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None

    @field_validator("id", "user_id", "message_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value: Any) -> str:
        return normalize_priority(value)

    def can_transition(self, target: str) -> bool:
        return target in NOTIFICATION_TRANSITIONS.get(self.status, frozenset())

    def transition(self, target: str) -> None:
        if not self.can_transition(target):
            raise InvalidNotificationTransition(self.status, target)
        self.status = target


@dataclass(slots=True)
class IntelligenceScores:
    contextual_relevance: float
    urgency_score: float
    business_impact: float
    user_preference_match: float
    overall_score: float
    source: str = "llm"
    reasoning: str = ""

    @classmethod
    def from_components(
        cls,
        contextual_relevance: float,
        urgency_score: float,
        business_impact: float,
        user_preference_match: float,
        *,
        source: str = "llm",
        reasoning: str = "",
    ) -> "IntelligenceScores":
        contextual = clamp_score(contextual_relevance)
        urgency = clamp_score(urgency_score)
        business = clamp_score(business_impact)
        preference = clamp_score(user_preference_match)
        overall = (
            contextual * CONTEXTUAL_WEIGHT
            + urgency * URGENCY_WEIGHT
            + business * BUSINESS_WEIGHT
            + preference * PREFERENCE_WEIGHT
        )
        return cls(
            contextual_relevance=contextual,
            urgency_score=urgency,
            business_impact=business,
            user_preference_match=preference,
            overall_score=round(overall, 2),
            source=source,
            reasoning=reasoning,
        )

    @classmethod
    def fallback(cls, priority_tier: str) -> "IntelligenceScores":
        """Neutral scores with urgency taken from the priority tier."""
        urgency = {"critical": 90, "high": 70}.get(normalize_priority(priority_tier), 50)
        return cls(
            contextual_relevance=50,
            urgency_score=urgency,
            business_impact=50,
            user_preference_match=50,
            overall_score=50,
            source="fallback",
            reasoning="Fallback scoring from priority tier",
        )

    def as_dict(self) -> dict[str, float]:
        return {
            "contextual_relevance": self.contextual_relevance,
            "urgency_score": self.urgency_score,
            "business_impact": self.business_impact,
            "user_preference_match": self.user_preference_match,
            "overall_score": self.overall_score,
        }


@dataclass(slots=True)
class NotificationDecision:
    notify: bool
    channels: list[str]
    reasoning: list[str]
    matched_rule_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class DeliveryResult:
    success: bool
    delivered_channels: list[str]
    failed_channels: list[str]


@dataclass(slots=True)
class ScheduledDeliveryRun:
    due: int = 0
    delivered: int = 0
    failed: int = 0


@dataclass(slots=True)
class NotificationOutcome:
    decision: NotificationDecision
    scores: IntelligenceScores
    notification: SmartNotification | None = None
    delivery: DeliveryResult | None = None


@dataclass(slots=True)
class ChannelPerformance:
    sent: int = 0
    delivered: int = 0
    read: int = 0
    effectiveness: float = 0.0


@dataclass(slots=True)
class NotificationAnalytics:
    total_notifications: int
    delivered_notifications: int
    read_notifications: int
    delivery_rate: float
    read_rate: float
    channel_performance: dict[str, ChannelPerformance]
    priority_distribution: dict[str, int]


@dataclass(slots=True)
class NotificationDigest:
    timeframe: str
    summary: str
    total_notifications: int
    priority_items: list[SmartNotification] = field(default_factory=list)
    priority_distribution: dict[str, int] = field(default_factory=dict)
