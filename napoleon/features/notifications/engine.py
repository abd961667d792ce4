"""
Notification decision engine.

Pure decision logic: whether to notify, over which channels, and with
what title and body. Thresholds:

- urgency >= 80 or overall >= 75 overrides Do Not Disturb
- overall < 30 never notifies
- overall >= 60 or urgency >= 70 notifies without a matching rule
"""

from collections.abc import Callable, Sequence
from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from napoleon.config import settings
from napoleon.features.notifications.domain import (
    DoNotDisturb,
    IntelligenceScores,
    NotificationDecision,
    NotificationPreferences,
    NotificationRule,
)
from napoleon.features.prioritization.domain import Message
from napoleon.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DND_URGENCY_OVERRIDE = 80
DND_OVERALL_OVERRIDE = 75
MIN_OVERALL_SCORE = 30
NOTIFY_OVERALL_SCORE = 60
NOTIFY_URGENCY_SCORE = 70
URGENT_TITLE_THRESHOLD = 80
IMPORTANT_TITLE_THRESHOLD = 70
PREVIEW_LENGTH = 100


class NotificationDecisionEngine:
    def __init__(self, now: Callable[[], datetime] | None = None):
        self._now = now or (lambda: datetime.now(UTC))

    def decide(
        self,
        message: Message,
        scores: IntelligenceScores,
        preferences: NotificationPreferences,
        matched_rules: Sequence[NotificationRule],
    ) -> NotificationDecision:
        tier = message.priority_tier
        tier_config = preferences.tier_config(tier)
        reasoning: list[str] = []

        if not tier_config.enabled:
            return NotificationDecision(
                notify=False,
                channels=[],
                reasoning=["Notifications disabled for this priority level"],
            )

        if self.is_dnd_active(preferences.do_not_disturb):
            if (
                scores.urgency_score < DND_URGENCY_OVERRIDE
                and scores.overall_score < DND_OVERALL_OVERRIDE
            ):
                return NotificationDecision(
                    notify=False, channels=[], reasoning=["Do Not Disturb mode active"]
                )
            reasoning.append("Overriding Do Not Disturb due to urgency")

        if scores.overall_score < MIN_OVERALL_SCORE:
            return NotificationDecision(
                notify=False, channels=[], reasoning=["Message intelligence score too low"]
            )

        if matched_rules:
            rule_channels = list(
                dict.fromkeys(channel for rule in matched_rules for channel in rule.channels)
            )
            reasoning.append(f"Matched {len(matched_rules)} notification rule(s)")
            return NotificationDecision(
                notify=True,
                channels=rule_channels or self.channels_for_tier(preferences, tier),
                reasoning=reasoning,
                matched_rule_ids=[rule.id for rule in matched_rules],
            )

        if (
            scores.overall_score >= NOTIFY_OVERALL_SCORE
            or scores.urgency_score >= NOTIFY_URGENCY_SCORE
        ):
            reasoning.append("High intelligence or urgency score")
            return NotificationDecision(
                notify=True,
                channels=self.channels_for_tier(preferences, tier),
                reasoning=reasoning,
            )

        return NotificationDecision(
            notify=False, channels=[], reasoning=["No notification criteria met"]
        )

    @staticmethod
    def channels_for_tier(preferences: NotificationPreferences, tier: str) -> list[str]:
        """Tier channels with immediate delivery, otherwise push only."""
        config = preferences.tier_config(tier)
        if not config.immediate_delivery:
            return ["push"]
        return list(config.channels)

    @staticmethod
    def should_deliver_immediately(preferences: NotificationPreferences, tier: str) -> bool:
        return preferences.tier_config(tier).immediate_delivery or tier == "critical"

    def scheduled_time(self, preferences: NotificationPreferences) -> datetime:
        interval = (
            preferences.batch_delivery.interval_minutes
            if preferences.batch_delivery.enabled
            else settings.NOTIFICATION_BATCH_INTERVAL_MINUTES
        )
        return self._now() + timedelta(minutes=interval)

    def is_dnd_active(self, dnd: DoNotDisturb) -> bool:
        if not dnd.enabled:
            return False
        if dnd.start is None or dnd.end is None:
            return True

        try:
            zone = ZoneInfo(dnd.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown Do Not Disturb timezone, using UTC", timezone=dnd.timezone)
            zone = ZoneInfo("UTC")

        local_now = self._now().astimezone(zone).time().replace(tzinfo=None)
        return _in_window(local_now, dnd.start, dnd.end)

    @staticmethod
    def build_title(message: Message, scores: IntelligenceScores) -> str:
        subject = message.subject or "No Subject"
        if scores.urgency_score > URGENT_TITLE_THRESHOLD:
            return f"Urgent: {subject}"
        if scores.business_impact > IMPORTANT_TITLE_THRESHOLD:
            return f"Important: {subject}"
        return subject

    @staticmethod
    def build_content(message: Message) -> str:
        preview = message.content[:PREVIEW_LENGTH]
        suffix = "..." if len(message.content) > PREVIEW_LENGTH else ""
        return f"From {message.sender_display}: {preview}{suffix}"


def _in_window(now: time, start: time, end: time) -> bool:
    """Half-open [start, end) window that may wrap past midnight."""
    if start == end:
        return True
    if start < end:
        return start <= now < end
    return now >= start or now < end
