"""
Smart notification service.

Scores a message for notification intelligence, evaluates the user's
notification rules, asks the decision engine whether to notify, then
creates the notification and either delivers it now or schedules it for
the next batch-delivery window.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from napoleon.config import settings
from napoleon.features.notifications.channels import ChannelSender
from napoleon.features.notifications.domain import (
    ChannelPerformance,
    DeliveryResult,
    IntelligenceScores,
    NotificationAnalytics,
    NotificationDigest,
    NotificationOutcome,
    NotificationPreferences,
    NotificationRule,
    ScheduledDeliveryRun,
    SmartNotification,
)
from napoleon.features.notifications.engine import NotificationDecisionEngine
from napoleon.features.notifications.repository import NotificationRepository
from napoleon.features.notifications.rules import matching_rules
from napoleon.features.prioritization.domain import PRIORITY_LEVELS, Message
from napoleon.infrastructure.observability.logging import get_logger
from napoleon.services.openai_service import OpenAIService
from napoleon.services.prompt_templates import PromptTemplateLoader

logger = get_logger(__name__)

INTELLIGENCE_TEMPLATE = "notification-intelligence"
NEUTRAL_SCORE = 50
MERGED_SECTIONS = ("channels", "priorities")

# digest timeframe -> (hours, label)
DIGEST_TIMEFRAMES = {"hourly": (1, "hour"), "daily": (24, "day"), "weekly": (168, "week")}
DIGEST_TOP_ITEMS = 5


class NotificationNotFound(Exception):
    def __init__(self, notification_id: str):
        super().__init__(f"Notification {notification_id} not found")
        self.notification_id = notification_id
        self.recoverable = False


def scores_from_payload(data: dict[str, Any]) -> IntelligenceScores:
    """Clamp each LLM sub-score; missing or non-numeric values count as neutral."""

    def _component(key: str) -> float:
        value = data.get(key)
        if isinstance(value, bool):
            return NEUTRAL_SCORE
        try:
            number = float(value)
        except (TypeError, ValueError):
            return NEUTRAL_SCORE
        return number if math.isfinite(number) else NEUTRAL_SCORE

    reasoning = data.get("reasoning")
    return IntelligenceScores.from_components(
        _component("contextualRelevance"),
        _component("urgencyScore"),
        _component("businessImpact"),
        _component("userPreferenceMatch"),
        source="llm",
        reasoning=reasoning if isinstance(reasoning, str) else "",
    )


class NotificationService:
    def __init__(
        self,
        repository: NotificationRepository,
        llm: OpenAIService,
        templates: PromptTemplateLoader,
        senders: dict[str, ChannelSender],
        *,
        engine: NotificationDecisionEngine | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        self.repository = repository
        self.llm = llm
        self.templates = templates
        self.senders = senders
        self._now = now or (lambda: datetime.now(UTC))
        self.engine = engine or NotificationDecisionEngine(now=self._now)

    # =================================================================
    # PREFERENCES AND RULES
    # =================================================================

    async def get_preferences(self, user_id: str) -> NotificationPreferences:
        try:
            preferences = await self.repository.get_preferences(user_id)
        except Exception as e:
            logger.warning(
                "Failed to load notification preferences, using defaults",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            preferences = None
        return preferences or NotificationPreferences.default(user_id)

    async def update_preferences(self, user_id: str, changes: dict[str, Any]) -> NotificationPreferences:
        """
        Merge a partial update onto the stored preferences and save them.

        Channel and tier maps merge per key; the other sections are replaced.

        Raises:
            DatabaseError: If the stored preferences cannot be read or written
        """
        stored = await self.repository.get_preferences(user_id)
        data = (stored or NotificationPreferences.default(user_id)).model_dump()

        for section, value in changes.items():
            if section in MERGED_SECTIONS and value is not None:
                data[section] = {**data[section], **value}
            elif value is not None:
                data[section] = value

        preferences = NotificationPreferences.model_validate({**data, "user_id": user_id})
        await self.repository.upsert_preferences(preferences)
        logger.info(
            "Notification preferences updated", user_id=user_id, sections=sorted(changes)
        )
        return preferences

    async def _load_rules(self, user_id: str) -> list[NotificationRule]:
        try:
            return list(await self.repository.list_active_rules(user_id))
        except Exception as e:
            logger.warning(
                "Failed to load notification rules",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return []

    # =================================================================
    # INTELLIGENCE
    # =================================================================

    async def analyze_intelligence(self, message: Message) -> IntelligenceScores:
        if not self.llm.available:
            return IntelligenceScores.fallback(message.priority_tier)

        variables = {
            "subject": message.subject or "No Subject",
            "sender_name": message.sender_display,
            "sender_email": message.sender_email,
            "platform": message.platform,
            "received_date": message.message_date.isoformat() if message.message_date else "unknown",
            "priority_tier": message.priority_tier,
            "priority_score": message.priority_score,
            "content_preview": message.content[:300],
        }

        try:
            prompt = self.templates.render(INTELLIGENCE_TEMPLATE, variables)
            response = await self.llm.complete_json(
                prompt,
                temperature=settings.ANALYSIS_TEMPERATURE,
                max_tokens=settings.ANALYSIS_MAX_TOKENS,
                timeout=settings.OPENAI_TIMEOUT_SECONDS,
            )
            return scores_from_payload(response.data)
        except Exception as e:
            logger.warning(
                "Notification intelligence failed, using fallback scores",
                message_id=message.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return IntelligenceScores.fallback(message.priority_tier)

    # =================================================================
    # DECISION AND CREATION
    # =================================================================

    async def process_message_notification(self, message: Message, user_id: str) -> NotificationOutcome:
        preferences = await self.get_preferences(user_id)
        scores = await self.analyze_intelligence(message)
        rules = matching_rules(await self._load_rules(user_id), message, is_vip=message.is_vip)

        decision = self.engine.decide(message, scores, preferences, rules)
        logger.info(
            "Notification decision made",
            user_id=user_id,
            message_id=message.id,
            notify=decision.notify,
            channels=decision.channels,
            overall_score=scores.overall_score,
            reasoning=decision.reasoning,
        )

        outcome = NotificationOutcome(decision=decision, scores=scores)
        if not decision.notify:
            return outcome

        notification = SmartNotification(
            user_id=user_id,
            message_id=message.id,
            type="vip_communication" if message.is_vip else "message_received",
            title=self.engine.build_title(message, scores),
            content=self.engine.build_content(message),
            priority=message.priority_tier,
            channels=decision.channels,
            intelligence_data=scores.as_dict(),
            metadata={
                "platform": message.platform,
                "sender": message.sender_email,
                "matched_rule_ids": decision.matched_rule_ids,
            },
        )
        outcome.notification, outcome.delivery = await self.create_notification(
            notification, preferences
        )
        return outcome

    async def create_notification(
        self, notification: SmartNotification, preferences: NotificationPreferences
    ) -> tuple[SmartNotification, DeliveryResult | None]:
        """Persist, then deliver now or schedule for the next delivery window."""
        try:
            notification = await self.repository.insert_notification(notification)
        except Exception as e:
            logger.error(
                "Failed to persist notification",
                user_id=notification.user_id,
                message_id=notification.message_id,
                error=str(e),
                error_type=type(e).__name__,
            )

        if self.engine.should_deliver_immediately(preferences, notification.priority):
            delivery = await self.deliver(notification, preferences)
            return notification, delivery

        notification.transition("scheduled")
        notification.scheduled_for = self.engine.scheduled_time(preferences)
        await self._save_status(notification)
        return notification, None

    # =================================================================
    # DELIVERY AND LIFECYCLE
    # =================================================================

    async def deliver(
        self, notification: SmartNotification, preferences: NotificationPreferences | None = None
    ) -> DeliveryResult:
        """Send on every channel independently; one failure never blocks the others."""
        if preferences is None:
            preferences = await self.get_preferences(notification.user_id)

        delivered: list[str] = []
        failed: list[str] = []

        for channel in notification.channels:
            sender = self.senders.get(channel)
            if sender is None:
                logger.warning(
                    "Unsupported notification channel",
                    channel=channel,
                    notification_id=notification.id,
                )
                failed.append(channel)
                continue
            try:
                await sender.send(notification, preferences.channels.get(channel))
                delivered.append(channel)
            except Exception as e:
                logger.error(
                    "Notification channel delivery failed",
                    channel=channel,
                    notification_id=notification.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                failed.append(channel)

        if delivered:
            notification.transition("delivered")
            notification.delivered_at = self._now()
        else:
            notification.transition("failed")

        await self._save_status(notification)
        return DeliveryResult(
            success=bool(delivered), delivered_channels=delivered, failed_channels=failed
        )

    async def deliver_due(self, limit: int | None = None) -> ScheduledDeliveryRun:
        """
        Deliver every scheduled notification whose time has come.

        Raises:
            DatabaseError: If the due notifications cannot be loaded
        """
        due = await self.repository.list_due_scheduled(
            self._now(), limit or settings.SCHEDULED_DELIVERY_BATCH_SIZE
        )
        run = ScheduledDeliveryRun(due=len(due))
        preferences: dict[str, NotificationPreferences] = {}

        for notification in due:
            user_id = notification.user_id
            if user_id not in preferences:
                preferences[user_id] = await self.get_preferences(user_id)

            result = await self.deliver(notification, preferences[user_id])
            if result.success:
                run.delivered += 1
            else:
                run.failed += 1

        if due:
            logger.info(
                "Scheduled notifications delivered",
                due=run.due,
                delivered=run.delivered,
                failed=run.failed,
            )
        return run

    async def mark_read(self, notification_id: str, user_id: str) -> SmartNotification:
        notification = await self._get_notification(notification_id, user_id)
        notification.transition("read")
        notification.read_at = self._now()
        await self._save_status(notification)
        return notification

    async def dismiss(self, notification_id: str, user_id: str) -> SmartNotification:
        notification = await self._get_notification(notification_id, user_id)
        notification.transition("dismissed")
        await self._save_status(notification)
        return notification

    async def _get_notification(self, notification_id: str, user_id: str) -> SmartNotification:
        notification = await self.repository.get_notification(notification_id, user_id)
        if notification is None:
            raise NotificationNotFound(notification_id)
        return notification

    async def _save_status(self, notification: SmartNotification) -> None:
        if notification.id is None:
            return
        try:
            await self.repository.update_notification_status(notification)
        except Exception as e:
            logger.error(
                "Failed to update notification status",
                notification_id=notification.id,
                status=notification.status,
                error=str(e),
                error_type=type(e).__name__,
            )

    # =================================================================
    # ANALYTICS
    # =================================================================

    async def get_analytics(self, user_id: str, days: int = 30) -> NotificationAnalytics:
        since = self._now() - timedelta(days=days)
        try:
            notifications = await self.repository.list_notifications_since(user_id, since)
        except Exception as e:
            logger.error(
                "Failed to load notifications for analytics",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            notifications = []

        reached = ("delivered", "read")
        delivered_count = sum(1 for n in notifications if n.status in reached)
        read_count = sum(1 for n in notifications if n.status == "read")

        performance: dict[str, ChannelPerformance] = {}
        distribution = {tier: 0 for tier in PRIORITY_LEVELS}
        for notification in notifications:
            distribution[notification.priority] = distribution.get(notification.priority, 0) + 1
            for channel in notification.channels:
                perf = performance.setdefault(channel, ChannelPerformance())
                perf.sent += 1
                if notification.status in reached:
                    perf.delivered += 1
                if notification.status == "read":
                    perf.read += 1

        for perf in performance.values():
            perf.effectiveness = round(perf.read / perf.sent * 100, 2) if perf.sent else 0.0

        total = len(notifications)
        return NotificationAnalytics(
            total_notifications=total,
            delivered_notifications=delivered_count,
            read_notifications=read_count,
            delivery_rate=round(delivered_count / total * 100, 2) if total else 0.0,
            read_rate=round(read_count / delivered_count * 100, 2) if delivered_count else 0.0,
            channel_performance=performance,
            priority_distribution=distribution,
        )

    async def generate_digest(self, user_id: str, timeframe: str = "daily") -> NotificationDigest:
        """Highest scoring notifications of the last hour, day or week."""
        hours, label = DIGEST_TIMEFRAMES[timeframe]
        since = self._now() - timedelta(hours=hours)
        try:
            notifications = await self.repository.list_notifications_since(user_id, since)
        except Exception as e:
            logger.error(
                "Failed to load notifications for digest",
                user_id=user_id,
                timeframe=timeframe,
                error=str(e),
                error_type=type(e).__name__,
            )
            notifications = []

        if not notifications:
            return NotificationDigest(
                timeframe=timeframe,
                summary=f"No significant activity in the last {label}.",
                total_notifications=0,
            )

        distribution = {tier: 0 for tier in PRIORITY_LEVELS}
        for notification in notifications:
            distribution[notification.priority] = distribution.get(notification.priority, 0) + 1

        ranked = sorted(notifications, key=_overall_score, reverse=True)
        return NotificationDigest(
            timeframe=timeframe,
            summary=f"{len(notifications)} notifications in the last {label}",
            total_notifications=len(notifications),
            priority_items=ranked[:DIGEST_TOP_ITEMS],
            priority_distribution=distribution,
        )


def _overall_score(notification: SmartNotification) -> float:
    value = notification.intelligence_data.get("overall_score")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)
