"""
Domain subpackage for smart notifications.
"""

from .models import (
    CHANNELS,
    NOTIFICATION_TRANSITIONS,
    BatchDelivery,
    ChannelPerformance,
    ChannelSettings,
    DeliveryResult,
    DoNotDisturb,
    IntelligenceScores,
    InvalidNotificationTransition,
    NotificationAction,
    NotificationAnalytics,
    NotificationCondition,
    NotificationDecision,
    NotificationDigest,
    NotificationOutcome,
    NotificationPreferences,
    NotificationRule,
    NotificationTrigger,
    PriorityChannelConfig,
    ScheduledDeliveryRun,
    SmartNotification,
    default_priority_configs,
)

__all__ = [
    "CHANNELS",
    "NOTIFICATION_TRANSITIONS",
    "BatchDelivery",
    "ChannelPerformance",
    "ChannelSettings",
    "DeliveryResult",
    "DoNotDisturb",
    "IntelligenceScores",
    "InvalidNotificationTransition",
    "NotificationAction",
    "NotificationAnalytics",
    "NotificationCondition",
    "NotificationDecision",
    "NotificationDigest",
    "NotificationOutcome",
    "NotificationPreferences",
    "NotificationRule",
    "NotificationTrigger",
    "PriorityChannelConfig",
    "ScheduledDeliveryRun",
    "SmartNotification",
    "default_priority_configs",
]
