"""
Persistence layer for smart notifications.
"""

from datetime import datetime

from psycopg.types.json import Jsonb

from napoleon.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one
from napoleon.features.notifications.domain import (
    NotificationPreferences,
    NotificationRule,
    SmartNotification,
)
from napoleon.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class NotificationRepositoryError(DatabaseError):
    """More specific exception for repository failures."""


class NotificationRepository:
    NOTIFICATION_SELECT_COLUMNS = """
        id, user_id, message_id, type, title, content, priority, channels, status,
        intelligence_data, scheduled_for, delivered_at, read_at, metadata, created_at
    """

    @classmethod
    async def get_preferences(cls, user_id: str) -> NotificationPreferences | None:
        query = """
            SELECT user_id, channels, batch_delivery, do_not_disturb, priorities
            FROM notification_preferences
            WHERE user_id = %s
        """
        row = await fetch_one(query, (user_id,))
        return NotificationPreferences.model_validate(row) if row else None

    @classmethod
    async def upsert_preferences(cls, preferences: NotificationPreferences) -> None:
        data = preferences.model_dump(mode="json")
        query = """
            INSERT INTO notification_preferences (
                user_id, channels, batch_delivery, do_not_disturb, priorities
            )
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (user_id) DO UPDATE SET
                channels = EXCLUDED.channels,
                batch_delivery = EXCLUDED.batch_delivery,
                do_not_disturb = EXCLUDED.do_not_disturb,
                priorities = EXCLUDED.priorities,
                updated_at = NOW()
        """
        await execute_query(
            query,
            (
                preferences.user_id,
                Jsonb(data["channels"]),
                Jsonb(data["batch_delivery"]),
                Jsonb(data["do_not_disturb"]),
                Jsonb(data["priorities"]),
            ),
        )

    @classmethod
    async def list_active_rules(cls, user_id: str) -> list[NotificationRule]:
        query = """
            SELECT id, user_id, name, description, is_active, priority, triggers, conditions, actions
            FROM notification_rules
            WHERE user_id = %s AND is_active = TRUE
            ORDER BY priority DESC
        """
        rows = await fetch_all(query, (user_id,))

        rules: list[NotificationRule] = []
        for row in rows:
            try:
                rules.append(NotificationRule.model_validate(row))
            except ValueError as e:
                logger.warning(
                    "Skipping invalid notification rule", rule_id=str(row.get("id")), error=str(e)
                )
        return rules

    @classmethod
    async def insert_notification(cls, notification: SmartNotification) -> SmartNotification:
        query = f"""
            INSERT INTO smart_notifications (
                user_id, message_id, type, title, content, priority, channels, status,
                intelligence_data, scheduled_for, metadata
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {cls.NOTIFICATION_SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                notification.user_id,
                notification.message_id,
                notification.type,
                notification.title,
                notification.content,
                notification.priority,
                Jsonb(notification.channels),
                notification.status,
                Jsonb(notification.intelligence_data),
                notification.scheduled_for,
                Jsonb(notification.metadata),
            ),
        )
        if not row:
            raise NotificationRepositoryError(
                "Failed to create notification", operation="insert_notification"
            )
        return SmartNotification.model_validate(row)

    @classmethod
    async def get_notification(cls, notification_id: str, user_id: str) -> SmartNotification | None:
        query = f"""
            SELECT {cls.NOTIFICATION_SELECT_COLUMNS}
            FROM smart_notifications
            WHERE id = %s AND user_id = %s
        """
        row = await fetch_one(query, (notification_id, user_id))
        return SmartNotification.model_validate(row) if row else None

    @classmethod
    async def update_notification_status(cls, notification: SmartNotification) -> None:
        query = """
            UPDATE smart_notifications
            SET status = %s,
                scheduled_for = %s,
                delivered_at = %s,
                read_at = %s
            WHERE id = %s AND user_id = %s
        """
        await execute_query(
            query,
            (
                notification.status,
                notification.scheduled_for,
                notification.delivered_at,
                notification.read_at,
                notification.id,
                notification.user_id,
            ),
        )

    @classmethod
    async def list_due_scheduled(cls, now: datetime, limit: int = 100) -> list[SmartNotification]:
        """Scheduled notifications across all users whose delivery time has passed."""
        query = f"""
            SELECT {cls.NOTIFICATION_SELECT_COLUMNS}
            FROM smart_notifications
            WHERE status = 'scheduled' AND scheduled_for <= %s
            ORDER BY scheduled_for
            LIMIT %s
        """
        rows = await fetch_all(query, (now, limit))
        return [SmartNotification.model_validate(row) for row in rows]

    @classmethod
    async def list_notifications_since(
        cls, user_id: str, since: datetime
    ) -> list[SmartNotification]:
        query = f"""
            SELECT {cls.NOTIFICATION_SELECT_COLUMNS}
            FROM smart_notifications
            WHERE user_id = %s AND created_at >= %s
        """
        rows = await fetch_all(query, (user_id, since))
        return [SmartNotification.model_validate(row) for row in rows]
