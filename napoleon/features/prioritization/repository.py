"""
Persistence layer for the prioritization feature.

Reads messages, VIP contacts and VIP rules; writes analysis results,
extracted action items and processing logs.
"""

from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from napoleon.db.helpers import (
    DatabaseError,
    execute_many,
    execute_query,
    fetch_all,
    fetch_one,
    fetch_val,
    with_db_retry,
)
from napoleon.features.prioritization.domain import (
    ActionItem,
    Message,
    VipContact,
    VipRule,
)
from napoleon.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class PrioritizationRepositoryError(DatabaseError):
    """More specific exception for repository failures."""


class PrioritizationRepository:
    """SQL helpers backing message analysis and batch processing."""

    MESSAGE_SELECT_COLUMNS = """
        id, user_id, platform, sender_email, sender_name, subject, content,
        message_date, priority_score, ai_summary, is_vip, status
    """

    VIP_CONTACT_SELECT_COLUMNS = """
        id, user_id, email, name, priority_level, relationship_type, notes
    """

    @classmethod
    def _row_to_message(cls, row: dict | None) -> Message | None:
        if not row:
            return None
        return Message.model_validate(row)

    @classmethod
    @with_db_retry()
    async def get_message(cls, message_id: str, user_id: str) -> Message | None:
        query = f"""
            SELECT {cls.MESSAGE_SELECT_COLUMNS}
            FROM messages
            WHERE id = %s AND user_id = %s
        """
        row = await fetch_one(query, (message_id, user_id))
        return cls._row_to_message(row)

    @classmethod
    async def list_recent_messages(
        cls, user_id: str, since: datetime, limit: int = 20
    ) -> list[Message]:
        """Messages received since `since`, highest priority first."""
        query = f"""
            SELECT {cls.MESSAGE_SELECT_COLUMNS}
            FROM messages
            WHERE user_id = %s AND message_date >= %s
            ORDER BY priority_score DESC
            LIMIT %s
        """
        rows = await fetch_all(query, (user_id, since, limit))
        return [Message.model_validate(row) for row in rows]

    # =================================================================
    # VIP CONTACTS AND RULES
    # =================================================================

    @classmethod
    @with_db_retry()
    async def list_vip_contacts(cls, user_id: str) -> list[VipContact]:
        query = f"""
            SELECT {cls.VIP_CONTACT_SELECT_COLUMNS}
            FROM vip_contacts
            WHERE user_id = %s
            ORDER BY priority_level DESC, email
        """
        rows = await fetch_all(query, (user_id,))
        return [VipContact.model_validate(row) for row in rows]

    @classmethod
    async def get_vip_contact(cls, contact_id: str, user_id: str) -> VipContact | None:
        query = f"""
            SELECT {cls.VIP_CONTACT_SELECT_COLUMNS}
            FROM vip_contacts
            WHERE id = %s AND user_id = %s
        """
        row = await fetch_one(query, (contact_id, user_id))
        return VipContact.model_validate(row) if row else None

    @classmethod
    async def update_vip_contact(cls, contact: VipContact) -> VipContact:
        query = f"""
            UPDATE vip_contacts
            SET name = %s,
                priority_level = %s,
                relationship_type = %s,
                notes = %s,
                updated_at = NOW()
            WHERE id = %s AND user_id = %s
            RETURNING {cls.VIP_CONTACT_SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                contact.name,
                contact.priority_level,
                contact.relationship_type,
                contact.notes,
                contact.id,
                contact.user_id,
            ),
        )
        if not row:
            raise PrioritizationRepositoryError(
                "Failed to update VIP contact", operation="update_vip_contact"
            )
        return VipContact.model_validate(row)

    @classmethod
    async def upsert_vip_contact(cls, contact: VipContact) -> VipContact:
        query = f"""
            INSERT INTO vip_contacts (
                user_id, email, name, priority_level, relationship_type, notes
            )
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id, email) DO UPDATE SET
                name = COALESCE(EXCLUDED.name, vip_contacts.name),
                priority_level = EXCLUDED.priority_level,
                relationship_type = EXCLUDED.relationship_type,
                notes = EXCLUDED.notes,
                updated_at = NOW()
            RETURNING {cls.VIP_CONTACT_SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                contact.user_id,
                contact.email.lower(),
                contact.name,
                contact.priority_level,
                contact.relationship_type,
                contact.notes,
            ),
        )
        if not row:
            raise PrioritizationRepositoryError(
                "Failed to upsert VIP contact", operation="upsert_vip_contact"
            )

        logger.info(
            "VIP contact upserted",
            user_id=contact.user_id,
            priority_level=contact.priority_level,
        )
        return VipContact.model_validate(row)

    @classmethod
    async def list_vip_rules(cls, user_id: str) -> list[VipRule]:
        """Active VIP rules; rows that fail validation are skipped."""
        query = """
            SELECT id, user_id, name, description, conditions, actions, is_active, priority
            FROM vip_rules
            WHERE user_id = %s AND is_active = TRUE
            ORDER BY priority DESC
        """
        rows = await fetch_all(query, (user_id,))

        rules: list[VipRule] = []
        for row in rows:
            try:
                rules.append(VipRule.model_validate(row))
            except ValueError as e:
                logger.warning("Skipping invalid VIP rule", rule_id=str(row.get("id")), error=str(e))
        return rules

    @classmethod
    async def insert_vip_rule(cls, rule: VipRule) -> VipRule:
        data = rule.model_dump(mode="json")
        query = """
            INSERT INTO vip_rules (
                user_id, name, description, conditions, actions, is_active, priority
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING id, user_id, name, description, conditions, actions, is_active, priority
        """
        row = await fetch_one(
            query,
            (
                rule.user_id,
                rule.name,
                rule.description,
                Jsonb(data["conditions"]),
                Jsonb(data["actions"]),
                rule.is_active,
                rule.priority,
            ),
        )
        if not row:
            raise PrioritizationRepositoryError("Failed to create VIP rule", operation="insert_vip_rule")
        return VipRule.model_validate(row)

    # =================================================================
    # ANALYSIS RESULTS
    # =================================================================

    @classmethod
    async def update_message_analysis(
        cls,
        message_id: str,
        user_id: str,
        *,
        priority_score: int,
        ai_summary: str,
        is_vip: bool,
        sentiment: str,
    ) -> None:
        query = """
            UPDATE messages
            SET priority_score = %s,
                ai_summary = %s,
                is_vip = %s,
                sentiment = %s,
                ai_analysis_complete = TRUE,
                updated_at = NOW()
            WHERE id = %s AND user_id = %s
        """
        await execute_query(
            query, (priority_score, ai_summary, is_vip, sentiment, message_id, user_id)
        )

    @classmethod
    async def insert_action_items(
        cls, message_id: str, user_id: str, items: list[ActionItem]
    ) -> int:
        query = """
            INSERT INTO action_items (
                message_id, user_id, title, description, priority, category,
                estimated_duration, due_date, stakeholders, business_impact,
                confidentiality_level, status
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        params = [
            (
                message_id,
                user_id,
                item.title,
                item.description,
                item.priority,
                item.category,
                item.estimated_duration,
                item.due_date,
                Jsonb(item.stakeholders),
                item.business_impact,
                item.confidentiality_level,
                item.status,
            )
            for item in items
        ]
        return await execute_many(query, params)

    @classmethod
    async def count_pending_action_items(cls, user_id: str) -> int:
        query = """
            SELECT COUNT(*)
            FROM action_items
            WHERE user_id = %s AND status = 'pending'
        """
        return int(await fetch_val(query, (user_id,)) or 0)

    # =================================================================
    # PROCESSING LOGS
    # =================================================================

    @classmethod
    async def insert_processing_log(cls, log: dict[str, Any]) -> None:
        query = """
            INSERT INTO ai_processing_logs (
                user_id, message_id, operation_type, processing_time_ms, tokens_used,
                cost_usd, success, error_message, vip_boost_applied, model_version,
                prompt_version, metadata
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        await execute_query(
            query,
            (
                log["user_id"],
                log.get("message_id"),
                log.get("operation_type", "message_analysis"),
                log.get("processing_time_ms", 0),
                log.get("tokens_used", 0),
                log.get("cost_usd", 0),
                log.get("success", True),
                log.get("error_message"),
                log.get("vip_boost_applied", 0),
                log.get("model_version"),
                log.get("prompt_version"),
                Jsonb(log.get("metadata") or {}),
            ),
        )

    @classmethod
    async def list_processing_logs(
        cls, user_id: str, start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        query = """
            SELECT operation_type, processing_time_ms, tokens_used, cost_usd, success,
                   vip_boost_applied, model_version, created_at
            FROM ai_processing_logs
            WHERE user_id = %s AND created_at >= %s AND created_at <= %s
              AND operation_type = 'message_analysis'
        """
        return await fetch_all(query, (user_id, start, end))
