"""
VIP sender classification.

Looks the sender up in the user's VIP contacts and converts the contact's
priority level into a score boost. Senders missing from the contact list
can still be classified by the user's active VIP rules.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from napoleon.features.prioritization.domain.models import (
    Message,
    VipCondition,
    VipContact,
    VipResult,
    VipRule,
)
from napoleon.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# priority_level -> boost; any level below 6 gets DEFAULT_VIP_BOOST
VIP_BOOST_TABLE: dict[int, int] = {10: 25, 9: 20, 8: 18, 7: 15, 6: 12}
DEFAULT_VIP_BOOST = 10


def boost_for_level(priority_level: int) -> int:
    return VIP_BOOST_TABLE.get(priority_level, DEFAULT_VIP_BOOST)


class VipClassifier:
    def classify(self, sender_email: str, vip_contacts: Iterable[VipContact]) -> VipResult:
        """Return the VIP boost for a sender; email match is case-insensitive."""
        sender = (sender_email or "").strip().lower()
        if not sender:
            return VipResult.standard()

        contact = next(
            (c for c in vip_contacts if c.email and c.email.strip().lower() == sender),
            None,
        )
        if contact is None:
            return VipResult.standard()

        notes = (contact.notes or "").lower()
        return VipResult(
            is_vip=True,
            boost=boost_for_level(contact.priority_level),
            relationship=contact.relationship_type or "vip",
            is_board_member="board" in notes,
            is_investor="investor" in notes,
        )

    # =================================================================
    # RULE-BASED CLASSIFICATION
    # =================================================================

    def match_rule(self, message: Message, rules: Iterable[VipRule]) -> VipRule | None:
        """First active rule (highest priority first) whose conditions all hold."""
        ordered = sorted(
            (r for r in rules if r.is_active and r.conditions),
            key=lambda r: r.priority,
            reverse=True,
        )
        for rule in ordered:
            if all(self._condition_matches(message, c) for c in rule.conditions):
                logger.debug("VIP rule matched", rule_id=rule.id, sender=message.sender_email)
                return rule
        return None

    def contact_from_rule(self, message: Message, rule: VipRule) -> VipContact:
        """Build the VIP contact a matching rule implies for this sender."""
        priority_level: int | str = 5
        relationship = "vip"
        notes: list[str] = [f"Auto-classified by rule: {rule.name}"]
        for action in rule.actions:
            if action.type == "set_priority_level":
                priority_level = action.value
            elif action.type == "set_relationship":
                relationship = str(action.value)
            elif action.type == "add_note":
                notes.append(str(action.value))

        # VipContact validation clamps the level into 1..10
        return VipContact(
            user_id=message.user_id,
            email=message.sender_email.strip().lower(),
            name=message.sender_name,
            priority_level=priority_level,
            relationship_type=relationship,
            notes="; ".join(notes),
        )

    def _condition_matches(self, message: Message, condition: VipCondition) -> bool:
        field_value = self._field_value(message, condition.type)
        if field_value is None:
            return False

        expected = condition.value
        if not condition.case_sensitive:
            field_value = field_value.lower()
            expected = expected.lower()

        op = condition.operator
        if op == "equals":
            return field_value == expected
        if op == "contains":
            return expected in field_value
        if op == "starts_with":
            return field_value.startswith(expected)
        if op == "ends_with":
            return field_value.endswith(expected)
        if op == "regex":
            flags = 0 if condition.case_sensitive else re.IGNORECASE
            try:
                return re.search(condition.value, field_value, flags) is not None
            except re.error as e:
                logger.warning("Invalid VIP rule regex", pattern=condition.value, error=str(e))
                return False
        return False

    @staticmethod
    def _field_value(message: Message, condition_type: str) -> str | None:
        if condition_type == "email_domain":
            _, _, domain = message.sender_email.rpartition("@")
            return domain or None
        if condition_type == "email_address":
            return message.sender_email
        if condition_type == "sender_name":
            return message.sender_name
        if condition_type == "keyword":
            return f"{message.subject or ''} {message.content}"
        return None
