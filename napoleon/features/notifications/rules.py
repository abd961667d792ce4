"""
Notification rule evaluation.

A rule applies to a message when at least one trigger fires and every
condition holds. String comparisons are case-insensitive.
"""

from collections.abc import Iterable
from typing import Any

from napoleon.features.notifications.domain import (
    NotificationCondition,
    NotificationRule,
    NotificationTrigger,
)
from napoleon.features.prioritization.domain import Message


def matching_rules(
    rules: Iterable[NotificationRule], message: Message, *, is_vip: bool = False
) -> list[NotificationRule]:
    """Active rules that apply to the message, highest rule priority first."""
    active = sorted((r for r in rules if r.is_active), key=lambda r: r.priority, reverse=True)
    return [r for r in active if evaluate_rule(r, message, is_vip=is_vip)]


def evaluate_rule(rule: NotificationRule, message: Message, *, is_vip: bool = False) -> bool:
    if not any(_trigger_fires(t, message, is_vip) for t in rule.triggers):
        return False
    return all(
        evaluate_condition(c, condition_value(message, c.type)) for c in rule.conditions
    )


def _trigger_fires(trigger: NotificationTrigger, message: Message, is_vip: bool) -> bool:
    if trigger.type == "new_message":
        return True
    if trigger.type == "high_priority":
        return message.priority_tier in ("critical", "high")
    if trigger.type == "vip_sender":
        return is_vip or message.is_vip
    if trigger.type == "keyword_match":
        keywords = trigger.metadata.get("keywords") or []
        if isinstance(keywords, str):
            keywords = [keywords]
        text = message.searchable_text()
        return any(str(k).lower() in text for k in keywords if str(k).strip())
    return False


def condition_value(message: Message, condition_type: str) -> Any:
    if condition_type == "platform":
        return message.platform
    if condition_type == "sender":
        return message.sender_email
    if condition_type == "subject":
        return message.subject or ""
    if condition_type == "priority":
        return message.priority_tier
    if condition_type == "time":
        return message.message_date.hour if message.message_date else None
    return None


def _fold(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def evaluate_condition(condition: NotificationCondition, value: Any) -> bool:
    expected = condition.value
    op = condition.operator

    if value is None:
        return False
    if op == "equals":
        return _fold(value) == _fold(expected)
    if op == "contains":
        return (
            isinstance(value, str)
            and isinstance(expected, str)
            and expected.lower() in value.lower()
        )
    if op in ("in", "not_in"):
        if not isinstance(expected, list):
            return False
        found = _fold(value) in [_fold(v) for v in expected]
        return found if op == "in" else not found
    if op == "greater_than":
        return _is_number(value) and _is_number(expected) and value > expected
    if op == "less_than":
        return _is_number(value) and _is_number(expected) and value < expected
    return False
