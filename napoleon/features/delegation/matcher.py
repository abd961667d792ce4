"""
Delegate ranking.

score = availability (available 50, busy 20, otherwise 0)
      + (100 - load) * 0.3, load = open tasks as a percent of capacity
      + completion_rate * 0.2
      + (100 - avg_response_time clamped to 0..100) * 0.1
      + 20 when the member has the skill for the message's platform

Every member is ranked; nobody is filtered out. Ties keep input order
because sorted() is stable.
"""

from collections.abc import Iterable
from typing import Any

from napoleon.features.delegation.domain import (
    DelegationCondition,
    DelegationRule,
    ScoredCandidate,
    TeamMember,
)
from napoleon.features.prioritization.domain import Message, clamp_score

AVAILABILITY_POINTS = {"available": 50, "busy": 20}
PLATFORM_SKILLS = {"gmail": "email", "slack": "slack", "teams": "teams"}
SKILL_MATCH_POINTS = 20
LOAD_WEIGHT = 0.3
COMPLETION_WEIGHT = 0.2
RESPONSE_WEIGHT = 0.1


def load_percent(member: TeamMember) -> float:
    """Open tasks against capacity; the availability snapshot only when capacity is unknown."""
    workload = member.workload
    if workload.capacity <= 0:
        return member.availability.current_load
    return clamp_score(workload.current / workload.capacity * 100)


class DelegationMatcher:
    def score_member(self, message: Message, member: TeamMember) -> float:
        history = member.delegation_history
        score = float(AVAILABILITY_POINTS.get(member.availability.status, 0))
        score += (100 - load_percent(member)) * LOAD_WEIGHT
        score += history.completion_rate * COMPLETION_WEIGHT
        score += (100 - clamp_score(history.avg_response_time)) * RESPONSE_WEIGHT

        skill = PLATFORM_SKILLS.get(message.platform)
        if skill and skill in {s.lower() for s in member.skills}:
            score += SKILL_MATCH_POINTS

        return round(score, 4)

    def rank(self, message: Message, team_members: Iterable[TeamMember]) -> list[ScoredCandidate]:
        scored = [ScoredCandidate(member=m, score=self.score_member(message, m)) for m in team_members]
        return sorted(scored, key=lambda c: c.score, reverse=True)


def matching_rule(rules: Iterable[DelegationRule], message: Message) -> DelegationRule | None:
    """First active rule, by descending rule priority, whose conditions all hold."""
    ordered = sorted((r for r in rules if r.is_active), key=lambda r: r.priority, reverse=True)
    for rule in ordered:
        if all(_condition_holds(c, message) for c in rule.conditions):
            return rule
    return None


def _message_value(message: Message, condition_type: str) -> Any:
    if condition_type == "sender":
        return message.sender_email
    if condition_type == "subject":
        return message.subject or ""
    if condition_type == "content":
        return message.content
    if condition_type == "priority":
        return message.priority_tier
    if condition_type == "platform":
        return message.platform
    if condition_type == "time":
        return message.message_date.hour if message.message_date else None
    return None


def _fold(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


def _condition_holds(condition: DelegationCondition, message: Message) -> bool:
    value = _message_value(message, condition.type)
    expected = condition.value
    op = condition.operator

    if value is None:
        return False
    if op == "equals":
        return _fold(value) == _fold(expected)
    if op == "not_equals":
        return _fold(value) != _fold(expected)
    if op == "contains":
        return isinstance(value, str) and isinstance(expected, str) and expected.lower() in value.lower()
    if op in ("in", "not_in"):
        if not isinstance(expected, list):
            return False
        found = _fold(value) in [_fold(v) for v in expected]
        return found if op == "in" else not found
    numeric = isinstance(value, (int, float)) and isinstance(expected, (int, float))
    if op == "greater_than":
        return numeric and value > expected
    if op == "less_than":
        return numeric and value < expected
    return False
