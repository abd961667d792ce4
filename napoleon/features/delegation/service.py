"""
Delegation service - recommends delegates and tracks delegated tasks.

A message is worth delegating when the LLM is confident (> 0.7), when one
of the user's delegation rules matches, or when its priority tier is
medium or low. The top ranked team members are suggested either way.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from napoleon.config import settings
from napoleon.features.delegation.domain import (
    ACTIVE_STATUSES,
    DelegationAnalytics,
    DelegationOpportunity,
    DelegationRule,
    DelegationTask,
    TeamMember,
)
from napoleon.features.delegation.matcher import DelegationMatcher, matching_rule
from napoleon.features.delegation.repository import DelegationRepository
from napoleon.features.prioritization.domain import Message, coerce_str_list, normalize_choice
from napoleon.infrastructure.observability.logging import get_logger
from napoleon.services.openai_service import OpenAIService
from napoleon.services.prompt_templates import PromptTemplateLoader

logger = get_logger(__name__)

DELEGATION_TEMPLATE = "delegation-analysis"
CONFIDENCE_THRESHOLD = 0.7
DEFAULT_ESTIMATED_MINUTES = 60


class DelegationError(Exception):
    """Raised when a delegation request refers to something that does not exist."""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message)
        self.recoverable = recoverable


@dataclass(slots=True)
class DelegationAssessment:
    confidence: float
    reasoning: list[str] = field(default_factory=list)
    estimated_minutes: int = DEFAULT_ESTIMATED_MINUTES
    business_impact: str = "medium"
    suggested_role: str | None = None

    @classmethod
    def failed(cls) -> "DelegationAssessment":
        return cls(confidence=0.0, reasoning=["AI analysis failed"])


def assessment_from_payload(data: dict[str, Any]) -> DelegationAssessment:
    try:
        confidence = float(data.get("confidence") or 0)
    except (TypeError, ValueError):
        confidence = 0.0
    if not math.isfinite(confidence):
        confidence = 0.0

    try:
        minutes = int(float(data.get("estimatedTime") or DEFAULT_ESTIMATED_MINUTES))
    except (TypeError, ValueError, OverflowError):
        minutes = DEFAULT_ESTIMATED_MINUTES

    role = data.get("suggestedRole")
    return DelegationAssessment(
        confidence=max(0.0, min(1.0, confidence)),
        reasoning=coerce_str_list(data.get("reasoning")),
        estimated_minutes=max(0, minutes),
        business_impact=normalize_choice(data.get("businessImpact"), ("high", "medium", "low"), "medium"),
        suggested_role=role if isinstance(role, str) and role else None,
    )


class DelegationService:
    def __init__(
        self,
        repository: DelegationRepository,
        llm: OpenAIService,
        templates: PromptTemplateLoader,
        *,
        matcher: DelegationMatcher | None = None,
        top_candidates: int | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        self.repository = repository
        self.llm = llm
        self.templates = templates
        self.matcher = matcher or DelegationMatcher()
        self.top_candidates = top_candidates or settings.DELEGATION_TOP_CANDIDATES
        self._now = now or (lambda: datetime.now(UTC))

    # =================================================================
    # RECOMMENDATION
    # =================================================================

    async def analyze_opportunity(self, message: Message, user_id: str) -> DelegationOpportunity:
        assessment = await self._assess_with_llm(message)
        rule = await self._match_rule(message, user_id)
        members = await self._load_team(user_id)
        ranked = self.matcher.rank(message, members)[: self.top_candidates]

        reasoning = list(assessment.reasoning)
        if rule is not None:
            reasoning.append(f"Matched delegation rule: {rule.name}")

        should_delegate = (
            assessment.confidence > CONFIDENCE_THRESHOLD
            or rule is not None
            or message.priority_tier in ("medium", "low")
        )

        logger.info(
            "Delegation opportunity analyzed",
            user_id=user_id,
            message_id=message.id,
            should_delegate=should_delegate,
            confidence=assessment.confidence,
            candidates=len(ranked),
        )
        return DelegationOpportunity(
            should_delegate=should_delegate,
            confidence=max(assessment.confidence, 1.0 if rule else 0.0),
            suggested_delegates=ranked,
            reasoning=reasoning,
            estimated_minutes=assessment.estimated_minutes,
            business_impact=assessment.business_impact,
            suggested_role=assessment.suggested_role,
            matched_rule_id=rule.id if rule else None,
        )

    async def _assess_with_llm(self, message: Message) -> DelegationAssessment:
        if not self.llm.available:
            return DelegationAssessment.failed()

        variables = {
            "subject": message.subject or "No Subject",
            "sender_name": message.sender_display,
            "sender_email": message.sender_email,
            "platform": message.platform,
            "priority_tier": message.priority_tier,
            "content_preview": message.content[:500],
        }
        try:
            prompt = self.templates.render(DELEGATION_TEMPLATE, variables)
            response = await self.llm.complete_json(
                prompt,
                temperature=settings.ANALYSIS_TEMPERATURE,
                max_tokens=settings.ANALYSIS_MAX_TOKENS,
                timeout=settings.OPENAI_TIMEOUT_SECONDS,
            )
            return assessment_from_payload(response.data)
        except Exception as e:
            logger.warning(
                "Delegation analysis failed, using fallback",
                message_id=message.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return DelegationAssessment.failed()

    async def _match_rule(self, message: Message, user_id: str) -> DelegationRule | None:
        try:
            rules = await self.repository.list_active_rules(user_id)
        except Exception as e:
            logger.warning(
                "Failed to load delegation rules",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        return matching_rule(rules, message)

    async def _load_team(self, user_id: str) -> list[TeamMember]:
        try:
            return list(await self.repository.list_team_members(user_id))
        except Exception as e:
            logger.warning(
                "Failed to load team members",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return []

    # =================================================================
    # TEAM AND RULES
    # =================================================================

    async def list_team(self, user_id: str) -> list[TeamMember]:
        return list(await self.repository.list_team_members(user_id))

    async def add_team_member(self, user_id: str, data: dict[str, Any]) -> TeamMember:
        member = TeamMember.model_validate({**data, "id": None, "user_id": user_id})
        member = await self.repository.insert_team_member(member)
        logger.info("Team member added", user_id=user_id, member_id=member.id, role=member.role)
        return member

    async def create_rule(self, user_id: str, data: dict[str, Any]) -> DelegationRule:
        rule = DelegationRule.model_validate({**data, "id": None, "user_id": user_id})
        if rule.delegate_to is not None:
            if await self.repository.get_team_member(rule.delegate_to, user_id) is None:
                raise DelegationError(f"Team member {rule.delegate_to} not found")

        rule = await self.repository.insert_rule(rule)
        logger.info(
            "Delegation rule created",
            user_id=user_id,
            rule_id=rule.id,
            conditions=len(rule.conditions),
        )
        return rule

    # =================================================================
    # TASK LIFECYCLE
    # =================================================================

    async def list_tasks(
        self, user_id: str, statuses: list[str] | None = None
    ) -> list[DelegationTask]:
        return list(await self.repository.list_tasks(user_id, statuses or None))

    async def create_task(
        self,
        message_id: str,
        user_id: str,
        delegated_to: str,
        *,
        instructions: str,
        due_date: datetime | None = None,
        priority: str | None = None,
        auto_accept: bool = False,
    ) -> DelegationTask:
        message = await self.repository.get_message(message_id, user_id)
        if message is None:
            raise DelegationError(f"Message {message_id} not found")

        member = await self.repository.get_team_member(delegated_to, user_id)
        if member is None:
            raise DelegationError(f"Team member {delegated_to} not found")

        task = DelegationTask(
            user_id=user_id,
            message_id=message_id,
            delegated_to=delegated_to,
            delegated_by=user_id,
            status="accepted" if auto_accept else "pending",
            priority=priority or message.priority_tier,
            due_date=due_date,
            instructions=instructions,
            context={
                "subject": message.subject,
                "sender_email": message.sender_email,
                "platform": message.platform,
                "is_vip": message.is_vip,
            },
        )
        task = await self.repository.insert_task(task)
        await self._adjust_workload(delegated_to, user_id, 1)

        logger.info(
            "Delegation task created",
            task_id=task.id,
            user_id=user_id,
            delegated_to=delegated_to,
            status=task.status,
        )
        return task

    async def update_task_status(
        self,
        task_id: str,
        user_id: str,
        status: str,
        *,
        response: str | None = None,
        feedback: str | None = None,
    ) -> DelegationTask:
        task = await self.repository.get_task(task_id, user_id)
        if task is None:
            raise DelegationError(f"Delegation task {task_id} not found")

        task.transition(status)
        if response is not None:
            task.response = response
        if feedback is not None:
            task.feedback = feedback

        if status == "completed":
            task.completed_at = self._now()
        elif status == "escalated":
            task.escalated_at = self._now()
            logger.warning(
                "Delegation task escalated",
                task_id=task_id,
                user_id=user_id,
                delegated_to=task.delegated_to,
            )

        await self.repository.update_task(task)

        # The delegate's slot frees up once the task leaves their queue
        if status in ("completed", "escalated", "rejected"):
            await self._adjust_workload(task.delegated_to, user_id, -1)

        return task

    async def _adjust_workload(self, member_id: str, user_id: str, change: int) -> None:
        try:
            await self.repository.adjust_workload(member_id, user_id, change)
        except Exception as e:
            logger.error(
                "Failed to update team member workload",
                member_id=member_id,
                change=change,
                error=str(e),
                error_type=type(e).__name__,
            )

    # =================================================================
    # ANALYTICS
    # =================================================================

    async def get_analytics(self, user_id: str) -> DelegationAnalytics:
        try:
            tasks = await self.repository.list_tasks(user_id)
        except Exception as e:
            logger.error(
                "Failed to load delegation tasks",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            tasks = []
        members = await self._load_team(user_id)

        completed = [t for t in tasks if t.status == "completed"]
        timed = [t for t in completed if t.completed_at and t.created_at]
        avg_hours = (
            sum((t.completed_at - t.created_at).total_seconds() for t in timed) / len(timed) / 3600
            if timed
            else 0.0
        )

        capacity = sum(m.workload.capacity for m in members)
        utilization = (
            sum(m.workload.current for m in members) / capacity * 100 if capacity else 0.0
        )

        counts: dict[str, int] = {}
        for task in tasks:
            counts[task.delegated_to] = counts.get(task.delegated_to, 0) + 1

        return DelegationAnalytics(
            total_tasks=len(tasks),
            active_tasks=sum(1 for t in tasks if t.status in ACTIVE_STATUSES),
            completed_tasks=len(completed),
            avg_completion_hours=round(avg_hours, 2),
            team_utilization=round(utilization, 2),
            member_task_counts=counts,
        )
