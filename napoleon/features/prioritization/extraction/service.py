"""
Action, meeting, decision and communication extraction.

One LLM call returns all four lists. Each entry is validated on its own,
so a single malformed item is dropped instead of discarding the rest.
When the LLM cannot be used, simple phrase rules produce at most one
action item per rule.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ValidationError

from napoleon.config import settings
from napoleon.features.prioritization.domain.models import (
    ActionItem,
    CommunicationNeeded,
    DecisionRequired,
    ExtractionResult,
    MeetingRequest,
    Message,
    PriorityAnalysis,
)
from napoleon.infrastructure.observability.logging import get_logger
from napoleon.services.openai_service import OpenAIService
from napoleon.services.prompt_templates import PromptTemplateLoader

logger = get_logger(__name__)

EXTRACTION_TEMPLATE = "action-extraction"

# (trigger phrases, item fields)
FALLBACK_ACTION_RULES: tuple[tuple[tuple[str, ...], dict[str, Any]], ...] = (
    (
        ("please review", "please check"),
        {
            "title": "Review Request",
            "description": "Review the content mentioned in this message",
            "priority": "medium",
            "delegation_possible": True,
            "follow_up_required": True,
        },
    ),
    (
        ("meeting", "schedule"),
        {
            "title": "Schedule Meeting",
            "description": "Schedule or confirm meeting mentioned in message",
            "priority": "medium",
            "calendar_blocking_needed": True,
        },
    ),
    (
        ("approve", "sign off"),
        {
            "title": "Approval Required",
            "description": "Provide approval for request in message",
            "priority": "high",
            "business_impact": "high",
        },
    ),
)


class ActionExtractor:
    def __init__(self, llm: OpenAIService, templates: PromptTemplateLoader):
        self.llm = llm
        self.templates = templates

    async def extract(
        self,
        message: Message,
        priority: PriorityAnalysis,
        variables: dict[str, Any] | None = None,
    ) -> ExtractionResult:
        """Extract structured work from a message. Never raises."""
        if not self.llm.available:
            return self.fallback_extract(message)

        prompt_vars = dict(variables or {})
        prompt_vars.update(
            {
                "priority_score": priority.final_score,
                "priority_tier": priority.tier,
            }
        )

        try:
            prompt = self.templates.render(EXTRACTION_TEMPLATE, prompt_vars)
            response = await self.llm.complete_json(
                prompt,
                temperature=settings.EXTRACTION_TEMPERATURE,
                max_tokens=settings.EXTRACTION_MAX_TOKENS,
                timeout=settings.OPENAI_EXTRACTION_TIMEOUT_SECONDS,
            )
            result = self.parse(response.data)
            result.tokens_used = response.tokens_used
            return result
        except Exception as e:
            logger.warning(
                "Action extraction failed, using keyword fallback",
                message_id=message.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self.fallback_extract(message)

    def parse(self, data: dict[str, Any]) -> ExtractionResult:
        return ExtractionResult(
            action_items=_validate_items(data.get("action_items"), ActionItem),
            meeting_requests=_validate_items(data.get("meeting_requests"), MeetingRequest),
            decisions_required=_validate_items(data.get("decisions_required"), DecisionRequired),
            communications_needed=_validate_items(
                data.get("communications_needed"), CommunicationNeeded
            ),
            source="llm",
        )

    def fallback_extract(self, message: Message) -> ExtractionResult:
        content = message.content.lower()
        stakeholder = message.sender_display
        items: list[ActionItem] = []

        for phrases, fields in FALLBACK_ACTION_RULES:
            if any(phrase in content for phrase in phrases):
                items.append(ActionItem(**fields, stakeholders=[stakeholder]))

        return ExtractionResult(action_items=items, source="fallback")


def _validate_items(raw: Any, model: type[BaseModel]) -> list:
    if not isinstance(raw, list):
        return []

    items = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        try:
            items.append(model.model_validate(entry))
        except ValidationError as e:
            logger.debug(
                "Dropping invalid extracted item",
                model=model.__name__,
                errors=e.error_count(),
            )
    return items
