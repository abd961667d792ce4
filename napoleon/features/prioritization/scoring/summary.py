"""
Executive summary builders for the LLM and keyword paths.
"""

from typing import Any

from napoleon.features.prioritization.domain.models import (
    ACTION_CATEGORIES,
    IMPACT_LEVELS,
    ExecutiveSummary,
    Message,
    VipResult,
    coerce_str_list,
    normalize_choice,
)

_KEY_POINT_KEYWORDS = (
    ("meeting", "Meeting mentioned"),
    ("deadline", "Deadline referenced"),
    ("approve", "Approval required"),
)


def fallback_summary_text(content: str) -> str:
    """Short content verbatim, else the first sentence, else 100 chars + '...'."""
    if len(content) <= 100:
        return content
    first_sentence = content.split(".")[0]
    if len(first_sentence) <= 150:
        return first_sentence
    return content[:100] + "..."


def fallback_key_points(content: str) -> list[str]:
    lowered = content.lower()
    points = [label for keyword, label in _KEY_POINT_KEYWORDS if keyword in lowered]
    return points or ["Message requires review"]


def build_fallback_summary(message: Message, final_score: int, vip: VipResult) -> ExecutiveSummary:
    text = message.searchable_text()

    if final_score >= 80:
        impact = "critical"
    elif final_score >= 60:
        impact = "high"
    else:
        impact = "medium"

    if vip.is_board_member:
        stakeholder_level = "board"
    elif vip.is_investor:
        stakeholder_level = "investor"
    else:
        stakeholder_level = "internal"

    return ExecutiveSummary(
        summary=fallback_summary_text(message.content),
        key_points=fallback_key_points(message.content),
        business_impact=impact,
        decision_required="approve" in text or "decision" in text,
        estimated_response_time="immediate" if final_score >= 80 else "same_day",
        stakeholder_level=stakeholder_level,
        strategic_category="operational",
    )


def summary_from_llm(data: dict[str, Any]) -> ExecutiveSummary:
    """
    Validate an executive-summary payload.

    Raises:
        ValueError: If the payload carries no summary text
    """
    summary = data.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        raise ValueError("Executive summary payload has no summary")

    return ExecutiveSummary(
        summary=summary.strip(),
        key_points=coerce_str_list(data.get("keyPoints")),
        business_impact=normalize_choice(data.get("businessImpact"), IMPACT_LEVELS, "medium"),
        decision_required=bool(data.get("decisionRequired", False)),
        estimated_response_time=str(data.get("estimatedResponseTime") or "same_day"),
        stakeholder_level=str(data.get("stakeholderLevel") or "internal"),
        strategic_category=normalize_choice(
            data.get("strategicCategory"), ACTION_CATEGORIES, "operational"
        ),
    )
