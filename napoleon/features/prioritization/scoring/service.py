"""
Priority scoring - combines a base score with the sender's VIP boost.

The base score normally comes from the LLM's priority analysis. When the
LLM is unavailable the deterministic keyword scorer below supplies it.
"""

from __future__ import annotations

import math
from typing import Any

from napoleon.features.prioritization.domain.models import (
    Message,
    PriorityAnalysis,
    VipResult,
    clamp_score,
    coerce_str_list,
    normalize_choice,
    tier_for_score,
)
from napoleon.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

FALLBACK_BASE_SCORE = 30
ESCALATION_THRESHOLD = 90
STRATEGIC_WEIGHT_MAX = 10

# (keywords, points, urgency indicator) - each group fires at most once
KEYWORD_GROUPS: tuple[tuple[tuple[str, ...], int, str], ...] = (
    (("urgent", "asap", "immediately"), 40, "Urgency keywords detected"),
    (("board", "investor", "regulatory"), 35, "High-level stakeholder communication"),
    (("crisis", "breach", "lawsuit"), 45, "Crisis-related keywords"),
)


class PriorityScorer:
    def fallback_base_score(self, message: Message) -> tuple[int, list[str]]:
        """Keyword base score, clamped to 100, plus the indicators that fired."""
        text = message.searchable_text()
        score = FALLBACK_BASE_SCORE
        indicators: list[str] = []

        for keywords, points, indicator in KEYWORD_GROUPS:
            if any(keyword in text for keyword in keywords):
                score += points
                indicators.append(indicator)

        return int(clamp_score(score)), indicators

    def score(
        self,
        message: Message,
        vip: VipResult,
        base_score: float,
        *,
        reasoning: str = "Keyword-based analysis with VIP boosting",
        urgency_indicators: list[str] | None = None,
        strategic_weight: float = 0.0,
        competitive_sensitivity: str = "medium",
    ) -> PriorityAnalysis:
        base = int(clamp_score(base_score))
        final_score = min(100, base + vip.boost)

        return PriorityAnalysis(
            base_score=base,
            final_score=final_score,
            tier=tier_for_score(final_score),
            reasoning=reasoning,
            urgency_indicators=list(urgency_indicators or []),
            vip_boost=vip.boost,
            recommended_response_time="immediate" if final_score >= 80 else "same_day",
            escalation_required=final_score >= ESCALATION_THRESHOLD,
            strategic_weight=strategic_weight,
            competitive_sensitivity=competitive_sensitivity,
        )

    def score_fallback(self, message: Message, vip: VipResult) -> PriorityAnalysis:
        base, indicators = self.fallback_base_score(message)
        return self.score(message, vip, base, urgency_indicators=indicators)

    def score_from_llm(
        self, message: Message, vip: VipResult, data: dict[str, Any]
    ) -> PriorityAnalysis:
        """
        Score from an LLM priority-analysis payload.

        Raises:
            ValueError: If the payload has no usable numeric score
        """
        base = coerce_base_score(data.get("score"))

        try:
            strategic_weight = float(data.get("strategicWeight") or 0)
        except (TypeError, ValueError):
            strategic_weight = 0.0
        if not math.isfinite(strategic_weight):
            strategic_weight = 0.0

        reasoning = data.get("reasoning")
        return self.score(
            message,
            vip,
            base,
            reasoning=reasoning if isinstance(reasoning, str) and reasoning else "AI priority analysis",
            urgency_indicators=coerce_str_list(data.get("urgencyIndicators")),
            strategic_weight=clamp_score(strategic_weight, 0, STRATEGIC_WEIGHT_MAX),
            competitive_sensitivity=normalize_choice(
                data.get("competitiveSensitivity"), ("low", "medium", "high"), "medium"
            ),
        )


def coerce_base_score(value: Any) -> int:
    """Coerce an LLM score to an int in [0, 100]; non-numeric raises ValueError."""
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Non-numeric priority score: {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Non-numeric priority score: {value!r}") from e
    if not math.isfinite(number):
        raise ValueError(f"Non-finite priority score: {value!r}")
    return int(round(clamp_score(number)))
