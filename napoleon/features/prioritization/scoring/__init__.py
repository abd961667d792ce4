"""
Priority scoring package.

Provides the VIP-aware priority scorer and executive summary builders.
"""

from .service import FALLBACK_BASE_SCORE, KEYWORD_GROUPS, PriorityScorer, coerce_base_score
from .summary import build_fallback_summary, summary_from_llm

__all__ = [
    "FALLBACK_BASE_SCORE",
    "KEYWORD_GROUPS",
    "PriorityScorer",
    "build_fallback_summary",
    "coerce_base_score",
    "summary_from_llm",
]
