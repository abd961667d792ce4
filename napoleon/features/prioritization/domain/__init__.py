"""
Domain subpackage for the prioritization feature.
"""

from .models import (
    PRIORITY_LEVELS,
    ActionItem,
    AIProcessingMetrics,
    AnalysisResult,
    BatchResult,
    CommunicationNeeded,
    DailyDigest,
    DecisionRequired,
    ExecutiveSummary,
    ExtractionResult,
    MeetingRequest,
    Message,
    Priority,
    PriorityAnalysis,
    ProcessingMetrics,
    VipAction,
    VipCondition,
    VipContact,
    VipResult,
    VipRule,
    clamp_score,
    coerce_str_list,
    normalize_choice,
    normalize_priority,
    tier_for_score,
)

__all__ = [
    "PRIORITY_LEVELS",
    "AIProcessingMetrics",
    "ActionItem",
    "AnalysisResult",
    "BatchResult",
    "CommunicationNeeded",
    "DailyDigest",
    "DecisionRequired",
    "ExecutiveSummary",
    "ExtractionResult",
    "MeetingRequest",
    "Message",
    "Priority",
    "PriorityAnalysis",
    "ProcessingMetrics",
    "VipAction",
    "VipCondition",
    "VipContact",
    "VipResult",
    "VipRule",
    "clamp_score",
    "coerce_str_list",
    "normalize_choice",
    "normalize_priority",
    "tier_for_score",
]
