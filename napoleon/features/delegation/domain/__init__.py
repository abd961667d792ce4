"""
Domain subpackage for delegation.
"""

from .models import (
    ACTIVE_STATUSES,
    DELEGATION_TRANSITIONS,
    Availability,
    DelegationAnalytics,
    DelegationCondition,
    DelegationHistory,
    DelegationOpportunity,
    DelegationRule,
    DelegationStatus,
    DelegationTask,
    InvalidDelegationTransition,
    ScoredCandidate,
    TeamMember,
    Workload,
)

__all__ = [
    "ACTIVE_STATUSES",
    "DELEGATION_TRANSITIONS",
    "Availability",
    "DelegationAnalytics",
    "DelegationCondition",
    "DelegationHistory",
    "DelegationOpportunity",
    "DelegationRule",
    "DelegationStatus",
    "DelegationTask",
    "InvalidDelegationTransition",
    "ScoredCandidate",
    "TeamMember",
    "Workload",
]
