"""
Delegation feature.

Ranks team members as delegates for a message and tracks delegated tasks.
"""

from .matcher import DelegationMatcher, matching_rule
from .repository import DelegationRepository, DelegationRepositoryError
from .service import DelegationError, DelegationService

__all__ = [
    "DelegationError",
    "DelegationMatcher",
    "DelegationRepository",
    "DelegationRepositoryError",
    "DelegationService",
    "matching_rule",
]
