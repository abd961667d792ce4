"""
Message prioritization feature.

VIP classification, priority scoring, action extraction and rate-limited
batch processing of inbound messages.
"""

from .repository import PrioritizationRepository, PrioritizationRepositoryError
from .service import MessageAnalysisService, generate_batch_id

__all__ = [
    "MessageAnalysisService",
    "PrioritizationRepository",
    "PrioritizationRepositoryError",
    "generate_batch_id",
]
