"""
Smart notifications feature.

Decides whether a prioritized message should interrupt the user, on which
channels, and when.
"""

from .channels import ChannelDeliveryError, build_channel_senders
from .engine import NotificationDecisionEngine
from .repository import NotificationRepository, NotificationRepositoryError
from .service import NotificationNotFound, NotificationService

__all__ = [
    "ChannelDeliveryError",
    "NotificationDecisionEngine",
    "NotificationNotFound",
    "NotificationRepository",
    "NotificationRepositoryError",
    "NotificationService",
    "build_channel_senders",
]
