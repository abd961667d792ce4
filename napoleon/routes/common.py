"""
Helpers shared by the feature routers.
"""

from fastapi import HTTPException, status

from napoleon.db.helpers import DatabaseError
from napoleon.features.prioritization.domain import Message
from napoleon.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


async def load_message(repository, message_id: str, user_id: str) -> Message:
    """Fetch one of the caller's messages or fail with 404/503."""
    try:
        message = await repository.get_message(message_id, user_id)
    except DatabaseError as e:
        logger.error(
            "Message lookup failed",
            user_id=user_id,
            message_id=message_id,
            operation=e.operation,
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Message store unavailable"
        ) from e

    if message is None:
        logger.warning("Message not found", user_id=user_id, message_id=message_id)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return message
