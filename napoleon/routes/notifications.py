"""
notifications.py
----------------
Purpose:
    API endpoints for smart notifications.

Usage:
    1. POST /notifications/messages/{message_id} - Decide, create and deliver/schedule
    2. POST /notifications/{notification_id}/read - Mark a delivered notification read
    3. POST /notifications/{notification_id}/dismiss - Dismiss a notification
    4. GET /notifications/analytics - Delivery and read rates per channel
    5. GET /notifications/preferences - Channels, tiers, quiet hours and batching
    6. PUT /notifications/preferences - Partial update of those settings
    7. GET /notifications/digest - Highest scoring notifications of a timeframe
"""

from dataclasses import asdict
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from napoleon.auth.verify import current_user_id
from napoleon.db.helpers import DatabaseError
from napoleon.dependencies import ServiceContainer, get_notification_service, get_services
from napoleon.features.notifications import NotificationNotFound, NotificationService
from napoleon.features.notifications.domain import (
    BatchDelivery,
    ChannelSettings,
    DoNotDisturb,
    InvalidNotificationTransition,
    PriorityChannelConfig,
    SmartNotification,
)
from napoleon.features.prioritization.domain import Priority
from napoleon.infrastructure.observability.logging import get_logger
from napoleon.routes.common import load_message

router = APIRouter(prefix="/notifications", tags=["notifications"])
logger = get_logger(__name__)


def _notification_body(notification: SmartNotification | None) -> dict | None:
    return notification.model_dump(mode="json") if notification else None


@router.post("/messages/{message_id}")
async def notify_for_message(
    message_id: str,
    user_id: str = Depends(current_user_id),
    services: ServiceContainer = Depends(get_services),
):
    message = await load_message(services.analysis.repository, message_id, user_id)

    outcome = await services.notifications.process_message_notification(message, user_id)
    return {
        "should_notify": outcome.decision.notify,
        "channels": outcome.decision.channels,
        "reasoning": outcome.decision.reasoning,
        "matched_rule_ids": outcome.decision.matched_rule_ids,
        "intelligence": {**outcome.scores.as_dict(), "source": outcome.scores.source},
        "notification": _notification_body(outcome.notification),
        "delivery": asdict(outcome.delivery) if outcome.delivery else None,
    }


async def _change_status(action, notification_id: str, user_id: str) -> dict:
    try:
        notification = await action(notification_id, user_id)
    except NotificationNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvalidNotificationTransition as e:
        logger.info(
            "Rejected notification status change",
            notification_id=notification_id,
            current=e.current,
            target=e.target,
        )
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return _notification_body(notification)


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    user_id: str = Depends(current_user_id),
    service: NotificationService = Depends(get_notification_service),
):
    return await _change_status(service.mark_read, notification_id, user_id)


@router.post("/{notification_id}/dismiss")
async def dismiss(
    notification_id: str,
    user_id: str = Depends(current_user_id),
    service: NotificationService = Depends(get_notification_service),
):
    return await _change_status(service.dismiss, notification_id, user_id)


@router.get("/analytics")
async def analytics(
    days: int = Query(default=30, ge=1, le=365),
    user_id: str = Depends(current_user_id),
    service: NotificationService = Depends(get_notification_service),
):
    return asdict(await service.get_analytics(user_id, days))


ChannelName = Literal["push", "email", "sms", "slack", "teams"]


class PreferencesUpdate(BaseModel):
    channels: dict[ChannelName, ChannelSettings] | None = None
    batch_delivery: BatchDelivery | None = None
    do_not_disturb: DoNotDisturb | None = None
    priorities: dict[Priority, PriorityChannelConfig] | None = None


@router.get("/preferences")
async def get_preferences(
    user_id: str = Depends(current_user_id),
    service: NotificationService = Depends(get_notification_service),
):
    preferences = await service.get_preferences(user_id)
    return preferences.model_dump(mode="json")


@router.put("/preferences")
async def update_preferences(
    payload: PreferencesUpdate,
    user_id: str = Depends(current_user_id),
    service: NotificationService = Depends(get_notification_service),
):
    try:
        preferences = await service.update_preferences(
            user_id, payload.model_dump(exclude_unset=True)
        )
    except DatabaseError as e:
        logger.error(
            "Failed to save notification preferences",
            user_id=user_id,
            operation=e.operation,
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Preferences store unavailable"
        ) from e
    return preferences.model_dump(mode="json")


@router.get("/digest")
async def digest(
    timeframe: Literal["hourly", "daily", "weekly"] = Query(default="daily"),
    user_id: str = Depends(current_user_id),
    service: NotificationService = Depends(get_notification_service),
):
    result = await service.generate_digest(user_id, timeframe)
    return {
        "timeframe": result.timeframe,
        "summary": result.summary,
        "total_notifications": result.total_notifications,
        "priority_distribution": result.priority_distribution,
        "priority_items": [_notification_body(n) for n in result.priority_items],
    }
