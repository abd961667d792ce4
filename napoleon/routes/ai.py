"""
ai.py
-----
Purpose:
    API endpoints for the message prioritization pipeline.

Usage:
    1. POST /ai/batch-process - Analyze up to 10 messages (rate limited per user)
    2. POST /ai/messages/{message_id}/analyze - Analyze and save one message
    3. GET /ai/metrics - AI processing metrics for a time range
    4. GET /ai/digest - Daily digest of the last 24 hours
"""

from dataclasses import asdict
from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from napoleon.auth.verify import current_user_id
from napoleon.config import settings
from napoleon.dependencies import get_analysis_service
from napoleon.features.prioritization import MessageAnalysisService
from napoleon.infrastructure.observability.logging import get_logger
from napoleon.routes.common import load_message

router = APIRouter(prefix="/ai", tags=["ai"])
logger = get_logger(__name__)


class BatchProcessRequest(BaseModel):
    message_ids: list[str] = Field(min_length=1, max_length=settings.BATCH_SIZE)


def _as_utc(value: datetime) -> datetime:
    # naive query params are taken as UTC
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


@router.post("/batch-process")
async def batch_process(
    payload: BatchProcessRequest,
    response: Response,
    user_id: str = Depends(current_user_id),
    service: MessageAnalysisService = Depends(get_analysis_service),
):
    """
    Analyze a batch of messages.

    Raises:
        429: Batch limit for the current window reached (Retry-After set)
    """
    result = await service.process_batch(user_id, payload.message_ids)

    limiter = service.rate_limiter
    rate_headers = {
        "X-RateLimit-Limit": str(limiter.max_batches),
        "X-RateLimit-Remaining": str(await limiter.remaining(user_id)),
    }

    if result.rate_limited:
        retry_after = await limiter.retry_after(user_id)
        logger.warning("Batch processing rate limited", user_id=user_id, retry_after=retry_after)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Batch rate limit exceeded. Try again later.",
            headers={**rate_headers, "Retry-After": str(retry_after)},
        )

    response.headers.update(rate_headers)
    return {**asdict(result), "limits": settings.get_batch_limits()}


@router.post("/messages/{message_id}/analyze")
async def analyze_message(
    message_id: str,
    user_id: str = Depends(current_user_id),
    service: MessageAnalysisService = Depends(get_analysis_service),
):
    message = await load_message(service.repository, message_id, user_id)

    analysis = await service.process_message(message, user_id)
    await service.save_analysis(message, analysis, user_id)
    return analysis.to_dict()


@router.get("/metrics")
async def ai_metrics(
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    user_id: str = Depends(current_user_id),
    service: MessageAnalysisService = Depends(get_analysis_service),
):
    """Processing metrics between start and end (defaults to the last 24 hours)."""
    end = _as_utc(end) if end else datetime.now(UTC)
    start = _as_utc(start) if start else end - timedelta(hours=24)
    if start > end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="start must be before end"
        )

    metrics = await service.get_ai_metrics(user_id, start, end)
    return asdict(metrics)


@router.get("/digest")
async def daily_digest(
    user_id: str = Depends(current_user_id),
    service: MessageAnalysisService = Depends(get_analysis_service),
):
    digest = await service.get_daily_digest(user_id)
    return {
        "total_messages": digest.total_messages,
        "high_priority_count": digest.high_priority_count,
        "vip_messages_count": digest.vip_messages_count,
        "action_items_count": digest.action_items_count,
        "top_priority_messages": [
            {
                "id": m.id,
                "subject": m.subject,
                "sender": m.sender_display,
                "platform": m.platform,
                "priority_score": m.priority_score,
                "priority_tier": m.priority_tier,
                "is_vip": m.is_vip,
            }
            for m in digest.top_priority_messages
        ],
    }
