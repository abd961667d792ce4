"""
Structured logging for the Napoleon AI backend.

JSON lines with level, logger name and ISO timestamp. Anything bound with
structlog.contextvars (batch_id inside process_batch) is merged into every
event logged while it is bound.
"""

import logging
import sys

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    # Webhook posts and LLM calls log every request at INFO
    for noisy in ("httpx", "httpcore", "openai", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_ai_processing(
    user_id: str,
    message_id: str,
    processing_time_ms: int,
    tokens_used: int,
    success: bool,
    model: str,
    vip_boost: int = 0,
    error: str | None = None,
):
    """One line per analyzed message; the source of the AI metrics dashboards."""
    log_data = {
        "user_id": user_id,
        "message_id": message_id,
        "processing_time_ms": processing_time_ms,
        "tokens_used": tokens_used,
        "model": model,
        "vip_boost": vip_boost,
        "event_type": "ai_processing",
    }
    if error:
        log_data["error"] = error

    logger = get_logger("ai_processing")
    if success:
        logger.info("Message analysis completed", **log_data)
    else:
        logger.warning("Message analysis fell back to keyword scoring", **log_data)


def log_batch(user_id: str, batch_id: str, processed: int, failed: int, skipped: int, duration_ms: int):
    """Summary line for one batch-process request."""
    log_data = {
        "user_id": user_id,
        "batch_id": batch_id,
        "processed": processed,
        "failed": failed,
        "skipped": skipped,
        "duration_ms": duration_ms,
        "event_type": "batch_process",
    }

    logger = get_logger("batch_processing")
    if failed:
        logger.warning("Batch processed with failures", **log_data)
    else:
        logger.info("Batch processed", **log_data)


def log_request(method: str, path: str, status_code: int, duration_ms: float, user_id: str = None):
    log_data = {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": duration_ms,
        "event_type": "http_request",
    }
    if user_id:
        log_data["user_id"] = user_id

    logger = get_logger("http")
    if status_code >= 500:
        logger.error("HTTP request failed", **log_data)
    elif status_code >= 400:
        logger.warning("HTTP request rejected", **log_data)
    else:
        logger.info("HTTP request completed", **log_data)
