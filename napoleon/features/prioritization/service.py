"""
Message analysis service - the prioritization pipeline end to end.

For one message: VIP classification (contacts, then VIP rules), executive
summary and priority analysis in parallel, then action extraction with the
priority as context. Every LLM step falls back to keyword analysis on its
own, so a message always gets a complete result.

Batches are rate limited per user and processed sequentially; one failing
message never aborts the rest of the batch.
"""

from __future__ import annotations

import asyncio
import secrets
import string
import time
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

from structlog.contextvars import bound_contextvars

from napoleon.config import settings
from napoleon.features.prioritization.batch import BatchRateLimiter
from napoleon.features.prioritization.domain import (
    AIProcessingMetrics,
    AnalysisResult,
    BatchResult,
    DailyDigest,
    ExecutiveSummary,
    Message,
    PriorityAnalysis,
    ProcessingMetrics,
    VipContact,
    VipResult,
)
from napoleon.features.prioritization.extraction import ActionExtractor
from napoleon.features.prioritization.repository import PrioritizationRepository
from napoleon.features.prioritization.scoring import (
    PriorityScorer,
    build_fallback_summary,
    summary_from_llm,
)
from napoleon.features.prioritization.vip import VipClassifier
from napoleon.infrastructure.observability.logging import get_logger, log_ai_processing, log_batch
from napoleon.services.openai_service import LLMResponse, OpenAIService
from napoleon.services.prompt_templates import PromptTemplateLoader

logger = get_logger(__name__)

SUMMARY_TEMPLATE = "executive-summary"
PRIORITY_TEMPLATE = "priority-analysis"
FALLBACK_MODEL = "fallback"
FALLBACK_PROMPT_VERSION = "keyword-based"
HIGH_PRIORITY_DIGEST_THRESHOLD = 70

_BATCH_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_batch_id() -> str:
    """batch_<epoch-ms>_<9 random base-36 chars>"""
    suffix = "".join(secrets.choice(_BATCH_ID_ALPHABET) for _ in range(9))
    return f"batch_{int(time.time() * 1000)}_{suffix}"


def build_prompt_variables(message: Message, vip: VipResult) -> dict[str, Any]:
    return {
        "sender_name": message.sender_name or "Unknown",
        "sender_email": message.sender_email,
        "subject": message.subject or "No Subject",
        "content": message.content,
        "received_date": message.message_date.isoformat() if message.message_date else "unknown",
        "is_vip_contact": vip.is_vip,
        "is_board_member": vip.is_board_member,
        "is_investor": vip.is_investor,
        "priority_score": 0,
    }


class MessageAnalysisService:
    def __init__(
        self,
        repository: PrioritizationRepository,
        llm: OpenAIService,
        templates: PromptTemplateLoader,
        rate_limiter: BatchRateLimiter,
        *,
        classifier: VipClassifier | None = None,
        scorer: PriorityScorer | None = None,
        extractor: ActionExtractor | None = None,
        batch_size: int | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        self.repository = repository
        self.llm = llm
        self.templates = templates
        self.rate_limiter = rate_limiter
        self.classifier = classifier or VipClassifier()
        self.scorer = scorer or PriorityScorer()
        self.extractor = extractor or ActionExtractor(llm, templates)
        self.batch_size = batch_size or settings.BATCH_SIZE
        self._now = now or (lambda: datetime.now(UTC))

    # =================================================================
    # SINGLE MESSAGE
    # =================================================================

    async def process_message(self, message: Message, user_id: str) -> AnalysisResult:
        started = time.perf_counter()

        vip_contacts = await self._load_vip_contacts(user_id)
        vip_contacts = await self._apply_vip_rules(message, user_id, vip_contacts)
        vip = self.classifier.classify(message.sender_email, vip_contacts)

        variables = build_prompt_variables(message, vip)

        summary_response, priority_response = await asyncio.gather(
            self._complete(
                SUMMARY_TEMPLATE,
                variables,
                settings.SUMMARY_TEMPERATURE,
                settings.SUMMARY_MAX_TOKENS,
            ),
            self._complete(
                PRIORITY_TEMPLATE,
                variables,
                settings.PRIORITY_TEMPERATURE,
                settings.PRIORITY_MAX_TOKENS,
            ),
        )

        priority, priority_from_llm = self._resolve_priority(message, vip, priority_response)
        summary, summary_from_model = self._resolve_summary(
            message, vip, priority, summary_response
        )

        variables["priority_score"] = priority.final_score
        extraction = await self.extractor.extract(message, priority, variables)

        llm_steps = [priority_from_llm, summary_from_model, extraction.source == "llm"]
        tokens_used = extraction.tokens_used + sum(
            r.tokens_used for r in (summary_response, priority_response) if r is not None
        )
        used_fallback = not all(llm_steps)
        any_llm = any(llm_steps)

        metrics = ProcessingMetrics(
            processing_time_ms=int((time.perf_counter() - started) * 1000),
            tokens_used=tokens_used,
            cost=tokens_used * settings.AI_COST_PER_TOKEN,
            model=self.llm.model if any_llm else FALLBACK_MODEL,
            prompt_version=settings.PROMPT_VERSION if any_llm else FALLBACK_PROMPT_VERSION,
        )

        await self.log_processing_metrics(
            user_id,
            message.id,
            metrics,
            success=not used_fallback,
            vip_boost=vip.boost,
            error="LLM unavailable or invalid, keyword fallback used" if used_fallback else None,
        )

        return AnalysisResult(
            message_id=message.id,
            executive_summary=summary,
            priority_analysis=priority,
            extraction=extraction,
            processing_metrics=metrics,
            used_fallback=used_fallback,
        )

    async def _load_vip_contacts(self, user_id: str) -> list[VipContact]:
        try:
            return list(await self.repository.list_vip_contacts(user_id))
        except Exception as e:
            logger.warning(
                "Failed to load VIP contacts, treating sender as standard",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return []

    async def _apply_vip_rules(
        self, message: Message, user_id: str, vip_contacts: list[VipContact]
    ) -> list[VipContact]:
        """Auto-classify an unknown sender through the user's VIP rules."""
        sender = message.sender_email.strip().lower()
        if any(c.email.strip().lower() == sender for c in vip_contacts):
            return vip_contacts

        try:
            rules = await self.repository.list_vip_rules(user_id)
        except Exception as e:
            logger.warning(
                "Failed to load VIP rules",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return vip_contacts

        rule = self.classifier.match_rule(message, rules)
        if rule is None:
            return vip_contacts

        contact = self.classifier.contact_from_rule(message, rule)
        try:
            contact = await self.repository.upsert_vip_contact(contact)
        except Exception as e:
            logger.warning(
                "Failed to persist rule-classified VIP contact",
                user_id=user_id,
                rule_id=rule.id,
                error=str(e),
                error_type=type(e).__name__,
            )

        logger.info("Sender auto-classified as VIP", user_id=user_id, rule_id=rule.id)
        return [*vip_contacts, contact]

    async def _complete(
        self, template: str, variables: dict[str, Any], temperature: float, max_tokens: int
    ) -> LLMResponse | None:
        """One LLM step; None means the caller should use its fallback."""
        if not self.llm.available:
            return None
        try:
            prompt = self.templates.render(template, variables)
            return await self.llm.complete_json(
                prompt,
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=settings.OPENAI_TIMEOUT_SECONDS,
            )
        except Exception as e:
            logger.warning(
                "LLM analysis step failed, using keyword fallback",
                template=template,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    def _resolve_priority(
        self, message: Message, vip: VipResult, response: LLMResponse | None
    ) -> tuple[PriorityAnalysis, bool]:
        if response is not None:
            try:
                return self.scorer.score_from_llm(message, vip, response.data), True
            except ValueError as e:
                logger.warning("Invalid LLM priority score", message_id=message.id, error=str(e))
        return self.scorer.score_fallback(message, vip), False

    def _resolve_summary(
        self,
        message: Message,
        vip: VipResult,
        priority: PriorityAnalysis,
        response: LLMResponse | None,
    ) -> tuple[ExecutiveSummary, bool]:
        if response is not None:
            try:
                return summary_from_llm(response.data), True
            except ValueError as e:
                logger.warning("Invalid LLM executive summary", message_id=message.id, error=str(e))
        return build_fallback_summary(message, priority.final_score, vip), False

    # =================================================================
    # PERSISTENCE
    # =================================================================

    async def save_analysis(self, message: Message, analysis: AnalysisResult, user_id: str) -> None:
        """Write the analysis back; write failures are logged, never raised."""
        priority = analysis.priority_analysis
        try:
            await self.repository.update_message_analysis(
                message.id,
                user_id,
                priority_score=priority.final_score,
                ai_summary=analysis.executive_summary.summary,
                is_vip=priority.vip_boost > 0,
                sentiment="urgent" if priority.tier == "critical" else "neutral",
            )
        except Exception as e:
            logger.error(
                "Failed to save message analysis",
                message_id=message.id,
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )

        if not analysis.action_items:
            return

        try:
            await self.repository.insert_action_items(message.id, user_id, analysis.action_items)
        except Exception as e:
            logger.error(
                "Failed to save action items",
                message_id=message.id,
                user_id=user_id,
                count=len(analysis.action_items),
                error=str(e),
                error_type=type(e).__name__,
            )

    async def log_processing_metrics(
        self,
        user_id: str,
        message_id: str,
        metrics: ProcessingMetrics,
        *,
        success: bool,
        vip_boost: int = 0,
        error: str | None = None,
    ) -> None:
        log_ai_processing(
            user_id=user_id,
            message_id=message_id,
            processing_time_ms=metrics.processing_time_ms,
            tokens_used=metrics.tokens_used,
            success=success,
            model=metrics.model,
            vip_boost=vip_boost,
            error=error,
        )
        await self._write_processing_log(
            {
                "user_id": user_id,
                "message_id": message_id,
                "operation_type": "message_analysis",
                "processing_time_ms": metrics.processing_time_ms,
                "tokens_used": metrics.tokens_used,
                "cost_usd": metrics.cost,
                "success": success,
                "error_message": error,
                "vip_boost_applied": vip_boost,
                "model_version": metrics.model,
                "prompt_version": metrics.prompt_version,
            }
        )

    async def _write_processing_log(self, log: dict[str, Any]) -> None:
        try:
            await self.repository.insert_processing_log(log)
        except Exception as e:
            logger.warning(
                "Failed to write processing log",
                user_id=log.get("user_id"),
                operation_type=log.get("operation_type"),
                error=str(e),
                error_type=type(e).__name__,
            )

    # =================================================================
    # BATCH PROCESSING
    # =================================================================

    async def process_batch(self, user_id: str, message_ids: Iterable[str]) -> BatchResult:
        if not await self.rate_limiter.try_acquire(user_id):
            logger.info("Batch request rate limited", user_id=user_id)
            return BatchResult(processed=0, failed=0, rate_limited=True)

        batch_id = generate_batch_id()
        batch_ids = list(message_ids)[: self.batch_size]
        started = time.perf_counter()

        processed = 0
        failed = 0
        skipped = 0

        with bound_contextvars(batch_id=batch_id):
            for message_id in batch_ids:
                try:
                    message = await self.repository.get_message(message_id, user_id)
                    if message is None:
                        logger.warning("Batch message not found", message_id=message_id)
                        skipped += 1
                        continue

                    analysis = await self.process_message(message, user_id)
                    await self.save_analysis(message, analysis, user_id)
                    processed += 1
                except Exception as e:
                    failed += 1
                    logger.error(
                        "Failed to process batch message",
                        message_id=message_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )

        duration_ms = int((time.perf_counter() - started) * 1000)
        await self._write_processing_log(
            {
                "user_id": user_id,
                "operation_type": "batch_process",
                "processing_time_ms": duration_ms,
                "success": failed == 0,
                "metadata": {
                    "batch_id": batch_id,
                    "requested": len(batch_ids),
                    "processed": processed,
                    "failed": failed,
                    "skipped": skipped,
                },
            }
        )

        log_batch(user_id, batch_id, processed, failed, skipped, duration_ms)
        return BatchResult(
            processed=processed,
            failed=failed,
            rate_limited=False,
            batch_id=batch_id,
            skipped=skipped,
        )

    # =================================================================
    # REPORTING
    # =================================================================

    async def get_ai_metrics(
        self, user_id: str, start: datetime, end: datetime
    ) -> AIProcessingMetrics:
        try:
            logs = await self.repository.list_processing_logs(user_id, start, end)
        except Exception as e:
            logger.error(
                "Failed to load processing logs",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            logs = []

        successful = [log for log in logs if log.get("success")]
        failed = len(logs) - len(successful)
        avg_time = (
            sum(log.get("processing_time_ms") or 0 for log in successful) / len(successful)
            if successful
            else 0
        )
        fallback_usage = sum(
            1 for log in logs if not log.get("success") or log.get("model_version") == FALLBACK_MODEL
        )

        return AIProcessingMetrics(
            total_messages=len(logs),
            successful_processing=len(successful),
            failed_processing=failed,
            avg_processing_time_ms=round(avg_time),
            total_tokens_used=sum(log.get("tokens_used") or 0 for log in logs),
            total_cost=round(sum(float(log.get("cost_usd") or 0) for log in logs), 2),
            vip_boosts=sum(1 for log in logs if (log.get("vip_boost_applied") or 0) > 0),
            fallback_usage=fallback_usage,
            timestamp=self._now(),
        )

    async def get_daily_digest(self, user_id: str) -> DailyDigest:
        since = self._now() - timedelta(hours=24)

        try:
            messages = await self.repository.list_recent_messages(user_id, since, limit=20)
        except Exception as e:
            logger.error(
                "Failed to load digest messages",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            messages = []

        try:
            action_items_count = await self.repository.count_pending_action_items(user_id)
        except Exception as e:
            logger.error(
                "Failed to count pending action items",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            action_items_count = 0

        return DailyDigest(
            total_messages=len(messages),
            high_priority_count=sum(
                1 for m in messages if m.priority_score >= HIGH_PRIORITY_DIGEST_THRESHOLD
            ),
            vip_messages_count=sum(1 for m in messages if m.is_vip),
            action_items_count=action_items_count,
            top_priority_messages=list(messages[:5]),
        )
