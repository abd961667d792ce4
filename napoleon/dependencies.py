"""
Service wiring.

Services are built once at startup and stored on ``app.state.services``.
Routes receive them through the getters below, which tests replace with
``app.dependency_overrides``.
"""

from dataclasses import dataclass

import httpx
from fastapi import Request

from napoleon.config import settings
from napoleon.features.delegation import DelegationRepository, DelegationService
from napoleon.features.notifications import (
    NotificationRepository,
    NotificationService,
    build_channel_senders,
)
from napoleon.features.prioritization import MessageAnalysisService, PrioritizationRepository
from napoleon.features.prioritization.batch import BatchRateLimiter, build_batch_rate_limiter
from napoleon.features.prioritization.vip import VipService
from napoleon.services.openai_service import OpenAIService
from napoleon.services.prompt_templates import PromptTemplateLoader


@dataclass
class ServiceContainer:
    analysis: MessageAnalysisService
    vip: VipService
    notifications: NotificationService
    delegation: DelegationService
    rate_limiter: BatchRateLimiter
    http_client: httpx.AsyncClient
    llm: OpenAIService
    templates: PromptTemplateLoader


def build_services(
    http_client: httpx.AsyncClient,
    *,
    llm: OpenAIService | None = None,
    templates: PromptTemplateLoader | None = None,
    rate_limiter: BatchRateLimiter | None = None,
) -> ServiceContainer:
    llm = llm or OpenAIService()
    templates = templates or PromptTemplateLoader(settings.PROMPT_TEMPLATE_DIR)
    rate_limiter = rate_limiter or build_batch_rate_limiter()

    return ServiceContainer(
        analysis=MessageAnalysisService(PrioritizationRepository, llm, templates, rate_limiter),
        vip=VipService(PrioritizationRepository),
        notifications=NotificationService(
            NotificationRepository, llm, templates, build_channel_senders(http_client)
        ),
        delegation=DelegationService(DelegationRepository, llm, templates),
        rate_limiter=rate_limiter,
        http_client=http_client,
        llm=llm,
        templates=templates,
    )


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_analysis_service(request: Request) -> MessageAnalysisService:
    return get_services(request).analysis


def get_vip_service(request: Request) -> VipService:
    return get_services(request).vip


def get_notification_service(request: Request) -> NotificationService:
    return get_services(request).notifications


def get_delegation_service(request: Request) -> DelegationService:
    return get_services(request).delegation


def get_rate_limiter(request: Request) -> BatchRateLimiter:
    return get_services(request).rate_limiter
