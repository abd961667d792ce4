"""
delegation.py
-------------
Purpose:
    API endpoints for delegation recommendations and delegated tasks.

Usage:
    1. GET /delegation/messages/{message_id} - Should this be delegated, and to whom
    2. POST /delegation/tasks - Delegate a message to a team member
    3. PATCH /delegation/tasks/{task_id} - Move a task through its lifecycle
    4. GET /delegation/tasks - Delegated tasks, optionally filtered by status
    5. GET /delegation/analytics - Task counts and team utilization
    6. GET /delegation/team-members - Team members available for delegation
    7. POST /delegation/team-members - Add a team member
    8. POST /delegation/rules - Add a delegation rule
"""

from dataclasses import asdict
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from napoleon.auth.verify import current_user_id
from napoleon.db.helpers import DatabaseError
from napoleon.dependencies import get_delegation_service
from napoleon.features.delegation import DelegationError, DelegationService
from napoleon.features.delegation.domain import (
    Availability,
    DelegationCondition,
    DelegationStatus,
    InvalidDelegationTransition,
    Workload,
)
from napoleon.infrastructure.observability.logging import get_logger
from napoleon.routes.common import load_message

router = APIRouter(prefix="/delegation", tags=["delegation"])
logger = get_logger(__name__)


class CreateTaskRequest(BaseModel):
    message_id: str
    delegated_to: str
    instructions: str = Field(default="", max_length=5000)
    due_date: datetime | None = None
    priority: str | None = None
    auto_accept: bool = False


class UpdateTaskRequest(BaseModel):
    status: DelegationStatus
    response: str | None = None
    feedback: str | None = None


class TeamMemberRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=320)
    role: str = ""
    department: str = ""
    skills: list[str] = Field(default_factory=list)
    availability: Availability = Field(default_factory=Availability)
    workload: Workload = Field(default_factory=Workload)


class DelegationRuleRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    conditions: list[DelegationCondition] = Field(min_length=1)
    delegate_to: str | None = None
    approval_required: bool = False
    is_active: bool = True
    priority: int = 0


def _unavailable(e: DatabaseError, user_id: str) -> HTTPException:
    logger.error(
        "Delegation store query failed", user_id=user_id, operation=e.operation, error=str(e)
    )
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Delegation store unavailable"
    )


@router.get("/messages/{message_id}")
async def delegation_opportunity(
    message_id: str,
    user_id: str = Depends(current_user_id),
    service: DelegationService = Depends(get_delegation_service),
):
    message = await load_message(service.repository, message_id, user_id)

    opportunity = await service.analyze_opportunity(message, user_id)
    return {
        "should_delegate": opportunity.should_delegate,
        "confidence": opportunity.confidence,
        "reasoning": opportunity.reasoning,
        "estimated_minutes": opportunity.estimated_minutes,
        "business_impact": opportunity.business_impact,
        "suggested_role": opportunity.suggested_role,
        "matched_rule_id": opportunity.matched_rule_id,
        "suggested_delegates": [
            {
                "id": c.member.id,
                "name": c.member.name,
                "email": c.member.email,
                "role": c.member.role,
                "score": c.score,
            }
            for c in opportunity.suggested_delegates
        ],
    }


@router.post("/tasks", status_code=status.HTTP_201_CREATED)
async def create_task(
    payload: CreateTaskRequest,
    user_id: str = Depends(current_user_id),
    service: DelegationService = Depends(get_delegation_service),
):
    try:
        task = await service.create_task(
            payload.message_id,
            user_id,
            payload.delegated_to,
            instructions=payload.instructions,
            due_date=payload.due_date,
            priority=payload.priority,
            auto_accept=payload.auto_accept,
        )
    except DelegationError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return task.model_dump(mode="json")


@router.patch("/tasks/{task_id}")
async def update_task(
    task_id: str,
    payload: UpdateTaskRequest,
    user_id: str = Depends(current_user_id),
    service: DelegationService = Depends(get_delegation_service),
):
    try:
        task = await service.update_task_status(
            task_id, user_id, payload.status, response=payload.response, feedback=payload.feedback
        )
    except DelegationError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvalidDelegationTransition as e:
        logger.info(
            "Rejected delegation status change", task_id=task_id, current=e.current, target=e.target
        )
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return task.model_dump(mode="json")


@router.get("/analytics")
async def analytics(
    user_id: str = Depends(current_user_id),
    service: DelegationService = Depends(get_delegation_service),
):
    return asdict(await service.get_analytics(user_id))


@router.get("/tasks")
async def list_tasks(
    status_filter: list[DelegationStatus] | None = Query(default=None, alias="status"),
    user_id: str = Depends(current_user_id),
    service: DelegationService = Depends(get_delegation_service),
):
    try:
        tasks = await service.list_tasks(user_id, status_filter)
    except DatabaseError as e:
        raise _unavailable(e, user_id) from e
    return [t.model_dump(mode="json") for t in tasks]


@router.get("/team-members")
async def list_team_members(
    user_id: str = Depends(current_user_id),
    service: DelegationService = Depends(get_delegation_service),
):
    try:
        members = await service.list_team(user_id)
    except DatabaseError as e:
        raise _unavailable(e, user_id) from e
    return [m.model_dump(mode="json") for m in members]


@router.post("/team-members", status_code=status.HTTP_201_CREATED)
async def add_team_member(
    payload: TeamMemberRequest,
    user_id: str = Depends(current_user_id),
    service: DelegationService = Depends(get_delegation_service),
):
    try:
        member = await service.add_team_member(user_id, payload.model_dump())
    except DatabaseError as e:
        raise _unavailable(e, user_id) from e
    return member.model_dump(mode="json")


@router.post("/rules", status_code=status.HTTP_201_CREATED)
async def create_rule(
    payload: DelegationRuleRequest,
    user_id: str = Depends(current_user_id),
    service: DelegationService = Depends(get_delegation_service),
):
    try:
        rule = await service.create_rule(user_id, payload.model_dump())
    except DelegationError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except DatabaseError as e:
        raise _unavailable(e, user_id) from e
    return rule.model_dump(mode="json")
