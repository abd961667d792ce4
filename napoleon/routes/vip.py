"""
vip.py
------
Purpose:
    API endpoints for the user's VIP directory.

Usage:
    1. GET /vip/contacts - VIP contacts, most important first
    2. POST /vip/contacts - Add a contact, or update the one with the same email
    3. PATCH /vip/contacts/{contact_id} - Change a contact's level, relationship or notes
    4. GET /vip/rules - Active automatic classification rules
    5. POST /vip/rules - Add a classification rule
"""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from napoleon.auth.verify import current_user_id
from napoleon.db.helpers import DatabaseError
from napoleon.dependencies import get_vip_service
from napoleon.features.prioritization.domain import VipAction, VipCondition
from napoleon.features.prioritization.vip import VipContactNotFound, VipService
from napoleon.infrastructure.observability.logging import get_logger

router = APIRouter(prefix="/vip", tags=["vip"])
logger = get_logger(__name__)


class VipContactRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    name: str | None = Field(default=None, max_length=200)
    priority_level: int = Field(default=5, ge=1, le=10)
    relationship_type: str | None = Field(default="vip", max_length=50)
    notes: str | None = Field(default=None, max_length=2000)


class VipContactUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=200)
    priority_level: int | None = Field(default=None, ge=1, le=10)
    relationship_type: str | None = Field(default=None, max_length=50)
    notes: str | None = Field(default=None, max_length=2000)


class VipRuleRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    conditions: list[VipCondition] = Field(min_length=1)
    actions: list[VipAction] = Field(default_factory=list)
    is_active: bool = True
    priority: int = 0


def _unavailable(e: DatabaseError, user_id: str) -> HTTPException:
    logger.error("VIP directory query failed", user_id=user_id, operation=e.operation, error=str(e))
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="VIP directory unavailable"
    )


@router.get("/contacts")
async def list_contacts(
    user_id: str = Depends(current_user_id),
    service: VipService = Depends(get_vip_service),
):
    try:
        contacts = await service.list_contacts(user_id)
    except DatabaseError as e:
        raise _unavailable(e, user_id) from e
    return [c.model_dump(mode="json") for c in contacts]


@router.post("/contacts", status_code=status.HTTP_201_CREATED)
async def save_contact(
    payload: VipContactRequest,
    user_id: str = Depends(current_user_id),
    service: VipService = Depends(get_vip_service),
):
    try:
        contact = await service.save_contact(user_id, payload.model_dump())
    except DatabaseError as e:
        raise _unavailable(e, user_id) from e
    return contact.model_dump(mode="json")


@router.patch("/contacts/{contact_id}")
async def update_contact(
    contact_id: str,
    payload: VipContactUpdate,
    user_id: str = Depends(current_user_id),
    service: VipService = Depends(get_vip_service),
):
    try:
        contact = await service.update_contact(
            contact_id, user_id, payload.model_dump(exclude_unset=True)
        )
    except VipContactNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except DatabaseError as e:
        raise _unavailable(e, user_id) from e
    return contact.model_dump(mode="json")


@router.get("/rules")
async def list_rules(
    user_id: str = Depends(current_user_id),
    service: VipService = Depends(get_vip_service),
):
    try:
        rules = await service.list_rules(user_id)
    except DatabaseError as e:
        raise _unavailable(e, user_id) from e
    return [r.model_dump(mode="json") for r in rules]


@router.post("/rules", status_code=status.HTTP_201_CREATED)
async def create_rule(
    payload: VipRuleRequest,
    user_id: str = Depends(current_user_id),
    service: VipService = Depends(get_vip_service),
):
    try:
        rule = await service.create_rule(user_id, payload.model_dump())
    except DatabaseError as e:
        raise _unavailable(e, user_id) from e
    return rule.model_dump(mode="json")
