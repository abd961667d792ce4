"""
VIP directory management.

Contacts are unique per (user, email): saving a contact for an email the
user already has updates that contact instead of adding a second one.
"""

from typing import Any

from napoleon.features.prioritization.domain import VipContact, VipRule
from napoleon.features.prioritization.repository import PrioritizationRepository
from napoleon.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

UPDATABLE_CONTACT_FIELDS = ("name", "priority_level", "relationship_type", "notes")


class VipContactNotFound(Exception):
    def __init__(self, contact_id: str):
        super().__init__(f"VIP contact {contact_id} not found")
        self.contact_id = contact_id
        self.recoverable = False


class VipService:
    def __init__(self, repository: PrioritizationRepository):
        self.repository = repository

    async def list_contacts(self, user_id: str) -> list[VipContact]:
        return list(await self.repository.list_vip_contacts(user_id))

    async def save_contact(self, user_id: str, data: dict[str, Any]) -> VipContact:
        contact = VipContact.model_validate(
            {**data, "user_id": user_id, "email": data["email"].strip().lower()}
        )
        saved = await self.repository.upsert_vip_contact(contact)
        logger.info("VIP contact saved", user_id=user_id, priority_level=saved.priority_level)
        return saved

    async def update_contact(
        self, contact_id: str, user_id: str, changes: dict[str, Any]
    ) -> VipContact:
        existing = await self.repository.get_vip_contact(contact_id, user_id)
        if existing is None:
            raise VipContactNotFound(contact_id)

        updates = {k: v for k, v in changes.items() if k in UPDATABLE_CONTACT_FIELDS}
        contact = VipContact.model_validate({**existing.model_dump(), **updates})
        updated = await self.repository.update_vip_contact(contact)
        logger.info(
            "VIP contact updated", user_id=user_id, contact_id=contact_id, fields=sorted(updates)
        )
        return updated

    async def list_rules(self, user_id: str) -> list[VipRule]:
        return list(await self.repository.list_vip_rules(user_id))

    async def create_rule(self, user_id: str, data: dict[str, Any]) -> VipRule:
        rule = VipRule.model_validate({**data, "id": None, "user_id": user_id})
        created = await self.repository.insert_vip_rule(rule)
        logger.info("VIP rule created", user_id=user_id, rule_id=created.id)
        return created
