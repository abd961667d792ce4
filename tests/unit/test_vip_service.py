import pytest

from napoleon.db.helpers import DatabaseError
from napoleon.features.prioritization.vip import VipContactNotFound, VipService


@pytest.fixture
def vip_service(prioritization_repo):
    return VipService(prioritization_repo)


@pytest.mark.asyncio
async def test_save_contact_upserts_by_email(vip_service, prioritization_repo):
    first = await vip_service.save_contact(
        "user-123", {"email": "CEO@Example.com", "name": "Cora", "priority_level": 8}
    )
    second = await vip_service.save_contact(
        "user-123", {"email": " ceo@example.com ", "priority_level": 10}
    )

    assert first.id == second.id
    assert second.email == "ceo@example.com"
    assert second.priority_level == 10
    assert len(prioritization_repo.vip_contacts) == 1


@pytest.mark.asyncio
async def test_same_email_for_another_user_is_separate(vip_service, prioritization_repo):
    await vip_service.save_contact("user-123", {"email": "ceo@example.com"})
    await vip_service.save_contact("user-456", {"email": "ceo@example.com"})

    assert len(prioritization_repo.vip_contacts) == 2
    assert [c.email for c in await vip_service.list_contacts("user-456")] == ["ceo@example.com"]


@pytest.mark.asyncio
async def test_update_contact_changes_only_editable_fields(vip_service):
    saved = await vip_service.save_contact(
        "user-123", {"email": "cfo@example.com", "priority_level": 6}
    )

    updated = await vip_service.update_contact(
        saved.id,
        "user-123",
        {"priority_level": 9, "notes": "Investor", "email": "someone@else.com"},
    )

    assert updated.priority_level == 9
    assert updated.notes == "Investor"
    assert updated.email == "cfo@example.com"


@pytest.mark.asyncio
async def test_update_unknown_contact(vip_service):
    with pytest.raises(VipContactNotFound):
        await vip_service.update_contact("vip-99", "user-123", {"priority_level": 3})


@pytest.mark.asyncio
async def test_update_contact_of_another_user(vip_service):
    saved = await vip_service.save_contact("user-456", {"email": "cto@example.com"})

    with pytest.raises(VipContactNotFound):
        await vip_service.update_contact(saved.id, "user-123", {"priority_level": 3})


@pytest.mark.asyncio
async def test_create_rule(vip_service):
    rule = await vip_service.create_rule(
        "user-123",
        {
            "name": "Board domain",
            "conditions": [{"type": "email_domain", "operator": "equals", "value": "board.com"}],
            "actions": [{"type": "set_priority_level", "value": 9}],
        },
    )

    assert rule.id == "vip-rule-1"
    assert rule.user_id == "user-123"
    assert [r.name for r in await vip_service.list_rules("user-123")] == ["Board domain"]


@pytest.mark.asyncio
async def test_store_failure_propagates(vip_service, prioritization_repo):
    prioritization_repo.fail.add("upsert_vip_contact")

    with pytest.raises(DatabaseError):
        await vip_service.save_contact("user-123", {"email": "ceo@example.com"})
