import pytest
from fastapi.testclient import TestClient

from napoleon.dependencies import ServiceContainer
from napoleon.features.delegation.domain import DelegationTask
from napoleon.features.notifications.domain import SmartNotification
from napoleon.features.prioritization.batch import InMemoryBatchRateLimiter
from napoleon.features.prioritization.vip import VipService
from napoleon.main import app


@pytest.fixture
def client(
    analysis_service,
    notification_service,
    delegation_service,
    rate_limiter,
    prioritization_repo,
    fake_llm,
    fake_templates,
    apply_auth_override,
):
    # lifespan does not run without a context manager, so no database or Redis
    app.state.services = ServiceContainer(
        analysis=analysis_service,
        notifications=notification_service,
        delegation=delegation_service,
        vip=VipService(prioritization_repo),
        rate_limiter=rate_limiter,
        http_client=None,
        llm=fake_llm,
        templates=fake_templates,
    )
    apply_auth_override(app)
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_protected_route_requires_token():
    response = TestClient(app).get("/ai/digest")

    assert response.status_code in (401, 403)


def test_batch_process_returns_limits(client, prioritization_repo, make_message):
    prioritization_repo.add(make_message(id="m1"), make_message(id="m2"))

    response = client.post("/ai/batch-process", json={"message_ids": ["m1", "m2", "gone"]})

    assert response.status_code == 200
    data = response.json()
    assert data["processed"] == 2
    assert data["skipped"] == 1
    assert data["rate_limited"] is False
    assert data["limits"]["messages_per_batch"] == 10
    assert response.headers["X-RateLimit-Limit"] == "12"
    assert response.headers["X-RateLimit-Remaining"] == "11"


def test_batch_process_rejects_oversized_batch(client):
    response = client.post("/ai/batch-process", json={"message_ids": [f"m{i}" for i in range(11)]})

    assert response.status_code == 422


def test_batch_process_rate_limited(client, analysis_service, prioritization_repo, clock):
    analysis_service.rate_limiter = InMemoryBatchRateLimiter(
        max_batches=1, window_seconds=3600, clock=clock
    )

    first = client.post("/ai/batch-process", json={"message_ids": ["m1"]})
    second = client.post("/ai/batch-process", json={"message_ids": ["m1"]})

    assert first.status_code == 200
    assert second.status_code == 429
    assert second.json()["detail"] == "Batch rate limit exceeded. Try again later."
    assert int(second.headers["Retry-After"]) > 0
    assert second.headers["X-RateLimit-Remaining"] == "0"
    assert prioritization_repo.get_message_calls == 1


def test_analyze_message(client, prioritization_repo, make_message):
    prioritization_repo.add(make_message())

    response = client.post("/ai/messages/msg-1/analyze")

    assert response.status_code == 200
    data = response.json()
    assert data["message_id"] == "msg-1"
    assert data["priority_analysis"]["tier"] in ("critical", "high", "medium", "low")
    assert prioritization_repo.analyses[0]["message_id"] == "msg-1"


def test_analyze_unknown_message(client):
    response = client.post("/ai/messages/nope/analyze")

    assert response.status_code == 404
    assert response.json()["detail"] == "Message not found"


def test_analyze_when_store_is_down(client, prioritization_repo):
    prioritization_repo.fail.add("get_message")

    response = client.post("/ai/messages/msg-1/analyze")

    assert response.status_code == 503


def test_metrics_range_validation(client):
    response = client.get(
        "/ai/metrics",
        params={"start": "2026-10-19T12:00:00", "end": "2026-10-18T12:00:00"},
    )

    assert response.status_code == 400


def test_metrics(client):
    response = client.get(
        "/ai/metrics",
        params={"start": "2026-10-18T12:00:00", "end": "2026-10-19T12:00:00"},
    )

    assert response.status_code == 200
    assert response.json()["total_messages"] == 0


def test_digest(client, prioritization_repo, make_message):
    prioritization_repo.add(make_message(priority_score=90, is_vip=True))

    response = client.get("/ai/digest")

    assert response.status_code == 200
    data = response.json()
    assert data["total_messages"] == 1
    assert data["top_priority_messages"][0]["sender"] == "Alice"
    assert data["top_priority_messages"][0]["priority_tier"] == "critical"


def test_notify_for_message(client, prioritization_repo, fake_llm, make_message):
    fake_llm.available = False
    prioritization_repo.add(make_message(priority_score=85))

    response = client.post("/notifications/messages/msg-1")

    assert response.status_code == 200
    data = response.json()
    assert data["intelligence"]["source"] == "fallback"
    assert "should_notify" in data


def test_notification_status_changes(client, notification_repo):
    notification_repo.notifications["notif-1"] = SmartNotification(
        id="notif-1", user_id="user-123", title="Offer", content="From Alice", status="delivered"
    )

    read = client.post("/notifications/notif-1/read")
    dismiss = client.post("/notifications/notif-1/dismiss")
    missing = client.post("/notifications/nope/read")

    assert read.status_code == 200
    assert read.json()["status"] == "read"
    assert dismiss.status_code == 409
    assert missing.status_code == 404


def test_notification_analytics_days_bounds(client):
    assert client.get("/notifications/analytics", params={"days": 0}).status_code == 422
    assert client.get("/notifications/analytics", params={"days": 7}).status_code == 200


def test_delegation_opportunity(client, delegation_repo, fake_llm, make_message, make_member):
    fake_llm.available = False
    delegation_repo.messages["msg-1"] = make_message(priority_score=45)
    delegation_repo.members = [make_member("dana"), make_member("eli", skills=["email"])]

    response = client.get("/delegation/messages/msg-1")

    assert response.status_code == 200
    data = response.json()
    assert data["should_delegate"] is True
    assert [d["id"] for d in data["suggested_delegates"]] == ["eli", "dana"]


def test_delegation_task_flow(client, delegation_repo, make_message, make_member):
    delegation_repo.messages["msg-1"] = make_message()
    delegation_repo.members = [make_member("dana")]

    created = client.post(
        "/delegation/tasks", json={"message_id": "msg-1", "delegated_to": "dana"}
    )
    task_id = created.json()["id"]
    accepted = client.patch(f"/delegation/tasks/{task_id}", json={"status": "accepted"})
    skipped = client.patch(f"/delegation/tasks/{task_id}", json={"status": "completed"})

    assert created.status_code == 201
    assert accepted.json()["status"] == "accepted"
    assert skipped.status_code == 409


def test_delegation_errors(client, delegation_repo):
    delegation_repo.tasks["task-1"] = DelegationTask(
        id="task-1", user_id="user-123", message_id="m", delegated_to="d", delegated_by="user-123"
    )

    unknown_message = client.post(
        "/delegation/tasks", json={"message_id": "nope", "delegated_to": "dana"}
    )
    bad_status = client.patch("/delegation/tasks/task-1", json={"status": "finished"})
    unknown_task = client.patch("/delegation/tasks/nope", json={"status": "accepted"})

    assert unknown_message.status_code == 404
    assert bad_status.status_code == 422
    assert unknown_task.status_code == 404


def test_delegation_analytics(client):
    response = client.get("/delegation/analytics")

    assert response.status_code == 200
    assert response.json()["total_tasks"] == 0


def test_preferences_round_trip(client, notification_repo):
    initial = client.get("/notifications/preferences")
    saved = client.put(
        "/notifications/preferences",
        json={"channels": {"sms": {"enabled": True, "target": "+15550100"}}},
    )
    again = client.get("/notifications/preferences")

    assert initial.status_code == 200
    assert initial.json()["channels"]["sms"]["enabled"] is False
    assert saved.status_code == 200
    assert saved.json()["channels"]["sms"]["target"] == "+15550100"
    assert saved.json()["channels"]["push"]["enabled"] is True
    assert again.json() == saved.json()


def test_preferences_validation_and_outage(client, notification_repo):
    unknown_channel = client.put(
        "/notifications/preferences", json={"channels": {"fax": {"enabled": True}}}
    )
    notification_repo.fail.add("upsert_preferences")
    outage = client.put("/notifications/preferences", json={"batch_delivery": {"enabled": True}})

    assert unknown_channel.status_code == 422
    assert outage.status_code == 503


def test_notification_digest(client, notification_repo):
    notification_repo.notifications["notif-1"] = SmartNotification(
        id="notif-1",
        user_id="user-123",
        title="Offer",
        content="From Alice",
        priority="critical",
        intelligence_data={"overall_score": 92},
    )

    response = client.get("/notifications/digest", params={"timeframe": "daily"})
    invalid = client.get("/notifications/digest", params={"timeframe": "monthly"})

    assert response.status_code == 200
    data = response.json()
    assert data["total_notifications"] == 1
    assert data["priority_distribution"]["critical"] == 1
    assert data["priority_items"][0]["id"] == "notif-1"
    assert invalid.status_code == 422


def test_vip_contacts(client, prioritization_repo):
    created = client.post(
        "/vip/contacts", json={"email": "CEO@example.com", "name": "Cora", "priority_level": 8}
    )
    upserted = client.post("/vip/contacts", json={"email": "ceo@example.com", "priority_level": 10})
    contact_id = created.json()["id"]
    patched = client.patch(f"/vip/contacts/{contact_id}", json={"notes": "Board member"})
    missing = client.patch("/vip/contacts/vip-99", json={"notes": "?"})
    out_of_range = client.post("/vip/contacts", json={"email": "a@b.com", "priority_level": 11})
    listed = client.get("/vip/contacts")

    assert created.status_code == 201
    assert upserted.json()["id"] == contact_id
    assert patched.json()["notes"] == "Board member"
    assert patched.json()["priority_level"] == 10
    assert missing.status_code == 404
    assert out_of_range.status_code == 422
    assert [c["email"] for c in listed.json()] == ["ceo@example.com"]


def test_vip_rules(client):
    created = client.post(
        "/vip/rules",
        json={
            "name": "Board domain",
            "conditions": [{"type": "email_domain", "operator": "equals", "value": "board.com"}],
            "actions": [{"type": "set_priority_level", "value": 9}],
        },
    )
    empty = client.post("/vip/rules", json={"name": "Nothing", "conditions": []})
    listed = client.get("/vip/rules")

    assert created.status_code == 201
    assert empty.status_code == 422
    assert [r["name"] for r in listed.json()] == ["Board domain"]


def test_vip_store_outage(client, prioritization_repo):
    prioritization_repo.fail.add("list_vip_contacts")

    assert client.get("/vip/contacts").status_code == 503


def test_delegation_task_listing(client, delegation_repo, make_message, make_member):
    delegation_repo.messages["msg-1"] = make_message()
    delegation_repo.members = [make_member("dana")]
    first = client.post("/delegation/tasks", json={"message_id": "msg-1", "delegated_to": "dana"})
    client.post("/delegation/tasks", json={"message_id": "msg-1", "delegated_to": "dana"})
    client.patch(f"/delegation/tasks/{first.json()['id']}", json={"status": "rejected"})

    everything = client.get("/delegation/tasks")
    rejected = client.get("/delegation/tasks", params={"status": "rejected"})
    invalid = client.get("/delegation/tasks", params={"status": "lost"})

    assert len(everything.json()) == 2
    assert [t["id"] for t in rejected.json()] == [first.json()["id"]]
    assert invalid.status_code == 422


def test_delegation_team_and_rules(client, delegation_repo):
    added = client.post(
        "/delegation/team-members",
        json={"name": "Fay", "email": "fay@example.com", "skills": ["finance"]},
    )
    member_id = added.json()["id"]
    team = client.get("/delegation/team-members")
    rule = client.post(
        "/delegation/rules",
        json={
            "name": "Invoices to Fay",
            "conditions": [{"type": "subject", "operator": "contains", "value": "invoice"}],
            "delegate_to": member_id,
        },
    )
    orphan = client.post(
        "/delegation/rules",
        json={
            "name": "Invoices",
            "conditions": [{"type": "subject", "operator": "contains", "value": "invoice"}],
            "delegate_to": "ghost",
        },
    )

    assert added.status_code == 201
    assert [m["id"] for m in team.json()] == [member_id]
    assert rule.status_code == 201
    assert rule.json()["delegate_to"] == member_id
    assert orphan.status_code == 404
