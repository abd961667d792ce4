import json

import httpx
import pytest

from napoleon.features.notifications import ChannelDeliveryError, build_channel_senders
from napoleon.features.notifications.domain import (
    ChannelSettings,
    NotificationCondition,
    NotificationRule,
    SmartNotification,
)
from napoleon.features.notifications.rules import evaluate_condition, matching_rules


def _notification() -> SmartNotification:
    return SmartNotification(
        id="notif-1", user_id="user-123", title="Urgent: Offer", content="From Alice: offer"
    )


@pytest.mark.asyncio
async def test_slack_webhook_payload():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, text="ok")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        sender = build_channel_senders(client)["slack"]
        await sender.send(_notification(), ChannelSettings(enabled=True, webhook="https://hooks.example/s"))

    assert str(requests[0].url) == "https://hooks.example/s"
    assert json.loads(requests[0].content) == {"text": "*Urgent: Offer*\nFrom Alice: offer"}


@pytest.mark.asyncio
async def test_teams_webhook_payload():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        sender = build_channel_senders(client)["teams"]
        await sender.send(_notification(), ChannelSettings(enabled=True, target="https://hooks.example/t"))

    assert bodies[0]["@type"] == "MessageCard"
    assert bodies[0]["title"] == "Urgent: Offer"


@pytest.mark.asyncio
async def test_webhook_error_status_raises():
    transport = httpx.MockTransport(lambda request: httpx.Response(503))

    async with httpx.AsyncClient(transport=transport) as client:
        sender = build_channel_senders(client)["slack"]
        with pytest.raises(ChannelDeliveryError) as exc_info:
            await sender.send(_notification(), ChannelSettings(enabled=True, target="https://hooks.example/s"))

    assert exc_info.value.channel == "slack"
    assert exc_info.value.recoverable is True


@pytest.mark.asyncio
async def test_webhook_without_target_raises():
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))) as client:
        sender = build_channel_senders(client)["teams"]
        with pytest.raises(ChannelDeliveryError) as exc_info:
            await sender.send(_notification(), None)

    assert exc_info.value.recoverable is False


@pytest.mark.parametrize(
    "operator, expected, value, result",
    [
        ("equals", "SLACK", "slack", True),
        ("contains", "Board", "q3 board pack", True),
        ("in", ["critical", "high"], "high", True),
        ("not_in", ["critical", "high"], "low", True),
        ("greater_than", 17, 18, True),
        ("less_than", 9, 8, True),
        ("greater_than", 17, True, False),
        ("in", "critical", "critical", False),
    ],
)
def test_condition_operators(operator, expected, value, result):
    condition = NotificationCondition(type="priority", operator=operator, value=expected)

    assert evaluate_condition(condition, value) is result


def test_rules_need_a_trigger_and_all_conditions(make_message):
    message = make_message(priority_score=85, message_date="2026-10-19T20:00:00+00:00")
    rules = [
        NotificationRule.model_validate(
            {
                "id": "evening-critical",
                "user_id": "user-123",
                "name": "Evening critical",
                "priority": 1,
                "triggers": [{"type": "high_priority"}],
                "conditions": [{"type": "time", "operator": "greater_than", "value": 18}],
            }
        ),
        NotificationRule.model_validate(
            {
                "id": "vip-only",
                "user_id": "user-123",
                "name": "VIP only",
                "priority": 5,
                "triggers": [{"type": "vip_sender"}],
            }
        ),
        NotificationRule.model_validate(
            {
                "id": "inactive",
                "user_id": "user-123",
                "name": "Inactive",
                "is_active": False,
                "triggers": [{"type": "new_message"}],
            }
        ),
    ]

    assert [r.id for r in matching_rules(rules, message)] == ["evening-critical"]
    assert [r.id for r in matching_rules(rules, message, is_vip=True)] == [
        "vip-only",
        "evening-critical",
    ]
