import pytest

from napoleon.features.delegation import DelegationError, DelegationMatcher, matching_rule
from napoleon.features.delegation.domain import (
    DelegationRule,
    DelegationTask,
    InvalidDelegationTransition,
)
from napoleon.features.delegation.service import assessment_from_payload


def test_score_member_formula(make_message, make_member):
    member = make_member(
        "dana",
        skills=["Email", "finance"],
        availability={"status": "busy", "current_load": 90},
        workload={"current": 4, "capacity": 10},
        delegation_history={"completion_rate": 90, "avg_response_time": 30},
    )

    score = DelegationMatcher().score_member(make_message(platform="gmail"), member)

    # busy 20 + (100-40)*0.3 + 90*0.2 + (100-30)*0.1 + email skill 20
    assert score == pytest.approx(20 + 18 + 18 + 7 + 20)


def test_open_tasks_lower_the_score(make_message, make_member):
    idle = make_member("idle", workload={"current": 0, "capacity": 10})
    swamped = make_member("swamped", workload={"current": 10, "capacity": 10})

    ranked = DelegationMatcher().rank(make_message(), [swamped, idle])

    assert [c.member.id for c in ranked] == ["idle", "swamped"]
    assert ranked[0].score - ranked[1].score == pytest.approx(30)


def test_zero_capacity_uses_availability_load(make_message, make_member):
    member = make_member(
        "temp",
        availability={"status": "available", "current_load": 50},
        workload={"current": 3, "capacity": 0},
    )

    # available 50 + (100-50)*0.3 + 0 + (100-100)*0.1
    assert DelegationMatcher().score_member(make_message(), member) == pytest.approx(65)


@pytest.mark.parametrize("raw, expected", [(250, 100), (-40, 0), ("n/a", 0), ("85", 85)])
def test_completion_rate_is_clamped(make_member, raw, expected):
    member = make_member("dana", delegation_history={"completion_rate": raw})

    assert member.delegation_history.completion_rate == expected


def test_slow_responders_are_clamped(make_message, make_member):
    member = make_member(
        "slow",
        availability={"status": "offline", "current_load": 0},
        delegation_history={"completion_rate": 0, "avg_response_time": 900},
    )

    assert DelegationMatcher().score_member(make_message(), member) == pytest.approx(30)


def test_rank_is_stable_for_ties(make_message, make_member):
    members = [make_member("first"), make_member("second"), make_member("third", skills=["slack"])]

    ranked = DelegationMatcher().rank(make_message(platform="slack"), members)

    assert [c.member.id for c in ranked] == ["third", "first", "second"]
    assert ranked[1].score == ranked[2].score


def test_rank_keeps_everyone(make_message, make_member):
    members = [
        make_member(f"m{i}", availability={"status": "away", "current_load": 100}) for i in range(5)
    ]

    assert len(DelegationMatcher().rank(make_message(), members)) == 5


def _rule(rule_id, priority, conditions, is_active=True):
    return DelegationRule.model_validate(
        {
            "id": rule_id,
            "user_id": "user-123",
            "name": rule_id,
            "priority": priority,
            "is_active": is_active,
            "conditions": conditions,
            "delegate_to": "dana",
        }
    )


def test_matching_rule_picks_highest_priority(make_message):
    rules = [
        _rule("subject", 1, [{"type": "subject", "operator": "contains", "value": "QUARTERLY"}]),
        _rule("platform", 3, [{"type": "platform", "operator": "in", "value": ["gmail", "slack"]}]),
        _rule("disabled", 9, [], is_active=False),
    ]

    assert matching_rule(rules, make_message()).id == "platform"


def test_matching_rule_not_equals_and_numbers(make_message):
    rules = [
        _rule(
            "r",
            1,
            [
                {"type": "sender", "operator": "not_equals", "value": "ALICE@example.com"},
                {"type": "time", "operator": "less_than", "value": 12},
            ],
        )
    ]

    assert matching_rule(rules, make_message()) is None


def test_assessment_payload_is_clamped():
    assessment = assessment_from_payload(
        {"confidence": 3, "estimatedTime": "-5", "businessImpact": "epic", "reasoning": "One reason"}
    )

    assert assessment.confidence == 1.0
    assert assessment.estimated_minutes == 0
    assert assessment.business_impact == "medium"
    assert assessment.reasoning == ["One reason"]


@pytest.mark.asyncio
async def test_llm_confidence_drives_recommendation(
    delegation_service, delegation_repo, fake_llm, make_message, make_member
):
    delegation_repo.members = [make_member(f"m{i}") for i in range(5)]
    fake_llm.responses["delegation-analysis"] = {
        "confidence": 0.9,
        "reasoning": ["Routine vendor follow-up"],
        "estimatedTime": 20,
        "businessImpact": "low",
        "suggestedRole": "Operations",
    }

    opportunity = await delegation_service.analyze_opportunity(
        make_message(priority_score=85), "user-123"
    )

    assert opportunity.should_delegate is True
    assert opportunity.confidence == 0.9
    assert opportunity.estimated_minutes == 20
    assert opportunity.suggested_role == "Operations"
    assert [c.member.id for c in opportunity.suggested_delegates] == ["m0", "m1", "m2"]


@pytest.mark.asyncio
async def test_llm_failure_falls_back(delegation_service, make_message):
    opportunity = await delegation_service.analyze_opportunity(
        make_message(priority_score=85), "user-123"
    )

    assert opportunity.should_delegate is False
    assert opportunity.confidence == 0.0
    assert opportunity.reasoning == ["AI analysis failed"]
    assert opportunity.estimated_minutes == 60
    assert opportunity.business_impact == "medium"
    assert opportunity.suggested_delegates == []


@pytest.mark.asyncio
async def test_lower_tiers_are_delegated(delegation_service, fake_llm, make_message):
    fake_llm.available = False

    opportunity = await delegation_service.analyze_opportunity(
        make_message(priority_score=45), "user-123"
    )

    assert opportunity.should_delegate is True


@pytest.mark.asyncio
async def test_rule_match_forces_full_confidence(
    delegation_service, delegation_repo, fake_llm, make_message
):
    fake_llm.available = False
    delegation_repo.rules = [
        _rule("finance", 1, [{"type": "content", "operator": "contains", "value": "numbers"}])
    ]

    opportunity = await delegation_service.analyze_opportunity(
        make_message(priority_score=95), "user-123"
    )

    assert opportunity.should_delegate is True
    assert opportunity.confidence == 1.0
    assert opportunity.matched_rule_id == "finance"
    assert "Matched delegation rule: finance" in opportunity.reasoning


@pytest.mark.asyncio
async def test_task_lifecycle_adjusts_workload(
    delegation_service, delegation_repo, make_message, make_member
):
    delegation_repo.messages["msg-1"] = make_message(priority_score=65)
    delegation_repo.members = [make_member("dana")]

    task = await delegation_service.create_task(
        "msg-1", "user-123", "dana", instructions="Draft a reply"
    )

    assert task.status == "pending"
    assert task.priority == "high"
    assert task.context["subject"] == "Quarterly numbers"

    await delegation_service.update_task_status(task.id, "user-123", "accepted")
    await delegation_service.update_task_status(task.id, "user-123", "in_progress")
    done = await delegation_service.update_task_status(
        task.id, "user-123", "completed", response="Sent"
    )

    assert done.status == "completed"
    assert done.completed_at is not None
    assert done.response == "Sent"
    assert delegation_repo.workload_changes == [("dana", 1), ("dana", -1)]


@pytest.mark.asyncio
async def test_escalation_frees_the_slot(
    delegation_service, delegation_repo, make_message, make_member
):
    delegation_repo.messages["msg-1"] = make_message()
    delegation_repo.members = [make_member("dana")]
    task = await delegation_service.create_task("msg-1", "user-123", "dana", instructions="")

    escalated = await delegation_service.update_task_status(task.id, "user-123", "escalated")

    assert escalated.escalated_at is not None
    assert delegation_repo.workload_changes == [("dana", 1), ("dana", -1)]
    assert delegation_repo.members[0].workload.current == 0


@pytest.mark.asyncio
async def test_assigned_tasks_push_member_down_the_ranking(
    delegation_service, delegation_repo, fake_llm, make_message, make_member
):
    fake_llm.available = False
    delegation_repo.messages["msg-1"] = make_message()
    delegation_repo.members = [make_member("dana"), make_member("eli")]

    before = await delegation_service.analyze_opportunity(make_message(), "user-123")
    for _ in range(3):
        await delegation_service.create_task("msg-1", "user-123", "dana", instructions="")
    after = await delegation_service.analyze_opportunity(make_message(), "user-123")

    assert [c.member.id for c in before.suggested_delegates] == ["dana", "eli"]
    assert [c.member.id for c in after.suggested_delegates] == ["eli", "dana"]


@pytest.mark.asyncio
async def test_invalid_transition_rejected(delegation_service, delegation_repo, make_message, make_member):
    delegation_repo.messages["msg-1"] = make_message()
    delegation_repo.members = [make_member("dana")]
    task = await delegation_service.create_task(
        "msg-1", "user-123", "dana", instructions="", auto_accept=True
    )

    assert task.status == "accepted"
    with pytest.raises(InvalidDelegationTransition):
        await delegation_service.update_task_status(task.id, "user-123", "completed")


@pytest.mark.asyncio
async def test_create_task_for_unknown_member(delegation_service, delegation_repo, make_message):
    delegation_repo.messages["msg-1"] = make_message()

    with pytest.raises(DelegationError):
        await delegation_service.create_task("msg-1", "user-123", "ghost", instructions="")


@pytest.mark.parametrize("terminal", ["completed", "escalated", "rejected"])
def test_terminal_states_have_no_exit(terminal):
    task = DelegationTask(
        user_id="u", message_id="m", delegated_to="d", delegated_by="u", status=terminal
    )

    with pytest.raises(InvalidDelegationTransition):
        task.transition("pending")


@pytest.mark.asyncio
async def test_analytics(delegation_service, delegation_repo, make_member):
    delegation_repo.members = [
        make_member("dana", workload={"current": 3, "capacity": 10}),
        make_member("eli", workload={"current": 1, "capacity": 10}),
    ]
    delegation_repo.tasks = {
        "t1": DelegationTask(
            id="t1", user_id="user-123", message_id="m1", delegated_to="dana",
            delegated_by="user-123", status="in_progress",
        ),
        "t2": DelegationTask(
            id="t2", user_id="user-123", message_id="m2", delegated_to="dana",
            delegated_by="user-123", status="completed",
            created_at="2026-10-19T10:00:00+00:00", completed_at="2026-10-19T13:00:00+00:00",
        ),
    }

    analytics = await delegation_service.get_analytics("user-123")

    assert analytics.total_tasks == 2
    assert analytics.active_tasks == 1
    assert analytics.completed_tasks == 1
    assert analytics.avg_completion_hours == 3.0
    assert analytics.team_utilization == 20.0
    assert analytics.member_task_counts == {"dana": 2}


@pytest.mark.asyncio
async def test_list_tasks_filters_by_status(
    delegation_service, delegation_repo, make_message, make_member
):
    delegation_repo.messages["msg-1"] = make_message()
    delegation_repo.members = [make_member("dana")]
    first = await delegation_service.create_task("msg-1", "user-123", "dana", instructions="")
    second = await delegation_service.create_task("msg-1", "user-123", "dana", instructions="")
    await delegation_service.update_task_status(first.id, "user-123", "rejected")

    everything = await delegation_service.list_tasks("user-123")
    pending = await delegation_service.list_tasks("user-123", ["pending"])
    unfiltered = await delegation_service.list_tasks("user-123", [])

    assert [t.id for t in everything] == [second.id, first.id]
    assert [t.id for t in pending] == [second.id]
    assert len(unfiltered) == 2


@pytest.mark.asyncio
async def test_add_team_member(delegation_service, delegation_repo):
    member = await delegation_service.add_team_member(
        "user-123",
        {"id": "forged", "name": "Fay", "email": "fay@example.com", "skills": ["finance"]},
    )

    assert member.id == "member-1"
    assert member.user_id == "user-123"
    assert [m.name for m in await delegation_service.list_team("user-123")] == ["Fay"]


@pytest.mark.asyncio
async def test_create_rule_for_known_delegate(delegation_service, delegation_repo, make_member):
    delegation_repo.members = [make_member("dana")]

    rule = await delegation_service.create_rule(
        "user-123",
        {
            "name": "Invoices to Dana",
            "conditions": [{"type": "subject", "operator": "contains", "value": "invoice"}],
            "delegate_to": "dana",
        },
    )

    assert rule.id == "rule-1"
    assert delegation_repo.rules == [rule]


@pytest.mark.asyncio
async def test_create_rule_for_unknown_delegate(delegation_service, delegation_repo):
    with pytest.raises(DelegationError):
        await delegation_service.create_rule(
            "user-123",
            {
                "name": "Invoices",
                "conditions": [{"type": "subject", "operator": "contains", "value": "invoice"}],
                "delegate_to": "ghost",
            },
        )

    assert delegation_repo.rules == []
