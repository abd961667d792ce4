import pytest

from napoleon.features.prioritization.domain import VipContact, VipRule
from napoleon.features.prioritization.vip import VipClassifier, boost_for_level


@pytest.mark.parametrize(
    "level, boost",
    [(10, 25), (9, 20), (8, 18), (7, 15), (6, 12), (5, 10), (3, 10), (1, 10)],
)
def test_boost_for_level(level, boost):
    assert boost_for_level(level) == boost


def test_classify_matches_email_case_insensitively(make_contact):
    contacts = [make_contact(email="CEO@Example.com", priority_level=9, notes="Board member")]

    result = VipClassifier().classify("ceo@example.COM", contacts)

    assert result.is_vip is True
    assert result.boost == 20
    assert result.is_board_member is True
    assert result.is_investor is False


def test_classify_unknown_sender_is_standard(make_contact):
    result = VipClassifier().classify("stranger@example.com", [make_contact()])

    assert result.is_vip is False
    assert result.boost == 0
    assert result.relationship == "standard"


def test_out_of_range_priority_level_is_clamped():
    assert VipContact(user_id="u", email="a@b.com", priority_level=42).priority_level == 10
    assert VipContact(user_id="u", email="a@b.com", priority_level=-3).priority_level == 1
    assert VipContact(user_id="u", email="a@b.com", priority_level="high").priority_level == 5


def _rule(rule_id, priority, conditions, actions=(), is_active=True):
    return VipRule.model_validate(
        {
            "id": rule_id,
            "user_id": "user-123",
            "name": f"Rule {rule_id}",
            "priority": priority,
            "is_active": is_active,
            "conditions": conditions,
            "actions": list(actions),
        }
    )


def test_match_rule_prefers_highest_priority(make_message):
    message = make_message(sender_email="partner@acme.com")
    low = _rule("low", 1, [{"type": "email_domain", "operator": "equals", "value": "acme.com"}])
    high = _rule("high", 5, [{"type": "email_domain", "operator": "equals", "value": "ACME.com"}])

    assert VipClassifier().match_rule(message, [low, high]).id == "high"


def test_match_rule_requires_every_condition(make_message):
    message = make_message(sender_email="partner@acme.com", subject="Lunch")
    rule = _rule(
        "r1",
        1,
        [
            {"type": "email_domain", "operator": "ends_with", "value": "acme.com"},
            {"type": "keyword", "operator": "contains", "value": "term sheet"},
        ],
    )

    assert VipClassifier().match_rule(message, [rule]) is None


def test_match_rule_skips_inactive_rules(make_message):
    message = make_message(sender_email="partner@acme.com")
    rule = _rule(
        "r1",
        1,
        [{"type": "email_address", "operator": "equals", "value": "partner@acme.com"}],
        is_active=False,
    )

    assert VipClassifier().match_rule(message, [rule]) is None


def test_invalid_regex_never_matches(make_message):
    message = make_message()
    rule = _rule("r1", 1, [{"type": "sender_name", "operator": "regex", "value": "(unclosed"}])

    assert VipClassifier().match_rule(message, [rule]) is None


def test_contact_from_rule_applies_actions(make_message):
    message = make_message(sender_email="Investor@Fund.com", sender_name="Ivy")
    rule = _rule(
        "r1",
        1,
        [{"type": "email_domain", "operator": "equals", "value": "fund.com"}],
        actions=[
            {"type": "set_priority_level", "value": 9},
            {"type": "set_relationship", "value": "investor"},
            {"type": "add_note", "value": "Series B lead"},
        ],
    )

    contact = VipClassifier().contact_from_rule(message, rule)

    assert contact.email == "investor@fund.com"
    assert contact.priority_level == 9
    assert contact.relationship_type == "investor"
    assert contact.notes == "Auto-classified by rule: Rule r1; Series B lead"
