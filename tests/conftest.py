from datetime import UTC, datetime

import pytest

from napoleon.auth.verify import auth_dependency
from napoleon.db.helpers import DatabaseError
from napoleon.features.delegation import DelegationService
from napoleon.features.delegation.domain import DelegationTask, TeamMember
from napoleon.features.notifications import NotificationService
from napoleon.features.notifications.channels import LogChannelSender
from napoleon.features.prioritization import MessageAnalysisService
from napoleon.features.prioritization.batch import InMemoryBatchRateLimiter
from napoleon.features.prioritization.domain import Message, VipContact
from napoleon.services.openai_service import LLMResponse, LLMServiceError

FIXED_NOW = datetime(2026, 10, 19, 14, 0, tzinfo=UTC)


# =================================================================
# LLM AND TEMPLATES
# =================================================================


class FakeLLM:
    """Answers by template name; a missing entry behaves like an LLM failure."""

    def __init__(self):
        self.available = True
        self.model = "gpt-4o"
        self.responses: dict[str, dict | Exception] = {}
        self.calls: list[dict] = []

    async def complete_json(self, prompt, *, temperature, max_tokens, timeout=None, system=None):
        self.calls.append({"template": prompt, "timeout": timeout, "max_tokens": max_tokens})
        response = self.responses.get(prompt)
        if response is None:
            raise LLMServiceError(f"No fake response for {prompt}")
        if isinstance(response, Exception):
            raise response
        return LLMResponse(data=response, tokens_used=100, model=self.model)


class FakeTemplates:
    """Renders every template to its own name so FakeLLM can route on it."""

    def __init__(self):
        self.rendered: list[tuple[str, dict]] = []

    def render(self, template_name, variables):
        self.rendered.append((template_name, dict(variables)))
        return template_name


class FakeClock:
    def __init__(self, start: float = 1_760_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =================================================================
# REPOSITORIES
# =================================================================


class _FailingRepository:
    def __init__(self):
        self.fail: set[str] = set()

    def _check(self, operation: str) -> None:
        if operation in self.fail:
            raise DatabaseError(f"{operation} failed", operation=operation)


class FakePrioritizationRepository(_FailingRepository):
    def __init__(self):
        super().__init__()
        self.messages: dict[str, Message] = {}
        self.vip_contacts: list[VipContact] = []
        self.vip_rules: list = []
        self.upserted_contacts: list[VipContact] = []
        self.analyses: list[dict] = []
        self.action_items: list[tuple[str, list]] = []
        self.logs: list[dict] = []
        self.pending_action_items = 0
        self.get_message_calls = 0

    def add(self, *messages: Message) -> None:
        for message in messages:
            self.messages[message.id] = message

    async def get_message(self, message_id, user_id):
        self.get_message_calls += 1
        self._check("get_message")
        message = self.messages.get(message_id)
        return message if message and message.user_id == user_id else None

    async def list_recent_messages(self, user_id, since, limit=20):
        self._check("list_recent_messages")
        recent = [
            m
            for m in self.messages.values()
            if m.user_id == user_id and m.message_date and m.message_date >= since
        ]
        return sorted(recent, key=lambda m: m.priority_score, reverse=True)[:limit]

    async def list_vip_contacts(self, user_id):
        self._check("list_vip_contacts")
        return [c for c in self.vip_contacts if c.user_id == user_id]

    async def upsert_vip_contact(self, contact):
        self._check("upsert_vip_contact")
        self.upserted_contacts.append(contact)
        email = contact.email.lower()
        for i, existing in enumerate(self.vip_contacts):
            if existing.user_id == contact.user_id and existing.email.lower() == email:
                stored = contact.model_copy(update={"id": existing.id, "email": email})
                self.vip_contacts[i] = stored
                return stored
        stored = contact.model_copy(
            update={"id": f"vip-{len(self.vip_contacts) + 1}", "email": email}
        )
        self.vip_contacts.append(stored)
        return stored

    async def get_vip_contact(self, contact_id, user_id):
        self._check("get_vip_contact")
        return next(
            (c for c in self.vip_contacts if c.id == contact_id and c.user_id == user_id), None
        )

    async def update_vip_contact(self, contact):
        self._check("update_vip_contact")
        self.vip_contacts = [contact if c.id == contact.id else c for c in self.vip_contacts]
        return contact

    async def list_vip_rules(self, user_id):
        self._check("list_vip_rules")
        return list(self.vip_rules)

    async def insert_vip_rule(self, rule):
        self._check("insert_vip_rule")
        stored = rule.model_copy(update={"id": f"vip-rule-{len(self.vip_rules) + 1}"})
        self.vip_rules.append(stored)
        return stored

    async def update_message_analysis(
        self, message_id, user_id, *, priority_score, ai_summary, is_vip, sentiment
    ):
        self._check("update_message_analysis")
        self.analyses.append(
            {
                "message_id": message_id,
                "user_id": user_id,
                "priority_score": priority_score,
                "ai_summary": ai_summary,
                "is_vip": is_vip,
                "sentiment": sentiment,
            }
        )

    async def insert_action_items(self, message_id, user_id, items):
        self._check("insert_action_items")
        self.action_items.append((message_id, list(items)))

    async def count_pending_action_items(self, user_id):
        self._check("count_pending_action_items")
        return self.pending_action_items

    async def insert_processing_log(self, log):
        self._check("insert_processing_log")
        self.logs.append(log)

    async def list_processing_logs(self, user_id, start, end):
        self._check("list_processing_logs")
        return [
            log
            for log in self.logs
            if log["user_id"] == user_id and log.get("operation_type") == "message_analysis"
        ]


class FakeNotificationRepository(_FailingRepository):
    def __init__(self):
        super().__init__()
        self.preferences: dict = {}
        self.rules: list = []
        self.notifications: dict = {}
        self.status_updates: list[tuple[str, str]] = []

    async def get_preferences(self, user_id):
        self._check("get_preferences")
        return self.preferences.get(user_id)

    async def upsert_preferences(self, preferences):
        self._check("upsert_preferences")
        self.preferences[preferences.user_id] = preferences

    async def list_active_rules(self, user_id):
        self._check("list_active_rules")
        return [r for r in self.rules if r.is_active]

    async def insert_notification(self, notification):
        self._check("insert_notification")
        stored = notification.model_copy(
            update={"id": f"notif-{len(self.notifications) + 1}", "created_at": FIXED_NOW}
        )
        self.notifications[stored.id] = stored
        return stored

    async def get_notification(self, notification_id, user_id):
        notification = self.notifications.get(notification_id)
        return notification if notification and notification.user_id == user_id else None

    async def update_notification_status(self, notification):
        self._check("update_notification_status")
        self.status_updates.append((notification.id, notification.status))
        self.notifications[notification.id] = notification

    async def list_due_scheduled(self, now, limit=100):
        self._check("list_due_scheduled")
        due = [
            n
            for n in self.notifications.values()
            if n.status == "scheduled" and n.scheduled_for and n.scheduled_for <= now
        ]
        return sorted(due, key=lambda n: n.scheduled_for)[:limit]

    async def list_notifications_since(self, user_id, since):
        self._check("list_notifications_since")
        return [n for n in self.notifications.values() if n.user_id == user_id]


class FakeDelegationRepository(_FailingRepository):
    def __init__(self):
        super().__init__()
        self.messages: dict[str, Message] = {}
        self.members: list[TeamMember] = []
        self.rules: list = []
        self.tasks: dict[str, DelegationTask] = {}
        self.workload_changes: list[tuple[str, int]] = []

    async def get_message(self, message_id, user_id):
        self._check("get_message")
        message = self.messages.get(message_id)
        return message if message and message.user_id == user_id else None

    async def list_team_members(self, user_id):
        self._check("list_team_members")
        return [m for m in self.members if m.user_id == user_id and m.is_active]

    async def get_team_member(self, member_id, user_id):
        return next((m for m in self.members if m.id == member_id and m.user_id == user_id), None)

    async def adjust_workload(self, member_id, user_id, change):
        self._check("adjust_workload")
        self.workload_changes.append((member_id, change))
        for member in self.members:
            if member.id == member_id and member.user_id == user_id:
                member.workload.current = max(0, member.workload.current + change)

    async def list_active_rules(self, user_id):
        self._check("list_active_rules")
        return list(self.rules)

    async def insert_team_member(self, member):
        self._check("insert_team_member")
        stored = member.model_copy(update={"id": f"member-{len(self.members) + 1}"})
        self.members.append(stored)
        return stored

    async def insert_rule(self, rule):
        self._check("insert_rule")
        stored = rule.model_copy(update={"id": f"rule-{len(self.rules) + 1}"})
        self.rules.append(stored)
        return stored

    async def insert_task(self, task):
        stored = task.model_copy(update={"id": f"task-{len(self.tasks) + 1}", "created_at": FIXED_NOW})
        self.tasks[stored.id] = stored
        return stored

    async def get_task(self, task_id, user_id):
        task = self.tasks.get(task_id)
        return task.model_copy() if task and task.user_id == user_id else None

    async def update_task(self, task):
        self.tasks[task.id] = task

    async def list_tasks(self, user_id, statuses=None):
        self._check("list_tasks")
        tasks = [
            t
            for t in self.tasks.values()
            if t.delegated_by == user_id and (statuses is None or t.status in statuses)
        ]
        return list(reversed(tasks))


class RecordingSender:
    def __init__(self, channel: str, fail: bool = False):
        self.channel = channel
        self.fail = fail
        self.sent: list = []

    async def send(self, notification, channel_settings):
        if self.fail:
            raise RuntimeError(f"{self.channel} is down")
        self.sent.append(notification)


# =================================================================
# FIXTURES
# =================================================================


@pytest.fixture
def make_message():
    def _make(**overrides) -> Message:
        data = {
            "id": "msg-1",
            "user_id": "user-123",
            "platform": "gmail",
            "sender_email": "alice@example.com",
            "sender_name": "Alice",
            "subject": "Quarterly numbers",
            "content": "Here are the quarterly numbers.",
            "message_date": FIXED_NOW,
        }
        data.update(overrides)
        return Message(**data)

    return _make


@pytest.fixture
def make_contact():
    def _make(**overrides) -> VipContact:
        data = {"user_id": "user-123", "email": "ceo@example.com", "priority_level": 10}
        data.update(overrides)
        return VipContact(**data)

    return _make


@pytest.fixture
def make_member():
    def _make(member_id: str, **overrides) -> TeamMember:
        data = {
            "id": member_id,
            "user_id": "user-123",
            "name": member_id.title(),
            "email": f"{member_id}@example.com",
            "availability": {"status": "available", "current_load": 0},
            "delegation_history": {"completion_rate": 0, "avg_response_time": 100},
        }
        data.update(overrides)
        return TeamMember.model_validate(data)

    return _make


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_templates():
    return FakeTemplates()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def prioritization_repo():
    return FakePrioritizationRepository()


@pytest.fixture
def notification_repo():
    return FakeNotificationRepository()


@pytest.fixture
def delegation_repo():
    return FakeDelegationRepository()


@pytest.fixture
def rate_limiter(clock):
    return InMemoryBatchRateLimiter(max_batches=12, window_seconds=3600, clock=clock)


@pytest.fixture
def analysis_service(prioritization_repo, fake_llm, fake_templates, rate_limiter):
    return MessageAnalysisService(
        prioritization_repo,
        fake_llm,
        fake_templates,
        rate_limiter,
        batch_size=10,
        now=lambda: FIXED_NOW,
    )


@pytest.fixture
def senders():
    return {
        "push": RecordingSender("push"),
        "email": RecordingSender("email"),
        "sms": RecordingSender("sms"),
        "slack": RecordingSender("slack", fail=True),
        "teams": LogChannelSender("teams"),
    }


@pytest.fixture
def notification_service(notification_repo, fake_llm, fake_templates, senders):
    return NotificationService(
        notification_repo, fake_llm, fake_templates, senders, now=lambda: FIXED_NOW
    )


@pytest.fixture
def delegation_service(delegation_repo, fake_llm, fake_templates):
    return DelegationService(
        delegation_repo, fake_llm, fake_templates, top_candidates=3, now=lambda: FIXED_NOW
    )


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": "user-123"}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply
