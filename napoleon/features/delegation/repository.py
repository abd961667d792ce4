"""
Persistence layer for delegation: team members, rules and delegated tasks.
"""

from psycopg.types.json import Jsonb

from napoleon.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one
from napoleon.features.delegation.domain import DelegationRule, DelegationTask, TeamMember
from napoleon.features.prioritization.domain import Message
from napoleon.features.prioritization.repository import PrioritizationRepository
from napoleon.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DelegationRepositoryError(DatabaseError):
    """More specific exception for repository failures."""


class DelegationRepository:
    MEMBER_SELECT_COLUMNS = """
        id, user_id, name, email, role, department, skills, availability,
        workload_current, workload_capacity, delegation_history, is_active
    """

    TASK_SELECT_COLUMNS = """
        id, user_id, message_id, delegated_to, delegated_by, status, priority, due_date,
        instructions, context, response, feedback, completed_at, escalated_at, created_at
    """

    @classmethod
    def _row_to_member(cls, row: dict | None) -> TeamMember | None:
        if not row:
            return None
        return TeamMember.model_validate(
            {
                **row,
                "availability": row.get("availability") or {},
                "delegation_history": row.get("delegation_history") or {},
                "workload": {
                    "current": row.get("workload_current") or 0,
                    "capacity": row.get("workload_capacity") or 10,
                },
            }
        )

    @classmethod
    async def get_message(cls, message_id: str, user_id: str) -> Message | None:
        return await PrioritizationRepository.get_message(message_id, user_id)

    @classmethod
    async def list_team_members(cls, user_id: str) -> list[TeamMember]:
        query = f"""
            SELECT {cls.MEMBER_SELECT_COLUMNS}
            FROM team_members
            WHERE user_id = %s AND is_active = TRUE
            ORDER BY created_at
        """
        rows = await fetch_all(query, (user_id,))
        return [cls._row_to_member(row) for row in rows]

    @classmethod
    async def get_team_member(cls, member_id: str, user_id: str) -> TeamMember | None:
        query = f"""
            SELECT {cls.MEMBER_SELECT_COLUMNS}
            FROM team_members
            WHERE id = %s AND user_id = %s
        """
        return cls._row_to_member(await fetch_one(query, (member_id, user_id)))

    @classmethod
    async def insert_team_member(cls, member: TeamMember) -> TeamMember:
        data = member.model_dump(mode="json")
        query = f"""
            INSERT INTO team_members (
                user_id, name, email, role, department, skills, availability,
                workload_current, workload_capacity, delegation_history, is_active
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {cls.MEMBER_SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                member.user_id,
                member.name,
                member.email.strip().lower(),
                member.role,
                member.department,
                Jsonb(data["skills"]),
                Jsonb(data["availability"]),
                member.workload.current,
                member.workload.capacity,
                Jsonb(data["delegation_history"]),
                member.is_active,
            ),
        )
        if not row:
            raise DelegationRepositoryError(
                "Failed to create team member", operation="insert_team_member"
            )
        return cls._row_to_member(row)

    @classmethod
    async def adjust_workload(cls, member_id: str, user_id: str, change: int) -> None:
        query = """
            UPDATE team_members
            SET workload_current = GREATEST(0, workload_current + %s),
                updated_at = NOW()
            WHERE id = %s AND user_id = %s
        """
        await execute_query(query, (change, member_id, user_id))

    @classmethod
    async def list_active_rules(cls, user_id: str) -> list[DelegationRule]:
        query = """
            SELECT id, user_id, name, description, is_active, priority, conditions,
                   delegate_to, approval_required
            FROM delegation_rules
            WHERE user_id = %s AND is_active = TRUE
            ORDER BY priority DESC
        """
        rows = await fetch_all(query, (user_id,))

        rules: list[DelegationRule] = []
        for row in rows:
            try:
                rules.append(DelegationRule.model_validate(row))
            except ValueError as e:
                logger.warning(
                    "Skipping invalid delegation rule", rule_id=str(row.get("id")), error=str(e)
                )
        return rules

    @classmethod
    async def insert_rule(cls, rule: DelegationRule) -> DelegationRule:
        data = rule.model_dump(mode="json")
        query = """
            INSERT INTO delegation_rules (
                user_id, name, description, is_active, priority, conditions,
                delegate_to, approval_required
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id, user_id, name, description, is_active, priority, conditions,
                      delegate_to, approval_required
        """
        row = await fetch_one(
            query,
            (
                rule.user_id,
                rule.name,
                rule.description,
                rule.is_active,
                rule.priority,
                Jsonb(data["conditions"]),
                rule.delegate_to,
                rule.approval_required,
            ),
        )
        if not row:
            raise DelegationRepositoryError("Failed to create delegation rule", operation="insert_rule")
        return DelegationRule.model_validate(row)

    # =================================================================
    # TASKS
    # =================================================================

    @classmethod
    async def insert_task(cls, task: DelegationTask) -> DelegationTask:
        query = f"""
            INSERT INTO delegation_tasks (
                user_id, message_id, delegated_to, delegated_by, status, priority,
                due_date, instructions, context
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {cls.TASK_SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                task.user_id,
                task.message_id,
                task.delegated_to,
                task.delegated_by,
                task.status,
                task.priority,
                task.due_date,
                task.instructions,
                Jsonb(task.context),
            ),
        )
        if not row:
            raise DelegationRepositoryError("Failed to create delegation task", operation="insert_task")
        return DelegationTask.model_validate(row)

    @classmethod
    async def get_task(cls, task_id: str, user_id: str) -> DelegationTask | None:
        query = f"""
            SELECT {cls.TASK_SELECT_COLUMNS}
            FROM delegation_tasks
            WHERE id = %s AND user_id = %s
        """
        row = await fetch_one(query, (task_id, user_id))
        return DelegationTask.model_validate(row) if row else None

    @classmethod
    async def update_task(cls, task: DelegationTask) -> None:
        query = """
            UPDATE delegation_tasks
            SET status = %s,
                response = %s,
                feedback = %s,
                completed_at = %s,
                escalated_at = %s,
                updated_at = NOW()
            WHERE id = %s AND user_id = %s
        """
        await execute_query(
            query,
            (
                task.status,
                task.response,
                task.feedback,
                task.completed_at,
                task.escalated_at,
                task.id,
                task.user_id,
            ),
        )

    @classmethod
    async def list_tasks(
        cls, user_id: str, statuses: list[str] | None = None
    ) -> list[DelegationTask]:
        """Tasks the user delegated, newest first, optionally limited to some statuses."""
        query = f"""
            SELECT {cls.TASK_SELECT_COLUMNS}
            FROM delegation_tasks
            WHERE delegated_by = %s
              AND (%s::text[] IS NULL OR status::text = ANY(%s::text[]))
            ORDER BY created_at DESC
        """
        rows = await fetch_all(query, (user_id, statuses, statuses))
        return [DelegationTask.model_validate(row) for row in rows]
