"""PolicyStore SQLite 实现

提醒策略与升级策略。rules / channels / quiet_hours 以 JSON 文本存储。
默认提醒策略的唯一性由部分唯一索引保证；写入新的默认策略时先清除旧默认值。
"""

import json

import aiosqlite

from ..models.policy import EscalationPolicy, ReminderPolicy
from ..timeutil import from_db_ts, to_db_ts, utc_now

_REMINDER_COLUMNS = (
    "id",
    "organization_id",
    "name",
    "rules",
    "channels",
    "quiet_hours",
    "is_active",
    "is_default",
    "created_at",
)
_REMINDER_SELECT = ", ".join(_REMINDER_COLUMNS)

_ESCALATION_COLUMNS = ("id", "organization_id", "name", "rules", "is_active", "created_at")
_ESCALATION_SELECT = ", ".join(_ESCALATION_COLUMNS)


class SqlitePolicyStore:
    """PolicyStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    # ============ 提醒策略 ============

    async def create_reminder_policy(self, policy: ReminderPolicy) -> ReminderPolicy:
        """创建提醒策略；is_default=True 时同一事务内取消该组织原有默认策略"""
        created_at = policy.created_at or utc_now()
        try:
            if policy.is_default:
                await self._clear_default(policy.organization_id)
            cursor = await self._conn.execute(
                """
                INSERT INTO reminder_policies (organization_id, name, rules, channels,
                                               quiet_hours, is_active, is_default, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    policy.organization_id,
                    policy.name,
                    policy.rules.model_dump_json(),
                    policy.channels.model_dump_json(),
                    policy.quiet_hours.model_dump_json() if policy.quiet_hours else None,
                    int(policy.is_active),
                    int(policy.is_default),
                    to_db_ts(created_at),
                ),
            )
            await self._conn.commit()
        except Exception:
            await self._conn.rollback()
            raise
        return policy.model_copy(update={"id": cursor.lastrowid, "created_at": created_at})

    async def update_reminder_policy(self, policy: ReminderPolicy) -> None:
        try:
            if policy.is_default:
                await self._clear_default(policy.organization_id, keep_id=policy.id)
            await self._conn.execute(
                """
                UPDATE reminder_policies
                SET name = ?, rules = ?, channels = ?, quiet_hours = ?,
                    is_active = ?, is_default = ?
                WHERE id = ? AND organization_id = ?
                """,
                (
                    policy.name,
                    policy.rules.model_dump_json(),
                    policy.channels.model_dump_json(),
                    policy.quiet_hours.model_dump_json() if policy.quiet_hours else None,
                    int(policy.is_active),
                    int(policy.is_default),
                    policy.id,
                    policy.organization_id,
                ),
            )
            await self._conn.commit()
        except Exception:
            await self._conn.rollback()
            raise

    async def get_reminder_policy(
        self,
        policy_id: int,
        organization_id: int,
    ) -> ReminderPolicy | None:
        cursor = await self._conn.execute(
            f"""
            SELECT {_REMINDER_SELECT} FROM reminder_policies
            WHERE id = ? AND organization_id = ?
            """,
            (policy_id, organization_id),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_reminder_policy(row)

    async def get_default_reminder_policy(self, organization_id: int) -> ReminderPolicy | None:
        """组织默认提醒策略（未指定策略的义务事项使用）"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_REMINDER_SELECT} FROM reminder_policies
            WHERE organization_id = ? AND is_default = 1
            LIMIT 1
            """,
            (organization_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_reminder_policy(row)

    async def list_reminder_policies(self, organization_id: int) -> list[ReminderPolicy]:
        cursor = await self._conn.execute(
            f"""
            SELECT {_REMINDER_SELECT} FROM reminder_policies
            WHERE organization_id = ?
            ORDER BY id ASC
            """,
            (organization_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_reminder_policy(row) for row in rows]

    async def delete_reminder_policy(self, policy_id: int, organization_id: int) -> bool:
        cursor = await self._conn.execute(
            "DELETE FROM reminder_policies WHERE id = ? AND organization_id = ?",
            (policy_id, organization_id),
        )
        await self._conn.commit()
        return cursor.rowcount > 0

    async def _clear_default(self, organization_id: int, keep_id: int | None = None) -> None:
        """取消组织内的默认提醒策略（不提交，由调用方提交）"""
        await self._conn.execute(
            """
            UPDATE reminder_policies SET is_default = 0
            WHERE organization_id = ? AND is_default = 1 AND id IS NOT ?
            """,
            (organization_id, keep_id),
        )

    # ============ 升级策略 ============

    async def create_escalation_policy(self, policy: EscalationPolicy) -> EscalationPolicy:
        created_at = policy.created_at or utc_now()
        cursor = await self._conn.execute(
            """
            INSERT INTO escalation_policies (organization_id, name, rules, is_active, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                policy.organization_id,
                policy.name,
                policy.rules.model_dump_json(),
                int(policy.is_active),
                to_db_ts(created_at),
            ),
        )
        await self._conn.commit()
        return policy.model_copy(update={"id": cursor.lastrowid, "created_at": created_at})

    async def update_escalation_policy(self, policy: EscalationPolicy) -> None:
        await self._conn.execute(
            """
            UPDATE escalation_policies SET name = ?, rules = ?, is_active = ?
            WHERE id = ? AND organization_id = ?
            """,
            (
                policy.name,
                policy.rules.model_dump_json(),
                int(policy.is_active),
                policy.id,
                policy.organization_id,
            ),
        )
        await self._conn.commit()

    async def get_escalation_policy(
        self,
        policy_id: int,
        organization_id: int,
    ) -> EscalationPolicy | None:
        cursor = await self._conn.execute(
            f"""
            SELECT {_ESCALATION_SELECT} FROM escalation_policies
            WHERE id = ? AND organization_id = ?
            """,
            (policy_id, organization_id),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_escalation_policy(row)

    async def list_escalation_policies(self, organization_id: int) -> list[EscalationPolicy]:
        cursor = await self._conn.execute(
            f"""
            SELECT {_ESCALATION_SELECT} FROM escalation_policies
            WHERE organization_id = ?
            ORDER BY id ASC
            """,
            (organization_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_escalation_policy(row) for row in rows]

    async def delete_escalation_policy(self, policy_id: int, organization_id: int) -> bool:
        cursor = await self._conn.execute(
            "DELETE FROM escalation_policies WHERE id = ? AND organization_id = ?",
            (policy_id, organization_id),
        )
        await self._conn.commit()
        return cursor.rowcount > 0

    @staticmethod
    def _row_to_reminder_policy(row) -> ReminderPolicy:
        data = dict(zip(_REMINDER_COLUMNS, row))
        return ReminderPolicy(
            id=data["id"],
            organization_id=data["organization_id"],
            name=data["name"],
            rules=json.loads(data["rules"]) if data["rules"] else {},
            channels=json.loads(data["channels"]) if data["channels"] else {},
            quiet_hours=json.loads(data["quiet_hours"]) if data["quiet_hours"] else None,
            is_active=bool(data["is_active"]),
            is_default=bool(data["is_default"]),
            created_at=from_db_ts(data["created_at"]),
        )

    @staticmethod
    def _row_to_escalation_policy(row) -> EscalationPolicy:
        data = dict(zip(_ESCALATION_COLUMNS, row))
        return EscalationPolicy(
            id=data["id"],
            organization_id=data["organization_id"],
            name=data["name"],
            rules=json.loads(data["rules"]) if data["rules"] else {},
            is_active=bool(data["is_active"]),
            created_at=from_db_ts(data["created_at"]),
        )
