"""ObligationStore SQLite 实现

义务事项、指派、操作日志。所有查询都以 organization_id 作为过滤条件，
跨组织的读写在存储层即被隔离。
"""

import json
from collections.abc import Collection
from datetime import datetime, timedelta

import aiosqlite

from ..models.enums import (
    OBLIGATION_TERMINAL_STATES,
    AssigneeType,
    ObligationAction,
    ObligationStatus,
)
from ..models.obligation import Obligation, ObligationActionLog, ObligationAssignment
from ..timeutil import from_db_ts, to_db_ts, utc_now

_OBLIGATION_COLUMNS = (
    "id",
    "organization_id",
    "title",
    "description",
    "due_at",
    "status",
    "reminder_policy_id",
    "escalation_policy_id",
    "created_at",
    "updated_at",
)
_OBLIGATION_SELECT = ", ".join(_OBLIGATION_COLUMNS)

_ASSIGNMENT_COLUMNS = ("id", "obligation_id", "organization_id", "assignee_type", "assignee_id")
_ACTION_LOG_COLUMNS = (
    "id",
    "organization_id",
    "obligation_id",
    "action",
    "new_value",
    "system_generated",
    "created_at",
)

# 终态不参与提醒 / 升级
_TERMINAL_VALUES = tuple(sorted(s.value for s in OBLIGATION_TERMINAL_STATES))
_NOT_TERMINAL_SQL = f"status NOT IN ({', '.join('?' for _ in _TERMINAL_VALUES)})"


class SqliteObligationStore:
    """ObligationStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_obligation(self, obligation: Obligation) -> Obligation:
        """创建义务事项"""
        now = utc_now()
        created_at = obligation.created_at or now
        cursor = await self._conn.execute(
            """
            INSERT INTO obligations (organization_id, title, description, due_at, status,
                                     reminder_policy_id, escalation_policy_id,
                                     created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                obligation.organization_id,
                obligation.title,
                obligation.description,
                to_db_ts(obligation.due_at),
                obligation.status.value,
                obligation.reminder_policy_id,
                obligation.escalation_policy_id,
                to_db_ts(created_at),
                to_db_ts(now),
            ),
        )
        await self._conn.commit()
        return obligation.model_copy(
            update={"id": cursor.lastrowid, "created_at": created_at, "updated_at": now}
        )

    async def get_obligation(self, obligation_id: int, organization_id: int) -> Obligation | None:
        cursor = await self._conn.execute(
            f"SELECT {_OBLIGATION_SELECT} FROM obligations WHERE id = ? AND organization_id = ?",
            (obligation_id, organization_id),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_obligation(row)

    async def list_obligations(
        self,
        organization_id: int,
        status: ObligationStatus | None = None,
    ) -> list[Obligation]:
        """查询组织内的义务事项，按截止时间正序"""
        if status is not None:
            cursor = await self._conn.execute(
                f"""
                SELECT {_OBLIGATION_SELECT} FROM obligations
                WHERE organization_id = ? AND status = ?
                ORDER BY due_at ASC, id ASC
                """,
                (organization_id, status.value),
            )
        else:
            cursor = await self._conn.execute(
                f"""
                SELECT {_OBLIGATION_SELECT} FROM obligations
                WHERE organization_id = ?
                ORDER BY due_at ASC, id ASC
                """,
                (organization_id,),
            )
        rows = await cursor.fetchall()
        return [self._row_to_obligation(row) for row in rows]

    async def update_obligation(self, obligation: Obligation) -> None:
        """更新义务事项的可编辑字段（不含组织归属）"""
        await self._conn.execute(
            """
            UPDATE obligations
            SET title = ?, description = ?, due_at = ?, status = ?,
                reminder_policy_id = ?, escalation_policy_id = ?, updated_at = ?
            WHERE id = ? AND organization_id = ?
            """,
            (
                obligation.title,
                obligation.description,
                to_db_ts(obligation.due_at),
                obligation.status.value,
                obligation.reminder_policy_id,
                obligation.escalation_policy_id,
                to_db_ts(utc_now()),
                obligation.id,
                obligation.organization_id,
            ),
        )
        await self._conn.commit()

    async def update_obligation_status(
        self,
        obligation_id: int,
        organization_id: int,
        status: ObligationStatus,
        exclude: Collection[ObligationStatus] = (),
    ) -> bool:
        """更新义务事项状态

        exclude 非空时为条件写入：当前状态属于 exclude 的记录不会被修改，
        用于避免覆盖并发写入的终态。

        Returns:
            True 如果命中了该组织内的记录并完成写入
        """
        sql = (
            "UPDATE obligations SET status = ?, updated_at = ?"
            " WHERE id = ? AND organization_id = ?"
        )
        params: list = [status.value, to_db_ts(utc_now()), obligation_id, organization_id]
        if exclude:
            excluded = sorted(s.value for s in exclude)
            sql += f" AND status NOT IN ({', '.join('?' for _ in excluded)})"
            params.extend(excluded)

        cursor = await self._conn.execute(sql, params)
        await self._conn.commit()
        return cursor.rowcount > 0

    async def delete_obligation(self, obligation_id: int, organization_id: int) -> bool:
        cursor = await self._conn.execute(
            "DELETE FROM obligations WHERE id = ? AND organization_id = ?",
            (obligation_id, organization_id),
        )
        await self._conn.commit()
        return cursor.rowcount > 0

    async def get_obligations_due_soon(
        self,
        organization_id: int,
        now: datetime,
        days: int,
    ) -> list[Obligation]:
        """截止时间落在 [now, now + days] 内的非终态义务事项"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_OBLIGATION_SELECT} FROM obligations
            WHERE organization_id = ?
              AND due_at IS NOT NULL
              AND due_at >= ? AND due_at <= ?
              AND {_NOT_TERMINAL_SQL}
            ORDER BY due_at ASC, id ASC
            """,
            (
                organization_id,
                to_db_ts(now),
                to_db_ts(now + timedelta(days=days)),
                *_TERMINAL_VALUES,
            ),
        )
        rows = await cursor.fetchall()
        return [self._row_to_obligation(row) for row in rows]

    async def get_overdue_obligations(
        self,
        organization_id: int,
        now: datetime,
    ) -> list[Obligation]:
        """截止时间已过的非终态义务事项"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_OBLIGATION_SELECT} FROM obligations
            WHERE organization_id = ?
              AND due_at IS NOT NULL
              AND due_at < ?
              AND {_NOT_TERMINAL_SQL}
            ORDER BY due_at ASC, id ASC
            """,
            (organization_id, to_db_ts(now), *_TERMINAL_VALUES),
        )
        rows = await cursor.fetchall()
        return [self._row_to_obligation(row) for row in rows]

    async def list_organization_ids(self) -> list[int]:
        """拥有非终态义务事项的组织列表（提醒调度用）"""
        cursor = await self._conn.execute(
            f"""
            SELECT DISTINCT organization_id FROM obligations
            WHERE {_NOT_TERMINAL_SQL}
            ORDER BY organization_id ASC
            """,
            _TERMINAL_VALUES,
        )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def add_assignment(self, assignment: ObligationAssignment) -> ObligationAssignment:
        cursor = await self._conn.execute(
            """
            INSERT INTO obligation_assignments (obligation_id, organization_id,
                                                assignee_type, assignee_id)
            VALUES (?, ?, ?, ?)
            """,
            (
                assignment.obligation_id,
                assignment.organization_id,
                assignment.assignee_type.value,
                assignment.assignee_id,
            ),
        )
        await self._conn.commit()
        return assignment.model_copy(update={"id": cursor.lastrowid})

    async def list_assignments(
        self,
        obligation_id: int,
        organization_id: int,
    ) -> list[ObligationAssignment]:
        cursor = await self._conn.execute(
            f"""
            SELECT {', '.join(_ASSIGNMENT_COLUMNS)} FROM obligation_assignments
            WHERE obligation_id = ? AND organization_id = ?
            ORDER BY id ASC
            """,
            (obligation_id, organization_id),
        )
        rows = await cursor.fetchall()
        return [
            ObligationAssignment(
                id=data["id"],
                obligation_id=data["obligation_id"],
                organization_id=data["organization_id"],
                assignee_type=AssigneeType(data["assignee_type"]),
                assignee_id=data["assignee_id"],
            )
            for data in (dict(zip(_ASSIGNMENT_COLUMNS, row)) for row in rows)
        ]

    async def remove_assignment(self, assignment_id: int, organization_id: int) -> bool:
        cursor = await self._conn.execute(
            "DELETE FROM obligation_assignments WHERE id = ? AND organization_id = ?",
            (assignment_id, organization_id),
        )
        await self._conn.commit()
        return cursor.rowcount > 0

    async def log_obligation_action(self, entry: ObligationActionLog) -> None:
        """追加义务事项操作日志（append-only）"""
        await self._conn.execute(
            """
            INSERT INTO obligation_action_logs (organization_id, obligation_id, action,
                                                new_value, system_generated, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                entry.organization_id,
                entry.obligation_id,
                entry.action.value,
                json.dumps(entry.new_value, ensure_ascii=False, default=str),
                int(entry.system_generated),
                to_db_ts(entry.created_at or utc_now()),
            ),
        )
        await self._conn.commit()

    async def list_obligation_actions(
        self,
        obligation_id: int,
        organization_id: int,
    ) -> list[ObligationActionLog]:
        cursor = await self._conn.execute(
            f"""
            SELECT {', '.join(_ACTION_LOG_COLUMNS)} FROM obligation_action_logs
            WHERE obligation_id = ? AND organization_id = ?
            ORDER BY id ASC
            """,
            (obligation_id, organization_id),
        )
        rows = await cursor.fetchall()
        return [
            ObligationActionLog(
                id=data["id"],
                organization_id=data["organization_id"],
                obligation_id=data["obligation_id"],
                action=ObligationAction(data["action"]),
                new_value=json.loads(data["new_value"]) if data["new_value"] else {},
                system_generated=bool(data["system_generated"]),
                created_at=from_db_ts(data["created_at"]),
            )
            for data in (dict(zip(_ACTION_LOG_COLUMNS, row)) for row in rows)
        ]

    @staticmethod
    def _row_to_obligation(row) -> Obligation:
        data = dict(zip(_OBLIGATION_COLUMNS, row))
        return Obligation(
            id=data["id"],
            organization_id=data["organization_id"],
            title=data["title"],
            description=data["description"],
            due_at=from_db_ts(data["due_at"]),
            status=ObligationStatus(data["status"]),
            reminder_policy_id=data["reminder_policy_id"],
            escalation_policy_id=data["escalation_policy_id"],
            created_at=from_db_ts(data["created_at"]),
            updated_at=from_db_ts(data["updated_at"]),
        )
