"""JobStore SQLite 实现

认领（claim）是单条 UPDATE ... RETURNING 语句：子查询选出优先级最高、
最早创建且已到 next_eligible_at 的 queued Job，外层再以 status='queued'
作为条件，多个调度器实例共享同一数据库时不会重复认领。

所有写操作自动提交。
"""

import json
from collections.abc import Collection
from datetime import datetime
from typing import Any

import aiosqlite

from ..exceptions import JobStatusConflictError
from ..models.enums import (
    PRIORITY_RANK,
    JobLogLevel,
    JobPriority,
    JobStatus,
    validate_transition,
)
from ..models.job import Job, JobLogEntry
from ..timeutil import from_db_ts, to_db_ts

_JOB_COLUMNS = (
    "id",
    "type",
    "payload",
    "status",
    "priority",
    "attempts",
    "max_attempts",
    "correlation_id",
    "organization_id",
    "user_id",
    "result",
    "error",
    "created_at",
    "started_at",
    "completed_at",
    "failed_at",
    "next_eligible_at",
)
_JOB_SELECT = ", ".join(_JOB_COLUMNS)

_LOG_COLUMNS = ("id", "job_id", "level", "message", "context", "created_at")

# ORDER BY 优先级表达式（high -> normal -> low）
_PRIORITY_ORDER = (
    "CASE priority "
    + " ".join(f"WHEN '{p.value}' THEN {rank}" for p, rank in PRIORITY_RANK.items())
    + f" ELSE {len(PRIORITY_RANK)} END"
)


class SqliteJobStore:
    """JobStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_job(self, job: Job) -> Job:
        """写入新 Job，返回带存储分配 ID 的副本"""
        cursor = await self._conn.execute(
            """
            INSERT INTO jobs (type, payload, status, priority, attempts, max_attempts,
                              correlation_id, organization_id, user_id, result, error,
                              created_at, started_at, completed_at, failed_at,
                              next_eligible_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.type,
                json.dumps(job.payload, ensure_ascii=False, default=str),
                job.status.value,
                job.priority.value,
                job.attempts,
                job.max_attempts,
                job.correlation_id,
                job.organization_id,
                job.user_id,
                _dump_optional(job.result),
                job.error,
                to_db_ts(job.created_at),
                to_db_ts(job.started_at),
                to_db_ts(job.completed_at),
                to_db_ts(job.failed_at),
                to_db_ts(job.next_eligible_at),
            ),
        )
        await self._conn.commit()
        return job.model_copy(update={"id": cursor.lastrowid})

    async def get_job(self, job_id: int) -> Job | None:
        """根据 ID 查询 Job"""
        cursor = await self._conn.execute(
            f"SELECT {_JOB_SELECT} FROM jobs WHERE id = ?",
            (job_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_job(row)

    async def get_job_by_correlation_id(self, correlation_id: str) -> Job | None:
        """根据关联 ID 查询 Job"""
        cursor = await self._conn.execute(
            f"SELECT {_JOB_SELECT} FROM jobs WHERE correlation_id = ?",
            (correlation_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_job(row)

    async def list_queued_jobs(
        self,
        limit: int = 10,
        eligible_before: datetime | None = None,
    ) -> list[Job]:
        """按认领顺序列出 queued Job；给定 eligible_before 时只返回已可执行的"""
        if eligible_before is not None:
            cursor = await self._conn.execute(
                f"""
                SELECT {_JOB_SELECT} FROM jobs
                WHERE status = ? AND next_eligible_at <= ?
                ORDER BY {_PRIORITY_ORDER}, created_at ASC, id ASC
                LIMIT ?
                """,
                (JobStatus.QUEUED.value, to_db_ts(eligible_before), limit),
            )
        else:
            cursor = await self._conn.execute(
                f"""
                SELECT {_JOB_SELECT} FROM jobs
                WHERE status = ?
                ORDER BY {_PRIORITY_ORDER}, created_at ASC, id ASC
                LIMIT ?
                """,
                (JobStatus.QUEUED.value, limit),
            )
        rows = await cursor.fetchall()
        return [self._row_to_job(row) for row in rows]

    async def claim_next_job(self, now: datetime) -> Job | None:
        """原子认领下一个可执行 Job：queued -> processing，attempts + 1

        Returns:
            认领到的 Job（已是 processing 状态），没有可执行 Job 时返回 None
        """
        now_ts = to_db_ts(now)
        cursor = await self._conn.execute(
            f"""
            UPDATE jobs
            SET status = ?, started_at = ?, attempts = attempts + 1
            WHERE id = (
                SELECT id FROM jobs
                WHERE status = ? AND next_eligible_at <= ?
                ORDER BY {_PRIORITY_ORDER}, created_at ASC, id ASC
                LIMIT 1
            )
            AND status = ?
            RETURNING {_JOB_SELECT}
            """,
            (
                JobStatus.PROCESSING.value,
                now_ts,
                JobStatus.QUEUED.value,
                now_ts,
                JobStatus.QUEUED.value,
            ),
        )
        row = await cursor.fetchone()
        await cursor.close()
        await self._conn.commit()
        if row is None:
            return None
        return self._row_to_job(row)

    async def complete_job(
        self,
        job_id: int,
        result: dict[str, Any],
        now: datetime,
    ) -> None:
        """processing -> completed，保存处理结果"""
        await self._transition(
            job_id,
            JobStatus.PROCESSING,
            JobStatus.COMPLETED,
            {
                "result": _dump_optional(result),
                "error": None,
                "completed_at": to_db_ts(now),
            },
        )

    async def requeue_job(
        self,
        job_id: int,
        error: str,
        next_eligible_at: datetime,
    ) -> None:
        """processing -> queued（重试），next_eligible_at 之前不可被认领"""
        await self._transition(
            job_id,
            JobStatus.PROCESSING,
            JobStatus.QUEUED,
            {
                "error": error,
                "next_eligible_at": to_db_ts(next_eligible_at),
            },
        )

    async def fail_job(self, job_id: int, error: str, now: datetime) -> None:
        """processing -> failed（永久失败）"""
        await self._transition(
            job_id,
            JobStatus.PROCESSING,
            JobStatus.FAILED,
            {
                "error": error,
                "failed_at": to_db_ts(now),
            },
        )

    async def cancel_job(self, job_id: int, now: datetime) -> None:
        """queued -> cancelled（管理操作，调度器自身从不调用）"""
        await self._transition(
            job_id,
            JobStatus.QUEUED,
            JobStatus.CANCELLED,
            {"completed_at": to_db_ts(now)},
        )

    async def recover_stale_jobs(
        self,
        started_before: datetime,
        now: datetime,
        exclude_ids: Collection[int] = (),
    ) -> int:
        """将 started_at 早于阈值仍处于 processing 的 Job 退回 queued

        进程崩溃或认领后的存储写入失败会留下停滞的 processing Job，由 worker
        启动时及之后定期回收；exclude_ids 中的 Job 仍在本进程执行，不回收。

        Returns:
            回收的 Job 数量
        """
        sql = """
            UPDATE jobs
            SET status = ?, next_eligible_at = ?,
                error = COALESCE(error, 'interrupted while processing')
            WHERE status = ? AND started_at < ?
        """
        params: list = [
            JobStatus.QUEUED.value,
            to_db_ts(now),
            JobStatus.PROCESSING.value,
            to_db_ts(started_before),
        ]
        if exclude_ids:
            ids = sorted(exclude_ids)
            sql += f" AND id NOT IN ({', '.join('?' for _ in ids)})"
            params.extend(ids)

        cursor = await self._conn.execute(sql, params)
        await self._conn.commit()
        return cursor.rowcount

    async def get_next_eligible_at(self) -> datetime | None:
        """queued Job 中最早的 next_eligible_at，用于计算调度器休眠时长"""
        cursor = await self._conn.execute(
            "SELECT MIN(next_eligible_at) FROM jobs WHERE status = ?",
            (JobStatus.QUEUED.value,),
        )
        row = await cursor.fetchone()
        return from_db_ts(row[0]) if row else None

    async def append_job_log(self, entry: JobLogEntry) -> None:
        """追加 Job 日志（append-only）"""
        await self._conn.execute(
            """
            INSERT INTO job_logs (job_id, level, message, context, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                entry.job_id,
                entry.level.value,
                entry.message,
                json.dumps(entry.context, ensure_ascii=False, default=str),
                to_db_ts(entry.created_at),
            ),
        )
        await self._conn.commit()

    async def list_job_logs(self, job_id: int) -> list[JobLogEntry]:
        """查询指定 Job 的日志，按写入顺序"""
        cursor = await self._conn.execute(
            f"SELECT {', '.join(_LOG_COLUMNS)} FROM job_logs WHERE job_id = ? ORDER BY id ASC",
            (job_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_log(row) for row in rows]

    async def _transition(
        self,
        job_id: int,
        expected: JobStatus,
        target: JobStatus,
        fields: dict[str, Any],
    ) -> None:
        """条件状态更新：仅当当前状态等于 expected 时生效，否则抛出 JobStatusConflictError"""
        if not validate_transition(expected, target):
            raise JobStatusConflictError(job_id, expected.value, target.value)

        assignments = ", ".join(f"{name} = ?" for name in fields)
        cursor = await self._conn.execute(
            f"UPDATE jobs SET status = ?, {assignments} WHERE id = ? AND status = ?",
            (target.value, *fields.values(), job_id, expected.value),
        )
        await self._conn.commit()
        if cursor.rowcount == 0:
            raise JobStatusConflictError(job_id, expected.value, target.value)

    @staticmethod
    def _row_to_job(row) -> Job:
        """将数据库行转换为 Job 模型"""
        data = dict(zip(_JOB_COLUMNS, row))
        return Job(
            id=data["id"],
            type=data["type"],
            payload=json.loads(data["payload"]) if data["payload"] else {},
            status=JobStatus(data["status"]),
            priority=JobPriority(data["priority"]),
            attempts=data["attempts"],
            max_attempts=data["max_attempts"],
            correlation_id=data["correlation_id"],
            organization_id=data["organization_id"],
            user_id=data["user_id"],
            result=json.loads(data["result"]) if data["result"] else None,
            error=data["error"],
            created_at=from_db_ts(data["created_at"]),
            started_at=from_db_ts(data["started_at"]),
            completed_at=from_db_ts(data["completed_at"]),
            failed_at=from_db_ts(data["failed_at"]),
            next_eligible_at=from_db_ts(data["next_eligible_at"]),
        )

    @staticmethod
    def _row_to_log(row) -> JobLogEntry:
        data = dict(zip(_LOG_COLUMNS, row))
        return JobLogEntry(
            id=data["id"],
            job_id=data["job_id"],
            level=JobLogLevel(data["level"]),
            message=data["message"],
            context=json.loads(data["context"]) if data["context"] else {},
            created_at=from_db_ts(data["created_at"]),
        )


def _dump_optional(value: dict[str, Any] | None) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, default=str)
