"""NotificationStore / UserStore SQLite 实现"""

import json
from datetime import datetime

import aiosqlite

from ..models.enums import NotificationChannel, NotificationEventType, NotificationStatus
from ..models.notification import NotificationEvent
from ..models.obligation import User
from ..timeutil import from_db_ts, to_db_ts, utc_now

_EVENT_COLUMNS = (
    "id",
    "organization_id",
    "obligation_id",
    "event_type",
    "recipient_user_id",
    "channel",
    "status",
    "content_snapshot",
    "error",
    "created_at",
    "sent_at",
)
_EVENT_SELECT = ", ".join(_EVENT_COLUMNS)


class SqliteNotificationStore:
    """NotificationStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_notification_event(self, event: NotificationEvent) -> NotificationEvent:
        created_at = event.created_at or utc_now()
        cursor = await self._conn.execute(
            """
            INSERT INTO notification_events (organization_id, obligation_id, event_type,
                                             recipient_user_id, channel, status,
                                             content_snapshot, error, created_at, sent_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.organization_id,
                event.obligation_id,
                event.event_type.value,
                event.recipient_user_id,
                event.channel.value,
                event.status.value,
                json.dumps(event.content_snapshot, ensure_ascii=False, default=str),
                event.error,
                to_db_ts(created_at),
                to_db_ts(event.sent_at),
            ),
        )
        await self._conn.commit()
        return event.model_copy(update={"id": cursor.lastrowid, "created_at": created_at})

    async def get_notification_event(
        self,
        event_id: int,
        organization_id: int | None = None,
    ) -> NotificationEvent | None:
        """查询通知事件；给定 organization_id 时附加组织过滤"""
        if organization_id is not None:
            cursor = await self._conn.execute(
                f"""
                SELECT {_EVENT_SELECT} FROM notification_events
                WHERE id = ? AND organization_id = ?
                """,
                (event_id, organization_id),
            )
        else:
            cursor = await self._conn.execute(
                f"SELECT {_EVENT_SELECT} FROM notification_events WHERE id = ?",
                (event_id,),
            )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_event(row)

    async def list_notification_events(
        self,
        organization_id: int,
        obligation_id: int | None = None,
    ) -> list[NotificationEvent]:
        if obligation_id is not None:
            cursor = await self._conn.execute(
                f"""
                SELECT {_EVENT_SELECT} FROM notification_events
                WHERE organization_id = ? AND obligation_id = ?
                ORDER BY id ASC
                """,
                (organization_id, obligation_id),
            )
        else:
            cursor = await self._conn.execute(
                f"""
                SELECT {_EVENT_SELECT} FROM notification_events
                WHERE organization_id = ?
                ORDER BY id ASC
                """,
                (organization_id,),
            )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def update_notification_event_status(
        self,
        event_id: int,
        organization_id: int,
        status: NotificationStatus,
        error: str | None = None,
        sent_at: datetime | None = None,
    ) -> bool:
        """更新通知事件投递状态

        Returns:
            True 如果命中了该组织内的记录
        """
        cursor = await self._conn.execute(
            """
            UPDATE notification_events SET status = ?, error = ?, sent_at = ?
            WHERE id = ? AND organization_id = ?
            """,
            (status.value, error, to_db_ts(sent_at), event_id, organization_id),
        )
        await self._conn.commit()
        return cursor.rowcount > 0

    @staticmethod
    def _row_to_event(row) -> NotificationEvent:
        data = dict(zip(_EVENT_COLUMNS, row))
        return NotificationEvent(
            id=data["id"],
            organization_id=data["organization_id"],
            obligation_id=data["obligation_id"],
            event_type=NotificationEventType(data["event_type"]),
            recipient_user_id=data["recipient_user_id"],
            channel=NotificationChannel(data["channel"]),
            status=NotificationStatus(data["status"]),
            content_snapshot=(
                json.loads(data["content_snapshot"]) if data["content_snapshot"] else {}
            ),
            error=data["error"],
            created_at=from_db_ts(data["created_at"]),
            sent_at=from_db_ts(data["sent_at"]),
        )


class SqliteUserStore:
    """UserStore 的 SQLite 实现（用户按 ID 全局查询）"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_user(self, user: User) -> User:
        if user.id is not None:
            cursor = await self._conn.execute(
                "INSERT INTO users (id, name, email, phone) VALUES (?, ?, ?, ?)",
                (user.id, user.name, user.email, user.phone),
            )
        else:
            cursor = await self._conn.execute(
                "INSERT INTO users (name, email, phone) VALUES (?, ?, ?)",
                (user.name, user.email, user.phone),
            )
        await self._conn.commit()
        return user.model_copy(update={"id": cursor.lastrowid})

    async def get_user(self, user_id: int) -> User | None:
        cursor = await self._conn.execute(
            "SELECT id, name, email, phone FROM users WHERE id = ?",
            (user_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return User(id=row[0], name=row[1], email=row[2], phone=row[3])
