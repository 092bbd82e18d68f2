"""SQLite 数据库初始化

PRAGMA 配置 + 表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# jobs 表 DDL
_JOBS_DDL = """
CREATE TABLE IF NOT EXISTS jobs (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    type              TEXT NOT NULL,
    payload           TEXT NOT NULL DEFAULT '{}',
    status            TEXT NOT NULL DEFAULT 'queued',
    priority          TEXT NOT NULL DEFAULT 'normal',
    attempts          INTEGER NOT NULL DEFAULT 0,
    max_attempts      INTEGER NOT NULL DEFAULT 3,
    correlation_id    TEXT NOT NULL,
    organization_id   INTEGER,
    user_id           INTEGER,
    result            TEXT,
    error             TEXT,
    created_at        TEXT NOT NULL,
    started_at        TEXT,
    completed_at      TEXT,
    failed_at         TEXT,
    next_eligible_at  TEXT NOT NULL
);
"""

_JOBS_INDEXES = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_correlation_id ON jobs(correlation_id);",
    # 认领查询：status + 可执行时间
    "CREATE INDEX IF NOT EXISTS idx_jobs_status_eligible ON jobs(status, next_eligible_at);",
    "CREATE INDEX IF NOT EXISTS idx_jobs_organization_id ON jobs(organization_id);",
]

# job_logs 表 DDL（append-only）
_JOB_LOGS_DDL = """
CREATE TABLE IF NOT EXISTS job_logs (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id      INTEGER NOT NULL,
    level       TEXT NOT NULL DEFAULT 'info',
    message     TEXT NOT NULL DEFAULT '',
    context     TEXT NOT NULL DEFAULT '{}',
    created_at  TEXT NOT NULL,

    FOREIGN KEY (job_id) REFERENCES jobs(id)
);
"""

_JOB_LOGS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_job_logs_job_id ON job_logs(job_id, id);",
]

# users 表 DDL
_USERS_DDL = """
CREATE TABLE IF NOT EXISTS users (
    id     INTEGER PRIMARY KEY AUTOINCREMENT,
    name   TEXT NOT NULL DEFAULT '',
    email  TEXT,
    phone  TEXT
);
"""

# reminder_policies 表 DDL
_REMINDER_POLICIES_DDL = """
CREATE TABLE IF NOT EXISTS reminder_policies (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id  INTEGER NOT NULL,
    name             TEXT NOT NULL DEFAULT '',
    rules            TEXT NOT NULL DEFAULT '{}',
    channels         TEXT NOT NULL DEFAULT '{}',
    quiet_hours      TEXT,
    is_active        INTEGER NOT NULL DEFAULT 1,
    is_default       INTEGER NOT NULL DEFAULT 0,
    created_at       TEXT NOT NULL
);
"""

_REMINDER_POLICIES_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_reminder_policies_org ON reminder_policies(organization_id);",
    # 每个组织最多一个默认策略
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_reminder_policies_default "
        "ON reminder_policies(organization_id) WHERE is_default = 1;"
    ),
]

# escalation_policies 表 DDL
_ESCALATION_POLICIES_DDL = """
CREATE TABLE IF NOT EXISTS escalation_policies (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id  INTEGER NOT NULL,
    name             TEXT NOT NULL DEFAULT '',
    rules            TEXT NOT NULL DEFAULT '{}',
    is_active        INTEGER NOT NULL DEFAULT 1,
    created_at       TEXT NOT NULL
);
"""

_ESCALATION_POLICIES_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_escalation_policies_org ON escalation_policies(organization_id);",
]

# obligations 表 DDL
_OBLIGATIONS_DDL = """
CREATE TABLE IF NOT EXISTS obligations (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id       INTEGER NOT NULL,
    title                 TEXT NOT NULL DEFAULT '',
    description           TEXT NOT NULL DEFAULT '',
    due_at                TEXT,
    status                TEXT NOT NULL DEFAULT 'PENDING',
    reminder_policy_id    INTEGER,
    escalation_policy_id  INTEGER,
    created_at            TEXT NOT NULL,
    updated_at            TEXT NOT NULL
);
"""

_OBLIGATIONS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_obligations_org_due ON obligations(organization_id, due_at);",
    "CREATE INDEX IF NOT EXISTS idx_obligations_org_status ON obligations(organization_id, status);",
]

# obligation_assignments 表 DDL
_ASSIGNMENTS_DDL = """
CREATE TABLE IF NOT EXISTS obligation_assignments (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    obligation_id    INTEGER NOT NULL,
    organization_id  INTEGER NOT NULL,
    assignee_type    TEXT NOT NULL DEFAULT 'USER',
    assignee_id      INTEGER NOT NULL,

    FOREIGN KEY (obligation_id) REFERENCES obligations(id) ON DELETE CASCADE
);
"""

_ASSIGNMENTS_INDEXES = [
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_assignments_unique ON "
        "obligation_assignments(obligation_id, assignee_type, assignee_id);"
    ),
]

# obligation_action_logs 表 DDL（append-only）
_ACTION_LOGS_DDL = """
CREATE TABLE IF NOT EXISTS obligation_action_logs (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id   INTEGER NOT NULL,
    obligation_id     INTEGER NOT NULL,
    action            TEXT NOT NULL,
    new_value         TEXT NOT NULL DEFAULT '{}',
    system_generated  INTEGER NOT NULL DEFAULT 1,
    created_at        TEXT NOT NULL
);
"""

_ACTION_LOGS_INDEXES = [
    (
        "CREATE INDEX IF NOT EXISTS idx_action_logs_obligation ON "
        "obligation_action_logs(organization_id, obligation_id);"
    ),
]

# notification_events 表 DDL
_NOTIFICATION_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS notification_events (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id    INTEGER NOT NULL,
    obligation_id      INTEGER NOT NULL,
    event_type         TEXT NOT NULL,
    recipient_user_id  INTEGER NOT NULL,
    channel            TEXT NOT NULL,
    status             TEXT NOT NULL DEFAULT 'queued',
    content_snapshot   TEXT NOT NULL DEFAULT '{}',
    error              TEXT,
    created_at         TEXT NOT NULL,
    sent_at            TEXT
);
"""

_NOTIFICATION_EVENTS_INDEXES = [
    (
        "CREATE INDEX IF NOT EXISTS idx_notification_events_org ON "
        "notification_events(organization_id, obligation_id);"
    ),
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    for ddl in (
        _JOBS_DDL,
        _JOB_LOGS_DDL,
        _USERS_DDL,
        _REMINDER_POLICIES_DDL,
        _ESCALATION_POLICIES_DDL,
        _OBLIGATIONS_DDL,
        _ASSIGNMENTS_DDL,
        _ACTION_LOGS_DDL,
        _NOTIFICATION_EVENTS_DDL,
    ):
        await conn.execute(ddl)

    # 创建索引
    for idx_sql in (
        _JOBS_INDEXES
        + _JOB_LOGS_INDEXES
        + _REMINDER_POLICIES_INDEXES
        + _ESCALATION_POLICIES_INDEXES
        + _OBLIGATIONS_INDEXES
        + _ASSIGNMENTS_INDEXES
        + _ACTION_LOGS_INDEXES
        + _NOTIFICATION_EVENTS_INDEXES
    ):
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
