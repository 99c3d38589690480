"""SQLite 数据库初始化

PRAGMA 配置 + 五张表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# tasks 表 DDL（描述性嵌套字段以 JSON 文本存储）
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id             TEXT PRIMARY KEY,
    provider_id         TEXT NOT NULL,
    provider_name       TEXT NOT NULL DEFAULT '',
    booking_id          TEXT NOT NULL,
    task_type           TEXT NOT NULL DEFAULT 'logistics',
    service_type        TEXT NOT NULL,
    status              TEXT NOT NULL DEFAULT 'assigned',
    status_history      TEXT NOT NULL DEFAULT '[]',
    pickup_address      TEXT NOT NULL DEFAULT '',
    delivery_address    TEXT NOT NULL DEFAULT '',
    client_name         TEXT NOT NULL DEFAULT '',
    client_phone        TEXT NOT NULL DEFAULT '',
    client_email        TEXT NOT NULL DEFAULT '',
    special_requests    TEXT NOT NULL DEFAULT '{}',
    additional_stops    TEXT NOT NULL DEFAULT '[]',
    notes               TEXT NOT NULL DEFAULT '',
    estimated_duration  INTEGER NOT NULL DEFAULT 0,
    priority            TEXT NOT NULL DEFAULT 'normal',
    price               REAL NOT NULL DEFAULT 0,
    provider_earnings   REAL NOT NULL DEFAULT 0,
    assignment_note     TEXT NOT NULL DEFAULT '',
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL,
    version             INTEGER NOT NULL DEFAULT 1,
    pointers            TEXT NOT NULL DEFAULT '{}'
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_provider_created ON tasks(provider_id, created_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_booking_id ON tasks(booking_id);",
]

# events 表 DDL
_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    event_id        TEXT PRIMARY KEY,
    task_id         TEXT NOT NULL,
    task_seq        INTEGER NOT NULL,
    ts              TEXT NOT NULL,
    type            TEXT NOT NULL,
    schema_version  INTEGER NOT NULL DEFAULT 1,
    actor           TEXT NOT NULL,
    payload         TEXT NOT NULL DEFAULT '{}',
    trace_id        TEXT NOT NULL DEFAULT '',
    span_id         TEXT NOT NULL DEFAULT '',
    parent_event_id TEXT,
    idempotency_key TEXT,

    FOREIGN KEY (task_id) REFERENCES tasks(task_id)
);
"""

_EVENTS_INDEXES = [
    # 任务内事件序号唯一约束（确保 task_seq 严格单调递增）
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_events_task_seq ON events(task_id, task_seq);",
    "CREATE INDEX IF NOT EXISTS idx_events_task_ts ON events(task_id, ts);",
    # 幂等键在任务内唯一（仅对非 NULL 值生效）
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_events_idempotency_key "
        "ON events(task_id, idempotency_key) WHERE idempotency_key IS NOT NULL;"
    ),
]

# bookings 表 DDL（外部记录，本服务只更新 status / tracking_status）
_BOOKINGS_DDL = """
CREATE TABLE IF NOT EXISTS bookings (
    booking_id       TEXT PRIMARY KEY,
    client_id        TEXT NOT NULL,
    partner_id       TEXT NOT NULL,
    status           TEXT NOT NULL DEFAULT 'upcoming',
    tracking_status  TEXT NOT NULL DEFAULT '',
    tracking_seq     INTEGER NOT NULL DEFAULT 0,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);
"""

# notifications 表 DDL
_NOTIFICATIONS_DDL = """
CREATE TABLE IF NOT EXISTS notifications (
    notification_id  TEXT PRIMARY KEY,
    type             TEXT NOT NULL,
    recipient_id     TEXT NOT NULL,
    recipient_type   TEXT NOT NULL,
    title            TEXT NOT NULL DEFAULT '',
    message          TEXT NOT NULL DEFAULT '',
    data             TEXT NOT NULL DEFAULT '{}',
    read             INTEGER NOT NULL DEFAULT 0,
    created_at       TEXT NOT NULL,
    source_event_id  TEXT NOT NULL
);
"""

_NOTIFICATIONS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_notifications_recipient ON notifications(recipient_id, created_at DESC);",
    # 同一事件对同一类接收方只投递一次
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_notifications_source "
        "ON notifications(source_event_id, recipient_type);"
    ),
]

# outbox 表 DDL
_OUTBOX_DDL = """
CREATE TABLE IF NOT EXISTS outbox (
    entry_id         TEXT PRIMARY KEY,
    task_id          TEXT NOT NULL,
    booking_id       TEXT NOT NULL,
    status           TEXT NOT NULL DEFAULT 'pending',
    payload          TEXT NOT NULL DEFAULT '{}',
    attempts         INTEGER NOT NULL DEFAULT 0,
    last_error       TEXT NOT NULL DEFAULT '',
    next_attempt_at  TEXT NOT NULL,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL,

    FOREIGN KEY (entry_id) REFERENCES events(event_id)
);
"""

_OUTBOX_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_outbox_due ON outbox(status, next_attempt_at);",
    "CREATE INDEX IF NOT EXISTS idx_outbox_task ON outbox(task_id, created_at);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    for ddl in (_TASKS_DDL, _EVENTS_DDL, _BOOKINGS_DDL, _NOTIFICATIONS_DDL, _OUTBOX_DDL):
        await conn.execute(ddl)

    for idx_sql in (
        _TASKS_INDEXES + _EVENTS_INDEXES + _NOTIFICATIONS_INDEXES + _OUTBOX_INDEXES
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
