"""SQLite schema management (code-first approach)."""

import logging

from taskdist.core import db_client


logger = logging.getLogger(__name__)


# Central list of all tables in the schema, in creation order
TABLES: dict[str, str] = {
    "task_templates": """
        CREATE TABLE IF NOT EXISTS task_templates (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            task_type TEXT NOT NULL,
            priority TEXT NOT NULL DEFAULT 'MEDIUM',
            cycle_type TEXT NOT NULL,
            schedule_mode TEXT NOT NULL DEFAULT 'TEMPLATE_OVERRIDE',
            timezone TEXT NOT NULL,
            run_at_minute INTEGER NOT NULL,
            due_at_minute INTEGER NOT NULL,
            run_day_of_week INTEGER,
            due_day_of_week INTEGER,
            run_day_of_month INTEGER,
            due_day_of_month INTEGER,
            deadline_offset_hours INTEGER NOT NULL DEFAULT 24,
            active_from TEXT,
            active_until TEXT,
            allow_late INTEGER NOT NULL DEFAULT 1,
            max_backfill_periods INTEGER NOT NULL DEFAULT 3,
            assignment TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            last_run_at TEXT,
            next_run_at TEXT,
            created TEXT NOT NULL,
            updated TEXT NOT NULL
        )
    """,
    "tasks": """
        CREATE TABLE IF NOT EXISTS tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            template_id INTEGER NOT NULL REFERENCES task_templates(id) ON DELETE CASCADE,
            period_key TEXT NOT NULL,
            period_start TEXT NOT NULL,
            period_end TEXT NOT NULL,
            assignee_id TEXT NOT NULL,
            collection_point_id TEXT,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            task_type TEXT NOT NULL,
            priority TEXT NOT NULL,
            due_at TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'PENDING',
            is_late INTEGER NOT NULL DEFAULT 0,
            assignee_org_id TEXT,
            assignee_dept_id TEXT,
            created TEXT NOT NULL
        )
    """,
    "members": """
        CREATE TABLE IF NOT EXISTS members (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            organization_id TEXT,
            department_id TEXT,
            status TEXT NOT NULL DEFAULT 'ACTIVE'
        )
    """,
    "collection_points": """
        CREATE TABLE IF NOT EXISTS collection_points (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            point_id TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            type TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1
        )
    """,
    "point_owners": """
        CREATE TABLE IF NOT EXISTS point_owners (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            point_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1
        )
    """,
}

INDEXES: list[str] = [
    # Idempotency key for materialization; "no point" is a distinct value rather than NULL
    """CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_idempotency
       ON tasks (template_id, period_key, assignee_id, COALESCE(collection_point_id, ''))""",
    "CREATE INDEX IF NOT EXISTS idx_tasks_assignee ON tasks (assignee_id)",
    "CREATE INDEX IF NOT EXISTS idx_templates_active ON task_templates (is_active, next_run_at)",
    "CREATE INDEX IF NOT EXISTS idx_members_org ON members (organization_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_members_dept ON members (department_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_points_type ON collection_points (type, is_active)",
    "CREATE INDEX IF NOT EXISTS idx_point_owners_point ON point_owners (point_id, is_active)",
]


async def init_db(*, db_path: str | None = None) -> None:
    """Create all tables and indexes (idempotent).

    Args:
        db_path: Optional database path. Defaults to settings.sqlite_db_path.
    """
    logger.info("Starting SQLite schema sync...")
    conn = await db_client.get_connection(db_path=db_path)

    for table_name, ddl in TABLES.items():
        await conn.execute(ddl)
        logger.debug("Ensured table %s", table_name)

    for index_ddl in INDEXES:
        await conn.execute(index_ddl)

    await conn.commit()
    logger.info("SQLite schema sync complete", extra={"tables": list(TABLES)})
