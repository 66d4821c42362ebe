# src/routine_alerts/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

from .task_models import Task, TaskCategory

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class TaskStore:
    """
    SQLite task store (tasks + per-user device registration).

    The schema is intentionally simple and migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Dedup marker:
    - alerted_due_at holds the due time an alert was delivered for
    - it is cleared whenever due_at changes or the task is completed

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except Exception:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    category TEXT NOT NULL DEFAULT 'other',
                    due_at REAL,
                    location TEXT,
                    is_completed INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    alerted_due_at REAL,
                    alerted_at REAL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    device_token TEXT,
                    default_location TEXT,
                    updated_at REAL NOT NULL
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("description", "TEXT NOT NULL DEFAULT ''")
            add_col("location", "TEXT")
            add_col("alerted_due_at", "REAL")
            add_col("alerted_at", "REAL")

            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_alert_scan "
                "ON tasks(category, is_completed, due_at)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_user ON tasks(user_id)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            user_id=str(row["user_id"]),
            title=str(row["title"] or ""),
            category=TaskCategory.from_db(row["category"]),
            due_at=float(row["due_at"]) if row["due_at"] is not None else None,
            location=row["location"],
            is_completed=bool(row["is_completed"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            description=str(row["description"] or ""),
            alerted_due_at=float(row["alerted_due_at"]) if row["alerted_due_at"] is not None else None,
            alerted_at=float(row["alerted_at"]) if row["alerted_at"] is not None else None,
        )

    # ---- task CRUD ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM tasks")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def add_task(
        self,
        *,
        user_id: str,
        title: str,
        category: TaskCategory | str = TaskCategory.OTHER,
        due_at: float | None = None,
        location: str | None = None,
        description: str = "",
    ) -> int:
        if not user_id or not user_id.strip():
            raise ValueError("user_id is required")
        if not title or not title.strip():
            raise ValueError("title is required")

        cat = category if isinstance(category, TaskCategory) else TaskCategory.from_db(category)
        loc = (location or "").strip() or None
        now = time.time()

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO tasks(
                    user_id, title, description, category,
                    due_at, location, is_completed, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (
                    user_id.strip(),
                    title.strip(),
                    (description or "").strip(),
                    cat.value,
                    due_at,
                    loc,
                    now,
                    now,
                ),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for tasks insert")
            task_id = int(rowid)
            logger.debug(
                "Task added id=%s user=%s category=%s due_at=%s",
                task_id,
                user_id,
                cat.value,
                due_at,
            )
            return task_id
        finally:
            conn.close()

    def get_task(self, task_id: int) -> Task | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),))
            row = cur.fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def list_tasks_for_user(self, user_id: str, *, include_completed: bool = False, limit: int = 100) -> list[Task]:
        if not user_id:
            return []

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT *
                FROM tasks
                WHERE user_id = ?
                  AND (? OR is_completed = 0)
                ORDER BY COALESCE(due_at, created_at) ASC, id ASC
                    LIMIT ?
                """,
                (user_id, 1 if include_completed else 0, int(limit)),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def update_task(
        self,
        task_id: int,
        *,
        title: str | None = None,
        description: str | None = None,
        category: TaskCategory | str | None = None,
        due_at: float | None = _UNSET,
        location: str | None = _UNSET,
    ) -> bool:
        """
        Partial update. Pass due_at=None / location=None to clear those fields.

        Changing due_at clears the dedup marker, so the task becomes eligible again.
        Returns True if the task exists.
        """
        fields: list[str] = []
        params: list[Any] = []

        if title is not None:
            if not title.strip():
                raise ValueError("title must not be empty")
            fields.append("title = ?")
            params.append(title.strip())

        if description is not None:
            fields.append("description = ?")
            params.append(description.strip())

        if category is not None:
            cat = category if isinstance(category, TaskCategory) else TaskCategory.from_db(category)
            fields.append("category = ?")
            params.append(cat.value)

        if location is not _UNSET:
            fields.append("location = ?")
            params.append((location or "").strip() or None)

        if due_at is not _UNSET:
            fields.append("due_at = ?")
            params.append(float(due_at) if due_at is not None else None)
            # IS NOT compares NULLs too: only a real change of due time drops the marker.
            fields.append("alerted_due_at = CASE WHEN due_at IS NOT ? THEN NULL ELSE alerted_due_at END")
            params.append(float(due_at) if due_at is not None else None)
            fields.append("alerted_at = CASE WHEN due_at IS NOT ? THEN NULL ELSE alerted_at END")
            params.append(float(due_at) if due_at is not None else None)

        if not fields:
            return self.get_task(task_id) is not None

        fields.append("updated_at = ?")
        params.append(time.time())
        params.append(int(task_id))

        # SQLite evaluates every SET expression against the old row, so the CASE
        # expressions above see the previous due_at.
        sql = f"UPDATE tasks SET {', '.join(fields)} WHERE id = ?"

        conn = self._get_conn()
        try:
            cur = conn.execute(sql, params)
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def complete_task(self, task_id: int) -> bool:
        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE tasks
                SET is_completed = 1,
                    alerted_due_at = NULL,
                    alerted_at = NULL,
                    updated_at = ?
                WHERE id = ?
                """,
                (now, int(task_id)),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def delete_task(self, task_id: int) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (int(task_id),))
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    # ---- users / devices ----

    def register_device_token(self, user_id: str, token: str) -> None:
        if not user_id or not user_id.strip():
            raise ValueError("user_id is required")
        if not token or not token.strip():
            raise ValueError("token is required")

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO users(user_id, device_token, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    device_token = excluded.device_token,
                    updated_at = excluded.updated_at
                """,
                (user_id.strip(), token.strip(), time.time()),
            )
            conn.commit()
            logger.info("Device token registered user=%s", user_id)
        finally:
            conn.close()

    def set_user_default_location(self, user_id: str, location: str | None) -> None:
        if not user_id or not user_id.strip():
            raise ValueError("user_id is required")

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO users(user_id, default_location, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    default_location = excluded.default_location,
                    updated_at = excluded.updated_at
                """,
                (user_id.strip(), (location or "").strip() or None, time.time()),
            )
            conn.commit()
        finally:
            conn.close()

    def _get_user_field(self, user_id: str, column: str) -> str | None:
        if not user_id:
            return None
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(f"SELECT {column} FROM users WHERE user_id = ?", (user_id,))
            row = cur.fetchone()
            if row is None:
                return None
            value = row[column]
            return str(value) if value else None
        finally:
            conn.close()

    def get_user_device_token(self, user_id: str) -> str | None:
        return self._get_user_field(user_id, "device_token")

    def get_user_default_location(self, user_id: str) -> str | None:
        return self._get_user_field(user_id, "default_location")

    # ---- alert engine API ----

    def find_eligible_outdoor_tasks(
        self,
        *,
        now_ts: float,
        horizon_seconds: float,
        grace_seconds: float = 0.0,
        limit: int = 500,
    ) -> list[Task]:
        """
        Tasks the weather alert sweep should evaluate.

        Eligible iff:
        - category = outdoor and not completed
        - due_at is set and in [now - grace, now + horizon]
        - no dedup marker for the current due time
        """
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT *
                FROM tasks
                WHERE category = ?
                  AND is_completed = 0
                  AND due_at IS NOT NULL
                  AND due_at >= ?
                  AND due_at <= ?
                  AND (alerted_due_at IS NULL OR alerted_due_at != due_at)
                ORDER BY due_at ASC, id ASC
                    LIMIT ?
                """,
                (
                    TaskCategory.OUTDOOR.value,
                    float(now_ts) - max(0.0, float(grace_seconds)),
                    float(now_ts) + max(0.0, float(horizon_seconds)),
                    int(limit),
                ),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def set_alert_marker(self, task_id: int, due_snapshot: float, *, now_ts: float | None = None) -> bool:
        """
        Record that an alert was delivered for (task_id, due_snapshot).

        Atomic compare-and-set: succeeds only if the task is still incomplete,
        its due time still equals due_snapshot, and no marker exists yet for it.
        Returns False on conflict (another sweep won, or the task changed).
        """
        if now_ts is None:
            now_ts = time.time()

        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE tasks
                SET alerted_due_at = ?,
                    alerted_at = ?
                WHERE id = ?
                  AND is_completed = 0
                  AND due_at = ?
                  AND (alerted_due_at IS NULL OR alerted_due_at != due_at)
                """,
                (float(due_snapshot), float(now_ts), int(task_id), float(due_snapshot)),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()
