import sqlite3
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite

from config import TaskStatus
from database.helpers import DatabaseError, _deserialize_task_row, _serialize_row, _ts
from models.entities import minutes_between, parse_timestamp

logger = logging.getLogger(__name__)

_TASK_COLUMNS = (
    "id", "user_id", "title", "status", "start_time", "end_time",
    "duration_minutes", "category_id", "priority", "is_scheduled",
    "version", "created_at",
)
_UPDATABLE_COLUMNS = frozenset(_TASK_COLUMNS) - {"id", "user_id", "version", "created_at"}


async def _fetch_task(conn: aiosqlite.Connection, user_id: str, task_id: str) -> Optional[Dict[str, Any]]:
    async with conn.execute(
        "SELECT * FROM tasks WHERE id=? AND user_id=?", (task_id, user_id)
    ) as cursor:
        row = await cursor.fetchone()
        return _deserialize_task_row(row) if row else None


async def _complete_other_in_progress(
    conn: aiosqlite.Connection,
    user_id: str,
    exclude_id: Optional[str],
    now: datetime,
) -> List[Dict[str, Any]]:
    """Complete every in-progress task of the user except ``exclude_id``.

    Each displaced task gets ``end_time = now`` and a duration computed from
    its own start, so no completed row is left without a duration.
    """
    async with conn.execute(
        "SELECT * FROM tasks WHERE user_id=? AND status=? AND id IS NOT ?",
        (user_id, TaskStatus.IN_PROGRESS.value, exclude_id)
    ) as cursor:
        others = [_deserialize_task_row(r) async for r in cursor]

    completed = []
    for other in others:
        duration = minutes_between(parse_timestamp(other.get("start_time")), now)
        await conn.execute(
            "UPDATE tasks SET status=?, end_time=?, duration_minutes=?, "
            "version = version + 1 WHERE id=? AND user_id=?",
            (TaskStatus.COMPLETED.value, _ts(now), duration, other["id"], user_id)
        )
        completed.append(await _fetch_task(conn, user_id, other["id"]))
    if others:
        logger.info(f"Force-completed {len(others)} in-progress task(s) for user {user_id}")
    return completed


class TasksMixin:
    """Task and active timer operations mixin for the Database class."""

    async def insert_task(
        self,
        t: Dict[str, Any],
        complete_others_at: Optional[datetime] = None,
    ) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
        """Insert a task row.

        When ``complete_others_at`` is given (the new task starts in progress),
        other in-progress tasks of the same user are completed in the same
        transaction.

        Returns:
            The stored row and the rows that were force-completed.
        """
        row = _serialize_row({k: t.get(k) for k in _TASK_COLUMNS})
        row["version"] = row.get("version") or 1
        try:
            async with self._transaction() as conn:
                completed: List[Dict[str, Any]] = []
                if complete_others_at is not None:
                    completed = await _complete_other_in_progress(
                        conn, row["user_id"], row["id"], complete_others_at
                    )
                placeholders = ",".join("?" * len(_TASK_COLUMNS))
                await conn.execute(
                    f"INSERT INTO tasks ({','.join(_TASK_COLUMNS)}) VALUES ({placeholders})",
                    tuple(row[c] for c in _TASK_COLUMNS)
                )
                stored = await _fetch_task(conn, row["user_id"], row["id"])
                return stored, completed
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error inserting task: {e}")
            raise DatabaseError(f"Failed to save task: {e}") from e

    async def update_task_fields(
        self,
        user_id: str,
        task_id: str,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
        complete_others_at: Optional[datetime] = None,
        clear_active_timer: bool = False,
    ) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
        """Apply ``fields`` to a task and bump its version.

        Returns ``(None, [])`` when the task does not exist or, if
        ``expected_version`` is given, when the stored version differs.
        """
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise DatabaseError(f"Cannot update task columns: {sorted(unknown)}")
        values = _serialize_row(fields)
        assignments = [f"{col}=?" for col in values] + ["version = version + 1"]
        params: List[Any] = list(values.values()) + [task_id, user_id]
        query = f"UPDATE tasks SET {', '.join(assignments)} WHERE id=? AND user_id=?"
        if expected_version is not None:
            query += " AND version=?"
            params.append(expected_version)
        try:
            async with self._transaction() as conn:
                completed: List[Dict[str, Any]] = []
                if complete_others_at is not None:
                    completed = await _complete_other_in_progress(
                        conn, user_id, task_id, complete_others_at
                    )
                cursor = await conn.execute(query, tuple(params))
                if cursor.rowcount == 0:
                    await conn.rollback()
                    return None, []
                if clear_active_timer:
                    await conn.execute(
                        "DELETE FROM active_timers WHERE user_id=? AND task_id=?",
                        (user_id, task_id)
                    )
                return await _fetch_task(conn, user_id, task_id), completed
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error updating task {task_id}: {e}")
            raise DatabaseError(f"Failed to update task: {e}") from e

    async def start_task(
        self,
        user_id: str,
        task_id: str,
        now: datetime,
        timer: Dict[str, Any],
    ) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
        """Start a task and replace the user's active timer atomically.

        Other in-progress tasks are completed, the target becomes
        in-progress with ``start_time = now`` and the active timer row is
        replaced, all in one transaction.

        Returns:
            The started row (None if the task does not exist) and the
            rows that were force-completed.
        """
        try:
            async with self._transaction() as conn:
                if await _fetch_task(conn, user_id, task_id) is None:
                    return None, []
                completed = await _complete_other_in_progress(conn, user_id, task_id, now)
                await conn.execute(
                    "UPDATE tasks SET status=?, start_time=?, end_time=NULL, is_scheduled=1, "
                    "version = version + 1 WHERE id=? AND user_id=?",
                    (TaskStatus.IN_PROGRESS.value, _ts(now), task_id, user_id)
                )
                record = _serialize_row(timer)
                await conn.execute(
                    "INSERT OR REPLACE INTO active_timers "
                    "(user_id, task_id, started_at, ends_at, remaining_seconds, is_running) "
                    "VALUES (?,?,?,?,?,?)",
                    (user_id, task_id, record["started_at"], record.get("ends_at"),
                     record["remaining_seconds"], record.get("is_running", 1))
                )
                return await _fetch_task(conn, user_id, task_id), completed
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error starting task {task_id}: {e}")
            raise DatabaseError(f"Failed to start task: {e}") from e

    async def delete_task(self, user_id: str, task_id: str) -> bool:
        try:
            async with self._transaction() as conn:
                cursor = await conn.execute(
                    "DELETE FROM tasks WHERE id=? AND user_id=?", (task_id, user_id)
                )
                return cursor.rowcount > 0
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error deleting task {task_id}: {e}")
            raise DatabaseError(f"Failed to delete task: {e}") from e

    async def load_task(self, user_id: str, task_id: str) -> Optional[Dict[str, Any]]:
        """Load a single task by ID. Returns None if not found."""
        try:
            async with self._get_connection() as conn:
                return await _fetch_task(conn, user_id, task_id)
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error loading task by id: {e}")
            raise DatabaseError(f"Failed to load task {task_id}: {e}") from e

    async def load_tasks(self, user_id: str) -> List[Dict[str, Any]]:
        try:
            async with self._get_connection() as conn:
                async with conn.execute(
                    "SELECT * FROM tasks WHERE user_id=? ORDER BY start_time IS NULL, start_time, created_at",
                    (user_id,)
                ) as cursor:
                    return [_deserialize_task_row(r) async for r in cursor]
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error loading tasks: {e}")
            raise DatabaseError(f"Failed to load tasks: {e}") from e

    async def load_tasks_in_range(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        include_unscheduled: bool = False,
    ) -> List[Dict[str, Any]]:
        """Load tasks whose start falls in ``[start, end)``.

        With ``include_unscheduled`` the user's backlog (tasks without a
        start time) is returned as well.
        """
        query = "SELECT * FROM tasks WHERE user_id=? AND (start_time >= ? AND start_time < ?"
        if include_unscheduled:
            query += " OR start_time IS NULL"
        query += ") ORDER BY start_time IS NULL, start_time, created_at"
        try:
            async with self._get_connection() as conn:
                async with conn.execute(query, (user_id, _ts(start), _ts(end))) as cursor:
                    return [_deserialize_task_row(r) async for r in cursor]
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error loading tasks in range: {e}")
            raise DatabaseError(f"Failed to load tasks in range: {e}") from e

    # ========================================================================
    # Active timer
    # ========================================================================

    async def load_active_timer(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            async with self._get_connection() as conn:
                async with conn.execute(
                    "SELECT * FROM active_timers WHERE user_id=?", (user_id,)
                ) as cursor:
                    row = await cursor.fetchone()
                    return dict(row) if row else None
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error loading active timer: {e}")
            raise DatabaseError(f"Failed to load active timer: {e}") from e

    async def save_active_timer(self, timer: Dict[str, Any]) -> None:
        record = _serialize_row(timer)
        try:
            async with self._get_connection() as conn:
                await conn.execute(
                    "INSERT OR REPLACE INTO active_timers "
                    "(user_id, task_id, started_at, ends_at, remaining_seconds, is_running) "
                    "VALUES (?,?,?,?,?,?)",
                    (record["user_id"], record["task_id"], record["started_at"],
                     record.get("ends_at"), record["remaining_seconds"],
                     record.get("is_running", 1))
                )
                await conn.commit()
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error saving active timer: {e}")
            raise DatabaseError(f"Failed to save active timer: {e}") from e

    async def delete_active_timer(self, user_id: str, task_id: Optional[str] = None) -> None:
        """Remove the user's active timer row (only if bound to ``task_id`` when given)."""
        query = "DELETE FROM active_timers WHERE user_id=?"
        params: Tuple[Any, ...] = (user_id,)
        if task_id is not None:
            query += " AND task_id=?"
            params = (user_id, task_id)
        try:
            async with self._get_connection() as conn:
                await conn.execute(query, params)
                await conn.commit()
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error deleting active timer: {e}")
            raise DatabaseError(f"Failed to delete active timer: {e}") from e
