import sqlite3
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from database.helpers import DatabaseError, _serialize_row, _ts

logger = logging.getLogger(__name__)


class RecordsMixin:
    """Profile, category, calendar event and focus session operations mixin."""

    # ========================================================================
    # Profiles
    # ========================================================================

    async def ensure_profile(self, user_id: str, timezone_name: str) -> Dict[str, Any]:
        """Create the profile row on first sign-in and return it."""
        try:
            async with self._get_connection() as conn:
                await conn.execute(
                    "INSERT OR IGNORE INTO profiles (id, timezone) VALUES (?, ?)",
                    (user_id, timezone_name)
                )
                await conn.commit()
                async with conn.execute("SELECT * FROM profiles WHERE id=?", (user_id,)) as cursor:
                    return dict(await cursor.fetchone())
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error ensuring profile for {user_id}: {e}")
            raise DatabaseError(f"Failed to load profile: {e}") from e

    async def update_profile(self, user_id: str, fields: Dict[str, Any]) -> None:
        allowed = {k: v for k, v in fields.items() if k in ("full_name", "timezone")}
        if not allowed:
            return
        assignments = ", ".join(f"{k}=?" for k in allowed)
        try:
            async with self._get_connection() as conn:
                await conn.execute(
                    f"UPDATE profiles SET {assignments} WHERE id=?",
                    tuple(allowed.values()) + (user_id,)
                )
                await conn.commit()
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error updating profile for {user_id}: {e}")
            raise DatabaseError(f"Failed to update profile: {e}") from e

    # ========================================================================
    # Categories
    # ========================================================================

    async def save_category(self, c: Dict[str, Any]) -> None:
        row = _serialize_row(c)
        try:
            async with self._get_connection() as conn:
                await conn.execute(
                    "INSERT OR REPLACE INTO categories "
                    "(id, user_id, name, color, icon, type, created_at) VALUES (?,?,?,?,?,?,?)",
                    (row["id"], row["user_id"], row["name"], row["color"],
                     row.get("icon"), row.get("type"), row["created_at"])
                )
                await conn.commit()
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error saving category: {e}")
            raise DatabaseError(f"Failed to save category: {e}") from e

    async def load_categories(self, user_id: str) -> List[Dict[str, Any]]:
        """Load all category rows of a user, oldest first (duplicates included)."""
        try:
            async with self._get_connection() as conn:
                async with conn.execute(
                    "SELECT * FROM categories WHERE user_id=? ORDER BY created_at, rowid",
                    (user_id,)
                ) as cursor:
                    return [dict(r) async for r in cursor]
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error loading categories: {e}")
            raise DatabaseError(f"Failed to load categories: {e}") from e

    async def delete_categories(self, user_id: str, category_ids: List[str]) -> int:
        """Delete categories by id; tasks referencing them lose their category."""
        if not category_ids:
            return 0
        placeholders = ",".join("?" * len(category_ids))
        try:
            async with self._transaction() as conn:
                await conn.execute(
                    f"UPDATE tasks SET category_id=NULL, version = version + 1 "
                    f"WHERE user_id=? AND category_id IN ({placeholders})",
                    (user_id, *category_ids)
                )
                cursor = await conn.execute(
                    f"DELETE FROM categories WHERE user_id=? AND id IN ({placeholders})",
                    (user_id, *category_ids)
                )
                return cursor.rowcount
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error deleting categories {category_ids}: {e}")
            raise DatabaseError(f"Failed to delete categories: {e}") from e

    async def merge_categories(self, user_id: str, duplicates: Dict[str, str]) -> int:
        """Delete duplicate categories, moving their tasks to the kept one.

        Args:
            duplicates: duplicate category id -> id of the category kept

        Returns:
            Number of categories deleted
        """
        if not duplicates:
            return 0
        try:
            async with self._transaction() as conn:
                deleted = 0
                for duplicate_id, keeper_id in duplicates.items():
                    await conn.execute(
                        "UPDATE tasks SET category_id=?, version = version + 1 "
                        "WHERE user_id=? AND category_id=?",
                        (keeper_id, user_id, duplicate_id)
                    )
                    cursor = await conn.execute(
                        "DELETE FROM categories WHERE user_id=? AND id=?", (user_id, duplicate_id)
                    )
                    deleted += cursor.rowcount
                return deleted
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error merging duplicate categories: {e}")
            raise DatabaseError(f"Failed to clean up categories: {e}") from e

    # ========================================================================
    # Calendar events
    # ========================================================================

    async def save_calendar_event(self, ev: Dict[str, Any]) -> None:
        row = _serialize_row(ev)
        try:
            async with self._get_connection() as conn:
                await conn.execute(
                    "INSERT OR REPLACE INTO calendar_events "
                    "(id, user_id, title, description, start_time, end_time, all_day, "
                    "source, external_id) VALUES (?,?,?,?,?,?,?,?,?)",
                    (row["id"], row["user_id"], row["title"], row.get("description"),
                     row["start_time"], row["end_time"], row.get("all_day", 0),
                     row.get("source"), row.get("external_id"))
                )
                await conn.commit()
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error saving calendar event: {e}")
            raise DatabaseError(f"Failed to save calendar event: {e}") from e

    async def delete_calendar_event(self, user_id: str, event_id: str) -> bool:
        try:
            async with self._get_connection() as conn:
                cursor = await conn.execute(
                    "DELETE FROM calendar_events WHERE id=? AND user_id=?", (event_id, user_id)
                )
                await conn.commit()
                return cursor.rowcount > 0
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error deleting calendar event {event_id}: {e}")
            raise DatabaseError(f"Failed to delete calendar event: {e}") from e

    async def load_calendar_events(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Load events overlapping ``[start, end)`` (all events when unbounded)."""
        conditions = ["user_id = ?"]
        params: List[Any] = [user_id]
        if end is not None:
            conditions.append("start_time < ?")
            params.append(_ts(end))
        if start is not None:
            conditions.append("end_time > ?")
            params.append(_ts(start))
        query = f"SELECT * FROM calendar_events WHERE {' AND '.join(conditions)} ORDER BY start_time"
        try:
            async with self._get_connection() as conn:
                async with conn.execute(query, tuple(params)) as cursor:
                    return [dict(r) async for r in cursor]
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error loading calendar events: {e}")
            raise DatabaseError(f"Failed to load calendar events: {e}") from e

    # ========================================================================
    # Focus sessions
    # ========================================================================

    async def save_focus_session(self, session: Dict[str, Any]) -> int:
        row = _serialize_row(session)
        try:
            async with self._get_connection() as conn:
                cursor = await conn.execute(
                    "INSERT INTO focus_sessions (user_id, minutes, mode, logged_at) "
                    "VALUES (?, ?, ?, ?)",
                    (row["user_id"], row["minutes"], row["mode"], row["logged_at"])
                )
                await conn.commit()
                return cursor.lastrowid
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error saving focus session: {e}")
            raise DatabaseError(f"Failed to save focus session: {e}") from e

    async def load_focus_sessions(self, user_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Load focus sessions, most recent first."""
        query = "SELECT * FROM focus_sessions WHERE user_id=? ORDER BY logged_at DESC, id DESC"
        params: List[Any] = [user_id]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        try:
            async with self._get_connection() as conn:
                async with conn.execute(query, tuple(params)) as cursor:
                    return [dict(r) async for r in cursor]
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error loading focus sessions: {e}")
            raise DatabaseError(f"Failed to load focus sessions: {e}") from e
