import sqlite3
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List

from config import DEFAULT_CATEGORIES
from database.helpers import DatabaseError, _ts

logger = logging.getLogger(__name__)


class DataOpsMixin:
    """Seed and export operations mixin."""

    async def seed_default_categories(self, user_id: str, now: datetime) -> int:
        """Insert the default categories for a user who has none.

        Returns:
            Number of categories inserted (0 if the user already had some).
        """
        try:
            async with self._transaction() as conn:
                async with conn.execute(
                    "SELECT COUNT(*) FROM categories WHERE user_id=?", (user_id,)
                ) as cursor:
                    row = await cursor.fetchone()
                    if row[0] > 0:
                        return 0
                await conn.executemany(
                    "INSERT INTO categories (id, user_id, name, color, icon, type, created_at) "
                    "VALUES (?,?,?,?,?,?,?)",
                    [
                        (str(uuid.uuid4()), user_id, c["name"], c["color"], None, c["type"], _ts(now))
                        for c in DEFAULT_CATEGORIES
                    ]
                )
                return len(DEFAULT_CATEGORIES)
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error seeding default categories: {e}")
            raise DatabaseError(f"Failed to seed default categories: {e}") from e

    async def export_user_data(self, user_id: str) -> Dict[str, List[Dict[str, Any]]]:
        """Dump every row owned by a user, keyed by table name."""
        tables = ("tasks", "categories", "calendar_events", "focus_sessions", "settings")
        try:
            async with self._get_connection() as conn:
                result: Dict[str, List[Dict[str, Any]]] = {}
                for table in tables:
                    async with conn.execute(
                        f"SELECT * FROM {table} WHERE user_id=?", (user_id,)
                    ) as cursor:
                        result[table] = [dict(r) async for r in cursor]
                return result
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error exporting data: {e}")
            raise DatabaseError(f"Failed to export data: {e}") from e
