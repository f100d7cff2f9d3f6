import aiosqlite
import asyncio
import json
import sqlite3
import logging
import threading
from contextlib import asynccontextmanager
from typing import Optional, Any, AsyncIterator

import database as _pkg
from config import DEFAULT_TASK_DURATION_MINUTES
from database.helpers import DatabaseError, _decode_setting

logger = logging.getLogger(__name__)


class DatabaseCore:
    """Async SQLite database with persistent connection and async lock.

    Uses a single persistent connection with an async lock to serialize
    access (SQLite limitation). The connection is lazily initialized on
    first use and reused until explicitly closed. Every query is scoped by
    ``user_id``; there is no cross-user access path.
    """
    _instance: Optional["DatabaseCore"] = None
    _instance_lock = threading.Lock()

    def __new__(cls) -> "DatabaseCore":
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
                    cls._instance._init_lock: Optional[asyncio.Lock] = None
                    cls._instance._conn: Optional[aiosqlite.Connection] = None
                    cls._instance._conn_lock: Optional[asyncio.Lock] = None
        return cls._instance

    async def _ensure_connection(self) -> aiosqlite.Connection:
        """Ensure we have an open connection, creating one if needed."""
        if self._conn is None:
            try:
                self._conn = await aiosqlite.connect(_pkg.DB_PATH)
                self._conn.row_factory = aiosqlite.Row
                await self._conn.execute("PRAGMA journal_mode=WAL")
                await self._conn.execute("PRAGMA busy_timeout=5000")
                await self._conn.execute("PRAGMA foreign_keys=ON")
            except (sqlite3.Error, OSError) as e:
                self._conn = None
                raise DatabaseError(f"Cannot open database at {_pkg.DB_PATH}: {e}") from e
        return self._conn

    async def _get_lock(self) -> asyncio.Lock:
        """Get or create the async lock for connection serialization."""
        if self._conn_lock is None:
            self._conn_lock = asyncio.Lock()
        return self._conn_lock

    @asynccontextmanager
    async def _get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Get a database connection with serialized access."""
        lock = await self._get_lock()
        async with lock:
            conn = await self._ensure_connection()
            yield conn

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run a block of statements as one transaction.

        Commits when the block exits normally and rolls back on any
        exception, so multi-row writes are never half-applied.
        """
        async with self._get_connection() as conn:
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            else:
                await conn.commit()

    async def close(self) -> None:
        """Close the persistent connection."""
        if self._conn is not None:
            try:
                await self._conn.close()
            except (sqlite3.Error, OSError) as e:
                logger.warning(f"Error closing database connection: {e}")
            finally:
                self._conn = None

    async def _get_init_lock(self) -> asyncio.Lock:
        """Get or create the async lock for init serialization."""
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        return self._init_lock

    async def init_db(self) -> None:
        """Initialize the database schema if needed."""
        lock = await self._get_init_lock()
        async with lock:
            if self._initialized:
                return
            async with self._get_connection() as conn:
                await self._init_schema(conn)
                await self._migrate_schema(conn)
                await conn.commit()
            self._initialized = True

    async def _init_schema(self, conn: aiosqlite.Connection) -> None:
        try:
            await conn.executescript(f"""
                CREATE TABLE IF NOT EXISTS profiles (
                    id TEXT PRIMARY KEY,
                    full_name TEXT,
                    timezone TEXT NOT NULL DEFAULT 'UTC'
                );
                CREATE TABLE IF NOT EXISTS categories (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    color TEXT NOT NULL,
                    icon TEXT,
                    type TEXT,
                    created_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'unscheduled',
                    start_time TEXT,
                    end_time TEXT,
                    duration_minutes INTEGER DEFAULT {DEFAULT_TASK_DURATION_MINUTES},
                    category_id TEXT,
                    priority TEXT DEFAULT 'medium',
                    is_scheduled INTEGER DEFAULT 0,
                    version INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE SET NULL
                );
                CREATE TABLE IF NOT EXISTS active_timers (
                    user_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    ends_at TEXT,
                    remaining_seconds INTEGER NOT NULL DEFAULT 0,
                    is_running INTEGER DEFAULT 1,
                    FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE
                );
                CREATE TABLE IF NOT EXISTS calendar_events (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    all_day INTEGER DEFAULT 0,
                    source TEXT,
                    external_id TEXT
                );
                CREATE TABLE IF NOT EXISTS focus_sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    minutes INTEGER NOT NULL,
                    mode TEXT NOT NULL,
                    logged_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS settings (
                    user_id TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    PRIMARY KEY (user_id, key)
                );
                CREATE INDEX IF NOT EXISTS idx_tasks_user_status ON tasks(user_id, status);
                CREATE INDEX IF NOT EXISTS idx_tasks_user_start ON tasks(user_id, start_time);
                CREATE INDEX IF NOT EXISTS idx_categories_user ON categories(user_id);
                CREATE INDEX IF NOT EXISTS idx_calendar_user_start
                    ON calendar_events(user_id, start_time);
                CREATE INDEX IF NOT EXISTS idx_focus_sessions_user
                    ON focus_sessions(user_id, logged_at);
            """)
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error initializing database schema: {e}")
            raise DatabaseError(f"Failed to initialize schema: {e}") from e

    async def _migrate_schema(self, conn: aiosqlite.Connection) -> None:
        """Handle schema migrations for existing databases."""
        try:
            async with conn.execute("PRAGMA table_info(tasks)") as cursor:
                cols = [r[1] async for r in cursor]

            if "priority" not in cols:
                await conn.execute(
                    "ALTER TABLE tasks ADD COLUMN priority TEXT DEFAULT 'medium'"
                )
            if "is_scheduled" not in cols:
                await conn.execute(
                    "ALTER TABLE tasks ADD COLUMN is_scheduled INTEGER DEFAULT 0"
                )
                # Rows written before the flag existed are scheduled iff they have a start
                await conn.execute(
                    "UPDATE tasks SET is_scheduled = 1 WHERE start_time IS NOT NULL"
                )
            if "version" not in cols:
                await conn.execute(
                    "ALTER TABLE tasks ADD COLUMN version INTEGER DEFAULT 0"
                )

            async with conn.execute("PRAGMA table_info(profiles)") as cursor:
                profile_cols = [r[1] async for r in cursor]
            if "timezone" not in profile_cols:
                await conn.execute(
                    "ALTER TABLE profiles ADD COLUMN timezone TEXT NOT NULL DEFAULT 'UTC'"
                )
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error during schema migration: {e}")
            raise DatabaseError(f"Failed to migrate schema: {e}") from e

    async def get_setting(self, user_id: str, key: str, default: Any = None) -> Any:
        """Get a setting value. Returns default if not found or on error."""
        try:
            async with self._get_connection() as conn:
                async with conn.execute(
                    "SELECT value FROM settings WHERE user_id=? AND key=?",
                    (user_id, key)
                ) as cursor:
                    row = await cursor.fetchone()
                    return _decode_setting(row["value"] if row else None, default)
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Error getting setting {key}: {e}")
            return default

    async def set_setting(self, user_id: str, key: str, value: Any) -> None:
        try:
            async with self._get_connection() as conn:
                await conn.execute(
                    "INSERT OR REPLACE INTO settings (user_id,key,value) VALUES (?,?,?)",
                    (user_id, key, json.dumps(value))
                )
                await conn.commit()
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error setting {key}: {e}")
            raise DatabaseError(f"Failed to save setting: {e}") from e

    async def load_settings(self, user_id: str) -> dict:
        """Load every stored setting of a user as a key -> value dict."""
        try:
            async with self._get_connection() as conn:
                async with conn.execute(
                    "SELECT key, value FROM settings WHERE user_id=?",
                    (user_id,)
                ) as cursor:
                    return {r["key"]: _decode_setting(r["value"], None) async for r in cursor}
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error loading settings: {e}")
            raise DatabaseError(f"Failed to load settings: {e}") from e

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance.

        Note: This method is primarily used for testing to ensure
        a fresh Database instance between test cases. Not typically
        called in production code.
        """
        with cls._instance_lock:
            if cls._instance is not None:
                cls._instance._initialized = False
                cls._instance._conn = None
                cls._instance._conn_lock = None
                cls._instance = None
