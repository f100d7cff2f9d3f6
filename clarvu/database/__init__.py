"""Database package - async SQLite with mixin-based composition.

``from database import db, DatabaseError`` is the public entry point; the
``Database`` class is composed from the per-domain mixins below.
"""
from pathlib import Path

from config import DB_PATH as _CONFIGURED_DB_PATH

DB_PATH: Path = _CONFIGURED_DB_PATH

from database.helpers import DatabaseError  # noqa: E402
from database.core import DatabaseCore  # noqa: E402
from database.tasks import TasksMixin  # noqa: E402
from database.records import RecordsMixin  # noqa: E402
from database.data_ops import DataOpsMixin  # noqa: E402


class Database(DatabaseCore, TasksMixin, RecordsMixin, DataOpsMixin):
    """Composed database class combining all mixins."""
    pass


def configure_db_path(path: Path) -> None:
    """Set a custom database path before any connection is opened.

    Raises:
        RuntimeError: If the database connection is already open.
    """
    global DB_PATH
    if Database._instance is not None and Database._instance._conn is not None:
        raise RuntimeError(
            "Cannot change DB_PATH after a database connection has been opened. "
            "Call configure_db_path() before any database operations."
        )
    DB_PATH = path


db = Database()
