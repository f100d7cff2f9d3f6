import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from errors import ClarvuError

logger = logging.getLogger(__name__)


class DatabaseError(ClarvuError):
    """Custom exception for database operations."""
    pass


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime to an ISO string in UTC (None passes through)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _serialize_row(d: Dict[str, Any]) -> Dict[str, Any]:
    """Convert datetime values of an entity dict to ISO strings for storage."""
    return {
        k: _ts(v) if isinstance(v, datetime) else v
        for k, v in d.items()
    }


def _deserialize_task_row(row) -> Dict[str, Any]:
    """Convert a raw database row into a task dict with defaults filled in."""
    task_dict = dict(row)
    task_dict["is_scheduled"] = task_dict.get("is_scheduled") or 0
    task_dict["priority"] = task_dict.get("priority") or "medium"
    task_dict["version"] = task_dict.get("version") or 0
    return task_dict


def _decode_setting(raw: Optional[str], default: Any) -> Any:
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except ValueError as e:
        logger.warning(f"Ignoring malformed setting value {raw!r}: {e}")
        return default
