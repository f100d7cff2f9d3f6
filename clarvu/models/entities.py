from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from config import (
    DEFAULT_TASK_DURATION_MINUTES,
    POMODORO_BREAK_MINUTES,
    POMODORO_FOCUS_MINUTES,
    POMODORO_LONG_BREAK_EVERY,
    POMODORO_LONG_BREAK_MINUTES,
    Priority,
    TaskStatus,
    TEMP_ID_PREFIX,
)
from errors import ValidationError


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO string (or pass through a datetime) as an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value))
        except ValueError as e:
            raise ValidationError(f"Invalid timestamp: {value!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def round_minutes(seconds: float) -> int:
    """Convert seconds to whole minutes, rounding half up, never negative."""
    if seconds <= 0:
        return 0
    return int((seconds + 30) // 60)


def minutes_between(start: Optional[datetime], end: datetime) -> int:
    """Whole minutes from ``start`` to ``end``; 0 when there is no start."""
    if start is None:
        return 0
    return round_minutes((end - start).total_seconds())


@dataclass
class Task:
    title: str
    status: TaskStatus = TaskStatus.UNSCHEDULED
    id: Optional[str] = None
    user_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_minutes: Optional[int] = DEFAULT_TASK_DURATION_MINUTES
    category_id: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    is_scheduled: bool = False
    version: int = 0
    created_at: Optional[datetime] = None

    @property
    def is_temporary(self) -> bool:
        """True while the task only exists as an optimistic placeholder."""
        return self.id is not None and self.id.startswith(TEMP_ID_PREFIX)

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    @property
    def is_active(self) -> bool:
        return self.status == TaskStatus.IN_PROGRESS

    def copy(self) -> "Task":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "status": self.status.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_minutes": self.duration_minutes,
            "category_id": self.category_id,
            "priority": self.priority.value,
            "is_scheduled": 1 if self.is_scheduled else 0,
            "version": self.version,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Task":
        try:
            status = TaskStatus(d.get("status", TaskStatus.UNSCHEDULED.value))
        except ValueError:
            status = TaskStatus.UNSCHEDULED
        try:
            priority = Priority(d.get("priority") or Priority.MEDIUM.value)
        except ValueError:
            priority = Priority.MEDIUM
        return cls(
            id=d.get("id"),
            user_id=d.get("user_id"),
            title=d["title"],
            status=status,
            start_time=parse_timestamp(d.get("start_time")),
            end_time=parse_timestamp(d.get("end_time")),
            duration_minutes=d.get("duration_minutes"),
            category_id=d.get("category_id"),
            priority=priority,
            is_scheduled=bool(d.get("is_scheduled", 0)),
            version=d.get("version", 0) or 0,
            created_at=parse_timestamp(d.get("created_at")),
        )


@dataclass
class Category:
    """Category used to group tasks (e.g. "Business", "Routine")."""
    id: str
    name: str
    color: str
    icon: Optional[str] = None
    type: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def normalized_name(self) -> str:
        return normalize_category_name(self.name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "color": self.color,
            "icon": self.icon,
            "type": self.type,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Category":
        return cls(
            id=d["id"],
            name=d["name"],
            color=d["color"],
            icon=d.get("icon"),
            type=d.get("type"),
            user_id=d.get("user_id"),
            created_at=parse_timestamp(d.get("created_at")),
        )


def normalize_category_name(name: str) -> str:
    return name.lower().strip()


@dataclass
class CalendarEvent:
    """Calendar event (imported or manually created) shown next to tasks."""
    id: str
    title: str
    start_time: datetime
    end_time: datetime
    description: Optional[str] = None
    all_day: bool = False
    source: Optional[str] = None
    external_id: Optional[str] = None
    user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "all_day": 1 if self.all_day else 0,
            "source": self.source,
            "external_id": self.external_id,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CalendarEvent":
        return cls(
            id=d["id"],
            user_id=d.get("user_id"),
            title=d["title"],
            description=d.get("description"),
            start_time=parse_timestamp(d["start_time"]),
            end_time=parse_timestamp(d["end_time"]),
            all_day=bool(d.get("all_day", 0)),
            source=d.get("source"),
            external_id=d.get("external_id"),
        )


@dataclass
class ActiveTimerRecord:
    """Persisted per-user timer row, replaced on every task start."""
    user_id: str
    task_id: str
    started_at: datetime
    ends_at: Optional[datetime]
    remaining_seconds: int
    is_running: bool = True

    @property
    def total_seconds(self) -> int:
        if self.ends_at is None:
            return self.remaining_seconds
        return int((self.ends_at - self.started_at).total_seconds())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "task_id": self.task_id,
            "started_at": self.started_at,
            "ends_at": self.ends_at,
            "remaining_seconds": self.remaining_seconds,
            "is_running": 1 if self.is_running else 0,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ActiveTimerRecord":
        return cls(
            user_id=d["user_id"],
            task_id=d["task_id"],
            started_at=parse_timestamp(d["started_at"]),
            ends_at=parse_timestamp(d.get("ends_at")),
            remaining_seconds=d.get("remaining_seconds") or 0,
            is_running=bool(d.get("is_running", 1)),
        )


@dataclass
class FocusSession:
    """Logged block of focused time (count-up task or standalone focus)."""
    minutes: int
    mode: str
    logged_at: datetime
    id: Optional[int] = None
    user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "minutes": self.minutes,
            "mode": self.mode,
            "logged_at": self.logged_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "FocusSession":
        return cls(
            id=d.get("id"),
            user_id=d.get("user_id"),
            minutes=d["minutes"],
            mode=d["mode"],
            logged_at=parse_timestamp(d["logged_at"]),
        )


@dataclass
class Profile:
    id: str
    timezone: str
    full_name: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Profile":
        return cls(id=d["id"], timezone=d.get("timezone") or "UTC", full_name=d.get("full_name"))


@dataclass
class PomodoroSettings:
    focus_minutes: int = POMODORO_FOCUS_MINUTES
    break_minutes: int = POMODORO_BREAK_MINUTES
    long_break_minutes: int = POMODORO_LONG_BREAK_MINUTES
    long_break_every: int = POMODORO_LONG_BREAK_EVERY
    auto_start_break: bool = False


@dataclass
class Preferences:
    """Per-user preferences persisted across sessions."""
    last_category_id: Optional[str] = None
    custom_duration_minutes: int = DEFAULT_TASK_DURATION_MINUTES
    task_order: List[str] = field(default_factory=list)
    pomodoro: PomodoroSettings = field(default_factory=PomodoroSettings)
    hide_seconds: bool = False
    notifications_enabled: bool = True


@dataclass
class ActionResult:
    """Outcome of a persistence action.

    Actions never raise across their boundary; callers branch on ``success``
    and roll back any optimistic state when it is False.
    """
    success: bool = False
    error: Optional[str] = None
    task: Optional[Task] = None
    tasks: List[Task] = field(default_factory=list)
    data: Any = None

    @classmethod
    def ok(
        cls,
        task: Optional[Task] = None,
        tasks: Optional[List[Task]] = None,
        data: Any = None,
    ) -> "ActionResult":
        return cls(success=True, task=task, tasks=list(tasks or []), data=data)

    @classmethod
    def fail(cls, error: str) -> "ActionResult":
        return cls(success=False, error=error)
