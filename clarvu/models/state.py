"""Client-side stores holding the local view of server data.

The stores do no I/O. Services and the facade feed them server responses and
optimistic placeholders; readers get a consistent snapshot at any time.
"""
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from clock import today_range
from config import DEFAULT_TIMEZONE, PRIORITY_ORDER, STATUS_ORDER, TaskStatus, TEMP_ID_PREFIX
from models.entities import CalendarEvent, Category, Preferences, Task, normalize_category_name


class TaskStore:
    """In-memory map of task id -> Task with optimistic upserts.

    Confirmed records must be added before their temporary placeholder is
    removed, so readers never observe the task missing.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, Task] = {}
        self._order: List[str] = []

    @staticmethod
    def new_temp_id() -> str:
        return f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"

    @staticmethod
    def is_temp_id(task_id: Optional[str]) -> bool:
        return bool(task_id) and task_id.startswith(TEMP_ID_PREFIX)

    def set_from_server(self, tasks: Iterable[Task]) -> None:
        """Replace the whole cache with the server's list."""
        self._tasks = {t.id: t for t in tasks}

    def add_or_update(self, task: Task) -> None:
        self._tasks[task.id] = task

    def remove(self, task_id: str) -> Optional[Task]:
        return self._tasks.pop(task_id, None)

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def in_progress(self) -> Optional[Task]:
        """The task currently in progress, if any."""
        for task in self._tasks.values():
            if task.status == TaskStatus.IN_PROGRESS:
                return task
        return None

    def apply_order(self, task_ids: Iterable[str]) -> None:
        """Set the manual display order (unknown ids are kept, not validated)."""
        self._order = list(dict.fromkeys(task_ids))

    @property
    def order(self) -> List[str]:
        return list(self._order)

    @property
    def tasks(self) -> List[Task]:
        """Tasks in display order.

        Manually ordered tasks come first, in their manual order; the rest
        follow by status (in progress, scheduled, unscheduled, completed)
        and then priority (high first).
        """
        ranked = {task_id: i for i, task_id in enumerate(self._order)}
        manual = sorted(
            (t for t in self._tasks.values() if t.id in ranked),
            key=lambda t: ranked[t.id],
        )
        rest = sorted(
            (t for t in self._tasks.values() if t.id not in ranked),
            key=lambda t: (STATUS_ORDER[t.status], PRIORITY_ORDER[t.priority]),
        )
        return manual + rest

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks


class CategoryStore:
    """Categories deduplicated by normalised name (first one wins)."""

    def __init__(self) -> None:
        self._categories: Dict[str, Category] = {}

    def set_from_server(self, categories: Iterable[Category]) -> None:
        self._categories = {}
        seen = set()
        for category in categories:
            key = category.normalized_name
            if key in seen:
                continue
            seen.add(key)
            self._categories[category.id] = category

    def add_or_update(self, category: Category) -> bool:
        """Upsert a category.

        A new id whose name duplicates an existing category is ignored.

        Returns:
            True if the store changed
        """
        if category.id not in self._categories and self.find_by_name(category.name):
            return False
        self._categories[category.id] = category
        return True

    def remove(self, category_id: str) -> Optional[Category]:
        return self._categories.pop(category_id, None)

    def get(self, category_id: Optional[str]) -> Optional[Category]:
        if category_id is None:
            return None
        return self._categories.get(category_id)

    def find_by_name(self, name: str) -> Optional[Category]:
        key = normalize_category_name(name)
        for category in self._categories.values():
            if category.normalized_name == key:
                return category
        return None

    @property
    def categories(self) -> List[Category]:
        return list(self._categories.values())

    def __len__(self) -> int:
        return len(self._categories)


class CalendarStore:
    def __init__(self) -> None:
        self._events: Dict[str, CalendarEvent] = {}

    def set_from_server(self, events: Iterable[CalendarEvent]) -> None:
        self._events = {e.id: e for e in events}

    def add_or_update(self, event: CalendarEvent) -> None:
        self._events[event.id] = event

    def remove(self, event_id: str) -> Optional[CalendarEvent]:
        return self._events.pop(event_id, None)

    def get(self, event_id: str) -> Optional[CalendarEvent]:
        return self._events.get(event_id)

    @property
    def events(self) -> List[CalendarEvent]:
        return sorted(self._events.values(), key=lambda e: e.start_time)

    def today_events(self, now: datetime, tz_name: str = DEFAULT_TIMEZONE) -> List[CalendarEvent]:
        """Events overlapping the user's current local day, by start time."""
        start, end = today_range(tz_name, now)
        return [e for e in self.events if e.start_time < end and e.end_time > start]


@dataclass
class AppState:
    """Local state of the signed-in user, owned by the ServiceContainer."""
    user_id: Optional[str] = None
    timezone: str = DEFAULT_TIMEZONE
    tasks: TaskStore = field(default_factory=TaskStore)
    categories: CategoryStore = field(default_factory=CategoryStore)
    calendar: CalendarStore = field(default_factory=CalendarStore)
    preferences: Preferences = field(default_factory=Preferences)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def reset(self) -> None:
        """Drop all user data (sign-out)."""
        self.user_id = None
        self.timezone = DEFAULT_TIMEZONE
        self.tasks = TaskStore()
        self.categories = CategoryStore()
        self.calendar = CalendarStore()
        self.preferences = Preferences()
