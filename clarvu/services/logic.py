import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from clock import SystemClock, system_clock, today_range
from config import (
    DEFAULT_TASK_DURATION_MINUTES,
    MIN_FOCUS_SESSION_MINUTES,
    Priority,
    TaskStatus,
)
from database import db
from errors import ClarvuError, ConflictError, NotFoundError, Unauthenticated, ValidationError
from models.entities import (
    ActionResult,
    ActiveTimerRecord,
    FocusSession,
    Task,
    minutes_between,
    parse_timestamp,
)
from models.state import AppState
from services.task_rules import (
    apply_task_patch,
    derive_status,
    validate_duration,
    validate_recorded_minutes,
    validate_title,
)

logger = logging.getLogger(__name__)


def _tasks(rows: List[Dict[str, Any]]) -> List[Task]:
    return [Task.from_dict(r) for r in rows]


class TaskService:
    """Server-side task actions.

    Every action checks for a signed-in user, performs its writes through
    the database layer and returns an ``ActionResult``. Expected failures
    (``ClarvuError`` and subclasses, database errors included) are turned
    into ``ActionResult.fail`` and never raised to the caller.

    The single in-progress task rule is enforced here: any write that puts a
    task in progress completes the user's other in-progress task in the
    same transaction.
    """

    def __init__(self, state: AppState, clock: SystemClock = system_clock) -> None:
        self.state = state
        self.clock = clock

    def _require_user(self) -> str:
        if self.state.user_id is None:
            raise Unauthenticated()
        return self.state.user_id

    async def _guarded(
        self,
        name: str,
        operation: Callable[[str], Awaitable[ActionResult]],
    ) -> ActionResult:
        try:
            user_id = self._require_user()
            return await operation(user_id)
        except ClarvuError as e:
            logger.warning(f"{name} failed: {e}")
            return ActionResult.fail(str(e))

    async def _load(self, user_id: str, task_id: str) -> Task:
        row = await db.load_task(user_id, task_id)
        if row is None:
            raise NotFoundError(f"Task {task_id} not found")
        return Task.from_dict(row)

    # ========================================================================
    # Create / start / end
    # ========================================================================

    async def create_task(
        self,
        title: str,
        category_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        priority: Priority = Priority.MEDIUM,
        is_scheduled: bool = False,
        duration_minutes: int = DEFAULT_TASK_DURATION_MINUTES,
    ) -> ActionResult:
        """Create a task.

        Unscheduled tasks get no start time. Scheduled tasks are
        ``scheduled`` when the start lies in the future and ``in_progress``
        otherwise; a scheduled task without a start is scheduled for now.
        """
        async def operation(user_id: str) -> ActionResult:
            clean_title = validate_title(title)
            validate_duration(duration_minutes, allow_zero=False)
            try:
                task_priority = Priority(priority)
            except ValueError as e:
                raise ValidationError(f"Invalid priority: {priority}") from e
            now = self.clock.now()
            start = parse_timestamp(start_time) if is_scheduled else None
            status = derive_status(is_scheduled, start, now)
            if is_scheduled and start is None:
                start = now

            task = Task(
                id=str(uuid.uuid4()),
                user_id=user_id,
                title=clean_title,
                status=status,
                start_time=start,
                duration_minutes=duration_minutes,
                category_id=category_id or None,
                priority=task_priority,
                is_scheduled=is_scheduled,
                created_at=now,
            )
            complete_others_at = now if status == TaskStatus.IN_PROGRESS else None
            row, completed = await db.insert_task(task.to_dict(), complete_others_at)
            logger.info(f"Created task {row['id']} ({status.value})")
            return ActionResult.ok(task=Task.from_dict(row), tasks=_tasks(completed))

        return await self._guarded("create_task", operation)

    async def start_task(
        self,
        task_id: str,
        duration_minutes: int = DEFAULT_TASK_DURATION_MINUTES,
        count_up: bool = False,
    ) -> ActionResult:
        """Start a task now.

        Completes any other in-progress task, marks the target in progress
        with ``start_time = now`` and replaces the user's active timer row,
        all in one transaction. ``result.tasks`` holds the tasks that were
        force-completed.
        """
        async def operation(user_id: str) -> ActionResult:
            if not count_up:
                validate_duration(duration_minutes, allow_zero=False)
            now = self.clock.now()
            timer = ActiveTimerRecord(
                user_id=user_id,
                task_id=task_id,
                started_at=now,
                ends_at=None if count_up else now + timedelta(minutes=duration_minutes),
                remaining_seconds=0 if count_up else duration_minutes * 60,
            )
            row, completed = await db.start_task(user_id, task_id, now, timer.to_dict())
            if row is None:
                raise NotFoundError(f"Task {task_id} not found")
            logger.info(f"Started task {task_id}")
            return ActionResult.ok(task=Task.from_dict(row), tasks=_tasks(completed), data=timer)

        return await self._guarded("start_task", operation)

    async def end_task(
        self,
        task_id: str,
        explicit_duration_minutes: Optional[int] = None,
        ended_at: Optional[datetime] = None,
    ) -> ActionResult:
        """Complete a task and remove its active timer row.

        The duration is the explicit one when given, otherwise the rounded
        minutes between the task's start and the end (0 without a start).
        """
        async def operation(user_id: str) -> ActionResult:
            task = await self._load(user_id, task_id)
            end = parse_timestamp(ended_at) or self.clock.now()
            if explicit_duration_minutes is not None:
                duration = validate_recorded_minutes(explicit_duration_minutes)
            else:
                duration = minutes_between(task.start_time, end)
            row, _ = await db.update_task_fields(
                user_id, task_id,
                {
                    "status": TaskStatus.COMPLETED.value,
                    "end_time": end,
                    "duration_minutes": duration,
                },
                clear_active_timer=True,
            )
            if row is None:
                raise NotFoundError(f"Task {task_id} not found")
            logger.info(f"Completed task {task_id} after {duration} min")
            return ActionResult.ok(task=Task.from_dict(row))

        return await self._guarded("end_task", operation)

    async def cancel_task(self, task_id: str) -> ActionResult:
        """Return a started task to ``scheduled`` and drop its time data."""
        async def operation(user_id: str) -> ActionResult:
            await self._load(user_id, task_id)
            row, _ = await db.update_task_fields(
                user_id, task_id,
                {
                    "status": TaskStatus.SCHEDULED.value,
                    "is_scheduled": 1,
                    "end_time": None,
                    "duration_minutes": None,
                },
                clear_active_timer=True,
            )
            if row is None:
                raise NotFoundError(f"Task {task_id} not found")
            return ActionResult.ok(task=Task.from_dict(row))

        return await self._guarded("cancel_task", operation)

    # ========================================================================
    # Update / delete
    # ========================================================================

    async def update_task(
        self,
        task_id: str,
        patch: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> ActionResult:
        """Apply a partial update (see ``task_rules.apply_task_patch``).

        When ``expected_version`` is given and the stored row has moved on,
        the update is refused with a conflict. The write itself is a
        compare-and-set on the version read here, so a concurrent write in
        between is detected as well.
        """
        async def operation(user_id: str) -> ActionResult:
            task = await self._load(user_id, task_id)
            if expected_version is not None and expected_version != task.version:
                raise ConflictError(
                    f"Task {task_id} changed since it was read "
                    f"(version {expected_version}, now {task.version})"
                )
            now = self.clock.now()
            updates = apply_task_patch(task, patch, now)
            if not updates:
                return ActionResult.ok(task=task)

            new_status = TaskStatus(updates.get("status", task.status.value))
            starts = new_status == TaskStatus.IN_PROGRESS and not task.is_active
            leaves_progress = task.is_active and new_status != TaskStatus.IN_PROGRESS
            row, completed = await db.update_task_fields(
                user_id, task_id, updates,
                expected_version=task.version,
                complete_others_at=now if starts else None,
                clear_active_timer=leaves_progress,
            )
            if row is None:
                raise ConflictError(f"Task {task_id} was modified concurrently")
            return ActionResult.ok(task=Task.from_dict(row), tasks=_tasks(completed))

        return await self._guarded("update_task", operation)

    async def update_task_timing(
        self,
        task_id: str,
        new_start: datetime,
        new_end: datetime,
    ) -> ActionResult:
        """Move a completed task to a new time range and recompute its duration."""
        async def operation(user_id: str) -> ActionResult:
            task = await self._load(user_id, task_id)
            if not task.is_completed:
                raise ValidationError("Only completed tasks can be rescheduled")
            start = parse_timestamp(new_start)
            end = parse_timestamp(new_end)
            if start is None or end is None or end <= start:
                raise ValidationError("End time must be after start time")
            row, _ = await db.update_task_fields(
                user_id, task_id,
                {
                    "start_time": start,
                    "end_time": end,
                    "duration_minutes": minutes_between(start, end),
                },
                expected_version=task.version,
            )
            if row is None:
                raise ConflictError(f"Task {task_id} was modified concurrently")
            return ActionResult.ok(task=Task.from_dict(row))

        return await self._guarded("update_task_timing", operation)

    async def delete_task(self, task_id: str) -> ActionResult:
        async def operation(user_id: str) -> ActionResult:
            if not await db.delete_task(user_id, task_id):
                raise NotFoundError(f"Task {task_id} not found")
            return ActionResult.ok()

        return await self._guarded("delete_task", operation)

    # ========================================================================
    # Queries
    # ========================================================================

    async def fetch_today_tasks(self) -> ActionResult:
        """Tasks starting today (profile timezone) plus the unscheduled backlog."""
        async def operation(user_id: str) -> ActionResult:
            start, end = today_range(self.state.timezone, self.clock.now())
            rows = await db.load_tasks_in_range(user_id, start, end, include_unscheduled=True)
            return ActionResult.ok(tasks=_tasks(rows))

        return await self._guarded("fetch_today_tasks", operation)

    async def fetch_calendar_tasks(self, start: datetime, end: datetime) -> ActionResult:
        async def operation(user_id: str) -> ActionResult:
            rows = await db.load_tasks_in_range(user_id, parse_timestamp(start), parse_timestamp(end))
            return ActionResult.ok(tasks=_tasks(rows))

        return await self._guarded("fetch_calendar_tasks", operation)

    async def get_active_timer(self) -> ActionResult:
        """The user's persisted active timer (``data`` is None when there is none)."""
        async def operation(user_id: str) -> ActionResult:
            row = await db.load_active_timer(user_id)
            return ActionResult.ok(data=ActiveTimerRecord.from_dict(row) if row else None)

        return await self._guarded("get_active_timer", operation)

    async def save_active_timer(self, record: ActiveTimerRecord) -> ActionResult:
        """Persist pause/resume snapshots of the task timer."""
        async def operation(user_id: str) -> ActionResult:
            record.user_id = user_id
            await db.save_active_timer(record.to_dict())
            return ActionResult.ok(data=record)

        return await self._guarded("save_active_timer", operation)

    async def log_focus_session(self, minutes: int, mode: str) -> ActionResult:
        async def operation(user_id: str) -> ActionResult:
            if minutes < MIN_FOCUS_SESSION_MINUTES:
                raise ValidationError(
                    f"Focus sessions shorter than {MIN_FOCUS_SESSION_MINUTES} minute are not logged"
                )
            session = FocusSession(
                user_id=user_id, minutes=minutes, mode=mode, logged_at=self.clock.now()
            )
            session.id = await db.save_focus_session(session.to_dict())
            return ActionResult.ok(data=session)

        return await self._guarded("log_focus_session", operation)

    async def load_focus_sessions(self, limit: Optional[int] = None) -> ActionResult:
        async def operation(user_id: str) -> ActionResult:
            rows = await db.load_focus_sessions(user_id, limit)
            return ActionResult.ok(data=[FocusSession.from_dict(r) for r in rows])

        return await self._guarded("load_focus_sessions", operation)
