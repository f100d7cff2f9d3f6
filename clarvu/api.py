"""Programmatic API facade for Clarvu.

Composes the task, category, calendar, settings, timer and notification
services into complete user-level operations: optimistic local update,
server action, reconciliation (or rollback) and event emission.

Usage:
    from core import bootstrap
    from api import ClarvuAPI

    svc = await bootstrap(db_path=Path(":memory:"))
    api = ClarvuAPI(svc)

    await api.sign_in("user-1", "Europe/Berlin")
    result = await api.quick_add("Write docs")
    await api.start_task(result.task.id, duration_minutes=25)
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from config import (
    AUTO_START_CHECK_INTERVAL_SECONDS,
    DEFAULT_CATEGORY_COLOR,
    DEFAULT_TASK_DURATION_MINUTES,
    DEFAULT_TIMEZONE,
    MIN_FOCUS_SESSION_MINUTES,
    PREF_LAST_CATEGORY,
    PREF_TASK_ORDER,
    PomodoroPhase,
    Priority,
    StandaloneMode,
    TaskStatus,
    TimerKind,
)
from core import ServiceContainer
from database import db
from errors import ClarvuError, ValidationError
from events import AppEvent, event_bus
from formatters import TimeFormatter
from models.entities import (
    ActionResult,
    ActiveTimerRecord,
    Preferences,
    Profile,
    Task,
    minutes_between,
    parse_timestamp,
    round_minutes,
)
from models.state import AppState, TaskStore
from registry import registry, Services
from services.mutations import MutationRunner, OptimisticMutation
from services.task_rules import (
    apply_task_patch, apply_updates, derive_status, validate_duration,
    validate_recorded_minutes,
)
from services.timer import TimerSnapshot

logger = logging.getLogger(__name__)


class ClarvuAPI:
    """High-level facade over Clarvu services.

    Each method performs a complete operation: optimistic state change,
    DB persistence, reconciliation with the stored record and event
    emission. When the server action fails the optimistic change is
    compensated and the failed ``ActionResult`` is returned.
    """

    def __init__(self, services: Optional[ServiceContainer] = None) -> None:
        """Wrap ``services``, or the container registered by ``core.bootstrap()``."""
        if services is None:
            services = registry.require(Services.CONTAINER)
        self._svc = services
        self._mutations = MutationRunner()
        self._user_present = True
        self._watcher: Optional[asyncio.Task] = None
        self._watcher_stop: asyncio.Event = asyncio.Event()
        services.timer.inject_dependencies(
            on_expired=self._on_timer_expired,
            on_phase_completed=self._on_phase_completed,
        )

    @property
    def state(self) -> AppState:
        return self._svc.state

    @property
    def tasks(self) -> TaskStore:
        return self._svc.state.tasks

    @property
    def timer(self) -> TimerSnapshot:
        return self._svc.timer.snapshot

    # ========================================================================
    # Session
    # ========================================================================

    async def sign_in(self, user_id: str, timezone_name: Optional[str] = None) -> ActionResult:
        """Open a session and load everything the day view needs.

        Creates the profile on first sign-in (seeding the default
        categories), then loads preferences, categories, today's tasks and
        events, and recovers a persisted task timer.
        """
        state = self._svc.state
        if state.user_id is not None and state.user_id != user_id:
            await self.sign_out()
        state.user_id = user_id
        try:
            profile = Profile.from_dict(
                await db.ensure_profile(user_id, timezone_name or DEFAULT_TIMEZONE)
            )
            if timezone_name and profile.timezone != timezone_name:
                await db.update_profile(user_id, {"timezone": timezone_name})
                profile.timezone = timezone_name
            state.timezone = profile.timezone
            seeded = await self._svc.category.seed_defaults()
            if seeded:
                logger.info(f"Seeded {seeded} default categories for {user_id}")
            await self._svc.settings.load_preferences()
        except ClarvuError as e:
            logger.error(f"Sign-in failed for {user_id}: {e}")
            state.reset()
            return ActionResult.fail(str(e))

        await self._svc.category.list_categories()
        result = await self.refresh_tasks()
        await self._svc.calendar.fetch_today_events()
        await self._recover_timer()
        event_bus.emit(AppEvent.CATEGORIES_CHANGED, state.categories.categories)
        event_bus.emit(AppEvent.CALENDAR_CHANGED, state.calendar.events)
        event_bus.emit(AppEvent.SETTINGS_CHANGED, state.preferences)
        logger.info(f"Signed in {user_id} ({state.timezone})")
        return result

    async def sign_out(self) -> None:
        """Close the session; the timer is closed locally, nothing is written."""
        await self.stop_auto_start_watcher()
        self._svc.timer.close()
        self._svc.auto_start.reset()
        self._svc.state.reset()
        self._user_present = True

    async def refresh_tasks(self) -> ActionResult:
        """Replace the task store with today's tasks and the backlog."""
        result = await self._svc.task.fetch_today_tasks()
        if result.success:
            self.tasks.set_from_server(result.tasks)
            self.tasks.apply_order(self.state.preferences.task_order)
        return result

    # ========================================================================
    # Tasks
    # ========================================================================

    async def quick_add(
        self,
        title: str,
        category_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        priority: Priority = Priority.MEDIUM,
        is_scheduled: bool = False,
        duration_minutes: int = DEFAULT_TASK_DURATION_MINUTES,
    ) -> ActionResult:
        """Create a task, showing a placeholder until the server confirms it.

        Without ``category_id`` the last used category is applied.
        """
        try:
            priority = Priority(priority)
        except ValueError:
            return ActionResult.fail(f"Invalid priority: {priority}")
        prefs = self.state.preferences
        category_id = category_id or prefs.last_category_id
        now = self._svc.clock.now()
        try:
            start = parse_timestamp(start_time) if is_scheduled else None
        except ValidationError as e:
            return ActionResult.fail(str(e))
        placeholder = Task(
            id=TaskStore.new_temp_id(),
            user_id=self.state.user_id,
            title=(title or "").strip(),
            status=derive_status(is_scheduled, start, now),
            start_time=start or (now if is_scheduled else None),
            duration_minutes=duration_minutes,
            category_id=category_id,
            priority=priority,
            is_scheduled=is_scheduled,
            created_at=now,
        )

        def reconcile(result: ActionResult) -> None:
            self.tasks.add_or_update(result.task)
            self.tasks.remove(placeholder.id)
            self._merge_completed(result.tasks)

        result = await self._mutations.run(OptimisticMutation(
            name="create_task",
            entity_id=placeholder.id,
            apply=lambda: self.tasks.add_or_update(placeholder),
            commit=lambda: self._svc.task.create_task(
                title,
                category_id=category_id,
                start_time=start_time,
                priority=priority,
                is_scheduled=is_scheduled,
                duration_minutes=duration_minutes,
            ),
            compensate=lambda: self.tasks.remove(placeholder.id),
            reconcile=reconcile,
        ))
        if not result.success:
            return result

        event_bus.emit(AppEvent.TASK_CREATED, result.task)
        if category_id and category_id != prefs.last_category_id:
            prefs.last_category_id = category_id
            await self._save_setting(PREF_LAST_CATEGORY, category_id)
        return result

    create_task = quick_add

    async def start_task(
        self,
        task_id: str,
        duration_minutes: int = DEFAULT_TASK_DURATION_MINUTES,
        count_up: bool = False,
    ) -> ActionResult:
        """Start a task and bind the timer to it.

        The task currently in progress (if any) is completed in the same
        server transaction. A countdown of ``duration_minutes`` starts, or a
        count-up when ``count_up`` is set.
        """
        task = self.tasks.get(task_id)
        if task is None:
            return ActionResult.fail(f"Task {task_id} not found")
        if task.is_temporary:
            return ActionResult.fail("Task is still being saved")

        original = task.copy()
        current = self.tasks.in_progress()
        displaced = current.copy() if current is not None and current.id != task_id else None
        now = self._svc.clock.now()

        def apply() -> None:
            preview = original.copy()
            preview.status = TaskStatus.IN_PROGRESS
            preview.start_time = now
            preview.end_time = None
            preview.is_scheduled = True
            self.tasks.add_or_update(preview)
            if displaced is not None:
                done = displaced.copy()
                done.status = TaskStatus.COMPLETED
                done.end_time = now
                done.duration_minutes = minutes_between(done.start_time, now)
                self.tasks.add_or_update(done)

        def compensate() -> None:
            self.tasks.add_or_update(original)
            if displaced is not None:
                self.tasks.add_or_update(displaced)

        def reconcile(result: ActionResult) -> None:
            self.tasks.add_or_update(result.task)
            self._merge_completed(result.tasks)

        result = await self._mutations.run(OptimisticMutation(
            name="start_task",
            entity_id=task_id,
            apply=apply,
            commit=lambda: self._svc.task.start_task(task_id, duration_minutes, count_up),
            compensate=compensate,
            reconcile=reconcile,
        ))
        if not result.success:
            return result

        started = result.task
        if count_up:
            previous = self._svc.timer.start_count_up(started.id, started.title)
        else:
            previous = self._svc.timer.start_countdown(started.id, started.title, duration_minutes * 60)
        await self._resolve_displaced(previous)
        event_bus.emit(AppEvent.TASK_STARTED, started)
        return result

    async def end_task(
        self,
        task_id: str,
        explicit_duration_minutes: Optional[int] = None,
        ended_at: Optional[datetime] = None,
    ) -> ActionResult:
        """Complete a task; a timer bound to it is closed."""
        task = self.tasks.get(task_id)
        original = task.copy() if task is not None else None
        try:
            end = parse_timestamp(ended_at) or self._svc.clock.now()
        except ValidationError as e:
            return ActionResult.fail(str(e))

        def apply() -> None:
            if original is None:
                return
            preview = original.copy()
            preview.status = TaskStatus.COMPLETED
            preview.end_time = end
            preview.duration_minutes = (
                explicit_duration_minutes
                if explicit_duration_minutes is not None
                else minutes_between(preview.start_time, end)
            )
            self.tasks.add_or_update(preview)

        def compensate() -> None:
            if original is not None:
                self.tasks.add_or_update(original)

        def reconcile(result: ActionResult) -> None:
            self.tasks.add_or_update(result.task)
            self._close_timer_for(task_id)

        result = await self._mutations.run(OptimisticMutation(
            name="end_task",
            entity_id=task_id,
            apply=apply,
            commit=lambda: self._svc.task.end_task(task_id, explicit_duration_minutes, end),
            compensate=compensate,
            reconcile=reconcile,
        ))
        if result.success:
            event_bus.emit(AppEvent.TASK_COMPLETED, result.task)
        return result

    async def complete_active_timer(self) -> ActionResult:
        """Finish the task bound to the timer with the focused minutes.

        Count-up timers also log their elapsed time as a focus session.
        """
        snap = self._svc.timer.snapshot
        if not snap.is_task_timer:
            return ActionResult.fail("No task timer is active")
        minutes = snap.focused_minutes
        result = await self.end_task(snap.task_id, explicit_duration_minutes=minutes)
        if result.success and snap.kind == TimerKind.COUNT_UP:
            await self._log_focus(minutes, TimerKind.COUNT_UP.value)
        return result

    async def log_manual_time(self, task_id: str, minutes: int) -> ActionResult:
        """Complete a task with a manually entered duration."""
        try:
            validate_recorded_minutes(minutes)
        except ValidationError as e:
            return ActionResult.fail(str(e))
        return await self.end_task(task_id, explicit_duration_minutes=minutes)

    async def cancel_task(self, task_id: str) -> ActionResult:
        """Stop a started task without completing it; it returns to scheduled."""
        task = self.tasks.get(task_id)
        original = task.copy() if task is not None else None

        def apply() -> None:
            if original is None:
                return
            preview = original.copy()
            preview.status = TaskStatus.SCHEDULED
            preview.is_scheduled = True
            preview.end_time = None
            preview.duration_minutes = None
            self.tasks.add_or_update(preview)

        def compensate() -> None:
            if original is not None:
                self.tasks.add_or_update(original)

        def reconcile(result: ActionResult) -> None:
            self.tasks.add_or_update(result.task)
            self._close_timer_for(task_id)

        result = await self._mutations.run(OptimisticMutation(
            name="cancel_task",
            entity_id=task_id,
            apply=apply,
            commit=lambda: self._svc.task.cancel_task(task_id),
            compensate=compensate,
            reconcile=reconcile,
        ))
        if result.success:
            event_bus.emit(AppEvent.TASK_CANCELLED, result.task)
        return result

    async def update_task(
        self,
        task_id: str,
        patch: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> ActionResult:
        """Patch a task (title, priority, category, timing, status).

        The local copy's version is sent along unless ``expected_version``
        is given, so an edit based on a stale copy is refused.
        """
        task = self.tasks.get(task_id)
        if task is None:
            return ActionResult.fail(f"Task {task_id} not found")
        original = task.copy()
        try:
            preview = apply_updates(original, apply_task_patch(original, patch, self._svc.clock.now()))
        except ValidationError as e:
            return ActionResult.fail(str(e))

        def reconcile(result: ActionResult) -> None:
            self.tasks.add_or_update(result.task)
            self._merge_completed(result.tasks)
            if not result.task.is_active:
                self._close_timer_for(task_id)

        result = await self._mutations.run(OptimisticMutation(
            name="update_task",
            entity_id=task_id,
            apply=lambda: self.tasks.add_or_update(preview),
            commit=lambda: self._svc.task.update_task(
                task_id, patch,
                expected_version=expected_version if expected_version is not None else original.version,
            ),
            compensate=lambda: self.tasks.add_or_update(original),
            reconcile=reconcile,
        ))
        if not result.success:
            return result

        updated = result.task
        event_bus.emit(AppEvent.TASK_UPDATED, updated)
        if updated.is_completed and not original.is_completed:
            event_bus.emit(AppEvent.TASK_COMPLETED, updated)
        elif original.is_completed and not updated.is_completed:
            event_bus.emit(AppEvent.TASK_UNCOMPLETED, updated)
        return result

    async def uncomplete_task(self, task_id: str) -> ActionResult:
        """Reopen a completed task as scheduled, dropping its time data."""
        return await self.update_task(task_id, {"status": TaskStatus.SCHEDULED.value})

    async def reschedule_task(
        self,
        task_id: str,
        new_start: datetime,
        new_end: datetime,
    ) -> ActionResult:
        """Drag a completed task to a new time range.

        The task moves immediately; on failure it snaps back to its
        original start and end.
        """
        task = self.tasks.get(task_id)
        if task is None:
            return ActionResult.fail(f"Task {task_id} not found")
        original = task.copy()
        try:
            start = parse_timestamp(new_start)
            end = parse_timestamp(new_end)
        except ValidationError as e:
            return ActionResult.fail(str(e))

        def apply() -> None:
            moved = original.copy()
            moved.start_time = start
            moved.end_time = end
            if start is not None and end is not None and end > start:
                moved.duration_minutes = minutes_between(start, end)
            self.tasks.add_or_update(moved)

        result = await self._mutations.run(OptimisticMutation(
            name="reschedule_task",
            entity_id=task_id,
            apply=apply,
            commit=lambda: self._svc.task.update_task_timing(task_id, start, end),
            compensate=lambda: self.tasks.add_or_update(original),
            reconcile=lambda r: self.tasks.add_or_update(r.task),
        ))
        if result.success:
            event_bus.emit(AppEvent.TASK_RESCHEDULED, result.task)
        return result

    async def delete_task(self, task_id: str) -> ActionResult:
        task = self.tasks.get(task_id)
        if task is None:
            return ActionResult.fail(f"Task {task_id} not found")
        original = task.copy()

        def reconcile(_result: ActionResult) -> None:
            self._close_timer_for(task_id)

        result = await self._mutations.run(OptimisticMutation(
            name="delete_task",
            entity_id=task_id,
            apply=lambda: self.tasks.remove(task_id),
            commit=lambda: self._svc.task.delete_task(task_id),
            compensate=lambda: self.tasks.add_or_update(original),
            reconcile=reconcile,
        ))
        if result.success:
            event_bus.emit(AppEvent.TASK_DELETED, original)
        return result

    async def reorder_tasks(self, task_ids: List[str]) -> None:
        """Apply and persist a manual task order."""
        order = [i for i in task_ids if not TaskStore.is_temp_id(i)]
        self.tasks.apply_order(order)
        self.state.preferences.task_order = order
        await self._save_setting(PREF_TASK_ORDER, order)
        event_bus.emit(AppEvent.TASKS_REORDERED, order)

    async def fetch_calendar_tasks(self, start: datetime, end: datetime) -> ActionResult:
        """Tasks in a range, for the calendar view (the task store is untouched)."""
        return await self._svc.task.fetch_calendar_tasks(start, end)

    async def focus_sessions(self, limit: Optional[int] = None) -> ActionResult:
        return await self._svc.task.load_focus_sessions(limit)

    def _merge_completed(self, tasks: List[Task]) -> None:
        """Merge tasks the server force-completed and close their timer."""
        for task in tasks:
            self.tasks.add_or_update(task)
            self._close_timer_for(task.id)
            logger.info(f"Task {task.id} completed by starting another task")
            event_bus.emit(AppEvent.TASK_COMPLETED, task)

    def _close_timer_for(self, task_id: str) -> None:
        if self._svc.timer.snapshot.task_id == task_id:
            self._svc.timer.close()

    # ========================================================================
    # Timer
    # ========================================================================

    async def start_focus(self, duration_minutes: Optional[int] = None) -> ActionResult:
        return await self._start_standalone(StandaloneMode.FOCUS, duration_minutes)

    async def start_break(self, duration_minutes: Optional[int] = None) -> ActionResult:
        return await self._start_standalone(StandaloneMode.BREAK, duration_minutes)

    async def start_pomodoro(self) -> ActionResult:
        return await self._start_standalone(StandaloneMode.POMODORO)

    async def start_stopwatch(self) -> ActionResult:
        return await self._start_standalone(StandaloneMode.STOPWATCH)

    async def _start_standalone(
        self,
        mode: StandaloneMode,
        duration_minutes: Optional[int] = None,
    ) -> ActionResult:
        if self._svc.timer.task_timer_active:
            return ActionResult.fail("A task timer is running")
        seconds = None
        if duration_minutes is not None:
            try:
                seconds = validate_duration(duration_minutes, allow_zero=False) * 60
            except ValidationError as e:
                return ActionResult.fail(str(e))
        previous = self._svc.timer.start_standalone(
            mode, self.state.preferences.pomodoro, seconds
        )
        await self._resolve_displaced(previous)
        return ActionResult.ok(data=self._svc.timer.snapshot)

    async def pause_timer(self) -> bool:
        if not self._svc.timer.pause():
            return False
        await self._persist_task_timer()
        return True

    async def resume_timer(self) -> bool:
        if not self._svc.timer.resume():
            return False
        await self._persist_task_timer()
        return True

    async def add_time(self, minutes: int) -> bool:
        """Extend the standalone countdown."""
        return self._svc.timer.add_time(minutes * 60)

    async def reset_timer(self) -> ActionResult:
        """Reset the standalone timer; a task timer cancels its task."""
        snap = self._svc.timer.snapshot
        if snap.is_task_timer:
            return await self.cancel_task(snap.task_id)
        if not self._svc.timer.reset():
            return ActionResult.fail("No timer is active")
        return ActionResult.ok(data=self._svc.timer.snapshot)

    async def stop_timer(self) -> ActionResult:
        """Close the standalone timer, logging its focused time."""
        snap = self._svc.timer.snapshot
        if snap.is_task_timer:
            return ActionResult.fail("Complete or cancel the task instead")
        closed = self._svc.timer.close()
        await self._resolve_displaced(closed)
        return ActionResult.ok(data=closed)

    def timer_display(self) -> str:
        snap = self._svc.timer.snapshot
        return TimeFormatter.timer_display(snap.display_seconds, self.state.preferences.hide_seconds)

    async def _resolve_displaced(self, snap: Optional[TimerSnapshot]) -> None:
        """Log the focus time of a standalone timer that was replaced or closed."""
        if snap is None or snap.is_task_timer:
            return
        if snap.mode == StandaloneMode.STOPWATCH or snap.phase == PomodoroPhase.FOCUS:
            await self._log_focus(snap.focused_minutes, snap.mode.value)

    async def _log_focus(self, minutes: int, mode: str) -> None:
        if minutes < MIN_FOCUS_SESSION_MINUTES:
            return
        result = await self._svc.task.log_focus_session(minutes, mode)
        if result.success:
            logger.info(f"Logged {minutes} min of focus ({mode})")

    async def _persist_task_timer(self) -> None:
        """Store the task timer so a restart resumes where it left off.

        The stored anchors are re-based on now: a countdown keeps
        ``ends_at - started_at`` equal to its full length, a count-up keeps
        its elapsed seconds in ``remaining_seconds``.
        """
        snap = self._svc.timer.snapshot
        if not snap.is_task_timer or self.state.user_id is None:
            return
        now = self._svc.clock.now()
        if snap.kind == TimerKind.COUNTDOWN:
            ends_at = now + timedelta(seconds=snap.remaining_seconds)
            record = ActiveTimerRecord(
                user_id=self.state.user_id,
                task_id=snap.task_id,
                started_at=ends_at - timedelta(seconds=snap.initial_seconds),
                ends_at=ends_at,
                remaining_seconds=snap.remaining_seconds,
                is_running=snap.running,
            )
        else:
            record = ActiveTimerRecord(
                user_id=self.state.user_id,
                task_id=snap.task_id,
                started_at=now - timedelta(seconds=snap.elapsed_seconds),
                ends_at=None,
                remaining_seconds=snap.elapsed_seconds,
                is_running=snap.running,
            )
        await self._svc.task.save_active_timer(record)

    async def _recover_timer(self) -> None:
        result = await self._svc.task.get_active_timer()
        record: Optional[ActiveTimerRecord] = result.data if result.success else None
        if record is None:
            return
        task = self.tasks.get(record.task_id)
        if task is None or not task.is_active:
            logger.info(f"Ignoring stale active timer for task {record.task_id}")
            return

        now = self._svc.clock.now()
        if record.ends_at is None:
            if record.is_running:
                elapsed = int((now - record.started_at).total_seconds())
            else:
                elapsed = record.remaining_seconds
            self._svc.timer.start_count_up(task.id, task.title, max(0, elapsed))
            if not record.is_running:
                self._svc.timer.pause()
            return

        if record.is_running:
            remaining = int((record.ends_at - now).total_seconds())
        else:
            remaining = record.remaining_seconds
        self._svc.timer.restore_countdown(
            task.id, task.title,
            initial_seconds=record.total_seconds,
            remaining_seconds=max(0, remaining),
            started_at=record.started_at,
            ends_at=record.ends_at,
            running=record.is_running,
        )
        snap = self._svc.timer.snapshot
        if snap.completion_pending:
            await self._on_timer_expired(snap)

    async def _on_timer_expired(self, snap: TimerSnapshot) -> None:
        minutes = snap.focused_minutes
        if snap.is_task_timer:
            result = await self.end_task(snap.task_id, explicit_duration_minutes=minutes)
            if not result.success:
                logger.error(f"Could not complete task {snap.task_id} on expiry: {result.error}")
                return
            await self._svc.notifications.timer_finished(snap.task_title, minutes)
            return
        if snap.phase == PomodoroPhase.FOCUS:
            await self._log_focus(minutes, snap.mode.value)
        await self._svc.notifications.timer_finished(None, minutes)
        self._svc.timer.reset()

    async def _on_phase_completed(self, snap: TimerSnapshot) -> None:
        if snap.last_completed_phase == PomodoroPhase.FOCUS:
            await self._log_focus(
                round_minutes(snap.last_completed_seconds), StandaloneMode.POMODORO.value
            )
        await self._svc.notifications.phase_finished(snap.last_completed_phase, snap.phase)

    # ========================================================================
    # Auto-start
    # ========================================================================

    def set_user_present(self, present: bool) -> None:
        """Away users get a reminder instead of an auto-started task."""
        self._user_present = present

    async def check_auto_start(self) -> Optional[Task]:
        """Start the scheduled task whose time has just arrived, if any."""
        if not self.state.is_authenticated:
            return None
        due = self._svc.auto_start.find_due(
            self.tasks.tasks, self._svc.clock.now(), self._svc.timer.task_timer_active
        )
        if due is None:
            return None
        self._svc.auto_start.mark_handled(due.id)

        if not self._user_present:
            logger.info(f"Task {due.id} is due while the user is away")
            await self._svc.notifications.task_due(due)
            return None

        result = await self.start_task(due.id, DEFAULT_TASK_DURATION_MINUTES)
        if not result.success:
            logger.warning(f"Auto-start of task {due.id} failed: {result.error}")
            return None
        logger.info(f"Auto-started task {due.id}")
        event_bus.emit(AppEvent.TASK_AUTO_STARTED, result.task)
        await self._svc.notifications.task_auto_started(result.task)
        return result.task

    def start_auto_start_watcher(self, interval: float = AUTO_START_CHECK_INTERVAL_SECONDS) -> None:
        if self._watcher is not None and not self._watcher.done():
            return
        self._watcher_stop = asyncio.Event()
        self._watcher = asyncio.get_running_loop().create_task(
            self._auto_start_loop(self._watcher_stop, interval)
        )

    async def stop_auto_start_watcher(self) -> None:
        self._watcher_stop.set()
        watcher = self._watcher
        self._watcher = None
        if watcher is not None and watcher is not asyncio.current_task():
            await watcher

    async def _auto_start_loop(self, stop: asyncio.Event, interval: float) -> None:
        logger.info("Auto-start watcher started")
        try:
            while not stop.is_set():
                await self.check_auto_start()
                try:
                    await asyncio.wait_for(stop.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass
        except (ClarvuError, RuntimeError, OSError) as e:
            logger.error(f"Error in auto-start watcher: {e}")
        finally:
            logger.info("Auto-start watcher stopped")

    # ========================================================================
    # Categories
    # ========================================================================

    async def create_category(
        self,
        name: str,
        color: str = DEFAULT_CATEGORY_COLOR,
        icon: Optional[str] = None,
        category_type: Optional[str] = None,
    ) -> ActionResult:
        result = await self._svc.category.create_category(name, color, icon, category_type)
        if result.success:
            event_bus.emit(AppEvent.CATEGORIES_CHANGED, self.state.categories.categories)
        return result

    async def delete_category(self, category_id: str) -> ActionResult:
        result = await self._svc.category.delete_category(category_id)
        if result.success:
            prefs = self.state.preferences
            if prefs.last_category_id == category_id:
                prefs.last_category_id = None
                await self._save_setting(PREF_LAST_CATEGORY, None)
            event_bus.emit(AppEvent.CATEGORIES_CHANGED, self.state.categories.categories)
        return result

    async def cleanup_categories(self) -> ActionResult:
        result = await self._svc.category.cleanup_duplicates()
        if result.success and result.data:
            await self._svc.category.list_categories()
            event_bus.emit(AppEvent.CATEGORIES_CHANGED, self.state.categories.categories)
        return result

    # ========================================================================
    # Calendar
    # ========================================================================

    async def fetch_calendar(self, start: datetime, end: datetime) -> ActionResult:
        """Events and tasks in ``[start, end)``; ``data`` holds the events."""
        events = await self._svc.calendar.fetch_events(start, end)
        if not events.success:
            return events
        tasks = await self._svc.task.fetch_calendar_tasks(start, end)
        if not tasks.success:
            return tasks
        event_bus.emit(AppEvent.CALENDAR_CHANGED, events.data)
        return ActionResult.ok(tasks=tasks.tasks, data=events.data)

    async def save_event(self, title: str, start_time: datetime, end_time: datetime, **kwargs) -> ActionResult:
        result = await self._svc.calendar.save_event(title, start_time, end_time, **kwargs)
        if result.success:
            event_bus.emit(AppEvent.CALENDAR_CHANGED, self.state.calendar.events)
        return result

    async def delete_event(self, event_id: str) -> ActionResult:
        result = await self._svc.calendar.delete_event(event_id)
        if result.success:
            event_bus.emit(AppEvent.CALENDAR_CHANGED, self.state.calendar.events)
        return result

    # ========================================================================
    # Preferences / export
    # ========================================================================

    async def update_preferences(self, prefs: Preferences) -> ActionResult:
        try:
            saved = await self._svc.settings.save_preferences(prefs)
        except ClarvuError as e:
            logger.warning(f"Saving preferences failed: {e}")
            return ActionResult.fail(str(e))
        self.tasks.apply_order(saved.task_order)
        event_bus.emit(AppEvent.SETTINGS_CHANGED, saved)
        return ActionResult.ok(data=saved)

    async def export_data(self) -> ActionResult:
        """Every row owned by the user, keyed by table."""
        if self.state.user_id is None:
            return ActionResult.fail("Not authenticated")
        try:
            data = await db.export_user_data(self.state.user_id)
        except ClarvuError as e:
            return ActionResult.fail(str(e))
        return ActionResult.ok(data=data)

    async def _save_setting(self, key: str, value: Any) -> None:
        try:
            await self._svc.settings.set_setting(key, value)
        except ClarvuError as e:
            logger.warning(f"Saving setting {key} failed: {e}")
