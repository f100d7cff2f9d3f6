import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from clock import SystemClock, system_clock
from config import (
    PomodoroPhase,
    StandaloneMode,
    TICK_INTERVAL_SECONDS,
    TickOutcome,
    TimerKind,
    TimerState,
)
from errors import ClarvuError
from events import event_bus, AppEvent
from models.entities import PomodoroSettings, round_minutes

logger = logging.getLogger(__name__)


@dataclass
class TimerSnapshot:
    """Point-in-time view of the timer.

    Countdowns track ``remaining_seconds`` against ``initial_seconds``;
    count-ups (task count-up and stopwatch) track ``elapsed_seconds``.
    """
    kind: Optional[TimerKind] = None
    running: bool = False
    task_id: Optional[str] = None
    task_title: Optional[str] = None
    initial_seconds: int = 0
    remaining_seconds: int = 0
    elapsed_seconds: int = 0
    started_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    mode: Optional[StandaloneMode] = None
    phase: Optional[PomodoroPhase] = None
    completed_focus_phases: int = 0
    completion_pending: bool = False
    last_completed_phase: Optional[PomodoroPhase] = None
    last_completed_seconds: int = 0
    pomodoro: PomodoroSettings = field(default_factory=PomodoroSettings)

    @property
    def state(self) -> TimerState:
        if self.kind is None:
            return TimerState.IDLE
        if self.kind == TimerKind.COUNTDOWN:
            return TimerState.TASK_COUNTDOWN_RUNNING if self.running else TimerState.TASK_COUNTDOWN_PAUSED
        if self.kind == TimerKind.COUNT_UP:
            return TimerState.TASK_COUNTUP_RUNNING if self.running else TimerState.TASK_COUNTUP_PAUSED
        return TimerState.STANDALONE_RUNNING if self.running else TimerState.STANDALONE_PAUSED

    @property
    def counts_up(self) -> bool:
        return self.kind == TimerKind.COUNT_UP or self.mode == StandaloneMode.STOPWATCH

    @property
    def is_task_timer(self) -> bool:
        return self.kind in (TimerKind.COUNTDOWN, TimerKind.COUNT_UP)

    @property
    def focused_seconds(self) -> int:
        """Seconds actually spent running (pauses excluded)."""
        if self.counts_up:
            return self.elapsed_seconds
        return max(0, self.initial_seconds - self.remaining_seconds)

    @property
    def focused_minutes(self) -> int:
        return round_minutes(self.focused_seconds)

    @property
    def display_seconds(self) -> int:
        return self.elapsed_seconds if self.counts_up else self.remaining_seconds


class TimerMachine:
    """Pure timer state machine: no I/O, no events, no clock of its own.

    At most one timer exists at a time. Starting any timer replaces the
    current one and returns the displaced snapshot so the caller can resolve
    it (complete the task, log the focus time, ...).
    """

    def __init__(self) -> None:
        self._s = TimerSnapshot()

    @property
    def snapshot(self) -> TimerSnapshot:
        return replace(self._s)

    @property
    def state(self) -> TimerState:
        return self._s.state

    def _replace(self, new: TimerSnapshot) -> Optional[TimerSnapshot]:
        displaced = self.snapshot if self._s.kind is not None else None
        self._s = new
        return displaced

    def start_countdown(
        self,
        task_id: str,
        task_title: str,
        duration_seconds: int,
        now: datetime,
    ) -> Optional[TimerSnapshot]:
        return self._replace(TimerSnapshot(
            kind=TimerKind.COUNTDOWN,
            running=True,
            task_id=task_id,
            task_title=task_title,
            initial_seconds=duration_seconds,
            remaining_seconds=duration_seconds,
            started_at=now,
            ends_at=now + timedelta(seconds=duration_seconds),
        ))

    def restore_countdown(
        self,
        task_id: str,
        task_title: str,
        initial_seconds: int,
        remaining_seconds: int,
        started_at: datetime,
        ends_at: Optional[datetime],
        running: bool,
    ) -> Optional[TimerSnapshot]:
        """Load a countdown persisted before a restart."""
        remaining = max(0, min(remaining_seconds, initial_seconds))
        return self._replace(TimerSnapshot(
            kind=TimerKind.COUNTDOWN,
            running=running and remaining > 0,
            task_id=task_id,
            task_title=task_title,
            initial_seconds=initial_seconds,
            remaining_seconds=remaining,
            started_at=started_at,
            ends_at=ends_at,
            completion_pending=remaining == 0,
        ))

    def start_count_up(
        self,
        task_id: str,
        task_title: str,
        now: datetime,
        elapsed_seconds: int = 0,
    ) -> Optional[TimerSnapshot]:
        return self._replace(TimerSnapshot(
            kind=TimerKind.COUNT_UP,
            running=True,
            task_id=task_id,
            task_title=task_title,
            elapsed_seconds=elapsed_seconds,
            started_at=now,
        ))

    def start_standalone(
        self,
        mode: StandaloneMode,
        now: datetime,
        settings: Optional[PomodoroSettings] = None,
        duration_seconds: Optional[int] = None,
        running: bool = True,
    ) -> Optional[TimerSnapshot]:
        """Start the standalone focus timer in one of its sub-modes.

        ``duration_seconds`` overrides the focus/break length (custom time);
        pomodoro always follows ``settings``.
        """
        settings = settings or PomodoroSettings()
        new = TimerSnapshot(
            kind=TimerKind.STANDALONE,
            running=running,
            mode=mode,
            started_at=now,
            pomodoro=replace(settings),
        )
        if mode != StandaloneMode.STOPWATCH:
            if mode == StandaloneMode.BREAK:
                new.phase = PomodoroPhase.BREAK
            else:
                new.phase = PomodoroPhase.FOCUS
            seconds = self._phase_seconds(new.phase, settings)
            if duration_seconds is not None and mode != StandaloneMode.POMODORO:
                seconds = duration_seconds
            new.initial_seconds = new.remaining_seconds = seconds
            new.ends_at = now + timedelta(seconds=seconds)
        return self._replace(new)

    @staticmethod
    def _phase_seconds(phase: PomodoroPhase, settings: PomodoroSettings) -> int:
        if phase == PomodoroPhase.FOCUS:
            return settings.focus_minutes * 60
        if phase == PomodoroPhase.LONG_BREAK:
            return settings.long_break_minutes * 60
        return settings.break_minutes * 60

    def pause(self) -> bool:
        """Pause the running timer; anchors are kept, remaining is frozen.

        A countdown waiting for its completion cannot be paused.
        """
        s = self._s
        if s.kind is None or not s.running or s.completion_pending:
            return False
        s.running = False
        return True

    def resume(self) -> bool:
        s = self._s
        if s.kind is None or s.running or s.completion_pending:
            return False
        s.running = True
        return True

    def tick(self, seconds: int = 1, now: Optional[datetime] = None) -> TickOutcome:
        """Apply ``seconds`` of running time.

        Countdowns never go below zero: once zero is reached the timer
        waits for its completion to be resolved and ignores further ticks.
        """
        s = self._s
        if s.kind is None or not s.running or seconds <= 0 or s.completion_pending:
            return TickOutcome.NONE
        if s.counts_up:
            s.elapsed_seconds += seconds
            return TickOutcome.TICKED

        s.remaining_seconds = max(0, s.remaining_seconds - seconds)
        if s.remaining_seconds > 0:
            return TickOutcome.TICKED
        if s.mode == StandaloneMode.POMODORO:
            self._advance_phase(now)
            return TickOutcome.PHASE_COMPLETED
        s.completion_pending = True
        return TickOutcome.EXPIRED

    def _advance_phase(self, now: Optional[datetime]) -> None:
        s = self._s
        s.last_completed_phase = s.phase
        s.last_completed_seconds = s.initial_seconds
        if s.phase == PomodoroPhase.FOCUS:
            s.completed_focus_phases += 1
            every = max(1, s.pomodoro.long_break_every)
            if s.completed_focus_phases % every == 0:
                s.phase = PomodoroPhase.LONG_BREAK
            else:
                s.phase = PomodoroPhase.BREAK
            s.running = s.pomodoro.auto_start_break
        else:
            s.phase = PomodoroPhase.FOCUS
            s.running = False
        s.initial_seconds = s.remaining_seconds = self._phase_seconds(s.phase, s.pomodoro)
        if now is not None:
            s.started_at = now
            s.ends_at = now + timedelta(seconds=s.initial_seconds)

    def add_time(self, seconds: int) -> bool:
        """Extend a standalone countdown (running or paused)."""
        s = self._s
        if s.kind != TimerKind.STANDALONE or s.counts_up or seconds <= 0:
            return False
        s.remaining_seconds += seconds
        s.initial_seconds += seconds
        s.completion_pending = False
        if s.ends_at is not None:
            s.ends_at += timedelta(seconds=seconds)
        return True

    def reset(self) -> bool:
        """Restore the standalone timer's current phase (or zero the stopwatch), paused."""
        s = self._s
        if s.kind != TimerKind.STANDALONE:
            return False
        s.running = False
        s.completion_pending = False
        if s.counts_up:
            s.elapsed_seconds = 0
        else:
            s.initial_seconds = s.remaining_seconds = self._phase_seconds(s.phase, s.pomodoro)
        return True

    def clear(self) -> Optional[TimerSnapshot]:
        """Return to IDLE, handing back the snapshot that was active."""
        return self._replace(TimerSnapshot())


ExpiredHandler = Callable[[TimerSnapshot], Awaitable[None]]


class TimerService:
    """Runs the timer machine from a monotonic-clock driven tick loop.

    Every wake-up applies the whole seconds elapsed since the last applied
    tick, so a late wake-up does not lose time. Expiry and pomodoro phase
    changes are handed to the injected async handlers.
    """

    def __init__(
        self,
        clock: SystemClock = system_clock,
        tick_interval: float = TICK_INTERVAL_SECONDS,
    ) -> None:
        self.clock = clock
        self.tick_interval = tick_interval
        self.machine = TimerMachine()

        self._on_expired: Optional[ExpiredHandler] = None
        self._on_phase_completed: Optional[ExpiredHandler] = None

        self._loop_task: Optional[asyncio.Task] = None
        self._stop_event: asyncio.Event = asyncio.Event()
        self._dispatching = False
        # Monotonic reading of the last applied tick and the running time
        # not yet applied when the loop was stopped by a pause.
        self._last_tick: Optional[float] = None
        self._carry = 0.0

    def inject_dependencies(
        self,
        on_expired: Optional[ExpiredHandler] = None,
        on_phase_completed: Optional[ExpiredHandler] = None,
    ) -> None:
        """Inject the handlers called when a countdown hits zero.

        Args:
            on_expired: Called with the snapshot of an expired countdown
            on_phase_completed: Called after a pomodoro phase switched
        """
        self._on_expired = on_expired
        self._on_phase_completed = on_phase_completed

    # ========================================================================
    # State
    # ========================================================================

    @property
    def snapshot(self) -> TimerSnapshot:
        return self.machine.snapshot

    @property
    def state(self) -> TimerState:
        return self.machine.state

    @property
    def is_idle(self) -> bool:
        return self.state == TimerState.IDLE

    @property
    def running(self) -> bool:
        return self.machine.snapshot.running

    @property
    def task_timer_active(self) -> bool:
        return self.machine.snapshot.is_task_timer

    # ========================================================================
    # Transitions
    # ========================================================================

    def start_countdown(self, task_id: str, task_title: str, duration_seconds: int) -> Optional[TimerSnapshot]:
        displaced = self.machine.start_countdown(task_id, task_title, duration_seconds, self.clock.now())
        self._started(displaced)
        return displaced

    def start_count_up(
        self,
        task_id: str,
        task_title: str,
        elapsed_seconds: int = 0,
    ) -> Optional[TimerSnapshot]:
        displaced = self.machine.start_count_up(task_id, task_title, self.clock.now(), elapsed_seconds)
        self._started(displaced)
        return displaced

    def start_standalone(
        self,
        mode: StandaloneMode,
        settings: Optional[PomodoroSettings] = None,
        duration_seconds: Optional[int] = None,
        running: bool = True,
    ) -> Optional[TimerSnapshot]:
        displaced = self.machine.start_standalone(
            mode, self.clock.now(), settings, duration_seconds, running
        )
        self._started(displaced)
        return displaced

    def restore_countdown(
        self,
        task_id: str,
        task_title: str,
        initial_seconds: int,
        remaining_seconds: int,
        started_at: datetime,
        ends_at: Optional[datetime],
        running: bool,
    ) -> None:
        """Recover a task countdown after a restart."""
        self.machine.restore_countdown(
            task_id, task_title, initial_seconds, remaining_seconds, started_at, ends_at, running
        )
        logger.info(f"Recovered countdown for task {task_id} ({remaining_seconds}s left)")
        self._started(None)

    def _started(self, displaced: Optional[TimerSnapshot]) -> None:
        self._carry = 0.0
        if displaced is not None:
            logger.info(f"Timer {displaced.state.value} displaced by a new timer")
            event_bus.emit(AppEvent.TIMER_STOPPED, displaced)
        snap = self.snapshot
        event_bus.emit(AppEvent.TIMER_STARTED, snap)
        if snap.running:
            self._ensure_loop()

    def pause(self) -> bool:
        if not self.machine.pause():
            return False
        if self._loop_alive() and self._last_tick is not None:
            self._carry = max(0.0, self.clock.monotonic() - self._last_tick)
        self._stop_loop()
        event_bus.emit(AppEvent.TIMER_PAUSED, self.snapshot)
        return True

    def resume(self) -> bool:
        if not self.machine.resume():
            return False
        self._ensure_loop()
        event_bus.emit(AppEvent.TIMER_RESUMED, self.snapshot)
        return True

    def add_time(self, seconds: int) -> bool:
        if not self.machine.add_time(seconds):
            return False
        event_bus.emit(AppEvent.TIMER_TICK, self.snapshot)
        if self.running:
            self._ensure_loop()
        return True

    def reset(self) -> bool:
        if not self.machine.reset():
            return False
        self._carry = 0.0
        self._stop_loop()
        event_bus.emit(AppEvent.TIMER_TICK, self.snapshot)
        return True

    def close(self) -> Optional[TimerSnapshot]:
        """Stop whatever timer is active and return to IDLE (local state only)."""
        closed = self.machine.clear()
        self._carry = 0.0
        self._stop_loop()
        if closed is not None:
            event_bus.emit(AppEvent.TIMER_STOPPED, closed)
        return closed

    # ========================================================================
    # Ticking
    # ========================================================================

    async def advance(self, seconds: int = 1) -> TickOutcome:
        """Apply elapsed running seconds and dispatch the outcome."""
        outcome = self.machine.tick(seconds, self.clock.now())
        if outcome == TickOutcome.NONE:
            return outcome
        snap = self.snapshot
        event_bus.emit(AppEvent.TIMER_TICK, snap)
        if outcome == TickOutcome.EXPIRED:
            logger.info(f"Timer expired ({snap.state.value})")
            event_bus.emit(AppEvent.TIMER_EXPIRED, snap)
            await self._dispatch(self._on_expired, snap)
        elif outcome == TickOutcome.PHASE_COMPLETED:
            logger.info(f"Pomodoro phase {snap.last_completed_phase.value} -> {snap.phase.value}")
            event_bus.emit(AppEvent.TIMER_PHASE_CHANGED, snap)
            await self._dispatch(self._on_phase_completed, snap)
        return outcome

    async def _dispatch(self, handler: Optional[ExpiredHandler], snap: TimerSnapshot) -> None:
        """Await a handler; while it runs the loop is stopped but never cancelled."""
        if handler is None:
            return
        self._dispatching = True
        try:
            await handler(snap)
        finally:
            self._dispatching = False

    def _loop_alive(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def _ensure_loop(self) -> None:
        if self._loop_alive():
            return
        self._stop_event = asyncio.Event()
        start = self.clock.monotonic() - self._carry
        self._carry = 0.0
        self._last_tick = start
        self._loop_task = asyncio.get_running_loop().create_task(
            self._tick_loop(self._stop_event, start)
        )

    def _stop_loop(self) -> None:
        self._stop_event.set()
        task = self._loop_task
        if (
            task is not None
            and task is not asyncio.current_task()
            and not task.done()
            and not self._dispatching
        ):
            task.cancel()
        self._loop_task = None

    async def _tick_loop(self, stop: asyncio.Event, last: float) -> None:
        logger.info("Timer loop started")
        try:
            while not stop.is_set():
                try:
                    await asyncio.wait_for(stop.wait(), timeout=self.tick_interval)
                    break
                except asyncio.TimeoutError:
                    pass
                whole = int(self.clock.monotonic() - last)
                if whole < 1:
                    continue
                last += whole
                self._last_tick = last
                await self.advance(whole)
                if not self.running:
                    break
        except asyncio.CancelledError:
            logger.info("Timer loop cancelled")
            raise
        except (ClarvuError, RuntimeError, OSError) as e:
            logger.error(f"Error in timer loop: {e}")
        finally:
            logger.info("Timer loop stopped")

    async def shutdown(self) -> None:
        """Stop the tick loop and wait for it to exit."""
        task = self._loop_task
        self._stop_loop()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
