"""
Desktop notifications for Clarvu.

Notifications are fire-and-forget: delivery runs in an executor via plyer
and any backend failure is logged and swallowed, never surfaced to the
action that triggered it. Every delivered notification is announced with
``AppEvent.NOTIFICATION_FIRED``.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from plyer import notification as plyer_notification

from config import APP_NAME, NOTIFICATION_TIMEOUT_SECONDS, PomodoroPhase
from events import event_bus, AppEvent
from formatters import TimeFormatter
from models.entities import Task
from registry import registry, Services

logger = logging.getLogger(__name__)

Notifier = Callable[..., Any]


class NotificationService:
    """Delivers desktop notifications for task and timer events."""

    def __init__(self, notifier: Optional[Notifier] = None) -> None:
        self._notify = notifier or plyer_notification.notify

    def _is_enabled(self) -> bool:
        # Looked up lazily: the state belongs to whichever session bootstrapped.
        state = registry.get(Services.STATE)
        return state is None or state.preferences.notifications_enabled

    async def show_immediate(
        self,
        title: str,
        body: str,
        task_id: Optional[str] = None,
        ntype: str = "immediate",
    ) -> bool:
        """Show a notification now.

        Returns:
            True if the notification was handed to the backend.
        """
        if not self._is_enabled():
            logger.debug(f"Notifications disabled, skipping '{title}'")
            return False
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None,
                lambda: self._notify(
                    title=title,
                    message=body,
                    app_name=APP_NAME,
                    timeout=NOTIFICATION_TIMEOUT_SECONDS,
                )
            )
        except (OSError, RuntimeError, NotImplementedError, ValueError) as e:
            logger.warning(f"Error showing notification '{title}': {e}")
            return False

        payload: Dict[str, Any] = {"task_id": task_id, "ntype": ntype, "title": title}
        event_bus.emit(AppEvent.NOTIFICATION_FIRED, payload)
        return True

    async def task_auto_started(self, task: Task) -> bool:
        return await self.show_immediate(
            "Task started",
            f"'{task.title}' is scheduled for now and has started.",
            task_id=task.id,
            ntype="auto_start",
        )

    async def task_due(self, task: Task) -> bool:
        return await self.show_immediate(
            f"Time for: {task.title}",
            "Your scheduled task is ready to start.",
            task_id=task.id,
            ntype="task_due",
        )

    async def timer_finished(self, task_title: Optional[str], minutes: int) -> bool:
        subject = f"'{task_title}'" if task_title else "Focus session"
        return await self.show_immediate(
            "Time's up",
            f"{subject} finished after {TimeFormatter.minutes_to_display(minutes)}.",
            ntype="timer_complete",
        )

    async def phase_finished(self, finished: PomodoroPhase, next_phase: PomodoroPhase) -> bool:
        if finished == PomodoroPhase.FOCUS:
            body = "Focus block done. Time for a break."
            if next_phase == PomodoroPhase.LONG_BREAK:
                body = "Focus block done. Time for a long break."
        else:
            body = "Break is over. Ready to focus?"
        return await self.show_immediate("Pomodoro", body, ntype="phase_complete")
