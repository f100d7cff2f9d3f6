import logging
from typing import Any

from config import (
    CUSTOM_DURATION_MAX_MINUTES,
    CUSTOM_DURATION_MIN_MINUTES,
    DEFAULT_TASK_DURATION_MINUTES,
    POMODORO_BREAK_MAX_MINUTES,
    POMODORO_BREAK_MINUTES,
    POMODORO_FOCUS_MAX_MINUTES,
    POMODORO_FOCUS_MINUTES,
    POMODORO_LONG_BREAK_MINUTES,
    PREF_AUTO_START_BREAK,
    PREF_CUSTOM_DURATION,
    PREF_HIDE_SECONDS,
    PREF_LAST_CATEGORY,
    PREF_NOTIFICATIONS_ENABLED,
    PREF_POMODORO_BREAK,
    PREF_POMODORO_FOCUS,
    PREF_POMODORO_LONG_BREAK,
    PREF_TASK_ORDER,
)
from database import db
from errors import Unauthenticated
from models.entities import PomodoroSettings, Preferences
from models.state import AppState

logger = logging.getLogger(__name__)


def _clamp(value: Any, low: int, high: int, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return default
    return max(low, min(high, value))


class SettingsService:
    """Per-user preferences stored in the settings table.

    Values are JSON-encoded and read on sign-in; they are not validated
    against the task list (a stale task id in the manual order is harmless).
    """

    def __init__(self, state: AppState) -> None:
        self.state = state

    def _user(self) -> str:
        if self.state.user_id is None:
            raise Unauthenticated()
        return self.state.user_id

    async def load_preferences(self) -> Preferences:
        """Load preferences into state, falling back to defaults per key."""
        stored = await db.load_settings(self._user())
        order = stored.get(PREF_TASK_ORDER)
        prefs = Preferences(
            last_category_id=stored.get(PREF_LAST_CATEGORY),
            custom_duration_minutes=_clamp(
                stored.get(PREF_CUSTOM_DURATION),
                CUSTOM_DURATION_MIN_MINUTES, CUSTOM_DURATION_MAX_MINUTES,
                DEFAULT_TASK_DURATION_MINUTES,
            ),
            task_order=[str(i) for i in order] if isinstance(order, list) else [],
            pomodoro=PomodoroSettings(
                focus_minutes=_clamp(
                    stored.get(PREF_POMODORO_FOCUS), 1, POMODORO_FOCUS_MAX_MINUTES, POMODORO_FOCUS_MINUTES
                ),
                break_minutes=_clamp(
                    stored.get(PREF_POMODORO_BREAK), 1, POMODORO_BREAK_MAX_MINUTES, POMODORO_BREAK_MINUTES
                ),
                long_break_minutes=_clamp(
                    stored.get(PREF_POMODORO_LONG_BREAK), 1, POMODORO_BREAK_MAX_MINUTES,
                    POMODORO_LONG_BREAK_MINUTES,
                ),
                auto_start_break=bool(stored.get(PREF_AUTO_START_BREAK, False)),
            ),
            hide_seconds=bool(stored.get(PREF_HIDE_SECONDS, False)),
            notifications_enabled=bool(stored.get(PREF_NOTIFICATIONS_ENABLED, True)),
        )
        self.state.preferences = prefs
        self.state.tasks.apply_order(prefs.task_order)
        return prefs

    async def save_preferences(self, prefs: Preferences) -> Preferences:
        """Clamp and persist preferences, then make them the current ones."""
        user_id = self._user()
        pomodoro = prefs.pomodoro
        pomodoro.focus_minutes = _clamp(
            pomodoro.focus_minutes, 1, POMODORO_FOCUS_MAX_MINUTES, POMODORO_FOCUS_MINUTES
        )
        pomodoro.break_minutes = _clamp(
            pomodoro.break_minutes, 1, POMODORO_BREAK_MAX_MINUTES, POMODORO_BREAK_MINUTES
        )
        pomodoro.long_break_minutes = _clamp(
            pomodoro.long_break_minutes, 1, POMODORO_BREAK_MAX_MINUTES, POMODORO_LONG_BREAK_MINUTES
        )
        prefs.custom_duration_minutes = _clamp(
            prefs.custom_duration_minutes,
            CUSTOM_DURATION_MIN_MINUTES, CUSTOM_DURATION_MAX_MINUTES,
            DEFAULT_TASK_DURATION_MINUTES,
        )
        values = {
            PREF_LAST_CATEGORY: prefs.last_category_id,
            PREF_CUSTOM_DURATION: prefs.custom_duration_minutes,
            PREF_TASK_ORDER: list(prefs.task_order),
            PREF_POMODORO_FOCUS: pomodoro.focus_minutes,
            PREF_POMODORO_BREAK: pomodoro.break_minutes,
            PREF_POMODORO_LONG_BREAK: pomodoro.long_break_minutes,
            PREF_AUTO_START_BREAK: pomodoro.auto_start_break,
            PREF_HIDE_SECONDS: prefs.hide_seconds,
            PREF_NOTIFICATIONS_ENABLED: prefs.notifications_enabled,
        }
        for key, value in values.items():
            await db.set_setting(user_id, key, value)
        self.state.preferences = prefs
        return prefs

    async def set_setting(self, key: str, value: Any) -> None:
        """Persist a single preference key (e.g. the manual task order)."""
        await db.set_setting(self._user(), key, value)
