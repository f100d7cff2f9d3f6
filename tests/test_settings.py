"""Tests for SettingsService and the preference round-trip."""
from config import PREF_POMODORO_FOCUS, PREF_TASK_ORDER
from core import ServiceContainer
from database import db
from models.entities import Preferences

from conftest import USER


class TestSettings:
    async def test_defaults_for_new_user(self, user: ServiceContainer):
        prefs = await user.settings.load_preferences()
        assert prefs.custom_duration_minutes == 30
        assert prefs.pomodoro.focus_minutes == 25
        assert prefs.pomodoro.break_minutes == 5
        assert prefs.notifications_enabled is True
        assert prefs.task_order == []

    async def test_save_clamps_and_persists(self, user: ServiceContainer):
        prefs = Preferences(custom_duration_minutes=900, hide_seconds=True)
        prefs.pomodoro.break_minutes = 0
        saved = await user.settings.save_preferences(prefs)
        assert saved.custom_duration_minutes == 500
        assert saved.pomodoro.break_minutes == 1

        loaded = await user.settings.load_preferences()
        assert loaded.custom_duration_minutes == 500
        assert loaded.hide_seconds is True
        assert user.state.preferences is loaded

    async def test_garbage_values_fall_back(self, user: ServiceContainer):
        await db.set_setting(USER, PREF_POMODORO_FOCUS, "lots")
        await db.set_setting(USER, PREF_TASK_ORDER, {"not": "a list"})
        prefs = await user.settings.load_preferences()
        assert prefs.pomodoro.focus_minutes == 25
        assert prefs.task_order == []

    async def test_task_order_applied_to_store(self, user: ServiceContainer):
        await user.settings.set_setting(PREF_TASK_ORDER, ["b", "a"])
        await user.settings.load_preferences()
        assert user.state.tasks.order == ["b", "a"]

    async def test_settings_are_per_user(self, user: ServiceContainer):
        await user.settings.set_setting(PREF_POMODORO_FOCUS, 50)
        assert await db.get_setting("user-2", PREF_POMODORO_FOCUS, 25) == 25
        assert await db.get_setting(USER, PREF_POMODORO_FOCUS) == 50
