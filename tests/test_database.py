"""Tests for the database layer (transactions, scoping, export)."""
from datetime import timedelta

from core import ServiceContainer
from database import db

from conftest import START, USER


class TestTransactions:
    async def test_version_conflict_rolls_back_force_complete(self, user: ServiceContainer):
        a = (await user.task.create_task("A")).task
        b = (await user.task.create_task("B")).task
        await user.task.start_task(a.id)

        row, completed = await db.update_task_fields(
            USER, b.id, {"status": "in_progress"},
            expected_version=b.version + 3,
            complete_others_at=START,
        )
        assert row is None
        assert completed == []
        assert (await db.load_task(USER, a.id))["status"] == "in_progress"

    async def test_delete_cascades_active_timer(self, user: ServiceContainer):
        task = (await user.task.create_task("Cascade")).task
        await user.task.start_task(task.id)
        assert await db.load_active_timer(USER) is not None
        assert await db.delete_task(USER, task.id)
        assert await db.load_active_timer(USER) is None

    async def test_timestamps_round_trip_as_utc(self, user: ServiceContainer):
        start = START + timedelta(hours=2)
        task = (await user.task.create_task("Later", start_time=start, is_scheduled=True)).task
        stored = await db.load_task(USER, task.id)
        assert stored["start_time"] == start.isoformat()
        assert task.start_time == start
        assert task.start_time.utcoffset() == timedelta(0)


class TestExport:
    async def test_export_is_scoped_to_user(self, user: ServiceContainer):
        await user.task.create_task("Mine")
        await user.task.log_focus_session(25, "focus")
        await db.ensure_profile("user-2", "UTC")
        await db.set_setting("user-2", "hide_seconds", True)

        data = await db.export_user_data(USER)
        assert set(data) == {"tasks", "categories", "calendar_events", "focus_sessions", "settings"}
        assert [t["title"] for t in data["tasks"]] == ["Mine"]
        assert [s["minutes"] for s in data["focus_sessions"]] == [25]
        assert data["settings"] == []
