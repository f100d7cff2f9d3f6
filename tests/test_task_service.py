"""Tests for TaskService (server-side task actions)."""
from datetime import timedelta

from config import Priority, TaskStatus
from core import ServiceContainer
from database import db

from conftest import START, USER, FakeClock


# ===========================================================================
# create_task
# ===========================================================================

class TestCreateTask:
    async def test_unscheduled_forces_null_start(self, user: ServiceContainer):
        result = await user.task.create_task("Backlog", start_time=START, is_scheduled=False)
        assert result.success
        assert result.task.status == TaskStatus.UNSCHEDULED
        assert result.task.start_time is None
        assert result.task.is_scheduled is False

    async def test_future_and_past_starts(self, user: ServiceContainer):
        future = await user.task.create_task(
            "Later", start_time=START + timedelta(minutes=10), is_scheduled=True
        )
        past = await user.task.create_task(
            "Earlier", start_time=START - timedelta(minutes=10), is_scheduled=True
        )
        assert future.task.status == TaskStatus.SCHEDULED
        assert past.task.status == TaskStatus.IN_PROGRESS

    async def test_scheduled_without_start_uses_now(self, user: ServiceContainer, clock: FakeClock):
        result = await user.task.create_task("Now-ish", is_scheduled=True)
        assert result.task.status == TaskStatus.SCHEDULED
        assert result.task.start_time == clock.now()

    async def test_empty_title(self, user: ServiceContainer):
        result = await user.task.create_task("  ")
        assert not result.success
        assert "Title" in result.error

    async def test_malformed_start_is_a_failed_result(self, user: ServiceContainer):
        result = await user.task.create_task("x", start_time="tomorrow 9am", is_scheduled=True)
        assert not result.success
        assert "Invalid timestamp" in result.error
        assert await db.load_tasks(USER) == []

    async def test_invalid_priority(self, user: ServiceContainer):
        result = await user.task.create_task("Odd", priority="urgent")
        assert not result.success

    async def test_in_progress_create_completes_running(self, user: ServiceContainer):
        first = await user.task.create_task(
            "First", start_time=START - timedelta(minutes=30), is_scheduled=True
        )
        second = await user.task.create_task(
            "Second", start_time=START - timedelta(minutes=5), is_scheduled=True
        )
        assert [t.id for t in second.tasks] == [first.task.id]
        assert second.tasks[0].duration_minutes == 30

    async def test_requires_user(self, services: ServiceContainer):
        result = await services.task.create_task("Nobody")
        assert not result.success
        assert result.error == "Not authenticated"


# ===========================================================================
# start / end / cancel
# ===========================================================================

class TestStartEnd:
    async def test_single_in_progress_after_start(self, user: ServiceContainer, clock: FakeClock):
        ids = []
        for title in ("A", "B", "C"):
            ids.append((await user.task.create_task(title)).task.id)
        for task_id in ids:
            await user.task.start_task(task_id)
            clock.advance(minutes=3)
        tasks = (await user.task.fetch_today_tasks()).tasks
        assert [t.id for t in tasks if t.status == TaskStatus.IN_PROGRESS] == [ids[-1]]
        for task in tasks:
            if task.status == TaskStatus.COMPLETED:
                assert task.end_time is not None
                assert task.duration_minutes == 3

    async def test_start_replaces_active_timer_row(self, user: ServiceContainer):
        a = (await user.task.create_task("A")).task
        b = (await user.task.create_task("B")).task
        await user.task.start_task(a.id, duration_minutes=25)
        await user.task.start_task(b.id, duration_minutes=45)
        record = (await user.task.get_active_timer()).data
        assert record.task_id == b.id
        assert record.total_seconds == 45 * 60

    async def test_count_up_timer_row_has_no_end(self, user: ServiceContainer):
        a = (await user.task.create_task("A")).task
        result = await user.task.start_task(a.id, count_up=True)
        assert result.data.ends_at is None

    async def test_start_missing_task(self, user: ServiceContainer):
        result = await user.task.start_task("missing")
        assert not result.success
        assert (await user.task.get_active_timer()).data is None

    async def test_end_without_start_is_zero(self, user: ServiceContainer):
        task = (await user.task.create_task("Never started")).task
        result = await user.task.end_task(task.id)
        assert result.task.status == TaskStatus.COMPLETED
        assert result.task.duration_minutes == 0
        assert result.task.end_time is not None

    async def test_long_explicit_duration_is_kept(self, user: ServiceContainer):
        task = (await user.task.create_task("All-nighter")).task
        await user.task.start_task(task.id)
        result = await user.task.end_task(task.id, explicit_duration_minutes=720)
        assert result.success
        assert result.task.duration_minutes == 720

    async def test_end_uses_ended_at(self, user: ServiceContainer):
        task = (await user.task.create_task("Started")).task
        await user.task.start_task(task.id)
        ended = START + timedelta(minutes=40)
        result = await user.task.end_task(task.id, ended_at=ended)
        assert result.task.end_time == ended
        assert result.task.duration_minutes == 40
        assert (await user.task.get_active_timer()).data is None

    async def test_cancel_keeps_start(self, user: ServiceContainer, clock: FakeClock):
        task = (await user.task.create_task("Cancel")).task
        await user.task.start_task(task.id)
        result = await user.task.cancel_task(task.id)
        assert result.task.status == TaskStatus.SCHEDULED
        assert result.task.start_time == clock.now()

    async def test_other_users_tasks_are_invisible(self, user: ServiceContainer):
        task = (await user.task.create_task("Mine")).task
        await db.ensure_profile("user-2", "UTC")
        user.state.user_id = "user-2"
        assert not (await user.task.end_task(task.id)).success
        assert not (await user.task.delete_task(task.id)).success
        assert (await user.task.fetch_today_tasks()).tasks == []
        user.state.user_id = USER


# ===========================================================================
# update_task
# ===========================================================================

class TestUpdateTask:
    async def test_completed_back_to_scheduled_clears_time(self, user: ServiceContainer):
        task = (await user.task.create_task("Done")).task
        await user.task.end_task(task.id, explicit_duration_minutes=12)
        result = await user.task.update_task(task.id, {"status": "scheduled"})
        assert result.task.status == TaskStatus.SCHEDULED
        assert result.task.end_time is None
        assert result.task.duration_minutes is None

    async def test_status_completed_fills_end(self, user: ServiceContainer, clock: FakeClock):
        task = (await user.task.create_task("Finish", is_scheduled=True)).task
        clock.advance(minutes=20)
        result = await user.task.update_task(task.id, {"status": "completed"})
        assert result.task.end_time == clock.now()
        assert result.task.duration_minutes == 20

    async def test_unschedule_clears_start(self, user: ServiceContainer):
        task = (await user.task.create_task(
            "Later", start_time=START + timedelta(hours=1), is_scheduled=True
        )).task
        result = await user.task.update_task(task.id, {"is_scheduled": False})
        assert result.task.status == TaskStatus.UNSCHEDULED
        assert result.task.start_time is None

    async def test_expected_version_conflict(self, user: ServiceContainer):
        task = (await user.task.create_task("Race")).task
        await user.task.update_task(task.id, {"title": "Race 2"}, expected_version=task.version)
        stale = await user.task.update_task(task.id, {"title": "Race 3"}, expected_version=task.version)
        assert not stale.success
        assert "changed" in stale.error

    async def test_malformed_timing_is_a_failed_result(self, user: ServiceContainer):
        task = (await user.task.create_task("Notes")).task
        await user.task.end_task(task.id, explicit_duration_minutes=5)
        result = await user.task.update_task_timing(task.id, "noonish", START)
        assert not result.success
        patched = await user.task.update_task(task.id, {"start_time": "noonish", "is_scheduled": True})
        assert not patched.success

    async def test_unknown_field_rejected(self, user: ServiceContainer):
        task = (await user.task.create_task("Strict")).task
        result = await user.task.update_task(task.id, {"owner": "someone"})
        assert not result.success

    async def test_leaving_in_progress_clears_timer(self, user: ServiceContainer):
        task = (await user.task.create_task("Pause me")).task
        await user.task.start_task(task.id)
        await user.task.update_task(task.id, {"status": "scheduled"})
        assert (await user.task.get_active_timer()).data is None

    async def test_priority_change(self, user: ServiceContainer):
        task = (await user.task.create_task("Prioritise")).task
        result = await user.task.update_task(task.id, {"priority": "low"})
        assert result.task.priority == Priority.LOW


# ===========================================================================
# queries / focus sessions
# ===========================================================================

class TestQueries:
    async def test_today_includes_backlog_not_tomorrow(self, user: ServiceContainer):
        await user.task.create_task("Backlog")
        await user.task.create_task("Today", start_time=START + timedelta(hours=2), is_scheduled=True)
        await user.task.create_task("Tomorrow", start_time=START + timedelta(days=1), is_scheduled=True)
        titles = sorted(t.title for t in (await user.task.fetch_today_tasks()).tasks)
        assert titles == ["Backlog", "Today"]

    async def test_today_follows_profile_timezone(self, user: ServiceContainer):
        # 23:30 UTC on the 2nd is already the 3rd in Tokyo
        await user.task.create_task(
            "Late", start_time=START.replace(hour=23, minute=30), is_scheduled=True
        )
        user.state.timezone = "Asia/Tokyo"
        titles = [t.title for t in (await user.task.fetch_today_tasks()).tasks]
        assert titles == []

    async def test_calendar_range_excludes_backlog(self, user: ServiceContainer):
        await user.task.create_task("Backlog")
        await user.task.create_task("In range", start_time=START + timedelta(hours=1), is_scheduled=True)
        result = await user.task.fetch_calendar_tasks(START, START + timedelta(hours=3))
        assert [t.title for t in result.tasks] == ["In range"]

    async def test_focus_sessions(self, user: ServiceContainer):
        assert (await user.task.log_focus_session(25, "pomodoro")).success
        assert not (await user.task.log_focus_session(0, "focus")).success
        sessions = (await user.task.load_focus_sessions()).data
        assert [(s.minutes, s.mode) for s in sessions] == [(25, "pomodoro")]
