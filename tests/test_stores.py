"""Tests for the local stores (no database involved)."""
from datetime import timedelta

from config import Priority, TaskStatus
from models.entities import CalendarEvent, Category, Task
from models.state import AppState, CalendarStore, CategoryStore, TaskStore

from conftest import START


def _task(task_id: str, status: TaskStatus = TaskStatus.UNSCHEDULED, priority: Priority = Priority.MEDIUM) -> Task:
    return Task(id=task_id, title=task_id, status=status, priority=priority)


# ===========================================================================
# TaskStore
# ===========================================================================

class TestTaskStore:
    def test_optimistic_swap_never_empties_store(self):
        store = TaskStore()
        temp_id = TaskStore.new_temp_id()
        store.add_or_update(_task(temp_id))
        assert len(store) == 1

        store.add_or_update(_task("server-1"))
        assert len(store) == 2

        store.remove(temp_id)
        assert [t.id for t in store.tasks] == ["server-1"]

    def test_temp_ids(self):
        temp_id = TaskStore.new_temp_id()
        assert TaskStore.is_temp_id(temp_id)
        assert _task(temp_id).is_temporary
        assert not TaskStore.is_temp_id("3f2a")
        assert not TaskStore.is_temp_id(None)
        assert TaskStore.new_temp_id() != temp_id

    def test_set_from_server_replaces_everything(self):
        store = TaskStore()
        store.add_or_update(_task("old"))
        store.set_from_server([_task("a"), _task("b")])
        assert "old" not in store
        assert len(store) == 2

    def test_display_order_status_then_priority(self):
        store = TaskStore()
        store.set_from_server([
            _task("done", TaskStatus.COMPLETED, Priority.HIGH),
            _task("backlog-low", TaskStatus.UNSCHEDULED, Priority.LOW),
            _task("backlog-high", TaskStatus.UNSCHEDULED, Priority.HIGH),
            _task("next", TaskStatus.SCHEDULED),
            _task("now", TaskStatus.IN_PROGRESS),
        ])
        assert [t.id for t in store.tasks] == ["now", "next", "backlog-high", "backlog-low", "done"]

    def test_manual_order_comes_first(self):
        store = TaskStore()
        store.set_from_server([_task("a"), _task("b"), _task("c", TaskStatus.IN_PROGRESS)])
        store.apply_order(["b", "ghost", "a", "b"])
        assert store.order == ["b", "ghost", "a"]
        assert [t.id for t in store.tasks] == ["b", "a", "c"]

    def test_in_progress(self):
        store = TaskStore()
        assert store.in_progress() is None
        store.set_from_server([_task("a"), _task("b", TaskStatus.IN_PROGRESS)])
        assert store.in_progress().id == "b"

    def test_remove_unknown_is_noop(self):
        store = TaskStore()
        assert store.remove("missing") is None


# ===========================================================================
# CategoryStore
# ===========================================================================

class TestCategoryStore:
    def test_dedup_keeps_first(self):
        store = CategoryStore()
        store.set_from_server([
            Category(id="1", name="Work", color="#000"),
            Category(id="2", name=" work ", color="#111"),
            Category(id="3", name="Home", color="#222"),
        ])
        assert [c.id for c in store.categories] == ["1", "3"]

    def test_add_ignores_duplicate_name(self):
        store = CategoryStore()
        assert store.add_or_update(Category(id="1", name="Work", color="#000"))
        assert not store.add_or_update(Category(id="2", name="WORK", color="#000"))
        assert len(store) == 1

    def test_update_existing_id(self):
        store = CategoryStore()
        store.add_or_update(Category(id="1", name="Work", color="#000"))
        assert store.add_or_update(Category(id="1", name="Work", color="#fff"))
        assert store.get("1").color == "#fff"
        assert store.find_by_name("work").id == "1"

    def test_remove(self):
        store = CategoryStore()
        store.add_or_update(Category(id="1", name="Work", color="#000"))
        store.remove("1")
        assert store.get("1") is None
        assert store.get(None) is None


# ===========================================================================
# CalendarStore / AppState
# ===========================================================================

class TestCalendarStore:
    def test_today_events_in_user_timezone(self):
        store = CalendarStore()
        store.set_from_server([
            CalendarEvent(id="a", title="Today", start_time=START, end_time=START + timedelta(hours=1)),
            CalendarEvent(
                id="b", title="Tomorrow",
                start_time=START + timedelta(days=1), end_time=START + timedelta(days=1, hours=1),
            ),
            CalendarEvent(
                id="c", title="Overnight",
                start_time=START - timedelta(hours=16), end_time=START - timedelta(hours=12),
            ),
        ])
        assert [e.id for e in store.today_events(START, "UTC")] == ["c", "a"]
        # 13:00 UTC is 22:00 in Tokyo: the day started at 15:00 UTC the day before
        assert [e.id for e in store.today_events(START, "Asia/Tokyo")] == ["c", "a"]
        assert [e.id for e in store.today_events(START, "America/Los_Angeles")] == ["a"]

    def test_add_and_remove(self):
        store = CalendarStore()
        event = CalendarEvent(id="a", title="Dentist", start_time=START, end_time=START + timedelta(hours=1))
        store.add_or_update(event)
        assert store.get("a") is event
        store.remove("a")
        assert store.events == []


class TestAppState:
    def test_reset_drops_user_data(self):
        state = AppState(user_id="u1", timezone="Europe/Berlin")
        state.tasks.add_or_update(_task("a"))
        state.preferences.hide_seconds = True
        state.reset()
        assert not state.is_authenticated
        assert len(state.tasks) == 0
        assert state.timezone == "UTC"
        assert state.preferences.hide_seconds is False
