"""Tests for AutoStartChecker."""
from datetime import timedelta

from config import TaskStatus
from models.entities import Task
from services.auto_start import AutoStartChecker

from conftest import START


def _scheduled(task_id: str, minutes_from_start: float) -> Task:
    return Task(
        id=task_id, title=task_id, status=TaskStatus.SCHEDULED, is_scheduled=True,
        start_time=START + timedelta(minutes=minutes_from_start),
    )


class TestAutoStartChecker:
    def test_due_within_window(self):
        checker = AutoStartChecker()
        task = _scheduled("a", 0)
        assert checker.find_due([task], START + timedelta(seconds=30)) is task

    def test_not_before_start_or_after_window(self):
        checker = AutoStartChecker()
        task = _scheduled("a", 0)
        assert checker.find_due([task], START - timedelta(seconds=1)) is None
        assert checker.find_due([task], START + timedelta(seconds=61)) is None

    def test_earliest_due_wins(self):
        checker = AutoStartChecker()
        later = _scheduled("later", 0.5)
        earlier = _scheduled("earlier", 0)
        assert checker.find_due([later, earlier], START + timedelta(seconds=40)).id == "earlier"

    def test_handled_once(self):
        checker = AutoStartChecker()
        task = _scheduled("a", 0)
        checker.mark_handled("a")
        assert checker.was_handled("a")
        assert checker.find_due([task], START + timedelta(seconds=10)) is None

    def test_forgets_missing_tasks(self):
        checker = AutoStartChecker()
        checker.mark_handled("a")
        checker.find_due([_scheduled("b", 0)], START)
        assert not checker.was_handled("a")

    def test_skips_when_task_timer_active(self):
        checker = AutoStartChecker()
        assert checker.find_due([_scheduled("a", 0)], START, task_timer_active=True) is None

    def test_ignores_placeholders_and_other_statuses(self):
        checker = AutoStartChecker()
        placeholder = _scheduled("temp-1-abc", 0)
        done = _scheduled("done", 0)
        done.status = TaskStatus.COMPLETED
        assert checker.find_due([placeholder, done], START + timedelta(seconds=5)) is None
