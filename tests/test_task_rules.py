"""Tests for the pure task rules shared by services and the facade."""
from datetime import timedelta

import pytest

from config import Priority, TaskStatus
from errors import ValidationError
from models.entities import Task, minutes_between, round_minutes
from services.task_rules import (
    apply_task_patch,
    apply_updates,
    derive_status,
    validate_duration,
    validate_recorded_minutes,
    validate_title,
)

from conftest import START


def _completed() -> Task:
    return Task(
        id="t1", title="Done", status=TaskStatus.COMPLETED, is_scheduled=True,
        start_time=START - timedelta(minutes=30), end_time=START, duration_minutes=30,
    )


class TestValidation:
    def test_title_is_stripped(self):
        assert validate_title("  Plan  ") == "Plan"

    @pytest.mark.parametrize("title", ["", "   ", None])
    def test_empty_title(self, title):
        with pytest.raises(ValidationError):
            validate_title(title)

    def test_duration_bounds(self):
        assert validate_duration(0) == 0
        assert validate_duration(500) == 500
        with pytest.raises(ValidationError):
            validate_duration(0, allow_zero=False)
        with pytest.raises(ValidationError):
            validate_duration(501)
        with pytest.raises(ValidationError):
            validate_duration(True)

    def test_recorded_minutes_have_no_upper_bound(self):
        assert validate_recorded_minutes(0) == 0
        assert validate_recorded_minutes(900) == 900
        with pytest.raises(ValidationError):
            validate_recorded_minutes(-1)
        with pytest.raises(ValidationError):
            validate_recorded_minutes(2.5)

    def test_malformed_patch_timestamp(self):
        task = Task(id="t1", title="Write")
        with pytest.raises(ValidationError):
            apply_task_patch(task, {"start_time": "soon", "is_scheduled": True}, START)


class TestDeriveStatus:
    def test_unscheduled(self):
        assert derive_status(False, START, START) == TaskStatus.UNSCHEDULED

    def test_future_and_past(self):
        assert derive_status(True, START + timedelta(minutes=10), START) == TaskStatus.SCHEDULED
        assert derive_status(True, START - timedelta(minutes=10), START) == TaskStatus.IN_PROGRESS

    def test_scheduled_without_start(self):
        assert derive_status(True, None, START) == TaskStatus.SCHEDULED


class TestRounding:
    def test_round_half_up(self):
        assert round_minutes(29) == 0
        assert round_minutes(30) == 1
        assert round_minutes(89) == 1
        assert round_minutes(90) == 2
        assert round_minutes(-5) == 0

    def test_minutes_between_without_start(self):
        assert minutes_between(None, START) == 0
        assert minutes_between(START - timedelta(minutes=12), START) == 12


class TestApplyTaskPatch:
    def test_reopen_completed_clears_time(self):
        updates = apply_task_patch(_completed(), {"status": "scheduled"}, START)
        assert updates["status"] == "scheduled"
        assert updates["end_time"] is None
        assert updates["duration_minutes"] is None
        assert "start_time" not in updates

    def test_unschedule(self):
        task = Task(id="t1", title="x", status=TaskStatus.SCHEDULED, is_scheduled=True, start_time=START)
        updates = apply_task_patch(task, {"is_scheduled": False}, START)
        assert updates == {"is_scheduled": 0, "start_time": None, "status": "unscheduled"}

    def test_schedule_without_start_uses_now(self):
        task = Task(id="t1", title="x")
        updates = apply_task_patch(task, {"is_scheduled": True}, START)
        assert updates["start_time"] == START
        assert updates["status"] == "scheduled"

    def test_start_time_derives_status(self):
        task = Task(id="t1", title="x")
        future = apply_task_patch(task, {"start_time": START + timedelta(hours=1)}, START)
        past = apply_task_patch(task, {"start_time": START - timedelta(hours=1)}, START)
        assert future["status"] == "scheduled"
        assert past["status"] == "in_progress"

    def test_complete_fills_end_and_duration(self):
        task = Task(
            id="t1", title="x", status=TaskStatus.IN_PROGRESS,
            is_scheduled=True, start_time=START - timedelta(minutes=45),
        )
        updates = apply_task_patch(task, {"status": "completed"}, START)
        assert updates["end_time"] == START
        assert updates["duration_minutes"] == 45

    def test_complete_with_explicit_duration(self):
        task = Task(id="t1", title="x", status=TaskStatus.IN_PROGRESS, start_time=START)
        updates = apply_task_patch(task, {"status": "completed", "duration_minutes": 12}, START)
        assert updates["duration_minutes"] == 12

    def test_rejects_unknown_and_invalid(self):
        task = Task(id="t1", title="x")
        with pytest.raises(ValidationError):
            apply_task_patch(task, {"version": 3}, START)
        with pytest.raises(ValidationError):
            apply_task_patch(task, {"status": "paused"}, START)
        with pytest.raises(ValidationError):
            apply_task_patch(task, {"priority": "urgent"}, START)

    def test_apply_updates_builds_preview(self):
        task = Task(id="t1", title="x")
        preview = apply_updates(task, apply_task_patch(task, {"priority": "high", "is_scheduled": True}, START))
        assert preview.priority == Priority.HIGH
        assert preview.status == TaskStatus.SCHEDULED
        assert preview.is_scheduled is True
        assert task.status == TaskStatus.UNSCHEDULED
