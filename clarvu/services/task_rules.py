"""Pure rules for deriving task status and applying patches.

Shared by the persistence actions (authoritative) and the facade (optimistic
preview), so both sides compute the same result for the same input.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from config import CUSTOM_DURATION_MAX_MINUTES, Priority, TaskStatus
from errors import ValidationError
from models.entities import Task, minutes_between, parse_timestamp

PATCHABLE_FIELDS = frozenset({
    "title", "priority", "category_id", "start_time",
    "is_scheduled", "status", "duration_minutes",
})


def validate_title(title: Optional[str]) -> str:
    """Return the stripped title, raising ValidationError if it is empty."""
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValidationError("Title is required")
    return cleaned


def validate_duration(minutes: Any, allow_zero: bool = True) -> int:
    if isinstance(minutes, bool) or not isinstance(minutes, int):
        raise ValidationError("Duration must be a whole number of minutes")
    lowest = 0 if allow_zero else 1
    if minutes < lowest or minutes > CUSTOM_DURATION_MAX_MINUTES:
        raise ValidationError(
            f"Duration must be between {lowest} and {CUSTOM_DURATION_MAX_MINUTES} minutes"
        )
    return minutes


def validate_recorded_minutes(minutes: Any) -> int:
    """Check a logged duration: any non-negative whole number of minutes."""
    if isinstance(minutes, bool) or not isinstance(minutes, int):
        raise ValidationError("Duration must be a whole number of minutes")
    if minutes < 0:
        raise ValidationError("Duration cannot be negative")
    return minutes


def status_for_start(start_time: datetime, now: datetime) -> TaskStatus:
    """Scheduled if the start is in the future, otherwise in progress."""
    return TaskStatus.SCHEDULED if start_time > now else TaskStatus.IN_PROGRESS


def derive_status(is_scheduled: bool, start_time: Optional[datetime], now: datetime) -> TaskStatus:
    if not is_scheduled:
        return TaskStatus.UNSCHEDULED
    if start_time is None:
        return TaskStatus.SCHEDULED
    return status_for_start(start_time, now)


def apply_task_patch(task: Task, patch: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Compute the column updates a patch implies for ``task``.

    Rules:
    - ``is_scheduled=False`` makes the task unscheduled and clears its start.
    - ``is_scheduled=True`` with a start derives the status from it; without
      one the start becomes ``now`` and the status ``scheduled``.
    - A bare ``start_time`` derives the status; ``None`` unschedules.
    - ``status=completed`` fills ``end_time`` and ``duration_minutes``;
      ``status=in_progress`` sets a missing start to ``now``.
    - Leaving ``completed`` clears ``end_time`` and ``duration_minutes``.

    Returns:
        Dict of column -> new value (only changed columns).

    Raises:
        ValidationError: On unknown fields or invalid values
    """
    unknown = set(patch) - PATCHABLE_FIELDS
    if unknown:
        raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

    updates: Dict[str, Any] = {}
    if "title" in patch:
        updates["title"] = validate_title(patch["title"])
    if "priority" in patch:
        try:
            updates["priority"] = Priority(patch["priority"]).value
        except ValueError as e:
            raise ValidationError(f"Invalid priority: {patch['priority']}") from e
    if "category_id" in patch:
        updates["category_id"] = patch["category_id"] or None

    start = parse_timestamp(patch.get("start_time"))
    status: Optional[TaskStatus] = None

    if "is_scheduled" in patch:
        if not patch["is_scheduled"]:
            updates.update(is_scheduled=0, start_time=None)
            status = TaskStatus.UNSCHEDULED
        elif start is not None:
            updates.update(is_scheduled=1, start_time=start)
            status = status_for_start(start, now)
        else:
            updates.update(is_scheduled=1, start_time=now)
            status = TaskStatus.SCHEDULED
    elif "start_time" in patch:
        if start is None:
            updates.update(is_scheduled=0, start_time=None)
            status = TaskStatus.UNSCHEDULED
        else:
            updates.update(is_scheduled=1, start_time=start)
            status = status_for_start(start, now)

    if "status" in patch:
        try:
            status = TaskStatus(patch["status"])
        except ValueError as e:
            raise ValidationError(f"Invalid status: {patch['status']}") from e

    if status is not None:
        updates["status"] = status.value
        effective_start = updates.get("start_time", task.start_time)
        if status == TaskStatus.COMPLETED:
            end = task.end_time if task.is_completed and task.end_time else now
            updates["end_time"] = end
            if "duration_minutes" not in patch:
                updates["duration_minutes"] = minutes_between(effective_start, end)
        elif status == TaskStatus.IN_PROGRESS:
            if effective_start is None:
                updates["start_time"] = now
            updates["is_scheduled"] = 1
        elif status == TaskStatus.SCHEDULED:
            if effective_start is None:
                updates["start_time"] = now
            updates["is_scheduled"] = 1
        elif status == TaskStatus.UNSCHEDULED:
            updates.update(is_scheduled=0, start_time=None)
        if status != TaskStatus.COMPLETED and task.is_completed:
            updates.update(end_time=None, duration_minutes=None)

    if "duration_minutes" in patch and patch["duration_minutes"] is not None:
        updates["duration_minutes"] = validate_recorded_minutes(patch["duration_minutes"])

    return updates


def apply_updates(task: Task, updates: Dict[str, Any]) -> Task:
    """Return a copy of ``task`` with column updates applied (optimistic preview)."""
    preview = task.copy()
    for column, value in updates.items():
        if column == "status":
            value = TaskStatus(value)
        elif column == "priority":
            value = Priority(value)
        elif column == "is_scheduled":
            value = bool(value)
        setattr(preview, column, value)
    return preview
