import logging
from datetime import datetime
from typing import Iterable, Optional, Set

from config import AUTO_START_WINDOW_SECONDS, TaskStatus
from models.entities import Task

logger = logging.getLogger(__name__)


class AutoStartChecker:
    """Finds the scheduled task whose start time has just arrived.

    A task qualifies when it is ``scheduled`` and its start lies between 0
    and ``window_seconds`` in the past. Each task is handed out at most
    once; ids of tasks that disappear from the list are forgotten.
    """

    def __init__(self, window_seconds: int = AUTO_START_WINDOW_SECONDS) -> None:
        self.window_seconds = window_seconds
        self._handled: Set[str] = set()

    def find_due(
        self,
        tasks: Iterable[Task],
        now: datetime,
        task_timer_active: bool = False,
    ) -> Optional[Task]:
        tasks = list(tasks)
        present = {t.id for t in tasks}
        self._handled &= present
        if task_timer_active:
            return None

        candidates = sorted(
            (t for t in tasks if t.status == TaskStatus.SCHEDULED and t.start_time is not None),
            key=lambda t: t.start_time,
        )
        for task in candidates:
            if task.id in self._handled or task.is_temporary:
                continue
            lag = (now - task.start_time).total_seconds()
            if 0 <= lag <= self.window_seconds:
                return task
        return None

    def mark_handled(self, task_id: str) -> None:
        self._handled.add(task_id)

    def was_handled(self, task_id: str) -> bool:
        return task_id in self._handled

    def reset(self) -> None:
        self._handled.clear()
