"""Application configuration - single source of truth for all constants.

Contains enums (TaskStatus, Priority, TimerState, StandaloneMode, ...), timer
defaults, and environment-driven settings. Import from here instead of
hardcoding values elsewhere to keep the services and stores consistent.
"""
import os
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent / ".env")


class TaskStatus(Enum):
    """Lifecycle status of a task."""
    UNSCHEDULED = "unscheduled"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Priority(Enum):
    """Task priority."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TimerKind(Enum):
    """What the active timer is bound to."""
    COUNTDOWN = "countdown"
    COUNT_UP = "count_up"
    STANDALONE = "standalone"


class TimerState(Enum):
    """States of the timer state machine."""
    IDLE = "idle"
    TASK_COUNTDOWN_RUNNING = "task_countdown_running"
    TASK_COUNTDOWN_PAUSED = "task_countdown_paused"
    TASK_COUNTUP_RUNNING = "task_countup_running"
    TASK_COUNTUP_PAUSED = "task_countup_paused"
    STANDALONE_RUNNING = "standalone_running"
    STANDALONE_PAUSED = "standalone_paused"


class StandaloneMode(Enum):
    """Sub-modes of the standalone focus timer."""
    FOCUS = "focus"
    BREAK = "break"
    POMODORO = "pomodoro"
    STOPWATCH = "stopwatch"


class PomodoroPhase(Enum):
    """Phase a standalone countdown is currently in."""
    FOCUS = "focus"
    BREAK = "break"
    LONG_BREAK = "long_break"


class TickOutcome(Enum):
    """Result of applying elapsed seconds to the timer."""
    NONE = "none"
    TICKED = "ticked"
    EXPIRED = "expired"
    PHASE_COMPLETED = "phase_completed"


# Display ordering of the task list (lower sorts first)
STATUS_ORDER = {
    TaskStatus.IN_PROGRESS: 0,
    TaskStatus.SCHEDULED: 1,
    TaskStatus.UNSCHEDULED: 2,
    TaskStatus.COMPLETED: 3,
}

PRIORITY_ORDER = {
    Priority.HIGH: 0,
    Priority.MEDIUM: 1,
    Priority.LOW: 2,
}

APP_NAME = "Clarvu"

TEMP_ID_PREFIX = "temp-"

DEFAULT_TASK_DURATION_MINUTES = 30
DEFAULT_TIMER_SECONDS = DEFAULT_TASK_DURATION_MINUTES * 60
CUSTOM_DURATION_MIN_MINUTES = 1
CUSTOM_DURATION_MAX_MINUTES = 500

POMODORO_FOCUS_MINUTES = 25
POMODORO_BREAK_MINUTES = 5
POMODORO_LONG_BREAK_MINUTES = 15
POMODORO_LONG_BREAK_EVERY = 4
POMODORO_FOCUS_MAX_MINUTES = 120
POMODORO_BREAK_MAX_MINUTES = 60

TIMER_PRESETS_SECONDS = [15 * 60, 25 * 60, 45 * 60, 60 * 60]

TICK_INTERVAL_SECONDS = 1.0
AUTO_START_WINDOW_SECONDS = 60
AUTO_START_CHECK_INTERVAL_SECONDS = 30

# Focus sessions shorter than this are not logged
MIN_FOCUS_SESSION_MINUTES = 1

NOTIFICATION_TIMEOUT_SECONDS = 10

DEFAULT_CATEGORY_COLOR = "#6b7280"

DEFAULT_CATEGORIES = [
    {"name": "Business", "color": "#2563eb", "type": "growth"},
    {"name": "Growth", "color": "#22c55e", "type": "growth"},
    {"name": "Product / Build", "color": "#8b5cf6", "type": "delivery"},
    {"name": "Operations / Admin", "color": "#6b7280", "type": "admin"},
    {"name": "Learning / Skill", "color": "#4f46e5", "type": "personal"},
    {"name": "Personal / Health", "color": "#facc15", "type": "personal"},
    {"name": "Routine", "color": "#fb923c", "type": "necessity"},
    {"name": "Waste / Distraction", "color": "#ef4444", "type": "waste"},
]

# Keys of the per-user preferences stored in the settings table
PREF_LAST_CATEGORY = "last_category_id"
PREF_CUSTOM_DURATION = "custom_duration_minutes"
PREF_TASK_ORDER = "task_order"
PREF_POMODORO_FOCUS = "pomodoro_focus_minutes"
PREF_POMODORO_BREAK = "pomodoro_break_minutes"
PREF_POMODORO_LONG_BREAK = "pomodoro_long_break_minutes"
PREF_AUTO_START_BREAK = "auto_start_break"
PREF_HIDE_SECONDS = "hide_seconds"
PREF_NOTIFICATIONS_ENABLED = "notifications_enabled"

# ============================================================================
# Environment
# ============================================================================

DB_PATH = Path(os.getenv("CLARVU_DB_PATH", "") or "clarvu.db")
LOG_LEVEL = os.getenv("CLARVU_LOG_LEVEL", "") or "INFO"
DEFAULT_TIMEZONE = os.getenv("CLARVU_DEFAULT_TIMEZONE", "") or "UTC"
