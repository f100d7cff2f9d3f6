"""Time formatting utilities for timer and duration display.

Converts seconds/minutes to human-readable formats like "1 hr 30 min" or
"05:30". Use TimeFormatter.timer_display() for the running timer.
"""


class TimeFormatter:
    """Unified time formatting utilities for the application."""

    @staticmethod
    def minutes_to_display(minutes: int) -> str:
        """Convert minutes to verbose format like '5 min' or '1 hr 30 min'."""
        if minutes < 60:
            return f"{minutes} min"
        h, m = divmod(minutes, 60)
        if m == 0:
            return f"{h} hr" if h == 1 else f"{h} hrs"
        return f"{h} hr {m} min" if h == 1 else f"{h} hrs {m} min"

    @staticmethod
    def seconds_to_timer(seconds: int) -> str:
        """Convert seconds to 'MM:SS' (minutes keep counting past 59)."""
        seconds = max(0, seconds)
        return f"{seconds // 60:02d}:{seconds % 60:02d}"

    @staticmethod
    def seconds_to_minutes_label(seconds: int) -> str:
        """Whole minutes, rounded up when seconds remain, like '25 min'."""
        seconds = max(0, seconds)
        minutes, secs = divmod(seconds, 60)
        return f"{minutes + 1 if secs else minutes} min"

    @staticmethod
    def timer_display(seconds: int, hide_seconds: bool = False) -> str:
        if hide_seconds:
            return TimeFormatter.seconds_to_minutes_label(seconds)
        return TimeFormatter.seconds_to_timer(seconds)
