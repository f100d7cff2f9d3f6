"""Tests for TimeFormatter."""
import pytest

from formatters import TimeFormatter


class TestTimeFormatter:
    @pytest.mark.parametrize("minutes,expected", [
        (0, "0 min"),
        (45, "45 min"),
        (60, "1 hr"),
        (90, "1 hr 30 min"),
        (120, "2 hrs"),
        (150, "2 hrs 30 min"),
    ])
    def test_minutes_to_display(self, minutes, expected):
        assert TimeFormatter.minutes_to_display(minutes) == expected

    def test_timer_display(self):
        assert TimeFormatter.timer_display(1500) == "25:00"
        assert TimeFormatter.timer_display(65) == "01:05"
        assert TimeFormatter.timer_display(-3) == "00:00"
        assert TimeFormatter.timer_display(6000) == "100:00"

    def test_hidden_seconds_round_up(self):
        assert TimeFormatter.timer_display(1500, hide_seconds=True) == "25 min"
        assert TimeFormatter.timer_display(1441, hide_seconds=True) == "25 min"
        assert TimeFormatter.timer_display(0, hide_seconds=True) == "0 min"
