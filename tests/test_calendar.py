"""Tests for CalendarService."""
from datetime import timedelta

from core import ServiceContainer

from conftest import START


class TestCalendar:
    async def test_save_and_fetch_overlapping(self, user: ServiceContainer):
        await user.calendar.save_event("Standup", START, START + timedelta(minutes=15))
        await user.calendar.save_event(
            "Offsite", START + timedelta(days=2), START + timedelta(days=2, hours=8)
        )
        result = await user.calendar.fetch_events(START - timedelta(hours=1), START + timedelta(hours=1))
        assert [e.title for e in result.data] == ["Standup"]
        assert [e.title for e in user.state.calendar.events] == ["Standup"]

    async def test_fetch_today(self, user: ServiceContainer):
        await user.calendar.save_event("Lunch", START - timedelta(hours=1), START)
        await user.calendar.save_event(
            "Tomorrow", START + timedelta(days=1), START + timedelta(days=1, hours=1)
        )
        result = await user.calendar.fetch_today_events()
        assert [e.title for e in result.data] == ["Lunch"]

    async def test_update_existing_event(self, user: ServiceContainer):
        event = (await user.calendar.save_event("Call", START, START + timedelta(hours=1))).data
        await user.calendar.save_event(
            "Call (moved)", START + timedelta(hours=2), START + timedelta(hours=3), event_id=event.id
        )
        events = (await user.calendar.fetch_events()).data
        assert [(e.id, e.title) for e in events] == [(event.id, "Call (moved)")]

    async def test_rejects_invalid_range(self, user: ServiceContainer):
        result = await user.calendar.save_event("Backwards", START, START - timedelta(minutes=1))
        assert not result.success
        assert not (await user.calendar.save_event("", START, START + timedelta(minutes=1))).success

    async def test_delete(self, user: ServiceContainer):
        event = (await user.calendar.save_event("Gone", START, START + timedelta(hours=1))).data
        assert (await user.calendar.delete_event(event.id)).success
        assert user.state.calendar.get(event.id) is None
        assert not (await user.calendar.delete_event(event.id)).success
