import logging
import uuid
from datetime import datetime
from typing import Optional

from clock import SystemClock, system_clock, today_range
from database import db
from errors import ClarvuError, NotFoundError, Unauthenticated, ValidationError
from models.entities import ActionResult, CalendarEvent, parse_timestamp
from models.state import AppState

logger = logging.getLogger(__name__)


class CalendarService:
    """Calendar events shown next to the task timeline.

    Events are stored per user; the calendar store mirrors the range most
    recently fetched.
    """

    def __init__(self, state: AppState, clock: SystemClock = system_clock) -> None:
        self.state = state
        self.clock = clock

    def _user(self) -> str:
        if self.state.user_id is None:
            raise Unauthenticated()
        return self.state.user_id

    async def fetch_events(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> ActionResult:
        """Load events overlapping ``[start, end)`` into the calendar store."""
        try:
            rows = await db.load_calendar_events(
                self._user(), parse_timestamp(start), parse_timestamp(end)
            )
        except ClarvuError as e:
            logger.warning(f"fetch_events failed: {e}")
            return ActionResult.fail(str(e))
        events = [CalendarEvent.from_dict(r) for r in rows]
        self.state.calendar.set_from_server(events)
        return ActionResult.ok(data=events)

    async def fetch_today_events(self) -> ActionResult:
        start, end = today_range(self.state.timezone, self.clock.now())
        return await self.fetch_events(start, end)

    async def save_event(
        self,
        title: str,
        start_time: datetime,
        end_time: datetime,
        description: Optional[str] = None,
        all_day: bool = False,
        source: Optional[str] = None,
        external_id: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> ActionResult:
        """Create an event, or replace it when ``event_id`` is given."""
        try:
            user_id = self._user()
            clean = (title or "").strip()
            if not clean:
                raise ValidationError("Title is required")
            start = parse_timestamp(start_time)
            end = parse_timestamp(end_time)
            if start is None or end is None or end <= start:
                raise ValidationError("Event end must be after its start")
            event = CalendarEvent(
                id=event_id or str(uuid.uuid4()),
                user_id=user_id,
                title=clean,
                description=description,
                start_time=start,
                end_time=end,
                all_day=all_day,
                source=source,
                external_id=external_id,
            )
            await db.save_calendar_event(event.to_dict())
        except ClarvuError as e:
            logger.warning(f"save_event failed: {e}")
            return ActionResult.fail(str(e))
        self.state.calendar.add_or_update(event)
        return ActionResult.ok(data=event)

    async def delete_event(self, event_id: str) -> ActionResult:
        try:
            if not await db.delete_calendar_event(self._user(), event_id):
                raise NotFoundError(f"Event {event_id} not found")
        except ClarvuError as e:
            logger.warning(f"delete_event failed: {e}")
            return ActionResult.fail(str(e))
        self.state.calendar.remove(event_id)
        return ActionResult.ok()
