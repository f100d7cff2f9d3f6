"""Shared fixtures for Clarvu tests."""
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

import database as db_module
from api import ClarvuAPI
from core import ServiceContainer, bootstrap, shutdown
from database import db
from events import AppEvent, event_bus
from registry import registry

USER = "user-1"
START = datetime(2026, 3, 2, 13, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock.

    Wall time only moves when told to; the monotonic reading moves
    separately so a running tick loop never applies time behind a test's back.
    """

    def __init__(self, start: datetime = START) -> None:
        self._now = start
        self._mono = 1000.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._mono

    def set(self, when: datetime) -> None:
        self._now = when

    def advance(self, seconds: float = 0, minutes: float = 0) -> None:
        self._now += timedelta(seconds=seconds + minutes * 60)

    def advance_monotonic(self, seconds: float) -> None:
        self._mono += seconds


class RecordingNotifier:
    """Stands in for plyer's notification.notify."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.fail_with: Optional[Exception] = None

    def __call__(self, **kwargs: Any) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(kwargs)

    @property
    def titles(self) -> List[str]:
        return [n["title"] for n in self.sent]


class EventCollector:
    """Subscribe to events and record them for assertions."""

    def __init__(self, *events: AppEvent):
        self.received: list[tuple[AppEvent, object]] = []
        self._subs = []
        for ev in events:
            sub = event_bus.subscribe(ev, lambda data, _ev=ev: self.received.append((_ev, data)))
            self._subs.append(sub)

    def count(self, event: AppEvent) -> int:
        return sum(1 for ev, _ in self.received if ev == event)

    def payloads(self, event: AppEvent) -> list:
        return [data for ev, data in self.received if ev == event]

    def cleanup(self):
        for sub in self._subs:
            sub.unsubscribe()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def services(clock: FakeClock, notifier: RecordingNotifier) -> ServiceContainer:
    """Provide a fresh ServiceContainer backed by an in-memory database.

    Reuses the module-level singletons (db, event_bus, registry) but
    resets their internal state between tests for isolation.
    """
    # Close any existing DB connection and force re-init
    await db.close()
    db._initialized = False
    db._conn_lock = None
    db._init_lock = None

    # Clear event subscriptions and service registrations
    event_bus.clear()
    registry.clear()

    # Point to a fresh in-memory database
    db_module.DB_PATH = Path(":memory:")

    svc = await bootstrap(clock=clock, notifier=notifier)

    yield svc

    await shutdown(svc)
    event_bus.clear()


@pytest.fixture
def api(services: ServiceContainer) -> ClarvuAPI:
    return ClarvuAPI(services)


@pytest_asyncio.fixture
async def signed_in(api: ClarvuAPI) -> ClarvuAPI:
    """API with USER signed in (UTC profile)."""
    result = await api.sign_in(USER, "UTC")
    assert result.success
    return api


@pytest_asyncio.fixture
async def user(services: ServiceContainer) -> ServiceContainer:
    """Services with USER set on the state and a profile row, no facade."""
    await db.ensure_profile(USER, "UTC")
    services.state.user_id = USER
    return services
