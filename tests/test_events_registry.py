"""Tests for the event bus, the service registry and bootstrap wiring."""
import gc

import pytest

from api import ClarvuAPI
from core import ServiceContainer
from events import AppEvent, event_bus
from registry import Services, registry


@pytest.fixture(autouse=True)
def clean_bus():
    event_bus.clear()
    yield
    event_bus.clear()


class _Observer:
    def __init__(self):
        self.seen = []

    def on_event(self, data):
        self.seen.append(data)


class TestEventBus:
    def test_lambda_subscription_is_kept(self):
        received = []
        sub = event_bus.subscribe(AppEvent.TASK_CREATED, lambda data: received.append(data))
        gc.collect()
        event_bus.emit(AppEvent.TASK_CREATED, "payload")
        assert received == ["payload"]
        sub.unsubscribe()
        event_bus.emit(AppEvent.TASK_CREATED, "again")
        assert received == ["payload"]
        assert not sub.active

    def test_bound_method_is_weak(self):
        observer = _Observer()
        event_bus.subscribe(AppEvent.TASK_DELETED, observer.on_event)
        event_bus.emit(AppEvent.TASK_DELETED, 1)
        assert observer.seen == [1]
        del observer
        gc.collect()
        event_bus.emit(AppEvent.TASK_DELETED, 2)

    def test_failing_handler_does_not_stop_others(self):
        received = []

        def broken(_data):
            raise ValueError("bad handler")

        event_bus.subscribe(AppEvent.TIMER_TICK, broken, strong=True)
        sub = event_bus.subscribe(AppEvent.TIMER_TICK, lambda data: received.append(data))
        event_bus.emit(AppEvent.TIMER_TICK, 5)
        assert received == [5]
        sub.unsubscribe()

    def test_emit_without_listeners(self):
        event_bus.emit(AppEvent.CALENDAR_CHANGED)


class TestRegistry:
    async def test_bootstrap_registers_state_and_container(self, services: ServiceContainer):
        assert registry.require(Services.CONTAINER) is services
        assert registry.get(Services.STATE) is services.state

    async def test_facade_resolves_registered_container(self, services: ServiceContainer):
        api = ClarvuAPI()
        assert api.state is services.state
        assert api.tasks is services.state.tasks

    def test_require_missing_raises(self):
        registry.clear()
        assert registry.get(Services.CONTAINER) is None
        with pytest.raises(KeyError):
            registry.require(Services.CONTAINER)
        with pytest.raises(KeyError):
            ClarvuAPI()
