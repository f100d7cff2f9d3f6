"""Tests for optimistic mutations and per-entity locking."""
import asyncio

import pytest

from events import AppEvent, event_bus
from models.entities import ActionResult, Task
from models.state import TaskStore
from services.mutations import EntityLocks, MutationRunner, OptimisticMutation

from conftest import EventCollector


@pytest.fixture(autouse=True)
def clean_bus():
    event_bus.clear()
    yield
    event_bus.clear()


class TestMutationRunner:
    async def test_success_reconciles(self):
        store = TaskStore()
        placeholder = Task(id=TaskStore.new_temp_id(), title="Draft")
        confirmed = Task(id="server-1", title="Draft")

        async def commit():
            assert placeholder.id in store
            return ActionResult.ok(task=confirmed)

        def reconcile(result):
            store.add_or_update(result.task)
            store.remove(placeholder.id)

        result = await MutationRunner().run(OptimisticMutation(
            name="create",
            entity_id=placeholder.id,
            apply=lambda: store.add_or_update(placeholder),
            commit=commit,
            compensate=lambda: store.remove(placeholder.id),
            reconcile=reconcile,
        ))
        assert result.success
        assert [t.id for t in store.tasks] == ["server-1"]

    async def test_failure_compensates_and_emits(self):
        collector = EventCollector(AppEvent.MUTATION_ROLLED_BACK)
        store = TaskStore()
        original = Task(id="t1", title="Before")
        store.add_or_update(original)

        async def commit():
            return ActionResult.fail("boom")

        def apply():
            moved = original.copy()
            moved.title = "After"
            store.add_or_update(moved)

        result = await MutationRunner().run(OptimisticMutation(
            name="rename",
            entity_id="t1",
            apply=apply,
            commit=commit,
            compensate=lambda: store.add_or_update(original),
        ))
        assert not result.success
        assert store.get("t1").title == "Before"
        assert collector.payloads(AppEvent.MUTATION_ROLLED_BACK) == [
            {"mutation": "rename", "entity_id": "t1", "error": "boom"}
        ]
        collector.cleanup()

    async def test_exception_compensates_and_propagates(self):
        undone = []

        async def commit():
            raise RuntimeError("connection reset")

        with pytest.raises(RuntimeError):
            await MutationRunner().run(OptimisticMutation(
                name="explode", entity_id="t1", commit=commit,
                compensate=lambda: undone.append(True),
            ))
        assert undone == [True]

    async def test_cancelled_commit_compensates(self):
        store = TaskStore()
        original = Task(id="t1", title="Open")
        store.add_or_update(original)
        entered = asyncio.Event()

        async def commit():
            entered.set()
            await asyncio.Event().wait()

        def apply():
            done = original.copy()
            done.title = "Closed"
            store.add_or_update(done)

        runner = MutationRunner()
        pending = asyncio.ensure_future(runner.run(OptimisticMutation(
            name="end_task", entity_id="t1", commit=commit, apply=apply,
            compensate=lambda: store.add_or_update(original),
        )))
        await entered.wait()
        assert store.get("t1").title == "Closed"
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending
        assert store.get("t1").title == "Open"
        assert not runner.locks.is_busy("t1")

    async def test_same_entity_is_serialised(self):
        runner = MutationRunner()
        log = []
        gate = asyncio.Event()

        def make(tag: str, wait: bool):
            async def commit():
                log.append(f"{tag}-commit-start")
                if wait:
                    await gate.wait()
                log.append(f"{tag}-commit-end")
                return ActionResult.ok()
            return OptimisticMutation(
                name=tag, entity_id="t1", commit=commit,
                apply=lambda: log.append(f"{tag}-apply"),
            )

        first = asyncio.ensure_future(runner.run(make("first", True)))
        await asyncio.sleep(0)
        second = asyncio.ensure_future(runner.run(make("second", False)))
        await asyncio.sleep(0.01)
        assert "second-apply" not in log
        assert runner.locks.is_busy("t1")

        gate.set()
        await asyncio.gather(first, second)
        assert log == [
            "first-apply", "first-commit-start", "first-commit-end",
            "second-apply", "second-commit-start", "second-commit-end",
        ]
        assert not runner.locks.is_busy("t1")

    async def test_different_entities_run_concurrently(self):
        locks = EntityLocks()
        async with locks.hold("a"):
            async with locks.hold("b"):
                assert locks.is_busy("a")
                assert locks.is_busy("b")
        assert not locks.is_busy("a")
