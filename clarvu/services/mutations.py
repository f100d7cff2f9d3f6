"""Optimistic mutations with compensating rollback.

A mutation bundles four steps: ``apply`` changes local state right away,
``commit`` performs the server action, ``reconcile`` merges the
authoritative result, and ``compensate`` undoes ``apply`` when the commit
fails. Mutations on the same entity are serialised through ``EntityLocks``.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional

from events import event_bus, AppEvent
from models.entities import ActionResult

logger = logging.getLogger(__name__)


def _noop(*_args) -> None:
    return None


class EntityLocks:
    """One asyncio.Lock per entity id, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def is_busy(self, key: str) -> bool:
        return key in self._locks


@dataclass
class OptimisticMutation:
    name: str
    entity_id: str
    commit: Callable[[], Awaitable[ActionResult]]
    apply: Callable[[], None] = _noop
    compensate: Callable[[], None] = _noop
    reconcile: Callable[[ActionResult], None] = _noop


class MutationRunner:
    """Runs optimistic mutations, one at a time per entity."""

    def __init__(self, locks: Optional[EntityLocks] = None) -> None:
        self.locks = locks or EntityLocks()

    async def run(self, mutation: OptimisticMutation) -> ActionResult:
        async with self.locks.hold(mutation.entity_id):
            mutation.apply()
            try:
                result = await mutation.commit()
            except BaseException:
                # Also covers cancellation: the preview must not outlive the commit.
                mutation.compensate()
                raise
            if result.success:
                mutation.reconcile(result)
            else:
                mutation.compensate()
                logger.info(f"Rolled back {mutation.name} on {mutation.entity_id}: {result.error}")
                event_bus.emit(AppEvent.MUTATION_ROLLED_BACK, {
                    "mutation": mutation.name,
                    "entity_id": mutation.entity_id,
                    "error": result.error,
                })
            return result
