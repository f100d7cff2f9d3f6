"""Headless bootstrap for Clarvu services.

Wires the database, the local state and the services together without any
UI, suitable for scripts, embedding and testing.

Usage:
    from core import bootstrap, shutdown
    from api import ClarvuAPI

    svc = await bootstrap(db_path=Path("clarvu.db"))
    api = ClarvuAPI()  # resolves the container registered by bootstrap()
    await api.sign_in("user-1")
    await api.quick_add("Write report")
    await shutdown(svc)
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from clock import SystemClock, system_clock
from config import LOG_LEVEL
from database import db, configure_db_path
from models.state import AppState
from registry import registry, Services
from services.auto_start import AutoStartChecker
from services.calendar_service import CalendarService
from services.category_service import CategoryService
from services.logic import TaskService
from services.notification_service import NotificationService, Notifier
from services.settings_service import SettingsService
from services.timer import TimerService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Container holding all initialized services for headless use."""
    state: AppState
    task: TaskService
    category: CategoryService
    calendar: CalendarService
    settings: SettingsService
    timer: TimerService
    notifications: NotificationService
    auto_start: AutoStartChecker
    clock: SystemClock


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging from CLARVU_LOG_LEVEL (or ``level``)."""
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def bootstrap(
    db_path: Optional[Path] = None,
    clock: SystemClock = system_clock,
    notifier: Optional[Notifier] = None,
) -> ServiceContainer:
    """Initialize the service layer.

    Args:
        db_path: Custom database path. Uses CLARVU_DB_PATH / "clarvu.db" if None.
        clock: Clock used for timestamps and the timer loop.
        notifier: Replacement for plyer's ``notification.notify``.

    Returns:
        ServiceContainer with all services ready to use (no user signed in).
    """
    if db_path is not None:
        configure_db_path(db_path)

    await db.init_db()

    state = AppState()
    task_service = TaskService(state, clock)
    category_service = CategoryService(state, clock)
    calendar_service = CalendarService(state, clock)
    settings_service = SettingsService(state)
    timer_service = TimerService(clock)
    notification_service = NotificationService(notifier)
    auto_start = AutoStartChecker()

    container = ServiceContainer(
        state=state,
        task=task_service,
        category=category_service,
        calendar=calendar_service,
        settings=settings_service,
        timer=timer_service,
        notifications=notification_service,
        auto_start=auto_start,
        clock=clock,
    )
    registry.register(Services.STATE, state)
    registry.register(Services.CONTAINER, container)
    logger.info("Services bootstrapped")
    return container


async def shutdown(services: Optional[ServiceContainer] = None) -> None:
    """Stop the timer loop and close the database connection."""
    if services is not None:
        await services.timer.shutdown()
    registry.clear()
    await db.close()
