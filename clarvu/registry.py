"""
Central service registry.

Gives modules a lookup point for objects created by ``core.bootstrap()``
without importing ``core``, which would otherwise create circular imports
between the services and the bootstrap code.

Usage:
    from registry import registry, Services

    svc = registry.require(Services.CONTAINER)
    state = registry.get(Services.STATE)  # None before bootstrap
"""
import threading
from typing import Optional, Dict, Any


class ServiceRegistry:
    """Thread-safe name -> service registry (process-wide singleton)."""
    _instance: Optional["ServiceRegistry"] = None
    _instance_lock = threading.Lock()

    def __new__(cls) -> "ServiceRegistry":
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._services: Dict[str, Any] = {}
                    cls._instance._lock = threading.Lock()
        return cls._instance

    def register(self, name: str, service: Any) -> None:
        with self._lock:
            self._services[name] = service

    def get(self, name: str) -> Optional[Any]:
        """Return the service registered under ``name``, or None."""
        with self._lock:
            return self._services.get(name)

    def require(self, name: str) -> Any:
        """Return the service registered under ``name``.

        Raises:
            KeyError: If the service is not registered
        """
        with self._lock:
            if name not in self._services:
                raise KeyError(f"Service '{name}' not registered. "
                               f"Call core.bootstrap() before using it.")
            return self._services[name]

    def is_registered(self, name: str) -> bool:
        with self._lock:
            return name in self._services

    def clear(self) -> None:
        """Clear all registered services. Used primarily for testing."""
        with self._lock:
            self._services.clear()


registry = ServiceRegistry()


class Services:
    """Service name constants for registry access."""
    STATE = "state"
    CONTAINER = "container"
