"""
Ownership helpers for registries and registrations.

``RegistryScope`` is what a session (or the root of a component tree)
holds instead of reaching for a process-wide registry. It hands out one
registry per payload type and disposes all of them when the owner ends.

``RegistrationGroup`` is the component side: it collects the handles a
component creates so they can all be cancelled before the component goes
away.

Example:
    scope = RegistryScope("session-42")

    with RegistrationGroup() as group:
        group.register_keyed(scope.keyed(CartChanged), "badge", badge.update)
        group.register_handler(scope.handlers(CartChanged), totals.refresh)
        scope.keyed(CartChanged).publish(CartChanged(items=3))

    scope.close()
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any, TypeVar

from sessionbus.config import RegistryConfig
from sessionbus.errors import ConfigError, ScopeClosedError
from sessionbus.events.registry import HandlerSet, KeyedRegistry, Registration
from sessionbus.logging_config import get_logger

logger = get_logger(__name__)

P = TypeVar("P")


class RegistryScope:
    """
    Owner of the registries used by one session or component tree.

    Registries are created lazily, one per (variant, payload type), and
    named ``<scope>.<PayloadType>`` (keyed) or ``<scope>.<PayloadType>[set]``.
    All of them share the scope's config unless a config is passed on
    first request. Passing a different config once the registry exists
    raises ConfigError.
    """

    def __init__(self, name: str = "scope", config: RegistryConfig | None = None):
        self.name = name
        self.config = config or RegistryConfig(name=name)
        self._logger = get_logger(__name__, scope=name)
        self._registries: dict[tuple[str, type], KeyedRegistry | HandlerSet] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def keyed(
        self,
        payload_type: type[P],
        config: RegistryConfig | None = None,
    ) -> KeyedRegistry[Any, P]:
        """Get or create the keyed registry for a payload type."""
        return self._get_or_create("keyed", payload_type, config)

    def handlers(
        self,
        payload_type: type[P],
        config: RegistryConfig | None = None,
    ) -> HandlerSet[P]:
        """Get or create the anonymous handler set for a payload type."""
        return self._get_or_create("set", payload_type, config)

    def _get_or_create(self, variant: str, payload_type: type, config: RegistryConfig | None):
        with self._lock:
            if self._closed:
                raise ScopeClosedError(self.name)

            key = (variant, payload_type)
            registry = self._registries.get(key)
            if registry is None:
                suffix = "" if variant == "keyed" else "[set]"
                name = f"{self.name}.{payload_type.__name__}{suffix}"
                registry_config = (config or self.config).with_name(name)
                factory = KeyedRegistry if variant == "keyed" else HandlerSet
                registry = factory(registry_config)
                self._registries[key] = registry
                self._logger.debug("registry_created", registry=name)
            elif config is not None and config.with_name(registry.name) != registry.config:
                raise ConfigError(
                    f"Registry '{registry.name}' already exists with a different config"
                )
            return registry

    def registries(self) -> list[KeyedRegistry | HandlerSet]:
        with self._lock:
            return list(self._registries.values())

    def close(self) -> int:
        """
        Dispose every registry owned by this scope.

        Idempotent. Afterwards the scope refuses to hand out registries.

        Returns:
            Total registrations dropped
        """
        with self._lock:
            if self._closed:
                return 0
            self._closed = True
            registries = list(self._registries.values())
            self._registries.clear()

        dropped = sum(registry.dispose() for registry in registries)
        self._logger.info(
            "scope_closed",
            registries=len(registries),
            dropped=dropped,
        )
        return dropped

    def get_stats(self) -> dict[str, dict[str, Any]]:
        """Get statistics for every registry, keyed by registry name."""
        return {registry.name: registry.get_stats() for registry in self.registries()}

    def __enter__(self) -> RegistryScope:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class RegistrationGroup:
    """
    Collects registration handles so they can be cancelled together.

    A component creates one group, routes its register calls through it,
    and calls ``cancel_all`` (or leaves the ``with`` block) when it is
    destroyed.
    """

    def __init__(self, name: str = "group"):
        self.name = name
        self._handles: list[Registration] = []
        self._lock = threading.Lock()

    def add(self, registration: Registration) -> Registration:
        """Track an existing handle."""
        with self._lock:
            self._handles.append(registration)
        return registration

    def register_keyed(
        self,
        registry: KeyedRegistry[Any, P],
        key: Any,
        handler: Callable[[P], Any],
        *,
        once: bool = False,
    ) -> Registration:
        return self.add(registry.register(key, handler, once=once))

    def register_handler(
        self,
        registry: HandlerSet[P],
        handler: Callable[[P], Any],
        *,
        once: bool = False,
    ) -> Registration:
        return self.add(registry.register(handler, once=once))

    def cancel_all(self) -> int:
        """
        Cancel every tracked handle and forget them.

        Returns:
            Number of entries actually removed
        """
        with self._lock:
            handles = self._handles
            self._handles = []

        removed = sum(1 for handle in handles if handle.cancel())
        logger.debug(
            "registration_group_cancelled",
            group=self.name,
            handles=len(handles),
            removed=removed,
        )
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def __enter__(self) -> RegistrationGroup:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cancel_all()
