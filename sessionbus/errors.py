"""Exception hierarchy for sessionbus.

Registration and cancellation never raise; only delivery and
configuration problems surface as exceptions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sessionbus.events.registry import HandlerFailure


class SessionBusError(Exception):
    """Base class for all sessionbus errors."""


class ConfigError(SessionBusError, ValueError):
    """Raised when a registry configuration value is invalid."""


class DeliveryError(SessionBusError):
    """Raised when one or more handlers fail during a publish.

    Under ``FAIL_FAST`` the list holds the single failure that aborted
    delivery and the original exception is chained as ``__cause__``.
    Under ``COLLECT`` it holds every failure of the publish call.
    """

    def __init__(
        self,
        registry: str,
        payload: Any,
        failures: list[HandlerFailure],
        message: str | None = None,
    ):
        self.registry = registry
        self.payload = payload
        self.failures = list(failures)
        self.message = message or (
            f"{len(self.failures)} handler(s) failed in registry '{registry}'"
        )
        super().__init__(self.message)

    @property
    def exceptions(self) -> list[BaseException]:
        """Underlying handler exceptions, in the order they were raised."""
        return [failure.error for failure in self.failures]


class ScopeClosedError(SessionBusError):
    """Raised when a registry is requested from a scope that was closed."""

    def __init__(self, scope: str):
        self.scope = scope
        super().__init__(f"Registry scope '{scope}' is closed")
