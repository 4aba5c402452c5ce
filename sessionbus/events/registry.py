"""
Handler registries for in-process publish/subscribe.

Provides:
- KeyedRegistry: handlers stored under caller-supplied keys (last write wins)
- HandlerSet: handlers stored by value with set semantics
- Registration handles whose only job is cancel()
- Configurable handler fault policy (isolate, collect, fail fast)
- Sync and async publishing

Both registries are safe to use from several threads at once. A publish
takes a snapshot of the live handlers under the registry lock and calls
them outside it, so handlers may register, cancel or publish on the same
registry while they run. Delivery order is unspecified.

HandlerSet keys entries by handler value, so handlers are normally
hashable. A callable that defines __eq__ without __hash__ is still
accepted and is then tracked by object identity instead.

Example:
    registry: KeyedRegistry[str, ProductUpdated] = KeyedRegistry()

    handle = registry.register("grid", lambda event: grid.refresh(event))
    registry.publish(ProductUpdated(product_id=42))
    handle.cancel()
"""

from __future__ import annotations

import inspect
import threading
import weakref
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from sessionbus.config import CancelPolicy, DeliveryPolicy, RegistryConfig
from sessionbus.errors import DeliveryError
from sessionbus.logging_config import get_logger

# =============================================================================
# Types
# =============================================================================

P = TypeVar("P")
K = TypeVar("K", bound=Hashable)

# Handler type: can be sync or async function taking one payload
Handler = Callable[[P], Any]

def handler_name(handler: Callable[..., Any]) -> str:
    """Best-effort readable name for a handler, used in logs and errors."""
    name = getattr(handler, "__qualname__", None) or getattr(handler, "__name__", None)
    if name:
        return name
    func = getattr(handler, "func", None)
    if func is not None:
        return f"partial({handler_name(func)})"
    return repr(handler)


@dataclass(eq=False)
class _Entry:
    """One stored handler. Compared by identity."""

    handler: Callable[[Any], Any]
    once: bool = False
    is_async: bool = False
    cancelled: bool = False


class _ByIdentity:
    """Set key for an unhashable handler: hashes and compares by identity."""

    __slots__ = ("handler",)

    def __init__(self, handler: Callable[[Any], Any]):
        self.handler = handler

    def __hash__(self) -> int:
        return id(self.handler)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, _ByIdentity) and other.handler is self.handler

    def __repr__(self) -> str:
        return repr(self.handler)


def _handler_key(handler: Callable[[Any], Any]) -> Hashable:
    try:
        hash(handler)
    except TypeError:
        return _ByIdentity(handler)
    return handler


@dataclass
class _Snapshot:
    """Entries seen by one publish and the one-shot entries it claimed."""

    generation: int
    items: list[tuple[Any, _Entry]]
    claimed: set[_Entry]


@dataclass(frozen=True)
class HandlerFailure:
    """
    A handler that raised while a payload was being delivered.

    Attributes:
        identity: Key (KeyedRegistry) or handler (HandlerSet) of the entry
        handler: The handler that failed
        error: The exception it raised
    """

    identity: Any
    handler: Callable[[Any], Any]
    error: Exception

    @property
    def handler_name(self) -> str:
        return handler_name(self.handler)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "identity": repr(self.identity),
            "handler": self.handler_name,
            "error_type": type(self.error).__name__,
            "error": str(self.error),
        }


@dataclass
class PublishReport:
    """Outcome of one publish call."""

    registry: str
    delivered: int = 0
    failures: list[HandlerFailure] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        """Handlers that were called (or rejected) for this payload."""
        return self.delivered + len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "registry": self.registry,
            "delivered": self.delivered,
            "attempted": self.attempted,
            "failures": [failure.to_dict() for failure in self.failures],
        }


# =============================================================================
# Registration Handle
# =============================================================================


class Registration:
    """
    Handle returned by ``register``. Its only operation is ``cancel``.

    The handle holds its registry weakly, so keeping handles around does
    not keep a discarded registry alive. Cancelling is idempotent and
    never raises: a second call, a call after the registry was disposed,
    or a call after it was garbage collected all do nothing.

    Can be used as a context manager; leaving the block cancels it.
    """

    def __init__(
        self,
        registry: _Registry[Any],
        identity: Any,
        entry: _Entry,
        generation: int,
    ):
        self._registry_ref = weakref.ref(registry)
        self._identity = identity
        self._entry = entry
        self._generation = generation
        self._cancelled = False
        self._lock = threading.Lock()

    @property
    def identity(self) -> Any:
        """The key or handler this registration was made under."""
        return self._identity

    @property
    def handler(self) -> Callable[[Any], Any]:
        return self._entry.handler

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        """Whether the entry created by this call is still registered."""
        if self._cancelled:
            return False
        registry = self._registry_ref()
        if registry is None:
            return False
        return registry._holds(self)

    def cancel(self) -> bool:
        """
        Remove this registration.

        Returns:
            True if an entry was removed by this call
        """
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True

        registry = self._registry_ref()
        if registry is None:
            return False
        return registry._cancel(self)

    def __enter__(self) -> Registration:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cancel()

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "live"
        return f"<Registration {self._identity!r} {state}>"


# =============================================================================
# Base Registry
# =============================================================================


class _Registry(Generic[P]):
    """
    Shared storage, locking and delivery for both registry variants.

    Entries live in a dict from identity to ``_Entry``; subclasses decide
    what the identity is and what happens when it is already present.
    """

    def __init__(self, config: RegistryConfig | None = None):
        self.config = config or RegistryConfig()
        self._logger = get_logger(__name__, registry=self.config.name)

        self._entries: dict[Any, _Entry] = {}
        self._lock = threading.RLock()
        # Bumped by dispose() so older handles stop matching new entries
        self._generation = 0

        self._published = 0
        self._deliveries = 0
        self._failures = 0

    @property
    def name(self) -> str:
        return self.config.name

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def _add(
        self,
        identity: Any,
        handler: Callable[[P], Any],
        once: bool,
        replace: bool,
    ) -> Registration:
        entry = _Entry(
            handler=handler,
            once=once,
            is_async=inspect.iscoroutinefunction(handler),
        )

        with self._lock:
            current = self._entries.get(identity)
            if current is not None and not replace:
                entry = current
                event = "handler_already_registered"
            else:
                self._entries[identity] = entry
                event = "handler_replaced" if current is not None else "handler_registered"
            registration = Registration(self, identity, entry, self._generation)

        self._logger.debug(
            event,
            identity=repr(identity),
            handler=handler_name(handler),
            once=once,
        )
        return registration

    def _may_remove(self, current: _Entry, registration: Registration) -> bool:
        return True

    def _holds(self, registration: Registration) -> bool:
        with self._lock:
            if registration._generation != self._generation:
                return False
            return self._entries.get(registration.identity) is registration._entry

    def _cancel(self, registration: Registration) -> bool:
        with self._lock:
            if registration._generation != self._generation:
                return False
            # A one-shot entry claimed by an aborted publish must not come back
            registration._entry.cancelled = True
            current = self._entries.get(registration.identity)
            if current is None or not self._may_remove(current, registration):
                return False
            del self._entries[registration.identity]
            replaced = current is not registration._entry

        self._logger.debug(
            "registration_cancelled",
            identity=repr(registration.identity),
            removed_newer=replaced,
        )
        return True

    def _discard(self, identity: Any) -> bool:
        with self._lock:
            entry = self._entries.pop(identity, None)
            if entry is not None:
                entry.cancelled = True
        if entry is None:
            return False
        self._logger.debug("handler_unregistered", identity=repr(identity))
        return True

    def dispose(self) -> int:
        """
        Drop every registration.

        Outstanding handles become no-ops. The registry stays usable and
        simply starts out empty again.

        Returns:
            Number of registrations dropped
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._generation += 1

        self._logger.debug("registry_disposed", dropped=count)
        return count

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def _snapshot(self, claim_async: bool) -> _Snapshot:
        """Copy the live entries and claim the one-shot handlers that will run."""
        with self._lock:
            items = list(self._entries.items())
            claimed: set[_Entry] = set()
            for identity, entry in items:
                if entry.once and (claim_async or not entry.is_async):
                    del self._entries[identity]
                    claimed.add(entry)
            self._published += 1
            return _Snapshot(self._generation, items, claimed)

    def _restore(self, snapshot: _Snapshot, pending: list[tuple[Any, _Entry]]):
        """Put back claimed one-shot entries an aborted publish never reached."""
        restored = 0
        with self._lock:
            if snapshot.generation != self._generation:
                return
            for identity, entry in pending:
                if entry not in snapshot.claimed or entry.cancelled:
                    continue
                if identity in self._entries:
                    continue
                self._entries[identity] = entry
                restored += 1

        if restored:
            self._logger.debug("one_shot_handlers_restored", restored=restored)

    def publish(self, payload: P) -> PublishReport:
        """
        Deliver a payload to every handler registered right now.

        Coroutine handlers cannot run here and count as failures; use
        ``publish_async`` for registries that hold them. A one-shot
        coroutine handler is left registered for a later ``publish_async``.

        Args:
            payload: Event payload, passed to handlers as-is

        Returns:
            Delivery report

        Raises:
            DeliveryError: Under COLLECT or FAIL_FAST when a handler fails
        """
        snapshot = self._snapshot(claim_async=False)
        report = PublishReport(registry=self.name)
        position = 0

        try:
            for position, (identity, entry) in enumerate(snapshot.items):
                if entry.is_async:
                    self._record_failure(
                        report,
                        payload,
                        identity,
                        entry,
                        TypeError(
                            f"Coroutine handler {handler_name(entry.handler)} "
                            "requires publish_async"
                        ),
                    )
                    continue

                try:
                    result = entry.handler(payload)
                    if inspect.iscoroutine(result):
                        result.close()
                        raise TypeError(
                            f"Handler {handler_name(entry.handler)} returned a "
                            "coroutine; use publish_async"
                        )
                except Exception as e:
                    self._record_failure(report, payload, identity, entry, e)
                else:
                    self._record_delivery(report, identity, entry)
        except DeliveryError:
            self._restore(snapshot, snapshot.items[position + 1:])
            raise
        finally:
            self._account(report)

        self._finish(report, payload)
        return report

    async def publish_async(self, payload: P) -> PublishReport:
        """
        Deliver a payload, awaiting coroutine handlers.

        Plain handlers are called directly. Same snapshot and failure
        policy as ``publish``.
        """
        snapshot = self._snapshot(claim_async=True)
        report = PublishReport(registry=self.name)
        position = 0

        try:
            for position, (identity, entry) in enumerate(snapshot.items):
                try:
                    result = entry.handler(payload)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    self._record_failure(report, payload, identity, entry, e)
                else:
                    self._record_delivery(report, identity, entry)
        except DeliveryError:
            self._restore(snapshot, snapshot.items[position + 1:])
            raise
        finally:
            self._account(report)

        self._finish(report, payload)
        return report

    def _record_delivery(self, report: PublishReport, identity: Any, entry: _Entry):
        report.delivered += 1
        if self.config.log_deliveries:
            self._logger.debug(
                "event_delivered",
                identity=repr(identity),
                handler=handler_name(entry.handler),
            )

    def _record_failure(
        self,
        report: PublishReport,
        payload: P,
        identity: Any,
        entry: _Entry,
        error: Exception,
    ):
        failure = HandlerFailure(identity=identity, handler=entry.handler, error=error)
        report.failures.append(failure)

        self._logger.error(
            "event_handler_error",
            identity=repr(identity),
            handler=failure.handler_name,
            policy=self.config.delivery_policy.value,
            exc_info=error,
        )

        if self.config.delivery_policy is DeliveryPolicy.FAIL_FAST:
            raise DeliveryError(self.name, payload, [failure]) from error

    def _account(self, report: PublishReport):
        with self._lock:
            self._deliveries += report.delivered
            self._failures += len(report.failures)

    def _finish(self, report: PublishReport, payload: P):
        self._logger.debug(
            "event_published",
            delivered=report.delivered,
            failed=len(report.failures),
        )
        if report.failures and self.config.delivery_policy is DeliveryPolicy.COLLECT:
            raise DeliveryError(self.name, payload, report.failures)

    # -------------------------------------------------------------------------
    # Stats
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Get registry statistics."""
        with self._lock:
            return {
                "name": self.name,
                "registrations": len(self._entries),
                "published": self._published,
                "deliveries": self._deliveries,
                "failures": self._failures,
                "delivery_policy": self.config.delivery_policy.value,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, identity: object) -> bool:
        with self._lock:
            return identity in self._entries

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r} registrations={len(self)}>"


# =============================================================================
# Keyed Variant
# =============================================================================


class KeyedRegistry(_Registry[P], Generic[K, P]):
    """
    Registry mapping caller-supplied keys to handlers.

    Registering a key that is already present replaces its handler
    without warning (last write wins).

    Cancelling follows ``config.cancel_policy``. With the default
    ``BY_KEY`` a handle removes whatever handler currently sits under its
    key, so a stale handle can remove a newer registration made by
    someone else. ``BY_HANDLE`` only removes the entry the handle created.

    Example:
        registry = KeyedRegistry(RegistryConfig(name="orders"))

        handle = registry.register("summary", summary_panel.update)
        registry.publish(order)
        handle.cancel()
    """

    def register(
        self,
        key: K,
        handler: Callable[[P], Any],
        *,
        once: bool = False,
    ) -> Registration:
        """
        Register a handler under a key.

        Args:
            key: Hashable identity for this subscriber
            handler: Function called with each published payload
            once: Remove the handler after its first delivery

        Returns:
            Registration handle
        """
        return self._add(key, handler, once=once, replace=True)

    def subscribe(self, key: K, *, once: bool = False):
        """
        Decorator form of ``register``.

        Usage:
            @registry.subscribe("status-bar")
            def on_status(event):
                ...
        """

        def decorator(func: Callable[[P], Any]) -> Callable[[P], Any]:
            self.register(key, func, once=once)
            return func

        return decorator

    def unregister(self, key: K) -> bool:
        """Remove whatever handler is registered under a key."""
        return self._discard(key)

    def get(self, key: K) -> Callable[[P], Any] | None:
        """Handler currently registered under a key, if any."""
        with self._lock:
            entry = self._entries.get(key)
        return entry.handler if entry is not None else None

    def keys(self) -> list[K]:
        with self._lock:
            return list(self._entries.keys())

    def _may_remove(self, current: _Entry, registration: Registration) -> bool:
        if self.config.cancel_policy is CancelPolicy.BY_HANDLE:
            return current is registration._entry
        return True

    def get_stats(self) -> dict[str, Any]:
        stats = super().get_stats()
        stats["cancel_policy"] = self.config.cancel_policy.value
        return stats


# =============================================================================
# Anonymous Variant
# =============================================================================


class HandlerSet(_Registry[P]):
    """
    Registry whose entries are identified by the handler itself.

    Handlers are held with set semantics: registering a handler that is
    already present keeps the existing entry and returns a handle to it.
    Bound methods compare equal when they wrap the same function and
    instance, so ``obj.method`` registered twice is stored once.

    Cancelling a handle removes that handler value, which also covers any
    duplicate registrations of it.
    """

    def register(
        self,
        handler: Callable[[P], Any],
        *,
        once: bool = False,
    ) -> Registration:
        """
        Register a handler.

        Args:
            handler: Function called with each published payload. Hashable
                handlers are deduplicated by value; unhashable ones by identity
            once: Remove the handler after its first delivery

        Returns:
            Registration handle
        """
        return self._add(_handler_key(handler), handler, once=once, replace=False)

    def subscribe(self, func: Callable[[P], Any] | None = None, *, once: bool = False):
        """
        Decorator form of ``register``.

        Usage:
            @handlers.subscribe
            def on_change(event):
                ...

            @handlers.subscribe(once=True)
            def on_first_change(event):
                ...
        """

        def decorator(fn: Callable[[P], Any]) -> Callable[[P], Any]:
            self.register(fn, once=once)
            return fn

        if func is not None:
            return decorator(func)
        return decorator

    def unregister(self, handler: Callable[[P], Any]) -> bool:
        """Remove a handler by value."""
        return self._discard(_handler_key(handler))

    def __contains__(self, handler: object) -> bool:
        return super().__contains__(_handler_key(handler))

    def handlers(self) -> list[Callable[[P], Any]]:
        with self._lock:
            return [entry.handler for entry in self._entries.values()]
