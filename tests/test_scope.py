from dataclasses import dataclass

import pytest

from sessionbus import (
    ConfigError,
    DeliveryPolicy,
    HandlerSet,
    KeyedRegistry,
    RegistrationGroup,
    RegistryConfig,
    RegistryScope,
    ScopeClosedError,
)


@dataclass(frozen=True)
class CartChanged:
    items: int


@dataclass(frozen=True)
class UserLoggedOut:
    user: str


def test_scope_returns_one_registry_per_payload_type():
    scope = RegistryScope("session-1")

    keyed = scope.keyed(CartChanged)
    assert isinstance(keyed, KeyedRegistry)
    assert scope.keyed(CartChanged) is keyed
    assert scope.keyed(UserLoggedOut) is not keyed
    assert isinstance(scope.handlers(CartChanged), HandlerSet)
    assert scope.handlers(CartChanged) is not keyed

    assert keyed.name == "session-1.CartChanged"
    assert scope.handlers(CartChanged).name == "session-1.CartChanged[set]"


def test_scope_config_inherited_and_overridable():
    scope = RegistryScope("s", RegistryConfig(name="s", delivery_policy="collect"))

    assert scope.keyed(CartChanged).config.delivery_policy is DeliveryPolicy.COLLECT
    custom = scope.handlers(
        UserLoggedOut, RegistryConfig(delivery_policy=DeliveryPolicy.FAIL_FAST)
    )
    assert custom.config.delivery_policy is DeliveryPolicy.FAIL_FAST
    assert custom.name == "s.UserLoggedOut[set]"


def test_scope_close_disposes_registries(recorder):
    scope = RegistryScope("s")
    badge = recorder()
    handle = scope.keyed(CartChanged).register("badge", badge)
    scope.handlers(CartChanged).register(recorder())

    registry = scope.keyed(CartChanged)
    assert scope.close() == 2
    assert scope.close() == 0
    assert scope.closed

    registry.publish(CartChanged(items=1))
    assert badge.calls == []
    assert handle.cancel() is False

    with pytest.raises(ScopeClosedError):
        scope.keyed(CartChanged)


def test_scope_context_manager_and_stats(recorder):
    with RegistryScope("ctx") as scope:
        scope.keyed(CartChanged).register("a", recorder())
        scope.keyed(CartChanged).publish(CartChanged(items=2))
        stats = scope.get_stats()

    assert stats["ctx.CartChanged"]["deliveries"] == 1
    assert scope.closed


def test_registration_group_cancels_everything(recorder):
    scope = RegistryScope("s")
    keyed = scope.keyed(CartChanged)
    handlers = scope.handlers(CartChanged)
    a, b = recorder("a"), recorder("b")

    with RegistrationGroup("panel") as group:
        group.register_keyed(keyed, "badge", a)
        group.register_handler(handlers, b)
        assert len(group) == 2
        keyed.publish(CartChanged(items=1))
        handlers.publish(CartChanged(items=1))

    assert len(group) == 0
    assert len(keyed) == 0
    assert len(handlers) == 0

    keyed.publish(CartChanged(items=2))
    assert a.calls == [CartChanged(items=1)]
    assert b.calls == [CartChanged(items=1)]


def test_registration_group_counts_only_live_removals(recorder):
    keyed = KeyedRegistry()
    group = RegistrationGroup()
    handle = group.add(keyed.register("k", recorder()))
    group.register_keyed(keyed, "other", recorder())
    handle.cancel()

    assert group.cancel_all() == 1
    assert group.cancel_all() == 0


def test_conflicting_config_for_existing_registry_rejected():
    scope = RegistryScope("s")
    scope.keyed(CartChanged, RegistryConfig(delivery_policy="collect"))

    assert scope.keyed(CartChanged, RegistryConfig(delivery_policy="collect")) is scope.keyed(CartChanged)
    with pytest.raises(ConfigError):
        scope.keyed(CartChanged, RegistryConfig(delivery_policy="fail_fast"))
