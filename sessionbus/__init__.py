"""
sessionbus: in-process publish/subscribe registries.

This package contains:
- Keyed and anonymous handler registries (events)
- Scope ownership helpers for per-session registries
- Registry configuration and structured logging setup
"""

from sessionbus.config import CancelPolicy, DeliveryPolicy, RegistryConfig
from sessionbus.errors import (
    ConfigError,
    DeliveryError,
    ScopeClosedError,
    SessionBusError,
)
from sessionbus.events import (
    HandlerFailure,
    HandlerSet,
    KeyedRegistry,
    PublishReport,
    Registration,
    RegistrationGroup,
    RegistryScope,
)

__version__ = "0.1.0"

__all__ = [
    "CancelPolicy",
    "ConfigError",
    "DeliveryError",
    "DeliveryPolicy",
    "HandlerFailure",
    "HandlerSet",
    "KeyedRegistry",
    "PublishReport",
    "Registration",
    "RegistrationGroup",
    "RegistryConfig",
    "RegistryScope",
    "ScopeClosedError",
    "SessionBusError",
]
