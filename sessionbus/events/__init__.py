"""
Event registry module.

Provides keyed and anonymous publish/subscribe registries for decoupled
communication between components, plus scope helpers that own them.
"""

from sessionbus.events.registry import (
    Handler,
    HandlerFailure,
    HandlerSet,
    KeyedRegistry,
    PublishReport,
    Registration,
)
from sessionbus.events.scope import RegistrationGroup, RegistryScope

__all__ = [
    "Handler",
    "HandlerFailure",
    "HandlerSet",
    "KeyedRegistry",
    "PublishReport",
    "Registration",
    "RegistrationGroup",
    "RegistryScope",
]
