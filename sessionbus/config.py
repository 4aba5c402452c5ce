"""
Registry configuration.

A ``RegistryConfig`` fixes the observable delivery and cancellation
behaviour of a registry. It can be built directly, from environment
variables, or from a JSON/YAML file.

Example:
    config = RegistryConfig(delivery_policy="collect")
    registry = KeyedRegistry(config=config)

    # Or from the environment
    # SESSIONBUS_DELIVERY_POLICY=fail_fast
    config = RegistryConfig.from_env()
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

import yaml

from sessionbus.errors import ConfigError

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")


class DeliveryPolicy(Enum):
    """
    What a publish does when a handler raises.

    - ISOLATE: log the fault, keep delivering, report it in the result
    - COLLECT: keep delivering, then raise DeliveryError with every fault
    - FAIL_FAST: raise DeliveryError on the first fault, skip the rest
    """

    ISOLATE = "isolate"
    COLLECT = "collect"
    FAIL_FAST = "fail_fast"


class CancelPolicy(Enum):
    """
    What cancelling a keyed registration removes.

    - BY_KEY: whatever handler currently occupies the key, even if a
      later register call replaced the one this handle created
    - BY_HANDLE: only the entry this handle created; a no-op once the
      key has been overwritten
    """

    BY_KEY = "by_key"
    BY_HANDLE = "by_handle"


def _coerce_enum(enum_cls: type[Enum], value: Any, field_name: str) -> Enum:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            pass
    choices = ", ".join(member.value for member in enum_cls)
    raise ConfigError(f"{field_name} must be one of: {choices} (got {value!r})")


def _parse_bool(value: str, field_name: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigError(f"{field_name} must be a boolean (got {value!r})")


@dataclass
class RegistryConfig:
    """
    Configuration for registry behaviour.

    Args:
        name: Label used in log events and error messages
        delivery_policy: Handler fault policy applied on every publish
        cancel_policy: Keyed cancellation semantics (ignored by HandlerSet)
        log_deliveries: Emit a debug log event for every handler call
    """

    name: str = "registry"
    delivery_policy: DeliveryPolicy = DeliveryPolicy.ISOLATE
    cancel_policy: CancelPolicy = CancelPolicy.BY_KEY
    log_deliveries: bool = False

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise ConfigError("name must be a non-empty string")
        self.delivery_policy = _coerce_enum(
            DeliveryPolicy, self.delivery_policy, "delivery_policy"
        )
        self.cancel_policy = _coerce_enum(
            CancelPolicy, self.cancel_policy, "cancel_policy"
        )
        if not isinstance(self.log_deliveries, bool):
            raise ConfigError("log_deliveries must be a boolean")

    def with_name(self, name: str) -> RegistryConfig:
        """Return a copy of this config carrying a different name."""
        return RegistryConfig(
            name=name,
            delivery_policy=self.delivery_policy,
            cancel_policy=self.cancel_policy,
            log_deliveries=self.log_deliveries,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = asdict(self)
        data["delivery_policy"] = self.delivery_policy.value
        data["cancel_policy"] = self.cancel_policy.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RegistryConfig:
        """Create from dictionary, ignoring unknown keys."""
        known = {"name", "delivery_policy", "cancel_policy", "log_deliveries"}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_env(
        cls,
        prefix: str = "SESSIONBUS_",
        environ: Mapping[str, str] | None = None,
    ) -> RegistryConfig:
        """
        Build a config from environment variables.

        Reads ``<prefix>NAME``, ``<prefix>DELIVERY_POLICY``,
        ``<prefix>CANCEL_POLICY`` and ``<prefix>LOG_DELIVERIES``.
        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        if f"{prefix}NAME" in env:
            values["name"] = env[f"{prefix}NAME"]
        if f"{prefix}DELIVERY_POLICY" in env:
            values["delivery_policy"] = env[f"{prefix}DELIVERY_POLICY"]
        if f"{prefix}CANCEL_POLICY" in env:
            values["cancel_policy"] = env[f"{prefix}CANCEL_POLICY"]
        if f"{prefix}LOG_DELIVERIES" in env:
            values["log_deliveries"] = _parse_bool(
                env[f"{prefix}LOG_DELIVERIES"], "log_deliveries"
            )

        return cls(**values)

    @classmethod
    def from_file(cls, config_path: Path) -> RegistryConfig:
        """
        Read a configuration file (JSON or YAML).

        Args:
            config_path: Path to config file

        Returns:
            RegistryConfig built from the file, defaults if it is missing
        """
        config_path = Path(config_path)
        if not config_path.exists():
            return cls()

        content = config_path.read_text(encoding="utf-8")

        if config_path.suffix == ".json":
            data = json.loads(content)
        elif config_path.suffix in (".yml", ".yaml"):
            data = yaml.safe_load(content) or {}
        else:
            raise ConfigError(f"Unsupported config format: {config_path.suffix}")

        if not isinstance(data, dict):
            raise ConfigError(f"Config file must hold a mapping: {config_path}")
        return cls.from_dict(data)
