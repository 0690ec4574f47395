"""Layered call configuration.

Options are merged left to right from three layers: built-in defaults, the
endpoint-level configuration set with ``configure()``, and the per-call
configuration passed to ``call()``. The merge is shallow: a later layer
overrides an earlier one key by key.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final

from signalrpc.error import RpcError

ALL: Final = "all"

DEFAULT_CONFIG: Final[Mapping[str, Any]] = {
    "debug": False,
    "timeout": 0,
    "to": ALL,
}


def merge_config(*layers: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge configuration layers into a fresh dict.

    Later layers override earlier ones key by key. ``None`` layers are
    skipped. Inputs are never mutated.
    """
    merged: dict[str, Any] = {}
    for layer in layers:
        if layer:
            merged.update(layer)
    return merged


@dataclass(frozen=True)
class RpcConfig:
    """Effective configuration of one call."""

    debug: bool = False
    timeout: float = 0
    to: str = ALL

    @classmethod
    def from_layers(cls, *layers: Mapping[str, Any] | None) -> RpcConfig:
        """Merge ``layers`` over the defaults and validate the result.

        Raises:
            RpcError: INVALID_CONFIG if a key is unknown or a value has the
                wrong type.
        """
        merged = merge_config(DEFAULT_CONFIG, *layers)
        validate_config(merged)
        return cls(debug=merged["debug"], timeout=merged["timeout"], to=merged["to"])

    @property
    def broadcast(self) -> bool:
        """Whether calls go to the whole channel."""
        return self.to == ALL

    def wire(self) -> dict[str, Any]:
        """The part of the configuration that travels with a call."""
        return {"debug": self.debug, "timeout": self.timeout}


def validate_config(options: Mapping[str, Any]) -> None:
    """Check a (partial) configuration mapping.

    Raises:
        RpcError: INVALID_CONFIG on unknown keys or ill-typed values.
    """
    unknown = set(options) - set(DEFAULT_CONFIG)
    if unknown:
        msg = f"Unknown configuration keys: {', '.join(sorted(unknown))}"
        raise RpcError.invalid_config(msg)

    if "debug" in options and not isinstance(options["debug"], bool):
        msg = f"debug must be a bool, got {options['debug']!r}"
        raise RpcError.invalid_config(msg)

    if "timeout" in options:
        timeout = options["timeout"]
        if isinstance(timeout, bool) or not isinstance(timeout, int | float):
            msg = f"timeout must be a number of seconds, got {timeout!r}"
            raise RpcError.invalid_config(msg)
        if timeout < 0:
            msg = f"timeout must not be negative, got {timeout!r}"
            raise RpcError.invalid_config(msg)

    if "to" in options and not isinstance(options["to"], str):
        msg = f"to must be a connection id or {ALL!r}, got {options['to']!r}"
        raise RpcError.invalid_config(msg)
