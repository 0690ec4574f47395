"""Implementation resolution for inbound calls.

``expose()`` accepts three shapes of target, each turned into the same
``(name, args) -> implementation | None`` resolver when it is registered:

- an object with a ``get_implementation(name, args)`` method;
- a plain callable ``(name, args) -> implementation | None``;
- a mapping from procedure name to callable.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Protocol, runtime_checkable

from signalrpc.error import RpcError

Resolver = Callable[[str, list[Any]], Callable[..., Any] | None]

EXPOSE_ERROR = (
    "expose() must be passed a callable, an object with get_implementation(), "
    "or a mapping of callables"
)


@runtime_checkable
class HasImplementations(Protocol):
    """Anything that can look up implementations by procedure name."""

    def get_implementation(
        self, name: str, args: list[Any]
    ) -> Callable[..., Any] | None: ...


class ImplementationProvider:
    """Base class for objects whose public methods are remotely callable.

    Example:
        class Calculator(ImplementationProvider):
            def add(self, a: int, b: int) -> int:
                return a + b

            async def slow_add(self, a: int, b: int) -> int:
                await asyncio.sleep(1)
                return a + b

            def _helper(self):  # Not callable remotely
                pass

        endpoint.expose(Calculator())

    Override ``get_implementation`` for custom dispatch.
    """

    def get_implementation(
        self, name: str, args: list[Any]
    ) -> Callable[..., Any] | None:
        """Return the public method called ``name``, if any."""
        if name.startswith("_") or name == "get_implementation":
            return None

        method = getattr(self, name, None)
        if not callable(method):
            return None
        return method


class TargetKind(Enum):
    """Shape of the object given to ``expose()``."""

    PROVIDER = auto()
    FUNCTION = auto()
    MAPPING = auto()


@dataclass(frozen=True)
class ExposedTarget:
    """An exposed target resolved to its canonical lookup function."""

    kind: TargetKind
    resolve: Resolver

    def __call__(self, name: str, args: list[Any]) -> Callable[..., Any] | None:
        return self.resolve(name, args)


def build_resolver(target: Any) -> ExposedTarget:
    """Classify ``target`` once and return its resolver.

    Raises:
        RpcError: INVALID_EXPOSE_TARGET for any other shape.
    """
    match target:
        case type() if hasattr(target, "get_implementation"):
            msg = f"{EXPOSE_ERROR}; got the class {target.__name__}, expose an instance"
            raise RpcError.invalid_expose_target(msg, target.__name__)
        case HasImplementations() if callable(target.get_implementation):
            return ExposedTarget(TargetKind.PROVIDER, target.get_implementation)
        case Mapping():
            return ExposedTarget(TargetKind.MAPPING, _mapping_resolver(target))
        case _ if callable(target):
            return ExposedTarget(TargetKind.FUNCTION, target)
        case _:
            raise RpcError.invalid_expose_target(EXPOSE_ERROR, type(target).__name__)


def _mapping_resolver(implementations: Mapping[str, Any]) -> Resolver:
    def resolve(name: str, args: list[Any]) -> Callable[..., Any] | None:
        return implementations.get(name)

    return resolve


async def invoke(implementation: Callable[..., Any], args: list[Any]) -> Any:
    """Run ``implementation`` with ``args`` and return its settled value.

    Synchronous return values come back as they are; awaitables are awaited,
    so callers cannot tell the two kinds of implementation apart. Exceptions,
    raised directly or by the awaitable, propagate.
    """
    result = implementation(*args)
    if inspect.isawaitable(result):
        return await result
    return result
