"""The signaling channel an endpoint talks through.

A channel joins a peer group. It can broadcast or unicast an opaque text
payload, and it delivers every signal of a subscribed type to its handlers,
including the signals this peer broadcast itself.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol


class SignalError(Exception):
    """Raised when a channel cannot send a signal."""


@dataclass(frozen=True)
class SignalEvent:
    """An inbound signal."""

    type: str
    from_id: str
    data: str


SignalHandler = Callable[[SignalEvent], None]


class SignalChannel(Protocol):
    """Protocol for signaling channels."""

    @property
    def connection_id(self) -> str:
        """This peer's identity on the channel."""
        ...

    async def signal(self, data: str, *, to: str | None = None, type: str) -> None:
        """Send ``data`` to peer ``to``, or to every peer if ``to`` is None.

        Raises:
            SignalError: If the signal could not be sent
        """
        ...

    def on_signal(self, type: str, handler: SignalHandler) -> None:
        """Call ``handler`` for every inbound signal of ``type``."""
        ...

    def off_signal(self, type: str, handler: SignalHandler) -> None:
        """Stop calling ``handler`` for signals of ``type``."""
        ...


class HandlerTable:
    """Per-type signal handler bookkeeping shared by channel implementations."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[SignalHandler]] = {}

    def add(self, type: str, handler: SignalHandler) -> None:
        self._handlers.setdefault(type, []).append(handler)

    def remove(self, type: str, handler: SignalHandler) -> None:
        handlers = self._handlers.get(type, [])
        if handler in handlers:
            handlers.remove(handler)

    def dispatch(self, event: SignalEvent) -> None:
        """Run the handlers for ``event.type``; their exceptions propagate."""
        for handler in list(self._handlers.get(event.type, [])):
            handler(event)

    def clear(self) -> None:
        self._handlers.clear()
