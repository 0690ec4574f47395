"""Signaling channel implementations.

This module provides concrete implementations of the SignalChannel protocol:
an in-process peer group for tests and single-process setups, and a WebSocket
client for peers connected through a ``SignalRelay``.

``LocalSignalHub`` is a peer group living inside one event loop. Each
``LocalSignalChannel`` joined to it is one peer. Delivery is scheduled with
``loop.call_soon``, so it never runs inside the sender's call stack, and a
broadcast reaches every peer, the sender included, just like a networked
signaling service.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from contextlib import suppress
from typing import Any, Self

import aiohttp

from signalrpc.channel import HandlerTable, SignalError, SignalEvent, SignalHandler

logger = logging.getLogger(__name__)


class LocalSignalHub:
    """A group of in-process peers that can signal each other."""

    def __init__(self, max_payload_size: int | None = None) -> None:
        """Initialize the hub.

        Args:
            max_payload_size: Largest payload, in characters, a peer may send
                (None for no limit)
        """
        self.max_payload_size = max_payload_size
        self._channels: dict[str, LocalSignalChannel] = {}
        self._ids = itertools.count(1)

    def connect(self, connection_id: str | None = None) -> LocalSignalChannel:
        """Join a new peer to the group.

        Args:
            connection_id: Identity to use (generated if omitted)

        Raises:
            ValueError: If the identity is already taken
        """
        if connection_id is None:
            connection_id = f"connection-{next(self._ids)}"
        if connection_id in self._channels:
            msg = f"Connection {connection_id} already exists"
            raise ValueError(msg)

        channel = LocalSignalChannel(self, connection_id)
        self._channels[connection_id] = channel
        return channel

    @property
    def connection_ids(self) -> list[str]:
        return list(self._channels)

    def _disconnect(self, connection_id: str) -> None:
        self._channels.pop(connection_id, None)

    def _route(self, sender: str, data: str, to: str | None, type: str) -> None:
        if self.max_payload_size is not None and len(data) > self.max_payload_size:
            msg = (
                f"Signal payload of {len(data)} characters exceeds "
                f"limit of {self.max_payload_size}"
            )
            raise SignalError(msg)

        if to is None:
            targets = list(self._channels.values())
        elif to in self._channels:
            targets = [self._channels[to]]
        else:
            msg = f"Unknown connection {to}"
            raise SignalError(msg)

        loop = asyncio.get_running_loop()
        event = SignalEvent(type, sender, data)
        for target in targets:
            loop.call_soon(target._deliver, event)


class LocalSignalChannel:
    """One peer's view of a ``LocalSignalHub``."""

    def __init__(self, hub: LocalSignalHub, connection_id: str) -> None:
        self._hub = hub
        self._connection_id = connection_id
        self._handlers = HandlerTable()
        self._closed = False

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def closed(self) -> bool:
        return self._closed

    async def signal(
        self, data: str, *, to: str | None = None, type: str = "rpc"
    ) -> None:
        """Send a signal to one peer or, with ``to=None``, to all of them.

        Raises:
            SignalError: If the channel is closed, the target is unknown or
                the payload is too large
        """
        if self._closed:
            msg = "Channel is closed"
            raise SignalError(msg)

        # Completion is reported after the current callbacks have run
        await asyncio.sleep(0)
        self._hub._route(self._connection_id, data, to, type)

    def on_signal(self, type: str, handler: SignalHandler) -> None:
        self._handlers.add(type, handler)

    def off_signal(self, type: str, handler: SignalHandler) -> None:
        self._handlers.remove(type, handler)

    async def close(self) -> None:
        """Leave the peer group."""
        if not self._closed:
            self._closed = True
            self._hub._disconnect(self._connection_id)
            self._handlers.clear()

    def _deliver(self, event: SignalEvent) -> None:
        if self._closed:
            logger.debug(
                "Dropping %s signal from %s to closed %s",
                event.type,
                event.from_id,
                self._connection_id,
            )
            return
        self._handlers.dispatch(event)


class WebSocketSignalChannel:
    """Signaling channel backed by a ``SignalRelay`` over WebSocket.

    The relay assigns the connection id when the socket opens. Every
    ``signal()`` waits for the relay's acknowledgement, so a failure the relay
    reports (unknown target, oversized payload) surfaces as ``SignalError``.
    """

    def __init__(self, url: str, ack_timeout: float = 10.0) -> None:
        """Initialize the channel.

        Args:
            url: The relay's WebSocket URL (e.g., "ws://localhost:8080/signal")
            ack_timeout: Seconds to wait for the relay to acknowledge a signal
        """
        self.url = url
        self.ack_timeout = ack_timeout
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._listener_task: asyncio.Task[None] | None = None
        self._connection_id: str | None = None
        self._handlers = HandlerTable()
        self._acks: dict[int, asyncio.Future[str | None]] = {}
        self._seq = itertools.count(1)

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, *args: object) -> None:
        """Async context manager exit."""
        await self.close()

    @property
    def connection_id(self) -> str:
        if self._connection_id is None:
            msg = "Channel not connected"
            raise RuntimeError(msg)
        return self._connection_id

    async def connect(self) -> None:
        """Open the WebSocket and wait for the relay to assign an identity.

        Raises:
            SignalError: If the relay does not greet the connection
        """
        self._session = aiohttp.ClientSession()
        self._ws = await self._session.ws_connect(self.url)

        hello = await self._ws.receive_json(timeout=self.ack_timeout)
        if hello.get("kind") != "connected" or "connectionId" not in hello:
            await self.close()
            msg = f"Unexpected greeting from relay: {hello!r}"
            raise SignalError(msg)

        self._connection_id = hello["connectionId"]
        self._listener_task = asyncio.create_task(self._listen())
        logger.debug("Connected to %s as %s", self.url, self._connection_id)

    async def signal(
        self, data: str, *, to: str | None = None, type: str = "rpc"
    ) -> None:
        """Send a signal through the relay and wait for its acknowledgement.

        Raises:
            SignalError: If not connected, the send fails, the relay rejects
                the signal or does not acknowledge it in time
        """
        if self._ws is None or self._ws.closed:
            msg = "WebSocket not connected"
            raise SignalError(msg)

        seq = next(self._seq)
        ack: asyncio.Future[str | None] = asyncio.get_running_loop().create_future()
        self._acks[seq] = ack

        frame: dict[str, Any] = {
            "kind": "signal",
            "seq": seq,
            "type": type,
            "data": data,
        }
        if to is not None:
            frame["to"] = to

        try:
            await self._ws.send_json(frame)
            error = await asyncio.wait_for(ack, timeout=self.ack_timeout)
        except (aiohttp.ClientError, ConnectionError) as e:
            msg = f"Failed to send signal: {e}"
            raise SignalError(msg) from e
        except TimeoutError:
            msg = f"Relay did not acknowledge signal {seq}"
            raise SignalError(msg) from None
        finally:
            self._acks.pop(seq, None)

        if error:
            raise SignalError(error)

    def on_signal(self, type: str, handler: SignalHandler) -> None:
        self._handlers.add(type, handler)

    def off_signal(self, type: str, handler: SignalHandler) -> None:
        self._handlers.remove(type, handler)

    async def close(self) -> None:
        """Close the WebSocket connection."""
        if self._listener_task and not self._listener_task.done():
            self._listener_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._listener_task
        self._listener_task = None

        if self._ws:
            await self._ws.close()
            self._ws = None
        if self._session:
            await self._session.close()
            self._session = None

    async def _listen(self) -> None:
        """Background task reading frames from the relay."""
        assert self._ws is not None
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        self._handle_frame(json.loads(msg.data))
                    except Exception:
                        # One bad frame does not stop the listener
                        logger.exception("Error handling frame from relay")
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error("WebSocket error: %s", self._ws.exception())
                    break
        finally:
            error = SignalError("Connection to relay closed")
            for ack in self._acks.values():
                if not ack.done():
                    ack.set_exception(error)

    def _handle_frame(self, frame: dict[str, Any]) -> None:
        match frame.get("kind"):
            case "ack":
                ack = self._acks.get(frame.get("seq"))  # type: ignore[arg-type]
                if ack is not None and not ack.done():
                    ack.set_result(frame.get("error"))
            case "signal":
                event = SignalEvent(frame["type"], frame["from"], frame["data"])
                self._handlers.dispatch(event)
            case kind:
                logger.warning("Ignoring relay frame of kind %r", kind)
