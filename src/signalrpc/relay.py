"""WebSocket signaling relay.

A minimal signaling service for peers that are not in the same process. Each
WebSocket connection is one peer; the relay assigns it a connection id, fans
broadcast signals out to every peer (the sender included) and forwards
unicast signals to their target. Every signal is acknowledged to its sender,
carrying an error message when it could not be routed.

Frames (JSON text):
    relay -> peer  {"kind": "connected", "connectionId": str}
    peer  -> relay {"kind": "signal", "seq": int, "type": str, "to"?: str, "data": str}
    relay -> peer  {"kind": "ack", "seq": int, "error"?: str}
    relay -> peer  {"kind": "signal", "type": str, "from": str, "data": str}
"""

from __future__ import annotations

import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Self

import aiohttp
from aiohttp import web

from signalrpc.channel import SignalError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelayConfig:
    """Configuration for the signaling relay."""

    host: str = "127.0.0.1"
    port: int = 0  # 0 picks a free port
    path: str = "/signal"
    max_payload_size: int | None = None
    heartbeat: float | None = None  # WebSocket ping interval in seconds


class SignalRelay:
    """Relays signals between WebSocket peers."""

    def __init__(self, config: RelayConfig | None = None) -> None:
        self.config = config or RelayConfig()
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._peers: dict[str, web.WebSocketResponse] = {}
        self._ids = itertools.count(1)

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        """Async context manager exit."""
        await self.stop()

    @property
    def port(self) -> int:
        """The port the relay is listening on."""
        if self._runner is None or not self._runner.addresses:
            msg = "Relay not started"
            raise RuntimeError(msg)
        return self._runner.addresses[0][1]

    @property
    def url(self) -> str:
        """WebSocket URL peers connect to."""
        return f"ws://{self.config.host}:{self.port}{self.config.path}"

    @property
    def connection_ids(self) -> list[str]:
        return list(self._peers)

    async def start(self) -> None:
        """Start the relay."""
        self._app = web.Application()
        self._app.router.add_get(self.config.path, self._handle_websocket)

        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await self._site.start()

        logger.info("Signal relay listening on %s", self.url)

    async def stop(self) -> None:
        """Stop the relay and disconnect every peer."""
        for ws in list(self._peers.values()):
            await ws.close()
        self._peers.clear()

        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
            self._app = None

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=self.config.heartbeat)
        await ws.prepare(request)

        connection_id = f"connection-{next(self._ids)}"
        self._peers[connection_id] = ws
        logger.debug("Peer %s connected", connection_id)

        try:
            await ws.send_json({"kind": "connected", "connectionId": connection_id})

            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._handle_frame(connection_id, ws, msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error("WebSocket error: %s", ws.exception())
                    break
        finally:
            self._peers.pop(connection_id, None)
            logger.debug("Peer %s disconnected", connection_id)

        return ws

    async def _handle_frame(
        self, sender: str, ws: web.WebSocketResponse, text: str
    ) -> None:
        try:
            frame = json.loads(text)
        except ValueError:
            logger.warning("Dropping non-JSON frame from %s", sender)
            return

        if not isinstance(frame, dict) or frame.get("kind") != "signal":
            logger.warning("Dropping unexpected frame from %s: %.200s", sender, text)
            return

        seq = frame.get("seq")
        try:
            await self._route(sender, frame)
        except SignalError as e:
            await ws.send_json({"kind": "ack", "seq": seq, "error": str(e)})
            return
        await ws.send_json({"kind": "ack", "seq": seq})

    async def _route(self, sender: str, frame: dict[str, Any]) -> None:
        data = frame.get("data")
        signal_type = frame.get("type")
        to = frame.get("to")

        if not isinstance(data, str) or not isinstance(signal_type, str):
            msg = "Signal frame needs string type and data"
            raise SignalError(msg)

        limit = self.config.max_payload_size
        if limit is not None and len(data) > limit:
            msg = f"Signal payload of {len(data)} characters exceeds limit of {limit}"
            raise SignalError(msg)

        if to is None:
            targets = list(self._peers.values())
        elif to in self._peers:
            targets = [self._peers[to]]
        else:
            msg = f"Unknown connection {to}"
            raise SignalError(msg)

        out = {"kind": "signal", "type": signal_type, "from": sender, "data": data}
        for peer in targets:
            if peer.closed:
                continue
            try:
                await peer.send_json(out)
            except ConnectionError as e:
                # The peer is going away; others still get the signal
                logger.debug("Could not deliver signal from %s: %s", sender, e)
