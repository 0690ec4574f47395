"""Tests for RPC through the WebSocket signaling relay."""

import asyncio
from collections.abc import AsyncIterator

import pytest

from signalrpc.channel import SignalError, SignalEvent
from signalrpc.endpoint import RpcEndpoint, is_timeout
from signalrpc.error import ErrorCode, RpcError
from signalrpc.relay import RelayConfig, SignalRelay
from signalrpc.transports import WebSocketSignalChannel


@pytest.fixture
async def relay() -> AsyncIterator[SignalRelay]:
    async with SignalRelay(RelayConfig(max_payload_size=4096)) as running:
        yield running


@pytest.fixture
async def alice_channel(relay: SignalRelay) -> AsyncIterator[WebSocketSignalChannel]:
    async with WebSocketSignalChannel(relay.url) as channel:
        yield channel


@pytest.fixture
async def bob_channel(relay: SignalRelay) -> AsyncIterator[WebSocketSignalChannel]:
    async with WebSocketSignalChannel(relay.url) as channel:
        yield channel


class TestRelay:
    """Tests for the relay itself."""

    @pytest.mark.asyncio
    async def test_assigns_connection_ids(
        self,
        relay: SignalRelay,
        alice_channel: WebSocketSignalChannel,
        bob_channel: WebSocketSignalChannel,
    ) -> None:
        assert alice_channel.connection_id != bob_channel.connection_id
        assert set(relay.connection_ids) == {
            alice_channel.connection_id,
            bob_channel.connection_id,
        }

    @pytest.mark.asyncio
    async def test_broadcast_reaches_every_peer(
        self, alice_channel: WebSocketSignalChannel, bob_channel: WebSocketSignalChannel
    ) -> None:
        received: dict[str, asyncio.Future[SignalEvent]] = {}
        loop = asyncio.get_running_loop()
        for channel in (alice_channel, bob_channel):
            future: asyncio.Future[SignalEvent] = loop.create_future()
            received[channel.connection_id] = future
            channel.on_signal("chat", lambda event, f=future: f.done() or f.set_result(event))

        await alice_channel.signal("hi", type="chat")

        events = await asyncio.wait_for(asyncio.gather(*received.values()), timeout=5)
        assert {event.from_id for event in events} == {alice_channel.connection_id}
        assert {event.data for event in events} == {"hi"}

    @pytest.mark.asyncio
    async def test_unknown_target(self, alice_channel: WebSocketSignalChannel) -> None:
        with pytest.raises(SignalError, match="Unknown connection"):
            await alice_channel.signal("hi", to="connection-999")

    @pytest.mark.asyncio
    async def test_payload_limit(self, alice_channel: WebSocketSignalChannel) -> None:
        with pytest.raises(SignalError, match="exceeds limit"):
            await alice_channel.signal("x" * 5000)

    @pytest.mark.asyncio
    async def test_signal_before_connect(self) -> None:
        channel = WebSocketSignalChannel("ws://127.0.0.1:1/signal")
        with pytest.raises(SignalError):
            await channel.signal("hi")


class TestRpcOverRelay:
    """Calls between endpoints on separate WebSocket connections."""

    @pytest.mark.asyncio
    async def test_round_trip(
        self, alice_channel: WebSocketSignalChannel, bob_channel: WebSocketSignalChannel
    ) -> None:
        alice = RpcEndpoint(alice_channel)
        bob = RpcEndpoint(bob_channel)
        bob.expose({"add": lambda a, b: a + b})

        assert await asyncio.wait_for(alice.call("add", 2, 3), timeout=5) == 5

        await alice.close()
        await bob.close()

    @pytest.mark.asyncio
    async def test_unicast_call(
        self, alice_channel: WebSocketSignalChannel, bob_channel: WebSocketSignalChannel
    ) -> None:
        alice = RpcEndpoint(alice_channel)
        bob = RpcEndpoint(bob_channel)
        bob.expose(lambda name, args: (lambda: bob_channel.connection_id) if name == "whoami" else None)

        answer = await alice.call({"to": bob_channel.connection_id, "timeout": 5}, "whoami")
        assert answer == bob_channel.connection_id

    @pytest.mark.asyncio
    async def test_remote_failure(
        self, alice_channel: WebSocketSignalChannel, bob_channel: WebSocketSignalChannel
    ) -> None:
        alice = RpcEndpoint(alice_channel)
        RpcEndpoint(bob_channel).expose({})

        with pytest.raises(RpcError) as exc_info:
            await alice.call({"timeout": 5}, "missing")
        assert exc_info.value.reason == "No implementation for `missing`"

    @pytest.mark.asyncio
    async def test_send_failure(self, alice_channel: WebSocketSignalChannel) -> None:
        alice = RpcEndpoint(alice_channel)

        with pytest.raises(RpcError) as exc_info:
            await alice.call({"to": "connection-999"}, "add")
        assert exc_info.value.code == ErrorCode.TRANSPORT_SEND_FAILURE

    @pytest.mark.asyncio
    async def test_timeout_without_peer(self, alice_channel: WebSocketSignalChannel) -> None:
        alice = RpcEndpoint(alice_channel)

        with pytest.raises(RpcError) as exc_info:
            await alice.call({"timeout": 0.1}, "add")
        assert is_timeout(exc_info.value)
