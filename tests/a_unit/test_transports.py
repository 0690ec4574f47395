"""Tests for the in-process signaling channel."""

import asyncio

import pytest

from signalrpc.channel import SignalError, SignalEvent
from signalrpc.transports import LocalSignalHub


class Recorder:
    """Collects delivered events."""

    def __init__(self) -> None:
        self.events: list[SignalEvent] = []

    def __call__(self, event: SignalEvent) -> None:
        self.events.append(event)


class TestLocalSignalHub:
    """Tests for hub membership."""

    def test_generated_ids(self) -> None:
        hub = LocalSignalHub()
        first = hub.connect()
        second = hub.connect()

        assert first.connection_id != second.connection_id
        assert hub.connection_ids == [first.connection_id, second.connection_id]

    def test_duplicate_id(self) -> None:
        hub = LocalSignalHub()
        hub.connect("alice")
        with pytest.raises(ValueError, match="already exists"):
            hub.connect("alice")


@pytest.mark.asyncio
class TestLocalSignalChannel:
    """Tests for signal delivery."""

    async def test_broadcast_reaches_everyone_including_sender(self) -> None:
        hub = LocalSignalHub()
        alice, bob = hub.connect("alice"), hub.connect("bob")
        alice_seen, bob_seen = Recorder(), Recorder()
        alice.on_signal("rpc", alice_seen)
        bob.on_signal("rpc", bob_seen)

        await alice.signal("hello", type="rpc")
        await asyncio.sleep(0)

        assert alice_seen.events == [SignalEvent("rpc", "alice", "hello")]
        assert bob_seen.events == [SignalEvent("rpc", "alice", "hello")]

    async def test_unicast_reaches_only_target(self) -> None:
        hub = LocalSignalHub()
        alice, bob, carol = hub.connect("alice"), hub.connect("bob"), hub.connect("carol")
        seen = {name: Recorder() for name in ("alice", "bob", "carol")}
        for channel in (alice, bob, carol):
            channel.on_signal("rpc", seen[channel.connection_id])

        await alice.signal("psst", to="bob")
        await asyncio.sleep(0)

        assert seen["bob"].events == [SignalEvent("rpc", "alice", "psst")]
        assert seen["alice"].events == []
        assert seen["carol"].events == []

    async def test_signal_types_are_separate(self) -> None:
        hub = LocalSignalHub()
        alice = hub.connect("alice")
        rpc, chat = Recorder(), Recorder()
        alice.on_signal("rpc", rpc)
        alice.on_signal("chat", chat)

        await alice.signal("hi", type="chat")
        await asyncio.sleep(0)

        assert rpc.events == []
        assert len(chat.events) == 1

    async def test_delivery_is_not_synchronous(self) -> None:
        hub = LocalSignalHub()
        alice = hub.connect("alice")
        seen = Recorder()
        alice.on_signal("rpc", seen)

        await alice.signal("later")
        assert seen.events == []

        await asyncio.sleep(0)
        assert len(seen.events) == 1

    async def test_off_signal(self) -> None:
        hub = LocalSignalHub()
        alice = hub.connect("alice")
        seen = Recorder()
        alice.on_signal("rpc", seen)
        alice.off_signal("rpc", seen)

        await alice.signal("ignored")
        await asyncio.sleep(0)

        assert seen.events == []

    async def test_unknown_target_fails(self) -> None:
        hub = LocalSignalHub()
        alice = hub.connect("alice")
        with pytest.raises(SignalError, match="Unknown connection"):
            await alice.signal("hello", to="nobody")

    async def test_payload_limit(self) -> None:
        hub = LocalSignalHub(max_payload_size=8)
        alice = hub.connect("alice")
        await alice.signal("12345678")
        with pytest.raises(SignalError, match="exceeds limit"):
            await alice.signal("123456789")

    async def test_closed_channel(self) -> None:
        hub = LocalSignalHub()
        async with hub.connect("alice") as alice:
            pass

        assert alice.closed
        assert hub.connection_ids == []
        with pytest.raises(SignalError, match="closed"):
            await alice.signal("hello")
