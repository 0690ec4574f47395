#!/usr/bin/env python3
"""Peer group example.

Starts a signaling relay, joins three peers to it and has them call each
other: a broadcast call answered by whoever implements it, a unicast call to
one named peer, a remote failure and a timeout.

Usage:
    python main.py
"""

import asyncio
import logging

from signalrpc import (
    ImplementationProvider,
    RpcEndpoint,
    RpcError,
    SignalRelay,
    WebSocketSignalChannel,
    is_timeout,
)


class Peer(ImplementationProvider):
    """Procedures every peer exposes."""

    def __init__(self, name: str) -> None:
        self.name = name

    def whoami(self) -> str:
        return self.name

    async def greet(self, other: str) -> str:
        return f"Hello {other}, I'm {self.name}!"

    def fail(self) -> None:
        msg = f"{self.name} refuses"
        raise ValueError(msg)


class Calculator(ImplementationProvider):
    """Only one peer can add."""

    def add(self, a: float, b: float) -> float:
        return a + b


async def main() -> None:
    """Run the relay and the peers."""
    logging.basicConfig(level=logging.WARNING)

    async with SignalRelay() as relay:
        print(f"🚀 Relay listening on {relay.url}")

        async with (
            WebSocketSignalChannel(relay.url) as alice_channel,
            WebSocketSignalChannel(relay.url) as bob_channel,
            WebSocketSignalChannel(relay.url) as carol_channel,
        ):
            alice = RpcEndpoint(alice_channel, config={"timeout": 5})
            bob = RpcEndpoint(bob_channel)
            alice.expose(Peer("Alice"))
            bob.expose(Calculator())

            # Every peer with an endpoint answers a broadcast, so Carol joins
            # only after it
            total = await alice.call("add", 2, 3)
            print(f"📞 Alice broadcast add(2, 3) ← {total}")

            carol = RpcEndpoint(carol_channel)
            carol.expose(Peer("Carol"))

            greeting = await alice.call({"to": carol_channel.connection_id}, "greet", "Alice")
            print(f"📞 Alice asked Carol to greet ← {greeting}")

            try:
                await bob.call({"to": carol_channel.connection_id, "timeout": 5}, "fail")
            except RpcError as e:
                print(f"❌ Carol failed: {e.reason}")

            try:
                await carol.call({"to": bob_channel.connection_id, "timeout": 5}, "greet", "Carol")
            except RpcError as e:
                print(f"❌ Bob cannot greet: {e.reason}")

            await bob.close()
            try:
                await carol.call({"to": bob_channel.connection_id, "timeout": 0.5}, "add", 1, 1)
            except RpcError as e:
                if is_timeout(e):
                    print("⏰ Bob left, the call timed out")

            for endpoint in (alice, bob, carol):
                await endpoint.close()

    print("👋 Done")


if __name__ == "__main__":
    asyncio.run(main())
