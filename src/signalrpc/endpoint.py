"""RPC endpoint - request/response calls over a signaling channel.

The channel only offers fire-and-forget signals that every peer in the group
receives. The endpoint turns that into calls:

Outbound:
1. Merge the configuration layers (defaults, endpoint, call)
2. Allocate a call id and build the call envelope
3. Register a pending call that can be settled only once
4. Send the envelope; a failed send rejects the call at once
5. Arm the timeout, if one is configured

Inbound:
- Signals sent by this endpoint's own connection are ignored
- Responses settle the matching pending call
- Calls are looked up with the exposed resolver, executed, and answered with
  a response or error envelope addressed to the caller
"""

from __future__ import annotations

import asyncio
import functools
import logging
import weakref
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Self

from signalrpc.channel import SignalChannel, SignalEvent
from signalrpc.config import RpcConfig, merge_config, validate_config
from signalrpc.envelope import (
    CallEnvelope,
    ResponseEnvelope,
    decode_envelope,
    encode_envelope,
)
from signalrpc.error import ErrorCode, RpcError, failure_message
from signalrpc.ids import CallIdAllocator
from signalrpc.registry import PendingCall, PendingCallRegistry
from signalrpc.resolver import ExposedTarget, build_resolver, invoke

logger = logging.getLogger(__name__)

CALL_ERROR = (
    "call() must be passed the name of the remote function, optionally "
    "preceded by a configuration mapping"
)

ErrorHandler = Callable[[RpcError], None]

# id(channel) -> endpoint; entries vanish once the endpoint is collected
_endpoints: weakref.WeakValueDictionary[int, RpcEndpoint] = weakref.WeakValueDictionary()


def parse_call_arguments(
    args: Sequence[Any],
) -> tuple[Mapping[str, Any], str, list[Any]]:
    """Split ``call()`` arguments into (call config, name, params).

    Raises:
        RpcError: INVALID_CALL_ARGUMENTS if the arguments match neither
            ``(name, *params)`` nor ``(config, name, *params)``.
    """
    match tuple(args):
        case (str() as name, *params):
            return {}, name, list(params)
        case (Mapping() as config, str() as name, *params):
            return config, name, list(params)
        case _:
            raise RpcError.invalid_call_arguments(CALL_ERROR)


class RpcEndpoint:
    """One side of the RPC relationship, bound to one channel identity.

    Example:
        endpoint = RpcEndpoint(channel)
        endpoint.expose({"add": lambda a, b: a + b})
        endpoint.configure(timeout=5)

        total = await endpoint.call("add", 2, 3)
        total = await endpoint.call({"to": peer_id, "timeout": 1}, "add", 2, 3)
    """

    def __init__(
        self,
        channel: SignalChannel,
        *,
        signal_type: str = "rpc",
        config: Mapping[str, Any] | None = None,
        error_handler: ErrorHandler | None = None,
    ) -> None:
        """Attach an endpoint to ``channel``.

        Args:
            channel: The signaling channel to talk through
            signal_type: Signal type carrying RPC envelopes
            config: Initial endpoint-level configuration
            error_handler: Receives errors no caller can be told about, such
                as a failure to send a response. Defaults to the event loop's
                exception handler.
        """
        self._channel = channel
        self._signal_type = signal_type
        self._config: dict[str, Any] = {}
        self._registry = PendingCallRegistry()
        self._ids = CallIdAllocator()
        self._resolver: ExposedTarget | None = None
        self._error_handler = error_handler
        self._tasks: set[asyncio.Future[Any]] = set()
        self._closed = False

        if config:
            self.configure(config)

        channel.on_signal(signal_type, self._handle_signal)

    @classmethod
    def for_channel(cls, channel: SignalChannel) -> RpcEndpoint:
        """Return the endpoint attached to ``channel``, creating it on first use.

        Two endpoints on one channel would both execute every inbound call, so
        code sharing a channel should go through here.
        """
        endpoint = _endpoints.get(id(channel))
        if endpoint is None or endpoint.closed or endpoint.channel is not channel:
            endpoint = cls(channel)
            _endpoints[id(channel)] = endpoint
        return endpoint

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    @property
    def channel(self) -> SignalChannel:
        return self._channel

    @property
    def registry(self) -> PendingCallRegistry:
        return self._registry

    @property
    def config(self) -> RpcConfig:
        """Endpoint-level configuration merged over the defaults."""
        return RpcConfig.from_layers(self._config)

    @property
    def closed(self) -> bool:
        return self._closed

    def expose(self, target: Any) -> None:
        """Make local implementations callable by peers.

        Args:
            target: A callable ``(name, args) -> implementation | None``, an
                object with ``get_implementation(name, args)``, or a mapping of
                procedure names to callables

        Raises:
            RpcError: INVALID_EXPOSE_TARGET for any other shape
        """
        self._resolver = build_resolver(target)

    def configure(
        self, partial: Mapping[str, Any] | None = None, **options: Any
    ) -> None:
        """Merge options into the endpoint-level configuration.

        Raises:
            RpcError: INVALID_CONFIG on unknown keys or ill-typed values
        """
        layer = merge_config(partial, options)
        validate_config(layer)
        self._config = merge_config(self._config, layer)

    def call(self, *args: Any) -> asyncio.Future[Any]:
        """Call a remote procedure.

        Accepts ``call(name, *params)`` or ``call(config, name, *params)``.
        Returns at once with a future that resolves to the remote result, or
        raises ``RpcError`` with code REMOTE_FAILURE, TIMEOUT,
        TRANSPORT_SEND_FAILURE or CLOSED.

        Raises:
            RpcError: INVALID_CALL_ARGUMENTS or INVALID_CONFIG, synchronously
        """
        call_config, name, params = parse_call_arguments(args)
        config = RpcConfig.from_layers(self._config, call_config)
        return self._call(config, name, params)

    async def close(self) -> None:
        """Detach from the channel.

        Pending calls are rejected with CLOSED and calls being served are
        cancelled.
        """
        if self._closed:
            return
        self._closed = True
        self._channel.off_signal(self._signal_type, self._handle_signal)
        self._registry.reject_all(RpcError.closed())

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _call(self, config: RpcConfig, name: str, args: list[Any]) -> asyncio.Future[Any]:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        if self._closed:
            future.set_exception(RpcError.closed())
            return future

        call_id = self._ids.allocate(name)
        if config.debug:
            logger.info("[RPC#%s] Calling `%s` with %r", call_id, name, args)

        envelope = CallEnvelope(call_id, name, args, config.wire())
        try:
            payload = encode_envelope(envelope)
        except RpcError as e:
            future.set_exception(e)
            return future

        pending = self._registry.register(call_id, future)

        to = None if config.broadcast else config.to
        send = asyncio.ensure_future(
            self._channel.signal(payload, to=to, type=self._signal_type)
        )
        self._track(send)
        send.add_done_callback(
            functools.partial(self._on_call_sent, pending, name, config.debug)
        )

        if config.timeout > 0:
            pending.arm_timeout(loop, config.timeout)

        return future

    def _on_call_sent(
        self, pending: PendingCall, name: str, debug: bool, send: asyncio.Future[None]
    ) -> None:
        if send.cancelled():
            failure: BaseException | None = asyncio.CancelledError("signal cancelled")
        else:
            failure = send.exception()
        if failure is None:
            return

        if debug:
            logger.error("Error sending `%s`: %s", name, failure)
        pending.reject(RpcError.transport_send_failure(failure))

    def _handle_signal(self, event: SignalEvent) -> None:
        if event.from_id == self._channel.connection_id:
            return

        try:
            envelope = decode_envelope(event.data)
        except RpcError:
            logger.error(
                "Malformed %s signal from %s: %.200s",
                event.type,
                event.from_id,
                event.data,
            )
            raise

        if envelope.debug:
            kind = "response" if isinstance(envelope, ResponseEnvelope) else "call"
            logger.info("[RPC#%s] Receiving `%s` %s.", envelope.id, envelope.name, kind)

        match envelope:
            case ResponseEnvelope():
                self._accept(envelope)
            case CallEnvelope():
                self._track(asyncio.ensure_future(self._serve(event.from_id, envelope)))

    def _accept(self, response: ResponseEnvelope) -> None:
        self._registry.resolve(
            response.id,
            response.reason,
            response.result,
            failed=response.failed,
            debug=response.debug,
        )

    async def _serve(self, sender: str, call: CallEnvelope) -> None:
        try:
            result = await self._execute(call)
        except Exception as e:
            reason = failure_message(e)
            if call.debug:
                logger.info("[RPC#%s] Sending error: %r", call.id, reason)
            response = ResponseEnvelope.failure(call, reason)
        else:
            if call.debug:
                logger.info("[RPC#%s] Sending response: %r", call.id, result)
            response = ResponseEnvelope.success(call, result)

        try:
            payload = encode_envelope(response)
        except RpcError as e:
            payload = encode_envelope(ResponseEnvelope.failure(call, e.message))

        await self._send_response(sender, call.id, payload)

    async def _execute(self, call: CallEnvelope) -> Any:
        implementation = (
            self._resolver(call.name, call.args) if self._resolver is not None else None
        )
        if implementation is None:
            error = RpcError.no_implementation(call.name)
            if call.debug:
                logger.error("[RPC#%s] %s", call.id, error.message)
            raise error

        if call.debug:
            logger.info("[RPC#%s] Executing RPC: %r", call.id, implementation)
        return await invoke(implementation, call.args)

    async def _send_response(self, sender: str, call_id: str, payload: str) -> None:
        try:
            await self._channel.signal(payload, to=sender, type=self._signal_type)
        except Exception as e:
            logger.error(
                "[RPC#%s] Failed to send response to %s: %s", call_id, sender, e
            )
            self._report(RpcError.transport_send_failure(e))

    def _report(self, error: RpcError) -> None:
        if self._error_handler is not None:
            self._error_handler(error)
            return

        asyncio.get_running_loop().call_exception_handler(
            {
                "message": f"RPC response could not be sent ({error.code})",
                "exception": error,
                "endpoint": self,
            }
        )

    def _track(self, task: asyncio.Future[Any]) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


def is_timeout(error: BaseException) -> bool:
    """Whether ``error`` is the rejection of a call that timed out."""
    return isinstance(error, RpcError) and error.code is ErrorCode.TIMEOUT
