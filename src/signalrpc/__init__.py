"""Signal RPC - Python Implementation

This module provides request/response remote procedure calls on top of a
peer-group signaling channel that only knows how to broadcast or unicast
one-way signals.
"""

from signalrpc.channel import SignalChannel, SignalError, SignalEvent
from signalrpc.config import ALL, RpcConfig, merge_config
from signalrpc.endpoint import RpcEndpoint, is_timeout
from signalrpc.envelope import (
    CallEnvelope,
    ResponseEnvelope,
    decode_envelope,
    encode_envelope,
)
from signalrpc.error import ErrorCode, RpcError
from signalrpc.ids import CallIdAllocator
from signalrpc.registry import PendingCallRegistry, Resolution
from signalrpc.relay import RelayConfig, SignalRelay
from signalrpc.resolver import ImplementationProvider, build_resolver
from signalrpc.transports import (
    LocalSignalChannel,
    LocalSignalHub,
    WebSocketSignalChannel,
)

__version__ = "0.1.0"

__all__ = [
    # Endpoint
    "RpcEndpoint",
    "ImplementationProvider",
    "is_timeout",
    # Configuration
    "ALL",
    "RpcConfig",
    "merge_config",
    # Channels
    "SignalChannel",
    "SignalEvent",
    "SignalError",
    "LocalSignalHub",
    "LocalSignalChannel",
    "WebSocketSignalChannel",
    "SignalRelay",
    "RelayConfig",
    # Core types
    "CallEnvelope",
    "ResponseEnvelope",
    "encode_envelope",
    "decode_envelope",
    "CallIdAllocator",
    "PendingCallRegistry",
    "Resolution",
    "build_resolver",
    # Errors
    "RpcError",
    "ErrorCode",
]
