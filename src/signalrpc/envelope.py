"""Envelope codec for signal RPC.

Calls and responses travel as JSON text inside the channel's signal payload.

Call:
    {"id": str, "name": str, "args": [...], "config": {"debug": bool, "timeout": number}}

Response:
    {"id": str, "name": str, "config": {...}, "isResponse": true, "result": any}
    {"id": str, "name": str, "config": {...}, "isResponse": true, "reason": any}

The presence of ``reason`` marks a failed call.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from signalrpc.error import RpcError


@dataclass(frozen=True)
class CallEnvelope:
    """An outbound call."""

    id: str
    name: str
    args: list[Any]
    config: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        """Convert to JSON object."""
        return {
            "id": self.id,
            "name": self.name,
            "args": list(self.args),
            "config": {
                "debug": self.config.get("debug", False),
                "timeout": self.config.get("timeout", 0),
            },
        }

    @staticmethod
    def from_json(obj: dict[str, Any]) -> CallEnvelope:
        """Parse from JSON object."""
        call_id, name, config = _common_fields(obj)
        args = obj.get("args", [])
        if not isinstance(args, list):
            msg = f"Call args must be an array, got {type(args).__name__}"
            raise RpcError.bad_envelope(msg, obj)
        return CallEnvelope(call_id, name, args, config)

    @property
    def debug(self) -> bool:
        return bool(self.config.get("debug", False))


@dataclass(frozen=True)
class ResponseEnvelope:
    """The reply to a call, carrying either a result or a failure reason."""

    id: str
    name: str
    config: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    reason: Any = None
    failed: bool = False

    @staticmethod
    def success(call: CallEnvelope, result: Any) -> ResponseEnvelope:
        """Build the response for a call that returned ``result``."""
        return ResponseEnvelope(call.id, call.name, call.config, result=result)

    @staticmethod
    def failure(call: CallEnvelope, reason: Any) -> ResponseEnvelope:
        """Build the response for a call that failed with ``reason``."""
        return ResponseEnvelope(
            call.id, call.name, call.config, reason=reason, failed=True
        )

    def to_json(self) -> dict[str, Any]:
        """Convert to JSON object."""
        obj: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "config": self.config,
            "isResponse": True,
        }
        if self.failed:
            obj["reason"] = self.reason
        else:
            obj["result"] = self.result
        return obj

    @staticmethod
    def from_json(obj: dict[str, Any]) -> ResponseEnvelope:
        """Parse from JSON object."""
        call_id, name, config = _common_fields(obj)
        if "reason" in obj:
            return ResponseEnvelope(
                call_id, name, config, reason=obj["reason"], failed=True
            )
        return ResponseEnvelope(call_id, name, config, result=obj.get("result"))

    @property
    def debug(self) -> bool:
        return bool(self.config.get("debug", False))


Envelope = CallEnvelope | ResponseEnvelope


def _common_fields(obj: dict[str, Any]) -> tuple[str, str, dict[str, Any]]:
    call_id = obj.get("id")
    if not isinstance(call_id, str):
        msg = "Envelope id must be a string"
        raise RpcError.bad_envelope(msg, obj)

    name = obj.get("name")
    if not isinstance(name, str):
        msg = "Envelope name must be a string"
        raise RpcError.bad_envelope(msg, obj)

    config = obj.get("config", {})
    if not isinstance(config, dict):
        msg = "Envelope config must be an object"
        raise RpcError.bad_envelope(msg, obj)

    return call_id, name, config


def encode_envelope(envelope: Envelope) -> str:
    """Serialize an envelope to the signal payload.

    Raises:
        RpcError: BAD_ENVELOPE if the arguments or result are not JSON values.
    """
    try:
        return json.dumps(envelope.to_json(), separators=(",", ":"))
    except (TypeError, ValueError) as e:
        msg = f"Cannot encode `{envelope.name}` envelope: {e}"
        raise RpcError.bad_envelope(msg) from e


def decode_envelope(data: str | bytes) -> Envelope:
    """Parse a signal payload into a call or response envelope.

    Raises:
        RpcError: BAD_ENVELOPE if the payload is not a valid envelope.
    """
    try:
        obj = json.loads(data)
    except (TypeError, ValueError) as e:
        msg = f"Invalid JSON in signal payload: {e}"
        raise RpcError.bad_envelope(msg) from e

    if not isinstance(obj, dict):
        msg = "Signal payload must be a JSON object"
        raise RpcError.bad_envelope(msg, obj)

    match obj.get("isResponse", False):
        case True:
            return ResponseEnvelope.from_json(obj)
        case False | None:
            return CallEnvelope.from_json(obj)
        case other:
            msg = f"isResponse must be a boolean, got {other!r}"
            raise RpcError.bad_envelope(msg, obj)
