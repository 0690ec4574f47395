"""Error types for signal RPC."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

TIMEOUT_REASON = "timeout"


class ErrorCode(Enum):
    """Standard RPC error codes."""

    INVALID_EXPOSE_TARGET = "invalid_expose_target"
    INVALID_CALL_ARGUMENTS = "invalid_call_arguments"
    INVALID_CONFIG = "invalid_config"
    NO_IMPLEMENTATION = "no_implementation"
    REMOTE_FAILURE = "remote_failure"
    TRANSPORT_SEND_FAILURE = "transport_send_failure"
    TIMEOUT = "timeout"
    INVALID_RECORD = "invalid_record"
    BAD_ENVELOPE = "bad_envelope"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class RpcError(Exception):
    """RPC error with code, message, and optional data.

    For rejections delivered to a caller, ``data`` holds the raw rejection
    value: the remote failure reason, the transport exception, or the
    ``"timeout"`` sentinel. ``has_data`` marks ``data`` as the rejection value
    even when it is None.
    """

    code: ErrorCode
    message: str
    data: Any | None = None
    has_data: bool = field(default=False, repr=False, compare=False)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    @property
    def reason(self) -> Any:
        """The rejection value as the peer or transport reported it."""
        if self.has_data or self.data is not None:
            return self.data
        return self.message

    @staticmethod
    def invalid_expose_target(message: str, data: Any | None = None) -> RpcError:
        """Create an INVALID_EXPOSE_TARGET error."""
        return RpcError(ErrorCode.INVALID_EXPOSE_TARGET, message, data)

    @staticmethod
    def invalid_call_arguments(message: str, data: Any | None = None) -> RpcError:
        """Create an INVALID_CALL_ARGUMENTS error."""
        return RpcError(ErrorCode.INVALID_CALL_ARGUMENTS, message, data)

    @staticmethod
    def invalid_config(message: str, data: Any | None = None) -> RpcError:
        """Create an INVALID_CONFIG error."""
        return RpcError(ErrorCode.INVALID_CONFIG, message, data)

    @staticmethod
    def no_implementation(name: str) -> RpcError:
        """Create a NO_IMPLEMENTATION error for procedure ``name``."""
        return RpcError(ErrorCode.NO_IMPLEMENTATION, f"No implementation for `{name}`")

    @staticmethod
    def remote_failure(reason: Any) -> RpcError:
        """Create a REMOTE_FAILURE error carrying the peer's reason."""
        return RpcError(ErrorCode.REMOTE_FAILURE, str(reason), reason, has_data=True)

    @staticmethod
    def transport_send_failure(failure: Any) -> RpcError:
        """Create a TRANSPORT_SEND_FAILURE error carrying the transport failure."""
        return RpcError(
            ErrorCode.TRANSPORT_SEND_FAILURE, str(failure), failure, has_data=True
        )

    @staticmethod
    def timeout() -> RpcError:
        """Create a TIMEOUT error."""
        return RpcError(ErrorCode.TIMEOUT, TIMEOUT_REASON, TIMEOUT_REASON)

    @staticmethod
    def invalid_record(message: str, data: Any | None = None) -> RpcError:
        """Create an INVALID_RECORD error."""
        return RpcError(ErrorCode.INVALID_RECORD, message, data)

    @staticmethod
    def bad_envelope(message: str, data: Any | None = None) -> RpcError:
        """Create a BAD_ENVELOPE error."""
        return RpcError(ErrorCode.BAD_ENVELOPE, message, data)

    @staticmethod
    def closed(message: str = "Endpoint closed") -> RpcError:
        """Create a CLOSED error."""
        return RpcError(ErrorCode.CLOSED, message)


def failure_message(error: BaseException) -> str:
    """Message of ``error`` as sent back over the wire."""
    if isinstance(error, RpcError):
        return error.message
    return str(error)
