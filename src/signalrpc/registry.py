"""Pending call registry.

Tracks the calls an endpoint is waiting on. Every record goes through exactly
one transition, ``PendingRecord -> DoneRecord``, whichever of the response,
the send failure, the timeout, shutdown or the caller cancelling its future
gets there first. Every later
attempt to settle the call is a no-op that is logged and never reaches the
caller's future.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any

from signalrpc.error import RpcError

logger = logging.getLogger(__name__)

DEFAULT_DONE_LIMIT = 1024


class Resolution(Enum):
    """What a resolution attempt did."""

    FULFILLED = "fulfilled"
    REJECTED = "rejected"
    UNKNOWN = "unknown"
    ALREADY_RESOLVED = "already_resolved"
    CANCELLED = "cancelled"


class PendingCall:
    """The settle-once handle for one outstanding call.

    ``fulfill`` and ``reject`` both mark the record done before touching the
    future, so whichever runs first wins and the other becomes a no-op.
    """

    def __init__(
        self, registry: PendingCallRegistry, call_id: str, future: asyncio.Future[Any]
    ) -> None:
        self.registry = registry
        self.call_id = call_id
        self.future = future
        self._timer: asyncio.TimerHandle | None = None

    @property
    def done(self) -> bool:
        return not isinstance(self.registry._records.get(self.call_id), PendingRecord)

    def fulfill(self, value: Any) -> bool:
        """Fulfill the call. Returns False if it was already settled."""
        if not self._settle(Resolution.FULFILLED):
            return False
        if not self.future.done():
            self.future.set_result(value)
        return True

    def reject(self, error: BaseException) -> bool:
        """Reject the call. Returns False if it was already settled."""
        if not self._settle(Resolution.REJECTED):
            return False
        if not self.future.done():
            self.future.set_exception(error)
        return True

    def arm_timeout(self, loop: asyncio.AbstractEventLoop, seconds: float) -> None:
        """Reject with the timeout error after ``seconds`` unless settled first."""
        self._timer = loop.call_later(seconds, self._expire)

    def cancel(self) -> bool:
        """Give up on the call without touching the future."""
        return self._settle(Resolution.CANCELLED)

    def _on_future_done(self, future: asyncio.Future[Any]) -> None:
        if future.cancelled() and self.cancel():
            logger.debug("[RPC#%s] Caller cancelled", self.call_id)

    def _expire(self) -> None:
        self._timer = None
        if self.reject(RpcError.timeout()):
            logger.debug("[RPC#%s] Timed out", self.call_id)

    def _settle(self, outcome: Resolution) -> bool:
        if self.done:
            return False
        self.registry._mark_done(self.call_id, outcome)
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        return True


@dataclass(frozen=True)
class PendingRecord:
    """A call still waiting for its outcome."""

    call: PendingCall


@dataclass(frozen=True)
class DoneRecord:
    """A call that has been settled."""

    outcome: Resolution


class PendingCallRegistry:
    """Registry of an endpoint's outstanding calls, keyed by call id.

    Owned by a single endpoint and only touched from its event loop. Settled
    calls stay recorded so late or duplicate responses are recognised; only
    the most recent ``done_limit`` of them are kept (None keeps all).
    """

    def __init__(self, done_limit: int | None = DEFAULT_DONE_LIMIT) -> None:
        self.done_limit = done_limit
        self._records: dict[str, Any] = {}
        self._done: deque[str] = deque()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._records

    def register(self, call_id: str, future: asyncio.Future[Any]) -> PendingCall:
        """Start tracking a call and return its settle-once handle."""
        if call_id in self._records:
            msg = f"Call id {call_id} is already registered"
            raise RpcError.invalid_record(msg, call_id)

        call = PendingCall(self, call_id, future)
        self._records[call_id] = PendingRecord(call)
        future.add_done_callback(call._on_future_done)
        return call

    def state(self, call_id: str) -> Resolution | None:
        """The outcome of a settled call, or None if pending or unknown."""
        match self._records.get(call_id):
            case DoneRecord(outcome):
                return outcome
            case _:
                return None

    def pending_ids(self) -> list[str]:
        """Ids of the calls still waiting for an outcome."""
        return [
            call_id
            for call_id, record in self._records.items()
            if isinstance(record, PendingRecord)
        ]

    def resolve(
        self,
        call_id: str,
        reason: Any = None,
        result: Any = None,
        *,
        failed: bool | None = None,
        debug: bool = False,
    ) -> Resolution:
        """Settle a call from its response.

        The call is rejected when ``failed`` is true, or, if ``failed`` is not
        given, when ``reason`` is not None; otherwise it is fulfilled with
        ``result``.

        Raises:
            RpcError: INVALID_RECORD if the record is neither pending nor done.
        """
        if failed is None:
            failed = reason is not None

        match self._records.get(call_id):
            case None:
                logger.warning("[RPC#%s] No RPC with such id.", call_id)
                return Resolution.UNKNOWN

            case DoneRecord():
                logger.warning("[RPC#%s] RPC already resolved. Ignoring.", call_id)
                return Resolution.ALREADY_RESOLVED

            case PendingRecord(call):
                if failed:
                    if debug:
                        logger.error("[RPC#%s] Rejecting RPC with: %r", call_id, reason)
                    call.reject(RpcError.remote_failure(reason))
                    return Resolution.REJECTED

                if debug:
                    logger.info("[RPC#%s] Resolving RPC with: %r", call_id, result)
                call.fulfill(result)
                return Resolution.FULFILLED

            case record:
                msg = "Invalid RPC record."
                logger.error("[RPC#%s] %s %r", call_id, msg, record)
                raise RpcError.invalid_record(msg, record)

    def reject_all(self, error: BaseException) -> int:
        """Reject every pending call with ``error``. Returns how many."""
        rejected = 0
        for record in list(self._records.values()):
            if isinstance(record, PendingRecord) and record.call.reject(error):
                rejected += 1
        return rejected

    def _mark_done(self, call_id: str, outcome: Resolution) -> None:
        self._records[call_id] = DoneRecord(outcome)
        self._done.append(call_id)
        if self.done_limit is None:
            return
        while len(self._done) > self.done_limit:
            oldest = self._done.popleft()
            if isinstance(self._records.get(oldest), DoneRecord):
                del self._records[oldest]
