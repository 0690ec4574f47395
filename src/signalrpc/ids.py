"""Call identity allocation.

A call id correlates a response with the call that caused it. Ids only need
to be unique within the lifetime of one endpoint, so every endpoint owns its
own allocator and counter:

    promise-<procedure name>-<counter>

The counter is the last ``-`` separated component and never contains ``-``
itself, so two different (name, counter) pairs can never produce the same id.
"""

from __future__ import annotations

import threading
from typing import Final

DEFAULT_PREFIX: Final = "promise"


class CallIdAllocator:
    """Thread-safe allocator of call ids for one endpoint."""

    def __init__(self, prefix: str = DEFAULT_PREFIX) -> None:
        self.prefix = prefix
        self._next: int = 1
        self._lock: Final = threading.Lock()

    def allocate(self, name: str) -> str:
        """Allocate a fresh id for a call to ``name``."""
        with self._lock:
            counter = self._next
            self._next += 1
        return f"{self.prefix}-{name}-{counter}"

    @property
    def allocated(self) -> int:
        """Number of ids handed out so far."""
        return self._next - 1
