# gridchange/readiness.py

import enum
import threading
from typing import Callable, Optional


class Readiness(enum.Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class ReadinessCoordinator:
    """
    Defers work that needs the change map until it has arrived.

    While pending, only the most recent request is kept; on `mark_ready` or
    `mark_failed` it runs exactly once. After that, requests run immediately
    on the caller's thread. Both READY and FAILED are terminal.
    """

    def __init__(self, name: str = "change map"):
        self.name = name
        self.state = Readiness.PENDING
        self._pending: Optional[Callable[[], None]] = None
        self._lock = threading.Lock()

    @property
    def ready(self) -> bool:
        return self.state is Readiness.READY

    @property
    def failed(self) -> bool:
        return self.state is Readiness.FAILED

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def run_when_ready(self, callback: Callable[[], None]) -> bool:
        """Returns True if the callback ran now, False if it was deferred."""
        with self._lock:
            if self.state is Readiness.PENDING:
                if self._pending is not None:
                    print(f"[INFO] Replacing deferred request while waiting for {self.name}.")
                self._pending = callback
                return False
        callback()
        return True

    def _settle(self, state: Readiness) -> None:
        with self._lock:
            if self.state is not Readiness.PENDING:
                return
            self.state = state
            callback, self._pending = self._pending, None
        if callback is not None:
            print(f"[INFO] {self.name} {state.value}; running deferred request.")
            callback()

    def mark_ready(self) -> None:
        self._settle(Readiness.READY)

    def mark_failed(self) -> None:
        """The input will never arrive; release the deferred request."""
        self._settle(Readiness.FAILED)
