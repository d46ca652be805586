# cancel.py
from __future__ import annotations

import threading

from .errors import CancellationError


class CancelToken:
    """
    Run-wide cancellation flag shared by the scheduler, runner and executor.

    Setting it is one-way: once cancelled a token stays cancelled.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block up to `timeout` seconds; True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self, *, job: str | None = None, step: str | None = None) -> None:
        if self._event.is_set():
            raise CancellationError(self.reason or "run cancelled", job=job, step=step)
