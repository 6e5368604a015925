"""Cancellation token passed down to every controller suspension point."""
from __future__ import annotations

import threading


class CancelToken:
    """Cooperative, one-shot stop signal.

    ``wait()`` is the interruptible sleep: it returns early (True) as soon
    as ``cancel()`` is called from another thread.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*; True if cancelled before or during the wait."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)
