"""Cooperative cancellation for in-flight syncs."""

import threading

from common.exceptions import SyncCancelledError


class CancellationToken:
    """
    Shared flag a caller sets to stop a sync.

    The engine checks the token before every repository or store I/O call
    and before committing; nothing is committed once it is set.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """
        Raises:
            SyncCancelledError: If cancel() has been called
        """
        if self._event.is_set():
            raise SyncCancelledError("Sync cancelled")

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds, waking early on cancellation. Returns True if cancelled."""
        return self._event.wait(timeout)
