"""A sleep that can be cut short by a cancel."""

from __future__ import annotations

import threading


class SleepWithCancel:
    """Sleeps that wake early once cancelled.

    After ``cancel`` every later sleep returns at once.
    """

    def __init__(self) -> None:
        self._cancelled = threading.Event()

    def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` or until cancelled, whichever comes first."""
        self._cancelled.wait(max(0.0, seconds))

    def cancel(self) -> None:
        """Wake current sleepers and make future sleeps return immediately."""
        self._cancelled.set()