"""
Visibility heartbeat for long-running handlers.

A HeartbeatSession owns one background thread that calls `extend` every
`interval` seconds (first call after one full interval) until cancelled.
The pipeline wraps each handler call in a session so the messages it owns
stay invisible while the handler runs.

Example:
    with HeartbeatSession(lambda: gateway.change_visibility(url, rh, 40), 30):
        handler(message)
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

from .logging import StructuredLogger, get_logger


class HeartbeatSession:
    """Recurring timer scoped to one handler invocation."""

    def __init__(
        self,
        extend: Callable[[], None],
        interval: float,
        *,
        name: str = "sqs-heartbeat",
        logger: Optional[StructuredLogger] = None,
    ):
        if interval <= 0:
            raise ValueError("heartbeat interval must be positive")
        self._extend = extend
        self.interval = float(interval)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, name=name, daemon=True)
        self.logger = logger or get_logger("heartbeat")
        self.ticks = 0

    # ------------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------------

    def start(self) -> "HeartbeatSession":
        self._thread.start()
        return self

    def cancel(self) -> None:
        """Stop renewing and wait for an in-flight renewal to return."""
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join()

    @property
    def active(self) -> bool:
        return self._thread.is_alive() and not self._stop.is_set()

    def __enter__(self) -> "HeartbeatSession":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()

    # ------------------------------------------------------------------------
    # Timer loop
    # ------------------------------------------------------------------------

    def _loop(self) -> None:
        # wait() returns True once cancelled, so no tick fires after cancel()
        while not self._stop.wait(self.interval):
            self.ticks += 1
            try:
                self._extend()
            except Exception as e:
                # extend callbacks report their own failures; keep renewing regardless
                self.logger.warning("Visibility heartbeat tick failed", {"error": str(e), "tick": self.ticks})


__all__ = ["HeartbeatSession"]
