"""Cancellable timers for watchers.

Every timer is tied to the identity of the record it was armed for. When a
watcher moves to another round or draw it cancels the old token, and any
callback still in flight checks the token before acting.
"""
from typing import Callable, Hashable, Optional
import logging
import threading

logger = logging.getLogger(__name__)


class CancellationToken:
    def __init__(self, key: Hashable):
        self.key = key
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def __repr__(self):
        state = 'cancelled' if self.cancelled else 'live'
        return f"<CancellationToken {self.key!r} {state}>"


class RepeatingTask:
    """Call ``func`` every ``interval`` seconds on a daemon thread until cancelled."""

    def __init__(self, interval: float, func: Callable[[], None], token: CancellationToken,
                 name: Optional[str] = None):
        self.interval = interval
        self.func = func
        self.token = token
        self.name = name or f"repeat-{token.key}"
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self.token.cancelled

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        self.token.cancel()

    def _run(self) -> None:
        while not self.token.wait(self.interval):
            try:
                self.func()
            except Exception:
                # keep ticking; the next tick retries
                logger.exception("Error in %s tick", self.name)
