"""Auto-close watchdog for an active bidding round.

Any number of clients may watch the same round. Each one closes the round
when its local reading of the ledger deadline reaches zero; the ledger's
close is idempotent, so every watcher ends up with the same completed record
and its winner. Watchers only ever act on records handed to them by the
gateway or the change feed.
"""
from datetime import datetime
from typing import Callable, Dict, Optional
import logging
import threading
from functools import partial

from bhishi.errors import LedgerError, InvariantViolation
from bhishi.sync.clock import ClockReconciler, Timing, TimeLeft, utcnow
from bhishi.sync.gateway import LedgerGateway
from bhishi.sync.records import RoundView, RoundStatus, Projection
from bhishi.sync.timers import CancellationToken, RepeatingTask

logger = logging.getLogger(__name__)

NO_BIDS_MESSAGE = 'Round closed with no active bids'


class AutoCloseMonitor:
    """Watches one round at a time.

    Callbacks:
      on_round_closed(view)      once per round, when a completed record arrives
      on_warning(view, seconds)  once per round, when the deadline is near
      on_info(message)           expected, non-fatal outcomes
    """

    def __init__(self, gateway: LedgerGateway, timing: Timing = Timing(),
                 clock: Callable[[], datetime] = utcnow,
                 on_round_closed: Optional[Callable[[RoundView], None]] = None,
                 on_warning: Optional[Callable[[RoundView, float], None]] = None,
                 on_info: Optional[Callable[[str], None]] = None,
                 poll: bool = True):
        self.gateway = gateway
        self.timing = timing
        self.clock = ClockReconciler(clock)
        self.on_round_closed = on_round_closed or (lambda view: None)
        self.on_warning = on_warning or (lambda view, seconds: None)
        self.on_info = on_info or (lambda message: None)
        self.poll = poll

        self._lock = threading.RLock()
        self._projection = Projection()
        self._round_id: Optional[int] = None
        self._task: Optional[RepeatingTask] = None
        self._warned = set()
        self._notified = set()

    # ---- record intake ----

    @property
    def current(self) -> Optional[RoundView]:
        if self._round_id is None:
            return None
        return self._projection.get(self._round_id)

    def watch(self, record: Dict) -> Optional[RoundView]:
        """Start watching the round in ``record``, replacing any previous one."""
        return self.on_record_changed(record, rebind=True)

    def on_record_changed(self, record: Dict, rebind: bool = False) -> Optional[RoundView]:
        """Apply a record from the feed or a fetch. Returns the accepted view, or None."""
        view = self._validated(record)
        if view is None:
            return None
        with self._lock:
            if view.id != self._round_id:
                if not rebind and self._round_id is not None:
                    logger.debug(f"Ignoring round {view.id}; watching {self._round_id}")
                    return None
                self._bind(view.id)
            if not self._projection.accept(view):
                logger.debug(f"Dropped stale round {view.id} v{view.version}")
                return None
        self._react(view)
        return view

    def _validated(self, record: Dict) -> Optional[RoundView]:
        view = RoundView.from_record(record)
        try:
            view.check_invariants()
            return view
        except InvariantViolation as exc:
            logger.error(f"{exc}; refetching round {view.id}")
        try:
            view = RoundView.from_record(self.gateway.fetch_round(view.id))
            view.check_invariants()
        except LedgerError as exc:
            logger.error(f"Refetch of round {view.id} failed: {exc}")
            return None
        return view

    def _bind(self, round_id: int) -> None:
        self._cancel_polling()
        self._round_id = round_id

    def _react(self, view: RoundView) -> None:
        if view.settled:
            self._cancel_polling()
            self._notify_closed(view)
            return
        if view.status is not RoundStatus.ACTIVE or view.end_time is None:
            self._cancel_polling()
            return
        self._ensure_polling()
        self.check()

    def _notify_closed(self, view: RoundView) -> None:
        with self._lock:
            if view.id in self._notified:
                return
            self._notified.add(view.id)
        if view.winner_id is None:
            self.on_info(NO_BIDS_MESSAGE)
        self.on_round_closed(view)

    # ---- polling ----

    def _ensure_polling(self) -> None:
        if not self.poll:
            return
        with self._lock:
            if self._task is not None and self._task.running:
                return
            token = CancellationToken(('round', self._round_id))
            self._task = RepeatingTask(self.timing.poll_interval, partial(self._tick, token), token,
                                       name=f"auto-close-{self._round_id}")
            self._task.start()

    def _cancel_polling(self) -> None:
        with self._lock:
            if self._task is not None:
                self._task.cancel()
                self._task = None

    def _tick(self, token: CancellationToken) -> None:
        if token.cancelled or token.key != ('round', self._round_id):
            return
        self.check()

    def check(self) -> None:
        """One watchdog tick: warn when the deadline is near, close at zero."""
        view = self.current
        if view is None:
            return
        if view.status is not RoundStatus.ACTIVE or view.end_time is None:
            return

        remaining = self.clock.until(view.end_time)
        if 0 < remaining <= self.timing.ending_soon_warning:
            with self._lock:
                fire = view.id not in self._warned
                self._warned.add(view.id)
            if fire:
                self.on_warning(view, remaining)
        if remaining > 0:
            return

        try:
            record = self.gateway.close_round(view.id)
        except LedgerError as exc:
            if exc.expected:
                self.on_info(str(exc))
            else:
                logger.warning(f"[auto-close] round={view.id} failed, retrying next tick: {exc}")
            return
        except Exception as exc:
            logger.warning(f"[auto-close] round={view.id} unreachable, retrying next tick: {exc}")
            return
        if self._round_id != view.id:
            # moved on to another round while the call was in flight
            return
        self.on_record_changed(record)

    def on_reconnect(self) -> None:
        """Re-derive state after the feed reconnects; events may have been missed."""
        round_id = self._round_id
        if round_id is None:
            return
        try:
            record = self.gateway.fetch_round(round_id)
        except LedgerError as exc:
            logger.warning(f"Reconnect refetch of round {round_id} failed: {exc}")
            return
        self.on_record_changed(record)

    # ---- presentation helpers ----

    def get_time_left(self) -> Optional[TimeLeft]:
        view = self.current
        if view is None or view.status is not RoundStatus.ACTIVE:
            return None
        return self.clock.time_left(view.end_time)

    def is_round_expiring(self) -> bool:
        view = self.current
        if view is None or view.status is not RoundStatus.ACTIVE or view.end_time is None:
            return False
        return 0 < self.clock.until(view.end_time) <= self.timing.ending_soon_warning

    def stop(self) -> None:
        with self._lock:
            self._cancel_polling()
            self._round_id = None
