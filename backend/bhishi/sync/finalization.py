"""Draw reveal coordination.

The animating client asks the ledger to finalize when its countdown ends,
but that request is only a timing hint. The winner is shown solely from a
ledger record with ``revealed`` set, whichever path delivers it first: the
finalize response, a feed push or a fetch. The reveal fires once per draw.
"""
from datetime import datetime
from typing import Callable, Dict, Optional
import logging
import threading

from bhishi.errors import LedgerError, DrawNotReady, InvariantViolation
from bhishi.sync.clock import Timing, parse_instant, signed_remaining, utcnow
from bhishi.sync.gateway import LedgerGateway
from bhishi.sync.records import DrawView, Projection
from bhishi.sync.reconcile import Decision, LateJoinAction, classify_draw

logger = logging.getLogger(__name__)


class DrawRevealCoordinator:
    def __init__(self, gateway: LedgerGateway, timing: Timing = Timing(),
                 clock: Callable[[], datetime] = utcnow,
                 on_reveal: Optional[Callable[[DrawView], None]] = None,
                 on_countdown: Optional[Callable[[DrawView, float, bool], None]] = None,
                 on_info: Optional[Callable[[str], None]] = None):
        self.gateway = gateway
        self.timing = timing
        self.clock = clock
        self.on_reveal = on_reveal or (lambda view: None)
        self.on_countdown = on_countdown or (lambda view, remaining, skip: None)
        self.on_info = on_info or (lambda message: None)

        self._lock = threading.RLock()
        self._projection = Projection()
        self._draw_id: Optional[int] = None
        self._revealed = set()

    @property
    def current(self) -> Optional[DrawView]:
        if self._draw_id is None:
            return None
        return self._projection.get(self._draw_id)

    def has_revealed(self, draw_id) -> bool:
        return draw_id in self._revealed

    def _now(self) -> datetime:
        return parse_instant(self.clock())

    def _validated(self, record: Dict) -> Optional[DrawView]:
        view = DrawView.from_record(record)
        try:
            view.check_invariants()
            return view
        except InvariantViolation as exc:
            logger.error(f"{exc}; refetching draw {view.id}")
        try:
            view = DrawView.from_record(self.gateway.fetch_draw(view.id))
            view.check_invariants()
        except LedgerError as exc:
            logger.error(f"Refetch of draw {view.id} failed: {exc}")
            return None
        return view

    def begin(self, record: Dict, decision: Optional[Decision] = None) -> Decision:
        """Mount on a draw, resuming whatever phase the ledger says it is in."""
        view = self._accept(record, rebind=True)
        if view is None:
            return Decision(LateJoinAction.IGNORE, None, False)
        if decision is None:
            decision = classify_draw(view, self._now(), self.timing)
        action = decision.action
        if action is LateJoinAction.SHOW_RESULT:
            self._reveal(view)
        elif action is LateJoinAction.RESUME_COUNTDOWN:
            self.on_countdown(view, decision.remaining, decision.skip_animation)
            if decision.skip_animation:
                # too little left to animate; go straight to the reveal path
                self.on_request_finalize(view.id)
        elif action is LateJoinAction.AWAIT_REVEAL:
            self.on_request_finalize(view.id)
        return decision

    def on_draw_changed(self, record: Dict) -> Optional[DrawView]:
        view = self._accept(record)
        if view is not None and view.revealed:
            self._reveal(view)
        return view

    def _accept(self, record: Dict, rebind: bool = False) -> Optional[DrawView]:
        view = self._validated(record)
        if view is None:
            return None
        with self._lock:
            current = self.current
            if current is not None and view.id != current.id and not rebind:
                if view.start_timestamp < current.start_timestamp:
                    logger.debug(f"Ignoring older draw {view.id}; watching {current.id}")
                    return None
            self._draw_id = view.id
            if not self._projection.accept(view):
                logger.debug(f"Dropped stale draw {view.id} v{view.version}")
                return self._projection.get(view.id)
        return view

    def _reveal(self, view: DrawView) -> None:
        if not view.revealed:
            return
        with self._lock:
            if view.id in self._revealed:
                return
            self._revealed.add(view.id)
        logger.info(f"Draw {view.id} revealed winner={view.winner_name}")
        self.on_reveal(view)

    def on_request_finalize(self, draw_id) -> Optional[DrawView]:
        """Local animation finished; ask the ledger to settle the draw."""
        view = self.current
        if view is None or view.id != draw_id:
            logger.debug(f"Finalize request for draw {draw_id} ignored; watching {self._draw_id}")
            return None
        if view.revealed:
            self._reveal(view)
            return view
        try:
            record = self.gateway.finalize_draw(draw_id)
        except DrawNotReady as exc:
            self.on_info(str(exc))
            return None
        except LedgerError as exc:
            if exc.expected:
                self.on_info(str(exc))
            else:
                logger.warning(f"[draw-reveal] draw={draw_id} finalize failed: {exc}")
            return None
        except Exception as exc:
            # the server scheduler settles the draw regardless
            logger.warning(f"[draw-reveal] draw={draw_id} unreachable: {exc}")
            return None
        return self.on_draw_changed(record)

    def on_reconnect(self) -> None:
        draw_id = self._draw_id
        if draw_id is None:
            return
        try:
            record = self.gateway.fetch_draw(draw_id)
        except LedgerError as exc:
            logger.warning(f"Reconnect refetch of draw {draw_id} failed: {exc}")
            return
        view = self.on_draw_changed(record)
        if view is not None and not view.revealed:
            if signed_remaining(view.start_timestamp, view.duration_seconds, self._now()) <= 0:
                self.on_request_finalize(view.id)
