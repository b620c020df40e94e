"""Late-joiner reconciliation.

A client that opens a group screen, or comes back from the background,
missed every feed event in between. It fetches the latest round and draw
and decides from the ledger timestamps alone whether to resume a countdown,
show a result that just happened, wait for the ledger to settle, or do
nothing.
"""
from collections import namedtuple
from datetime import datetime
from typing import Callable, Dict, Optional
import enum
import logging

from bhishi.errors import LedgerError
from bhishi.sync.clock import Timing, near_end, parse_instant, seconds_between, signed_remaining, utcnow
from bhishi.sync.gateway import LedgerGateway
from bhishi.sync.records import DrawView, RoundView, RoundStatus

logger = logging.getLogger(__name__)


class LateJoinAction(str, enum.Enum):
    IGNORE = 'ignore'
    RESUME_COUNTDOWN = 'resume_countdown'
    SHOW_RESULT = 'show_result'
    AWAIT_REVEAL = 'await_reveal'


Decision = namedtuple('Decision', ['action', 'remaining', 'skip_animation'])

IGNORE = Decision(LateJoinAction.IGNORE, None, False)


def classify_draw(view: DrawView, now: datetime, timing: Timing = Timing()) -> Decision:
    age = seconds_between(view.start_timestamp, now)
    if age > timing.late_join_window:
        return IGNORE
    remaining = signed_remaining(view.start_timestamp, view.duration_seconds, now)
    if not view.revealed:
        if remaining > 0:
            return Decision(LateJoinAction.RESUME_COUNTDOWN, remaining, near_end(remaining, timing))
        return Decision(LateJoinAction.AWAIT_REVEAL, 0.0, True)
    if remaining > -timing.recent_reveal_tolerance:
        return Decision(LateJoinAction.SHOW_RESULT, 0.0, True)
    return IGNORE


def classify_round(view: RoundView, now: datetime, timing: Timing = Timing()) -> Decision:
    """Rounds run for days, so staleness is measured from the deadline, not the start."""
    if view.status is RoundStatus.COMPLETED:
        settled_at = view.updated_at or view.end_time
        if settled_at is not None and seconds_between(settled_at, now) < timing.recent_reveal_tolerance:
            return Decision(LateJoinAction.SHOW_RESULT, 0.0, True)
        return IGNORE
    if view.status is RoundStatus.OPEN:
        return IGNORE
    if view.status is RoundStatus.CLOSED:
        # waiting on an administrator to settle it
        return Decision(LateJoinAction.AWAIT_REVEAL, 0.0, True)
    if view.end_time is None:
        return Decision(LateJoinAction.RESUME_COUNTDOWN, None, False)
    remaining = seconds_between(now, view.end_time)
    if remaining > 0:
        return Decision(LateJoinAction.RESUME_COUNTDOWN, remaining, near_end(remaining, timing))
    # still active past its deadline, however long ago: it needs closing
    return Decision(LateJoinAction.AWAIT_REVEAL, 0.0, True)


FocusResult = namedtuple('FocusResult', ['round', 'round_decision', 'draw', 'draw_decision'])


class LateJoinReconciler:
    """Runs on focus and on reconnect.

    When a monitor or a reveal coordinator is attached, the fetched records
    are handed to them so countdowns resume and pending settlements are
    requested without the caller wiring each case.
    """

    def __init__(self, gateway: LedgerGateway, timing: Timing = Timing(),
                 clock: Callable[[], datetime] = utcnow, monitor=None, coordinator=None):
        self.gateway = gateway
        self.timing = timing
        self.clock = clock
        self.monitor = monitor
        self.coordinator = coordinator

    def _now(self) -> datetime:
        return parse_instant(self.clock())

    def _fetch(self, fetch, group_id) -> Optional[Dict]:
        try:
            return fetch(group_id)
        except LedgerError as exc:
            logger.warning(f"Late-join fetch for group {group_id} failed: {exc}")
            return None

    def on_focus(self, group_id) -> FocusResult:
        now = self._now()
        round_view = draw_view = None
        round_decision = draw_decision = IGNORE

        round_record = self._fetch(self.gateway.latest_round, group_id)
        if round_record:
            round_view = RoundView.from_record(round_record)
            round_decision = classify_round(round_view, now, self.timing)
            logger.info(f"Late join group={group_id} round={round_view.id} -> {round_decision.action.value}")
            if self.monitor is not None and round_decision.action is not LateJoinAction.IGNORE:
                self.monitor.watch(round_record)

        draw_record = self._fetch(self.gateway.latest_draw, group_id)
        if draw_record:
            draw_view = DrawView.from_record(draw_record)
            draw_decision = classify_draw(draw_view, now, self.timing)
            logger.info(f"Late join group={group_id} draw={draw_view.id} -> {draw_decision.action.value}")
            if self.coordinator is not None and draw_decision.action is not LateJoinAction.IGNORE:
                self.coordinator.begin(draw_record, draw_decision)

        return FocusResult(round_view, round_decision, draw_view, draw_decision)

    on_reconnect = on_focus
