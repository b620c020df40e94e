"""Clock reconciliation.

The ledger stamps every round and draw with its own start instant. Clients
use their local clock only to measure how much wall time has passed since
that shared epoch, so every device arrives at the same remaining time no
matter when it received the record.
"""
from collections import namedtuple
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Union

Instant = Union[str, datetime]

TimeLeft = namedtuple('TimeLeft', ['hours', 'minutes', 'seconds', 'total'])


def utcnow() -> datetime:
    """Naive UTC now, the representation stored by the ledger."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_instant(value: Instant) -> datetime:
    """Return an aware UTC datetime; naive inputs are taken to be UTC."""
    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_ledger_time(value: Instant) -> datetime:
    """Naive UTC, as stored in ledger columns."""
    return parse_instant(value).replace(tzinfo=None)


def seconds_between(start: Instant, end: Instant) -> float:
    return (parse_instant(end) - parse_instant(start)).total_seconds()


def remaining_seconds(start: Instant, duration_seconds: float, now: Instant) -> float:
    """max(0, duration - elapsed since the ledger's start instant)."""
    elapsed = seconds_between(start, now)
    return max(0.0, float(duration_seconds) - elapsed)


def signed_remaining(start: Instant, duration_seconds: float, now: Instant) -> float:
    """Like remaining_seconds but negative once the deadline has passed."""
    return float(duration_seconds) - seconds_between(start, now)


def time_left(deadline: Optional[Instant], now: Instant) -> Optional[TimeLeft]:
    """Split the time until ``deadline`` for countdown text; None once expired."""
    if deadline is None:
        return None
    total = seconds_between(now, deadline)
    if total <= 0:
        return None
    whole = int(total)
    return TimeLeft(whole // 3600, (whole % 3600) // 60, whole % 60, total)


@dataclass(frozen=True)
class Timing:
    """Tunable tolerance windows. Defaults match ``config.Config``."""
    near_end_threshold: float = 1.5
    late_join_window: float = 120.0
    recent_reveal_tolerance: float = 5.0
    ending_soon_warning: float = 300.0
    poll_interval: float = 30.0

    @classmethod
    def from_config(cls, config) -> 'Timing':
        return cls(
            near_end_threshold=float(config.get('NEAR_END_THRESHOLD_SEC', cls.near_end_threshold)),
            late_join_window=float(config.get('LATE_JOIN_WINDOW_SEC', cls.late_join_window)),
            recent_reveal_tolerance=float(config.get('RECENT_REVEAL_TOLERANCE_SEC', cls.recent_reveal_tolerance)),
            ending_soon_warning=float(config.get('ENDING_SOON_WARNING_SEC', cls.ending_soon_warning)),
            poll_interval=float(config.get('AUTO_CLOSE_POLL_SEC', cls.poll_interval)),
        )


def near_end(remaining: float, timing: Timing = Timing()) -> bool:
    """True when too little time is left for the countdown to be worth animating."""
    return remaining < timing.near_end_threshold


class ClockReconciler:
    """Remaining-time arithmetic bound to an injectable clock."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def now(self) -> datetime:
        return parse_instant(self.clock())

    def until(self, deadline: Instant) -> float:
        """Signed seconds until ``deadline``."""
        return seconds_between(self.now(), deadline)

    def time_left(self, deadline: Optional[Instant]) -> Optional[TimeLeft]:
        return time_left(deadline, self.now())
