"""Read-only projections of ledger records.

The wire records produced by ``to_dict`` on the ledger models are parsed into
frozen views here. A client never edits a view; it replaces it with the next
authoritative record, and ``Projection`` drops records that arrive out of
order by comparing ``version``.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional
import enum

from bhishi.errors import InvariantViolation
from bhishi.sync.clock import parse_instant


class RoundStatus(str, enum.Enum):
    """Bidding round lifecycle, a total order: no backward transitions."""
    OPEN = 'open'
    ACTIVE = 'active'
    CLOSED = 'closed'
    COMPLETED = 'completed'


class DrawState(str, enum.Enum):
    UNREVEALED = 'unrevealed'
    REVEALED = 'revealed'

    @classmethod
    def of(cls, revealed):
        return cls.REVEALED if revealed else cls.UNREVEALED


def _instant(value) -> Optional[datetime]:
    return parse_instant(value) if value is not None else None


@dataclass(frozen=True)
class RoundView:
    id: int
    group_id: int
    round_number: int
    status: RoundStatus
    start_time: datetime
    end_time: Optional[datetime]
    minimum_bid: int
    prize_amount: int
    winner_id: Optional[int]
    winner_name: Optional[str]
    winning_bid: Optional[int]
    current_lowest_bid: Optional[int]
    total_bids: int
    version: int
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Dict) -> 'RoundView':
        return cls(
            id=record['id'],
            group_id=record['group_id'],
            round_number=record['round_number'],
            status=RoundStatus(record['status']),
            start_time=parse_instant(record['start_time']),
            end_time=_instant(record.get('end_time')),
            minimum_bid=record.get('minimum_bid', 0),
            prize_amount=record.get('prize_amount', 0),
            winner_id=record.get('winner_id'),
            winner_name=record.get('winner_name'),
            winning_bid=record.get('winning_bid'),
            current_lowest_bid=record.get('current_lowest_bid'),
            total_bids=record.get('total_bids', 0),
            version=record.get('version', 0),
            updated_at=_instant(record.get('updated_at')),
        )

    @property
    def settled(self) -> bool:
        return self.status is RoundStatus.COMPLETED

    def check_invariants(self) -> None:
        if self.winner_id is not None and self.status is not RoundStatus.COMPLETED:
            raise InvariantViolation(f"Round {self.id} has winner {self.winner_id} while {self.status.value}")


@dataclass(frozen=True)
class DrawView:
    id: int
    group_id: int
    round_number: int
    start_timestamp: datetime
    duration_seconds: int
    revealed: bool
    winner_member_id: Optional[int]
    winner_name: Optional[str]
    prize_amount: int
    version: int

    @classmethod
    def from_record(cls, record: Dict) -> 'DrawView':
        return cls(
            id=record['id'],
            group_id=record['group_id'],
            round_number=record.get('round_number', 0),
            start_timestamp=parse_instant(record['start_timestamp']),
            duration_seconds=record['duration_seconds'],
            revealed=bool(record['revealed']),
            winner_member_id=record.get('winner_member_id'),
            winner_name=record.get('winner_name'),
            prize_amount=record.get('prize_amount', 0),
            version=record.get('version', 0),
        )

    @property
    def state(self) -> DrawState:
        return DrawState.of(self.revealed)

    @property
    def deadline(self) -> datetime:
        return self.start_timestamp + timedelta(seconds=self.duration_seconds)

    def check_invariants(self) -> None:
        if self.revealed and not self.winner_name:
            raise InvariantViolation(f"Draw {self.id} is revealed without a winner")
        if not self.revealed and self.winner_name:
            raise InvariantViolation(f"Draw {self.id} exposes a winner before reveal")


class Projection:
    """Latest accepted view per record id."""

    def __init__(self):
        self._views = {}

    def get(self, record_id):
        return self._views.get(record_id)

    def accept(self, view) -> bool:
        """Store ``view`` unless an equal or newer version is already held."""
        current = self._views.get(view.id)
        if current is not None and view.version <= current.version:
            return False
        self._views[view.id] = view
        return True
