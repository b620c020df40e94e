"""Bidding round operations.

Lifecycle: open -> active -> closed -> completed, never backwards.
Automatic closure folds closed and completed into one conditional update so
there is no window where a round is closed without a winner; the separate
``closed`` status only exists for administrators who defer the winner.
"""
from datetime import datetime
from typing import Optional, Tuple
import logging

from bhishi import db
from bhishi.errors import (
    GroupNotFound,
    MemberNotInGroup,
    InvalidTransition,
    RoundNotActive,
    RoundNotFound,
    BidTooLow,
    InvalidBid,
    BidNotFound,
    InvalidDeadline,
)
from bhishi.models import Group, Member, BidRound, MemberBid, RoundStatus
from bhishi.sync.clock import utcnow, to_ledger_time
from .locks import transactional, lock_round, compare_and_set, reload
from .resolver import pick_lowest_bid
from .feed import publish_round

logger = logging.getLogger(__name__)


def get_group(group_id) -> Group:
    group = db.session.get(Group, group_id)
    if not group:
        raise GroupNotFound(group_id)
    return group


def _member_of(group_id, member_id) -> Member:
    member = db.session.get(Member, member_id) if member_id is not None else None
    if not member or member.group_id != group_id:
        raise MemberNotInGroup(member_id, group_id)
    return member


def _validate_amount(amount, field='bid amount'):
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidBid(f"{field} must be a positive integer, got {amount!r}")


def advance_group_round(group_id, round_number) -> bool:
    """Move the group's round counter forward once; later callers no-op."""
    result = db.session.execute(
        db.update(Group)
        .where(Group.id == group_id, Group.current_round < round_number)
        .values(current_round=round_number)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# ============ Create / start ============

@transactional
def _create_round_tx(group_id, deadline, minimum_bid, prize_amount) -> BidRound:
    group = get_group(group_id)
    if isinstance(minimum_bid, bool) or not isinstance(minimum_bid, int) or minimum_bid < 0:
        raise InvalidBid(f"minimum bid must be a non-negative integer, got {minimum_bid!r}")
    if prize_amount is not None:
        _validate_amount(prize_amount, 'prize amount')

    now = utcnow()
    end_time = to_ledger_time(deadline) if deadline is not None else None
    if end_time is not None and end_time <= now:
        raise InvalidDeadline(deadline)

    last_number = db.session.query(db.func.max(BidRound.round_number)).filter(
        BidRound.group_id == group_id
    ).scalar() or 0
    round_number = max(last_number, group.current_round) + 1
    if prize_amount is None:
        prize_amount = group.monthly_amount * len(group.members)

    rnd = BidRound(
        group_id=group_id,
        round_number=round_number,
        status=RoundStatus.OPEN.value,
        start_time=now,
        end_time=end_time,
        minimum_bid=minimum_bid,
        prize_amount=prize_amount,
        total_bids=0,
        version=1,
        created_at=now,
        updated_at=now,
    )
    db.session.add(rnd)
    db.session.flush()
    return rnd


def create_round(group_id, deadline: Optional[datetime] = None, minimum_bid: int = 0,
                 prize_amount: Optional[int] = None) -> BidRound:
    """Create round N+1 for a group in status ``open``."""
    rnd = _create_round_tx(group_id, deadline, minimum_bid, prize_amount)
    logger.info(f"Created round {rnd.round_number} ({rnd.id}) for group {group_id} deadline={rnd.end_time}")
    publish_round(rnd)
    return rnd


@transactional
def _start_round_tx(round_id) -> BidRound:
    rnd = lock_round(round_id)
    if rnd.end_time is not None and rnd.end_time <= utcnow():
        raise InvalidDeadline(rnd.end_time)
    started = compare_and_set(
        BidRound, round_id,
        {'status': RoundStatus.OPEN.value},
        {'status': RoundStatus.ACTIVE.value, 'updated_at': utcnow()},
    )
    rnd = reload(BidRound, round_id)
    if not started:
        raise InvalidTransition('Round', rnd.status, RoundStatus.ACTIVE.value)
    return rnd


def start_round(round_id) -> BidRound:
    """open -> active; anything else is an InvalidTransition."""
    rnd = _start_round_tx(round_id)
    logger.info(f"Round {round_id} is now active")
    publish_round(rnd)
    return rnd


# ============ Bids ============

def _refresh_bid_summary(rnd: BidRound) -> None:
    """Recompute denormalized display fields, guarded on the round still being active."""
    lowest, total = db.session.query(
        db.func.min(MemberBid.bid_amount), db.func.count(MemberBid.id)
    ).filter(MemberBid.round_id == rnd.id, MemberBid.is_active.is_(True)).one()
    updated = compare_and_set(
        BidRound, rnd.id,
        {'status': RoundStatus.ACTIVE.value},
        {'current_lowest_bid': lowest, 'total_bids': total, 'updated_at': utcnow()},
    )
    if not updated:
        # closed underneath us; the transaction rolls back the bid
        current = reload(BidRound, rnd.id)
        raise RoundNotActive(rnd.id, current.status)


def _ensure_accepting_bids(rnd: BidRound) -> None:
    if rnd.state is not RoundStatus.ACTIVE:
        raise RoundNotActive(rnd.id, rnd.status)
    if rnd.end_time is not None and utcnow() >= rnd.end_time:
        raise RoundNotActive(rnd.id, 'expired')


@transactional
def _place_bid_tx(round_id, member_id, amount) -> Tuple[BidRound, MemberBid]:
    _validate_amount(amount)
    rnd = lock_round(round_id)
    _ensure_accepting_bids(rnd)
    if amount < rnd.minimum_bid:
        raise BidTooLow(amount, rnd.minimum_bid)
    member = _member_of(rnd.group_id, member_id)

    now = utcnow()
    superseded = MemberBid.query.filter_by(round_id=round_id, member_id=member.id, is_active=True).all()
    for previous in superseded:
        previous.is_active = False
        previous.superseded_at = now
    bid = MemberBid(
        round_id=round_id,
        member_id=member.id,
        member_name=member.name,
        bid_amount=amount,
        bid_time=now,
        is_active=True,
    )
    db.session.add(bid)
    db.session.flush()
    _refresh_bid_summary(rnd)
    return reload(BidRound, round_id), bid


def place_bid(round_id, member_id, amount) -> MemberBid:
    """Insert a new active bid, deactivating the member's previous one."""
    rnd, bid = _place_bid_tx(round_id, member_id, amount)
    logger.info(f"Bid {bid.id} of {amount} by member {member_id} in round {round_id}; lowest={rnd.current_lowest_bid}")
    publish_round(rnd)
    return bid


@transactional
def _withdraw_bid_tx(round_id, bid_id, member_id) -> BidRound:
    rnd = lock_round(round_id)
    _ensure_accepting_bids(rnd)
    bid = MemberBid.query.filter_by(id=bid_id, round_id=round_id, member_id=member_id, is_active=True).first()
    if not bid:
        raise BidNotFound(bid_id)
    bid.is_active = False
    bid.superseded_at = utcnow()
    db.session.flush()
    _refresh_bid_summary(rnd)
    return reload(BidRound, round_id)


def withdraw_bid(round_id, bid_id, member_id) -> BidRound:
    """Deactivate a member's active bid without replacing it. History is kept."""
    rnd = _withdraw_bid_tx(round_id, bid_id, member_id)
    logger.info(f"Bid {bid_id} withdrawn by member {member_id} in round {round_id}")
    publish_round(rnd)
    return rnd


# ============ Close / complete ============

def _settle(rnd: BidRound, expected: RoundStatus) -> bool:
    """Compute the winner and move ``expected`` -> completed in one statement."""
    active_bids = MemberBid.query.filter_by(round_id=rnd.id, is_active=True).all()
    winner = pick_lowest_bid(active_bids)
    values = {
        'status': RoundStatus.COMPLETED.value,
        'winner_id': winner.member_id if winner else None,
        'winner_name': winner.member_name if winner else None,
        'winning_bid': winner.bid_amount if winner else None,
        'total_bids': len(active_bids),
        'updated_at': utcnow(),
    }
    won = compare_and_set(BidRound, rnd.id, {'status': expected.value}, values)
    if won and winner:
        member = db.session.get(Member, winner.member_id)
        member.has_won = True
        advance_group_round(rnd.group_id, rnd.round_number)
    elif won:
        logger.info(f"Round {rnd.id} completed with no active bids")
    return won


@transactional
def _close_round_tx(round_id, defer_winner) -> Tuple[BidRound, bool]:
    rnd = lock_round(round_id)
    state = rnd.state
    if state is RoundStatus.CLOSED or state is RoundStatus.COMPLETED:
        return rnd, False
    if state is RoundStatus.OPEN:
        target = RoundStatus.CLOSED if defer_winner else RoundStatus.COMPLETED
        raise InvalidTransition('Round', state.value, target.value)
    if defer_winner:
        won = compare_and_set(
            BidRound, round_id,
            {'status': RoundStatus.ACTIVE.value},
            {'status': RoundStatus.CLOSED.value, 'updated_at': utcnow()},
        )
    else:
        won = _settle(rnd, RoundStatus.ACTIVE)
    return reload(BidRound, round_id), won


def close_round(round_id, defer_winner: bool = False) -> BidRound:
    """Idempotently close an active round.

    Already closed or completed rounds come back unchanged. Only the caller
    whose conditional update matched publishes the transition; every caller
    receives the same settled record.
    """
    rnd, transitioned = _close_round_tx(round_id, defer_winner)
    if transitioned:
        logger.info(f"Round {round_id} closed -> {rnd.status} winner={rnd.winner_id} bid={rnd.winning_bid}")
        publish_round(rnd)
    else:
        logger.debug(f"Round {round_id} already {rnd.status}; close is a no-op")
    return rnd


@transactional
def _complete_round_tx(round_id) -> Tuple[BidRound, bool]:
    rnd = lock_round(round_id)
    state = rnd.state
    if state is RoundStatus.COMPLETED:
        return rnd, False
    if state is not RoundStatus.CLOSED:
        raise InvalidTransition('Round', state.value, RoundStatus.COMPLETED.value)
    won = _settle(rnd, RoundStatus.CLOSED)
    return reload(BidRound, round_id), won


def complete_round(round_id) -> BidRound:
    """Settle a manually closed round: closed -> completed, idempotent."""
    rnd, transitioned = _complete_round_tx(round_id)
    if transitioned:
        logger.info(f"Round {round_id} completed winner={rnd.winner_id} bid={rnd.winning_bid}")
        publish_round(rnd)
    return rnd


# ============ Queries ============

def get_round(round_id) -> BidRound:
    rnd = db.session.get(BidRound, round_id)
    if not rnd:
        raise RoundNotFound(round_id)
    return rnd


def latest_round(group_id) -> Optional[BidRound]:
    get_group(group_id)
    return BidRound.query.filter_by(group_id=group_id).order_by(BidRound.round_number.desc()).first()


def list_rounds(group_id):
    get_group(group_id)
    return BidRound.query.filter_by(group_id=group_id).order_by(BidRound.round_number.desc()).all()


def list_bids(round_id, include_inactive: bool = False):
    get_round(round_id)
    query = MemberBid.query.filter_by(round_id=round_id)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    return query.order_by(MemberBid.bid_time, MemberBid.id).all()


def bidding_stats(group_id, member_id) -> dict:
    get_group(group_id)
    _member_of(group_id, member_id)
    rounds = BidRound.query.filter_by(group_id=group_id).all()
    completed = [r for r in rounds if r.state is RoundStatus.COMPLETED]
    winning_bids = [r.winning_bid for r in completed if r.winning_bid is not None]
    member_bids = (
        MemberBid.query.join(BidRound, MemberBid.round_id == BidRound.id)
        .filter(BidRound.group_id == group_id, MemberBid.member_id == member_id)
        .all()
    )
    amounts = [b.bid_amount for b in member_bids]
    return {
        'total_rounds': len(rounds),
        'completed_rounds': len(completed),
        'active_rounds': sum(1 for r in rounds if r.state is RoundStatus.ACTIVE),
        'user_wins': sum(1 for r in completed if r.winner_id == member_id),
        'user_total_bids': len(amounts),
        'average_bid_amount': (sum(amounts) / len(amounts)) if amounts else 0,
        'lowest_successful_bid': min(winning_bids) if winning_bids else None,
        'highest_successful_bid': max(winning_bids) if winning_bids else None,
    }
