"""Lucky draw operations.

The winner is chosen when the draw is created and kept out of the wire
record until reveal, so revealing is purely a timing event and can never
change the outcome.
"""
from typing import Optional, Tuple
import logging

from flask import current_app

from bhishi import db
from bhishi.errors import (
    DrawNotFound,
    DrawNotReady,
    DrawInProgress,
    NoEligibleMembers,
    InvalidDuration,
)
from bhishi.models import Draw, DrawHistory, Member
from bhishi.sync.clock import utcnow, signed_remaining
from .locks import transactional, lock_draw, compare_and_set, reload
from .resolver import pick_random_member
from .rounds import get_group, advance_group_round
from .feed import publish_draw

logger = logging.getLogger(__name__)

ELIGIBLE_MEMBER_STATUSES = ('active', 'pending')


def eligible_members(group_id):
    """Members who have not yet won, registered or not."""
    return (
        Member.query.filter(
            Member.group_id == group_id,
            Member.has_won.is_(False),
            Member.status.in_(ELIGIBLE_MEMBER_STATUSES),
        )
        .order_by(Member.id)
        .all()
    )


@transactional
def _create_draw_tx(group_id, duration_seconds, rng) -> Draw:
    group = get_group(group_id)
    if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, int) or duration_seconds <= 0:
        raise InvalidDuration(duration_seconds)

    pending = Draw.query.filter_by(group_id=group_id, revealed=False).first()
    if pending:
        raise DrawInProgress(group_id, pending.id)

    candidates = eligible_members(group_id)
    if not candidates:
        raise NoEligibleMembers(group_id)
    winner = pick_random_member(candidates, rng)

    last_number = db.session.query(db.func.max(Draw.round_number)).filter(
        Draw.group_id == group_id
    ).scalar() or 0
    draw = Draw(
        group_id=group_id,
        round_number=max(last_number, group.current_round) + 1,
        start_timestamp=utcnow(),
        duration_seconds=duration_seconds,
        revealed=False,
        prize_amount=group.monthly_amount * len(group.members),
        selected_member_id=winner.id,
        selected_name=winner.name,
        version=1,
    )
    db.session.add(draw)
    db.session.flush()
    return draw


def create_draw(group_id, duration_seconds: Optional[int] = None, rng=None) -> Draw:
    """Start a draw now, with the winner fixed at this moment."""
    if duration_seconds is None:
        duration_seconds = int(current_app.config.get('DRAW_DURATION_SEC', 60))
    draw = _create_draw_tx(group_id, duration_seconds, rng)
    logger.info(f"Draw {draw.id} started for group {group_id} duration={draw.duration_seconds}s")
    publish_draw(draw)
    return draw


@transactional
def _finalize_draw_tx(draw_id, tolerance) -> Tuple[Draw, bool]:
    draw = lock_draw(draw_id)
    if draw.revealed:
        return draw, False

    now = utcnow()
    early_by = signed_remaining(draw.start_timestamp, draw.duration_seconds, now) - tolerance
    if early_by > 0:
        raise DrawNotReady(draw_id, early_by)

    selected_id, selected_name = draw.selected_member_id, draw.selected_name
    won = compare_and_set(
        Draw, draw_id,
        {'revealed': False},
        {
            'revealed': True,
            'winner_member_id': selected_id,
            'winner_name': selected_name,
            'revealed_at': now,
        },
    )
    draw = reload(Draw, draw_id)
    if won:
        db.session.add(DrawHistory(
            group_id=draw.group_id,
            draw_id=draw.id,
            round_number=draw.round_number,
            winner_member_id=selected_id,
            winner_name=selected_name,
            amount=draw.prize_amount,
        ))
        member = db.session.get(Member, selected_id)
        member.has_won = True
        advance_group_round(draw.group_id, draw.round_number)
    return draw, won


def finalize_draw(draw_id) -> Draw:
    """Idempotently reveal a draw whose countdown has (nearly) run out."""
    tolerance = float(current_app.config.get('REVEAL_TOLERANCE_SEC', 1.5))
    draw, transitioned = _finalize_draw_tx(draw_id, tolerance)
    if transitioned:
        logger.info(f"Draw {draw_id} revealed winner={draw.winner_name}")
        publish_draw(draw)
    return draw


def get_draw(draw_id) -> Draw:
    draw = db.session.get(Draw, draw_id)
    if not draw:
        raise DrawNotFound(draw_id)
    return draw


def latest_draw(group_id) -> Optional[Draw]:
    get_group(group_id)
    return Draw.query.filter_by(group_id=group_id).order_by(Draw.start_timestamp.desc(), Draw.id.desc()).first()


def draw_history(group_id):
    get_group(group_id)
    return DrawHistory.query.filter_by(group_id=group_id).order_by(DrawHistory.round_number.desc()).all()
