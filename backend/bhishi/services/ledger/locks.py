"""Concurrency primitives for ledger writes.

Two layers guard every lifecycle transition:

1. ``SELECT ... FOR UPDATE`` row locks serialize writers on databases that
   support them (PostgreSQL). SQLite ignores the clause.
2. ``compare_and_set`` issues ``UPDATE ... WHERE <expected state>`` and
   reports whether this caller's statement matched the row. Exactly one
   concurrent caller sees True; everyone else re-reads the settled record.
"""
from functools import wraps
import logging

from bhishi import db
from bhishi.errors import LedgerError, RoundNotFound, DrawNotFound
from bhishi.models import BidRound, Draw

logger = logging.getLogger(__name__)


def transactional(func):
    """Commit on success; roll back and re-raise on any failure.

    Do not commit inside the wrapped function.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            result = func(*args, **kwargs)
            db.session.commit()
            return result
        except LedgerError as e:
            level = logging.INFO if e.expected else logging.WARNING
            logger.log(level, f"{func.__name__} rejected: {e}")
            db.session.rollback()
            raise
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.session.rollback()
            raise

    return wrapper


def lock_round(round_id) -> BidRound:
    """Load a round under a row lock, refreshing any cached instance."""
    rnd = (
        BidRound.query.filter(BidRound.id == round_id)
        .with_for_update(nowait=False)
        .populate_existing()
        .first()
    )
    if not rnd:
        raise RoundNotFound(round_id)
    return rnd


def lock_draw(draw_id) -> Draw:
    draw = (
        Draw.query.filter(Draw.id == draw_id)
        .with_for_update(nowait=False)
        .populate_existing()
        .first()
    )
    if not draw:
        raise DrawNotFound(draw_id)
    return draw


def compare_and_set(model, record_id, expected: dict, values: dict) -> bool:
    """Apply ``values`` only if every column in ``expected`` still matches.

    Bumps ``version`` alongside. Returns True when this call won the row.
    """
    conditions = [model.id == record_id]
    conditions.extend(getattr(model, column) == value for column, value in expected.items())
    stmt = (
        db.update(model)
        .where(*conditions)
        .values(version=model.version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def reload(model, record_id):
    """Re-read a row after a bulk update so the session reflects it."""
    return db.session.get(model, record_id, populate_existing=True)
