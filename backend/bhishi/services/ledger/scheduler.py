from contextlib import nullcontext
from typing import Set, Tuple

from flask import current_app, has_app_context
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError

from bhishi import db, socketio
from bhishi.errors import LedgerError
from bhishi.models import BidRound, Draw, RoundStatus
from bhishi.sync.clock import utcnow, seconds_between, signed_remaining
from . import rounds as round_ledger
from . import draws as draw_ledger


_scheduled_keys: Set[Tuple[str, int]] = set()


def _scheduler_disabled(app) -> bool:
    return bool(app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'))


def _sleep(app, kind: str, record_id: int, delay: float) -> None:
    """Sleep ``delay`` seconds, logging a heartbeat if TIMER_HEARTBEAT_SEC is set."""
    hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0))
    if hb > 0:
        slept = 0.0
        while slept < delay:
            step = min(hb, delay - slept)
            socketio.sleep(step)
            slept += step
            app.logger.info(f"[timer-heartbeat] {kind}={record_id} remaining={max(0.0, delay - slept):.1f}s")
    elif delay > 0:
        socketio.sleep(delay)


def _context(app):
    # Synchronous test runs happen inside a request; share its session
    if has_app_context() and current_app._get_current_object() is app:
        return nullcontext()
    return app.app_context()


def _launch(app, worker, *args) -> None:
    if app.config.get('TESTING'):
        worker(*args)
    else:
        socketio.start_background_task(worker, *args)


def schedule_round_close(app, round_id: int) -> None:
    """Close an active round once its deadline passes.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - Ensures a single timer per round
    - The worker calls the idempotent close, so it is harmless if a client
      watchdog got there first
    """
    if _scheduler_disabled(app):
        return

    with _context(app):
        rnd = db.session.get(BidRound, round_id)
        if not rnd or rnd.state is not RoundStatus.ACTIVE or rnd.end_time is None:
            return
        key = ('round', rnd.id)
        if key in _scheduled_keys:
            app.logger.info(f"[timer-skip] round={rnd.id} already scheduled")
            return
        _scheduled_keys.add(key)
        delay = max(0.0, seconds_between(utcnow(), rnd.end_time))
        app.logger.info(f"[timer-set] round={rnd.id} deadline={rnd.end_time} delay={delay:.1f}s")

    def _worker(rid: int, wait: float):
        _sleep(app, 'round', rid, wait)
        with _context(app):
            _scheduled_keys.discard(('round', rid))
            rnd = db.session.get(BidRound, rid)
            if not rnd or rnd.state is not RoundStatus.ACTIVE:
                app.logger.info(f"[timer-abort] round={rid} no longer active")
                return
            try:
                closed = round_ledger.close_round(rid)
            except LedgerError as exc:
                app.logger.warning(f"[auto-close] round={rid} failed: {exc}")
                return
            app.logger.info(f"[auto-close] round={rid} status={closed.status} winner={closed.winner_id}")

    _launch(app, _worker, round_id, delay)


def schedule_draw_reveal(app, draw_id: int) -> None:
    """Reveal a draw shortly after its countdown ends if no client has."""
    if _scheduler_disabled(app):
        return

    with _context(app):
        draw = db.session.get(Draw, draw_id)
        if not draw or draw.revealed:
            return
        key = ('draw', draw.id)
        if key in _scheduled_keys:
            app.logger.info(f"[timer-skip] draw={draw.id} already scheduled")
            return
        _scheduled_keys.add(key)
        grace = float(app.config.get('DRAW_REVEAL_GRACE_SEC', 3))
        remaining = signed_remaining(draw.start_timestamp, draw.duration_seconds, utcnow())
        delay = max(0.0, remaining + grace)
        app.logger.info(f"[timer-set] draw={draw.id} delay={delay:.1f}s")

    def _worker(did: int, wait: float):
        _sleep(app, 'draw', did, wait)
        with _context(app):
            _scheduled_keys.discard(('draw', did))
            try:
                draw = draw_ledger.finalize_draw(did)
            except LedgerError as exc:
                app.logger.warning(f"[draw-reveal] draw={did} failed: {exc}")
                return
            app.logger.info(f"[draw-reveal] draw={did} revealed={draw.revealed} winner={draw.winner_name}")

    _launch(app, _worker, draw_id, delay)


def resume_pending_timers(app) -> int:
    """Re-arm timers for every active round and unrevealed draw, e.g. after a restart."""
    if _scheduler_disabled(app):
        return 0
    with _context(app):
        round_ids = [r.id for r in BidRound.query.filter(
            BidRound.status == RoundStatus.ACTIVE.value, BidRound.end_time.isnot(None)
        ).all()]
        draw_ids = [d.id for d in Draw.query.filter_by(revealed=False).all()]
    for rid in round_ids:
        schedule_round_close(app, rid)
    for did in draw_ids:
        schedule_draw_reveal(app, did)
    app.logger.info(f"[timer-resume] rounds={len(round_ids)} draws={len(draw_ids)}")
    return len(round_ids) + len(draw_ids)


def reset_schedule() -> None:
    _scheduled_keys.clear()


def resume_timers_on_startup(app) -> int:
    """Called from ``create_app`` so every launch path re-arms timers.

    Skipped until migrations have created the ledger tables.
    """
    if _scheduler_disabled(app):
        return 0
    with app.app_context():
        try:
            ready = inspect(db.engine).has_table(BidRound.__tablename__)
        except OperationalError as exc:
            app.logger.warning(f"[timer-resume] database unavailable, timers not re-armed: {exc}")
            return 0
    if not ready:
        app.logger.info("[timer-resume] ledger tables missing; run migrations first")
        return 0
    return resume_pending_timers(app)
