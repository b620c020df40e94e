from datetime import datetime, timedelta

import pytest

from bhishi.services.ledger import draws, rounds
from bhishi.sync.clock import Timing, to_iso
from bhishi.sync.gateway import AppLedgerGateway
from bhishi.sync.monitor import AutoCloseMonitor
from bhishi.sync.reconcile import LateJoinAction, LateJoinReconciler, classify_draw, classify_round
from bhishi.sync.records import DrawView, RoundView


NOW = datetime(2026, 3, 1, 12, 0, 0)


def draw_view(started_ago, duration=60, revealed=False):
    return DrawView.from_record({
        'id': 1,
        'group_id': 1,
        'round_number': 1,
        'start_timestamp': to_iso(NOW - timedelta(seconds=started_ago)),
        'duration_seconds': duration,
        'revealed': revealed,
        'winner_member_id': 2 if revealed else None,
        'winner_name': 'Bharat' if revealed else None,
        'prize_amount': 4000,
        'version': 2 if revealed else 1,
    })


def round_view(status, deadline_in=None, updated_ago=0):
    return RoundView.from_record({
        'id': 1,
        'group_id': 1,
        'round_number': 1,
        'status': status,
        'start_time': to_iso(NOW - timedelta(days=1)),
        'end_time': to_iso(NOW + timedelta(seconds=deadline_in)) if deadline_in is not None else None,
        'minimum_bid': 0,
        'prize_amount': 4000,
        'winner_id': 2 if status == 'completed' else None,
        'winner_name': 'Bharat' if status == 'completed' else None,
        'winning_bid': 300 if status == 'completed' else None,
        'current_lowest_bid': None,
        'total_bids': 0,
        'version': 3,
        'updated_at': to_iso(NOW - timedelta(seconds=updated_ago)),
    })


# ============ Draws ============

def test_running_draw_resumes_with_remaining_time():
    decision = classify_draw(draw_view(started_ago=40), NOW)
    assert decision.action is LateJoinAction.RESUME_COUNTDOWN
    assert decision.remaining == pytest.approx(20.0)
    assert not decision.skip_animation


def test_nearly_finished_draw_skips_animation():
    decision = classify_draw(draw_view(started_ago=59.5), NOW)
    assert decision.action is LateJoinAction.RESUME_COUNTDOWN
    assert decision.skip_animation


def test_recently_revealed_draw_shows_result():
    decision = classify_draw(draw_view(started_ago=63, revealed=True), NOW)
    assert decision.action is LateJoinAction.SHOW_RESULT


def test_old_reveal_is_ignored():
    assert classify_draw(draw_view(started_ago=70, revealed=True), NOW).action is LateJoinAction.IGNORE


def test_stale_unrevealed_draw_is_ignored():
    assert classify_draw(draw_view(started_ago=600), NOW).action is LateJoinAction.IGNORE


def test_expired_unrevealed_draw_awaits_reveal():
    decision = classify_draw(draw_view(started_ago=65), NOW)
    assert decision.action is LateJoinAction.AWAIT_REVEAL


def test_windows_are_configurable():
    timing = Timing(late_join_window=30)
    assert classify_draw(draw_view(started_ago=40), NOW, timing).action is LateJoinAction.IGNORE


# ============ Rounds ============

def test_active_round_resumes_countdown():
    decision = classify_round(round_view('active', deadline_in=90), NOW)
    assert decision.action is LateJoinAction.RESUME_COUNTDOWN
    assert decision.remaining == pytest.approx(90.0)


def test_expired_active_round_awaits_close():
    assert classify_round(round_view('active', deadline_in=-10), NOW).action is LateJoinAction.AWAIT_REVEAL
    assert classify_round(round_view('active', deadline_in=-600), NOW).action is LateJoinAction.AWAIT_REVEAL
    assert classify_round(round_view('active', deadline_in=-86400), NOW).action is LateJoinAction.AWAIT_REVEAL


def test_round_results():
    assert classify_round(round_view('completed', updated_ago=2), NOW).action is LateJoinAction.SHOW_RESULT
    assert classify_round(round_view('completed', updated_ago=3600), NOW).action is LateJoinAction.IGNORE
    assert classify_round(round_view('open', deadline_in=90), NOW).action is LateJoinAction.IGNORE
    assert classify_round(round_view('closed'), NOW).action is LateJoinAction.AWAIT_REVEAL


# ============ Focus against the ledger ============

def test_focus_hands_expired_round_to_monitor(flask_app, group, ledger_clock):
    rnd = rounds.create_round(group.id, deadline=ledger_clock() + timedelta(seconds=30))
    rounds.start_round(rnd.id)
    rounds.place_bid(rnd.id, group.members['Asha'], 310)
    ledger_clock.advance(45)

    gateway = AppLedgerGateway(flask_app)
    closed = []
    monitor = AutoCloseMonitor(gateway, clock=ledger_clock, poll=False, on_round_closed=closed.append)
    result = LateJoinReconciler(gateway, clock=ledger_clock, monitor=monitor).on_focus(group.id)

    assert result.round_decision.action is LateJoinAction.AWAIT_REVEAL
    assert result.draw is None
    assert [v.winner_name for v in closed] == ['Asha']


def test_long_overdue_round_is_still_closed_on_focus(flask_app, group, ledger_clock):
    rnd = rounds.create_round(group.id, deadline=ledger_clock() + timedelta(seconds=30))
    rounds.start_round(rnd.id)
    rounds.place_bid(rnd.id, group.members['Bharat'], 420)
    ledger_clock.advance(630)

    gateway = AppLedgerGateway(flask_app)
    closed = []
    monitor = AutoCloseMonitor(gateway, clock=ledger_clock, poll=False, on_round_closed=closed.append)
    result = LateJoinReconciler(gateway, clock=ledger_clock, monitor=monitor).on_focus(group.id)

    assert result.round_decision.action is LateJoinAction.AWAIT_REVEAL
    assert monitor.current.status.value == 'completed'
    assert [v.winner_name for v in closed] == ['Bharat']
    assert rounds.get_round(rnd.id).status == 'completed'


def test_focus_without_records(flask_app, group, fake_clock):
    result = LateJoinReconciler(AppLedgerGateway(flask_app), clock=fake_clock).on_focus(group.id)
    assert result.round is None
    assert result.round_decision.action is LateJoinAction.IGNORE
    assert result.draw_decision.action is LateJoinAction.IGNORE


def test_focus_reports_running_draw(flask_app, group, ledger_clock):
    draw = draws.create_draw(group.id, duration_seconds=60)
    ledger_clock.advance(40)
    result = LateJoinReconciler(AppLedgerGateway(flask_app), clock=ledger_clock).on_focus(group.id)
    assert result.draw.id == draw.id
    assert result.draw_decision.action is LateJoinAction.RESUME_COUNTDOWN
    assert result.draw_decision.remaining == pytest.approx(20.0)
