import threading
from datetime import timedelta

import pytest

from bhishi.errors import InvariantViolation, RoundNotActive
from bhishi.services.ledger import rounds
from bhishi.sync.clock import Timing, to_iso
from bhishi.sync.gateway import AppLedgerGateway, LedgerGateway
from bhishi.sync.monitor import NO_BIDS_MESSAGE, AutoCloseMonitor
from bhishi.sync.timers import CancellationToken, RepeatingTask


class Recorder:
    def __init__(self):
        self.closed = []
        self.warnings = []
        self.info = []

    def monitor(self, gateway, clock, **kwargs):
        return AutoCloseMonitor(
            gateway, clock=clock, poll=False,
            on_round_closed=self.closed.append,
            on_warning=lambda view, seconds: self.warnings.append((view.id, seconds)),
            on_info=self.info.append,
            **kwargs
        )


@pytest.fixture()
def gateway(flask_app):
    return AppLedgerGateway(flask_app)


def start_round(group, clock, seconds):
    rnd = rounds.create_round(group.id, deadline=clock() + timedelta(seconds=seconds))
    return rounds.start_round(rnd.id)


def test_ending_soon_warning_fires_once(group, gateway, ledger_clock):
    rnd = start_round(group, ledger_clock, 240)
    rec = Recorder()
    monitor = rec.monitor(gateway, ledger_clock)
    monitor.watch(rnd.to_dict())

    assert monitor.is_round_expiring()
    left = monitor.get_time_left()
    assert (left.hours, left.minutes, left.seconds) == (0, 4, 0)
    ledger_clock.advance(60)
    monitor.check()
    assert [w[0] for w in rec.warnings] == [rnd.id]
    assert rec.closed == []


def test_no_warning_while_far_from_deadline(group, gateway, ledger_clock):
    rnd = start_round(group, ledger_clock, 3600)
    rec = Recorder()
    monitor = rec.monitor(gateway, ledger_clock)
    monitor.watch(rnd.to_dict())
    assert rec.warnings == []
    assert not monitor.is_round_expiring()


def test_closes_at_zero_and_notifies_once(group, gateway, ledger_clock):
    rnd = start_round(group, ledger_clock, 60)
    rounds.place_bid(rnd.id, group.members['Asha'], 500)
    rounds.place_bid(rnd.id, group.members['Bharat'], 350)
    rec = Recorder()
    monitor = rec.monitor(gateway, ledger_clock)
    monitor.watch(rounds.get_round(rnd.id).to_dict())

    ledger_clock.advance(61)
    monitor.check()
    monitor.check()

    assert len(rec.closed) == 1
    assert rec.closed[0].winner_id == group.members['Bharat']
    assert monitor.get_time_left() is None
    assert rounds.get_round(rnd.id).status == 'completed'


def test_every_watcher_sees_the_same_winner(group, gateway, ledger_clock):
    rnd = start_round(group, ledger_clock, 60)
    rounds.place_bid(rnd.id, group.members['Chitra'], 300)
    first, second = Recorder(), Recorder()
    watchers = [first.monitor(gateway, ledger_clock), second.monitor(gateway, ledger_clock)]
    record = rounds.get_round(rnd.id).to_dict()
    for watcher in watchers:
        watcher.watch(record)

    ledger_clock.advance(60)
    for watcher in watchers:
        watcher.check()

    assert first.closed[0].winner_id == second.closed[0].winner_id == group.members['Chitra']
    assert first.closed[0].version == second.closed[0].version


def test_completion_from_feed_notifies(group, gateway, ledger_clock):
    rnd = start_round(group, ledger_clock, 600)
    stale = rnd.to_dict()
    rec = Recorder()
    monitor = rec.monitor(gateway, ledger_clock)
    monitor.watch(stale)

    closed = rounds.close_round(rnd.id)
    monitor.on_record_changed(closed.to_dict())
    # a late, older push must not resurrect the active round
    assert monitor.on_record_changed(stale) is None

    assert len(rec.closed) == 1
    assert rec.info == [NO_BIDS_MESSAGE]
    assert monitor.current.settled


def test_reconnect_picks_up_missed_close(group, gateway, ledger_clock):
    rnd = start_round(group, ledger_clock, 600)
    rec = Recorder()
    monitor = rec.monitor(gateway, ledger_clock)
    monitor.watch(rnd.to_dict())

    rounds.place_bid(rnd.id, group.members['Deepak'], 410)
    rounds.close_round(rnd.id)
    assert rec.closed == []

    monitor.on_reconnect()
    assert rec.closed[0].winner_name == 'Deepak'


def test_records_for_other_rounds_are_ignored(group, gateway, ledger_clock):
    first = start_round(group, ledger_clock, 600)
    rounds.close_round(first.id)
    second = start_round(group, ledger_clock, 600)
    rec = Recorder()
    monitor = rec.monitor(gateway, ledger_clock)
    monitor.watch(second.to_dict())

    assert monitor.on_record_changed(rounds.get_round(first.id).to_dict()) is None
    assert rec.closed == []
    assert monitor.current.id == second.id


def test_stop_ends_watching(group, gateway, ledger_clock):
    rnd = start_round(group, ledger_clock, 60)
    rec = Recorder()
    monitor = rec.monitor(gateway, ledger_clock)
    monitor.watch(rnd.to_dict())
    monitor.stop()

    ledger_clock.advance(120)
    monitor.check()
    assert rounds.get_round(rnd.id).status == 'active'
    assert monitor.current is None


# ============ Failure handling with a scripted gateway ============

def active_record(clock, version=2, **overrides):
    record = {
        'id': 11,
        'group_id': 1,
        'round_number': 1,
        'status': 'active',
        'start_time': to_iso(clock() - timedelta(hours=1)),
        'end_time': to_iso(clock() - timedelta(seconds=1)),
        'minimum_bid': 0,
        'prize_amount': 4000,
        'winner_id': None,
        'winner_name': None,
        'winning_bid': None,
        'current_lowest_bid': 300,
        'total_bids': 1,
        'version': version,
    }
    record.update(overrides)
    return record


class ScriptedGateway(LedgerGateway):
    def __init__(self, close_results, fetch_result=None):
        self.close_results = list(close_results)
        self.fetch_result = fetch_result
        self.close_calls = 0
        self.fetch_calls = 0

    def close_round(self, round_id):
        self.close_calls += 1
        result = self.close_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def fetch_round(self, round_id):
        self.fetch_calls += 1
        return self.fetch_result

    def latest_round(self, group_id):
        return self.fetch_result

    def fetch_draw(self, draw_id):
        raise AssertionError('monitor does not read draws')

    def finalize_draw(self, draw_id):
        raise AssertionError('monitor does not finalize draws')

    def latest_draw(self, group_id):
        return None


class CloseOnlyGateway(LedgerGateway):
    def close_round(self, round_id):
        return {}


def test_incomplete_gateway_fails_at_construction():
    with pytest.raises(TypeError):
        CloseOnlyGateway()


def test_transient_failure_is_retried_next_tick(fake_clock):
    completed = active_record(fake_clock, version=3, status='completed', winner_id=5, winner_name='Asha', winning_bid=300)
    gateway = ScriptedGateway([ConnectionError('feed down'), InvariantViolation('bad row'), completed])
    rec = Recorder()
    monitor = rec.monitor(gateway, fake_clock)

    monitor.watch(active_record(fake_clock))
    assert rec.closed == []
    monitor.check()
    assert rec.closed == []
    monitor.check()

    assert gateway.close_calls == 3
    assert [v.winner_name for v in rec.closed] == ['Asha']


def test_expected_rejection_is_informational(fake_clock):
    gateway = ScriptedGateway([RoundNotActive(11, 'closed')])
    rec = Recorder()
    monitor = rec.monitor(gateway, fake_clock)
    monitor.watch(active_record(fake_clock))
    assert len(rec.info) == 1
    assert 'not active' in rec.info[0]
    assert rec.closed == []


def test_invariant_violation_triggers_refetch(fake_clock):
    good = active_record(fake_clock, version=4, status='completed', winner_id=5, winner_name='Asha')
    gateway = ScriptedGateway([], fetch_result=good)
    rec = Recorder()
    monitor = rec.monitor(gateway, fake_clock)

    # winner present on a round that is still active
    broken = active_record(fake_clock, version=3, winner_id=5)
    monitor.watch(broken)

    assert gateway.fetch_calls == 1
    assert monitor.current.version == 4
    assert len(rec.closed) == 1


def test_polling_task_ticks_until_cancelled():
    ticks = []
    ticked = threading.Event()

    def tick():
        ticks.append(1)
        if len(ticks) >= 3:
            ticked.set()

    task = RepeatingTask(0.01, tick, CancellationToken(('round', 1)))
    task.start()
    assert ticked.wait(2.0)
    task.cancel()
    assert task.token.cancelled
    assert not task.running


def test_monitor_uses_configured_poll_interval():
    timing = Timing(poll_interval=12)
    monitor = AutoCloseMonitor(LedgerGateway(), timing=timing, poll=False)
    assert monitor.timing.poll_interval == 12
