import threading
from datetime import timedelta

from bhishi import db
from bhishi.models import DrawHistory, Group, Member
from bhishi.services.ledger import draws, rounds

WORKERS = 8


def seed_group(app):
    with app.app_context():
        grp = Group(name='Race Bhishi', monthly_amount=1000, group_type='bidding')
        db.session.add(grp)
        db.session.flush()
        members = {}
        for name in ['Asha', 'Bharat', 'Chitra', 'Deepak']:
            member = Member(group_id=grp.id, name=name)
            db.session.add(member)
            db.session.flush()
            members[name] = member.id
        db.session.commit()
        return grp.id, members


def race(app, operation):
    """Run ``operation`` from WORKERS threads released together, each in its own app context."""
    barrier = threading.Barrier(WORKERS, timeout=30)
    results, errors = [], []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            barrier.wait()
            try:
                outcome = operation()
            except Exception as exc:
                with lock:
                    errors.append(exc)
                return
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(WORKERS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    assert errors == []
    assert len(results) == WORKERS
    return results


def test_concurrent_closes_agree_on_one_result(file_db_app, ledger_clock):
    group_id, members = seed_group(file_db_app)
    with file_db_app.app_context():
        rnd = rounds.create_round(group_id, deadline=ledger_clock() + timedelta(minutes=1))
        rounds.start_round(rnd.id)
        rounds.place_bid(rnd.id, members['Bharat'], 350)
        rounds.place_bid(rnd.id, members['Chitra'], 400)
        round_id = rnd.id
    ledger_clock.advance(61)

    def close():
        closed = rounds.close_round(round_id)
        return closed.status, closed.winner_id, closed.version

    outcomes = set(race(file_db_app, close))
    assert len(outcomes) == 1
    status, winner_id, _ = outcomes.pop()
    assert status == 'completed'
    assert winner_id == members['Bharat']

    with file_db_app.app_context():
        assert db.session.get(Group, group_id).current_round == 1
        assert Member.query.filter_by(group_id=group_id, has_won=True).count() == 1


def test_concurrent_finalizes_reveal_one_winner(file_db_app, ledger_clock):
    group_id, _ = seed_group(file_db_app)
    with file_db_app.app_context():
        draw = draws.create_draw(group_id, duration_seconds=10)
        draw_id, selected = draw.id, draw.selected_name
    ledger_clock.advance(10)

    def finalize():
        revealed = draws.finalize_draw(draw_id)
        return revealed.revealed, revealed.winner_name, revealed.version

    outcomes = set(race(file_db_app, finalize))
    assert len(outcomes) == 1
    revealed, winner_name, _ = outcomes.pop()
    assert revealed
    assert winner_name == selected

    with file_db_app.app_context():
        assert DrawHistory.query.filter_by(draw_id=draw_id).count() == 1
        assert Member.query.filter_by(group_id=group_id, has_won=True).count() == 1
