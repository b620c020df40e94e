import os
import sys
from datetime import timedelta
from types import SimpleNamespace

import pytest

# Ensure the backend root (containing the `bhishi` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from bhishi import create_app, db, socketio
from bhishi.sync.clock import utcnow


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    DRAW_DURATION_SEC = 60
    REVEAL_TOLERANCE_SEC = 1.5
    DRAW_REVEAL_GRACE_SEC = 3


class FakeClock:
    """Callable clock returning naive UTC, moved by hand."""

    def __init__(self, start=None):
        self.current = start or utcnow()

    def __call__(self):
        return self.current

    def advance(self, seconds):
        self.current = self.current + timedelta(seconds=seconds)
        return self.current

    def set(self, value):
        self.current = value


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import bhishi.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def file_db_config(tmp_path):
    """A file-backed SQLite database, shared by connections from several threads."""
    class FileDbConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'ledger.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'timeout': 30}}
    return FileDbConfig


@pytest.fixture()
def file_db_app(file_db_config):
    application = create_app(file_db_config)
    with application.app_context():
        import bhishi.models  # noqa: F401
        db.create_all()
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def clear_scheduled_timers():
    from bhishi.services.ledger.scheduler import reset_schedule
    reset_schedule()
    yield
    reset_schedule()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def group(flask_app):
    """A four-member group paying 1000 a month."""
    from bhishi.models import Group, Member
    grp = Group(name='Test Bhishi', monthly_amount=1000, group_type='bidding')
    db.session.add(grp)
    db.session.flush()
    members = {}
    for name in ['Asha', 'Bharat', 'Chitra', 'Deepak']:
        member = Member(group_id=grp.id, name=name)
        db.session.add(member)
        db.session.flush()
        members[name] = member.id
    db.session.commit()
    return SimpleNamespace(id=grp.id, members=members)


@pytest.fixture()
def fake_clock():
    return FakeClock()


@pytest.fixture()
def ledger_clock(monkeypatch):
    """Freeze the ledger's notion of now; tests move it with ``advance``."""
    clock = FakeClock()
    for module in ('rounds', 'draws', 'scheduler'):
        monkeypatch.setattr(f'bhishi.services.ledger.{module}.utcnow', clock)
    return clock
