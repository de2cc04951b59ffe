import os
import sys
import pytest

# Ensure the backend root (containing the `arena` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from arena import create_app, socketio
from arena.services.games.scheduler import TimeoutSupervisor, TimerTable
from arena.sessions import SessionStore


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SOCKETIO_NAMESPACE = '/ws'
    CORS_ALLOWED_ORIGINS = '*'
    PORT = 3001
    JOIN_TIMEOUT_SEC = 60
    MOVE_TIMEOUT_SEC = 30
    MATCH_START_DELAY_SEC = 0
    ENABLE_TIMERS = False


class RecordingEmitter:
    """Collects (event, payload, to) triples instead of sending them."""

    def __init__(self):
        self.sent = []

    def __call__(self, event, payload, to):
        self.sent.append((event, payload, to))

    def events_for(self, to):
        return [(e, p) for e, p, t in self.sent if t == to]

    def names_for(self, to):
        return [e for e, _, t in self.sent if t == to]

    def count(self, event, to=None):
        return sum(1 for e, _, t in self.sent if e == event and (to is None or t == to))

    def clear(self):
        self.sent.clear()


@pytest.fixture()
def emitter():
    return RecordingEmitter()


@pytest.fixture()
def timers():
    # Nothing fires on its own; tests expire timers with timers.fire()
    return TimerTable(autostart=False)


@pytest.fixture()
def supervisor(timers, emitter):
    return TimeoutSupervisor(timers, emitter, join_timeout=60, move_timeout=30, start_delay=0)


@pytest.fixture()
def store(supervisor):
    return SessionStore(supervisor)


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        yield application


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def arena(flask_app):
    return flask_app.extensions['arena']


@pytest.fixture()
def sio_factory(flask_app):
    """Create Socket.IO test clients connected to /ws; all are disconnected afterwards."""
    created = []

    def make():
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws'
        )
        test_client.get_received('/ws')  # flush 'connected'
        created.append(test_client)
        return test_client

    yield make
    for test_client in created:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except RuntimeError:
            pass


@pytest.fixture()
def sio_client(sio_factory):
    return sio_factory()
