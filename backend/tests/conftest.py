import os
import sys
from collections import defaultdict

import pytest

# Ensure the backend root (containing the `spyword` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from spyword import create_app, socketio
from spyword.services.game import SessionRegistry, WordSupplier
from spyword.services.game.scheduler import ScheduledTask
from spyword.socketio_events import NAMESPACE, ConnectionDispatcher

WORDS = ['Airport', 'Bakery', 'Beach', 'Casino', 'Circus', 'Library']


class ManualScheduler:
    """Scheduler double: tasks only run when the test fires them."""

    def __init__(self):
        self.tasks = []

    def call_later(self, delay, callback, label=''):
        task = ScheduledTask(delay, callback, label)
        self.tasks.append(task)
        return task

    @property
    def pending(self):
        return [t for t in self.tasks if t.pending]

    def fire_all(self):
        for task in self.pending:
            task.run()


class FakeTransport:
    """Records what each connection would receive."""

    def __init__(self):
        self.rooms = defaultdict(set)
        self.closed = []
        self.sent = []

    def send(self, sid, name, payload=None):
        self.sent.append((sid, name, payload))

    def broadcast(self, code, name, payload=None):
        for sid in sorted(self.rooms[code]):
            self.sent.append((sid, name, payload))

    def join(self, sid, code):
        self.rooms[code].add(sid)

    def leave(self, sid, code):
        self.rooms[code].discard(sid)

    def close(self, code):
        self.closed.append(code)
        self.rooms.pop(code, None)

    def received(self, sid, name=None):
        return [(n, p) for s, n, p in self.sent if s == sid and (name is None or n == name)]


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    MIN_PLAYERS = 4
    MIN_DURATION_MIN = 5
    MAX_DURATION_MIN = 60
    NICKNAME_MAX_LENGTH = 20
    HOST_DISCONNECT_GRACE_SEC = 0
    TIMER_HEARTBEAT_SEC = 0
    CORS_ORIGINS = ['http://localhost:3000']


@pytest.fixture()
def scheduler():
    return ManualScheduler()


@pytest.fixture()
def words():
    return WordSupplier(WORDS)


@pytest.fixture()
def registry(words, scheduler):
    return SessionRegistry(words, scheduler)


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def dispatcher(registry, transport):
    return ConnectionDispatcher(registry, transport)


@pytest.fixture()
def word_file(tmp_path):
    path = tmp_path / 'word_list.csv'
    path.write_text('\n'.join(f'{w},' for w in WORDS), encoding='utf-8')
    return path


@pytest.fixture()
def flask_app(word_file, scheduler):
    class Config(TestConfig):
        WORD_LIST_PATH = str(word_file)

    application = create_app(Config, scheduler=scheduler)
    with application.app_context():
        yield application


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_connect(flask_app):
    clients = []

    def _connect():
        test_client = socketio.test_client(flask_app, namespace=NAMESPACE)
        clients.append(test_client)
        return test_client

    yield _connect
    for test_client in clients:
        if test_client.is_connected(NAMESPACE):
            test_client.disconnect(namespace=NAMESPACE)
