import json

import pytest

from backend import RoomStore
from manager import ConnectionManager
from session import ConnectionSession
from signaling import SignalingRouter


class FakeWebSocket:
    """In-memory stand-in for a FastAPI WebSocket"""

    def __init__(self, frames=()):
        self.frames = list(frames)
        self.sent = []
        self.accepted = False
        self.closed = False
        self.fail_sends = False

    async def accept(self):
        self.accepted = True

    async def send_text(self, data):
        if self.fail_sends:
            raise RuntimeError("socket is closed")
        self.sent.append(json.loads(data))

    async def receive(self):
        if not self.frames:
            return {"type": "websocket.disconnect", "code": 1000}
        frame = self.frames.pop(0)
        if isinstance(frame, bytes):
            return {"type": "websocket.receive", "bytes": frame}
        return {"type": "websocket.receive", "text": frame}

    async def close(self, code=1000):
        self.closed = True

    def of_type(self, message_type):
        return [message for message in self.sent if message["type"] == message_type]

    def types(self):
        return [message["type"] for message in self.sent]


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return RoomStore(max_members=2, clock=clock)


@pytest.fixture
def connections():
    return ConnectionManager()


@pytest.fixture
def router(store, connections):
    return SignalingRouter(store, connections)


@pytest.fixture
def connect(connections):
    """Register a fake socket under a connection id and return it"""
    def _connect(connection_id):
        websocket = FakeWebSocket()
        connections.register(connection_id, websocket)
        return websocket
    return _connect


@pytest.fixture
def make_session(store, router, connections):
    """Build a ConnectionSession whose socket is already registered"""
    def _make(connection_id):
        websocket = FakeWebSocket()
        connections.register(connection_id, websocket)
        return ConnectionSession(websocket, store, router, connections, connection_id=connection_id)
    return _make


@pytest.fixture
def fake_websocket():
    return FakeWebSocket
