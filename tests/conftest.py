import asyncio
import os

os.environ.setdefault("RELAY_FILE_LOGGING", "0")

import pytest

from core.connection import ConnectionListener
from services.game.session import GameSession, SessionOptions


class FakeSession(GameSession):
    def __init__(self, options, *, error=None, server_version=None, provides_player_list=False):
        super().__init__(options)
        self.error = error
        self.provides_player_list = provides_player_list
        self._version = server_version
        self.sent = []
        self.closed = []

    @property
    def server_version(self):
        return self._version

    async def start(self):
        if self.error is not None:
            raise self.error
        self._emit_connected()

    async def close(self, notify=True):
        self.closed.append(notify)
        if notify:
            self._emit_disconnect("closed")

    async def send_chat(self, text):
        self.sent.append(text)


class SessionFactory:
    """
    Hands out FakeSessions; failures are consumed in order.
    """

    def __init__(self, failures=(), **session_kwargs):
        self.failures = list(failures)
        self.session_kwargs = session_kwargs
        self.sessions = []

    def __call__(self, options):
        error = self.failures.pop(0) if self.failures else None
        session = FakeSession(options, error=error, **self.session_kwargs)
        self.sessions.append(session)
        return session

    @property
    def current(self):
        return self.sessions[-1]


class Recorder(ConnectionListener):
    def __init__(self):
        self.events = []

    def on_connected(self):
        self.events.append(("connected", None))

    def on_disconnected(self, payload):
        self.events.append(("disconnected", payload))

    def on_reconnecting(self, payload):
        self.events.append(("reconnecting", payload))

    def on_error(self, error):
        self.events.append(("error", error))

    def on_chat(self, event):
        self.events.append(("chat", event))

    def on_players(self, payload):
        self.events.append(("players", payload))

    def on_gamemode(self, value):
        self.events.append(("gamemode", value))

    def of(self, name):
        return [payload for kind, payload in self.events if kind == name]


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def options():
    return SessionOptions(host="127.0.0.1", port=47649, bot_name="Discord", version="0.0.0")


@pytest.fixture
def recorder():
    return Recorder()
