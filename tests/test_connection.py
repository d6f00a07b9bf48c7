import asyncio

import pytest

from conftest import FakeSession, SessionFactory, wait_until
from core.connection import (
    ConnectionManager,
    ConnectionState,
    DisconnectReason,
    NotConnectedError,
    RetryPolicy,
)
from services.game.session import GenericUpdate, PlayerInfo, SessionError
from shared.chat.events import CLIENT_VERSION_ATTRIBUTE, SERVER_VERSION_ATTRIBUTE, EventKind


def build(options, recorder, factory, **kwargs):
    manager = ConnectionManager(options=options, session_factory=factory, **kwargs)
    manager.add_listener(recorder)
    return manager


# ------------------------------------------------------------
# Lifecycle
# ------------------------------------------------------------

@pytest.mark.asyncio
async def test_start_connects_once(options, recorder):
    factory = SessionFactory()
    manager = build(options, recorder, factory)

    await manager.start()
    await manager.start()

    assert manager.state is ConnectionState.CONNECTED
    assert len(factory.sessions) == 1
    assert recorder.of("connected") == [None]


@pytest.mark.asyncio
async def test_double_stop_emits_one_stopped_event(options, recorder):
    factory = SessionFactory()
    manager = build(options, recorder, factory)
    await manager.start()

    await manager.stop()
    await manager.stop()

    disconnected = recorder.of("disconnected")
    assert [d.reason for d in disconnected] == [DisconnectReason.STOPPED]
    assert manager.state is ConnectionState.STOPPED
    assert factory.current.closed == [True]


@pytest.mark.asyncio
async def test_overlapping_stops_emit_one_stopped_event(options, recorder):
    class HangingSession(FakeSession):
        async def start(self):
            await asyncio.sleep(60)

    sessions = []

    def factory(opts):
        sessions.append(HangingSession(opts))
        return sessions[-1]

    manager = build(options, recorder, factory)
    starting = asyncio.create_task(manager.start())
    await wait_until(lambda: sessions)

    await asyncio.gather(manager.stop(), manager.stop())
    await starting

    disconnected = recorder.of("disconnected")
    assert [d.reason for d in disconnected] == [DisconnectReason.STOPPED]
    assert manager.state is ConnectionState.STOPPED
    assert sessions[0].closed == [True]


@pytest.mark.asyncio
async def test_retries_exhausted_after_max_retries(options, recorder):
    factory = SessionFactory(failures=[SessionError("down")] * 5)
    manager = build(
        options,
        recorder,
        factory,
        retry=RetryPolicy(max_retries=2, retry_delay_ms=0),
    )

    await manager.start()
    await wait_until(lambda: manager.state is ConnectionState.STOPPED)

    exhausted = [
        d for d in recorder.of("disconnected")
        if d.reason is DisconnectReason.RETRIES_EXHAUSTED
    ]
    assert len(exhausted) == 1
    assert exhausted[0].attempts == 2
    assert len(factory.sessions) == 3
    assert [r.attempt for r in recorder.of("reconnecting")] == [1, 2]
    assert all(r.max_retries == 2 for r in recorder.of("reconnecting"))
    assert len(recorder.of("error")) == 3


@pytest.mark.asyncio
async def test_reconnect_succeeds_and_resets_attempts(options, recorder):
    factory = SessionFactory(failures=[SessionError("down")])
    manager = build(options, recorder, factory, retry=RetryPolicy(retry_delay_ms=0))

    await manager.start()
    await wait_until(lambda: manager.state is ConnectionState.CONNECTED)

    reconnecting = recorder.of("reconnecting")
    assert len(reconnecting) == 1
    assert reconnecting[0].max_retries is None
    assert manager.attempt == 0
    assert factory.sessions[0].closed == [False]


@pytest.mark.asyncio
async def test_connect_failure_without_reconnect(options, recorder):
    factory = SessionFactory(failures=[SessionError("down")])
    manager = build(options, recorder, factory, retry=RetryPolicy(reconnect=False))

    await manager.start()

    assert manager.state is ConnectionState.STOPPED
    assert [d.reason for d in recorder.of("disconnected")] == [DisconnectReason.ERROR]
    assert recorder.of("reconnecting") == []


@pytest.mark.asyncio
async def test_factory_error_is_a_connect_failure(options, recorder):
    def factory(_options):
        raise SessionError("bad transport")

    manager = build(options, recorder, factory, retry=RetryPolicy(reconnect=False))
    await manager.start()

    assert manager.state is ConnectionState.STOPPED
    assert len(recorder.of("error")) == 1


@pytest.mark.asyncio
async def test_stop_cancels_pending_reconnect(options, recorder):
    factory = SessionFactory(failures=[SessionError("down")] * 3)
    manager = build(options, recorder, factory, retry=RetryPolicy(retry_delay_ms=50))

    await manager.start()
    assert manager.state is ConnectionState.CONNECTING

    await manager.stop()
    await asyncio.sleep(0.1)

    assert len(factory.sessions) == 1
    assert manager.state is ConnectionState.STOPPED
    assert recorder.of("disconnected")[-1].reason is DisconnectReason.STOPPED


@pytest.mark.asyncio
async def test_backoff_delay():
    policy = RetryPolicy(retry_delay_ms=1000, backoff_factor=2.0, max_retry_delay_ms=5000)
    assert [policy.delay_ms(a) for a in (1, 2, 3, 4)] == [1000, 2000, 4000, 5000]
    assert RetryPolicy(retry_delay_ms=30000).delay_ms(7) == 30000


@pytest.mark.asyncio
async def test_server_disconnect_schedules_reconnect(options, recorder):
    factory = SessionFactory()
    manager = build(options, recorder, factory, retry=RetryPolicy(retry_delay_ms=10000))
    await manager.start()
    first = factory.current

    first._emit_disconnect("kicked")

    assert [d.reason for d in recorder.of("disconnected")] == [DisconnectReason.SERVER]
    assert manager.state is ConnectionState.CONNECTING
    assert recorder.of("reconnecting")[0].delay_ms == 10000

    # the old session is detached; late events are dropped
    first._emit_chat("[Alice] hello")
    assert recorder.of("chat") == []

    await manager.stop()


@pytest.mark.asyncio
async def test_server_disconnect_without_reconnect(options, recorder):
    factory = SessionFactory()
    manager = build(options, recorder, factory, retry=RetryPolicy(reconnect=False))
    await manager.start()

    factory.current._emit_disconnect("kicked")

    assert manager.state is ConnectionState.STOPPED
    assert recorder.of("reconnecting") == []


# ------------------------------------------------------------
# Chat
# ------------------------------------------------------------

@pytest.mark.asyncio
async def test_send_chat(options, recorder):
    factory = SessionFactory()
    manager = build(options, recorder, factory)

    await manager.send_chat("   ")
    with pytest.raises(NotConnectedError):
        await manager.send_chat("hello")

    await manager.start()
    await manager.send_chat("  hello  ")
    assert factory.current.sent == ["hello"]


@pytest.mark.asyncio
async def test_inbound_chat_collapses_blank_lines(options, recorder):
    factory = SessionFactory()
    manager = build(options, recorder, factory)
    await manager.start()

    factory.current._emit_chat("[Alice] hi\n\n\nthere  ")
    factory.current._emit_chat("\n\n")
    factory.current._emit_chat("noise without a pattern")

    chats = recorder.of("chat")
    assert len(chats) == 1
    assert chats[0].display_name == "Alice"
    assert chats[0].text == "hi\nthere"


@pytest.mark.asyncio
async def test_join_and_leave_update_players(options, recorder):
    factory = SessionFactory()
    manager = build(options, recorder, factory)
    await manager.start()
    session = factory.current

    session._emit_chat("#ff0000Bob joined")
    session._emit_chat("bob joined")
    session._emit_chat("Alice joined")
    session._emit_chat("Bob left")

    players = [p.players for p in recorder.of("players")]
    assert players == [["Bob"], ["Alice", "Bob"], ["Alice"]]
    assert manager.player_count == 1


@pytest.mark.asyncio
async def test_bot_is_hidden_from_player_view(options, recorder):
    factory = SessionFactory()
    manager = build(options, recorder, factory, excluded_usernames=["Spy"])
    await manager.start()

    factory.current._emit_chat("Discord joined")
    factory.current._emit_chat("spy joined")
    factory.current._emit_chat("Alice joined")

    assert manager.players == ["Alice"]
    assert recorder.of("players")[-1].players == ["Alice"]


@pytest.mark.asyncio
async def test_version_mismatch_event(options, recorder):
    factory = SessionFactory(server_version="0.1.0")
    manager = build(options, recorder, factory)
    await manager.start()

    factory.current._emit_chat("Bob joined using version 0.0.9")
    factory.current._emit_chat("Carl joined using version 0.1.0")

    mismatches = [e for e in recorder.of("chat") if e.kind is EventKind.VERSION_MISMATCH]
    assert len(mismatches) == 1
    assert mismatches[0].display_name == "Bob"
    assert mismatches[0].attributes[CLIENT_VERSION_ATTRIBUTE] == "0.0.9"
    assert mismatches[0].attributes[SERVER_VERSION_ATTRIBUTE] == "0.1.0"


@pytest.mark.asyncio
async def test_player_snapshot(options, recorder):
    factory = SessionFactory(provides_player_list=True)
    manager = build(options, recorder, factory, excluded_usernames=["spy"])
    await manager.start()

    factory.current._emit_players(
        [PlayerInfo("#ff0000Alice"), PlayerInfo("Discord"), PlayerInfo("SPY"), PlayerInfo("***")]
    )
    assert recorder.of("players")[-1].players == ["Alice"]

    # joins do not republish when the session supplies its own list
    factory.current._emit_chat("Bob joined")
    assert len(recorder.of("players")) == 1


@pytest.mark.asyncio
async def test_gamemode_passthrough(options, recorder):
    factory = SessionFactory()
    manager = build(options, recorder, factory)
    await manager.start()

    factory.current._emit_generic_update(GenericUpdate("gamemode", 1))
    factory.current._emit_generic_update(GenericUpdate("time", 1200))

    assert recorder.of("gamemode") == [1]


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others(options, recorder):
    class Broken:
        def on_connected(self):
            raise RuntimeError("boom")

    factory = SessionFactory()
    manager = ConnectionManager(options=options, session_factory=factory)
    manager.add_listener(Broken())
    manager.add_listener(recorder)

    await manager.start()

    assert recorder.of("connected") == [None]
