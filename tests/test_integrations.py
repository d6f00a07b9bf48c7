import asyncio

import pytest

from core.integrations import IntegrationManager, create_integrations
from services.integrations.base import Integration, ServerStatus, StatusContext
from shared.chat.events import create_chat_event
from shared.config.relay import parse_config


class RecordingSink(Integration):
    def __init__(self, name):
        self.name = name
        self.calls = []

    async def start(self):
        self.calls.append(("start",))

    async def stop(self):
        self.calls.append(("stop",))

    async def update_players(self, players):
        self.calls.append(("players", players))

    async def update_status(self, status, context):
        self.calls.append(("status", status, context))

    async def relay_chat_message(self, event):
        self.calls.append(("chat", event))

    async def send_message(self, text):
        self.calls.append(("message", text))


class FailingSink(Integration):
    name = "failing"

    async def start(self):
        raise RuntimeError("cannot start")

    async def update_players(self, players):
        raise RuntimeError("boom")

    async def relay_chat_message(self, event):
        raise ConnectionError("unreachable")


class HangingSink(Integration):
    name = "hanging"
    call_timeout = 0.05

    async def update_players(self, players):
        await asyncio.sleep(10)


@pytest.mark.asyncio
async def test_failing_sink_does_not_block_others():
    good = RecordingSink("good")
    manager = IntegrationManager([FailingSink(), good])

    await manager.start_all()
    await manager.update_players(["Alice"])
    await manager.relay_chat_message(create_chat_event("chat", "Alice", text="hi"))

    assert [c[0] for c in good.calls] == ["start", "players", "chat"]
    assert good.calls[1] == ("players", ["Alice"])


@pytest.mark.asyncio
async def test_hanging_sink_is_bounded():
    good = RecordingSink("good")
    manager = IntegrationManager([HangingSink(), good])

    await asyncio.wait_for(manager.update_players(["Alice"]), timeout=1.0)

    assert good.calls == [("players", ["Alice"])]


@pytest.mark.asyncio
async def test_status_round_reaches_every_sink():
    sinks = [RecordingSink("a"), RecordingSink("b")]
    manager = IntegrationManager(sinks)
    context = StatusContext(reason="server")

    await manager.update_status(ServerStatus.OFFLINE, context)

    for sink in sinks:
        assert sink.calls == [("status", ServerStatus.OFFLINE, context)]


@pytest.mark.asyncio
async def test_empty_message_is_not_dispatched():
    sink = RecordingSink("a")
    manager = IntegrationManager([sink])

    await manager.send_message("   ")
    await manager.send_message("hello")

    assert sink.calls == [("message", "hello")]


@pytest.mark.asyncio
async def test_default_hooks_are_no_ops():
    manager = IntegrationManager([Integration()])
    await manager.update_gamemode(1)
    await manager.stop_all()


def test_create_integrations_respects_enable_flags():
    config = parse_config({
        "discord": {"enabled": False},
        "integrations": {
            "cubyzlist_site": {"enabled": True, "server_name": "srv", "server_ip": "1.2.3.4"},
            "webhook": {"enabled": True, "url": "https://example.invalid/hook"},
        },
    })

    names = [i.name for i in create_integrations(config, connection=None)]
    assert names == ["CubyzListSite", "Webhook"]
