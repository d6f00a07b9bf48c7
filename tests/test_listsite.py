import json
from unittest.mock import AsyncMock, Mock

import pytest

from services.integrations.base import ServerStatus, StatusContext
from services.listsite import integration as listsite
from services.listsite.integration import ListSiteIntegration
from shared.config.relay import ListSiteConfig


def make_config(**overrides):
    values = {"enabled": True, "server_name": "My Server", "server_ip": "play.example.net"}
    values.update(overrides)
    return ListSiteConfig(**values)


@pytest.fixture
def sent(monkeypatch):
    payloads = []

    async def open_connection(host, port):
        writer = Mock()
        writer.write.side_effect = lambda data: payloads.append((host, port, json.loads(data)))
        writer.drain = AsyncMock()
        writer.wait_closed = AsyncMock()
        return Mock(), writer

    monkeypatch.setattr(listsite.asyncio, "open_connection", open_connection)
    return payloads


def test_payload_shape():
    site = ListSiteIntegration(make_config(server_port=47649, icon_url="https://x/icon.png"))
    payload = site.build_payload()

    assert payload["server_id"] == "My Server"
    assert payload["ip"] == "play.example.net:47649"
    assert payload["status"] == "offline"
    assert payload["player_count"] == 0
    assert payload["gamemode"] is None
    assert payload["icon"] == "https://x/icon.png"
    assert payload["client_download"] == ""
    assert payload["script_version"] == "1.4"
    assert isinstance(payload["timestamp"], int)


@pytest.mark.asyncio
async def test_updates_pushed_on_change(sent):
    site = ListSiteIntegration(make_config())
    await site.start()

    await site.update_status(ServerStatus.ONLINE, StatusContext("connected"))
    await site.update_players(["Alice", "Bob"])
    await site.update_gamemode(1)

    host, port, last = sent[-1]
    assert (host, port) == ("api.ashframe.net", 5001)
    assert last["status"] == "online"
    assert last["player_count"] == 2
    assert last["gamemode"] == "creative"

    await site.update_status(ServerStatus.OFFLINE, StatusContext("server"))
    assert sent[-1][2]["player_count"] == 0

    await site.stop()
    assert sent[-1][2]["status"] == "offline"
    assert len(sent) == 6


@pytest.mark.asyncio
async def test_unknown_gamemode_keeps_previous(sent):
    site = ListSiteIntegration(make_config())
    await site.start()

    await site.update_gamemode(0)
    await site.update_gamemode(7)

    assert sent[-1][2]["gamemode"] == "survival"
    await site.stop()


@pytest.mark.asyncio
async def test_not_sent_before_start(sent):
    site = ListSiteIntegration(make_config())

    await site.update_players(["Alice"])

    assert sent == []
