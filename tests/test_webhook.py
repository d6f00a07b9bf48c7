import json

import httpx
import pytest

from services.integrations.base import ServerStatus, StatusContext
from services.webhook import integration as webhook
from services.webhook.integration import WebhookIntegration
from shared.chat.events import create_chat_event
from shared.config.relay import WebhookConfig

URL = "https://hooks.example.net/relay"


def make_sink(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookIntegration(WebhookConfig(enabled=True, url=URL), client=client), client


@pytest.mark.asyncio
async def test_rounds_are_posted_as_json():
    received = []

    def handler(request):
        received.append(json.loads(request.content))
        return httpx.Response(204)

    sink, client = make_sink(handler)
    await sink.start()

    await sink.update_status(ServerStatus.OFFLINE, StatusContext("retries-exhausted", attempts=2))
    await sink.update_players(["Alice"])
    await sink.relay_chat_message(create_chat_event("chat", "#ff0000Alice", text="hi"))

    assert received[0] == {"type": "status", "status": "offline", "reason": "retries-exhausted", "attempts": 2}
    assert received[1] == {"type": "players", "players": ["Alice"], "count": 1}
    assert received[2]["type"] == "event"
    assert received[2]["event"]["display_name"] == "Alice"
    assert received[2]["event"]["kind"] == "chat"

    await sink.stop()
    await client.aclose()


@pytest.mark.asyncio
async def test_retries_then_succeeds(monkeypatch):
    monkeypatch.setattr(webhook, "POST_BACKOFF_SECONDS", 0)
    responses = iter([500, 502, 200])

    sink, client = make_sink(lambda request: httpx.Response(next(responses)))
    await sink.start()

    assert await sink.post({"type": "message", "text": "hi"}) is True
    await client.aclose()


@pytest.mark.asyncio
async def test_gives_up_after_three_attempts(monkeypatch):
    monkeypatch.setattr(webhook, "POST_BACKOFF_SECONDS", 0)
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    sink, client = make_sink(handler)
    await sink.start()

    assert await sink.post({"type": "message", "text": "hi"}) is False
    assert len(calls) == 3
    await client.aclose()
