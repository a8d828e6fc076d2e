"""Tests for the webhook receiver routes."""

import asyncio
from unittest.mock import MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import webhook_payload
from wabridge.identity.cache import IdentityCache
from wabridge.inbound.pipeline import Accepted, InboundPipeline
from wabridge.server.app import create_app


@pytest.fixture
def pipeline(store, directory, gateway, clock):
    return InboundPipeline(store, directory, gateway, IdentityCache(directory, clock=clock))


@pytest.fixture
def client(pipeline):
    pipeline.dispatch = MagicMock()
    with TestClient(create_app(pipeline)) as c:
        yield c


def record_sends(app, events):
    """Wrap an ASGI app so every outgoing message is recorded and yields once."""

    async def wrapped(scope, receive, send):
        async def recording_send(message):
            events.append(message["type"])
            await send(message)
            await asyncio.sleep(0)

        await app(scope, receive, recording_send)

    return wrapped


def test_health(client: TestClient):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert "timestamp" in resp.json()


def test_message_is_accepted_and_dispatched(client: TestClient, pipeline):
    resp = client.post("/webhook/evolution", json=webhook_payload())
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "chatId": "web_18091234567", "accepted": True}

    pipeline.dispatch.assert_called_once()
    accepted = pipeline.dispatch.call_args.args[0]
    assert isinstance(accepted, Accepted)
    assert accepted.text == "Hola, quiero 2 refrescos"


@pytest.mark.asyncio
async def test_response_is_sent_before_enrichment_starts(pipeline, directory, store):
    events: list[str] = []
    lookup = directory.channel_binding

    async def recording_lookup(instance):
        events.append("enrich-start")
        return await lookup(instance)

    directory.channel_binding = recording_lookup
    app = record_sends(create_app(pipeline), events)

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://relay"
    ) as http:
        resp = await http.post("/webhook/evolution", json=webhook_payload())
    await pipeline.drain()

    assert resp.status_code == 200
    assert resp.json()["accepted"] is True
    assert "enrich-start" in events
    assert events.index("enrich-start") > events.index("http.response.body")
    log = await store.get("messages/donpepe/web_18091234567")
    assert len(log) == 1


def test_own_message_ignored(client: TestClient, pipeline):
    resp = client.post("/webhook/evolution", json=webhook_payload(from_me=True))
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "Own message ignored"}
    pipeline.dispatch.assert_not_called()


def test_other_event_ignored(client: TestClient, pipeline):
    resp = client.post("/webhook/evolution", json=webhook_payload(event="qrcode.updated"))
    assert resp.status_code == 200
    assert resp.json()["message"] == "Event ignored (not messages.upsert)"
    pipeline.dispatch.assert_not_called()


def test_missing_remote_jid_rejected(client: TestClient, pipeline):
    resp = client.post("/webhook/evolution", json=webhook_payload(remote_jid=None))
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Missing remoteJid"}
    pipeline.dispatch.assert_not_called()


def test_invalid_json_rejected(client: TestClient):
    resp = client.post(
        "/webhook/evolution",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_non_object_body_rejected(client: TestClient):
    resp = client.post("/webhook/evolution", json=["messages.upsert"])
    assert resp.status_code == 400


def test_unexpected_error_is_500(client: TestClient, pipeline):
    pipeline.accept = MagicMock(side_effect=RuntimeError("boom"))
    resp = client.post("/webhook/evolution", json=webhook_payload())
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "boom"}
