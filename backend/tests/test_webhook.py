import pytest
from fastapi.testclient import TestClient

from opsdesk.api.deps import get_container
from opsdesk.main import app

from conftest import VERIFY_TOKEN

client = TestClient(app)


@pytest.fixture(autouse=True)
def override_container(container):
    app.dependency_overrides[get_container] = lambda: container
    yield
    app.dependency_overrides.clear()


def _delivery(*messages, field="messages", statuses=None):
    value = {
        "messaging_product": "whatsapp",
        "contacts": [{"wa_id": "50212345678", "profile": {"name": "María"}}],
        "messages": list(messages),
    }
    if statuses:
        value["statuses"] = statuses
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "WABA-1", "changes": [{"field": field, "value": value}]}],
    }


def _msg(message_id, sender="50212345678", kind="text"):
    return {"id": message_id, "from": sender, "type": kind, "text": {"body": "hola"}}


def test_verify_handshake_echoes_challenge():
    r = client.get(
        "/api/webhook/whatsapp",
        params={"hub.mode": "subscribe", "hub.verify_token": VERIFY_TOKEN, "hub.challenge": "1158201444"},
    )
    assert r.status_code == 200
    assert r.text == "1158201444"


def test_verify_handshake_wrong_token():
    r = client.get(
        "/api/webhook/whatsapp",
        params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "x"},
    )
    assert r.status_code == 403


def test_non_whatsapp_object_is_404(whatsapp):
    r = client.post("/api/webhook/whatsapp", json={"object": "page", "entry": []})
    assert r.status_code == 404
    assert whatsapp.calls == []


def test_delivery_acknowledged_and_auto_replied(whatsapp, container):
    r = client.post("/api/webhook/whatsapp", json=_delivery(_msg("wamid.1")))
    assert r.status_code == 200
    # background task has run by the time TestClient returns
    assert len(whatsapp.calls) == 1
    assert whatsapp.calls[0]["to"] == "50212345678"
    assert whatsapp.calls[0]["template"] == "respuesta_automatica"
    assert whatsapp.calls[0]["components"][0]["parameters"][0]["text"] == "María"
    assert container.dedup.has("wamid.1")


def test_redelivery_is_ignored(whatsapp):
    body = _delivery(_msg("wamid.dup"))
    assert client.post("/api/webhook/whatsapp", json=body).status_code == 200
    assert client.post("/api/webhook/whatsapp", json=body).status_code == 200
    assert len(whatsapp.calls) == 1


def test_status_only_and_system_messages_skipped(whatsapp):
    statuses = [{"id": "wamid.s", "status": "read"}]
    client.post("/api/webhook/whatsapp", json=_delivery(statuses=statuses))
    client.post("/api/webhook/whatsapp", json=_delivery(_msg("wamid.sys", kind="system")))
    client.post("/api/webhook/whatsapp", json=_delivery(_msg("wamid.nofrom", sender=None)))
    client.post("/api/webhook/whatsapp", json=_delivery(_msg("wamid.acct"), field="account_update"))
    assert whatsapp.calls == []


@pytest.mark.asyncio
async def test_one_failing_message_does_not_stop_siblings(container, whatsapp):
    calls = []

    async def flaky(message, profile_name=None):
        calls.append(message["id"])
        if message["id"] == "wamid.bad":
            raise RuntimeError("boom")
        return {"success": True}

    container.webhook.notifier.handle_incoming_message = flaky
    summary = await container.webhook.process(_delivery(_msg("wamid.bad"), _msg("wamid.good")))

    assert calls == ["wamid.bad", "wamid.good"]
    assert summary == {"processed": 1, "duplicates": 0, "skipped": 0, "failed": 1}


@pytest.mark.asyncio
async def test_malformed_body_after_ack_is_logged_not_raised(container):
    assert await container.webhook.process_acknowledged({"object": "whatsapp_business_account", "entry": 5}) is None


@pytest.mark.asyncio
async def test_malformed_entries_do_not_stop_later_ones(container, whatsapp):
    body = _delivery(_msg("wamid.after"))
    good_entry = body["entry"][0]
    body["entry"] = [
        "x",
        {"id": "WABA-2", "changes": ["not a change", {"field": "messages", "value": None}]},
        good_entry,
    ]

    summary = await container.webhook.process(body)

    assert summary == {"processed": 1, "duplicates": 0, "skipped": 1, "failed": 1}
    assert [c["to"] for c in whatsapp.calls] == ["50212345678"]


def test_webhook_health(container):
    container.dedup.record("wamid.z")
    r = client.get("/api/webhook/health")
    assert r.status_code == 200
    body = r.json()
    assert body["verify_token"] == "configured"
    assert body["dedup_cache_size"] == 1
