"""
HTTP API tests with FastAPI's TestClient and in-memory services.

Run: cd api && python -m pytest tests/test_api.py -v
"""

import asyncio
import hashlib
import hmac
import json
import threading
import time
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from integrations.core.oauth import encode_state
from main import create_app

from fakes import FakeSupabase, make_services


TEAM_ID = "team-0001"
ADMIN = {"Authorization": "Bearer admin-token"}
MEMBER = {"Authorization": "Bearer member-token"}


@pytest.fixture
def services():
    db = FakeSupabase()
    db.auth.add_user("admin-token", "user-admin", "admin@acme.test")
    db.auth.add_user("member-token", "user-member", "member@acme.test")
    db.seed(
        "team_members",
        {"team_id": TEAM_ID, "user_id": "user-admin", "role": "owner"},
        {"team_id": TEAM_ID, "user_id": "user-member", "role": "member"},
    )
    return make_services(db)


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_missing_token_is_401(client):
    response = client.get("/api/integrations")
    assert response.status_code == 401
    assert response.json()["error"] == "Missing or invalid Authorization header"

    assert client.get("/api/integrations", headers={"Authorization": "Bearer nope"}).status_code == 401


# =============================================================================
# Integrations
# =============================================================================

def test_auth_url_for_team(client):
    response = client.get("/api/integrations/github/auth", headers=ADMIN)
    assert response.status_code == 200
    query = parse_qs(urlparse(response.json()["authUrl"]).query)
    assert query["state"] == [encode_state(TEAM_ID, "user-admin")]


def test_unsupported_provider(client):
    response = client.get("/api/integrations/dropbox/auth", headers=ADMIN)
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


def test_callback_connects_and_enqueues_sync(client, services):
    credentials = {"access_token": "gho_1", "token_type": "bearer", "scope": "repo"}
    services.providers.get("github").handle_callback = AsyncMock(return_value=credentials)

    response = client.post(
        "/api/integrations/github/callback",
        json={"code": "abc", "state": encode_state(TEAM_ID, "user-admin")},
        headers=ADMIN,
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["jobId"] == "job-123"
    assert body["integration"]["status"] == "active"
    assert "credentials" not in body["integration"]

    row = services.db.rows("integrations")[0]
    assert row["credentials"] != credentials
    assert services.credential_store.decrypt(row["credentials"]) == credentials
    services.job_queue.enqueue_sync.assert_called_once_with(TEAM_ID, "github", row["id"])

    listed = client.get("/api/integrations", headers=ADMIN).json()["integrations"]
    assert [i["type"] for i in listed] == ["github"]


def test_callback_state_for_other_user_is_forbidden(client, services):
    handle_callback = AsyncMock()
    services.providers.get("slack").handle_callback = handle_callback

    response = client.post(
        "/api/integrations/slack/callback",
        json={"code": "abc", "state": encode_state(TEAM_ID, "user-member")},
        headers=ADMIN,
    )

    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"
    handle_callback.assert_not_awaited()
    assert services.db.rows("integrations") == []


def test_callback_requires_owner_or_admin(client, services):
    services.providers.get("notion").handle_callback = AsyncMock(return_value={"access_token": "x"})

    response = client.post(
        "/api/integrations/notion/callback",
        json={"code": "abc", "state": encode_state(TEAM_ID, "user-member")},
        headers=MEMBER,
    )

    assert response.status_code == 403
    assert services.db.rows("integrations") == []


def test_malformed_state_is_400(client):
    response = client.post(
        "/api/integrations/slack/callback",
        json={"code": "abc", "state": "garbage!!"},
        headers=ADMIN,
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid OAuth state", "code": "validation_error"}


def test_sync_and_disconnect(client, services):
    services.db.seed("integrations", {
        "id": "int-1", "team_id": TEAM_ID, "type": "slack", "status": "active",
        "settings": {}, "credentials": "x",
    })

    response = client.post("/api/integrations/slack/sync", headers=MEMBER)
    assert response.status_code == 200
    assert response.json()["jobId"] == "job-123"

    assert client.delete("/api/integrations/slack", headers=MEMBER).status_code == 403
    assert client.delete("/api/integrations/slack", headers=ADMIN).status_code == 200
    assert client.delete("/api/integrations/slack", headers=ADMIN).status_code == 404


def test_sync_of_unconnected_provider_is_404(client):
    response = client.post("/api/integrations/gmail/sync", headers=ADMIN)
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


# =============================================================================
# Slack webhook
# =============================================================================

def _signed_headers(body: bytes, secret: str, timestamp: int) -> dict:
    basestring = f"v0:{timestamp}:".encode() + body
    signature = "v0=" + hmac.new(secret.encode(), basestring, hashlib.sha256).hexdigest()
    return {
        "X-Slack-Request-Timestamp": str(timestamp),
        "X-Slack-Signature": signature,
        "Content-Type": "application/json",
    }


def test_url_verification_answered_without_signature(client):
    response = client.post(
        "/api/integrations/slack/webhook",
        json={"type": "url_verification", "challenge": "abc123"},
    )
    assert response.status_code == 200
    assert response.json() == {"challenge": "abc123"}


def test_webhook_rejects_non_object_json(client):
    for body in (b"[1,2]", b'"hello"', b"not json"):
        response = client.post(
            "/api/integrations/slack/webhook", content=body, headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON payload"


def test_event_with_bad_signature_is_401(client):
    body = json.dumps({"type": "event_callback", "team_id": "T1", "event": {"type": "message"}}).encode()
    headers = _signed_headers(body, "wrong-secret", int(time.time()))

    with patch.dict("os.environ", {"SLACK_SIGNING_SECRET": "signing-secret"}):
        response = client.post("/api/integrations/slack/webhook", content=body, headers=headers)

    assert response.status_code == 401


def test_stale_signature_is_401(client):
    body = json.dumps({"type": "event_callback", "team_id": "T1", "event": {}}).encode()
    headers = _signed_headers(body, "signing-secret", int(time.time()) - 600)

    with patch.dict("os.environ", {"SLACK_SIGNING_SECRET": "signing-secret"}):
        response = client.post("/api/integrations/slack/webhook", content=body, headers=headers)

    assert response.status_code == 401


def test_signed_event_is_acknowledged_and_routed(client, services):
    integration = services.db.seed("integrations", {
        "team_id": TEAM_ID, "type": "slack", "status": "active",
        "settings": {"slack_team_id": "T1"}, "credentials": "x",
    })[0]
    handle_event = AsyncMock()
    services.providers.get("slack").handle_event = handle_event

    event = {"type": "reaction_added", "reaction": "white_check_mark", "item": {"channel": "C1", "ts": "1.0"}}
    body = json.dumps({"type": "event_callback", "team_id": "T1", "event": event}).encode()
    headers = _signed_headers(body, "signing-secret", int(time.time()))

    with patch.dict("os.environ", {"SLACK_SIGNING_SECRET": "signing-secret"}):
        response = client.post("/api/integrations/slack/webhook", content=body, headers=headers)

    assert response.status_code == 200
    handle_event.assert_awaited_once()
    args = handle_event.await_args.args
    assert args[0] == event
    assert args[1]["id"] == integration["id"]


# =============================================================================
# Memories and queries
# =============================================================================

def test_memory_crud(client):
    created = client.post(
        "/api/memories",
        json={"content": "We decided to use RQ for queues", "type": "decision"},
        headers=MEMBER,
    )
    assert created.status_code == 201
    memory = created.json()["memory"]
    assert memory["source"] == "manual"

    found = client.get("/api/memories", params={"q": "queues", "type": "decision"}, headers=MEMBER).json()
    assert found["count"] == 1

    patched = client.patch(f"/api/memories/{memory['id']}", json={"type": "action_item"}, headers=MEMBER)
    assert patched.json()["memory"]["type"] == "action_item"

    bad = client.patch(f"/api/memories/{memory['id']}", json={"type": "gossip"}, headers=MEMBER)
    assert bad.status_code == 400
    assert bad.json()["code"] == "validation_error"

    stats = client.get("/api/memories/stats/summary", headers=MEMBER).json()
    assert stats["total"] == 1

    assert client.delete(f"/api/memories/{memory['id']}", headers=MEMBER).status_code == 200
    assert client.get(f"/api/memories/{memory['id']}", headers=MEMBER).status_code == 404


def test_query_with_empty_memory(client, services):
    response = client.post("/api/queries", json={"question": "What did we ship?"}, headers=MEMBER)

    assert response.status_code == 200
    body = response.json()
    assert body["confidence"] == 0.0
    assert body["sources"] == []
    assert services.db.rows("queries")[0]["question"] == "What did we ship?"


def test_query_validation(client):
    too_long = client.post("/api/queries", json={"question": "x" * 501}, headers=MEMBER)
    assert too_long.status_code == 400

    bad_range = client.post(
        "/api/queries",
        json={"question": "hi", "context": {"timeRange": "last_year"}},
        headers=MEMBER,
    )
    assert bad_range.status_code == 400
    assert bad_range.json()["code"] == "validation_error"


def test_query_feedback(client, services):
    query_id = client.post("/api/queries", json={"question": "Anything?"}, headers=MEMBER).json()["id"]

    ok = client.post(f"/api/queries/{query_id}/feedback", json={"feedback": "helpful"}, headers=MEMBER)
    assert ok.status_code == 200

    other = client.post(f"/api/queries/{query_id}/feedback", json={"feedback": "helpful"}, headers=ADMIN)
    assert other.status_code == 404

    invalid = client.post(f"/api/queries/{query_id}/feedback", json={"feedback": "meh"}, headers=MEMBER)
    assert invalid.status_code == 400


# =============================================================================
# Extension
# =============================================================================

EXTENSION_ENV = {"EXTENSION_API_KEY": "ext-key"}


def _extension_session(client) -> str:
    user = SimpleNamespace(id="user-member", email="member@acme.test")
    with patch("services.extension.sign_in_with_password", return_value=user):
        response = client.post(
            "/api/extension/session",
            json={"email": "member@acme.test", "password": "pw"},
            headers={"X-Extension-Key": "ext-key"},
        )
    assert response.status_code == 200, response.text
    assert response.json()["teams"][0]["id"] == TEAM_ID
    return response.json()["sessionToken"]


def test_extension_requires_api_key(client):
    with patch.dict("os.environ", EXTENSION_ENV):
        response = client.post(
            "/api/extension/session",
            json={"email": "a@b.c", "password": "pw"},
            headers={"X-Extension-Key": "wrong"},
        )
    assert response.status_code == 401


def test_extension_capture_and_meeting(client, services):
    with patch.dict("os.environ", EXTENSION_ENV):
        token = _extension_session(client)
        headers = {"X-Extension-Key": "ext-key", "X-Session-Token": token, "X-Team-Id": TEAM_ID}

        captured = client.post(
            "/api/extension/capture",
            json={"content": "Full page text", "url": "https://docs.test/a", "selection": "Key paragraph"},
            headers=headers,
        )
        assert captured.status_code == 200
        memory = services.db.rows("memories")[0]
        assert memory["source"] == "web_capture"
        assert memory["type"] == "document"
        assert memory["content"] == "Key paragraph"

        for i, (speaker, text) in enumerate([("Ada", "Kickoff"), ("Linus", "Ship Friday")]):
            chunk = client.post(
                "/api/extension/meetings/meet-1/transcript",
                json={"speaker": speaker, "text": text, "timestamp": 1714550400000 + i * 1000},
                headers=headers,
            )
            assert chunk.status_code == 200

        ended = client.post("/api/extension/meetings/meet-1/end", headers=headers)
        assert ended.json()["jobId"] == "job-meeting"
        meeting_id, team_id, transcript = services.job_queue.enqueue_meeting.call_args.args
        assert (meeting_id, team_id) == ("meet-1", TEAM_ID)
        assert [c["text"] for c in transcript] == ["Kickoff", "Ship Friday"]

        assert client.delete("/api/extension/session", headers=headers).status_code == 200
        assert client.get("/api/extension/session/verify", headers=headers).status_code == 401


def test_extension_capture_for_foreign_team_is_forbidden(client):
    with patch.dict("os.environ", EXTENSION_ENV):
        token = _extension_session(client)
        response = client.post(
            "/api/extension/capture",
            json={"content": "x", "url": "https://a.test"},
            headers={"X-Extension-Key": "ext-key", "X-Session-Token": token, "X-Team-Id": "other-team"},
        )
    assert response.status_code == 403


# =============================================================================
# Realtime
# =============================================================================

def test_websocket_rejects_unknown_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/ws/teams/{TEAM_ID}?token=nope"):
            pass


def test_websocket_disconnect_on_quiet_team_unsubscribes(client, services):
    unsubscribed = threading.Event()

    async def subscribe(team_id):
        try:
            # No memory is ever published
            await asyncio.Event().wait()
            yield {}
        finally:
            unsubscribed.set()

    services.notifier.subscribe = subscribe

    with client.websocket_connect(f"/ws/teams/{TEAM_ID}?token=member-token"):
        pass

    assert unsubscribed.wait(timeout=5)


def test_websocket_forwards_new_memory_events(client, services):
    async def subscribe(team_id):
        yield {"type": "new-memory", "id": "mem-1", "teamId": team_id}
        await asyncio.Event().wait()

    services.notifier.subscribe = subscribe

    with client.websocket_connect(f"/ws/teams/{TEAM_ID}?token=member-token") as ws:
        assert ws.receive_json() == {"type": "new-memory", "id": "mem-1", "teamId": TEAM_ID}
