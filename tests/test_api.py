"""Integration tests for the HTTP API (signed URL, feedback, admin auth, widget configs)."""

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from convai_relay.config import get_settings
from convai_relay.exceptions import UpstreamAuthError, UpstreamError
from convai_relay.models.widget_config import WidgetConfig
from convai_relay.services.encryption import decrypt_api_key

SIGNED_URL = "wss://api.elevenlabs.io/v1/convai/conversation?agent_id=agent-1&conversation_signature=sig"


@pytest.fixture
def provider(monkeypatch):
    """Replace the provider call; records (api_key, agent_id) pairs."""
    calls = []
    state = {"error": None}

    async def fake_get_signed_url(api_key: str, agent_id: str) -> str:
        calls.append((api_key, agent_id))
        if state["error"] is not None:
            raise state["error"]
        return SIGNED_URL

    monkeypatch.setattr("convai_relay.services.elevenlabs.get_signed_url", fake_get_signed_url)
    state["calls"] = calls
    return state


# ---- GET /api/get-signed-url ----

@pytest.mark.asyncio
async def test_signed_url_issued(client: AsyncClient, provider):
    response = await client.get(
        "/api/get-signed-url",
        params={"agentId": "agent-1"},
        headers={"Authorization": "Bearer xi-key"},
    )
    assert response.status_code == 200
    assert response.json() == {"signedUrl": SIGNED_URL}
    assert provider["calls"] == [("xi-key", "agent-1")]


@pytest.mark.asyncio
@pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer ", "xi-key"])
async def test_signed_url_requires_bearer_key(client: AsyncClient, provider, header):
    headers = {"Authorization": header} if header is not None else {}
    response = await client.get("/api/get-signed-url", params={"agentId": "agent-1"}, headers=headers)
    assert response.status_code == 401
    assert provider["calls"] == []


@pytest.mark.asyncio
async def test_signed_url_rate_limited(client: AsyncClient, provider, rate_limiter):
    rate_limiter.max_requests = 2
    headers = {"Authorization": "Bearer xi-key"}

    for _ in range(2):
        response = await client.get("/api/get-signed-url", params={"agentId": "agent-1"}, headers=headers)
        assert response.status_code == 200

    response = await client.get("/api/get-signed-url", params={"agentId": "agent-1"}, headers=headers)
    assert response.status_code == 429
    body = response.json()
    assert body["message"]
    assert isinstance(body["resetTime"], int)
    assert body["resetTime"] > rate_limiter.now_ms() - 1_000
    assert 1 <= int(response.headers["Retry-After"]) <= 60
    assert len(provider["calls"]) == 2


@pytest.mark.asyncio
async def test_rate_limit_is_per_forwarded_client(client: AsyncClient, provider, rate_limiter):
    rate_limiter.max_requests = 1

    first = {"Authorization": "Bearer k", "X-Forwarded-For": "10.0.0.1, 172.16.0.1"}
    second = {"Authorization": "Bearer k", "X-Forwarded-For": "10.0.0.2"}

    assert (await client.get("/api/get-signed-url", params={"agentId": "a"}, headers=first)).status_code == 200
    assert (await client.get("/api/get-signed-url", params={"agentId": "a"}, headers=first)).status_code == 429
    assert (await client.get("/api/get-signed-url", params={"agentId": "a"}, headers=second)).status_code == 200


@pytest.mark.asyncio
async def test_signed_url_provider_rejects_key(client: AsyncClient, provider):
    provider["error"] = UpstreamAuthError("Invalid API key")
    response = await client.get(
        "/api/get-signed-url",
        params={"agentId": "agent-1"},
        headers={"Authorization": "Bearer wrong"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_signed_url_provider_failure(client: AsyncClient, provider):
    provider["error"] = UpstreamError("Provider returned status 502")
    response = await client.get(
        "/api/get-signed-url",
        params={"agentId": "agent-1"},
        headers={"Authorization": "Bearer xi-key"},
    )
    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to get signed URL"


@pytest.mark.asyncio
async def test_signed_url_requires_agent_id(client: AsyncClient, provider):
    response = await client.get("/api/get-signed-url", headers={"Authorization": "Bearer xi-key"})
    assert response.status_code == 400
    assert provider["calls"] == []


# ---- POST /api/conversations/{id}/feedback ----

@pytest.mark.asyncio
async def test_submit_feedback(client: AsyncClient, ledger):
    handle = await ledger.create_conversation(agent_id="agent-1")

    response = await client.post(
        f"/api/conversations/{handle.id}/feedback",
        json={"rating": 5, "feedback": "Great, very helpful!"},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["conversationId"] == handle.id
    assert body["rating"] == 5
    assert body["sentiment"] == "positive"


@pytest.mark.asyncio
async def test_submit_feedback_unknown_conversation(client: AsyncClient):
    response = await client.post("/api/conversations/12345/feedback", json={"rating": 3})
    assert response.status_code == 404


@pytest.mark.asyncio
@pytest.mark.parametrize("rating", [0, 6])
async def test_submit_feedback_rating_bounds(client: AsyncClient, ledger, rating):
    handle = await ledger.create_conversation(agent_id="agent-1")
    response = await client.post(f"/api/conversations/{handle.id}/feedback", json={"rating": rating})
    assert response.status_code == 422


# ---- admin auth ----

@pytest.mark.asyncio
async def test_register_login_and_me(client: AsyncClient):
    credentials = {"email": "owner@acme.io", "password": "password123"}

    registered = await client.post("/api/auth/register", json=credentials)
    assert registered.status_code == 201
    assert registered.json()["admin"]["email"] == "owner@acme.io"
    assert registered.json()["token_type"] == "bearer"

    duplicate = await client.post("/api/auth/register", json=credentials)
    assert duplicate.status_code == 400

    login = await client.post("/api/auth/login", json=credentials)
    assert login.status_code == 200
    token = login.json()["access_token"]

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "owner@acme.io"


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient):
    await client.post("/api/auth/register", json={"email": "owner@acme.io", "password": "password123"})
    response = await client.post("/api/auth/login", json={"email": "owner@acme.io", "password": "nope-nope"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_register_rejects_short_password(client: AsyncClient):
    response = await client.post("/api/auth/register", json={"email": "owner@acme.io", "password": "short"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_me_requires_valid_token(client: AsyncClient):
    assert (await client.get("/api/auth/me")).status_code == 401
    response = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


# ---- widget configs ----

@pytest.mark.asyncio
async def test_widget_config_api_key_is_encrypted(client: AsyncClient, auth_headers, session_factory):
    response = await client.post(
        "/api/widget-configs",
        json={"name": "Support bubble", "agentId": "agent-1", "apiKey": "xi-secret", "theme": {"primary": "#111111"}},
        headers=auth_headers,
    )
    assert response.status_code == 201
    body = response.json()
    assert body["agent_id"] == "agent-1"
    assert body["theme"]["primary"] == "#111111"
    assert "background" in body["theme"]
    assert "apiKey" not in body and "api_key_encrypted" not in body

    async with session_factory() as db:
        config = (await db.execute(select(WidgetConfig))).scalar_one()
    assert config.api_key_encrypted != "xi-secret"
    assert decrypt_api_key(config.api_key_encrypted) == "xi-secret"

    listing = await client.get("/api/widget-configs", headers=auth_headers)
    assert listing.status_code == 200
    assert [item["name"] for item in listing.json()] == ["Support bubble"]


@pytest.mark.asyncio
async def test_widget_signed_url_uses_stored_key(client: AsyncClient, auth_headers, provider):
    created = await client.post(
        "/api/widget-configs",
        json={"name": "Support bubble", "agentId": "agent-1", "apiKey": "xi-secret"},
        headers=auth_headers,
    )
    config_id = created.json()["id"]

    response = await client.get(f"/api/widget-configs/{created.json()['id']}/signed-url")
    assert response.status_code == 200
    assert response.json() == {"signedUrl": SIGNED_URL}
    assert provider["calls"] == [("xi-secret", "agent-1")]

    assert (await client.get("/api/widget-configs/9999/signed-url")).status_code == 404


@pytest.mark.asyncio
async def test_widget_signed_url_unreadable_key(client: AsyncClient, auth_headers, provider, session_factory):
    created = await client.post(
        "/api/widget-configs",
        json={"name": "Support bubble", "agentId": "agent-1", "apiKey": "xi-secret"},
        headers=auth_headers,
    )
    async with session_factory() as db:
        config = await db.get(WidgetConfig, created.json()["id"])
        config.api_key_encrypted = "not-a-fernet-token"
        await db.commit()

    response = await client.get(f"/api/widget-configs/{created.json()['id']}/signed-url")
    assert response.status_code == 500
    assert provider["calls"] == []


@pytest.mark.asyncio
async def test_widget_configs_require_auth(client: AsyncClient):
    assert (await client.get("/api/widget-configs")).status_code == 401


# ---- analytics access toggle ----

@pytest.mark.asyncio
async def test_analytics_open_by_default(client: AsyncClient):
    assert (await client.get("/api/analytics/metrics")).status_code == 200


@pytest.mark.asyncio
async def test_analytics_can_require_admin_token(client: AsyncClient, auth_headers, monkeypatch):
    monkeypatch.setattr(get_settings(), "ANALYTICS_REQUIRE_AUTH", True)

    assert (await client.get("/api/analytics/metrics")).status_code == 401
    assert (await client.get("/api/analytics/metrics", headers=auth_headers)).status_code == 200


# ---- observability ----

@pytest.mark.asyncio
async def test_prometheus_metrics_endpoint(client: AsyncClient):
    response = await client.get("/api/metrics")
    assert response.status_code == 200
    assert "relay_active_sessions" in response.text
    assert "signed_url_requests_total" in response.text
