"""Tests for the Steeple API server: MCP over HTTP."""

from __future__ import annotations

import json

import pytest
from httpx import ASGITransport, AsyncClient

from steeple.api.engine import create_engine
from steeple.api.server import create_app, register_routes
from steeple.auth.session import StaticSessionProvider

OLD_VERSION = "2025-01-01T00:00:00+00:00"
YESTERDAY = "2024-12-31T00:00:00+00:00"

# --- Test Fixtures ---


@pytest.fixture
async def engine(config):
    engine = await create_engine(config, session_provider=StaticSessionProvider())
    yield engine
    await engine.shutdown()


@pytest.fixture
def app(engine):
    """Create a test app with the engine pre-injected (bypasses lifespan)."""
    from fastapi import FastAPI

    app = FastAPI()
    app.state.engine = engine
    register_routes(app)
    return app


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def token(engine, issue_token):
    """Bearer token minted against the engine's own database."""

    async def _token(subject_id: str = "contrib-1", role: str = "contributor") -> str:
        return await issue_token(subject_id, role)

    return _token


def _rpc(method, params=None, request_id=1):
    envelope = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        envelope["params"] = params
    return envelope


def _call(name, arguments, request_id=1):
    return _rpc("tools/call", {"name": name, "arguments": arguments}, request_id)


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


# --- Health & Endpoint Info ---


class TestSystemEndpoints:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == "0.1.0"

    @pytest.mark.asyncio
    async def test_mcp_info_anonymous(self, client):
        response = await client.get("/mcp")
        assert response.json() == {
            "endpoint": "/mcp", "transport": "streamable-http", "authenticated": False,
        }

    @pytest.mark.asyncio
    async def test_mcp_info_authenticated(self, client, token):
        response = await client.get("/mcp", headers=_auth(await token()))
        assert response.json()["authenticated"] is True

    @pytest.mark.asyncio
    async def test_app_factory_serves_routes(self, config):
        app = create_app(config, session_provider=StaticSessionProvider())
        async with app.router.lifespan_context(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as c:
                assert (await c.get("/health")).status_code == 200
                assert (await c.get("/mcp")).status_code == 200
                assert (await c.get("/mcp/admin")).status_code == 401
                assert (await c.get("/oauth/authorize")).status_code == 400
                assert (await c.post("/oauth/token", data={})).status_code == 400


# --- JSON-RPC over HTTP ---


class TestMcpEndpoint:
    @pytest.mark.asyncio
    async def test_parse_error_is_400(self, client):
        response = await client.post(
            "/mcp", content=b"{oops", headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32700

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [
        b'{"jsonrpc": "2.0", "id": NaN, "method": "ping"}',
        b"[" * 100_000 + b"]" * 100_000,
    ])
    async def test_non_standard_json_is_400(self, client, raw):
        response = await client.post(
            "/mcp", content=raw, headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32700

    @pytest.mark.asyncio
    async def test_notification_is_202_with_empty_body(self, client):
        response = await client.post(
            "/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"},
        )
        assert response.status_code == 202
        assert response.content == b""

    @pytest.mark.asyncio
    async def test_batch(self, client):
        response = await client.post(
            "/mcp", json=[_rpc("ping", request_id=1), _rpc("tools/list", request_id=2)],
        )
        assert response.status_code == 200
        assert [entry["id"] for entry in response.json()] == [1, 2]

    @pytest.mark.asyncio
    async def test_invalid_token_falls_back_to_anonymous(self, client):
        response = await client.post("/mcp", json=_rpc("tools/list"), headers=_auth("forged"))
        assert response.status_code == 200
        names = [tool["name"] for tool in response.json()["result"]["tools"]]
        assert "churches_update" not in names


class TestScenarios:
    @pytest.mark.asyncio
    async def test_anonymous_list(self, client, make_church):
        for i in range(7):
            await make_church(f"Church {i}", f"church-{i}")
        await make_church("Gone", "gone", deleted_at="2025-02-01T00:00:00+00:00")

        response = await client.post("/mcp", json=_call("churches_list", {"limit": 5}))
        assert response.status_code == 200
        payload = json.loads(response.json()["result"]["content"][0]["text"])
        assert len(payload["items"]) == 5
        assert payload["total"] == 7
        for item in payload["items"]:
            assert "private_notes" not in item
            assert "deleted_at" not in item

    @pytest.mark.asyncio
    async def test_contributor_update(self, client, token, make_church):
        church_id = await make_church()
        response = await client.post(
            "/mcp",
            json=_call("churches_update", {
                "id": church_id, "updated_at": OLD_VERSION, "patch": {"name": "New Name"},
            }),
            headers=_auth(await token()),
        )
        assert response.status_code == 200
        payload = json.loads(response.json()["result"]["content"][0]["text"])
        assert payload["name"] == "New Name"
        assert payload["updated_at"] != OLD_VERSION

    @pytest.mark.asyncio
    async def test_stale_update_conflicts(self, client, token, make_church, database):
        church_id = await make_church()
        before = await database.query_one("SELECT * FROM churches WHERE id = ?", (church_id,))
        response = await client.post(
            "/mcp",
            json=_call("churches_update", {
                "id": church_id, "updated_at": YESTERDAY, "patch": {"name": "New Name"},
            }),
            headers=_auth(await token()),
        )
        assert response.status_code == 409
        body = response.json()
        assert body["error"]["code"] == -32009
        assert body["error"]["data"]["statusCode"] == 409
        after = await database.query_one("SELECT * FROM churches WHERE id = ?", (church_id,))
        assert after == before

    @pytest.mark.asyncio
    async def test_contributor_restore_forbidden(self, client, token):
        response = await client.post(
            "/mcp",
            json=_call("counties_restore", {"id": 1, "updated_at": OLD_VERSION}),
            headers=_auth(await token()),
        )
        assert response.json()["error"]["code"] == -32003


class TestAdminEndpoint:
    @pytest.mark.asyncio
    async def test_requires_bearer(self, client, config):
        response = await client.post("/mcp/admin", json=_rpc("tools/list"))
        assert response.status_code == 401
        challenge = response.headers["www-authenticate"]
        assert challenge.startswith("Bearer ")
        assert f"{config.base_url}/.well-known/oauth-protected-resource" in challenge

    @pytest.mark.asyncio
    async def test_rejects_invalid_bearer(self, client):
        response = await client.get("/mcp/admin", headers=_auth("forged"))
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_admin_token(self, client, token):
        headers = _auth(await token("admin-1", "admin"))
        info = await client.get("/mcp/admin", headers=headers)
        assert info.json()["endpoint"] == "/mcp/admin"
        assert info.json()["authenticated"] is True

        response = await client.post("/mcp/admin", json=_rpc("tools/list"), headers=headers)
        names = {tool["name"] for tool in response.json()["result"]["tools"]}
        assert "churches_restore" in names
