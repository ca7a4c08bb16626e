"""Shared test fixtures for Steeple."""

from __future__ import annotations

from pathlib import Path

import pytest

from steeple.auth.identity import HumanIdentity, McpIdentity
from steeple.auth.oauth import AuthorizationRequest, OAuthService
from steeple.auth.pkce import compute_s256_challenge
from steeple.config import Config, DatabaseConfig, OAuthConfig, ServerConfig
from steeple.events.bus import EventBus
from steeple.state.database import Database

REDIRECT_URI = "https://client.example/callback"
VERIFIER = "verifier-" + "a" * 48
OLD_VERSION = "2025-01-01T00:00:00+00:00"


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Provide a test configuration with temp paths."""
    return Config(
        server=ServerConfig(host="127.0.0.1", port=9999),
        database=DatabaseConfig(path=str(tmp_path / "test_steeple.db")),
        oauth=OAuthConfig(base_url="http://test", state_secret="test-secret"),
    )


@pytest.fixture
async def database(config: Config) -> Database:
    db = Database(str(config.database_path))
    await db.initialize()
    return db


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def oauth(database, config, event_bus) -> OAuthService:
    return OAuthService(database, config.oauth, event_bus=event_bus)


@pytest.fixture
def admin() -> McpIdentity:
    return McpIdentity(subject_id="admin-1", role="admin")


@pytest.fixture
def contributor() -> McpIdentity:
    return McpIdentity(subject_id="contrib-1", role="contributor")


@pytest.fixture
def make_church(database):
    """Insert a church row directly and return its id."""

    async def _make(
        name: str = "Grace Church",
        path: str = "grace-church",
        *,
        status: str = "Listed",
        deleted_at: str | None = None,
        updated_at: str = OLD_VERSION,
        private_notes: str | None = "internal note",
    ) -> int:
        return await database.execute_returning_id(
            """INSERT INTO churches (name, path, status, private_notes, website,
               created_at, updated_at, deleted_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                name, path, status, private_notes, f"https://{path}.example",
                OLD_VERSION, updated_at, deleted_at,
            ),
        )

    return _make


@pytest.fixture
def make_county(database):
    async def _make(name: str = "Alpine", path: str = "alpine", population: int = 1200) -> int:
        return await database.execute_returning_id(
            """INSERT INTO counties (name, path, population, image_path, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (name, path, population, "counties/alpine.jpg", OLD_VERSION, OLD_VERSION),
        )

    return _make


@pytest.fixture
def authorization_request() -> AuthorizationRequest:
    return AuthorizationRequest(
        client_id="anonymous",
        redirect_uri=REDIRECT_URI,
        scope="mcp:admin",
        code_challenge=compute_s256_challenge(VERIFIER),
        code_challenge_method="S256",
        state="client-state",
    )


@pytest.fixture
def issue_token(oauth, authorization_request):
    """Run the code + token exchange for a human and return the bearer token."""

    async def _issue(subject_id: str = "contrib-1", role: str = "contributor") -> str:
        code = await oauth.create_authorization_code(
            authorization_request, HumanIdentity(subject_id=subject_id, role=role),
        )
        issued = await oauth.exchange_code(
            code=code, redirect_uri=REDIRECT_URI, code_verifier=VERIFIER,
        )
        return issued.access_token

    return _issue
