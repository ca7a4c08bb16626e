"""Tests for bearer-token identity resolution."""

from __future__ import annotations

import time

import pytest
from fastapi import Request

from steeple.auth.identity import IdentityResolver, extract_bearer_token
from steeple.events.types import BEARER_REJECTED

METADATA_URL = "http://test/.well-known/oauth-protected-resource"


def _request(authorization: str | None = None) -> Request:
    headers = []
    if authorization is not None:
        headers.append((b"authorization", authorization.encode("latin-1")))
    return Request({"type": "http", "method": "POST", "path": "/mcp", "headers": headers})


@pytest.fixture
def resolver(oauth, event_bus):
    return IdentityResolver(oauth, resource_metadata_url=METADATA_URL, event_bus=event_bus)


class TestExtractBearer:
    @pytest.mark.parametrize("header,expected", [
        ("Bearer abc", "abc"),
        ("bearer abc", "abc"),
        ("  Bearer   abc  ", "abc"),
        ("Basic abc", None),
        ("Bearer", None),
        ("Bearer a b", None),
        ("", None),
        (None, None),
    ])
    def test_extract(self, header, expected):
        assert extract_bearer_token(header) == expected


class TestResolve:
    async def test_no_header_is_anonymous(self, resolver):
        resolution = await resolver.resolve(_request())
        assert resolution.identity is None
        assert resolution.response is None

    async def test_no_header_required_is_401(self, resolver):
        resolution = await resolver.resolve(_request(), required=True)
        assert resolution.identity is None
        assert resolution.response.status_code == 401
        challenge = resolution.response.headers["www-authenticate"]
        assert 'realm="mcp"' in challenge
        assert METADATA_URL in challenge

    async def test_valid_token(self, resolver, issue_token):
        token = await issue_token("contrib-1", "contributor")
        resolution = await resolver.resolve(_request(f"Bearer {token}"))
        assert resolution.response is None
        assert resolution.identity.subject_id == "contrib-1"
        assert resolution.identity.role == "contributor"
        assert resolution.identity.is_admin is False

    async def test_invalid_token_fails_open(self, resolver, event_bus):
        resolution = await resolver.resolve(_request("Bearer forged"))
        assert resolution.identity is None
        assert resolution.response is None
        assert event_bus.recent_events()[-1].event_type == BEARER_REJECTED

    async def test_invalid_token_required_is_401(self, resolver):
        resolution = await resolver.resolve(_request("Bearer forged"), required=True)
        assert resolution.response.status_code == 401

    async def test_expired_token_is_anonymous(self, resolver, issue_token, database):
        token = await issue_token()
        await database.execute(
            "UPDATE oauth_access_tokens SET expires_at = ?", (int(time.time()) - 1,),
        )
        resolution = await resolver.resolve(_request(f"Bearer {token}"))
        assert resolution.identity is None

    async def test_non_writer_role_never_escalates(self, resolver, issue_token):
        token = await issue_token("viewer-1", "user")
        resolution = await resolver.resolve(_request(f"Bearer {token}"))
        assert resolution.identity is None
        required = await resolver.resolve(_request(f"Bearer {token}"), required=True)
        assert required.response.status_code == 401

    async def test_touch_last_used(self, resolver, issue_token, database):
        token = await issue_token()
        await resolver.resolve(_request(f"Bearer {token}"))
        row = await database.query_one("SELECT last_used_at FROM oauth_access_tokens")
        assert row["last_used_at"] is None

        await resolver.resolve(_request(f"Bearer {token}"), touch_last_used=True)
        row = await database.query_one("SELECT last_used_at FROM oauth_access_tokens")
        assert row["last_used_at"] is not None
