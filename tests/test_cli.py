"""Tests for CLI entry point."""

from __future__ import annotations

import asyncio
import json

import pytest
from click.testing import CliRunner

from steeple.__main__ import cli
from steeple.auth.identity import HumanIdentity
from steeple.auth.oauth import OAuthService
from steeple.config import OAuthConfig
from steeple.state.database import Database


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "cli.db"


@pytest.fixture
def config_file(tmp_path, db_path):
    path = tmp_path / "steeple.toml"
    path.write_text(f'[database]\npath = "{db_path.as_posix()}"\n')
    return path


def _invoke(config_file, *args):
    return CliRunner().invoke(cli, ["--config", str(config_file), *args])


class TestCLI:
    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Steeple" in result.output
        for command in ("serve", "init-db", "events", "revoke-token", "add-user"):
            assert command in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_serve_help(self):
        result = CliRunner().invoke(cli, ["serve", "--help"])
        assert result.exit_code == 0
        assert "--host" in result.output
        assert "--port" in result.output

    def test_invalid_config(self, tmp_path):
        bad = tmp_path / "bad.toml"
        bad.write_text("[server\n")
        result = CliRunner().invoke(cli, ["--config", str(bad), "init-db"])
        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_init_db(self, config_file, db_path):
        result = _invoke(config_file, "init-db")
        assert result.exit_code == 0
        assert db_path.exists()


class TestUserAndEvents:
    def test_add_user(self, config_file, db_path):
        result = _invoke(config_file, "add-user", "admin-1", "--role", "admin")
        assert result.exit_code == 0
        assert "admin-1" in result.output

        user = asyncio.run(Database(str(db_path)).get_user("admin-1"))
        assert user["role"] == "admin"

    def test_add_user_rejects_unknown_role(self, config_file):
        result = _invoke(config_file, "add-user", "someone", "--role", "owner")
        assert result.exit_code != 0

    def test_events_empty(self, config_file):
        result = _invoke(config_file, "events")
        assert result.exit_code == 0
        assert "No events recorded." in result.output

    def test_events_json(self, config_file, db_path):
        async def _seed():
            database = Database(str(db_path))
            await database.initialize()
            await database.insert_event("u1", "abc", "token_issued", {"scope": "mcp:admin"})
            await database.insert_event("", "def", "bearer_rejected", {})

        asyncio.run(_seed())
        result = _invoke(config_file, "events", "--json", "--type", "token_issued")
        assert result.exit_code == 0
        rows = json.loads(result.output)
        assert [row["event_type"] for row in rows] == ["token_issued"]

        text = _invoke(config_file, "events", "--limit", "1")
        assert "bearer_rejected" in text.output


class TestTokenCommands:
    def _issue(self, db_path, authorization_request):
        async def _run():
            database = Database(str(db_path))
            await database.initialize()
            service = OAuthService(database, OAuthConfig())
            code = await service.create_authorization_code(
                authorization_request, HumanIdentity(subject_id="c1", role="contributor"),
            )
            issued = await service.exchange_code(
                code=code,
                redirect_uri=authorization_request.redirect_uri,
                code_verifier="verifier-" + "a" * 48,
            )
            return issued.access_token

        return asyncio.run(_run())

    def test_revoke_token(self, config_file, db_path, authorization_request):
        token = self._issue(db_path, authorization_request)

        result = _invoke(config_file, "revoke-token", token)
        assert result.exit_code == 0
        assert "revoked" in result.output

        again = _invoke(config_file, "revoke-token", token)
        assert again.exit_code == 1

    def test_revoke_unknown_token(self, config_file):
        result = _invoke(config_file, "revoke-token", "nope")
        assert result.exit_code == 1

    def test_purge_expired(self, config_file):
        result = _invoke(config_file, "purge-expired")
        assert result.exit_code == 0
        assert "oauth_access_tokens: 0 removed" in result.output
