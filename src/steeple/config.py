"""Configuration loader for Steeple.

Loads from steeple.toml with sensible defaults when file is absent.
Configuration is loaded once at startup and passed via dependency injection.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path

from steeple.exceptions import SteepleError


# Hard ceiling on list page size; [mcp].max_limit can only lower it.
MAX_PAGE_SIZE = 200


class ConfigError(SteepleError):
    """Raised when configuration loading or validation fails."""


@dataclass(frozen=True)
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 9100


@dataclass(frozen=True)
class DatabaseConfig:
    path: str = "~/.steeple/steeple.db"


@dataclass(frozen=True)
class OAuthConfig:
    """Authorization server settings."""

    base_url: str = "http://127.0.0.1:9100"
    state_secret: str = ""
    login_url: str = "/auth/login"
    session_cookie: str = "steeple_session"
    default_scope: str = "mcp:admin"
    code_ttl_seconds: int = 600
    token_ttl_seconds: int = 3600
    state_ttl_seconds: int = 600

    def __repr__(self) -> str:
        secret_display = "***" if self.state_secret else ""
        return (
            f"OAuthConfig(base_url={self.base_url!r}, login_url={self.login_url!r}, "
            f"state_secret={secret_display!r})"
        )


@dataclass(frozen=True)
class MCPConfig:
    """Protocol-level knobs for the JSON-RPC endpoint."""

    protocol_version: str = "2025-06-18"
    default_limit: int = 20
    max_limit: int = MAX_PAGE_SIZE
    max_offset: int = 1_000_000


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class Config:
    """Top-level Steeple configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    oauth: OAuthConfig = field(default_factory=OAuthConfig)
    mcp: MCPConfig = field(default_factory=MCPConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def database_path(self) -> Path:
        return Path(self.database.path).expanduser()

    @property
    def base_url(self) -> str:
        return self.oauth.base_url.rstrip("/")


def _positive_int(value: object, default: int) -> int:
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _apply_env_overrides(config: Config) -> Config:
    """Apply STEEPLE_* environment overrides on top of file config."""
    oauth = config.oauth
    secret = os.environ.get("STEEPLE_STATE_SECRET", "").strip()
    if secret:
        oauth = replace(oauth, state_secret=secret)
    base_url = os.environ.get("STEEPLE_BASE_URL", "").strip()
    if base_url:
        oauth = replace(oauth, base_url=base_url)
    if oauth is config.oauth:
        return config
    return replace(config, oauth=oauth)


def load_config(path: Path | None = None) -> Config:
    """Load configuration from a TOML file.

    If path is None, searches for steeple.toml in current directory then ~/.steeple/.
    Returns default config if no file is found.
    """
    if path is None:
        candidates = [
            Path.cwd() / "steeple.toml",
            Path.home() / ".steeple" / "steeple.toml",
        ]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break

    if path is None or not path.exists():
        return _apply_env_overrides(Config())

    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e

    server_data = raw.get("server", {})
    server = ServerConfig(
        host=server_data.get("host", "127.0.0.1"),
        port=_positive_int(server_data.get("port", 9100), 9100),
    )

    db_data = raw.get("database", {})
    database = DatabaseConfig(
        path=str(db_data.get("path", "~/.steeple/steeple.db")),
    )

    oauth_data = raw.get("oauth", {})
    oauth = OAuthConfig(
        base_url=str(oauth_data.get("base_url", "http://127.0.0.1:9100")),
        state_secret=str(oauth_data.get("state_secret", "")),
        login_url=str(oauth_data.get("login_url", "/auth/login")),
        session_cookie=str(oauth_data.get("session_cookie", "steeple_session")),
        default_scope=str(oauth_data.get("default_scope", "mcp:admin")),
        code_ttl_seconds=_positive_int(oauth_data.get("code_ttl_seconds", 600), 600),
        token_ttl_seconds=_positive_int(oauth_data.get("token_ttl_seconds", 3600), 3600),
        state_ttl_seconds=_positive_int(oauth_data.get("state_ttl_seconds", 600), 600),
    )

    mcp_data = raw.get("mcp", {})
    max_limit = min(
        _positive_int(mcp_data.get("max_limit", MAX_PAGE_SIZE), MAX_PAGE_SIZE), MAX_PAGE_SIZE,
    )
    mcp = MCPConfig(
        protocol_version=str(mcp_data.get("protocol_version", "2025-06-18")),
        default_limit=min(_positive_int(mcp_data.get("default_limit", 20), 20), max_limit),
        max_limit=max_limit,
        max_offset=_positive_int(mcp_data.get("max_offset", 1_000_000), 1_000_000),
    )

    log_data = raw.get("logging", {})
    logging_cfg = LoggingConfig(
        level=str(log_data.get("level", "INFO")).upper(),
    )

    return _apply_env_overrides(Config(
        server=server,
        database=database,
        oauth=oauth,
        mcp=mcp,
        logging=logging_cfg,
    ))
