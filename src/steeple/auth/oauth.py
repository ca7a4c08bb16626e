"""OAuth 2.1 authorization-code + PKCE service.

Handles authorization codes, access tokens, and the single-use nonces of
signed login-redirect state. Every redemption is a conditional update
inside one write transaction, so concurrent requests cannot both succeed.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

from steeple.auth.identity import HumanIdentity
from steeple.auth.pkce import (
    SUPPORTED_METHODS,
    generate_access_token,
    generate_authorization_code,
    hash_token,
    is_valid_challenge,
    verify_pkce,
)
from steeple.config import OAuthConfig
from steeple.events.bus import Event, EventBus
from steeple.events.types import CODE_ISSUED, TOKEN_EXCHANGE_FAILED, TOKEN_ISSUED
from steeple.exceptions import AuthError
from steeple.state.database import Database

logger = logging.getLogger(__name__)

ANONYMOUS_CLIENT_ID = "anonymous"


class OAuthError(AuthError):
    """A protocol error with a standard OAuth ``error`` code."""

    def __init__(self, error: str, description: str, status_code: int = 400):
        super().__init__(description)
        self.error = error
        self.description = description
        self.status_code = status_code

    def as_dict(self) -> dict[str, str]:
        return {"error": self.error, "error_description": self.description}


def _is_absolute_http_uri(uri: str) -> bool:
    try:
        parts = urlsplit(uri)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc) and not parts.fragment


@dataclass(frozen=True)
class AuthorizationRequest:
    """Validated parameters of one ``/oauth/authorize`` call."""

    client_id: str
    redirect_uri: str
    scope: str
    code_challenge: str
    code_challenge_method: str
    state: str | None = None

    @classmethod
    def from_params(cls, params: dict[str, Any], default_scope: str) -> AuthorizationRequest:
        """Validate raw query or state parameters.

        Raises OAuthError before any code is issued.
        """
        response_type = params.get("response_type")
        if response_type != "code":
            raise OAuthError("unsupported_response_type", 'Only "code" is supported')

        redirect_uri = params.get("redirect_uri") or ""
        if not redirect_uri:
            raise OAuthError("invalid_request", "redirect_uri is required")
        if not _is_absolute_http_uri(redirect_uri):
            raise OAuthError("invalid_request", "redirect_uri must be an absolute http(s) URI")

        code_challenge = params.get("code_challenge") or ""
        if not code_challenge:
            raise OAuthError("invalid_request", "code_challenge is required (PKCE)")

        method = params.get("code_challenge_method") or ""
        if method not in SUPPORTED_METHODS:
            raise OAuthError("invalid_request", "code_challenge_method must be S256 or plain")
        if not is_valid_challenge(code_challenge, method):
            raise OAuthError("invalid_request", "Invalid code_challenge format")

        return cls(
            client_id=params.get("client_id") or ANONYMOUS_CLIENT_ID,
            redirect_uri=redirect_uri,
            scope=params.get("scope") or default_scope,
            code_challenge=code_challenge,
            code_challenge_method=method,
            state=params.get("state") or None,
        )

    def as_params(self) -> dict[str, Any]:
        """Inverse of ``from_params``; used to carry the request in signed state."""
        params: dict[str, Any] = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
        }
        if self.state is not None:
            params["state"] = self.state
        return params


@dataclass(frozen=True)
class IssuedToken:
    access_token: str
    expires_in: int
    scope: str
    token_type: str = "Bearer"

    def as_response(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "scope": self.scope,
        }


@dataclass(frozen=True)
class AccessTokenRecord:
    id: int
    subject_id: str
    role: str
    scope: str
    client_id: str
    expires_at: int


class OAuthService:
    """Issues and redeems authorization codes and bearer tokens."""

    def __init__(
        self,
        database: Database,
        config: OAuthConfig,
        event_bus: EventBus | None = None,
    ):
        self._db = database
        self._config = config
        self._event_bus = event_bus

    def _emit(self, event_type: str, subject_id: str = "", **data: Any) -> None:
        if self._event_bus is not None:
            self._event_bus.emit(Event(event_type=event_type, subject_id=subject_id, data=data))

    # --- Authorization codes ---

    async def create_authorization_code(
        self,
        request: AuthorizationRequest,
        human: HumanIdentity,
    ) -> str:
        """Mint a code bound to the client, redirect URI, and PKCE challenge."""
        code = generate_authorization_code()
        now = int(time.time())
        await self._db.execute(
            """INSERT INTO oauth_authorization_codes (code, client_id, user_id, role,
               redirect_uri, scope, code_challenge, code_challenge_method,
               expires_at, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                code,
                request.client_id,
                human.subject_id,
                human.role,
                request.redirect_uri,
                request.scope,
                request.code_challenge,
                request.code_challenge_method,
                now + self._config.code_ttl_seconds,
                now,
            ),
        )
        self._emit(
            CODE_ISSUED,
            human.subject_id,
            client_id=request.client_id,
            method=request.code_challenge_method,
        )
        return code

    async def exchange_code(
        self,
        *,
        code: str,
        redirect_uri: str,
        code_verifier: str,
        client_id: str | None = None,
    ) -> IssuedToken:
        """Redeem a code for a bearer token.

        The code is burned before any other check, so every failure after
        lookup leaves it unusable.
        """
        effective_client = client_id or ANONYMOUS_CLIENT_ID
        now = int(time.time())
        failure: str | None = None
        subject_id = ""
        token: str | None = None
        scope = ""

        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "SELECT * FROM oauth_authorization_codes WHERE code = ?", (code,),
            )
            row = await cursor.fetchone()
            if row is None:
                failure = "Invalid authorization code"
            else:
                subject_id = row["user_id"]
                burned = await conn.execute(
                    """UPDATE oauth_authorization_codes SET used_at = ?
                       WHERE id = ? AND used_at IS NULL""",
                    (now, row["id"]),
                )
                if burned.rowcount != 1:
                    failure = "Authorization code already used"
                elif row["expires_at"] < now:
                    failure = "Authorization code expired"
                elif row["client_id"] != effective_client:
                    failure = "client_id mismatch"
                elif row["redirect_uri"] != redirect_uri:
                    failure = "redirect_uri mismatch"
                elif not verify_pkce(
                    code_verifier, row["code_challenge"], row["code_challenge_method"],
                ):
                    failure = "Invalid code_verifier"
                else:
                    token = generate_access_token()
                    scope = row["scope"]
                    await conn.execute(
                        """INSERT INTO oauth_access_tokens (token_hash, client_id, user_id,
                           role, scope, expires_at, created_at)
                           VALUES (?, ?, ?, ?, ?, ?, ?)""",
                        (
                            hash_token(token),
                            row["client_id"],
                            row["user_id"],
                            row["role"],
                            scope,
                            now + self._config.token_ttl_seconds,
                            now,
                        ),
                    )

        if failure is not None or token is None:
            logger.info("Token exchange rejected: %s", failure)
            self._emit(TOKEN_EXCHANGE_FAILED, subject_id, reason=failure)
            raise OAuthError("invalid_grant", failure or "Token exchange failed")

        self._emit(TOKEN_ISSUED, subject_id, client_id=effective_client, scope=scope)
        return IssuedToken(
            access_token=token,
            expires_in=self._config.token_ttl_seconds,
            scope=scope,
        )

    # --- Access tokens ---

    async def validate_access_token(self, token: str) -> AccessTokenRecord | None:
        """Return the live token record, or None if unknown, revoked, or expired."""
        row = await self._db.query_one(
            "SELECT * FROM oauth_access_tokens WHERE token_hash = ?",
            (hash_token(token),),
        )
        if row is None or row["revoked_at"] is not None:
            return None
        if row["expires_at"] < int(time.time()):
            return None
        return AccessTokenRecord(
            id=row["id"],
            subject_id=row["user_id"],
            role=row["role"],
            scope=row["scope"],
            client_id=row["client_id"],
            expires_at=row["expires_at"],
        )

    async def touch_token(self, token_id: int) -> None:
        await self._db.execute(
            "UPDATE oauth_access_tokens SET last_used_at = ? WHERE id = ?",
            (int(time.time()), token_id),
        )

    async def revoke_access_token(self, token: str) -> bool:
        """Mark a token revoked. Returns False if it was unknown or already revoked."""
        updated = await self._db.execute(
            """UPDATE oauth_access_tokens SET revoked_at = ?
               WHERE token_hash = ? AND revoked_at IS NULL""",
            (int(time.time()), hash_token(token)),
        )
        return updated == 1

    # --- Login-redirect state nonces ---

    async def remember_state(self, nonce: str) -> None:
        now = int(time.time())
        await self._db.execute(
            """INSERT INTO oauth_pending_states (nonce, expires_at, created_at)
               VALUES (?, ?, ?)""",
            (nonce, now + self._config.state_ttl_seconds, now),
        )

    async def consume_state(self, nonce: str) -> bool:
        """Atomically mark a pending state used. False if unknown, used, or expired."""
        now = int(time.time())
        updated = await self._db.execute(
            """UPDATE oauth_pending_states SET used_at = ?
               WHERE nonce = ? AND used_at IS NULL AND expires_at >= ?""",
            (now, nonce, now),
        )
        return updated == 1

    # --- Hygiene ---

    async def purge_expired(self) -> dict[str, int]:
        """Delete expired codes, tokens, and states. Not needed for correctness."""
        now = int(time.time())
        counts: dict[str, int] = {}
        async with self._db.transaction() as conn:
            for table in (
                "oauth_authorization_codes",
                "oauth_access_tokens",
                "oauth_pending_states",
            ):
                cursor = await conn.execute(
                    f"DELETE FROM {table} WHERE expires_at < ?", (now,),
                )
                counts[table] = cursor.rowcount
        return counts
