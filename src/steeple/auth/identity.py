"""Identity resolution for MCP requests.

Turns an ``Authorization: Bearer <token>`` header into a role-bearing
identity. Anonymous callers get ``None`` and stay on the read-only path.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import Request
from fastapi.responses import JSONResponse

from steeple.events.bus import Event, EventBus
from steeple.events.types import BEARER_REJECTED

if TYPE_CHECKING:
    from steeple.auth.oauth import OAuthService

logger = logging.getLogger(__name__)

ADMIN = "admin"
CONTRIBUTOR = "contributor"
WRITE_ROLES = frozenset({ADMIN, CONTRIBUTOR})


@dataclass(frozen=True)
class HumanIdentity:
    """A logged-in person, as reported by the external login application."""

    subject_id: str
    role: str

    @property
    def can_authorize(self) -> bool:
        return self.role in WRITE_ROLES


@dataclass(frozen=True)
class McpIdentity:
    """Per-request identity derived from a bearer token. Never cached."""

    subject_id: str
    role: str
    scope: str = ""
    client_id: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN


@dataclass
class IdentityResolution:
    identity: McpIdentity | None = None
    response: JSONResponse | None = None


def extract_bearer_token(header: str | None) -> str | None:
    """Return the token from a ``Bearer <token>`` header value."""
    if not header:
        return None
    parts = header.strip().split()
    if len(parts) != 2:
        return None
    scheme, token = parts
    if scheme.lower() != "bearer" or not token:
        return None
    return token


class IdentityResolver:
    """Validates bearer tokens against the issued-token store."""

    def __init__(
        self,
        oauth: OAuthService,
        *,
        resource_metadata_url: str,
        event_bus: EventBus | None = None,
    ):
        self._oauth = oauth
        self._resource_metadata_url = resource_metadata_url
        self._event_bus = event_bus

    def unauthorized(self, message: str) -> JSONResponse:
        challenge = (
            f'Bearer realm="mcp", resource_metadata="{self._resource_metadata_url}"'
        )
        return JSONResponse(
            {"error": "Unauthorized", "message": message},
            status_code=401,
            headers={"WWW-Authenticate": challenge},
        )

    async def resolve(
        self,
        request: Request,
        *,
        required: bool = False,
        touch_last_used: bool = False,
    ) -> IdentityResolution:
        """Resolve the caller's identity.

        Without ``required``, a missing or invalid token falls back to the
        anonymous identity. It never escalates.
        """
        header = request.headers.get("authorization")
        if not header:
            if required:
                return IdentityResolution(response=self.unauthorized("Bearer token required"))
            return IdentityResolution()

        token = extract_bearer_token(header)
        record = await self._oauth.validate_access_token(token) if token else None
        if record is None:
            self._emit_rejected("invalid_or_expired" if token else "malformed_header")
            if required:
                return IdentityResolution(
                    response=self.unauthorized("Invalid or expired access token"),
                )
            return IdentityResolution()

        if record.role not in WRITE_ROLES:
            # Tokens are only minted for write roles; a role change upstream
            # is not visible here, so anything else is treated as anonymous.
            self._emit_rejected("role_not_permitted", subject_id=record.subject_id)
            if required:
                return IdentityResolution(response=self.unauthorized("Role not permitted"))
            return IdentityResolution()

        if touch_last_used:
            try:
                await self._oauth.touch_token(record.id)
            except Exception as e:
                logger.warning("Failed to record token use for %s: %s", record.subject_id, e)

        return IdentityResolution(identity=McpIdentity(
            subject_id=record.subject_id,
            role=record.role,
            scope=record.scope,
            client_id=record.client_id,
        ))

    def _emit_rejected(self, reason: str, subject_id: str = "") -> None:
        if self._event_bus is not None:
            self._event_bus.emit(Event(
                event_type=BEARER_REJECTED,
                subject_id=subject_id,
                data={"reason": reason},
            ))
