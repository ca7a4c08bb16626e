"""Human-login collaborators.

The authorization endpoint never logs anyone in itself. It asks a
session provider who the browser belongs to, and redirects to the
external login application when the answer is nobody.
"""

from __future__ import annotations

import logging
from typing import Protocol

from fastapi import Request

from steeple.auth.identity import HumanIdentity
from steeple.auth.signing import BlobSigner, InvalidSignatureError
from steeple.state.database import Database

logger = logging.getLogger(__name__)


class HumanSessionProvider(Protocol):
    async def authenticate(self, request: Request) -> HumanIdentity | None:
        """Return the logged-in human for this browser request, if any."""
        ...


class StaticSessionProvider:
    """Always reports the same human. For tests and local development."""

    def __init__(self, identity: HumanIdentity | None = None):
        self.identity = identity

    async def authenticate(self, request: Request) -> HumanIdentity | None:
        return self.identity


class SignedCookieSessionProvider:
    """Reads the login application's signed session cookie.

    The cookie holds ``{"sub": <user id>}`` signed with the shared secret;
    the role always comes from the ``users`` table so a demotion takes
    effect on the next authorization attempt.
    """

    def __init__(
        self,
        database: Database,
        signer: BlobSigner,
        cookie_name: str = "steeple_session",
        max_age: int | None = None,
    ):
        self._db = database
        self._signer = signer
        self._cookie_name = cookie_name
        self._max_age = max_age

    async def authenticate(self, request: Request) -> HumanIdentity | None:
        raw = request.cookies.get(self._cookie_name)
        if not raw:
            return None
        try:
            payload = self._signer.verify(raw, max_age=self._max_age)
        except InvalidSignatureError as e:
            logger.info("Ignoring session cookie: %s", e)
            return None

        subject_id = payload.get("sub")
        if not isinstance(subject_id, str) or not subject_id:
            return None
        user = await self._db.get_user(subject_id)
        if user is None:
            return None
        return HumanIdentity(subject_id=subject_id, role=user.get("role") or "user")
