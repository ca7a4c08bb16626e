"""HMAC-signed opaque blobs.

Used for the OAuth ``state`` carried across the human-login redirect and
for reading the login application's session cookie. A blob is
``<base64url(json)>.<base64url(hmac-sha256)>``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
import time
from typing import Any

from steeple.auth.pkce import base64url
from steeple.exceptions import AuthError

logger = logging.getLogger(__name__)


class InvalidSignatureError(AuthError):
    """Blob is malformed, tampered with, or expired."""


def _decode_segment(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class BlobSigner:
    """Signs and verifies JSON payloads with a shared secret."""

    def __init__(self, secret: str):
        if not secret:
            logger.warning(
                "No state_secret configured; using a per-process random secret. "
                "Pending logins will not survive a restart.",
            )
            secret = secrets.token_urlsafe(32)
        self._key = secret.encode("utf-8")

    def _signature(self, body: str) -> str:
        digest = hmac.new(self._key, body.encode("ascii"), hashlib.sha256).digest()
        return base64url(digest)

    def sign(self, payload: dict[str, Any], *, issued_at: int | None = None) -> str:
        """Serialize and sign ``payload``; an ``iat`` field is added."""
        body_data = dict(payload)
        body_data["iat"] = int(time.time()) if issued_at is None else issued_at
        body = base64url(
            json.dumps(body_data, separators=(",", ":"), sort_keys=True).encode("utf-8")
        )
        return f"{body}.{self._signature(body)}"

    def verify(self, blob: str, *, max_age: int | None = None) -> dict[str, Any]:
        """Return the payload of a valid blob or raise InvalidSignatureError."""
        try:
            body, signature = blob.split(".")
        except (AttributeError, ValueError) as e:
            raise InvalidSignatureError("Malformed signed value") from e

        try:
            expected = self._signature(body)
        except UnicodeEncodeError as e:
            raise InvalidSignatureError("Malformed signed value") from e
        if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
            raise InvalidSignatureError("Signature mismatch")

        try:
            payload = json.loads(_decode_segment(body))
        except (binascii.Error, ValueError) as e:
            raise InvalidSignatureError("Undecodable signed value") from e
        if not isinstance(payload, dict):
            raise InvalidSignatureError("Signed value is not an object")

        if max_age is not None:
            issued_at = payload.get("iat")
            if not isinstance(issued_at, int) or time.time() - issued_at > max_age:
                raise InvalidSignatureError("Signed value expired")
        return payload
