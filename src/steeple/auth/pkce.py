"""PKCE (RFC 7636) helpers and opaque credential generation."""

from __future__ import annotations

import base64
import hashlib
import hmac
import re
import secrets

SUPPORTED_METHODS = ("S256", "plain")

_CHALLENGE_RE = re.compile(r"^[A-Za-z0-9_-]{43,128}$")
_VERIFIER_RE = re.compile(r"^[A-Za-z0-9._~-]{43,128}$")


def base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_authorization_code() -> str:
    """43-character base64url string."""
    return base64url(secrets.token_bytes(32))


def generate_access_token() -> str:
    return base64url(secrets.token_bytes(32))


def hash_token(token: str) -> str:
    """SHA-256 hex digest used to store bearer tokens at rest."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def compute_s256_challenge(verifier: str) -> str:
    return base64url(hashlib.sha256(verifier.encode("ascii")).digest())


def is_valid_challenge(challenge: str, method: str) -> bool:
    """Check challenge format for the declared method.

    A ``plain`` challenge is the verifier itself, so it follows the
    verifier alphabet.
    """
    if method == "plain":
        return bool(_VERIFIER_RE.match(challenge))
    if method == "S256":
        return bool(_CHALLENGE_RE.match(challenge))
    return False


def is_valid_verifier(verifier: str) -> bool:
    return bool(_VERIFIER_RE.match(verifier))


def verify_pkce(verifier: str, challenge: str, method: str) -> bool:
    """Return True when ``verifier`` proves possession of ``challenge``."""
    if not is_valid_verifier(verifier):
        return False
    if method == "plain":
        return hmac.compare_digest(verifier, challenge)
    if method == "S256":
        return hmac.compare_digest(compute_s256_challenge(verifier), challenge)
    return False
