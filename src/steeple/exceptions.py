"""Steeple exception hierarchy.

Provides a structured exception tree so catch blocks can be specific
and callers can distinguish between different failure modes.
"""

from __future__ import annotations


class SteepleError(Exception):
    """Base for all Steeple exceptions."""


class StateError(SteepleError):
    """Persistence and schema failures."""


class AuthError(SteepleError):
    """Bearer token, session, and OAuth flow failures."""
