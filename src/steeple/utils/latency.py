"""Low-overhead latency diagnostics helpers."""

from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from typing import Any

_TRUTHY = {"1", "true", "yes", "on"}


def diagnostics_enabled() -> bool:
    """Return whether latency diagnostics are enabled for this process."""
    raw = os.environ.get("STEEPLE_LATENCY_DIAGNOSTICS", "")
    return raw.strip().lower() in _TRUTHY


def log_latency_event(
    logger: logging.Logger,
    *,
    event: str,
    duration_seconds: float,
    fields: dict[str, Any] | None = None,
) -> None:
    if not diagnostics_enabled():
        return
    duration_ms = max(0.0, float(duration_seconds)) * 1000.0
    payload = ""
    if fields:
        payload = " " + " ".join(f"{key}={value}" for key, value in fields.items())
    logger.info("latency event=%s duration_ms=%.2f%s", event, duration_ms, payload)


@contextmanager
def timed_block(
    logger: logging.Logger,
    *,
    event: str,
    fields: dict[str, Any] | None = None,
):
    """Log the elapsed time of the wrapped block, even when it raises."""
    started = time.monotonic()
    try:
        yield
    finally:
        log_latency_event(
            logger,
            event=event,
            duration_seconds=time.monotonic() - started,
            fields=fields,
        )
