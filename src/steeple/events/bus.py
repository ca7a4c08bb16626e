"""Event bus for Steeple.

In-process pub/sub for auth and write diagnostics. Events are emitted by
the authorization server, the identity resolver, and the write service,
and consumed by the persister and logging. Nothing in the request path
depends on what a handler does with an event.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from steeple.state.database import utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class Event:
    """Base event structure."""

    event_type: str
    subject_id: str = ""
    data: dict = field(default_factory=dict)
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = utc_now_iso()


# Callback type: sync or async function that takes an Event
EventHandler = Callable[[Event], Any]


class EventBus:
    """In-process async event bus with bounded history.

    Supports:
    - subscribe(event_type, handler) for type-specific listening
    - subscribe_all(handler) for global listening (persistence, logging)
    - emit(event) dispatches to all matching handlers
    """

    def __init__(self, max_history: int = 1000) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._global_handlers: list[EventHandler] = []
        self._history: deque[Event] = deque(maxlen=max_history)
        self._pending_tasks: set[asyncio.Task[Any]] = set()

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe to a specific event type."""
        self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        """Subscribe to all events."""
        self._global_handlers.append(handler)

    def unsubscribe_all(self, handler: EventHandler) -> None:
        """Remove a handler from the global handlers list."""
        try:
            self._global_handlers.remove(handler)
        except ValueError:
            pass

    def emit(self, event: Event) -> None:
        """Emit an event to all matching handlers.

        Async handlers are scheduled as fire-and-forget tasks on the event loop.
        """
        self._history.append(event)
        logger.info(
            "event type=%s subject=%s %s",
            event.event_type, event.subject_id or "-", event.data,
        )

        all_handlers = list(self._global_handlers) + list(self._handlers.get(event.event_type, []))

        for handler in all_handlers:
            is_async = inspect.iscoroutinefunction(handler) or (
                callable(handler)
                and inspect.iscoroutinefunction(getattr(handler, "__call__", None))
            )
            if is_async:
                try:
                    loop = asyncio.get_running_loop()
                    task = loop.create_task(handler(event))
                    self._pending_tasks.add(task)
                    task.add_done_callback(self._on_task_done)
                except RuntimeError:
                    logger.debug(
                        "Skipped async handler %s: no running event loop",
                        getattr(handler, "__name__", handler),
                    )
            else:
                try:
                    handler(event)
                except Exception as e:
                    logger.warning(
                        "Event handler %s failed for %s: %s",
                        getattr(handler, "__name__", handler), event.event_type, e,
                    )

    def recent_events(self, limit: int = 50) -> list[Event]:
        """Return recent events, oldest first."""
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    def clear(self) -> None:
        """Clear all handlers and history."""
        self._handlers.clear()
        self._global_handlers.clear()
        self._history.clear()
        for task in list(self._pending_tasks):
            task.cancel()
        self._pending_tasks.clear()

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight async handler tasks to complete.

        Used by tests and shutdown paths that need the persister to finish.
        """
        pending = list(self._pending_tasks)
        if not pending:
            return
        try:
            await asyncio.wait_for(
                asyncio.gather(*pending, return_exceptions=True),
                timeout=timeout,
            )
        except TimeoutError:
            logger.warning(
                "Timed out draining %d pending event handler task(s).",
                len(self._pending_tasks),
            )

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._pending_tasks.discard(task)
        try:
            exc = task.exception()
        except asyncio.CancelledError:
            return
        if exc is not None:
            logger.warning("Async event handler failed: %s", exc)


class EventPersister:
    """Subscribes to all events and persists them to the auth_events table.

    Persistence is fire-and-forget so it never slows a request.
    """

    def __init__(self, database: Any) -> None:
        self._db = database

    async def handle(self, event: Event) -> None:
        """Persist a single event to the database."""
        try:
            await self._db.insert_event(
                subject_id=event.subject_id,
                correlation_id=uuid.uuid4().hex[:12],
                event_type=event.event_type,
                data=event.data,
            )
        except Exception as e:
            logger.warning("Event persistence failed for %s: %s", event.event_type, e)

    def attach(self, event_bus: EventBus) -> None:
        """Subscribe to all events on the given bus."""
        event_bus.subscribe_all(self.handle)
